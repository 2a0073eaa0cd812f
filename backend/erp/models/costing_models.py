"""
Value objects consumed by the calculation engine.

The persistence layer owns these records; the engine treats them as
read-only inputs for the duration of one calculation.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

ParamValue = Union[float, int, str, bool]
CalculationParameters = Dict[str, ParamValue]


class UnitType(str, Enum):
    FIXED = "fixed"
    PER_AREA = "per_area"
    PER_VOLUME = "per_volume"
    PER_WEIGHT = "per_weight"
    CALCULATED = "calculated"


class ParameterType(str, Enum):
    NUMBER = "NUMBER"
    SELECT = "SELECT"
    BOOLEAN = "BOOLEAN"
    TEXT = "TEXT"


@dataclass(frozen=True)
class MaterialItem:
    id: str
    name: str
    unit: str
    price: float
    currency: str = "RUB"
    base_unit: Optional[str] = None
    calculation_unit: Optional[str] = None   # e.g. "m" for a material sold per roll
    conversion_factor: Optional[float] = None  # calculation units per 1 native unit


@dataclass(frozen=True)
class WorkType:
    id: str
    name: str
    unit: str
    hourly_rate: float
    standard_time: Optional[float] = None
    department: Optional[str] = None


@dataclass(frozen=True)
class MaterialUsage:
    id: str
    material: MaterialItem
    quantity: float = 0.0
    unit_type: UnitType = UnitType.FIXED
    base_quantity: Optional[float] = None
    calculation_formula: Optional[str] = None
    unit: Optional[str] = None               # declared unit when it differs from material.unit
    waste_factor: float = 1.0                # component-level materials only


@dataclass(frozen=True)
class WorkTypeUsage:
    id: str
    work_type: WorkType
    quantity: float = 0.0
    unit_type: UnitType = UnitType.FIXED
    base_time: Optional[float] = None
    time_per_unit: Optional[float] = None
    calculation_formula: Optional[str] = None
    sequence: int = 0


@dataclass(frozen=True)
class FundCategory:
    id: str
    name: str
    planned_amount: float = 0.0
    category_type: str = "expenses"          # "expenses" | "taxes" | "salary" | ...
    percentage: Optional[float] = None
    item_percentages: tuple = ()             # tax items contribute their percentages


@dataclass(frozen=True)
class FundUsage:
    id: str
    fund_id: str
    category_id: Optional[str] = None
    name: str = ""
    allocated_amount: float = 0.0
    percentage: Optional[float] = None
    per_unit: bool = False                   # allocated_amount is per produced unit


@dataclass(frozen=True)
class Fund:
    id: str
    name: str
    total_amount: float = 0.0
    categories: tuple = ()


@dataclass(frozen=True)
class ProductParameter:
    id: str
    name: str
    type: ParameterType = ParameterType.NUMBER
    unit: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    default_value: Optional[ParamValue] = None
    options: tuple = ()                      # SELECT option codes
    is_required: bool = False


@dataclass(frozen=True)
class ProductComponent:
    id: str
    name: str
    base_quantity: float = 1.0
    quantity_formula: Optional[str] = None
    include_condition: Optional[str] = None
    width: float = 0.0
    height: float = 0.0
    depth: float = 0.0
    thickness: float = 0.0
    is_active: bool = True
    sort_order: int = 0
    material_usages: tuple = ()              # MaterialUsage with calculation_formula as usage formula
    work_type_usages: tuple = ()


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    unit: str = "pcs"
    description: str = ""
    material_usages: tuple = ()
    work_type_usages: tuple = ()
    fund_usages: tuple = ()
    parameters: tuple = ()
    components: tuple = ()
    formula_enabled: bool = False
    formula_expression: Optional[str] = None
    margin: Optional[float] = None           # target margin % stored on the product
    selling_price: Optional[float] = None
    base_price: Optional[float] = None


@dataclass
class Dimensions:
    length: float = 0.0
    width: float = 0.0
    height: float = 0.0
    thickness: float = 0.0
    weight: float = 0.0
    length_unit: str = "cm"
    weight_unit: str = "kg"

    def as_parameters(self) -> Dict[str, float]:
        return {
            "length": self.length,
            "width": self.width,
            "height": self.height,
            "thickness": self.thickness,
        }


@dataclass
class CachedCosts:
    """Cost fields written back onto a product after recalculation."""

    material_cost: float
    labor_cost: float
    overhead_cost: float
    total_cost: float
    selling_price: float
    margin: float


__all__ = [
    "CalculationParameters",
    "ParamValue",
    "UnitType",
    "ParameterType",
    "MaterialItem",
    "WorkType",
    "MaterialUsage",
    "WorkTypeUsage",
    "FundCategory",
    "FundUsage",
    "Fund",
    "ProductParameter",
    "ProductComponent",
    "Product",
    "Dimensions",
    "CachedCosts",
]
