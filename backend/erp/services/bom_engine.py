"""
BOM Resolution Engine — turns a product's usage records into priced lines.

For every MaterialUsage / WorkTypeUsage of a product (or of one of its
components) the engine resolves a per-unit quantity from the usage's unit
type, its optional formula and the product dimensions, scales it by the
effective quantity and prices it:

    fixed       -> usage.quantity
    per_area    -> base_quantity * area     (m²)
    per_volume  -> base_quantity * volume   (m³)
    per_weight  -> base_quantity * weight   (kg)
    formula     -> evaluate(calculation_formula, parameters + metrics)

Formula failures fall back to the type-based quantity and are reported as
warnings.  Unit mismatches that cannot be converted abort the calculation
with MaterialResolutionError, since a missing cost line understates price.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from erp.config import DEFAULT_LENGTH_UNIT, DEFAULT_WEIGHT_UNIT, QUANTITY_PRECISION, MONEY_PRECISION
from erp.models.costing_models import (
    Dimensions,
    MaterialUsage,
    ParameterType,
    Product,
    ProductComponent,
    UnitType,
    WorkTypeUsage,
)
from erp.services import formula_engine
from erp.services.errors import (
    COMPONENT_FORMULA_FALLBACK,
    FORMULA_FALLBACK,
    INCLUDE_CONDITION_FAILED,
    FormulaEvaluationError,
    IncompatibleUnitsError,
    InvalidInputError,
    MaterialResolutionError,
    UnitNotFoundError,
    WarningCollector,
    require_non_negative,
)
from erp.services.unit_conversion import UnitConversionTable, default_unit_table

logger = logging.getLogger("erp-bom")

# Parameter keys that are never product parameters
RESERVED_PARAMETERS = {"length_unit", "weight_unit"}


@dataclass
class MaterialLine:
    usage_id: str
    material_id: str
    material_name: str
    unit: str
    unit_price: float
    per_unit_quantity: float
    quantity: float                 # before waste
    effective_quantity: float       # quantity * waste_factor
    cost: float
    unit_type: str = UnitType.FIXED.value
    waste_quantity: float = 0.0
    formula: Optional[str] = None
    component_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usage_id": self.usage_id,
            "material_id": self.material_id,
            "material_name": self.material_name,
            "unit": self.unit,
            "unit_price": round(self.unit_price, MONEY_PRECISION),
            "per_unit_quantity": round(self.per_unit_quantity, QUANTITY_PRECISION),
            "quantity": round(self.quantity, QUANTITY_PRECISION),
            "waste_quantity": round(self.waste_quantity, QUANTITY_PRECISION),
            "effective_quantity": round(self.effective_quantity, QUANTITY_PRECISION),
            "cost": round(self.cost, MONEY_PRECISION),
            "unit_type": self.unit_type,
            "formula": self.formula,
            "component_id": self.component_id,
        }


@dataclass
class LaborLine:
    usage_id: str
    work_type_id: str
    work_type_name: str
    unit: str
    hourly_rate: float
    per_unit_time: float
    time: float
    cost: float
    sequence: int = 0
    unit_type: str = UnitType.FIXED.value
    department: Optional[str] = None
    component_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usage_id": self.usage_id,
            "work_type_id": self.work_type_id,
            "work_type_name": self.work_type_name,
            "unit": self.unit,
            "hourly_rate": round(self.hourly_rate, MONEY_PRECISION),
            "per_unit_time": round(self.per_unit_time, QUANTITY_PRECISION),
            "time": round(self.time, QUANTITY_PRECISION),
            "cost": round(self.cost, MONEY_PRECISION),
            "sequence": self.sequence,
            "unit_type": self.unit_type,
            "department": self.department,
            "component_id": self.component_id,
        }


@dataclass
class DimensionMetrics:
    """Derived physical metrics: area in m², volume in m³, weight in kg."""

    area: float = 0.0
    volume: float = 0.0
    weight: float = 0.0
    length: float = 0.0
    width: float = 0.0
    height: float = 0.0
    thickness: float = 0.0

    def as_context(self) -> Dict[str, float]:
        return {
            "area": self.area,
            "volume": self.volume,
            "weight": self.weight,
            "length": self.length,
            "width": self.width,
            "height": self.height,
            "thickness": self.thickness,
        }


@dataclass
class ComponentResolution:
    component_id: str
    component_name: str
    quantity: float
    materials: List[MaterialLine] = field(default_factory=list)
    labor: List[LaborLine] = field(default_factory=list)

    @property
    def total_material_cost(self) -> float:
        return sum(m.cost for m in self.materials)

    @property
    def total_labor_cost(self) -> float:
        return sum(l.cost for l in self.labor)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component_id": self.component_id,
            "component_name": self.component_name,
            "quantity": round(self.quantity, QUANTITY_PRECISION),
            "materials": [m.to_dict() for m in self.materials],
            "labor": [l.to_dict() for l in self.labor],
            "total_material_cost": round(self.total_material_cost, MONEY_PRECISION),
            "total_labor_cost": round(self.total_labor_cost, MONEY_PRECISION),
        }


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


class BOMEngine:
    """Resolves bill-of-materials lines for products and product components."""

    def __init__(self, units: Optional[UnitConversionTable] = None) -> None:
        self.units = units or default_unit_table()

    # ------------------------------------------------------------------
    # Parameters & effective quantity
    # ------------------------------------------------------------------

    def validate_parameters(
        self, product: Product, parameters: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        """
        Normalize caller parameters against the product's declared parameters.

        Declared NUMBER parameters are coerced to float and range-checked,
        SELECT values must be one of the declared option codes, and missing
        parameters take their default.  For formula-enabled products with
        declared parameters, undeclared keys are rejected.
        """
        params: Dict[str, Any] = dict(parameters or {})
        declared = {p.name: p for p in product.parameters}

        if product.formula_enabled and declared:
            unknown = sorted(k for k in params if k not in declared and k not in RESERVED_PARAMETERS)
            if unknown:
                raise InvalidInputError(
                    f"Unknown parameters for product {product.name}: {', '.join(unknown)}",
                    product_id=product.id,
                    parameters=unknown,
                )

        for name, declared_param in declared.items():
            if params.get(name) is None:
                if declared_param.default_value is not None:
                    params[name] = declared_param.default_value
                elif declared_param.is_required:
                    raise InvalidInputError(
                        f"Parameter '{name}' is required", product_id=product.id, parameter=name
                    )
                else:
                    params.pop(name, None)
                    continue

            value = params[name]
            if declared_param.type == ParameterType.NUMBER:
                number = _as_float(value)
                if number is None:
                    raise InvalidInputError(
                        f"Parameter '{name}' must be a number", parameter=name, value=value
                    )
                if declared_param.min_value is not None and number < declared_param.min_value:
                    raise InvalidInputError(
                        f"Parameter '{name}' is below its minimum {declared_param.min_value}",
                        parameter=name, value=number,
                    )
                if declared_param.max_value is not None and number > declared_param.max_value:
                    raise InvalidInputError(
                        f"Parameter '{name}' is above its maximum {declared_param.max_value}",
                        parameter=name, value=number,
                    )
                params[name] = number
            elif declared_param.type == ParameterType.SELECT:
                code = str(value)
                if declared_param.options and code not in declared_param.options:
                    raise InvalidInputError(
                        f"Parameter '{name}' must be one of {list(declared_param.options)}",
                        parameter=name, value=code,
                    )
                params[name] = code
            elif declared_param.type == ParameterType.BOOLEAN:
                if isinstance(value, str):
                    params[name] = value.strip().lower() in ("1", "true", "yes", "on")
                else:
                    params[name] = bool(value)
        return params

    def parameters_from_dimensions(
        self,
        product: Product,
        dimensions: Dimensions,
        custom_specs: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Validated parameters for the dimension calculator.

        Entered dimensions only fill declared parameters of the same name
        (converted to the parameter's unit when it is a length unit), and
        only when ``custom_specs`` does not set them.  Zero dimensions are
        treated as not entered.  Other dimensions reach formulas through the
        dimension metrics, never as parameters.
        """
        supplied: Dict[str, Any] = dict(custom_specs or {})
        declared = {p.name: p for p in product.parameters}
        length_unit = dimensions.length_unit or DEFAULT_LENGTH_UNIT
        for name, value in dimensions.as_parameters().items():
            if name not in declared or not value or supplied.get(name) is not None:
                continue
            unit = declared[name].unit
            if unit and unit != length_unit:
                try:
                    value = self.units.convert(value, length_unit, unit)
                except (UnitNotFoundError, IncompatibleUnitsError):
                    logger.info(
                        f"Parameter '{name}' unit {unit} is not a length unit, dimension used as entered"
                    )
            supplied[name] = value
        return self.validate_parameters(product, supplied)

    def effective_quantity(
        self,
        product: Product,
        quantity: float,
        parameters: Mapping[str, Any],
        warnings: Optional[WarningCollector] = None,
    ) -> float:
        """Quantity used for costing: the product formula when enabled, else ``quantity``."""
        if not (product.formula_enabled and product.formula_expression):
            return quantity
        context = {**parameters, "quantity": quantity}
        try:
            value = formula_engine.evaluate(product.formula_expression, context)
        except FormulaEvaluationError as e:
            logger.warning(
                "Product formula failed, using base quantity",
                extra={"product_id": product.id},
            )
            if warnings is not None:
                warnings.add(
                    FORMULA_FALLBACK,
                    f"Product formula for '{product.name}' could not be evaluated "
                    f"({e.message}); base quantity {quantity:g} used",
                    product.id,
                )
            return quantity
        return require_non_negative(value, "effective_quantity", product_id=product.id)

    # ------------------------------------------------------------------
    # Dimension metrics
    # ------------------------------------------------------------------

    def metrics_from_dimensions(self, dimensions: Dimensions) -> DimensionMetrics:
        """Area (m²), volume (m³) and weight (kg) from dimensions in their entered units."""
        length = require_non_negative(dimensions.length or 0, "length")
        width = require_non_negative(dimensions.width or 0, "width")
        height = require_non_negative(dimensions.height or 0, "height")
        thickness = require_non_negative(dimensions.thickness or 0, "thickness")
        weight = require_non_negative(dimensions.weight or 0, "weight")

        unit = dimensions.length_unit or DEFAULT_LENGTH_UNIT
        to_m = self.units.convert(1.0, unit, "m")
        depth = thickness if thickness > 0 else height

        area = length * to_m * width * to_m if length and width else 0.0
        volume = length * to_m * width * to_m * depth * to_m if length and width and depth else 0.0
        weight_kg = self.units.convert(weight, dimensions.weight_unit or DEFAULT_WEIGHT_UNIT, "kg")

        return DimensionMetrics(
            area=area,
            volume=volume,
            weight=weight_kg,
            length=length,
            width=width,
            height=height,
            thickness=thickness,
        )

    def metrics_from_parameters(self, parameters: Mapping[str, Any]) -> DimensionMetrics:
        """Metrics from dimension-like parameters; explicit area/volume/weight win."""
        values = {
            key: _as_float(parameters.get(key)) or 0.0
            for key in ("length", "width", "height", "thickness", "weight")
        }
        metrics = self.metrics_from_dimensions(
            Dimensions(
                length_unit=str(parameters.get("length_unit") or DEFAULT_LENGTH_UNIT),
                weight_unit=str(parameters.get("weight_unit") or DEFAULT_WEIGHT_UNIT),
                **values,
            )
        )
        for key in ("area", "volume", "weight"):
            explicit = _as_float(parameters.get(key))
            if explicit is not None:
                setattr(metrics, key, require_non_negative(explicit, key))
        return metrics

    def component_metrics(
        self, component: ProductComponent, length_unit: str = DEFAULT_LENGTH_UNIT, weight: float = 0.0
    ) -> DimensionMetrics:
        """Panel metrics of a component: area = width x height, volume = area x depth."""
        width = require_non_negative(component.width or 0, "width", component_id=component.id)
        height = require_non_negative(component.height or 0, "height", component_id=component.id)
        depth = require_non_negative(
            component.depth or component.thickness or 0, "depth", component_id=component.id
        )
        to_m = self.units.convert(1.0, length_unit, "m")
        area = width * to_m * height * to_m
        return DimensionMetrics(
            area=area,
            volume=area * depth * to_m,
            weight=weight,
            width=width,
            height=height,
            thickness=component.thickness or 0.0,
        )

    # ------------------------------------------------------------------
    # Product-level resolution
    # ------------------------------------------------------------------

    def resolve_materials(
        self,
        product: Product,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        metrics: Optional[DimensionMetrics] = None,
        warnings: Optional[WarningCollector] = None,
        effective_quantity: Optional[float] = None,
    ) -> List[MaterialLine]:
        params = dict(parameters or {})
        warnings = warnings if warnings is not None else WarningCollector()
        if effective_quantity is None:
            effective_quantity = self.effective_quantity(product, quantity, params, warnings)
        metrics = metrics or self.metrics_from_parameters(params)
        context = self._context(params, metrics, quantity, effective_quantity)

        lines: List[MaterialLine] = []
        for usage in product.material_usages:
            per_unit = self._per_unit_quantity(
                usage.id, usage.unit_type, usage.quantity, usage.base_quantity,
                usage.calculation_formula, context, metrics, warnings,
            )
            lines.append(self._material_line(usage, per_unit, per_unit * effective_quantity))
        return lines

    def resolve_labor(
        self,
        product: Product,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        metrics: Optional[DimensionMetrics] = None,
        warnings: Optional[WarningCollector] = None,
        effective_quantity: Optional[float] = None,
    ) -> List[LaborLine]:
        params = dict(parameters or {})
        warnings = warnings if warnings is not None else WarningCollector()
        if effective_quantity is None:
            effective_quantity = self.effective_quantity(product, quantity, params, warnings)
        metrics = metrics or self.metrics_from_parameters(params)
        context = self._context(params, metrics, quantity, effective_quantity)

        lines: List[LaborLine] = []
        for usage in product.work_type_usages:
            base_time = usage.base_time if usage.base_time is not None else usage.time_per_unit
            fixed_time = usage.quantity or usage.time_per_unit or usage.work_type.standard_time or 0.0
            per_unit = self._per_unit_quantity(
                usage.id, usage.unit_type, fixed_time, base_time,
                usage.calculation_formula, context, metrics, warnings,
            )
            lines.append(self._labor_line(usage, per_unit, per_unit * effective_quantity))
        return sorted(lines, key=lambda l: l.sequence)

    # ------------------------------------------------------------------
    # Component-level resolution
    # ------------------------------------------------------------------

    def resolve_components(
        self,
        product: Product,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        warnings: Optional[WarningCollector] = None,
    ) -> List[ComponentResolution]:
        """
        Resolve every active component of ``product``.

        Component quantity = (quantity_formula or base_quantity) * quantity.
        Component usages resolve like product usages, with area, volume and
        weight taken from the component's own width, height and depth
        (or thickness) in the request's length unit.
        Include conditions fail open: a condition that cannot be evaluated
        includes the component and records a warning.
        """
        params = dict(parameters or {})
        warnings = warnings if warnings is not None else WarningCollector()
        context = {**params, "totalQuantity": quantity, "quantity": quantity}
        length_unit = str(params.get("length_unit") or DEFAULT_LENGTH_UNIT)
        product_weight = self.metrics_from_parameters(params).weight

        results: List[ComponentResolution] = []
        components = sorted(
            (c for c in product.components if c.is_active), key=lambda c: c.sort_order
        )
        for component in components:
            if not self._include_component(component, context, warnings):
                logger.info("Component %s excluded by condition", component.id)
                continue

            component_qty = self._component_quantity(component, context, warnings) * quantity
            metrics = self.component_metrics(component, length_unit, product_weight)
            component_ctx = {
                **context,
                "componentQuantity": component_qty,
                "width": component.width or 0.0,
                "height": component.height or 0.0,
                "depth": component.depth or 0.0,
                "thickness": component.thickness or 0.0,
                "area": metrics.area,
                "volume": metrics.volume,
                "weight": metrics.weight,
            }

            resolution = ComponentResolution(
                component_id=component.id,
                component_name=component.name,
                quantity=component_qty,
            )
            for usage in component.material_usages:
                base = self._per_unit_quantity(
                    usage.id, usage.unit_type, usage.quantity, usage.base_quantity,
                    usage.calculation_formula, component_ctx, metrics, warnings,
                    kind=COMPONENT_FORMULA_FALLBACK,
                )
                line = self._material_line(usage, base, base * component_qty)
                line.component_id = component.id
                resolution.materials.append(line)
            for usage in component.work_type_usages:
                base_time = usage.base_time if usage.base_time is not None else usage.time_per_unit
                fixed_time = usage.quantity or usage.time_per_unit or usage.work_type.standard_time or 0.0
                base = self._per_unit_quantity(
                    usage.id, usage.unit_type, fixed_time, base_time,
                    usage.calculation_formula, component_ctx, metrics, warnings,
                    kind=COMPONENT_FORMULA_FALLBACK,
                )
                line = self._labor_line(usage, base, base * component_qty)
                line.component_id = component.id
                resolution.labor.append(line)
            resolution.labor.sort(key=lambda l: l.sequence)
            results.append(resolution)
        return results

    def _include_component(
        self, component: ProductComponent, context: Mapping[str, Any], warnings: WarningCollector
    ) -> bool:
        if not component.include_condition:
            return True
        try:
            return formula_engine.evaluate_condition(component.include_condition, context)
        except FormulaEvaluationError as e:
            logger.warning(
                f"Include condition failed for component {component.id}, including it: {e.message}"
            )
            warnings.add(
                INCLUDE_CONDITION_FAILED,
                f"Include condition of component '{component.name}' could not be evaluated "
                f"({e.message}); component included",
                component.id,
            )
            return True

    def _component_quantity(
        self, component: ProductComponent, context: Mapping[str, Any], warnings: WarningCollector
    ) -> float:
        value = self._formula_or(
            component.quantity_formula, component.base_quantity, context, warnings,
            component.id, COMPONENT_FORMULA_FALLBACK,
        )
        return require_non_negative(value, "component_quantity", component_id=component.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _context(
        params: Mapping[str, Any],
        metrics: DimensionMetrics,
        quantity: float,
        effective_quantity: float,
    ) -> Dict[str, Any]:
        return {
            **params,
            **metrics.as_context(),
            "quantity": quantity,
            "effectiveQuantity": effective_quantity,
        }

    def _formula_or(
        self,
        formula: Optional[str],
        fallback: float,
        context: Mapping[str, Any],
        warnings: WarningCollector,
        source_id: str,
        kind: str = FORMULA_FALLBACK,
    ) -> float:
        if not formula:
            return float(fallback or 0.0)
        try:
            value = formula_engine.evaluate(formula, context)
        except FormulaEvaluationError as e:
            logger.warning(f"Formula {formula!r} failed for {source_id}: {e.message}")
            warnings.add(
                kind,
                f"Formula '{formula}' could not be evaluated ({e.message}); "
                f"base quantity {float(fallback or 0.0):g} used",
                source_id,
            )
            return float(fallback or 0.0)
        return require_non_negative(value, "formula_result", usage_id=source_id, formula=formula)

    def _per_unit_quantity(
        self,
        usage_id: str,
        unit_type: UnitType,
        fixed_quantity: float,
        base_quantity: Optional[float],
        formula: Optional[str],
        context: Mapping[str, Any],
        metrics: DimensionMetrics,
        warnings: WarningCollector,
        kind: str = FORMULA_FALLBACK,
    ) -> float:
        fixed_quantity = require_non_negative(fixed_quantity or 0.0, "quantity", usage_id=usage_id)
        base = 1.0 if base_quantity is None else require_non_negative(
            base_quantity, "base_quantity", usage_id=usage_id
        )
        unit_type = UnitType(unit_type)

        if unit_type == UnitType.PER_AREA:
            quantity = base * metrics.area
        elif unit_type == UnitType.PER_VOLUME:
            quantity = base * metrics.volume
        elif unit_type == UnitType.PER_WEIGHT:
            quantity = base * metrics.weight
        else:
            quantity = fixed_quantity

        if formula:
            return self._formula_or(formula, quantity, context, warnings, usage_id, kind)
        if unit_type == UnitType.CALCULATED:
            warnings.add(
                kind,
                f"Usage {usage_id} is 'calculated' but has no formula; fixed quantity used",
                usage_id,
            )
        return quantity

    def _convert_to_material_unit(self, usage: MaterialUsage, quantity: float) -> float:
        material = usage.material
        if not usage.unit or usage.unit == material.unit:
            return quantity
        if (
            material.calculation_unit
            and usage.unit == material.calculation_unit
            and material.conversion_factor
        ):
            return quantity / material.conversion_factor
        try:
            return self.units.convert(quantity, usage.unit, material.unit)
        except (UnitNotFoundError, IncompatibleUnitsError) as e:
            raise MaterialResolutionError(
                f"Material '{material.name}' (usage {usage.id}): {e.message}",
                material_id=material.id,
                usage_id=usage.id,
                reason=e.code,
            ) from e

    def _material_line(self, usage: MaterialUsage, per_unit: float, quantity: float) -> MaterialLine:
        material = usage.material
        price = require_non_negative(material.price, "price", material_id=material.id)
        waste_factor = require_non_negative(usage.waste_factor, "waste_factor", usage_id=usage.id)
        per_unit_native = self._convert_to_material_unit(usage, per_unit)
        native = self._convert_to_material_unit(usage, quantity)
        effective = native * waste_factor
        return MaterialLine(
            usage_id=usage.id,
            material_id=material.id,
            material_name=material.name,
            unit=material.unit,
            unit_price=price,
            per_unit_quantity=per_unit_native,
            quantity=native,
            effective_quantity=effective,
            waste_quantity=native * (waste_factor - 1),
            cost=effective * price,
            unit_type=UnitType(usage.unit_type).value,
            formula=usage.calculation_formula,
        )

    def _labor_line(self, usage: WorkTypeUsage, per_unit: float, time: float) -> LaborLine:
        work_type = usage.work_type
        rate = require_non_negative(work_type.hourly_rate, "hourly_rate", work_type_id=work_type.id)
        return LaborLine(
            usage_id=usage.id,
            work_type_id=work_type.id,
            work_type_name=work_type.name,
            unit=work_type.unit,
            hourly_rate=rate,
            per_unit_time=per_unit,
            time=time,
            cost=time * rate,
            sequence=usage.sequence,
            unit_type=UnitType(usage.unit_type).value,
            department=work_type.department,
        )
