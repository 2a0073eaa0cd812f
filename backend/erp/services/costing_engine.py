"""
CostAggregator — rolls resolved BOM lines and fund allocations into a CostBreakdown.

Covers:
  - Material and labor totals
  - Fund / overhead allocation (absolute amount or % of a category's planned amount)
  - Optional overhead rate on direct cost
  - Cost additivity: total = material + labor + overhead, at full precision

Monetary values are rounded to 2 decimals in ``to_dict`` only, so long BOMs
never compound rounding error.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from erp.config import MONEY_PRECISION, QUANTITY_PRECISION
from erp.models.costing_models import FundUsage
from erp.services.bom_engine import LaborLine, MaterialLine
from erp.services.errors import InvalidInputError, require_non_negative
from erp.services.fund_engine import allocate_fund_usage

logger = logging.getLogger("erp-costing")


@dataclass
class FundLine:
    usage_id: str
    fund_id: str
    category_id: Optional[str]
    name: str
    percentage: Optional[float]
    final_amount: float
    per_unit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usage_id": self.usage_id,
            "fund_id": self.fund_id,
            "category_id": self.category_id,
            "name": self.name,
            "percentage": self.percentage,
            "final_amount": round(self.final_amount, MONEY_PRECISION),
            "per_unit": self.per_unit,
        }


@dataclass
class CostBreakdown:
    material_costs: List[MaterialLine] = field(default_factory=list)
    labor_costs: List[LaborLine] = field(default_factory=list)
    fund_costs: List[FundLine] = field(default_factory=list)
    total_material_cost: float = 0.0
    total_labor_cost: float = 0.0
    fund_overhead: float = 0.0
    rate_overhead: float = 0.0
    overhead_rate_percent: float = 0.0
    quantity: float = 1.0
    effective_quantity: float = 1.0
    # Filled in by the calculation service
    pricing: Optional[Any] = None
    warnings: List[Any] = field(default_factory=list)
    product_id: Optional[str] = None
    product_name: Optional[str] = None

    @property
    def total_overhead_cost(self) -> float:
        return self.fund_overhead + self.rate_overhead

    @property
    def direct_cost(self) -> float:
        return self.total_material_cost + self.total_labor_cost

    @property
    def total_cost(self) -> float:
        return self.total_material_cost + self.total_labor_cost + self.total_overhead_cost

    @property
    def unit_cost(self) -> float:
        return self.total_cost / self.quantity if self.quantity else 0.0

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "effective_quantity": round(self.effective_quantity, QUANTITY_PRECISION),
            "material_costs": [m.to_dict() for m in self.material_costs],
            "labor_costs": [l.to_dict() for l in self.labor_costs],
            "fund_costs": [f.to_dict() for f in self.fund_costs],
            "total_material_cost": round(self.total_material_cost, MONEY_PRECISION),
            "total_labor_cost": round(self.total_labor_cost, MONEY_PRECISION),
            "overhead_rate_percent": self.overhead_rate_percent,
            "total_overhead_cost": round(self.total_overhead_cost, MONEY_PRECISION),
            "total_cost": round(self.total_cost, MONEY_PRECISION),
            "unit_cost": round(self.unit_cost, MONEY_PRECISION),
            "warnings": [w.message for w in self.warnings],
            "warning_details": [w.to_dict() for w in self.warnings],
        }
        if self.pricing is not None:
            result["pricing"] = self.pricing.to_dict()
            result["selling_price"] = round(self.pricing.selling_price, MONEY_PRECISION)
            result["margin_percent"] = self.pricing.margin_percent
        return result


class CostAggregator:
    """Sums BOM lines and allocates overhead funds for one calculation."""

    def aggregate(
        self,
        material_lines: Sequence[MaterialLine],
        labor_lines: Sequence[LaborLine],
        fund_usages: Sequence[FundUsage] = (),
        category_planned_amounts: Optional[Mapping[str, float]] = None,
        quantity: float = 1.0,
        overhead_rate_percent: float = 0.0,
    ) -> CostBreakdown:
        quantity = require_non_negative(quantity, "quantity")
        rate = require_non_negative(overhead_rate_percent or 0.0, "overhead_rate_percent")
        planned = category_planned_amounts or {}

        for line in material_lines:
            require_non_negative(line.cost, "material_cost", usage_id=line.usage_id)
        for line in labor_lines:
            require_non_negative(line.cost, "labor_cost", usage_id=line.usage_id)

        total_material = sum(line.cost for line in material_lines)
        total_labor = sum(line.cost for line in labor_lines)

        fund_lines: List[FundLine] = []
        for usage in fund_usages:
            if usage.percentage is not None and usage.category_id not in planned:
                raise InvalidInputError(
                    f"Fund usage {usage.id} is a percentage of category "
                    f"{usage.category_id!r}, which has no planned amount",
                    usage_id=usage.id,
                    category_id=usage.category_id,
                )
            amount = allocate_fund_usage(
                planned.get(usage.category_id) if usage.category_id else None,
                usage.allocated_amount,
                usage.percentage,
            )
            if usage.per_unit:
                amount *= quantity
            fund_lines.append(
                FundLine(
                    usage_id=usage.id,
                    fund_id=usage.fund_id,
                    category_id=usage.category_id,
                    name=usage.name,
                    percentage=usage.percentage,
                    final_amount=amount,
                    per_unit=usage.per_unit,
                )
            )

        fund_overhead = sum(f.final_amount for f in fund_lines)
        rate_overhead = (total_material + total_labor) * rate / 100.0

        breakdown = CostBreakdown(
            material_costs=list(material_lines),
            labor_costs=list(labor_lines),
            fund_costs=fund_lines,
            total_material_cost=total_material,
            total_labor_cost=total_labor,
            fund_overhead=fund_overhead,
            rate_overhead=rate_overhead,
            overhead_rate_percent=rate,
            quantity=quantity,
        )
        logger.debug(
            f"Aggregated {len(material_lines)} material / {len(labor_lines)} labor / "
            f"{len(fund_lines)} fund lines -> total {breakdown.total_cost:.2f}"
        )
        return breakdown
