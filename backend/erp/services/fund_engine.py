"""
Fund planning — category percentages and fund balances.

A fund's categories share its budget.  Tax categories carry the sum of
their items' rates; every other category's percentage is its share of the
total planned amount.  The fund's allocated amount is the sum of planned
amounts and the remainder is what is left of the fund's total.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from erp.config import MONEY_PRECISION
from erp.models.costing_models import Fund
from erp.services.errors import require_non_negative

logger = logging.getLogger("erp-funds")

TAX_CATEGORY = "taxes"


def allocate_fund_usage(
    category_planned_amount: Optional[float],
    allocated_amount: Optional[float],
    percentage: Optional[float],
) -> float:
    """
    Final amount of one fund usage.

    A set percentage always wins over the absolute amount:
        final = planned * percentage / 100
    """
    if percentage is not None:
        pct = require_non_negative(percentage, "percentage")
        planned = require_non_negative(category_planned_amount or 0.0, "planned_amount")
        return planned * pct / 100.0
    return require_non_negative(allocated_amount or 0.0, "allocated_amount")


@dataclass
class CategoryPlan:
    category_id: str
    name: str
    category_type: str
    planned_amount: float
    percentage: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "name": self.name,
            "category_type": self.category_type,
            "planned_amount": round(self.planned_amount, MONEY_PRECISION),
            "percentage": self.percentage,
        }


@dataclass
class FundPlan:
    fund_id: str
    name: str
    total_amount: float
    allocated_amount: float
    categories: List[CategoryPlan] = field(default_factory=list)

    @property
    def remaining_amount(self) -> float:
        return self.total_amount - self.allocated_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fund_id": self.fund_id,
            "name": self.name,
            "total_amount": round(self.total_amount, MONEY_PRECISION),
            "allocated_amount": round(self.allocated_amount, MONEY_PRECISION),
            "remaining_amount": round(self.remaining_amount, MONEY_PRECISION),
            "categories_count": len(self.categories),
            "categories": [c.to_dict() for c in self.categories],
        }


def recalculate_fund(fund: Fund) -> FundPlan:
    total_planned = 0.0
    for category in fund.categories:
        total_planned += require_non_negative(
            category.planned_amount, "planned_amount", category_id=category.id
        )

    plans: List[CategoryPlan] = []
    for category in fund.categories:
        if category.category_type == TAX_CATEGORY:
            pct: Optional[float] = round(sum(p or 0.0 for p in category.item_percentages), 2)
        elif total_planned > 0:
            pct = round(category.planned_amount / total_planned * 100.0, 2)
        else:
            # Nothing planned yet; keep whatever percentage was stored
            pct = category.percentage
        plans.append(
            CategoryPlan(
                category_id=category.id,
                name=category.name,
                category_type=category.category_type,
                planned_amount=category.planned_amount,
                percentage=pct,
            )
        )

    plan = FundPlan(
        fund_id=fund.id,
        name=fund.name,
        total_amount=fund.total_amount,
        allocated_amount=total_planned,
        categories=plans,
    )
    logger.info(
        f"Fund {fund.id} recalculated: total={plan.total_amount:.2f} "
        f"allocated={plan.allocated_amount:.2f} remaining={plan.remaining_amount:.2f}"
    )
    return plan
