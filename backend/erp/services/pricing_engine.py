"""
PricingEngine — selling price, margin and VAT from a total cost.

    manual price given  -> margin % = (price - cost) / cost * 100   (0 when cost == 0)
    otherwise           -> price    = cost * (1 + margin % / 100)
    vat                 = price * vat % / 100

Order lines additionally support a markup expressed as a percentage or as
an absolute amount per unit, with VAT applied optionally.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from erp.config import DEFAULT_TARGET_MARGIN_PCT, MONEY_PRECISION
from erp.services.errors import InvalidInputError, require_non_negative

logger = logging.getLogger("erp-pricing")

MARKUP_PERCENT = "percent"
MARKUP_ABSOLUTE = "absolute"


def margin_percent(selling_price: float, total_cost: float) -> float:
    """Markup over cost in percent; a zero cost yields 0 rather than inf/NaN."""
    if total_cost <= 0:
        return 0.0
    return (selling_price - total_cost) / total_cost * 100.0


@dataclass
class PricingBreakdown:
    total_cost: float
    selling_price: float
    margin_percent: float
    vat_rate_percent: float
    vat_amount: float
    price_with_vat: float
    manual: bool = False

    @property
    def profit_amount(self) -> float:
        return self.selling_price - self.total_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_cost": round(self.total_cost, MONEY_PRECISION),
            "selling_price": round(self.selling_price, MONEY_PRECISION),
            "margin_percent": round(self.margin_percent, MONEY_PRECISION),
            "profit_amount": round(self.profit_amount, MONEY_PRECISION),
            "vat_rate_percent": self.vat_rate_percent,
            "vat_amount": round(self.vat_amount, MONEY_PRECISION),
            "price_with_vat": round(self.price_with_vat, MONEY_PRECISION),
            "manual": self.manual,
        }


@dataclass
class LinePricing:
    quantity: float
    unit_cost: float
    line_cost: float
    unit_price: float
    price_without_vat: float
    vat_rate_percent: float
    vat_amount: float
    price_with_vat: float
    markup_type: str
    markup_value: float

    @property
    def margin_amount(self) -> float:
        return self.price_without_vat - self.line_cost

    @property
    def margin_percent(self) -> float:
        return margin_percent(self.price_without_vat, self.line_cost)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quantity": self.quantity,
            "unit_cost": round(self.unit_cost, MONEY_PRECISION),
            "line_cost": round(self.line_cost, MONEY_PRECISION),
            "unit_price": round(self.unit_price, MONEY_PRECISION),
            "price_without_vat": round(self.price_without_vat, MONEY_PRECISION),
            "vat_rate_percent": self.vat_rate_percent,
            "vat_amount": round(self.vat_amount, MONEY_PRECISION),
            "price_with_vat": round(self.price_with_vat, MONEY_PRECISION),
            "markup_type": self.markup_type,
            "markup_value": self.markup_value,
            "margin_amount": round(self.margin_amount, MONEY_PRECISION),
            "margin_percent": round(self.margin_percent, MONEY_PRECISION),
        }


class PricingEngine:

    def price(
        self,
        total_cost: float,
        target_margin_percent: Optional[float] = None,
        manual_selling_price: Optional[float] = None,
        vat_rate_percent: float = 0.0,
    ) -> PricingBreakdown:
        cost = require_non_negative(total_cost, "total_cost")
        vat_rate = require_non_negative(vat_rate_percent or 0.0, "vat_rate_percent")

        if manual_selling_price is not None:
            selling = require_non_negative(manual_selling_price, "manual_selling_price")
            margin = margin_percent(selling, cost)
            manual = True
        else:
            margin = (
                DEFAULT_TARGET_MARGIN_PCT
                if target_margin_percent is None
                else require_non_negative(target_margin_percent, "target_margin_percent")
            )
            selling = cost * (1 + margin / 100.0)
            manual = False

        vat_amount = selling * vat_rate / 100.0
        return PricingBreakdown(
            total_cost=cost,
            selling_price=selling,
            margin_percent=margin,
            vat_rate_percent=vat_rate,
            vat_amount=vat_amount,
            price_with_vat=selling + vat_amount,
            manual=manual,
        )

    def price_line(
        self,
        unit_cost: float,
        quantity: float,
        markup_type: str = MARKUP_PERCENT,
        markup_value: float = DEFAULT_TARGET_MARGIN_PCT,
        manual_price: Optional[float] = None,
        vat_rate_percent: float = 0.0,
        apply_vat: bool = True,
    ) -> LinePricing:
        """
        Price one order line.

        ``manual_price`` is a per-unit price and overrides the markup.  With
        ``markup_type='absolute'`` the markup is an amount added per unit.
        """
        unit_cost = require_non_negative(unit_cost, "unit_cost")
        quantity = require_non_negative(quantity, "quantity")
        markup_value = require_non_negative(markup_value or 0.0, "markup_value")
        vat_rate = require_non_negative(vat_rate_percent or 0.0, "vat_rate_percent")

        if manual_price is not None:
            unit_price = require_non_negative(manual_price, "manual_price")
        elif markup_type == MARKUP_PERCENT:
            unit_price = unit_cost * (1 + markup_value / 100.0)
        elif markup_type == MARKUP_ABSOLUTE:
            unit_price = unit_cost + markup_value
        else:
            raise InvalidInputError(
                f"Unknown markup type: {markup_type!r}", markup_type=markup_type
            )

        price_without_vat = unit_price * quantity
        vat_amount = price_without_vat * vat_rate / 100.0 if apply_vat else 0.0
        return LinePricing(
            quantity=quantity,
            unit_cost=unit_cost,
            line_cost=unit_cost * quantity,
            unit_price=unit_price,
            price_without_vat=price_without_vat,
            vat_rate_percent=vat_rate if apply_vat else 0.0,
            vat_amount=vat_amount,
            price_with_vat=price_without_vat + vat_amount,
            markup_type=markup_type,
            markup_value=markup_value,
        )
