"""
Tests for erp.services.pricing_engine — selling price, margin and VAT.
"""
import pytest

from erp.services.errors import InvalidInputError
from erp.services.pricing_engine import (
    MARKUP_ABSOLUTE,
    MARKUP_PERCENT,
    margin_percent,
)


class TestTargetMargin:

    def test_margin_applied_to_cost(self, pricing_engine):
        """1000 × (1 + 20 %) = 1200."""
        pricing = pricing_engine.price(1000, target_margin_percent=20)
        assert pricing.selling_price == pytest.approx(1200)
        assert pricing.profit_amount == pytest.approx(200)
        assert not pricing.manual

    def test_default_margin_is_twenty_percent(self, pricing_engine):
        assert pricing_engine.price(500).selling_price == pytest.approx(600)

    def test_zero_margin(self, pricing_engine):
        assert pricing_engine.price(500, target_margin_percent=0).selling_price == 500


class TestManualPrice:

    def test_margin_derived_from_manual_price(self, pricing_engine):
        """(1200 - 1000) / 1000 = 20 %."""
        pricing = pricing_engine.price(1000, manual_selling_price=1200)
        assert pricing.margin_percent == pytest.approx(20)
        assert pricing.manual

    def test_zero_cost_guard(self, pricing_engine):
        pricing = pricing_engine.price(0, manual_selling_price=500)
        assert pricing.margin_percent == 0

    def test_below_cost(self, pricing_engine):
        assert pricing_engine.price(1000, manual_selling_price=800).margin_percent == pytest.approx(-20)

    def test_margin_percent_helper(self):
        assert margin_percent(150, 100) == pytest.approx(50)
        assert margin_percent(150, 0) == 0


class TestVat:

    def test_vat_on_selling_price(self, pricing_engine):
        """1200 × 20 % VAT = 240; gross 1440."""
        pricing = pricing_engine.price(1000, 20, vat_rate_percent=20)
        assert pricing.vat_amount == pytest.approx(240)
        assert pricing.price_with_vat == pytest.approx(1440)

    def test_rounded_output(self, pricing_engine):
        data = pricing_engine.price(333.333, 10).to_dict()
        assert data["selling_price"] == 366.67

    def test_negative_cost_rejected(self, pricing_engine):
        with pytest.raises(InvalidInputError):
            pricing_engine.price(-1)


class TestLinePricing:

    def test_percent_markup(self, pricing_engine):
        """unit 100 × 1.25 = 125 × 4 = 500; VAT 20 % = 100."""
        line = pricing_engine.price_line(100, 4, MARKUP_PERCENT, 25, vat_rate_percent=20)
        assert line.unit_price == pytest.approx(125)
        assert line.price_without_vat == pytest.approx(500)
        assert line.vat_amount == pytest.approx(100)
        assert line.price_with_vat == pytest.approx(600)
        assert line.margin_amount == pytest.approx(100)
        assert line.margin_percent == pytest.approx(25)

    def test_absolute_markup_per_unit(self, pricing_engine):
        line = pricing_engine.price_line(100, 3, MARKUP_ABSOLUTE, 30)
        assert line.unit_price == pytest.approx(130)
        assert line.price_without_vat == pytest.approx(390)

    def test_manual_price_overrides_markup(self, pricing_engine):
        line = pricing_engine.price_line(100, 2, MARKUP_PERCENT, 50, manual_price=180)
        assert line.price_without_vat == pytest.approx(360)
        assert line.margin_percent == pytest.approx(80)

    def test_vat_can_be_skipped(self, pricing_engine):
        line = pricing_engine.price_line(100, 1, vat_rate_percent=20, apply_vat=False)
        assert line.vat_amount == 0
        assert line.price_with_vat == line.price_without_vat

    def test_unknown_markup_type(self, pricing_engine):
        with pytest.raises(InvalidInputError):
            pricing_engine.price_line(100, 1, "bonus", 5)
