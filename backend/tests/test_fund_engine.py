"""
Tests for erp.services.fund_engine — fund usage allocation and fund recalculation.
"""
import pytest

from erp.models.costing_models import Fund, FundCategory
from erp.services.errors import InvalidInputError
from erp.services.fund_engine import allocate_fund_usage, recalculate_fund


@pytest.fixture
def overhead_fund():
    """
    500 000 total; rent 100 000, utilities 50 000, taxes 60 000 (22 + 5.1 + 2.9 %).
    Allocated 210 000, remaining 290 000.
    """
    return Fund(
        "fund-1", "Overhead", 500000,
        categories=(
            FundCategory("cat-rent", "Rent", 100000),
            FundCategory("cat-util", "Utilities", 50000),
            FundCategory("cat-tax", "Taxes", 60000, category_type="taxes",
                         item_percentages=(22, 5.1, 2.9)),
        ),
    )


class TestAllocateFundUsage:

    def test_percentage_wins(self):
        assert allocate_fund_usage(1_000_000, 999, 1.5) == pytest.approx(15000)

    def test_absolute_amount(self):
        assert allocate_fund_usage(1_000_000, 250, None) == 250

    def test_missing_amount_is_zero(self):
        assert allocate_fund_usage(None, None, None) == 0

    def test_negative_percentage_rejected(self):
        with pytest.raises(InvalidInputError):
            allocate_fund_usage(1000, 0, -1)


class TestRecalculateFund:

    def test_totals(self, overhead_fund):
        plan = recalculate_fund(overhead_fund)
        assert plan.allocated_amount == 210000
        assert plan.remaining_amount == 290000

    def test_tax_category_sums_items(self, overhead_fund):
        plan = recalculate_fund(overhead_fund)
        taxes = next(c for c in plan.categories if c.category_id == "cat-tax")
        assert taxes.percentage == 30.0

    def test_other_categories_share_of_planned(self, overhead_fund):
        """100 000 / 210 000 = 47.62 %; 50 000 / 210 000 = 23.81 %."""
        plan = recalculate_fund(overhead_fund)
        by_id = {c.category_id: c.percentage for c in plan.categories}
        assert by_id["cat-rent"] == 47.62
        assert by_id["cat-util"] == 23.81

    def test_nothing_planned_keeps_stored_percentage(self):
        fund = Fund("f", "Empty", 1000, categories=(FundCategory("c", "Misc", 0, percentage=12.5),))
        plan = recalculate_fund(fund)
        assert plan.categories[0].percentage == 12.5
        assert plan.remaining_amount == 1000

    def test_over_allocation_goes_negative(self):
        fund = Fund("f", "Tight", 100, categories=(FundCategory("c", "Rent", 150),))
        assert recalculate_fund(fund).remaining_amount == -50

    def test_output(self, overhead_fund):
        data = recalculate_fund(overhead_fund).to_dict()
        assert data["categories_count"] == 3
        assert data["remaining_amount"] == 290000
