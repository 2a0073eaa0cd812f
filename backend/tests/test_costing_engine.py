"""
Tests for erp.services.costing_engine — CostAggregator and CostBreakdown.

Covers:
    - Cost additivity (total = material + labor + overhead)
    - Fund allocation: absolute amount vs. percentage of planned amount
    - Per-unit fund scaling
    - Overhead rate on direct cost
    - Input validation and output rounding
"""
import pytest

from erp.models.costing_models import FundUsage
from erp.services.bom_engine import LaborLine, MaterialLine
from erp.services.errors import CalculationWarning, InvalidInputError


def _material(cost, usage_id="mu-1"):
    return MaterialLine(
        usage_id=usage_id, material_id="m", material_name="Material", unit="m",
        unit_price=cost, per_unit_quantity=1, quantity=1, effective_quantity=1, cost=cost,
    )


def _labor(cost, usage_id="wu-1"):
    return LaborLine(
        usage_id=usage_id, work_type_id="w", work_type_name="Work", unit="h",
        hourly_rate=cost, per_unit_time=1, time=1, cost=cost,
    )


class TestAdditivity:

    def test_material_plus_labor(self, aggregator):
        """170 + 800 = 970, no overhead."""
        breakdown = aggregator.aggregate([_material(170)], [_labor(800)])
        assert breakdown.total_material_cost == 170
        assert breakdown.total_labor_cost == 800
        assert breakdown.total_overhead_cost == 0
        assert breakdown.total_cost == 970

    def test_many_lines_keep_full_precision(self, aggregator):
        """Sums stay unrounded; 0.1 × 10 lines is ≈1.0, not 0.0 or 1.1."""
        lines = [_material(0.1, f"mu-{i}") for i in range(10)]
        breakdown = aggregator.aggregate(lines, [])
        assert breakdown.total_material_cost == pytest.approx(1.0)
        assert breakdown.to_dict()["total_material_cost"] == 1.0

    def test_total_is_sum_of_parts(self, aggregator):
        breakdown = aggregator.aggregate(
            [_material(12.345), _material(0.005, "mu-2")],
            [_labor(99.999)],
            [FundUsage("fu", "f", allocated_amount=10.001)],
            overhead_rate_percent=7.5,
        )
        expected = (
            breakdown.total_material_cost
            + breakdown.total_labor_cost
            + breakdown.total_overhead_cost
        )
        assert breakdown.total_cost == pytest.approx(expected, abs=1e-9)

    def test_empty_bom_costs_zero(self, aggregator):
        breakdown = aggregator.aggregate([], [])
        assert breakdown.total_cost == 0
        assert breakdown.unit_cost == 0


class TestFundAllocation:

    def test_absolute_amount(self, aggregator):
        usage = FundUsage("fu", "fund", "cat-rent", "Rent", allocated_amount=150)
        breakdown = aggregator.aggregate([], [], [usage], {"cat-rent": 100000})
        assert breakdown.fund_overhead == 150

    def test_percentage_of_planned_amount(self, aggregator):
        """1.5 % of 1 000 000 planned = 15 000."""
        usage = FundUsage("fu", "fund", "cat-rent", "Rent", allocated_amount=99, percentage=1.5)
        breakdown = aggregator.aggregate([_material(100)], [], [usage], {"cat-rent": 1_000_000})
        assert breakdown.fund_costs[0].final_amount == pytest.approx(15000)
        assert breakdown.total_cost == pytest.approx(15100)

    def test_percentage_without_planned_amount_rejected(self, aggregator):
        usage = FundUsage("fu", "fund", "cat-missing", percentage=5)
        with pytest.raises(InvalidInputError):
            aggregator.aggregate([], [], [usage], {})

    def test_per_unit_scales_with_quantity(self, aggregator):
        """50 per unit × 4 units = 200."""
        usage = FundUsage("fu", "fund", allocated_amount=50, per_unit=True)
        breakdown = aggregator.aggregate([], [], [usage], quantity=4)
        assert breakdown.fund_overhead == 200

    def test_negative_fund_amount_rejected(self, aggregator):
        usage = FundUsage("fu", "fund", allocated_amount=-10)
        with pytest.raises(InvalidInputError):
            aggregator.aggregate([], [], [usage])


class TestOverheadRate:

    def test_rate_applies_to_direct_cost(self, aggregator):
        """15 % of (200 + 800) = 150."""
        breakdown = aggregator.aggregate([_material(200)], [_labor(800)], overhead_rate_percent=15)
        assert breakdown.rate_overhead == pytest.approx(150)
        assert breakdown.total_cost == pytest.approx(1150)

    def test_rate_and_funds_combine(self, aggregator):
        usage = FundUsage("fu", "fund", allocated_amount=50)
        breakdown = aggregator.aggregate(
            [_material(100)], [], [usage], overhead_rate_percent=10
        )
        assert breakdown.total_overhead_cost == pytest.approx(60)

    def test_negative_rate_rejected(self, aggregator):
        with pytest.raises(InvalidInputError):
            aggregator.aggregate([], [], overhead_rate_percent=-1)


class TestValidation:

    def test_negative_line_cost_rejected(self, aggregator):
        with pytest.raises(InvalidInputError):
            aggregator.aggregate([_material(-5)], [])

    def test_negative_quantity_rejected(self, aggregator):
        with pytest.raises(InvalidInputError):
            aggregator.aggregate([], [], quantity=-1)


class TestBreakdownOutput:

    def test_rounding_only_in_output(self, aggregator):
        breakdown = aggregator.aggregate([_material(10.0049)], [_labor(0.0049)])
        assert breakdown.total_cost == pytest.approx(10.0098)
        assert breakdown.to_dict()["total_cost"] == 10.01

    def test_unit_cost(self, aggregator):
        breakdown = aggregator.aggregate([_material(300)], [], quantity=3)
        assert breakdown.unit_cost == pytest.approx(100)

    def test_warnings_serialised(self, aggregator):
        breakdown = aggregator.aggregate([], [])
        breakdown.warnings.append(CalculationWarning("formula_fallback", "fell back", "mu-1"))
        data = breakdown.to_dict()
        assert data["warnings"] == ["fell back"]
        assert data["warning_details"][0]["source_id"] == "mu-1"
        assert "pricing" not in data
