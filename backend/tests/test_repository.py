"""
Tests for erp.db.repository / erp.db.seed and the batch recalculation task.

ORM mapping is checked with plain namespace objects standing in for rows,
so no database is required.
"""
import asyncio
from types import SimpleNamespace

import pytest

from erp.db.repository import InMemoryCatalogRepository, product_from_row
from erp.db.seed import demo_catalog
from erp.models.costing_models import ParameterType, UnitType
from erp.services.errors import FundNotFoundError, ProductNotFoundError


def run(coro):
    return asyncio.run(coro)


class TestDemoCatalog:

    def test_products(self):
        catalog = demo_catalog()
        assert set(catalog["products"]) == {"prod-stool", "prod-banner", "prod-sign", "prod-wardrobe"}
        assert "fund-overhead" in catalog["funds"]

    def test_every_formula_parses(self):
        from erp.services.formula_engine import parse

        for product in demo_catalog()["products"].values():
            formulas = [product.formula_expression]
            formulas += [u.calculation_formula for u in product.material_usages]
            for c in product.components:
                formulas += [c.quantity_formula, c.include_condition]
                formulas += [u.calculation_formula for u in c.material_usages]
            for formula in filter(None, formulas):
                parse(formula)


class TestInMemoryRepository:

    def test_planned_amounts(self, demo_repository):
        planned = run(demo_repository.category_planned_amounts(["cat-rent", "cat-none"]))
        assert planned == {"cat-rent": 100000.0}

    def test_missing_product(self, demo_repository):
        with pytest.raises(ProductNotFoundError):
            run(demo_repository.get_product("nope"))

    def test_missing_fund(self, demo_repository):
        with pytest.raises(FundNotFoundError) as exc:
            run(demo_repository.get_fund("nope"))
        assert exc.value.to_dict()["error"] == "fund_not_found"

    def test_seed_copies_are_independent(self):
        first = InMemoryCatalogRepository.from_seed()
        second = InMemoryCatalogRepository.from_seed()
        first.products.pop("prod-stool")
        assert "prod-stool" in second.products


class TestRowMapping:

    def test_product_from_row(self):
        material = SimpleNamespace(
            id="m", name="Board", unit="m", price=85.0, currency=None, base_unit=None,
            calculation_unit=None, conversion_factor=None,
        )
        work_type = SimpleNamespace(
            id="w", name="Assembly", unit=None, hourly_rate=800.0, standard_time=None,
            department=SimpleNamespace(name="Assembly"),
        )
        row = SimpleNamespace(
            id="p", name="Shelf", unit=None, description=None,
            material_usages=[SimpleNamespace(
                id="mu", material=material, quantity=2.0, unit_type="per_area",
                base_quantity=1.5, calculation_formula=None, unit=None,
            )],
            work_type_usages=[SimpleNamespace(
                id="wu", work_type=work_type, quantity=None, unit_type=None, base_time=None,
                time_per_unit=0.5, calculation_formula=None, sequence=None,
            )],
            fund_usages=[],
            parameters=[
                SimpleNamespace(
                    id="pp2", name="finish", type="SELECT", unit=None, min_value=None,
                    max_value=None, default_value="matte", options=["matte", "gloss"],
                    is_required=False, sort_order=2,
                ),
                SimpleNamespace(
                    id="pp1", name="width", type="NUMBER", unit="m", min_value=0,
                    max_value=None, default_value="1.5", options=None,
                    is_required=True, sort_order=1,
                ),
            ],
            components=[],
            formula_enabled=False, formula_expression=None, margin=None,
            selling_price=None, base_price=None,
        )
        product = product_from_row(row)
        assert product.unit == "pcs"
        assert product.material_usages[0].unit_type == UnitType.PER_AREA
        assert product.material_usages[0].material.currency == "RUB"
        assert product.work_type_usages[0].work_type.unit == "h"
        assert product.work_type_usages[0].work_type.department == "Assembly"
        assert [p.name for p in product.parameters] == ["width", "finish"]
        assert product.parameters[0].default_value == 1.5
        assert product.parameters[1].type == ParameterType.SELECT
        assert product.parameters[1].options == ("matte", "gloss")


class TestRecalculationTask:

    def test_in_memory_batch(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        from erp.workers.tasks import _recalculate

        result = run(_recalculate(["prod-stool", "prod-banner"]))
        assert result["updated_count"] == 1
        assert result["failed"][0]["product_id"] == "prod-banner"
