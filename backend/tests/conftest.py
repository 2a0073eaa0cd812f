"""
conftest.py — Shared pytest fixtures for the production ERP backend test suite.

No database or external service fixtures are defined here.  Engine tests are
pure unit tests over value objects; API tests run against the in-memory demo
catalog through FastAPI's dependency overrides.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``erp.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any erp imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def unit_table():
    """UnitConversionTable over the default registry (mm … t, pcs, pack, set)."""
    from erp.services.unit_conversion import UnitConversionTable
    return UnitConversionTable()


@pytest.fixture(scope="session")
def bom_engine(unit_table):
    from erp.services.bom_engine import BOMEngine
    return BOMEngine(unit_table)


@pytest.fixture(scope="session")
def aggregator():
    from erp.services.costing_engine import CostAggregator
    return CostAggregator()


@pytest.fixture(scope="session")
def pricing_engine():
    from erp.services.pricing_engine import PricingEngine
    return PricingEngine()


# ---------------------------------------------------------------------------
# Sample catalog records
# ---------------------------------------------------------------------------

@pytest.fixture
def board():
    """Material priced 85 per metre."""
    from erp.models.costing_models import MaterialItem
    return MaterialItem("mat-board", "Pine board", "m", 85.0)


@pytest.fixture
def assembly():
    """Work type at 800 per hour."""
    from erp.models.costing_models import WorkType
    return WorkType("wt-asm", "Assembly", "h", 800.0, department="Assembly")


@pytest.fixture
def simple_product(board, assembly):
    """
    One material usage (quantity 2 @ 85) and one labor usage (1 h @ 800),
    no funds:  material 170, labor 800, total 970.
    """
    from erp.models.costing_models import MaterialUsage, Product, WorkTypeUsage
    return Product(
        "prod-simple",
        "Simple shelf",
        material_usages=(MaterialUsage("mu-1", board, quantity=2.0),),
        work_type_usages=(WorkTypeUsage("wu-1", assembly, quantity=1.0),),
    )


@pytest.fixture
def formula_product(board):
    """
    Formula-enabled product: effective quantity = height * 1500 + width * 500,
    one fixed usage of quantity 1 per effective unit.
    """
    from erp.models.costing_models import MaterialUsage, Product, ProductParameter
    return Product(
        "prod-formula",
        "Formula panel",
        formula_enabled=True,
        formula_expression="height * 1500 + width * 500",
        parameters=(
            ProductParameter("pp-h", "height", min_value=0),
            ProductParameter("pp-w", "width", min_value=0),
        ),
        material_usages=(MaterialUsage("mu-f", board, quantity=1.0),),
    )


@pytest.fixture
def service():
    """CalculationService over an empty in-memory repository."""
    from erp.db.repository import InMemoryCatalogRepository
    from erp.services.calculation_service import CalculationService
    return CalculationService(InMemoryCatalogRepository())


@pytest.fixture
def demo_repository():
    """Fresh in-memory copy of the demo catalog (stool, banner, sign, wardrobe)."""
    from erp.db.repository import InMemoryCatalogRepository
    return InMemoryCatalogRepository.from_seed()


@pytest.fixture
def client(demo_repository):
    """FastAPI TestClient wired to ``demo_repository``."""
    from fastapi.testclient import TestClient
    from erp.api.deps import get_repository
    from erp.main import app

    async def _override():
        yield demo_repository

    app.dependency_overrides[get_repository] = _override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
