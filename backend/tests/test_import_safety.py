"""
test_import_safety.py — Import and circular-import checks.

Verifies that:
  1. Every erp module imports cleanly (only the module itself is imported;
     no database connection or broker connection is made).
  2. The engine modules do not pull in the web or ORM stack, so they can be
     used from Celery workers and scripts without FastAPI.

No database, network, or external services are required.
"""

import sys
import os
import importlib
import inspect
import pytest

_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


ALL_MODULES = [
    "erp.config",
    "erp.services.errors",
    "erp.services.unit_conversion",
    "erp.services.formula_engine",
    "erp.services.bom_engine",
    "erp.services.fund_engine",
    "erp.services.costing_engine",
    "erp.services.pricing_engine",
    "erp.services.calculation_service",
    "erp.services.logging_config",
    "erp.services.middleware",
    "erp.models.costing_models",
    "erp.models.orm_models",
    "erp.db",
    "erp.db.seed",
    "erp.db.repository",
    "erp.api.deps",
    "erp.api.calculation_routes",
    "erp.api.units_routes",
    "erp.api.formula_routes",
    "erp.api.fund_routes",
    "erp.workers.celery_app",
    "erp.workers.tasks",
    "erp.main",
]

ENGINE_MODULES = [
    "erp.services.unit_conversion",
    "erp.services.formula_engine",
    "erp.services.bom_engine",
    "erp.services.fund_engine",
    "erp.services.costing_engine",
    "erp.services.pricing_engine",
]


class TestModuleImports:

    @pytest.mark.parametrize("module_name", ALL_MODULES)
    def test_module_imports(self, module_name):
        module = importlib.import_module(module_name)
        assert module is not None

    @pytest.mark.parametrize("module_name", ENGINE_MODULES)
    def test_engine_modules_do_not_need_web_or_orm(self, module_name):
        """Engine modules never import FastAPI, SQLAlchemy or the api package."""
        source = inspect.getsource(importlib.import_module(module_name))
        for forbidden in ("fastapi", "sqlalchemy", "erp.api", "erp.db"):
            assert f"import {forbidden}" not in source
            assert f"from {forbidden}" not in source

    def test_celery_task_registered(self):
        from erp.workers.celery_app import celery_app
        import erp.workers.tasks  # noqa: F401

        assert "tasks.recalculate_products" in celery_app.tasks
