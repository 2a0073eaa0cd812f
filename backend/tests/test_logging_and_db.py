"""
Tests for the JSON log formatter and the catalog database URL handling.
Neither needs a running database.
"""
import json
import logging

import pytest

from erp.db import normalize_database_url
from erp.services.logging_config import JSONFormatter


def _record(**extra):
    record = logging.LogRecord(
        name="erp-calc", level=logging.INFO, pathname=__file__, lineno=10,
        msg="Product cost calculated", args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_context_fields_are_grouped(self):
        entry = json.loads(JSONFormatter().format(_record(product_id="prod-stool", duration_ms=1.5)))
        assert entry["message"] == "Product cost calculated"
        assert entry["logger"] == "erp-calc"
        assert entry["context"] == {"product_id": "prod-stool", "duration_ms": 1.5}

    def test_no_context_key_without_extras(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert "context" not in entry
        assert entry["level"] == "INFO"

    def test_unknown_extras_are_ignored(self):
        entry = json.loads(JSONFormatter().format(_record(secret="x", fund_id="fund-overhead")))
        assert entry["context"] == {"fund_id": "fund-overhead"}


class TestDatabaseUrl:

    @pytest.mark.parametrize("url", [
        "postgres://u:p@db:5432/erp",
        "postgresql://u:p@db:5432/erp",
        "postgresql+asyncpg://u:p@db:5432/erp",
    ])
    def test_asyncpg_driver(self, url):
        assert normalize_database_url(url) == "postgresql+asyncpg://u:p@db:5432/erp"

    def test_empty_url_uses_placeholder(self):
        assert normalize_database_url("").startswith("postgresql+asyncpg://")
