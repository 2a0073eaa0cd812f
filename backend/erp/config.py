"""
Calculation defaults and environment settings — single source of truth.

Import from here in services and routes rather than hardcoding values.
"""
from __future__ import annotations

import os

# ── Pricing defaults ──────────────────────────────────────────────────────────
DEFAULT_TARGET_MARGIN_PCT: float = 20.0      # % markup on total cost
DEFAULT_VAT_RATE_PCT: float = 20.0           # order lines
DEFAULT_CURRENCY: str = "RUB"

# ── Rounding ──────────────────────────────────────────────────────────────────
MONEY_PRECISION: int = 2                     # applied at the output boundary only
CONVERSION_PRECISION: int = 6                # unit conversion results
QUANTITY_PRECISION: int = 6                  # quantities in serialized breakdowns

# ── Dimension calculator ──────────────────────────────────────────────────────
DEFAULT_LENGTH_UNIT: str = "cm"
DEFAULT_WEIGHT_UNIT: str = "kg"
AREA_UNIT: str = "m²"
VOLUME_UNIT: str = "m³"

# ── Unit table cache ──────────────────────────────────────────────────────────
UNIT_CACHE_TTL_SECONDS: float = float(os.getenv("UNIT_CACHE_TTL_SECONDS", "300"))

# ── Formula engine ────────────────────────────────────────────────────────────
MAX_FORMULA_LENGTH: int = 1000
FORMULA_CACHE_SIZE: int = 512

# ── Runtime ───────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON: bool = os.getenv("LOG_FORMAT", "json").lower() != "text"
CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")
    if o.strip()
]
CELERY_BROKER_URL: str = os.getenv("CELERY_BROKER_URL", "")
CELERY_RESULT_BACKEND: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

# ── Catalog database ──────────────────────────────────────────────────────────
DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "20"))
DB_POOL_TIMEOUT_SECONDS: float = float(os.getenv("DB_POOL_TIMEOUT_SECONDS", "5"))
DB_RESET_ON_STARTUP: bool = os.getenv("DB_RESET_ON_STARTUP", "").lower() in ("1", "true", "yes")
DB_SEED_ON_STARTUP: bool = os.getenv("DB_SEED_ON_STARTUP", "true").lower() in ("1", "true", "yes")
