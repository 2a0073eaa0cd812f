"""
Production ERP API
FastAPI backend for product cost calculation: BOM resolution, overhead funds,
pricing and order-line snapshots. Async PostgreSQL when DATABASE_URL is set,
in-memory demo catalog otherwise; Celery/Redis for batch recalculation.
"""
import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env before reading settings
load_dotenv()

from erp import config  # noqa: E402
from erp.services.logging_config import setup_logging  # noqa: E402
from erp.services.middleware import RequestTimingMiddleware  # noqa: E402

setup_logging(level=config.LOG_LEVEL, json_output=config.LOG_JSON)
logger = logging.getLogger("erp-api")

VERSION = "1.0.0"

# Startup validation
for var in ["DATABASE_URL", "CELERY_BROKER_URL"]:
    if not os.getenv(var):
        logger.info(f"Optional env var not set: {var}, running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        from erp.db import init_db
        await init_db()
    except Exception as e:
        logger.warning(f"Table init warning: {e}")
    yield
    from erp.db import engine
    await engine.dispose()


app = FastAPI(
    title="Production ERP Calculation API",
    version=VERSION,
    description="Product cost calculation for furniture and advertising production",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from erp.api.calculation_routes import router as calculation_router  # noqa: E402
from erp.api.units_routes import router as units_router  # noqa: E402
from erp.api.formula_routes import router as formula_router  # noqa: E402
from erp.api.fund_routes import router as fund_router  # noqa: E402

app.include_router(calculation_router)
app.include_router(units_router)
app.include_router(formula_router)
app.include_router(fund_router)


@app.get("/health")
async def health_check():
    from erp.db import database_configured

    return {
        "status": "active",
        "version": VERSION,
        "database_configured": database_configured(),
        "celery_configured": bool(config.CELERY_BROKER_URL),
    }
