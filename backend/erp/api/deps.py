"""FastAPI dependency injection — repository, calculation service and error mapping."""
import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, status

from erp.db import AsyncSessionLocal, database_configured
from erp.db.repository import CatalogRepository, InMemoryCatalogRepository, SqlCatalogRepository
from erp.services.calculation_service import CalculationService
from erp.services.errors import CalculationError, FundNotFoundError, ProductNotFoundError
from erp.services.unit_conversion import UnitConversionTable, default_unit_cache

logger = logging.getLogger("erp-api")

_memory_repository: Optional[InMemoryCatalogRepository] = None


def memory_repository() -> InMemoryCatalogRepository:
    """Process-wide demo catalog used when no DATABASE_URL is configured."""
    global _memory_repository
    if _memory_repository is None:
        _memory_repository = InMemoryCatalogRepository.from_seed()
    return _memory_repository


async def get_repository() -> AsyncGenerator[CatalogRepository, None]:
    if not database_configured():
        yield memory_repository()
        return
    async with AsyncSessionLocal() as session:
        try:
            yield SqlCatalogRepository(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_unit_table(
    repository: CatalogRepository = Depends(get_repository),
) -> UnitConversionTable:
    """Unit table refreshed from the catalog's measurement units once the cache TTL expires."""
    return await default_unit_cache().get_async(repository.list_units)


def get_calculation_service(
    repository: CatalogRepository = Depends(get_repository),
    units: UnitConversionTable = Depends(get_unit_table),
) -> CalculationService:
    return CalculationService(repository, units)


def http_error(exc: CalculationError) -> HTTPException:
    """Translate an engine error into the HTTP response routes raise."""
    if isinstance(exc, (ProductNotFoundError, FundNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_dict())
    logger.warning(f"Calculation rejected: {exc.code}: {exc.message}")
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.to_dict())
