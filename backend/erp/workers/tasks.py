"""
Celery Tasks — batch cost recalculation.

Each product is costed independently; a failing product is reported in the
task result and does not stop the rest of the batch.
"""
import logging
import asyncio
from typing import List, Optional

from erp.workers.celery_app import celery_app

logger = logging.getLogger("erp-celery")


def _run_async(coro):
    """Run an async coroutine in a sync Celery task context (new event loop)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _recalculate(product_ids: Optional[List[str]]) -> dict:
    from erp.db import AsyncSessionLocal, database_configured
    from erp.db.repository import InMemoryCatalogRepository, SqlCatalogRepository
    from erp.services.calculation_service import CalculationService
    from erp.services.unit_conversion import default_unit_cache

    async def service_for(repository):
        units = await default_unit_cache().get_async(repository.list_units)
        return CalculationService(repository, units)

    if not database_configured():
        service = await service_for(InMemoryCatalogRepository.from_seed())
        return (await service.recalculate_products(product_ids)).to_dict()

    async with AsyncSessionLocal() as session:
        service = await service_for(SqlCatalogRepository(session))
        result = await service.recalculate_products(product_ids)
        await session.commit()
        return result.to_dict()


@celery_app.task(bind=True, name="tasks.recalculate_products")
def recalculate_products(self, product_ids: Optional[List[str]] = None):
    """Recompute and store cached cost fields for ``product_ids`` (all products when empty)."""
    self.update_state(state="PROGRESS", meta={"step": "Recalculating products", "pct": 0})
    result = _run_async(_recalculate(product_ids))
    logger.info(
        f"Recalculation task done: {result['updated_count']} updated, "
        f"{result['failed_count']} failed",
        extra={"task_id": self.request.id},
    )
    return {"status": "success", **result}
