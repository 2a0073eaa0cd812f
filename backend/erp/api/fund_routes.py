"""Fund planning API — recompute category percentages and fund balances."""
import logging

from fastapi import APIRouter, Depends

from erp.api.deps import get_repository, http_error
from erp.db.repository import CatalogRepository
from erp.services.errors import CalculationError
from erp.services.fund_engine import recalculate_fund

router = APIRouter(prefix="/api/funds", tags=["Funds"])
logger = logging.getLogger("erp-fund-routes")


@router.post("/{fund_id}/recalculate")
async def recalculate(fund_id: str, repository: CatalogRepository = Depends(get_repository)):
    try:
        fund = await repository.get_fund(fund_id)
        plan = recalculate_fund(fund)
        await repository.save_fund_plan(plan)
    except CalculationError as e:
        raise http_error(e)
    logger.info(
        f"Fund {fund.name} recalculated: remaining {plan.remaining_amount:.2f}",
        extra={"fund_id": fund_id},
    )
    return {"success": True, "data": plan.to_dict()}
