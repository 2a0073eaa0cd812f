"""
Calculation API Routes

POST /api/products/{id}/calculate             — cost breakdown for a product
POST /api/products/{id}/components/calculate  — component-level breakdown
POST /api/products/calculate-by-dimensions    — dimension calculator
POST /api/products/recalculate                — refresh cached product costs (batch)
POST /api/orders/calculator                   — priced order-line snapshot
POST /api/orders/calculator/recalculate       — rescale an existing snapshot
"""
import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from erp.api.deps import get_calculation_service, http_error
from erp.config import CELERY_BROKER_URL, DEFAULT_LENGTH_UNIT, DEFAULT_VAT_RATE_PCT, DEFAULT_WEIGHT_UNIT
from erp.models.costing_models import Dimensions
from erp.services.calculation_service import CalculationService, OrderItemSnapshot
from erp.services.errors import CalculationError

router = APIRouter(tags=["Calculation"])
logger = logging.getLogger("erp-calculation-routes")


# ── Pydantic Models ─────────────────────────────────────────────────────────

class ProductCalculateRequest(BaseModel):
    quantity: float = Field(1.0, gt=0)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    overhead_rate_percent: Optional[float] = Field(None, ge=0)
    target_margin_percent: Optional[float] = Field(None, ge=0)
    manual_selling_price: Optional[float] = Field(None, ge=0)
    vat_rate_percent: float = Field(0.0, ge=0)


class ComponentCalculateRequest(BaseModel):
    quantity: float = Field(1.0, gt=0)
    parameters: Dict[str, Any] = Field(default_factory=dict)


class DimensionsModel(BaseModel):
    length: float = Field(0.0, ge=0)
    width: float = Field(0.0, ge=0)
    height: float = Field(0.0, ge=0)
    thickness: float = Field(0.0, ge=0)
    weight: float = Field(0.0, ge=0)
    length_unit: str = DEFAULT_LENGTH_UNIT
    weight_unit: str = DEFAULT_WEIGHT_UNIT


class DimensionCalculateRequest(BaseModel):
    product_id: str
    dimensions: DimensionsModel
    quantity: float = Field(1.0, gt=0)
    custom_specs: Dict[str, Any] = Field(default_factory=dict)


class RecalculateProductsRequest(BaseModel):
    product_ids: Optional[List[str]] = None
    run_async: bool = True


class OrderFund(BaseModel):
    name: str
    fund_type: Literal["percent", "fixed"] = "percent"
    fund_value: float = Field(0.0, ge=0)
    fund_id: Optional[str] = None


class OrderCalculatorRequest(BaseModel):
    product_id: str
    quantity: float = Field(1.0, gt=0)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    funds: List[OrderFund] = Field(default_factory=list)
    markup_type: Literal["percent", "absolute"] = "percent"
    markup_value: Optional[float] = Field(None, ge=0)
    manual_price: Optional[float] = Field(None, ge=0)
    vat_rate_percent: float = Field(DEFAULT_VAT_RATE_PCT, ge=0)
    apply_vat: bool = True


class OrderRecalculateRequest(BaseModel):
    snapshot: Dict[str, Any]
    quantity: float = Field(..., gt=0)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    manual_price: Optional[float] = Field(None, ge=0)


# ── Products ────────────────────────────────────────────────────────────────

@router.post("/api/products/calculate-by-dimensions")
async def calculate_by_dimensions(
    req: DimensionCalculateRequest,
    service: CalculationService = Depends(get_calculation_service),
):
    try:
        result = await service.calculate_by_dimensions(
            req.product_id,
            Dimensions(**req.dimensions.model_dump()),
            req.quantity,
            req.custom_specs,
        )
    except CalculationError as e:
        raise http_error(e)
    return result.to_dict()


@router.post("/api/products/recalculate")
async def recalculate_products(
    req: RecalculateProductsRequest,
    service: CalculationService = Depends(get_calculation_service),
):
    """Refresh cached cost fields; queued on Celery when a broker is configured."""
    if req.run_async and CELERY_BROKER_URL:
        from erp.workers.tasks import recalculate_products as recalculate_task

        task = recalculate_task.delay(req.product_ids)
        logger.info(f"Queued product recalculation task {task.id}")
        return {"status": "queued", "task_id": task.id}

    result = await service.recalculate_products(req.product_ids)
    return {"status": "completed", **result.to_dict()}


@router.post("/api/products/{product_id}/calculate")
async def calculate_product(
    product_id: str,
    req: ProductCalculateRequest,
    service: CalculationService = Depends(get_calculation_service),
):
    try:
        breakdown = await service.calculate_product_cost(
            product_id,
            req.quantity,
            req.parameters,
            overhead_rate_percent=req.overhead_rate_percent,
            target_margin_percent=req.target_margin_percent,
            vat_rate_percent=req.vat_rate_percent,
            manual_selling_price=req.manual_selling_price,
        )
    except CalculationError as e:
        raise http_error(e)
    return breakdown.to_dict()


@router.post("/api/products/{product_id}/components/calculate")
async def calculate_components(
    product_id: str,
    req: ComponentCalculateRequest,
    service: CalculationService = Depends(get_calculation_service),
):
    try:
        result = await service.calculate_component_costs(product_id, req.quantity, req.parameters)
    except CalculationError as e:
        raise http_error(e)
    return result.to_dict()


# ── Order calculator ────────────────────────────────────────────────────────

@router.post("/api/orders/calculator")
async def order_calculator(
    req: OrderCalculatorRequest,
    service: CalculationService = Depends(get_calculation_service),
):
    try:
        snapshot = await service.build_order_item(
            req.product_id,
            req.quantity,
            req.parameters,
            vat_rate_percent=req.vat_rate_percent,
            extra_funds=[f.model_dump() for f in req.funds],
            markup_type=req.markup_type,
            markup_value=req.markup_value,
            manual_price=req.manual_price,
            apply_vat=req.apply_vat,
        )
    except CalculationError as e:
        raise http_error(e)
    return snapshot.to_dict()


@router.post("/api/orders/calculator/recalculate")
async def order_recalculate(
    req: OrderRecalculateRequest,
    service: CalculationService = Depends(get_calculation_service),
):
    try:
        snapshot = OrderItemSnapshot.from_dict(req.snapshot)
        result = await service.recalculate_order_item(
            snapshot, req.quantity, req.parameters, manual_price=req.manual_price
        )
    except CalculationError as e:
        raise http_error(e)
    return result.to_dict()
