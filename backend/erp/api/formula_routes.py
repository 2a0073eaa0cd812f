"""Formula authoring API — validate and trial-evaluate product formulas."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from erp.api.deps import http_error
from erp.services import formula_engine
from erp.services.errors import CalculationError

router = APIRouter(prefix="/api/formulas", tags=["Formulas"])
logger = logging.getLogger("erp-formula-routes")


class ValidateRequest(BaseModel):
    expression: str
    allowed_names: Optional[List[str]] = None


class EvaluateRequest(BaseModel):
    expression: str
    context: Dict[str, Any] = Field(default_factory=dict)


@router.post("/validate")
async def validate_formula(req: ValidateRequest):
    check = formula_engine.validate(req.expression, req.allowed_names)
    return {**check.to_dict(), "functions": formula_engine.available_functions()}


@router.post("/evaluate")
async def evaluate_formula(req: EvaluateRequest):
    try:
        value = formula_engine.evaluate(req.expression, req.context)
    except CalculationError as e:
        raise http_error(e)
    return {"expression": req.expression, "result": value}
