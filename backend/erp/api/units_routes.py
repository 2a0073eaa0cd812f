"""Measurement unit API — list units and convert values between them."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from erp.api.deps import get_unit_table, http_error
from erp.services.errors import CalculationError
from erp.services.unit_conversion import UNIT_TYPES, UnitConversionTable

router = APIRouter(prefix="/api/measurement-units", tags=["Measurement Units"])
logger = logging.getLogger("erp-units-routes")


class ConvertRequest(BaseModel):
    value: float
    from_unit: str
    to_unit: str


@router.get("")
async def list_units(
    type: Optional[str] = Query(None, description="length | area | volume | weight | count"),
    units: UnitConversionTable = Depends(get_unit_table),
):
    rows = units.units_by_type(type) if type else units.all()
    return {
        "types": list(UNIT_TYPES),
        "units": [
            {
                "id": u.id,
                "name": u.name,
                "symbol": u.symbol,
                "type": u.type,
                "base_unit": u.base_unit,
                "conversion_factor": u.conversion_factor,
                "aliases": list(u.aliases),
            }
            for u in rows
        ],
    }


@router.post("/convert")
async def convert(req: ConvertRequest, units: UnitConversionTable = Depends(get_unit_table)):
    try:
        result = units.convert_detailed(req.value, req.from_unit, req.to_unit)
    except CalculationError as e:
        raise http_error(e)
    return result.to_dict()
