"""
Calculation error taxonomy and structured warnings.

Hard errors (materially wrong cost) abort a calculation and surface to the
caller.  Soft conditions are recovered locally and reported as
CalculationWarning entries on the result.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class CalculationError(Exception):
    """Base class for all engine failures surfaced to callers."""

    code: str = "calculation_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class UnitNotFoundError(CalculationError):
    code = "unit_not_found"


class IncompatibleUnitsError(CalculationError):
    code = "incompatible_units"


class FormulaEvaluationError(CalculationError):
    code = "formula_evaluation_failed"


class MaterialResolutionError(CalculationError):
    code = "material_resolution_failed"


class InvalidInputError(CalculationError):
    code = "invalid_input"


class ProductNotFoundError(CalculationError):
    code = "product_not_found"


class FundNotFoundError(CalculationError):
    code = "fund_not_found"


# Warning kinds
FORMULA_FALLBACK = "formula_fallback"
COMPONENT_FORMULA_FALLBACK = "component_formula_fallback"
INCLUDE_CONDITION_FAILED = "include_condition_failed"
UNIT_LABEL_MISSING = "unit_label_missing"
QUANTITIES_NOT_REDERIVED = "quantities_not_rederived"


@dataclass
class CalculationWarning:
    kind: str
    message: str
    source_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "source_id": self.source_id}


@dataclass
class WarningCollector:
    """Accumulates fail-open decisions for a single calculation."""

    items: List[CalculationWarning] = field(default_factory=list)

    def add(self, kind: str, message: str, source_id: Optional[str] = None) -> None:
        self.items.append(CalculationWarning(kind=kind, message=message, source_id=source_id))

    def kinds(self) -> List[str]:
        return [w.kind for w in self.items]

    def as_messages(self) -> List[str]:
        return [w.message for w in self.items]

    def __len__(self) -> int:
        return len(self.items)


def require_non_negative(value: float, field_name: str, **context: Any) -> float:
    """Reject negative numeric input at the engine boundary."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{field_name} must be a number", field=field_name, value=value, **context)
    if number != number or number < 0:
        raise InvalidInputError(f"{field_name} must be >= 0", field=field_name, value=value, **context)
    return number


def require_positive(value: float, field_name: str, **context: Any) -> float:
    number = require_non_negative(value, field_name, **context)
    if number == 0:
        raise InvalidInputError(f"{field_name} must be > 0", field=field_name, value=value, **context)
    return number
