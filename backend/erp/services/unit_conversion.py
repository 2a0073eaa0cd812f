"""
Unit Conversion Table — registry of measurement units grouped by physical type.

Every unit carries a conversion factor to the canonical unit of its type
(m, m², m³, kg, pcs).  Conversion goes through the canonical unit:

    converted = value * from.conversion_factor / to.conversion_factor

Units of different type (or different canonical base) are never converted;
the lookup fails with IncompatibleUnitsError instead of passing the value
through unchanged.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from erp.config import CONVERSION_PRECISION, UNIT_CACHE_TTL_SECONDS
from erp.services.errors import (
    IncompatibleUnitsError,
    UNIT_LABEL_MISSING,
    UnitNotFoundError,
    WarningCollector,
)

logger = logging.getLogger("erp-units")

LENGTH = "length"
AREA = "area"
VOLUME = "volume"
WEIGHT = "weight"
COUNT = "count"
UNIT_TYPES: Tuple[str, ...] = (LENGTH, AREA, VOLUME, WEIGHT, COUNT)


@dataclass(frozen=True)
class MeasurementUnit:
    id: str
    name: str
    symbol: str
    type: str
    base_unit: str
    conversion_factor: float
    aliases: Tuple[str, ...] = ()
    is_active: bool = True


@dataclass
class ConversionResult:
    original_value: float
    converted_value: float
    from_unit: str
    to_unit: str
    conversion_factor: float
    type: str
    formula: str = ""

    def to_dict(self) -> Dict:
        return {
            "original_value": self.original_value,
            "converted_value": self.converted_value,
            "from_unit": self.from_unit,
            "to_unit": self.to_unit,
            "conversion_factor": self.conversion_factor,
            "type": self.type,
            "formula": self.formula,
        }


# ── Default registry (mirrors the measurement-unit seed) ──────────────────────
#   (id, name, symbol, type, base, factor, aliases)
DEFAULT_UNITS: List[MeasurementUnit] = [
    MeasurementUnit("mm", "Millimetre", "mm", LENGTH, "m", 0.001, ("мм",)),
    MeasurementUnit("cm", "Centimetre", "cm", LENGTH, "m", 0.01, ("см",)),
    MeasurementUnit("m", "Metre", "m", LENGTH, "m", 1.0, ("м", "lm", "пог.м")),
    MeasurementUnit("mm2", "Square millimetre", "mm²", AREA, "m²", 0.000001, ("мм²", "mm2")),
    MeasurementUnit("cm2", "Square centimetre", "cm²", AREA, "m²", 0.0001, ("см²", "cm2")),
    MeasurementUnit("m2", "Square metre", "m²", AREA, "m²", 1.0, ("м²", "m2", "sqm")),
    MeasurementUnit("mm3", "Cubic millimetre", "mm³", VOLUME, "m³", 0.000000001, ("мм³", "mm3")),
    MeasurementUnit("cm3", "Cubic centimetre", "cm³", VOLUME, "m³", 0.000001, ("см³", "cm3")),
    MeasurementUnit("l", "Litre", "l", VOLUME, "m³", 0.001, ("л",)),
    MeasurementUnit("m3", "Cubic metre", "m³", VOLUME, "m³", 1.0, ("м³", "m3")),
    MeasurementUnit("g", "Gram", "g", WEIGHT, "kg", 0.001, ("г",)),
    MeasurementUnit("kg", "Kilogram", "kg", WEIGHT, "kg", 1.0, ("кг",)),
    MeasurementUnit("t", "Tonne", "t", WEIGHT, "kg", 1000.0, ("т",)),
    MeasurementUnit("pcs", "Piece", "pcs", COUNT, "pcs", 1.0, ("шт", "pc", "nr")),
    MeasurementUnit("pack", "Pack", "pack", COUNT, "pcs", 1.0, ("упак",)),
    MeasurementUnit("set", "Set", "set", COUNT, "pcs", 1.0, ("компл",)),
]

# Length symbol -> derived area / volume symbol
_AREA_MAP: Dict[str, str] = {
    "mm": "mm²", "cm": "cm²", "m": "m²",
    "мм": "мм²", "см": "см²", "м": "м²",
}
_VOLUME_MAP: Dict[str, str] = {
    "mm": "mm³", "cm": "cm³", "m": "m³",
    "мм": "мм³", "см": "см³", "м": "м³",
}


def _precision_for(ratio: float) -> int:
    """
    Decimal places kept for a conversion by ``ratio``.

    Six digits are kept relative to the source unit, so converting into a
    much larger unit (mm³ -> m³) keeps the extra places a reverse conversion
    needs to land within 1e-6 of the original value.
    """
    if ratio >= 1:
        return CONVERSION_PRECISION
    return CONVERSION_PRECISION + math.ceil(-math.log10(ratio))


class UnitConversionTable:
    """
    Read-only lookup of measurement units.

    The table is immutable once built; refreshing means building a new table
    (see UnitTableCache), so concurrent readers never need a lock.
    """

    def __init__(self, units: Optional[Iterable[MeasurementUnit]] = None) -> None:
        self._units: List[MeasurementUnit] = [
            u for u in (DEFAULT_UNITS if units is None else units) if u.is_active
        ]
        self._index: Dict[str, MeasurementUnit] = {}
        for unit in self._units:
            for key in (unit.symbol, unit.name, unit.id, *unit.aliases):
                # First registration wins so symbols are never shadowed by aliases
                self._index.setdefault(key, unit)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._units)

    def all(self) -> List[MeasurementUnit]:
        return list(self._units)

    def find(self, identifier: Optional[str]) -> Optional[MeasurementUnit]:
        """Find a unit by symbol, name, id or alias."""
        if not identifier:
            return None
        return self._index.get(identifier.strip())

    def get(self, identifier: Optional[str]) -> MeasurementUnit:
        unit = self.find(identifier)
        if unit is None:
            raise UnitNotFoundError(f"Unknown measurement unit: {identifier!r}", unit=identifier)
        return unit

    def units_by_type(self, unit_type: str) -> List[MeasurementUnit]:
        return [u for u in self._units if u.type == unit_type]

    def are_compatible(self, a: str, b: str) -> bool:
        unit_a, unit_b = self.find(a), self.find(b)
        if unit_a is None or unit_b is None:
            return False
        return unit_a.type == unit_b.type and unit_a.base_unit == unit_b.base_unit

    def label(self, symbol: str, warnings: Optional[WarningCollector] = None) -> str:
        """Display label for a symbol; falls back to the raw symbol."""
        unit = self.find(symbol)
        if unit is None:
            logger.warning("No label for unit symbol %r, using raw symbol", symbol)
            if warnings is not None:
                warnings.add(UNIT_LABEL_MISSING, f"Unknown unit symbol '{symbol}' shown as-is")
            return symbol
        return unit.name

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def _pair(self, from_unit: str, to_unit: str) -> Tuple[MeasurementUnit, MeasurementUnit]:
        src = self.get(from_unit)
        dst = self.get(to_unit)
        if src.type != dst.type or src.base_unit != dst.base_unit:
            raise IncompatibleUnitsError(
                f"Cannot convert {src.symbol} ({src.type}) to {dst.symbol} ({dst.type})",
                from_unit=src.symbol,
                to_unit=dst.symbol,
                from_type=src.type,
                to_type=dst.type,
            )
        return src, dst

    def convert(self, value: float, from_unit: str, to_unit: str) -> float:
        """Convert ``value`` between two compatible units (6-digit precision)."""
        if from_unit == to_unit:
            self.get(from_unit)
            return float(value)
        src, dst = self._pair(from_unit, to_unit)
        if src is dst:
            return float(value)
        ratio = src.conversion_factor / dst.conversion_factor
        return round(float(value) * ratio, _precision_for(ratio))

    def convert_detailed(self, value: float, from_unit: str, to_unit: str) -> ConversionResult:
        src, dst = self._pair(from_unit, to_unit)
        converted = self.convert(value, from_unit, to_unit)
        return ConversionResult(
            original_value=float(value),
            converted_value=converted,
            from_unit=src.symbol,
            to_unit=dst.symbol,
            conversion_factor=src.conversion_factor / dst.conversion_factor,
            type=src.type,
            formula=f"{value} {src.symbol} = {converted} {dst.symbol}",
        )

    def area(self, length: float, width: float, unit: str) -> Tuple[float, str]:
        """Area of a length x width rectangle in the matching square unit."""
        src = self.get(unit)
        if src.type != LENGTH:
            raise IncompatibleUnitsError(
                f"Area needs a length unit, got {src.symbol} ({src.type})", unit=src.symbol
            )
        return float(length) * float(width), _AREA_MAP.get(unit, f"{unit}²")

    def volume(self, length: float, width: float, height: float, unit: str) -> Tuple[float, str]:
        src = self.get(unit)
        if src.type != LENGTH:
            raise IncompatibleUnitsError(
                f"Volume needs a length unit, got {src.symbol} ({src.type})", unit=src.symbol
            )
        return float(length) * float(width) * float(height), _VOLUME_MAP.get(unit, f"{unit}³")


class UnitTableCache:
    """
    Holds the current UnitConversionTable and rebuilds it after a TTL.

    ``loader`` returns fresh MeasurementUnit rows; ``get_async`` takes a
    coroutine loader instead (the catalog repository's ``list_units``).
    A failed refresh keeps serving the previous table.
    """

    def __init__(
        self,
        loader: Optional[Callable[[], Iterable[MeasurementUnit]]] = None,
        ttl_seconds: float = UNIT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._table = UnitConversionTable()
        self._loaded_at: Optional[float] = None
        self._refresh_lock = threading.Lock()

    def is_stale(self) -> bool:
        return self._loaded_at is None or (self._clock() - self._loaded_at) >= self._ttl

    def get(self, force_refresh: bool = False) -> UnitConversionTable:
        if self._loader is not None and (force_refresh or self.is_stale()):
            self.refresh()
        return self._table

    async def get_async(
        self,
        loader: Callable[[], Awaitable[Iterable[MeasurementUnit]]],
        force_refresh: bool = False,
    ) -> UnitConversionTable:
        if not (force_refresh or self.is_stale()):
            return self._table
        # Only one refresher at a time; readers keep using the current table.
        if not self._refresh_lock.acquire(blocking=False):
            return self._table
        try:
            self._install(await loader())
        except Exception as e:
            logger.error(f"Unit table refresh failed, keeping previous table: {e}")
            self._loaded_at = self._clock()
        finally:
            self._refresh_lock.release()
        return self._table

    def refresh(self) -> None:
        if not self._refresh_lock.acquire(blocking=False):
            return
        try:
            self._install(self._loader() if self._loader else DEFAULT_UNITS)
        except Exception as e:
            logger.error(f"Unit table refresh failed, keeping previous table: {e}")
            self._loaded_at = self._clock()
        finally:
            self._refresh_lock.release()

    def _install(self, units: Iterable[MeasurementUnit]) -> None:
        units = list(units)
        if units:
            self._table = UnitConversionTable(units)
        self._loaded_at = self._clock()
        logger.info("Unit table refreshed (%d units)", len(self._table))

    def clear(self) -> None:
        self._loaded_at = None


_default_cache = UnitTableCache()


def default_unit_cache() -> UnitTableCache:
    """Process-wide unit cache; API dependencies and workers refresh it from the catalog."""
    return _default_cache


def default_unit_table() -> UnitConversionTable:
    return _default_cache.get()
