"""
Tests for erp.services.unit_conversion — unit registry and conversions.

Covers:
    - Round-trip conversion across every compatible pair
    - Incompatible and unknown units
    - Alias lookup and derived area/volume symbols
    - Label fallback warning
    - UnitTableCache refresh behaviour
"""
import asyncio
import itertools

import pytest

from erp.services.errors import (
    IncompatibleUnitsError,
    UNIT_LABEL_MISSING,
    UnitNotFoundError,
    WarningCollector,
)
from erp.services.unit_conversion import (
    DEFAULT_UNITS,
    MeasurementUnit,
    UNIT_TYPES,
    UnitConversionTable,
    UnitTableCache,
)


class TestConvert:

    def test_cm_to_m(self, unit_table):
        assert unit_table.convert(250, "cm", "m") == pytest.approx(2.5)

    def test_tonne_to_kg(self, unit_table):
        assert unit_table.convert(1.2, "t", "kg") == pytest.approx(1200.0)

    def test_same_unit_is_identity(self, unit_table):
        assert unit_table.convert(7.123456789, "m", "m") == 7.123456789

    @pytest.mark.parametrize("unit_type", UNIT_TYPES)
    def test_round_trip_within_tolerance(self, unit_table, unit_type):
        """x -> other unit -> back lands within 1e-6 for every pair of the type."""
        units = unit_table.units_by_type(unit_type)
        for a, b in itertools.permutations(units, 2):
            for value in (1.0, 1.5, 123.456):
                there = unit_table.convert(value, a.symbol, b.symbol)
                back = unit_table.convert(there, b.symbol, a.symbol)
                assert abs(back - value) <= 1e-6, (a.symbol, b.symbol, value)

    def test_incompatible_types_raise(self, unit_table):
        with pytest.raises(IncompatibleUnitsError) as exc:
            unit_table.convert(5, "kg", "m")
        assert exc.value.code == "incompatible_units"
        assert exc.value.details["from_type"] == "weight"

    def test_unknown_unit_raises(self, unit_table):
        with pytest.raises(UnitNotFoundError):
            unit_table.convert(1, "furlong", "m")

    def test_detailed_result(self, unit_table):
        result = unit_table.convert_detailed(1500, "mm", "m")
        assert result.converted_value == pytest.approx(1.5)
        assert result.conversion_factor == pytest.approx(0.001)
        assert result.type == "length"
        assert result.to_dict()["to_unit"] == "m"


class TestLookup:

    def test_alias_resolves(self, unit_table):
        assert unit_table.get("мм").symbol == "mm"
        assert unit_table.get("sqm").symbol == "m²"
        assert unit_table.get("шт").symbol == "pcs"

    def test_are_compatible(self, unit_table):
        assert unit_table.are_compatible("cm", "mm")
        assert not unit_table.are_compatible("cm", "kg")
        assert not unit_table.are_compatible("cm", "nope")

    def test_area_symbol(self, unit_table):
        value, symbol = unit_table.area(2, 3, "cm")
        assert value == 6
        assert symbol == "cm²"

    def test_volume_symbol(self, unit_table):
        value, symbol = unit_table.volume(1, 2, 3, "m")
        assert value == 6
        assert symbol == "m³"

    def test_area_requires_length_unit(self, unit_table):
        with pytest.raises(IncompatibleUnitsError):
            unit_table.area(1, 1, "kg")

    def test_label_known(self, unit_table):
        assert unit_table.label("kg") == "Kilogram"

    def test_label_fallback_records_warning(self, unit_table):
        warnings = WarningCollector()
        assert unit_table.label("zz", warnings) == "zz"
        assert warnings.kinds() == [UNIT_LABEL_MISSING]

    def test_inactive_units_are_skipped(self):
        table = UnitConversionTable([
            MeasurementUnit("m", "Metre", "m", "length", "m", 1.0),
            MeasurementUnit("ft", "Foot", "ft", "length", "m", 0.3048, is_active=False),
        ])
        assert len(table) == 1
        assert table.find("ft") is None


class TestUnitTableCache:

    def test_no_loader_serves_defaults(self):
        cache = UnitTableCache()
        assert len(cache.get()) == len(DEFAULT_UNITS)

    def test_loader_replaces_table(self):
        rows = [MeasurementUnit("m", "Metre", "m", "length", "m", 1.0)]
        cache = UnitTableCache(loader=lambda: rows)
        assert len(cache.get()) == 1

    def test_failed_refresh_keeps_previous_table(self):
        def broken():
            raise RuntimeError("database unavailable")

        cache = UnitTableCache(loader=broken)
        table = cache.get()
        assert len(table) == len(DEFAULT_UNITS)

    def test_ttl_controls_reload(self):
        calls = []
        now = [0.0]

        def loader():
            calls.append(now[0])
            return DEFAULT_UNITS

        cache = UnitTableCache(loader=loader, ttl_seconds=60, clock=lambda: now[0])
        cache.get()
        now[0] = 30.0
        cache.get()
        assert len(calls) == 1
        now[0] = 61.0
        cache.get()
        assert len(calls) == 2

    def test_async_loader_adds_catalog_units(self):
        """A unit that only exists in the catalog converts once the cache is refreshed."""
        from erp.db.repository import InMemoryCatalogRepository

        yard = MeasurementUnit("u-yd", "Yard", "yd", "length", "m", 0.9144)
        repository = InMemoryCatalogRepository(units=list(DEFAULT_UNITS) + [yard])
        cache = UnitTableCache()
        with pytest.raises(UnitNotFoundError):
            cache.get().convert(10, "yd", "m")
        table = asyncio.run(cache.get_async(repository.list_units))
        assert table.convert(10, "yd", "m") == pytest.approx(9.144)
        assert not cache.is_stale()

    def test_async_refresh_failure_keeps_table(self):
        async def broken():
            raise RuntimeError("database unavailable")

        cache = UnitTableCache()
        table = asyncio.run(cache.get_async(broken))
        assert len(table) == len(DEFAULT_UNITS)
