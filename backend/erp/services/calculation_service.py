"""
CalculationService — the single entry point for every cost calculation.

Direct product calculation, component breakdowns, the dimension calculator,
order-line snapshots and batch recalculation all run through the same
BOMEngine -> CostAggregator -> PricingEngine pipeline, so they never drift
apart in rounding or overhead policy.

The ``cost_*`` methods are pure and synchronous over value objects; the
``calculate_*`` coroutines fetch records from the repository first.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from erp.config import (
    DEFAULT_TARGET_MARGIN_PCT,
    DEFAULT_VAT_RATE_PCT,
    MONEY_PRECISION,
    QUANTITY_PRECISION,
)
from erp.db.repository import CatalogRepository
from erp.models.costing_models import CachedCosts, Dimensions, Product
from erp.services.bom_engine import (
    BOMEngine,
    ComponentResolution,
    DimensionMetrics,
    LaborLine,
    MaterialLine,
)
from erp.services.costing_engine import CostAggregator, CostBreakdown
from erp.services.errors import (
    CalculationError,
    QUANTITIES_NOT_REDERIVED,
    InvalidInputError,
    WarningCollector,
    require_positive,
)
from erp.services.pricing_engine import MARKUP_PERCENT, LinePricing, PricingEngine
from erp.services.unit_conversion import UnitConversionTable, default_unit_table

logger = logging.getLogger("erp-calc")

FUND_PERCENT = "percent"    # percent of the line's direct cost
FUND_FIXED = "fixed"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class ProductCalculationResult:
    product_id: str
    product_name: str
    total_quantity: float
    components: List[ComponentResolution]
    breakdown: CostBreakdown

    @property
    def total_cost(self) -> float:
        return self.breakdown.total_cost

    @property
    def total_material_quantity(self) -> Dict[str, float]:
        """Effective quantity per material id, summed over components (units differ per material)."""
        totals: Dict[str, float] = {}
        for component in self.components:
            for line in component.materials:
                totals[line.material_id] = totals.get(line.material_id, 0.0) + line.effective_quantity
        return totals

    def to_dict(self) -> Dict[str, Any]:
        costs = self.breakdown.to_dict()
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "total_quantity": self.total_quantity,
            "components": [c.to_dict() for c in self.components],
            "total_material_quantity": {
                material_id: round(qty, QUANTITY_PRECISION)
                for material_id, qty in self.total_material_quantity.items()
            },
            "total_material_cost": costs["total_material_cost"],
            "total_labor_cost": costs["total_labor_cost"],
            "total_overhead_cost": costs["total_overhead_cost"],
            "total_cost": costs["total_cost"],
            "pricing": costs.get("pricing"),
            "warnings": costs["warnings"],
            "warning_details": costs["warning_details"],
        }


@dataclass
class DimensionCalculationResult:
    product_id: str
    product_name: str
    quantity: float
    dimensions: Dimensions
    metrics: DimensionMetrics
    breakdown: CostBreakdown

    @property
    def production_time(self) -> float:
        return sum(l.time for l in self.breakdown.labor_costs)

    def to_dict(self) -> Dict[str, Any]:
        costs = self.breakdown.to_dict()
        pricing = self.breakdown.pricing
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "dimensions": {
                "length": self.dimensions.length,
                "width": self.dimensions.width,
                "height": self.dimensions.height,
                "thickness": self.dimensions.thickness,
                "weight": self.dimensions.weight,
                "length_unit": self.dimensions.length_unit,
                "weight_unit": self.dimensions.weight_unit,
            },
            "calculated": {
                "area": round(self.metrics.area, QUANTITY_PRECISION),
                "volume": round(self.metrics.volume, QUANTITY_PRECISION),
                "weight": round(self.metrics.weight, QUANTITY_PRECISION),
            },
            "materials": costs["material_costs"],
            "work_types": costs["labor_costs"],
            "funds": costs["fund_costs"],
            "total_production_time": round(self.production_time, QUANTITY_PRECISION),
            "material_cost": costs["total_material_cost"],
            "labor_cost": costs["total_labor_cost"],
            "overhead_cost": costs["total_overhead_cost"],
            "total_cost": costs["total_cost"],
            "selling_price": round(pricing.selling_price, MONEY_PRECISION),
            "profit_margin_percent": pricing.margin_percent,
            "profit_amount": round(pricing.profit_amount, MONEY_PRECISION),
            "warnings": costs["warnings"],
            "warning_details": costs["warning_details"],
        }


@dataclass
class SnapshotLine:
    """A priced line frozen at calculation time (name, unit and price copied)."""

    source_id: str
    name: str
    unit: str
    price: float
    per_unit_quantity: float
    quantity: float
    usage_id: Optional[str] = None  # BOM usage the line was resolved from

    @property
    def cost(self) -> float:
        return self.quantity * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "name": self.name,
            "unit": self.unit,
            "price": self.price,
            "per_unit_quantity": self.per_unit_quantity,
            "quantity": self.quantity,
            "cost": round(self.cost, MONEY_PRECISION),
            "usage_id": self.usage_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SnapshotLine":
        return cls(
            source_id=str(data["source_id"]),
            name=str(data.get("name", "")),
            unit=str(data.get("unit", "")),
            price=float(data["price"]),
            per_unit_quantity=float(data["per_unit_quantity"]),
            quantity=float(data["quantity"]),
            usage_id=data.get("usage_id"),
        )


@dataclass
class FundSnapshot:
    name: str
    fund_type: str                  # "fixed" amount or "percent" of direct cost
    fund_value: float
    amount: float
    fund_id: Optional[str] = None
    per_unit: bool = False          # fixed amount scales with quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fund_id": self.fund_id,
            "name": self.name,
            "fund_type": self.fund_type,
            "fund_value": self.fund_value,
            "amount": round(self.amount, MONEY_PRECISION),
            "per_unit": self.per_unit,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FundSnapshot":
        return cls(
            fund_id=data.get("fund_id"),
            name=str(data.get("name", "")),
            fund_type=str(data.get("fund_type", FUND_FIXED)),
            fund_value=float(data.get("fund_value", 0.0)),
            amount=float(data.get("amount", 0.0)),
            per_unit=bool(data.get("per_unit", False)),
        )


@dataclass
class OrderItemSnapshot:
    product_id: str
    product_name: str
    unit: str
    quantity: float
    effective_quantity: float
    parameters: Dict[str, Any]
    materials: List[SnapshotLine]
    work_types: List[SnapshotLine]
    funds: List[FundSnapshot]
    warnings: List[str] = field(default_factory=list)
    pricing: Optional[LinePricing] = None

    @property
    def material_cost(self) -> float:
        return sum(m.cost for m in self.materials)

    @property
    def labor_cost(self) -> float:
        return sum(w.cost for w in self.work_types)

    @property
    def overhead_cost(self) -> float:
        return sum(f.amount for f in self.funds)

    @property
    def total_cost(self) -> float:
        return self.material_cost + self.labor_cost + self.overhead_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit": self.unit,
            "quantity": self.quantity,
            "effective_quantity": self.effective_quantity,
            "parameters": dict(self.parameters),
            "materials": [m.to_dict() for m in self.materials],
            "work_types": [w.to_dict() for w in self.work_types],
            "funds": [f.to_dict() for f in self.funds],
            "material_cost": round(self.material_cost, MONEY_PRECISION),
            "labor_cost": round(self.labor_cost, MONEY_PRECISION),
            "overhead_cost": round(self.overhead_cost, MONEY_PRECISION),
            "total_cost": round(self.total_cost, MONEY_PRECISION),
            "pricing": self.pricing.to_dict() if self.pricing else None,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OrderItemSnapshot":
        pricing = data.get("pricing") or {}
        try:
            return cls(
                product_id=str(data["product_id"]),
                product_name=str(data.get("product_name", "")),
                unit=str(data.get("unit", "pcs")),
                quantity=float(data["quantity"]),
                effective_quantity=float(data["effective_quantity"]),
                parameters=dict(data.get("parameters") or {}),
                materials=[SnapshotLine.from_dict(m) for m in data.get("materials", [])],
                work_types=[SnapshotLine.from_dict(w) for w in data.get("work_types", [])],
                funds=[FundSnapshot.from_dict(f) for f in data.get("funds", [])],
                pricing=LinePricing(
                    quantity=float(data["quantity"]),
                    unit_cost=float(pricing.get("unit_cost", 0.0)),
                    line_cost=float(pricing.get("line_cost", 0.0)),
                    unit_price=float(pricing.get("unit_price", 0.0)),
                    price_without_vat=float(pricing.get("price_without_vat", 0.0)),
                    vat_rate_percent=float(pricing.get("vat_rate_percent", 0.0)),
                    vat_amount=float(pricing.get("vat_amount", 0.0)),
                    price_with_vat=float(pricing.get("price_with_vat", 0.0)),
                    markup_type=str(pricing.get("markup_type", MARKUP_PERCENT)),
                    markup_value=float(pricing.get("markup_value", 0.0)),
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(f"Malformed order item snapshot: {e}") from e


@dataclass
class BatchResult:
    updated: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated": self.updated,
            "failed": self.failed,
            "updated_count": len(self.updated),
            "failed_count": len(self.failed),
        }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class CalculationService:

    def __init__(
        self,
        repository: CatalogRepository,
        units: Optional[UnitConversionTable] = None,
    ) -> None:
        self.repository = repository
        self.units = units or default_unit_table()
        self.bom = BOMEngine(self.units)
        self.aggregator = CostAggregator()
        self.pricing = PricingEngine()

    # ── Pure calculations over value objects ─────────────────────────────────

    def cost_product(
        self,
        product: Product,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        category_planned_amounts: Optional[Mapping[str, float]] = None,
        overhead_rate_percent: Optional[float] = None,
        target_margin_percent: Optional[float] = None,
        vat_rate_percent: float = 0.0,
        manual_selling_price: Optional[float] = None,
    ) -> CostBreakdown:
        quantity = require_positive(quantity, "quantity")
        warnings = WarningCollector()
        params = self.bom.validate_parameters(product, parameters)

        effective = self.bom.effective_quantity(product, quantity, params, warnings)
        materials, labor = self._bom_lines(product, quantity, params, effective, warnings)

        breakdown = self.aggregator.aggregate(
            materials,
            labor,
            product.fund_usages,
            category_planned_amounts,
            quantity=quantity,
            overhead_rate_percent=overhead_rate_percent or 0.0,
        )
        breakdown.effective_quantity = effective
        breakdown.product_id = product.id
        breakdown.product_name = product.name
        breakdown.warnings = list(warnings.items)
        breakdown.pricing = self.pricing.price(
            breakdown.total_cost,
            target_margin_percent=self._margin(product, target_margin_percent),
            manual_selling_price=manual_selling_price,
            vat_rate_percent=vat_rate_percent,
        )
        return breakdown

    def cost_components(
        self,
        product: Product,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        category_planned_amounts: Optional[Mapping[str, float]] = None,
    ) -> ProductCalculationResult:
        quantity = require_positive(quantity, "quantity")
        warnings = WarningCollector()
        params = self.bom.validate_parameters(product, parameters)
        components = self.bom.resolve_components(product, quantity, params, warnings)

        breakdown = self.aggregator.aggregate(
            [m for c in components for m in c.materials],
            [l for c in components for l in c.labor],
            product.fund_usages,
            category_planned_amounts,
            quantity=quantity,
        )
        breakdown.effective_quantity = quantity
        breakdown.product_id = product.id
        breakdown.product_name = product.name
        breakdown.warnings = list(warnings.items)
        breakdown.pricing = self.pricing.price(
            breakdown.total_cost, target_margin_percent=self._margin(product, None)
        )
        return ProductCalculationResult(
            product_id=product.id,
            product_name=product.name,
            total_quantity=quantity,
            components=components,
            breakdown=breakdown,
        )

    def cost_by_dimensions(
        self,
        product: Product,
        dimensions: Dimensions,
        quantity: float = 1.0,
        custom_specs: Optional[Mapping[str, Any]] = None,
        category_planned_amounts: Optional[Mapping[str, float]] = None,
    ) -> DimensionCalculationResult:
        """
        Dimension calculator: area/volume/weight come from the entered
        dimensions, ``custom_specs`` are the product parameters.  Dimensions
        only fill declared parameters that ``custom_specs`` leaves unset.
        """
        quantity = require_positive(quantity, "quantity")
        warnings = WarningCollector()
        metrics = self.bom.metrics_from_dimensions(dimensions)
        params = self.bom.parameters_from_dimensions(product, dimensions, custom_specs)

        effective = self.bom.effective_quantity(product, quantity, params, warnings)
        materials = self.bom.resolve_materials(
            product, quantity, params, metrics, warnings, effective_quantity=effective
        )
        labor = self.bom.resolve_labor(
            product, quantity, params, metrics, warnings, effective_quantity=effective
        )
        breakdown = self.aggregator.aggregate(
            materials, labor, product.fund_usages, category_planned_amounts, quantity=quantity
        )
        breakdown.effective_quantity = effective
        breakdown.product_id = product.id
        breakdown.product_name = product.name
        breakdown.warnings = list(warnings.items)
        breakdown.pricing = self.pricing.price(
            breakdown.total_cost, target_margin_percent=self._margin(product, None)
        )
        return DimensionCalculationResult(
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            dimensions=dimensions,
            metrics=metrics,
            breakdown=breakdown,
        )

    def snapshot_order_item(
        self,
        product: Product,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        category_planned_amounts: Optional[Mapping[str, float]] = None,
        extra_funds: Sequence[Mapping[str, Any]] = (),
        markup_type: str = MARKUP_PERCENT,
        markup_value: Optional[float] = None,
        manual_price: Optional[float] = None,
        vat_rate_percent: float = DEFAULT_VAT_RATE_PCT,
        apply_vat: bool = True,
    ) -> OrderItemSnapshot:
        breakdown = self.cost_product(product, quantity, parameters, category_planned_amounts)
        params = self.bom.validate_parameters(product, parameters)

        materials = [
            SnapshotLine(
                source_id=line.material_id,
                name=line.material_name,
                unit=line.unit,
                price=line.unit_price,
                per_unit_quantity=line.per_unit_quantity,
                quantity=line.effective_quantity,
                usage_id=line.usage_id,
            )
            for line in breakdown.material_costs
        ]
        work_types = [
            SnapshotLine(
                source_id=line.work_type_id,
                name=line.work_type_name,
                unit=line.unit,
                price=line.hourly_rate,
                per_unit_quantity=line.per_unit_time,
                quantity=line.time,
                usage_id=line.usage_id,
            )
            for line in breakdown.labor_costs
        ]
        funds = [
            FundSnapshot(
                fund_id=f.fund_id,
                name=f.name,
                fund_type=FUND_FIXED,
                fund_value=f.final_amount / quantity if f.per_unit else f.final_amount,
                amount=f.final_amount,
                per_unit=f.per_unit,
            )
            for f in breakdown.fund_costs
        ]
        direct = breakdown.direct_cost
        for extra in extra_funds:
            funds.append(self._extra_fund(extra, direct))

        snapshot = OrderItemSnapshot(
            product_id=product.id,
            product_name=product.name,
            unit=product.unit,
            quantity=quantity,
            effective_quantity=breakdown.effective_quantity,
            parameters=params,
            materials=materials,
            work_types=work_types,
            funds=funds,
            warnings=[w.message for w in breakdown.warnings],
        )
        if markup_value is None:
            markup_value = self._margin(product, None) if markup_type == MARKUP_PERCENT else 0.0
        snapshot.pricing = self.pricing.price_line(
            snapshot.total_cost / quantity,
            quantity,
            markup_type=markup_type,
            markup_value=markup_value,
            manual_price=manual_price,
            vat_rate_percent=vat_rate_percent,
            apply_vat=apply_vat,
        )
        return snapshot

    def rescale_order_item(
        self,
        snapshot: OrderItemSnapshot,
        product: Optional[Product],
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        manual_price: Optional[float] = None,
    ) -> OrderItemSnapshot:
        """
        Recalculate an order line from its snapshot.

        Snapshot prices stay frozen.  When the product still exists, every
        line whose usage is still on the product gets its quantity
        re-resolved from the new quantity and parameters (a usage of an
        excluded component drops to zero).  Lines that cannot be matched,
        or every line when the product was deleted, are rescaled by
        effective quantity and reported in the warnings.  Percent funds are
        recomputed over the new direct cost.
        """
        quantity = require_positive(quantity, "quantity")
        warnings = WarningCollector()
        params = dict(snapshot.parameters)
        params.update(parameters or {})
        fresh: Optional[Dict[str, Tuple[float, float]]] = None
        known_usages: Set[str] = set()
        if product is not None:
            params = self.bom.validate_parameters(product, params)
            effective = self.bom.effective_quantity(product, quantity, params, warnings)
            current_materials, current_labor = self._bom_lines(
                product, quantity, params, effective, warnings
            )
            fresh = {m.usage_id: (m.per_unit_quantity, m.effective_quantity) for m in current_materials}
            fresh.update({l.usage_id: (l.per_unit_time, l.time) for l in current_labor})
            known_usages = self._usage_ids(product)
        else:
            effective = quantity

        materials: List[SnapshotLine] = []
        work_types: List[SnapshotLine] = []
        stale = 0
        for lines, target in ((snapshot.materials, materials), (snapshot.work_types, work_types)):
            for line in lines:
                if fresh is not None and line.usage_id in fresh:
                    per_unit, line_quantity = fresh[line.usage_id]
                    target.append(SnapshotLine(
                        line.source_id, line.name, line.unit, line.price,
                        per_unit, line_quantity, line.usage_id,
                    ))
                elif fresh is not None and line.usage_id in known_usages:
                    target.append(SnapshotLine(
                        line.source_id, line.name, line.unit, line.price, 0.0, 0.0, line.usage_id,
                    ))
                else:
                    stale += 1
                    target.append(self._rescaled(line, effective, snapshot.effective_quantity))
        if stale:
            reason = "product no longer exists" if product is None else "usage no longer on the product"
            warnings.add(
                QUANTITIES_NOT_REDERIVED,
                f"{stale} line(s) rescaled by effective quantity, per-unit quantities kept "
                f"from the snapshot ({reason})",
                snapshot.product_id,
            )
        direct = sum(m.cost for m in materials) + sum(w.cost for w in work_types)

        funds: List[FundSnapshot] = []
        for f in snapshot.funds:
            if f.fund_type == FUND_PERCENT:
                amount = direct * f.fund_value / 100.0
            elif f.per_unit:
                amount = f.fund_value * quantity
            else:
                amount = f.amount
            funds.append(FundSnapshot(f.name, f.fund_type, f.fund_value, amount, f.fund_id, f.per_unit))

        result = OrderItemSnapshot(
            product_id=snapshot.product_id,
            product_name=snapshot.product_name,
            unit=snapshot.unit,
            quantity=quantity,
            effective_quantity=effective,
            parameters=params,
            materials=materials,
            work_types=work_types,
            funds=funds,
            warnings=warnings.as_messages(),
        )
        old = snapshot.pricing
        result.pricing = self.pricing.price_line(
            result.total_cost / quantity,
            quantity,
            markup_type=old.markup_type if old else MARKUP_PERCENT,
            markup_value=old.markup_value if old else DEFAULT_TARGET_MARGIN_PCT,
            manual_price=manual_price,
            vat_rate_percent=old.vat_rate_percent if old else DEFAULT_VAT_RATE_PCT,
            apply_vat=old.vat_rate_percent > 0 if old else True,
        )
        logger.info(
            f"Order line for {snapshot.product_id} rescaled: effective "
            f"{snapshot.effective_quantity:g} -> {effective:g}"
        )
        return result

    # ── Repository-backed entry points ───────────────────────────────────────

    async def calculate_product_cost(
        self,
        product_id: str,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        overhead_rate_percent: Optional[float] = None,
        target_margin_percent: Optional[float] = None,
        vat_rate_percent: float = 0.0,
        manual_selling_price: Optional[float] = None,
    ) -> CostBreakdown:
        product = await self.repository.get_product(product_id)
        planned = await self._planned_for(product)
        t0 = time.perf_counter()
        breakdown = self.cost_product(
            product, quantity, parameters, planned,
            overhead_rate_percent=overhead_rate_percent,
            target_margin_percent=target_margin_percent,
            vat_rate_percent=vat_rate_percent,
            manual_selling_price=manual_selling_price,
        )
        logger.info(
            "Product cost calculated",
            extra={
                "product_id": product_id,
                "duration_ms": round((time.perf_counter() - t0) * 1000, 2),
            },
        )
        return breakdown

    async def calculate_component_costs(
        self,
        product_id: str,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> ProductCalculationResult:
        product = await self.repository.get_product(product_id)
        planned = await self._planned_for(product)
        return self.cost_components(product, quantity, parameters, planned)

    async def calculate_by_dimensions(
        self,
        product_id: str,
        dimensions: Dimensions,
        quantity: float = 1.0,
        custom_specs: Optional[Mapping[str, Any]] = None,
    ) -> DimensionCalculationResult:
        product = await self.repository.get_product(product_id)
        planned = await self._planned_for(product)
        return self.cost_by_dimensions(product, dimensions, quantity, custom_specs, planned)

    async def build_order_item(
        self,
        product_id: str,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        vat_rate_percent: float = DEFAULT_VAT_RATE_PCT,
        **pricing_options: Any,
    ) -> OrderItemSnapshot:
        product = await self.repository.get_product(product_id)
        planned = await self._planned_for(product)
        return self.snapshot_order_item(
            product, quantity, parameters, planned,
            vat_rate_percent=vat_rate_percent, **pricing_options,
        )

    async def recalculate_order_item(
        self,
        snapshot: OrderItemSnapshot,
        quantity: float,
        parameters: Optional[Mapping[str, Any]] = None,
        manual_price: Optional[float] = None,
    ) -> OrderItemSnapshot:
        product: Optional[Product] = None
        try:
            product = await self.repository.get_product(snapshot.product_id)
        except CalculationError as e:
            logger.warning(f"Product {snapshot.product_id} unavailable, rescaling by quantity: {e}")
        return self.rescale_order_item(snapshot, product, quantity, parameters, manual_price)

    async def recalculate_products(self, product_ids: Optional[Sequence[str]] = None) -> BatchResult:
        """
        Recompute and store cached cost fields for a batch of products.

        Every product is an independent calculation; one product's failure is
        recorded and the batch carries on.
        """
        ids = list(product_ids) if product_ids else await self.repository.list_product_ids()
        result = BatchResult()
        for product_id in ids:
            try:
                breakdown = await self.calculate_product_cost(product_id, 1.0)
                costs = CachedCosts(
                    material_cost=round(breakdown.total_material_cost, MONEY_PRECISION),
                    labor_cost=round(breakdown.total_labor_cost, MONEY_PRECISION),
                    overhead_cost=round(breakdown.total_overhead_cost, MONEY_PRECISION),
                    total_cost=round(breakdown.total_cost, MONEY_PRECISION),
                    selling_price=round(breakdown.pricing.selling_price, MONEY_PRECISION),
                    margin=round(breakdown.pricing.margin_percent, MONEY_PRECISION),
                )
                await self.repository.save_product_costs(product_id, costs)
                result.updated.append({"product_id": product_id, **costs.__dict__})
            except CalculationError as e:
                logger.warning(
                    f"Recalculation failed for product {product_id}: {e.message}",
                    extra={"product_id": product_id},
                )
                result.failed.append({"product_id": product_id, **e.to_dict()})
            except Exception as e:
                logger.error(
                    f"Recalculation crashed for product {product_id}: {e}",
                    exc_info=True,
                    extra={"product_id": product_id},
                )
                result.failed.append(
                    {"product_id": product_id, "error": "internal_error", "message": str(e)}
                )
        logger.info(
            f"Batch recalculation: {len(result.updated)} updated, {len(result.failed)} failed"
        )
        return result

    # ── Helpers ──────────────────────────────────────────────────────────────

    async def _planned_for(self, product: Product) -> Dict[str, float]:
        category_ids = [u.category_id for u in product.fund_usages if u.category_id]
        if not category_ids:
            return {}
        return await self.repository.category_planned_amounts(category_ids)

    @staticmethod
    def _margin(product: Product, requested: Optional[float]) -> float:
        if requested is not None:
            return requested
        if product.margin is not None:
            return product.margin
        return DEFAULT_TARGET_MARGIN_PCT

    def _bom_lines(
        self,
        product: Product,
        quantity: float,
        params: Mapping[str, Any],
        effective: float,
        warnings: WarningCollector,
    ) -> Tuple[List[MaterialLine], List[LaborLine]]:
        metrics = self.bom.metrics_from_parameters(params)
        materials = self.bom.resolve_materials(
            product, quantity, params, metrics, warnings, effective_quantity=effective
        )
        labor = self.bom.resolve_labor(
            product, quantity, params, metrics, warnings, effective_quantity=effective
        )
        # Component lines are part of the product's cost
        for component in self.bom.resolve_components(product, quantity, params, warnings):
            materials.extend(component.materials)
            labor.extend(component.labor)
        return materials, labor

    @staticmethod
    def _usage_ids(product: Product) -> Set[str]:
        ids = {u.id for u in product.material_usages} | {u.id for u in product.work_type_usages}
        for component in product.components:
            ids.update(u.id for u in component.material_usages)
            ids.update(u.id for u in component.work_type_usages)
        return ids

    @staticmethod
    def _rescaled(line: SnapshotLine, new_effective: float, old_effective: float) -> SnapshotLine:
        if old_effective > 0:
            quantity = line.quantity * new_effective / old_effective
        else:
            quantity = line.per_unit_quantity * new_effective
        return SnapshotLine(
            line.source_id, line.name, line.unit, line.price, line.per_unit_quantity, quantity, line.usage_id
        )

    def _extra_fund(self, extra: Mapping[str, Any], direct_cost: float) -> FundSnapshot:
        fund_type = str(extra.get("fund_type", FUND_FIXED))
        value = float(extra.get("fund_value", 0.0))
        if value < 0:
            raise InvalidInputError("fund_value must be >= 0", fund=extra.get("name"))
        if fund_type == FUND_PERCENT:
            amount = direct_cost * value / 100.0
        elif fund_type == FUND_FIXED:
            amount = value
        else:
            raise InvalidInputError(f"Unknown fund type: {fund_type!r}", fund_type=fund_type)
        return FundSnapshot(
            fund_id=extra.get("fund_id"),
            name=str(extra.get("name", "")),
            fund_type=fund_type,
            fund_value=value,
            amount=amount,
        )

