"""
Catalog repositories — the seam between persistence and the calculation engine.

The engine only ever sees value objects from ``erp.models.costing_models``.
``SqlCatalogRepository`` maps ORM rows onto them; ``InMemoryCatalogRepository``
serves the demo catalog when no database is configured (and in tests).
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erp.models.costing_models import (
    CachedCosts,
    Fund,
    FundCategory,
    FundUsage,
    MaterialItem,
    MaterialUsage,
    ParameterType,
    Product,
    ProductComponent,
    ProductParameter,
    UnitType,
    WorkType,
    WorkTypeUsage,
)
from erp.services.errors import FundNotFoundError, ProductNotFoundError
from erp.services.fund_engine import FundPlan
from erp.services.unit_conversion import DEFAULT_UNITS, MeasurementUnit

logger = logging.getLogger("erp-db")


class CatalogRepository(ABC):

    @abstractmethod
    async def get_product(self, product_id: str) -> Product:
        """Return the product or raise ProductNotFoundError."""

    @abstractmethod
    async def list_product_ids(self) -> List[str]: ...

    @abstractmethod
    async def category_planned_amounts(self, category_ids: Iterable[str]) -> Dict[str, float]: ...

    @abstractmethod
    async def get_fund(self, fund_id: str) -> Fund: ...

    @abstractmethod
    async def save_product_costs(self, product_id: str, costs: CachedCosts) -> None: ...

    @abstractmethod
    async def save_fund_plan(self, plan: FundPlan) -> None: ...

    @abstractmethod
    async def list_units(self) -> List[MeasurementUnit]: ...


class InMemoryCatalogRepository(CatalogRepository):

    def __init__(
        self,
        products: Optional[Dict[str, Product]] = None,
        funds: Optional[Dict[str, Fund]] = None,
        units: Optional[List[MeasurementUnit]] = None,
    ) -> None:
        self.products: Dict[str, Product] = dict(products or {})
        self.funds: Dict[str, Fund] = dict(funds or {})
        self.units: List[MeasurementUnit] = list(DEFAULT_UNITS if units is None else units)
        self.cached_costs: Dict[str, CachedCosts] = {}
        self.fund_plans: Dict[str, FundPlan] = {}

    @classmethod
    def from_seed(cls) -> "InMemoryCatalogRepository":
        from erp.db.seed import demo_catalog

        return cls(**demo_catalog())

    async def get_product(self, product_id: str) -> Product:
        try:
            return self.products[product_id]
        except KeyError:
            raise ProductNotFoundError(f"Product not found: {product_id}", product_id=product_id)

    async def list_product_ids(self) -> List[str]:
        return list(self.products)

    async def category_planned_amounts(self, category_ids: Iterable[str]) -> Dict[str, float]:
        wanted = set(category_ids)
        return {
            cat.id: cat.planned_amount
            for fund in self.funds.values()
            for cat in fund.categories
            if cat.id in wanted
        }

    async def get_fund(self, fund_id: str) -> Fund:
        try:
            return self.funds[fund_id]
        except KeyError:
            raise FundNotFoundError(f"Fund not found: {fund_id}", fund_id=fund_id)

    async def save_product_costs(self, product_id: str, costs: CachedCosts) -> None:
        self.cached_costs[product_id] = costs

    async def save_fund_plan(self, plan: FundPlan) -> None:
        self.fund_plans[plan.fund_id] = plan

    async def list_units(self) -> List[MeasurementUnit]:
        return [u for u in self.units if u.is_active]


# ── ORM row -> value object mapping ───────────────────────────────────────────

def _material(row) -> MaterialItem:
    return MaterialItem(
        id=row.id,
        name=row.name,
        unit=row.unit,
        price=row.price or 0.0,
        currency=row.currency or "RUB",
        base_unit=row.base_unit,
        calculation_unit=row.calculation_unit,
        conversion_factor=row.conversion_factor,
    )


def _work_type(row) -> WorkType:
    return WorkType(
        id=row.id,
        name=row.name,
        unit=row.unit or "h",
        hourly_rate=row.hourly_rate or 0.0,
        standard_time=row.standard_time,
        department=row.department.name if row.department else None,
    )


def _default_value(raw: Optional[str], param_type: ParameterType):
    if raw is None:
        return None
    if param_type == ParameterType.NUMBER:
        try:
            return float(raw)
        except ValueError:
            return None
    if param_type == ParameterType.BOOLEAN:
        return raw.lower() in ("1", "true", "yes")
    return raw


def _parameter(row) -> ProductParameter:
    param_type = ParameterType(row.type or "NUMBER")
    return ProductParameter(
        id=row.id,
        name=row.name,
        type=param_type,
        unit=row.unit,
        min_value=row.min_value,
        max_value=row.max_value,
        default_value=_default_value(row.default_value, param_type),
        options=tuple(row.options or ()),
        is_required=row.is_required,
    )


def _component(row) -> ProductComponent:
    return ProductComponent(
        id=row.id,
        name=row.name,
        base_quantity=row.base_quantity if row.base_quantity is not None else 1.0,
        quantity_formula=row.quantity_formula,
        include_condition=row.include_condition,
        width=row.width or 0.0,
        height=row.height or 0.0,
        depth=row.depth or 0.0,
        thickness=row.thickness or 0.0,
        is_active=row.is_active,
        sort_order=row.sort_order or 0,
        material_usages=tuple(
            MaterialUsage(
                id=u.id,
                material=_material(u.material),
                quantity=u.quantity or 0.0,
                calculation_formula=u.usage_formula,
                unit=u.unit,
                waste_factor=u.waste_factor if u.waste_factor is not None else 1.0,
            )
            for u in row.material_usages
        ),
        work_type_usages=tuple(
            WorkTypeUsage(
                id=u.id,
                work_type=_work_type(u.work_type),
                quantity=u.quantity or 0.0,
                calculation_formula=u.time_formula,
                sequence=u.sequence or 0,
            )
            for u in row.work_type_usages
        ),
    )


def product_from_row(row) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        unit=row.unit or "pcs",
        description=row.description or "",
        material_usages=tuple(
            MaterialUsage(
                id=u.id,
                material=_material(u.material),
                quantity=u.quantity or 0.0,
                unit_type=UnitType(u.unit_type or "fixed"),
                base_quantity=u.base_quantity,
                calculation_formula=u.calculation_formula,
                unit=u.unit,
            )
            for u in row.material_usages
        ),
        work_type_usages=tuple(
            WorkTypeUsage(
                id=u.id,
                work_type=_work_type(u.work_type),
                quantity=u.quantity or 0.0,
                unit_type=UnitType(u.unit_type or "fixed"),
                base_time=u.base_time,
                time_per_unit=u.time_per_unit,
                calculation_formula=u.calculation_formula,
                sequence=u.sequence or 0,
            )
            for u in row.work_type_usages
        ),
        fund_usages=tuple(
            FundUsage(
                id=u.id,
                fund_id=u.fund_id,
                category_id=u.category_id,
                name=u.name or "",
                allocated_amount=u.allocated_amount or 0.0,
                percentage=u.percentage,
                per_unit=u.per_unit,
            )
            for u in row.fund_usages
        ),
        parameters=tuple(_parameter(p) for p in sorted(row.parameters, key=lambda p: p.sort_order)),
        components=tuple(_component(c) for c in row.components),
        formula_enabled=row.formula_enabled,
        formula_expression=row.formula_expression,
        margin=row.margin,
        selling_price=row.selling_price,
        base_price=row.base_price,
    )


class SqlCatalogRepository(CatalogRepository):
    """Reads the catalog through an AsyncSession (relationships load via selectin)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_product(self, product_id: str) -> Product:
        from erp.models.orm_models import ProductRow

        row = await self.session.get(ProductRow, product_id)
        if row is None or not row.is_active:
            raise ProductNotFoundError(f"Product not found: {product_id}", product_id=product_id)
        return product_from_row(row)

    async def list_product_ids(self) -> List[str]:
        from erp.models.orm_models import ProductRow

        result = await self.session.execute(select(ProductRow.id).where(ProductRow.is_active.is_(True)))
        return list(result.scalars().all())

    async def category_planned_amounts(self, category_ids: Iterable[str]) -> Dict[str, float]:
        from erp.models.orm_models import FundCategoryRow

        ids = list(set(category_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(FundCategoryRow.id, FundCategoryRow.planned_amount).where(FundCategoryRow.id.in_(ids))
        )
        return {cid: planned or 0.0 for cid, planned in result.all()}

    async def get_fund(self, fund_id: str) -> Fund:
        from erp.models.orm_models import FundRow

        row = await self.session.get(FundRow, fund_id)
        if row is None:
            raise FundNotFoundError(f"Fund not found: {fund_id}", fund_id=fund_id)
        return Fund(
            id=row.id,
            name=row.name,
            total_amount=row.total_amount or 0.0,
            categories=tuple(
                FundCategory(
                    id=c.id,
                    name=c.name,
                    planned_amount=c.planned_amount or 0.0,
                    category_type=c.category_type,
                    percentage=c.percentage,
                    item_percentages=tuple(i.percentage or 0.0 for i in c.items),
                )
                for c in row.categories
                if c.is_active
            ),
        )

    async def save_product_costs(self, product_id: str, costs: CachedCosts) -> None:
        from erp.models.orm_models import ProductRow

        row = await self.session.get(ProductRow, product_id)
        if row is None:
            raise ProductNotFoundError(f"Product not found: {product_id}", product_id=product_id)
        row.material_cost = costs.material_cost
        row.labor_cost = costs.labor_cost
        row.overhead_cost = costs.overhead_cost
        row.total_cost = costs.total_cost
        row.selling_price = costs.selling_price
        row.margin = costs.margin
        await self.session.flush()

    async def save_fund_plan(self, plan: FundPlan) -> None:
        from erp.models.orm_models import FundCategoryRow, FundRow

        fund = await self.session.get(FundRow, plan.fund_id)
        if fund is None:
            raise FundNotFoundError(f"Fund not found: {plan.fund_id}", fund_id=plan.fund_id)
        fund.allocated_amount = plan.allocated_amount
        fund.remaining_amount = plan.remaining_amount
        for category in plan.categories:
            row = await self.session.get(FundCategoryRow, category.category_id)
            if row is not None:
                row.percentage = category.percentage
        await self.session.flush()

    async def list_units(self) -> List[MeasurementUnit]:
        from erp.models.orm_models import MeasurementUnitRow

        result = await self.session.execute(
            select(MeasurementUnitRow).where(MeasurementUnitRow.is_active.is_(True))
        )
        rows = result.scalars().all()
        if not rows:
            return list(DEFAULT_UNITS)
        return [
            MeasurementUnit(
                id=r.id,
                name=r.name,
                symbol=r.symbol,
                type=r.type,
                base_unit=r.base_unit,
                conversion_factor=r.conversion_factor,
                aliases=tuple(r.aliases or ()),
            )
            for r in rows
        ]
