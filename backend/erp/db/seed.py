"""
Demo catalog for a furniture / advertising workshop.

``demo_catalog()`` builds the catalog as engine value objects (used by the
in-memory repository); ``seed_database()`` writes the same catalog into the
database.  All inserts are idempotent: rows whose id already exists are left
untouched.
"""
import logging
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from erp.models.costing_models import (
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
from erp.services.unit_conversion import DEFAULT_UNITS

logger = logging.getLogger("erp-db")


# ── Materials ─────────────────────────────────────────────────────────────────
MATERIALS: Dict[str, MaterialItem] = {
    m.id: m
    for m in [
        MaterialItem("mat-pine", "Pine board 20mm", "m", 85.0),
        MaterialItem("mat-ldsp", "Laminated chipboard 16mm", "m²", 850.0),
        MaterialItem("mat-edge", "PVC edge band 2mm", "m", 25.0),
        MaterialItem("mat-confirmat", "Confirmat screw 7x50", "pcs", 3.0),
        MaterialItem("mat-mirror", "Mirror 4mm", "m²", 2400.0),
        MaterialItem("mat-banner", "Banner fabric 440 g/m²", "m²", 85.0),
        MaterialItem("mat-eyelet", "Eyelet 10mm", "pcs", 5.0),
        MaterialItem("mat-acp", "Aluminium composite panel 3mm", "m²", 1200.0),
        MaterialItem("mat-paint", "Polyurethane paint", "kg", 450.0),
        MaterialItem(
            "mat-vinyl", "Self-adhesive vinyl film", "roll", 4000.0,
            calculation_unit="m", conversion_factor=50.0,
        ),
    ]
}

# ── Work types ────────────────────────────────────────────────────────────────
WORK_TYPES: Dict[str, WorkType] = {
    w.id: w
    for w in [
        WorkType("wt-cutting", "Panel cutting", "h", 600.0, standard_time=0.5, department="Cutting"),
        WorkType("wt-assembly", "Assembly", "h", 800.0, standard_time=1.0, department="Assembly"),
        WorkType("wt-print", "Large-format printing", "h", 1000.0, department="Print"),
        WorkType("wt-painting", "Painting", "h", 900.0, department="Finishing"),
    ]
}

# ── Funds ─────────────────────────────────────────────────────────────────────
FUNDS: Dict[str, Fund] = {
    "fund-overhead": Fund(
        "fund-overhead",
        "Production overhead 2026",
        total_amount=500_000.0,
        categories=(
            FundCategory("cat-rent", "Workshop rent", planned_amount=100_000.0),
            FundCategory("cat-utilities", "Utilities", planned_amount=50_000.0),
            FundCategory(
                "cat-taxes", "Payroll taxes", planned_amount=60_000.0,
                category_type="taxes", item_percentages=(22.0, 5.1, 2.9),
            ),
        ),
    ),
}


def _products() -> List[Product]:
    m, w = MATERIALS, WORK_TYPES
    stool = Product(
        "prod-stool",
        "Pine stool",
        description="Single board stool, fixed BOM",
        material_usages=(MaterialUsage("pmu-stool-pine", m["mat-pine"], quantity=2.0),),
        work_type_usages=(WorkTypeUsage("pwu-stool-asm", w["wt-assembly"], quantity=1.0),),
        margin=25.0,
    )
    banner = Product(
        "prod-banner",
        "Printed banner",
        unit="m²",
        formula_enabled=True,
        formula_expression="width * height * quantity",
        parameters=(
            ProductParameter("pp-banner-w", "width", unit="m", min_value=0.1, max_value=50, is_required=True),
            ProductParameter("pp-banner-h", "height", unit="m", min_value=0.1, max_value=20, is_required=True),
            ProductParameter(
                "pp-banner-finish", "finish", type=ParameterType.SELECT,
                default_value="eyelets", options=("none", "eyelets", "pocket"),
            ),
        ),
        material_usages=(
            MaterialUsage("pmu-banner-fabric", m["mat-banner"], quantity=1.0),
            MaterialUsage(
                "pmu-banner-eyelets", m["mat-eyelet"], unit_type=UnitType.CALCULATED,
                calculation_formula="finish === 'eyelets' ? 2 : 0",
            ),
        ),
        work_type_usages=(
            WorkTypeUsage("pwu-banner-print", w["wt-print"], quantity=0.1, sequence=1),
        ),
        fund_usages=(
            FundUsage("pfu-banner-rent", "fund-overhead", "cat-rent", "Workshop rent", allocated_amount=150.0),
        ),
        margin=40.0,
    )
    sign = Product(
        "prod-sign",
        "Composite sign panel",
        description="Area-priced sign, dimensions in cm",
        material_usages=(
            MaterialUsage("pmu-sign-acp", m["mat-acp"], unit_type=UnitType.PER_AREA, base_quantity=1.0),
            MaterialUsage("pmu-sign-paint", m["mat-paint"], unit_type=UnitType.PER_AREA, base_quantity=0.2),
            MaterialUsage("pmu-sign-vinyl", m["mat-vinyl"], quantity=2.0, unit="m"),
        ),
        work_type_usages=(
            WorkTypeUsage("pwu-sign-cut", w["wt-cutting"], unit_type=UnitType.PER_AREA, base_time=0.5, sequence=1),
            WorkTypeUsage("pwu-sign-paint", w["wt-painting"], quantity=0.5, sequence=2),
        ),
        fund_usages=(
            FundUsage("pfu-sign-rent", "fund-overhead", "cat-rent", "Workshop rent", percentage=1.0),
        ),
        margin=35.0,
    )
    wardrobe = Product(
        "prod-wardrobe",
        "Wardrobe",
        description="Component-based cabinet",
        parameters=(
            ProductParameter("pp-wr-doors", "doors", min_value=0, max_value=4, default_value=2),
            ProductParameter(
                "pp-wr-mirror", "mirror", type=ParameterType.SELECT,
                default_value="no", options=("yes", "no"),
            ),
        ),
        components=(
            ProductComponent(
                "pc-wr-body", "Body", width=80, height=200, depth=60, sort_order=1,
                material_usages=(
                    MaterialUsage(
                        "cmu-body-ldsp", m["mat-ldsp"],
                        calculation_formula="(height * depth * 2 + width * depth * 2) / 10000",
                        waste_factor=1.1,
                    ),
                    MaterialUsage(
                        "cmu-body-edge", m["mat-edge"],
                        calculation_formula="(height * 2 + width * 2) / 100",
                    ),
                    MaterialUsage("cmu-body-screws", m["mat-confirmat"], quantity=16),
                ),
                work_type_usages=(
                    WorkTypeUsage("cwu-body-cut", w["wt-cutting"], quantity=0.8, sequence=1),
                    WorkTypeUsage("cwu-body-asm", w["wt-assembly"], quantity=1.5, sequence=2),
                ),
            ),
            ProductComponent(
                "pc-wr-door", "Door", quantity_formula="doors", include_condition="doors > 0",
                width=40, height=200, thickness=1.6, sort_order=2,
                material_usages=(
                    MaterialUsage(
                        "cmu-door-ldsp", m["mat-ldsp"],
                        calculation_formula="width * height / 10000", waste_factor=1.05,
                    ),
                ),
                work_type_usages=(
                    WorkTypeUsage("cwu-door-asm", w["wt-assembly"], quantity=0.25),
                ),
            ),
            ProductComponent(
                "pc-wr-mirror", "Mirror insert", include_condition="mirror === 'yes'",
                width=35, height=150, sort_order=3,
                material_usages=(
                    MaterialUsage("cmu-mirror", m["mat-mirror"], calculation_formula="width * height / 10000"),
                ),
            ),
        ),
        margin=30.0,
    )
    return [stool, banner, sign, wardrobe]


def demo_catalog() -> Dict[str, Any]:
    return {
        "products": {p.id: p for p in _products()},
        "funds": dict(FUNDS),
        "units": list(DEFAULT_UNITS),
    }


async def seed_database(session: AsyncSession) -> int:
    """Insert the demo catalog. Returns the number of rows added."""
    from erp.models import orm_models as orm

    inserted = 0

    async def add(model, **values) -> None:
        nonlocal inserted
        if await session.get(model, values["id"]) is None:
            session.add(model(**values))
            inserted += 1

    for unit in DEFAULT_UNITS:
        await add(
            orm.MeasurementUnitRow, id=unit.id, name=unit.name, symbol=unit.symbol, type=unit.type,
            base_unit=unit.base_unit, conversion_factor=unit.conversion_factor, aliases=list(unit.aliases),
        )
    departments = sorted({wt.department for wt in WORK_TYPES.values() if wt.department})
    for name in departments:
        await add(orm.Department, id=f"dep-{name.lower()}", name=name)
    for mat in MATERIALS.values():
        await add(
            orm.MaterialItemRow, id=mat.id, name=mat.name, unit=mat.unit, price=mat.price,
            currency=mat.currency, base_unit=mat.base_unit, calculation_unit=mat.calculation_unit,
            conversion_factor=mat.conversion_factor,
        )
    for wt in WORK_TYPES.values():
        await add(
            orm.WorkTypeRow, id=wt.id, name=wt.name, unit=wt.unit, hourly_rate=wt.hourly_rate,
            standard_time=wt.standard_time,
            department_id=f"dep-{wt.department.lower()}" if wt.department else None,
        )
    await session.flush()

    for fund in FUNDS.values():
        await add(orm.FundRow, id=fund.id, name=fund.name, total_amount=fund.total_amount)
        for cat in fund.categories:
            await add(
                orm.FundCategoryRow, id=cat.id, fund_id=fund.id, name=cat.name,
                category_type=cat.category_type, planned_amount=cat.planned_amount,
                percentage=cat.percentage,
            )
            for i, pct in enumerate(cat.item_percentages):
                await add(
                    orm.FundCategoryItemRow, id=f"{cat.id}-item-{i}", category_id=cat.id,
                    name=f"{cat.name} #{i + 1}", percentage=pct,
                )
    await session.flush()

    for product in _products():
        await add(
            orm.ProductRow, id=product.id, name=product.name, description=product.description,
            unit=product.unit, formula_enabled=product.formula_enabled,
            formula_expression=product.formula_expression, margin=product.margin,
        )
        for i, p in enumerate(product.parameters):
            await add(
                orm.ProductParameterRow, id=p.id, product_id=product.id, name=p.name, type=p.type.value,
                unit=p.unit, min_value=p.min_value, max_value=p.max_value,
                default_value=None if p.default_value is None else str(p.default_value),
                options=list(p.options), is_required=p.is_required, sort_order=i,
            )
        for u in product.material_usages:
            await add(
                orm.ProductMaterialUsageRow, id=u.id, product_id=product.id, material_item_id=u.material.id,
                quantity=u.quantity, unit_type=u.unit_type.value, base_quantity=u.base_quantity,
                calculation_formula=u.calculation_formula, unit=u.unit,
            )
        for u in product.work_type_usages:
            await add(
                orm.ProductWorkTypeUsageRow, id=u.id, product_id=product.id, work_type_id=u.work_type.id,
                quantity=u.quantity, unit_type=u.unit_type.value, base_time=u.base_time,
                time_per_unit=u.time_per_unit, calculation_formula=u.calculation_formula,
                sequence=u.sequence,
            )
        for f in product.fund_usages:
            await add(
                orm.ProductFundUsageRow, id=f.id, product_id=product.id, fund_id=f.fund_id,
                category_id=f.category_id, name=f.name, allocated_amount=f.allocated_amount,
                percentage=f.percentage, per_unit=f.per_unit,
            )
        for c in product.components:
            await add(
                orm.ProductComponentRow, id=c.id, product_id=product.id, name=c.name,
                base_quantity=c.base_quantity, quantity_formula=c.quantity_formula,
                include_condition=c.include_condition, width=c.width, height=c.height,
                depth=c.depth, thickness=c.thickness, is_active=c.is_active, sort_order=c.sort_order,
            )
            for u in c.material_usages:
                await add(
                    orm.ComponentMaterialUsageRow, id=u.id, component_id=c.id,
                    material_item_id=u.material.id, quantity=u.quantity,
                    usage_formula=u.calculation_formula, unit=u.unit, waste_factor=u.waste_factor,
                )
            for u in c.work_type_usages:
                await add(
                    orm.ComponentWorkTypeUsageRow, id=u.id, component_id=c.id,
                    work_type_id=u.work_type.id, quantity=u.quantity,
                    time_formula=u.calculation_formula, sequence=u.sequence,
                )
    logger.info(f"Demo catalog seeded: {inserted} new rows")
    return inserted
