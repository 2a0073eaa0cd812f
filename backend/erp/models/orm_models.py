"""ORM Models for the production ERP — SQLAlchemy 2.0"""
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Text, Boolean, Integer, Float, DateTime, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from erp.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── REFERENCE DATA ────────────────────────────────────────────────────────────
class MeasurementUnitRow(Base):
    __tablename__ = "measurement_units"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # length|area|volume|weight|count
    base_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    conversion_factor: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    aliases: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Department(Base):
    __tablename__ = "departments"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)


class MaterialItemRow(Base):
    __tablename__ = "material_items"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(10), default="RUB")
    base_unit: Mapped[Optional[str]] = mapped_column(String(20))
    calculation_unit: Mapped[Optional[str]] = mapped_column(String(20))
    conversion_factor: Mapped[Optional[float]] = mapped_column(Float)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class WorkTypeRow(Base):
    __tablename__ = "work_types"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="h")
    hourly_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    standard_time: Mapped[Optional[float]] = mapped_column(Float)
    department_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("departments.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    department: Mapped[Optional["Department"]] = relationship("Department", lazy="selectin")


# ── FUNDS ─────────────────────────────────────────────────────────────────────
class FundRow(Base):
    __tablename__ = "funds"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)
    allocated_amount: Mapped[float] = mapped_column(Float, default=0.0)
    remaining_amount: Mapped[float] = mapped_column(Float, default=0.0)
    categories: Mapped[list["FundCategoryRow"]] = relationship(
        "FundCategoryRow", back_populates="fund", lazy="selectin", cascade="all, delete-orphan"
    )


class FundCategoryRow(Base):
    __tablename__ = "fund_categories"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    fund_id: Mapped[str] = mapped_column(String(64), ForeignKey("funds.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_type: Mapped[str] = mapped_column(String(30), default="expenses")
    planned_amount: Mapped[float] = mapped_column(Float, default=0.0)
    percentage: Mapped[Optional[float]] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    fund: Mapped["FundRow"] = relationship("FundRow", back_populates="categories")
    items: Mapped[list["FundCategoryItemRow"]] = relationship(
        "FundCategoryItemRow", lazy="selectin", cascade="all, delete-orphan"
    )


class FundCategoryItemRow(Base):
    __tablename__ = "fund_category_items"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    category_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("fund_categories.id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    percentage: Mapped[Optional[float]] = mapped_column(Float)


# ── PRODUCTS ──────────────────────────────────────────────────────────────────
class ProductRow(Base):
    __tablename__ = "products"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    formula_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    formula_expression: Mapped[Optional[str]] = mapped_column(Text)
    base_price: Mapped[Optional[float]] = mapped_column(Float)
    # Cached cost fields, written back by recalculation
    material_cost: Mapped[float] = mapped_column(Float, default=0.0)
    labor_cost: Mapped[float] = mapped_column(Float, default=0.0)
    overhead_cost: Mapped[float] = mapped_column(Float, default=0.0)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0)
    selling_price: Mapped[Optional[float]] = mapped_column(Float)
    margin: Mapped[Optional[float]] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    parameters: Mapped[list["ProductParameterRow"]] = relationship(
        "ProductParameterRow", lazy="selectin", cascade="all, delete-orphan"
    )
    material_usages: Mapped[list["ProductMaterialUsageRow"]] = relationship(
        "ProductMaterialUsageRow", lazy="selectin", cascade="all, delete-orphan"
    )
    work_type_usages: Mapped[list["ProductWorkTypeUsageRow"]] = relationship(
        "ProductWorkTypeUsageRow", lazy="selectin", cascade="all, delete-orphan"
    )
    fund_usages: Mapped[list["ProductFundUsageRow"]] = relationship(
        "ProductFundUsageRow", lazy="selectin", cascade="all, delete-orphan"
    )
    components: Mapped[list["ProductComponentRow"]] = relationship(
        "ProductComponentRow", lazy="selectin", cascade="all, delete-orphan"
    )


class ProductParameterRow(Base):
    __tablename__ = "product_parameters"
    __table_args__ = (UniqueConstraint("product_id", "name", name="uq_product_parameter_name"),)
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    product_id: Mapped[str] = mapped_column(String(64), ForeignKey("products.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), default="NUMBER")
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    min_value: Mapped[Optional[float]] = mapped_column(Float)
    max_value: Mapped[Optional[float]] = mapped_column(Float)
    default_value: Mapped[Optional[str]] = mapped_column(String(100))
    options: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class ProductMaterialUsageRow(Base):
    __tablename__ = "product_material_usages"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    product_id: Mapped[str] = mapped_column(String(64), ForeignKey("products.id", ondelete="CASCADE"))
    material_item_id: Mapped[str] = mapped_column(String(64), ForeignKey("material_items.id"))
    quantity: Mapped[float] = mapped_column(Float, default=0.0)
    unit_type: Mapped[str] = mapped_column(String(20), default="fixed")
    base_quantity: Mapped[Optional[float]] = mapped_column(Float)
    calculation_formula: Mapped[Optional[str]] = mapped_column(Text)
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    material: Mapped["MaterialItemRow"] = relationship("MaterialItemRow", lazy="selectin")


class ProductWorkTypeUsageRow(Base):
    __tablename__ = "product_work_type_usages"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    product_id: Mapped[str] = mapped_column(String(64), ForeignKey("products.id", ondelete="CASCADE"))
    work_type_id: Mapped[str] = mapped_column(String(64), ForeignKey("work_types.id"))
    quantity: Mapped[float] = mapped_column(Float, default=0.0)
    unit_type: Mapped[str] = mapped_column(String(20), default="fixed")
    base_time: Mapped[Optional[float]] = mapped_column(Float)
    time_per_unit: Mapped[Optional[float]] = mapped_column(Float)
    calculation_formula: Mapped[Optional[str]] = mapped_column(Text)
    sequence: Mapped[int] = mapped_column(Integer, default=0)
    work_type: Mapped["WorkTypeRow"] = relationship("WorkTypeRow", lazy="selectin")


class ProductFundUsageRow(Base):
    __tablename__ = "product_fund_usages"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    product_id: Mapped[str] = mapped_column(String(64), ForeignKey("products.id", ondelete="CASCADE"))
    fund_id: Mapped[str] = mapped_column(String(64), ForeignKey("funds.id"))
    category_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("fund_categories.id"))
    name: Mapped[Optional[str]] = mapped_column(String(255))
    allocated_amount: Mapped[float] = mapped_column(Float, default=0.0)
    percentage: Mapped[Optional[float]] = mapped_column(Float)
    per_unit: Mapped[bool] = mapped_column(Boolean, default=False)


class ProductComponentRow(Base):
    __tablename__ = "product_components"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    product_id: Mapped[str] = mapped_column(String(64), ForeignKey("products.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    base_quantity: Mapped[float] = mapped_column(Float, default=1.0)
    quantity_formula: Mapped[Optional[str]] = mapped_column(Text)
    include_condition: Mapped[Optional[str]] = mapped_column(Text)
    width: Mapped[float] = mapped_column(Float, default=0.0)
    height: Mapped[float] = mapped_column(Float, default=0.0)
    depth: Mapped[float] = mapped_column(Float, default=0.0)
    thickness: Mapped[float] = mapped_column(Float, default=0.0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    material_usages: Mapped[list["ComponentMaterialUsageRow"]] = relationship(
        "ComponentMaterialUsageRow", lazy="selectin", cascade="all, delete-orphan"
    )
    work_type_usages: Mapped[list["ComponentWorkTypeUsageRow"]] = relationship(
        "ComponentWorkTypeUsageRow", lazy="selectin", cascade="all, delete-orphan"
    )


class ComponentMaterialUsageRow(Base):
    __tablename__ = "component_material_usages"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    component_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("product_components.id", ondelete="CASCADE")
    )
    material_item_id: Mapped[str] = mapped_column(String(64), ForeignKey("material_items.id"))
    quantity: Mapped[float] = mapped_column(Float, default=0.0)
    usage_formula: Mapped[Optional[str]] = mapped_column(Text)
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    waste_factor: Mapped[float] = mapped_column(Float, default=1.0)
    material: Mapped["MaterialItemRow"] = relationship("MaterialItemRow", lazy="selectin")


class ComponentWorkTypeUsageRow(Base):
    __tablename__ = "component_work_type_usages"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    component_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("product_components.id", ondelete="CASCADE")
    )
    work_type_id: Mapped[str] = mapped_column(String(64), ForeignKey("work_types.id"))
    quantity: Mapped[float] = mapped_column(Float, default=0.0)
    time_formula: Mapped[Optional[str]] = mapped_column(Text)
    sequence: Mapped[int] = mapped_column(Integer, default=0)
    work_type: Mapped["WorkTypeRow"] = relationship("WorkTypeRow", lazy="selectin")


# ── ORDERS ────────────────────────────────────────────────────────────────────
class OrderRow(Base):
    __tablename__ = "orders"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(30), default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    items: Mapped[list["OrderItemRow"]] = relationship(
        "OrderItemRow", lazy="selectin", cascade="all, delete-orphan"
    )


class OrderItemRow(Base):
    __tablename__ = "order_items"
    __table_args__ = (Index("ix_order_items_order", "order_id"),)
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey("orders.id", ondelete="CASCADE"))
    product_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("products.id"))
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    quantity: Mapped[float] = mapped_column(Float, default=1.0)
    effective_quantity: Mapped[float] = mapped_column(Float, default=1.0)
    material_cost: Mapped[float] = mapped_column(Float, default=0.0)
    labor_cost: Mapped[float] = mapped_column(Float, default=0.0)
    overhead_cost: Mapped[float] = mapped_column(Float, default=0.0)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0)
    unit_price: Mapped[float] = mapped_column(Float, default=0.0)
    vat_rate: Mapped[float] = mapped_column(Float, default=0.0)
    vat_amount: Mapped[float] = mapped_column(Float, default=0.0)
    total_price: Mapped[float] = mapped_column(Float, default=0.0)
    parameters: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)
    # Name/unit/price snapshots copied at calculation time
    materials: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    work_types: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    funds: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
