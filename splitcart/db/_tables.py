"""
Database layer — SQLAlchemy models.

Money columns go through DecimalText so amounts survive SQLite (which has
no exact decimal type) without float rounding. The pricing snapshot is
stored as JSON next to the order; totals are never recomputed from the
catalog after the order exists.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from splitcart.markers import MarkerMixin


# ═══════════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════════


class Base(DeclarativeBase):
    pass


class DecimalText(TypeDecorator[Decimal]):
    """Exact Decimal stored as its string form."""

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        if value is None:
            return None
        return str(Decimal(str(value)))

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog / Carts / Coupons
# ═══════════════════════════════════════════════════════════════════════════════


class ProductRow(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    seller_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    seller_discount_pct: Mapped[Decimal] = mapped_column(
        DecimalText, nullable=False, default=Decimal("0")
    )
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CartRow(Base):
    __tablename__ = "carts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)


class CartItemRow(Base):
    __tablename__ = "cart_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cart_id: Mapped[int] = mapped_column(ForeignKey("carts.id"), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal | None] = mapped_column(DecimalText, nullable=True)


class CouponRow(Base):
    __tablename__ = "coupons"

    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    percentage: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class CouponUsageRow(Base):
    __tablename__ = "coupon_usages"
    __table_args__ = (UniqueConstraint("code", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(ForeignKey("coupons.code"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    used_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


class OrderRow(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    buyer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    seller_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    total: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    pricing: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    shipping_address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    billing_address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class OrderItemRow(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(Integer, nullable=False)
    seller_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    original_unit_price: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    seller_discount_pct: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    volume_discount_pct: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    coupon_share: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    seller_order_id: Mapped[int | None] = mapped_column(
        ForeignKey("seller_orders.id"), nullable=True
    )


class SellerOrderRow(Base):
    __tablename__ = "seller_orders"
    __table_args__ = (UniqueConstraint("order_id", "seller_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    seller_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    order_number: Mapped[str] = mapped_column(String(60), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    discount: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    coupon_share: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    total: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    shipping_share: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    tax_share: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    earnings: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class ShippingStubRow(Base):
    __tablename__ = "shipping_stubs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    seller_order_id: Mapped[int] = mapped_column(
        ForeignKey("seller_orders.id"), nullable=False, unique=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")


# ═══════════════════════════════════════════════════════════════════════════════
# Payments / Markers
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentRecordRow(Base):
    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    buyer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    transaction_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    coupon_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shipping_address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    billing_address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes
    extra: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class MarkerRow(Base, MarkerMixin):
    __tablename__ = "idempotency_markers"


__all__ = (
    "Base",
    "DecimalText",
    "ProductRow",
    "CartRow",
    "CartItemRow",
    "CouponRow",
    "CouponUsageRow",
    "OrderRow",
    "OrderItemRow",
    "SellerOrderRow",
    "ShippingStubRow",
    "PaymentRecordRow",
    "MarkerRow",
)
