"""
Domain — multi-seller marketplace checkout.

One buyer Order fans out into one SellerOrder per seller present in its
items. Pricing is computed once per checkout attempt into an immutable
PricingBreakdown that is persisted with the order; totals are never
recomputed from the catalog afterwards.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from splitcart._types import Money, ZERO, cents, money


# ═══════════════════════════════════════════════════════════════════════════════
# Statuses
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    """Normalized five-state payment vocabulary (+ created)."""

    CREATED = "created"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


ORDER_STATUS_FOR_PAYMENT: Mapping[PaymentStatus, OrderStatus] = {
    PaymentStatus.CREATED: OrderStatus.PAYMENT_PENDING,
    PaymentStatus.PENDING: OrderStatus.PAYMENT_PENDING,
    PaymentStatus.COMPLETED: OrderStatus.PAID,
    PaymentStatus.FAILED: OrderStatus.PAYMENT_FAILED,
    PaymentStatus.CANCELLED: OrderStatus.CANCELLED,
    PaymentStatus.REFUNDED: OrderStatus.REFUNDED,
}


class ValidationSource(Enum):
    WIDGET = "widget"
    TEST = "test"
    WEBHOOK = "webhook"
    UNKNOWN = "unknown"


class StockMode(Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    REPLACE = "replace"


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Product:
    id: int
    seller_id: int
    name: str
    price: Money
    seller_discount_pct: Money
    stock: int


@dataclass(frozen=True, slots=True)
class LineRequest:
    """What a buyer asks for: product + quantity, optionally a declared price."""

    product_id: int
    quantity: int
    price: Money | None = None
    seller_id: int | None = None


@dataclass(frozen=True, slots=True)
class Cart:
    id: int
    user_id: int
    items: tuple[LineRequest, ...]


# ═══════════════════════════════════════════════════════════════════════════════
# Coupons
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Coupon:
    code: str
    percentage: Money
    is_used: bool = False
    used_by: int | None = None
    used_at: datetime | None = None
    expires_at: datetime | None = None
    owner_id: int | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def is_valid(self, now: datetime) -> bool:
        return not self.is_used and not self.is_expired(now)


# ═══════════════════════════════════════════════════════════════════════════════
# Pricing
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PricedLine:
    """
    One cart line after seller and volume discounts.

    final_unit_price is what the buyer is charged per unit before the
    cart-level coupon; the coupon is apportioned per line via
    coupon_share so seller settlements stay exact.
    """

    product_id: int
    seller_id: int
    name: str
    quantity: int
    original_unit_price: Money
    seller_discount_pct: Money
    seller_discounted_unit_price: Money
    volume_discount_pct: Money
    final_unit_price: Money
    coupon_share: Money = ZERO

    @property
    def original_subtotal(self) -> Money:
        return self.original_unit_price * self.quantity

    @property
    def seller_discount_amount(self) -> Money:
        return (self.original_unit_price - self.seller_discounted_unit_price) * self.quantity

    @property
    def volume_discount_amount(self) -> Money:
        return (self.seller_discounted_unit_price - self.final_unit_price) * self.quantity

    @property
    def subtotal(self) -> Money:
        return self.final_unit_price * self.quantity

    @property
    def total(self) -> Money:
        """Line subtotal after the apportioned coupon."""
        return self.subtotal - self.coupon_share


@dataclass(frozen=True, slots=True)
class PricingBreakdown:
    """
    Immutable pricing snapshot for one checkout attempt.

    All amounts are unrounded Decimals; presented() rounds to cents.
    final_total == subtotal_with_discounts + shipping_cost + tax_amount
    holds exactly.
    """

    lines: tuple[PricedLine, ...]
    original_subtotal: Money
    seller_discount_amount: Money
    volume_discount_pct: Money
    volume_discount_amount: Money
    subtotal_after_volume: Money
    coupon_code: str | None
    coupon_pct: Money
    coupon_discount_amount: Money
    subtotal_with_discounts: Money
    shipping_cost: Money
    free_shipping: bool
    free_shipping_threshold: Money
    tax_rate: Money
    tax_amount: Money
    final_total: Money
    degraded: bool = False

    @property
    def taxable_base(self) -> Money:
        return self.subtotal_with_discounts + self.shipping_cost

    @property
    def total_discount(self) -> Money:
        return (
            self.seller_discount_amount
            + self.volume_discount_amount
            + self.coupon_discount_amount
        )

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def seller_ids(self) -> tuple[int, ...]:
        seen: dict[int, None] = {}
        for line in self.lines:
            seen.setdefault(line.seller_id, None)
        return tuple(seen)

    def presented(self) -> dict[str, Any]:
        """Cents-rounded view for clients."""
        return {
            "original_subtotal": cents(self.original_subtotal),
            "seller_discounts": cents(self.seller_discount_amount),
            "volume_discount_percentage": self.volume_discount_pct,
            "volume_discounts": cents(self.volume_discount_amount),
            "subtotal_after_volume": cents(self.subtotal_after_volume),
            "coupon_code": self.coupon_code,
            "coupon_percentage": self.coupon_pct,
            "coupon_discount": cents(self.coupon_discount_amount),
            "subtotal_with_discounts": cents(self.subtotal_with_discounts),
            "shipping_cost": cents(self.shipping_cost),
            "free_shipping": self.free_shipping,
            "free_shipping_threshold": cents(self.free_shipping_threshold),
            "tax_rate": self.tax_rate,
            "tax_amount": cents(self.tax_amount),
            "final_total": cents(self.final_total),
            "total_discounts": cents(self.total_discount),
        }

    def snapshot(self) -> dict[str, Any]:
        """Lossless JSON-ready form (decimals as strings)."""
        return {
            "lines": [
                {
                    "product_id": line.product_id,
                    "seller_id": line.seller_id,
                    "name": line.name,
                    "quantity": line.quantity,
                    "original_unit_price": str(line.original_unit_price),
                    "seller_discount_pct": str(line.seller_discount_pct),
                    "seller_discounted_unit_price": str(line.seller_discounted_unit_price),
                    "volume_discount_pct": str(line.volume_discount_pct),
                    "final_unit_price": str(line.final_unit_price),
                    "coupon_share": str(line.coupon_share),
                }
                for line in self.lines
            ],
            "original_subtotal": str(self.original_subtotal),
            "seller_discount_amount": str(self.seller_discount_amount),
            "volume_discount_pct": str(self.volume_discount_pct),
            "volume_discount_amount": str(self.volume_discount_amount),
            "subtotal_after_volume": str(self.subtotal_after_volume),
            "coupon_code": self.coupon_code,
            "coupon_pct": str(self.coupon_pct),
            "coupon_discount_amount": str(self.coupon_discount_amount),
            "subtotal_with_discounts": str(self.subtotal_with_discounts),
            "shipping_cost": str(self.shipping_cost),
            "free_shipping": self.free_shipping,
            "free_shipping_threshold": str(self.free_shipping_threshold),
            "tax_rate": str(self.tax_rate),
            "tax_amount": str(self.tax_amount),
            "final_total": str(self.final_total),
            "degraded": self.degraded,
        }

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> PricingBreakdown:
        lines = tuple(
            PricedLine(
                product_id=int(raw["product_id"]),
                seller_id=int(raw["seller_id"]),
                name=str(raw["name"]),
                quantity=int(raw["quantity"]),
                original_unit_price=money(raw["original_unit_price"]),
                seller_discount_pct=money(raw["seller_discount_pct"]),
                seller_discounted_unit_price=money(raw["seller_discounted_unit_price"]),
                volume_discount_pct=money(raw["volume_discount_pct"]),
                final_unit_price=money(raw["final_unit_price"]),
                coupon_share=money(raw["coupon_share"]),
            )
            for raw in data["lines"]
        )
        return cls(
            lines=lines,
            original_subtotal=money(data["original_subtotal"]),
            seller_discount_amount=money(data["seller_discount_amount"]),
            volume_discount_pct=money(data["volume_discount_pct"]),
            volume_discount_amount=money(data["volume_discount_amount"]),
            subtotal_after_volume=money(data["subtotal_after_volume"]),
            coupon_code=data.get("coupon_code"),
            coupon_pct=money(data["coupon_pct"]),
            coupon_discount_amount=money(data["coupon_discount_amount"]),
            subtotal_with_discounts=money(data["subtotal_with_discounts"]),
            shipping_cost=money(data["shipping_cost"]),
            free_shipping=bool(data["free_shipping"]),
            free_shipping_threshold=money(data["free_shipping_threshold"]),
            tax_rate=money(data["tax_rate"]),
            tax_amount=money(data["tax_amount"]),
            final_total=money(data["final_total"]),
            degraded=bool(data.get("degraded", False)),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class OrderItem:
    product_id: int
    seller_id: int
    quantity: int
    unit_price: Money
    original_unit_price: Money
    seller_discount_pct: Money
    volume_discount_pct: Money
    coupon_share: Money
    subtotal: Money
    id: int | None = None
    seller_order_id: int | None = None


@dataclass(frozen=True, slots=True)
class NewOrder:
    """Everything needed to persist an Order."""

    order_number: str
    buyer_id: int
    seller_id: int | None
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str | None
    pricing: PricingBreakdown
    shipping_address: Mapping[str, Any]
    billing_address: Mapping[str, Any]
    items: tuple[OrderItem, ...]
    payment_id: str | None = None


@dataclass(frozen=True, slots=True)
class Order:
    id: int
    order_number: str
    buyer_id: int
    seller_id: int | None
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str | None
    payment_id: str | None
    pricing: PricingBreakdown
    shipping_address: Mapping[str, Any]
    billing_address: Mapping[str, Any]
    items: tuple[OrderItem, ...]
    created_at: datetime

    @property
    def total(self) -> Money:
        return self.pricing.final_total

    @property
    def subtotal_with_discounts(self) -> Money:
        return self.pricing.subtotal_with_discounts

    @property
    def shipping_cost(self) -> Money:
        return self.pricing.shipping_cost


@dataclass(frozen=True, slots=True)
class SellerShare:
    """Per-seller settlement figures computed by the splitter."""

    seller_id: int
    lines: tuple[PricedLine, ...]
    subtotal: Money
    original_subtotal: Money
    discount: Money
    coupon_share: Money
    total: Money
    shipping_share: Money
    tax_share: Money
    platform_fee: Money
    earnings: Money

    @property
    def quantity(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass(frozen=True, slots=True)
class SellerOrder:
    id: int
    order_id: int
    seller_id: int
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    subtotal: Money
    discount: Money
    coupon_share: Money
    total: Money
    shipping_share: Money
    tax_share: Money
    platform_fee: Money
    earnings: Money


@dataclass(frozen=True, slots=True)
class ShippingStub:
    id: int
    seller_order_id: int
    status: str = "pending"


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PaymentRecord:
    payment_id: str
    buyer_id: int
    amount: Money
    currency: str
    status: PaymentStatus
    items: tuple[LineRequest, ...] = ()
    transaction_reference: str | None = None
    coupon_code: str | None = None
    shipping_address: Mapping[str, Any] = field(default_factory=dict)
    billing_address: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    order_id: int | None = None


@dataclass(frozen=True, slots=True)
class PaymentOutcome:
    """Normalized confirmation, whatever channel it came from."""

    success: bool
    source: ValidationSource
    status: PaymentStatus
    transaction_id: str | None = None
    amount: Money | None = None
    payment_method: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    simulated: bool = False
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class GatewayCharge:
    """Raw answer of PaymentGateway.process_payment or create_payment."""

    success: bool
    transaction_id: str | None
    result_code: str | None = None
    message: str | None = None
    payment_method: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class GatewayVerification:
    """Raw answer of PaymentGateway.verify_payment."""

    result_code: str
    description: str | None = None
    transaction_id: str | None = None
    amount: Money | None = None
    payment_method: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "OrderStatus",
    "PaymentStatus",
    "ORDER_STATUS_FOR_PAYMENT",
    "ValidationSource",
    "StockMode",
    "Product",
    "LineRequest",
    "Cart",
    "Coupon",
    "PricedLine",
    "PricingBreakdown",
    "OrderItem",
    "NewOrder",
    "Order",
    "SellerShare",
    "SellerOrder",
    "ShippingStub",
    "PaymentRecord",
    "PaymentOutcome",
    "GatewayCharge",
    "GatewayVerification",
)
