"""
Wire models — pydantic request/response shapes.

Requests convert with to_domain(), responses build with from_domain(),
so route handlers stay a three-line decode → run → encode.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Protocol, TypeVar

from kungfu import Result, Ok, Error
from pydantic import BaseModel, Field

from splitcart.checkout import CheckoutRequest, CheckoutResult
from splitcart.domain import LineRequest, SellerOrder
from splitcart.errors import CheckoutError
from splitcart.webhooks import OpenedPayment, PaymentIntent, WebhookResponse

DomainT_co = TypeVar("DomainT_co", covariant=True)
DomainT_contra = TypeVar("DomainT_contra", contravariant=True)


class ToDomain(Protocol[DomainT_co]):
    def to_domain(self) -> DomainT_co: ...


class FromDomain(Protocol[DomainT_contra]):
    @classmethod
    def from_domain(cls, dom: DomainT_contra) -> FromDomain[DomainT_contra]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout
# ═══════════════════════════════════════════════════════════════════════════════


class LineIn(BaseModel):
    product_id: int
    quantity: int
    price: Decimal | None = None
    seller_id: int | None = None

    def to_domain(self) -> LineRequest:
        return LineRequest(
            product_id=self.product_id,
            quantity=self.quantity,
            price=self.price,
            seller_id=self.seller_id,
        )


class CheckoutIn(BaseModel):
    buyer_id: int
    payment: dict[str, Any] = Field(default_factory=dict)
    shipping_address: dict[str, Any] = Field(default_factory=dict)
    billing_address: dict[str, Any] = Field(default_factory=dict)
    items: list[LineIn] | None = None
    seller_id: int | None = None
    coupon_code: str | None = None
    calculated_totals: dict[str, Any] | None = None
    payment_method: str = "card"

    def to_domain(self) -> CheckoutRequest:
        return CheckoutRequest(
            buyer_id=self.buyer_id,
            payment=self.payment,
            shipping_address=self.shipping_address,
            billing_address=self.billing_address,
            items=None if self.items is None else tuple(i.to_domain() for i in self.items),
            seller_id=self.seller_id,
            coupon_code=self.coupon_code,
            calculated_totals=self.calculated_totals,
            payment_method=self.payment_method,
        )


class SellerOrderOut(BaseModel):
    id: int
    seller_id: int
    order_number: str
    status: str
    total: Decimal
    shipping_share: Decimal
    tax_share: Decimal
    platform_fee: Decimal
    earnings: Decimal

    @classmethod
    def from_domain(cls, dom: SellerOrder) -> SellerOrderOut:
        return cls(
            id=dom.id,
            seller_id=dom.seller_id,
            order_number=dom.order_number,
            status=dom.status.value,
            total=dom.total,
            shipping_share=dom.shipping_share,
            tax_share=dom.tax_share,
            platform_fee=dom.platform_fee,
            earnings=dom.earnings,
        )


class CheckoutOut(BaseModel):
    success: bool
    order_id: int | None = None
    order_number: str | None = None
    status: str | None = None
    payment_status: str | None = None
    transaction_id: str | None = None
    totals: dict[str, Any] | None = None
    seller_orders: list[SellerOrderOut] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_domain(cls, dom: Result[CheckoutResult, CheckoutError]) -> CheckoutOut:
        match dom:
            case Ok(done):
                return cls(
                    success=True,
                    order_id=done.order.id,
                    order_number=done.order.order_number,
                    status=done.order.status.value,
                    payment_status=done.order.payment_status.value,
                    transaction_id=done.payment.transaction_id,
                    totals=done.pricing.presented(),
                    seller_orders=[SellerOrderOut.from_domain(so) for so in done.seller_orders],
                    warnings=list(done.warnings),
                )
            case Error(e):
                return cls(success=False, error_code=e.code, error_message=e.message)


# ═══════════════════════════════════════════════════════════════════════════════
# Webhooks
# ═══════════════════════════════════════════════════════════════════════════════


class WebhookOut(BaseModel):
    success: bool
    payment_id: str | None = None
    status: str | None = None
    message: str
    order_id: int | None = None

    @classmethod
    def from_domain(cls, dom: WebhookResponse) -> WebhookOut:
        return cls(
            success=dom.success,
            payment_id=dom.payment_id,
            status=dom.status.value if dom.status is not None else None,
            message=dom.message,
            order_id=dom.order_id,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Asynchronous payments
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentIn(BaseModel):
    buyer_id: int
    reference: str = Field(min_length=1)
    items: list[LineIn] = Field(min_length=1)
    customer: dict[str, Any]
    coupon_code: str | None = None
    shipping_address: dict[str, Any] = Field(default_factory=dict)
    billing_address: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> PaymentIntent:
        return PaymentIntent(
            buyer_id=self.buyer_id,
            reference=self.reference,
            items=tuple(i.to_domain() for i in self.items),
            customer=self.customer,
            coupon_code=self.coupon_code,
            shipping_address=self.shipping_address,
            billing_address=self.billing_address,
            metadata=self.metadata,
        )


class PaymentOut(BaseModel):
    success: bool
    payment_id: str | None = None
    amount: Decimal | None = None
    status: str | None = None
    qr_code: str | None = None
    payment_url: str | None = None
    reused: bool = False
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_domain(cls, dom: Result[OpenedPayment, CheckoutError]) -> PaymentOut:
        match dom:
            case Ok(opened):
                return cls(
                    success=True,
                    payment_id=opened.payment_id,
                    amount=opened.amount,
                    status=opened.record.status.value,
                    qr_code=opened.qr_code,
                    payment_url=opened.payment_url,
                    reused=opened.reused,
                )
            case Error(e):
                return cls(success=False, error_code=e.code, error_message=e.message)


__all__ = (
    "ToDomain",
    "FromDomain",
    "LineIn",
    "CheckoutIn",
    "SellerOrderOut",
    "CheckoutOut",
    "WebhookOut",
    "PaymentIn",
    "PaymentOut",
)
