"""Checkout request and result."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from splitcart.domain import (
    GatewayCharge,
    LineRequest,
    Order,
    PricingBreakdown,
    SellerOrder,
)


@dataclass(frozen=True, slots=True)
class CheckoutRequest:
    """
    items: explicit lines with client-declared prices; when None the
    buyer's persisted cart is used.
    calculated_totals: client-declared aggregate totals, verified when given.
    """

    buyer_id: int
    payment: Mapping[str, Any]
    shipping_address: Mapping[str, Any]
    billing_address: Mapping[str, Any] = field(default_factory=dict)
    items: tuple[LineRequest, ...] | None = None
    seller_id: int | None = None
    coupon_code: str | None = None
    calculated_totals: Mapping[str, Any] | None = None
    payment_method: str = "card"


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    order: Order
    seller_orders: tuple[SellerOrder, ...]
    payment: GatewayCharge
    pricing: PricingBreakdown
    warnings: tuple[str, ...] = ()


__all__ = ("CheckoutRequest", "CheckoutResult")
