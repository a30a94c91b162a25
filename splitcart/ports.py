"""
Ports — contracts of the collaborators checkout depends on.

Implementations raise on infrastructure failure; the orchestration layer
lifts every call into a Result (see splitcart.lift). Concrete SQLAlchemy
adapters live in splitcart.db.

Example — custom catalog backed by an HTTP service:

    class RemoteCatalog:
        async def find_by_id(self, product_id: int) -> Product | None:
            resp = await client.get(f"/products/{product_id}")
            ...
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol

from splitcart._types import Money
from splitcart.domain import (
    Cart,
    Coupon,
    GatewayCharge,
    GatewayVerification,
    NewOrder,
    Order,
    OrderStatus,
    PaymentRecord,
    PaymentStatus,
    Product,
    SellerOrder,
    SellerShare,
    ShippingStub,
    StockMode,
)


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog / Cart / Coupons
# ═══════════════════════════════════════════════════════════════════════════════


class ProductCatalog(Protocol):
    async def find_by_id(self, product_id: int) -> Product | None: ...

    async def lock_for_update(self, product_ids: Sequence[int]) -> dict[int, Product]:
        """
        Acquire exclusive row locks, one product at a time, in the given
        order, and return the freshly read rows. Missing ids are absent
        from the result.
        """
        ...

    async def update_stock(
        self, product_id: int, quantity: int, mode: StockMode
    ) -> Product: ...


class CartStore(Protocol):
    async def find_by_user_id(self, user_id: int) -> Cart | None: ...

    async def clear_cart(self, cart_id: int) -> None: ...


class CouponStore(Protocol):
    async def find_by_code(self, code: str) -> Coupon | None: ...

    async def has_been_used_by(self, code: str, user_id: int) -> bool: ...

    async def mark_as_used(self, code: str, user_id: int, at: datetime) -> bool:
        """Consume the coupon. Returns False if it was already consumed."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStore(Protocol):
    async def create(self, order: NewOrder) -> Order: ...

    async def create_from_webhook(self, order: NewOrder) -> Order: ...

    async def find_by_id(self, order_id: int) -> Order | None: ...

    async def find_by_payment_id(self, payment_id: str) -> Order | None: ...

    async def update_payment_info(
        self,
        order_id: int,
        *,
        payment_id: str | None,
        payment_status: PaymentStatus,
        payment_method: str | None,
        status: OrderStatus,
    ) -> Order: ...

    async def update_status(
        self, order_id: int, status: OrderStatus, payment_status: PaymentStatus
    ) -> None: ...

    async def attach_seller_order(
        self, order_id: int, seller_id: int, seller_order_id: int
    ) -> int:
        """Set seller_order_id on the seller's items. Returns rows touched."""
        ...


class SellerOrderStore(Protocol):
    async def create(
        self,
        order: Order,
        share: SellerShare,
        status: OrderStatus,
        payment_status: PaymentStatus,
    ) -> SellerOrder: ...

    async def for_order(self, order_id: int) -> list[SellerOrder]: ...

    async def update_status(
        self, order_id: int, status: OrderStatus, payment_status: PaymentStatus
    ) -> int: ...


class ShippingStubStore(Protocol):
    async def create(self, seller_order_id: int) -> ShippingStub: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentRecordStore(Protocol):
    async def create(self, record: PaymentRecord) -> PaymentRecord: ...

    async def find_by_payment_id(self, payment_id: str) -> PaymentRecord | None: ...

    async def find_open_by_reference(
        self, reference: str, buyer_id: int
    ) -> PaymentRecord | None:
        """Newest record of the buyer for this reference still created or pending."""
        ...

    async def update_status(self, payment_id: str, status: PaymentStatus) -> None: ...

    async def attach_order(self, payment_id: str, order_id: int) -> None: ...


class PaymentGateway(Protocol):
    """Capability boundary to a concrete payment provider."""

    async def process_payment(
        self, payload: Mapping[str, Any], amount: Money
    ) -> GatewayCharge: ...

    async def create_payment(
        self, reference: str, amount: Money, payload: Mapping[str, Any]
    ) -> GatewayCharge:
        """
        Open an asynchronous payment (QR code or payment link). The
        returned transaction_id is the provider payment id later echoed
        by webhooks; raw carries qr_code, payment_url and numeric_code.
        """
        ...

    async def verify_payment(self, reference: str) -> GatewayVerification: ...

    async def void_payment(self, transaction_id: str) -> None:
        """Reverse a charge made in a checkout that later rolled back."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Unit of Work
# ═══════════════════════════════════════════════════════════════════════════════


class Transaction(Protocol):
    """
    Repositories bound to one database transaction.

    Nothing is durable until commit() is called. Leaving the context
    without a commit, or with an exception, rolls back.
    """

    catalog: ProductCatalog
    carts: CartStore
    coupons: CouponStore
    orders: OrderStore
    seller_orders: SellerOrderStore
    shipping: ShippingStubStore
    payments: PaymentRecordStore

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class UnitOfWork(Protocol):
    def begin(
        self, isolation_level: str | None = None
    ) -> AbstractAsyncContextManager[Transaction]: ...


__all__ = (
    "ProductCatalog",
    "CartStore",
    "CouponStore",
    "OrderStore",
    "SellerOrderStore",
    "ShippingStubStore",
    "PaymentRecordStore",
    "PaymentGateway",
    "Transaction",
    "UnitOfWork",
)
