"""
SQLAlchemy repositories — one class per port, all bound to one AsyncSession.

Repositories flush but never commit; the unit of work owns the
transaction. Rows are converted to frozen domain objects on the way out
so nothing outside this package holds a live ORM instance.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from splitcart.checkout import seller_order_number
from splitcart.db._tables import (
    CartItemRow,
    CartRow,
    CouponRow,
    CouponUsageRow,
    OrderItemRow,
    OrderRow,
    PaymentRecordRow,
    ProductRow,
    SellerOrderRow,
    ShippingStubRow,
)
from splitcart.domain import (
    Cart,
    Coupon,
    LineRequest,
    NewOrder,
    Order,
    OrderItem,
    OrderStatus,
    PaymentRecord,
    PaymentStatus,
    PricingBreakdown,
    Product,
    SellerOrder,
    SellerShare,
    ShippingStub,
    StockMode,
)

log = logging.getLogger(__name__)

type Clock = Callable[[], datetime]


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


def _product(row: ProductRow) -> Product:
    return Product(
        id=row.id,
        seller_id=row.seller_id,
        name=row.name,
        price=row.price,
        seller_discount_pct=row.seller_discount_pct,
        stock=row.stock,
    )


class SQLProductCatalog:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_id(self, product_id: int) -> Product | None:
        row = await self._session.get(ProductRow, product_id)
        return _product(row) if row is not None else None

    async def lock_for_update(self, product_ids: Sequence[int]) -> dict[int, Product]:
        locked: dict[int, Product] = {}
        for product_id in product_ids:
            row = (
                await self._session.execute(
                    select(ProductRow)
                    .where(ProductRow.id == product_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
            if row is not None:
                locked[product_id] = _product(row)
        return locked

    async def update_stock(
        self, product_id: int, quantity: int, mode: StockMode
    ) -> Product:
        row = await self._session.get(ProductRow, product_id)
        if row is None:
            raise LookupError(f"product {product_id} not found")

        match mode:
            case StockMode.INCREASE:
                row.stock += quantity
            case StockMode.DECREASE:
                if row.stock < quantity:
                    raise ValueError(
                        f"product {product_id}: cannot take {quantity} from {row.stock}"
                    )
                row.stock -= quantity
            case StockMode.REPLACE:
                row.stock = quantity

        await self._session.flush()
        return _product(row)


# ═══════════════════════════════════════════════════════════════════════════════
# Carts
# ═══════════════════════════════════════════════════════════════════════════════


class SQLCartStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_user_id(self, user_id: int) -> Cart | None:
        cart = (
            await self._session.execute(select(CartRow).where(CartRow.user_id == user_id))
        ).scalar_one_or_none()
        if cart is None:
            return None

        rows = (
            await self._session.execute(
                select(CartItemRow)
                .where(CartItemRow.cart_id == cart.id)
                .order_by(CartItemRow.id)
            )
        ).scalars()
        items = tuple(
            LineRequest(product_id=row.product_id, quantity=row.quantity, price=row.price)
            for row in rows
        )
        return Cart(id=cart.id, user_id=cart.user_id, items=items)

    async def clear_cart(self, cart_id: int) -> None:
        await self._session.execute(delete(CartItemRow).where(CartItemRow.cart_id == cart_id))


# ═══════════════════════════════════════════════════════════════════════════════
# Coupons
# ═══════════════════════════════════════════════════════════════════════════════


class SQLCouponStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_code(self, code: str) -> Coupon | None:
        row = (
            await self._session.execute(
                select(CouponRow)
                .where(CouponRow.code == code)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if row is None:
            return None
        return Coupon(
            code=row.code,
            percentage=row.percentage,
            is_used=row.is_used,
            used_by=row.used_by,
            used_at=row.used_at,
            expires_at=row.expires_at,
            owner_id=row.owner_id,
        )

    async def has_been_used_by(self, code: str, user_id: int) -> bool:
        found = await self._session.execute(
            select(CouponUsageRow.id).where(
                CouponUsageRow.code == code, CouponUsageRow.user_id == user_id
            )
        )
        return found.first() is not None

    async def mark_as_used(self, code: str, user_id: int, at: datetime) -> bool:
        # Conditional update: of two concurrent consumers only one sees a row.
        result = await self._session.execute(
            update(CouponRow)
            .where(CouponRow.code == code, CouponRow.is_used.is_(False))
            .values(is_used=True, used_by=user_id, used_at=at)
        )
        if result.rowcount != 1:  # type: ignore[attr-defined]
            return False
        self._session.add(CouponUsageRow(code=code, user_id=user_id, used_at=at))
        await self._session.flush()
        return True


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


def _item(row: OrderItemRow) -> OrderItem:
    return OrderItem(
        id=row.id,
        product_id=row.product_id,
        seller_id=row.seller_id,
        quantity=row.quantity,
        unit_price=row.unit_price,
        original_unit_price=row.original_unit_price,
        seller_discount_pct=row.seller_discount_pct,
        volume_discount_pct=row.volume_discount_pct,
        coupon_share=row.coupon_share,
        subtotal=row.subtotal,
        seller_order_id=row.seller_order_id,
    )


class SQLOrderStore:
    def __init__(self, session: AsyncSession, clock: Clock) -> None:
        self._session = session
        self._clock = clock

    async def create(self, order: NewOrder) -> Order:
        row = OrderRow(
            order_number=order.order_number,
            buyer_id=order.buyer_id,
            seller_id=order.seller_id,
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_method=order.payment_method,
            payment_id=order.payment_id,
            total=order.pricing.final_total,
            pricing=order.pricing.snapshot(),
            shipping_address=dict(order.shipping_address),
            billing_address=dict(order.billing_address),
            created_at=self._clock(),
        )
        self._session.add(row)
        await self._session.flush()

        for item in order.items:
            self._session.add(
                OrderItemRow(
                    order_id=row.id,
                    product_id=item.product_id,
                    seller_id=item.seller_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    original_unit_price=item.original_unit_price,
                    seller_discount_pct=item.seller_discount_pct,
                    volume_discount_pct=item.volume_discount_pct,
                    coupon_share=item.coupon_share,
                    subtotal=item.subtotal,
                )
            )
        await self._session.flush()
        return await self._load(row)

    async def create_from_webhook(self, order: NewOrder) -> Order:
        """Same as create(), but a second order for one payment id is never made."""
        if order.payment_id is not None:
            existing = await self.find_by_payment_id(order.payment_id)
            if existing is not None:
                log.warning(
                    "order for payment %s already exists (%s)",
                    order.payment_id, existing.order_number,
                )
                return existing
        return await self.create(order)

    async def find_by_id(self, order_id: int) -> Order | None:
        row = await self._session.get(OrderRow, order_id, populate_existing=True)
        return await self._load(row) if row is not None else None

    async def find_by_payment_id(self, payment_id: str) -> Order | None:
        row = (
            await self._session.execute(
                select(OrderRow)
                .where(OrderRow.payment_id == payment_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        return await self._load(row) if row is not None else None

    async def update_payment_info(
        self,
        order_id: int,
        *,
        payment_id: str | None,
        payment_status: PaymentStatus,
        payment_method: str | None,
        status: OrderStatus,
    ) -> Order:
        row = await self._session.get(OrderRow, order_id)
        if row is None:
            raise LookupError(f"order {order_id} not found")
        row.payment_id = payment_id
        row.payment_status = payment_status.value
        row.payment_method = payment_method
        row.status = status.value
        row.updated_at = self._clock()
        await self._session.flush()
        return await self._load(row)

    async def update_status(
        self, order_id: int, status: OrderStatus, payment_status: PaymentStatus
    ) -> None:
        await self._session.execute(
            update(OrderRow)
            .where(OrderRow.id == order_id)
            .values(
                status=status.value,
                payment_status=payment_status.value,
                updated_at=self._clock(),
            )
        )

    async def attach_seller_order(
        self, order_id: int, seller_id: int, seller_order_id: int
    ) -> int:
        result = await self._session.execute(
            update(OrderItemRow)
            .where(OrderItemRow.order_id == order_id, OrderItemRow.seller_id == seller_id)
            .values(seller_order_id=seller_order_id)
        )
        return result.rowcount  # type: ignore[attr-defined, no-any-return]

    async def _load(self, row: OrderRow) -> Order:
        items = (
            await self._session.execute(
                select(OrderItemRow)
                .where(OrderItemRow.order_id == row.id)
                .order_by(OrderItemRow.id)
                .execution_options(populate_existing=True)
            )
        ).scalars()
        return Order(
            id=row.id,
            order_number=row.order_number,
            buyer_id=row.buyer_id,
            seller_id=row.seller_id,
            status=OrderStatus(row.status),
            payment_status=PaymentStatus(row.payment_status),
            payment_method=row.payment_method,
            payment_id=row.payment_id,
            pricing=PricingBreakdown.from_snapshot(row.pricing),
            shipping_address=row.shipping_address,
            billing_address=row.billing_address,
            items=tuple(_item(item) for item in items),
            created_at=row.created_at,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Seller orders / Shipping
# ═══════════════════════════════════════════════════════════════════════════════


def _seller_order(row: SellerOrderRow) -> SellerOrder:
    return SellerOrder(
        id=row.id,
        order_id=row.order_id,
        seller_id=row.seller_id,
        order_number=row.order_number,
        status=OrderStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        subtotal=row.subtotal,
        discount=row.discount,
        coupon_share=row.coupon_share,
        total=row.total,
        shipping_share=row.shipping_share,
        tax_share=row.tax_share,
        platform_fee=row.platform_fee,
        earnings=row.earnings,
    )


class SQLSellerOrderStore:
    def __init__(self, session: AsyncSession, clock: Clock) -> None:
        self._session = session
        self._clock = clock

    async def create(
        self,
        order: Order,
        share: SellerShare,
        status: OrderStatus,
        payment_status: PaymentStatus,
    ) -> SellerOrder:
        row = SellerOrderRow(
            order_id=order.id,
            seller_id=share.seller_id,
            order_number=seller_order_number(order.order_number, share.seller_id),
            status=status.value,
            payment_status=payment_status.value,
            subtotal=share.subtotal,
            discount=share.discount,
            coupon_share=share.coupon_share,
            total=share.total,
            shipping_share=share.shipping_share,
            tax_share=share.tax_share,
            platform_fee=share.platform_fee,
            earnings=share.earnings,
            created_at=self._clock(),
        )
        self._session.add(row)
        await self._session.flush()
        return _seller_order(row)

    async def for_order(self, order_id: int) -> list[SellerOrder]:
        rows = (
            await self._session.execute(
                select(SellerOrderRow)
                .where(SellerOrderRow.order_id == order_id)
                .order_by(SellerOrderRow.seller_id)
                .execution_options(populate_existing=True)
            )
        ).scalars()
        return [_seller_order(row) for row in rows]

    async def update_status(
        self, order_id: int, status: OrderStatus, payment_status: PaymentStatus
    ) -> int:
        result = await self._session.execute(
            update(SellerOrderRow)
            .where(SellerOrderRow.order_id == order_id)
            .values(status=status.value, payment_status=payment_status.value)
        )
        return result.rowcount  # type: ignore[attr-defined, no-any-return]


class SQLShippingStubStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, seller_order_id: int) -> ShippingStub:
        # Savepoint: a failed stub must not poison the surrounding transaction.
        async with self._session.begin_nested():
            row = ShippingStubRow(seller_order_id=seller_order_id, status="pending")
            self._session.add(row)
            await self._session.flush()
        return ShippingStub(id=row.id, seller_order_id=row.seller_order_id, status=row.status)


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════


def _line_to_json(line: LineRequest) -> dict[str, Any]:
    return {
        "product_id": line.product_id,
        "quantity": line.quantity,
        "price": str(line.price) if line.price is not None else None,
        "seller_id": line.seller_id,
    }


def _line_from_json(raw: dict[str, Any]) -> LineRequest:
    price = raw.get("price")
    return LineRequest(
        product_id=int(raw["product_id"]),
        quantity=int(raw["quantity"]),
        price=None if price is None else Decimal(str(price)),
        seller_id=raw.get("seller_id"),
    )


def _record(row: PaymentRecordRow) -> PaymentRecord:
    return PaymentRecord(
        payment_id=row.payment_id,
        buyer_id=row.buyer_id,
        amount=row.amount,
        currency=row.currency,
        status=PaymentStatus(row.status),
        items=tuple(_line_from_json(raw) for raw in row.items or ()),
        transaction_reference=row.transaction_reference,
        coupon_code=row.coupon_code,
        shipping_address=row.shipping_address or {},
        billing_address=row.billing_address or {},
        metadata=row.extra or {},
        order_id=row.order_id,
    )


class SQLPaymentRecordStore:
    def __init__(self, session: AsyncSession, clock: Clock) -> None:
        self._session = session
        self._clock = clock

    async def create(self, record: PaymentRecord) -> PaymentRecord:
        row = PaymentRecordRow(
            payment_id=record.payment_id,
            buyer_id=record.buyer_id,
            amount=record.amount,
            currency=record.currency,
            status=record.status.value,
            items=[_line_to_json(line) for line in record.items],
            transaction_reference=record.transaction_reference,
            coupon_code=record.coupon_code,
            shipping_address=dict(record.shipping_address),
            billing_address=dict(record.billing_address),
            extra=dict(record.metadata),
            order_id=record.order_id,
            created_at=self._clock(),
        )
        self._session.add(row)
        await self._session.flush()
        return _record(row)

    async def find_by_payment_id(self, payment_id: str) -> PaymentRecord | None:
        row = await self._session.get(PaymentRecordRow, payment_id, populate_existing=True)
        return _record(row) if row is not None else None

    async def find_open_by_reference(
        self, reference: str, buyer_id: int
    ) -> PaymentRecord | None:
        row = (
            await self._session.execute(
                select(PaymentRecordRow)
                .where(
                    PaymentRecordRow.transaction_reference == reference,
                    PaymentRecordRow.buyer_id == buyer_id,
                    PaymentRecordRow.status.in_(
                        (PaymentStatus.CREATED.value, PaymentStatus.PENDING.value)
                    ),
                )
                .order_by(PaymentRecordRow.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        return _record(row) if row is not None else None

    async def update_status(self, payment_id: str, status: PaymentStatus) -> None:
        await self._session.execute(
            update(PaymentRecordRow)
            .where(PaymentRecordRow.payment_id == payment_id)
            .values(status=status.value, updated_at=self._clock())
        )

    async def attach_order(self, payment_id: str, order_id: int) -> None:
        await self._session.execute(
            update(PaymentRecordRow)
            .where(PaymentRecordRow.payment_id == payment_id)
            .values(order_id=order_id, updated_at=self._clock())
        )


__all__ = (
    "SQLProductCatalog",
    "SQLCartStore",
    "SQLCouponStore",
    "SQLOrderStore",
    "SQLSellerOrderStore",
    "SQLShippingStubStore",
    "SQLPaymentRecordStore",
)
