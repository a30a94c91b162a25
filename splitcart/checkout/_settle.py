"""
Settlement — persisting the per-seller fan-out of a paid order.

Shared by synchronous checkout and webhook-driven order materialization,
so both paths split orders identically.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from kungfu import Result, Ok, Error

from combinators import lift as L

from splitcart.checkout._split import split_by_seller
from splitcart.domain import Order, OrderStatus, PaymentStatus, SellerOrder
from splitcart.errors import CheckoutError, Errors
from splitcart.ports import Transaction

if TYPE_CHECKING:
    from splitcart.config import CheckoutConfig

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Settlement:
    seller_orders: tuple[SellerOrder, ...]
    warnings: tuple[str, ...] = ()


async def settle_sellers(
    tx: Transaction,
    order: Order,
    config: CheckoutConfig,
    *,
    status: OrderStatus = OrderStatus.PAID,
    payment_status: PaymentStatus = PaymentStatus.COMPLETED,
) -> Result[Settlement, CheckoutError]:
    """
    Persist one SellerOrder per seller and link the order's items to it.

    Seller orders and item links are critical. Shipping stubs are not:
    a failure there is reported in Settlement.warnings.
    """
    seller_orders: list[SellerOrder] = []
    warnings: list[str] = []

    for share in split_by_seller(order.pricing, config):
        created = await L.catching_async(
            lambda share=share: tx.seller_orders.create(order, share, status, payment_status),
            on_error=Errors.storage,
        )
        match created:
            case Error(e):
                return Error(e)
            case Ok(seller_order):
                seller_orders.append(seller_order)

        linked = await L.catching_async(
            lambda so=seller_order: tx.orders.attach_seller_order(order.id, so.seller_id, so.id),
            on_error=Errors.storage,
        )
        match linked:
            case Error(e):
                return Error(e)
            case Ok(0) if share.lines:
                return Error(
                    Errors.integrity(
                        f"order {order.id}: no items linked to seller {share.seller_id}"
                    )
                )
            case Ok(_):
                pass

        stub = await L.catching_async(
            lambda so=seller_order: tx.shipping.create(so.id),
            on_error=str,
        )
        match stub:
            case Error(reason):
                log.warning(
                    "shipping stub for seller order %s not created: %s",
                    seller_order.id, reason,
                )
                warnings.append(f"shipping_stub:{seller_order.id}")
            case Ok(_):
                pass

    log.info("order %s split into %d seller orders", order.id, len(seller_orders))
    return Ok(Settlement(tuple(seller_orders), tuple(warnings)))


__all__ = ("Settlement", "settle_sellers")
