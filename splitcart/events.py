"""
Domain events.

OrderCreated is published once per paid order. Consumers (notifications,
invoicing, analytics) live outside this package and subscribe through an
EventSink implementation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from splitcart.domain import Order, PaymentStatus

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OrderCreated:
    order_id: int
    order_number: str
    buyer_id: int
    seller_id: int | None
    seller_ids: tuple[int, ...]
    totals: dict[str, Any]
    items: tuple[dict[str, Any], ...]
    payment_status: PaymentStatus
    transaction_id: str | None

    @classmethod
    def from_order(cls, order: Order) -> OrderCreated:
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            buyer_id=order.buyer_id,
            seller_id=order.seller_id,
            seller_ids=order.pricing.seller_ids,
            totals=order.pricing.presented(),
            items=tuple(
                {
                    "product_id": item.product_id,
                    "seller_id": item.seller_id,
                    "quantity": item.quantity,
                    "unit_price": str(item.unit_price),
                }
                for item in order.items
            ),
            payment_status=order.payment_status,
            transaction_id=order.payment_id,
        )


class EventSink(Protocol):
    async def publish(self, event: OrderCreated) -> None: ...


@dataclass
class CollectingSink:
    """In-process sink: keeps events in a list. Used by tests and demos."""

    events: list[OrderCreated] = field(default_factory=list[OrderCreated])

    async def publish(self, event: OrderCreated) -> None:
        log.info("OrderCreated order=%s buyer=%s", event.order_id, event.buyer_id)
        self.events.append(event)


__all__ = ("OrderCreated", "EventSink", "CollectingSink")
