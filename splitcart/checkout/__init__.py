"""
Checkout — the buyer-facing saga and the seller fan-out it produces.

    from splitcart import checkout as C

    orchestrator = C.CheckoutOrchestrator(uow, gateway, sink, keystore, config)
    result = await orchestrator.checkout(C.CheckoutRequest(...))
"""

from splitcart.checkout._numbers import order_number, seller_order_number
from splitcart.checkout._split import (
    apportion_shipping,
    group_by_seller,
    split_by_seller,
    order_items_from,
)
from splitcart.checkout._settle import Settlement, settle_sellers
from splitcart.checkout._request import CheckoutRequest, CheckoutResult
from splitcart.checkout._orchestrator import EVENT_MARKER_PREFIX, CheckoutOrchestrator

__all__ = (
    "order_number",
    "seller_order_number",
    "apportion_shipping",
    "group_by_seller",
    "split_by_seller",
    "order_items_from",
    "Settlement",
    "settle_sellers",
    "CheckoutRequest",
    "CheckoutResult",
    "EVENT_MARKER_PREFIX",
    "CheckoutOrchestrator",
)
