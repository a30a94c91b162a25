"""
Webhooks — asynchronous payments: opening QR / link payments and the
idempotent reconciliation of their confirmations.
"""

from splitcart.webhooks._initiator import (
    PaymentIntent,
    OpenedPayment,
    PaymentInitiator,
)
from splitcart.webhooks._reconciler import (
    WEBHOOK_MARKER_PREFIX,
    WebhookResponse,
    WebhookReconciler,
)

__all__ = (
    "PaymentIntent",
    "OpenedPayment",
    "PaymentInitiator",
    "WEBHOOK_MARKER_PREFIX",
    "WebhookResponse",
    "WebhookReconciler",
)
