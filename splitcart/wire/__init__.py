"""
HTTP surface on FastAPI with pydantic models.
"""

from splitcart.wire._models import (
    ToDomain,
    FromDomain,
    LineIn,
    CheckoutIn,
    SellerOrderOut,
    CheckoutOut,
    WebhookOut,
    PaymentIn,
    PaymentOut,
)
from splitcart.wire._app import SIGNATURE_HEADER, create_app

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
    "SIGNATURE_HEADER",
    "create_app",
)
