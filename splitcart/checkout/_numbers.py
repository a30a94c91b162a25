"""Human-readable order numbers."""

from __future__ import annotations

import secrets
import string
from datetime import datetime

_ALPHABET = string.ascii_uppercase + string.digits


def order_number(now: datetime, prefix: str = "ORD", suffix_length: int = 4) -> str:
    """ORD-20240131153000-7QK2"""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(suffix_length))
    return f"{prefix}-{now:%Y%m%d%H%M%S}-{suffix}"


def seller_order_number(order_number: str, seller_id: int) -> str:
    return f"{order_number}-S{seller_id}"


__all__ = ("order_number", "seller_order_number")
