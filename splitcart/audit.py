"""
Audit trail for failed checkout and webhook attempts.

Writes to the "splitcart.audit" logger. Never raises: a broken audit
handler must not change the outcome of the flow being audited.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

audit_log = logging.getLogger("splitcart.audit")

SECRET_FIELDS = frozenset({
    "card_number",
    "cvv",
    "cvc",
    "card",
    "signature",
    "secret",
    "token",
    "password",
})


def scrub(data: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of `data` with secret-looking fields masked, recursively."""
    clean: dict[str, Any] = {}
    for key, value in data.items():
        if str(key).lower() in SECRET_FIELDS:
            clean[key] = "***"
        elif isinstance(value, Mapping):
            clean[key] = scrub(value)
        else:
            clean[key] = value
    return clean


def audit_failure(flow: str, code: str, message: str, **context: Any) -> None:
    try:
        audit_log.warning(
            "%s failed code=%s message=%s context=%s",
            flow, code, message, scrub(context),
        )
    except Exception:
        pass


__all__ = ("SECRET_FIELDS", "scrub", "audit_failure")
