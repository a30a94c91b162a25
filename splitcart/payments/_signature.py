"""
Webhook signatures: hex HMAC-SHA256 of the raw request body.
"""

from __future__ import annotations

import hashlib
import hmac

PREFIX = "sha256="


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Constant-time check. Accepts an optional "sha256=" prefix.

        verify_signature(body, "sha256=" + sign(body, secret), secret)   # True
    """
    provided = signature.strip()
    if provided.lower().startswith(PREFIX):
        provided = provided[len(PREFIX):]
    return hmac.compare_digest(sign(body, secret), provided.lower())


__all__ = ("sign", "verify_signature")
