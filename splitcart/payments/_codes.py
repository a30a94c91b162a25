"""
Provider vocabularies collapsed to the internal taxonomy.

Widget result codes (card gateway) map to a ResultCode family and a
stable internal error code with a user-facing message. Webhook status
strings map to the five-state PaymentStatus.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from splitcart.domain import PaymentStatus


class CodeFamily(Enum):
    SUCCESS = "success"
    PENDING = "pending"
    CARD_DECLINED = "card_declined"
    THREE_DS = "three_ds"
    GATEWAY = "gateway"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ResultCode:
    family: CodeFamily
    code: str
    message: str

    @property
    def is_success(self) -> bool:
        return self.family is CodeFamily.SUCCESS


# ═══════════════════════════════════════════════════════════════════════════════
# Widget result codes
# ═══════════════════════════════════════════════════════════════════════════════

WIDGET_CODES: Mapping[str, ResultCode] = {
    # success
    "000.000.000": ResultCode(CodeFamily.SUCCESS, "APPROVED", "Transaction approved"),
    "000.100.110": ResultCode(CodeFamily.SUCCESS, "APPROVED", "Approved (integration phase 1)"),
    "000.100.112": ResultCode(CodeFamily.SUCCESS, "APPROVED", "Approved (integration phase 2)"),
    # created but not completed
    "000.200.100": ResultCode(
        CodeFamily.PENDING,
        "CHECKOUT_CREATED_PENDING",
        "Checkout was created but the payment was not completed",
    ),
    "000.200.000": ResultCode(
        CodeFamily.PENDING, "TRANSACTION_PENDING", "Transaction is pending processing"
    ),
    # card declined
    "800.100.151": ResultCode(
        CodeFamily.CARD_DECLINED, "INVALID_CARD", "Invalid card. Check your card details."
    ),
    "800.100.155": ResultCode(
        CodeFamily.CARD_DECLINED,
        "INSUFFICIENT_FUNDS",
        "Insufficient funds. Check your card balance.",
    ),
    "800.100.174": ResultCode(
        CodeFamily.CARD_DECLINED, "INVALID_AMOUNT", "Invalid amount. Contact the merchant."
    ),
    "100.100.303": ResultCode(
        CodeFamily.CARD_DECLINED, "CARD_EXPIRED", "Card expired. Use a valid card."
    ),
    "800.100.168": ResultCode(
        CodeFamily.CARD_DECLINED, "CARD_RESTRICTED", "Card restricted. Contact your bank."
    ),
    "800.900.300": ResultCode(
        CodeFamily.CARD_DECLINED,
        "NO_REAL_TRANSACTION",
        "No real transaction was completed",
    ),
    # 3-D Secure
    "100.380.401": ResultCode(
        CodeFamily.THREE_DS, "3DS_AUTH_FAILED", "3-D Secure authentication failed"
    ),
    "100.380.501": ResultCode(
        CodeFamily.THREE_DS, "3DS_TIMEOUT", "Verification code timed out"
    ),
    # connectivity
    "900.100.201": ResultCode(
        CodeFamily.GATEWAY, "GATEWAY_ERROR", "Could not reach the payment gateway. Try again."
    ),
    "900.100.300": ResultCode(
        CodeFamily.GATEWAY,
        "CONNECTION_LOST",
        "Connection lost during the transaction. Check with your bank.",
    ),
}


def classify_widget_code(code: str | None, description: str | None = None) -> ResultCode:
    """Look up a widget code; anything unmapped is UNKNOWN_ERROR."""
    if code and code in WIDGET_CODES:
        return WIDGET_CODES[code]
    return ResultCode(
        CodeFamily.UNKNOWN,
        "UNKNOWN_ERROR",
        description or f"Payment processing error (code: {code or 'none'})",
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Webhook statuses
# ═══════════════════════════════════════════════════════════════════════════════

WEBHOOK_STATUSES: Mapping[str, PaymentStatus] = {
    "SUCCESS": PaymentStatus.COMPLETED,
    "COMPLETED": PaymentStatus.COMPLETED,
    "PAID": PaymentStatus.COMPLETED,
    "SUCCESSFUL": PaymentStatus.COMPLETED,
    "APPROVED": PaymentStatus.COMPLETED,
    "PENDING": PaymentStatus.PENDING,
    "PROCESSING": PaymentStatus.PENDING,
    "FAILED": PaymentStatus.FAILED,
    "ERROR": PaymentStatus.FAILED,
    "DECLINED": PaymentStatus.FAILED,
    "REJECTED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.CANCELLED,
    "CANCELED": PaymentStatus.CANCELLED,
    "REFUNDED": PaymentStatus.REFUNDED,
}


def normalize_webhook_status(raw: object) -> PaymentStatus | None:
    """Case-insensitive; None when the status is not in the vocabulary."""
    if not isinstance(raw, str):
        return None
    return WEBHOOK_STATUSES.get(raw.strip().upper())


__all__ = (
    "CodeFamily",
    "ResultCode",
    "WIDGET_CODES",
    "classify_widget_code",
    "WEBHOOK_STATUSES",
    "normalize_webhook_status",
)
