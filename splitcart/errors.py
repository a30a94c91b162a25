"""
Error taxonomy.

Errors are values: frozen dataclasses travelling in kungfu.Result. Every
error carries a stable `code` for clients and logs, and an `http_status`
used by the wire layer.

    match await orchestrator.checkout(request):
        case Ok(done):
            ...
        case Error(InsufficientStock(product_id=pid)):
            ...
        case Error(e):
            log.warning("checkout failed: %s %s", e.code, e.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


# ═══════════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CheckoutFailure:
    """Common shape: code + human-readable message."""

    code: str
    message: str

    http_status: ClassVar[int] = 400


# ═══════════════════════════════════════════════════════════════════════════════
# Caller errors — recoverable by fixing input
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ValidationError(CheckoutFailure):
    """Bad input shape."""

    http_status: ClassVar[int] = 422


@dataclass(frozen=True, slots=True)
class InvalidLineItem(CheckoutFailure):
    """Line references a product the catalog does not know."""

    product_id: int | None = None

    http_status: ClassVar[int] = 422


@dataclass(frozen=True, slots=True)
class CouponRejected(CheckoutFailure):
    """Coupon unknown, used, expired, or not owned by the buyer."""

    coupon_code: str = ""

    http_status: ClassVar[int] = 422


# ═══════════════════════════════════════════════════════════════════════════════
# Security
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PriceTamperingDetected(CheckoutFailure):
    """Client-declared prices disagree with server pricing."""

    http_status: ClassVar[int] = 400


# ═══════════════════════════════════════════════════════════════════════════════
# Business rules
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class InsufficientStock(CheckoutFailure):
    product_id: int = 0
    requested: int = 0
    available: int = 0

    http_status: ClassVar[int] = 409


# ═══════════════════════════════════════════════════════════════════════════════
# External
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PaymentDeclined(CheckoutFailure):
    """Provider refused the charge. `code` is the normalized provider code."""

    http_status: ClassVar[int] = 402


@dataclass(frozen=True, slots=True)
class GatewayConnectivityError(CheckoutFailure):
    """Transient provider failure; the whole checkout may be retried."""

    http_status: ClassVar[int] = 502


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency / integrity
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class DuplicateEvent(CheckoutFailure):
    """Already processed. Callers treat this as a no-op success."""

    key: str = ""

    http_status: ClassVar[int] = 200


@dataclass(frozen=True, slots=True)
class DataIntegrityError(CheckoutFailure):
    """Persisted state is inconsistent. Never patched silently."""

    http_status: ClassVar[int] = 500


@dataclass(frozen=True, slots=True)
class StorageError(CheckoutFailure):
    """Unexpected repository failure."""

    http_status: ClassVar[int] = 500


type CheckoutError = (
    ValidationError
    | InvalidLineItem
    | CouponRejected
    | PriceTamperingDetected
    | InsufficientStock
    | PaymentDeclined
    | GatewayConnectivityError
    | DuplicateEvent
    | DataIntegrityError
    | StorageError
)

type PricingError = ValidationError | InvalidLineItem | CouponRejected | StorageError


# ═══════════════════════════════════════════════════════════════════════════════
# Constructors
# ═══════════════════════════════════════════════════════════════════════════════


class Errors:
    """Shorthand constructors with stable codes."""

    @staticmethod
    def validation(msg: str) -> ValidationError:
        return ValidationError("VALIDATION_ERROR", msg)

    @staticmethod
    def unknown_product(product_id: int) -> InvalidLineItem:
        return InvalidLineItem(
            "INVALID_LINE_ITEM", f"Product {product_id} not found", product_id
        )

    @staticmethod
    def coupon(code: str, reason: str) -> CouponRejected:
        return CouponRejected("COUPON_REJECTED", reason, code)

    @staticmethod
    def tampering(msg: str = "Price verification failed") -> PriceTamperingDetected:
        return PriceTamperingDetected("PRICE_TAMPERING", msg)

    @staticmethod
    def insufficient_stock(
        product_id: int, requested: int, available: int
    ) -> InsufficientStock:
        return InsufficientStock(
            "INSUFFICIENT_STOCK",
            f"Product {product_id}: requested {requested}, available {available}",
            product_id,
            requested,
            available,
        )

    @staticmethod
    def declined(code: str, msg: str) -> PaymentDeclined:
        return PaymentDeclined(code, msg)

    @staticmethod
    def gateway(exc: Exception | str) -> GatewayConnectivityError:
        return GatewayConnectivityError("GATEWAY_ERROR", str(exc))

    @staticmethod
    def duplicate(key: str) -> DuplicateEvent:
        return DuplicateEvent("DUPLICATE_EVENT", f"Already processed: {key}", key)

    @staticmethod
    def integrity(msg: str) -> DataIntegrityError:
        return DataIntegrityError("DATA_INTEGRITY", msg)

    @staticmethod
    def storage(exc: Exception | str) -> StorageError:
        return StorageError("STORAGE_ERROR", str(exc))


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "CheckoutFailure",
    "ValidationError",
    "InvalidLineItem",
    "CouponRejected",
    "PriceTamperingDetected",
    "InsufficientStock",
    "PaymentDeclined",
    "GatewayConnectivityError",
    "DuplicateEvent",
    "DataIntegrityError",
    "StorageError",
    "CheckoutError",
    "PricingError",
    "Errors",
)
