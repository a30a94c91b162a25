"""
Confirmation validators — one per confirmation channel.

Each validator turns a loosely-typed provider payload into a
PaymentOutcome. Validators never raise: any failure, including transport
errors and malformed payloads, becomes a non-success outcome with a
normalized error code.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from splitcart._types import money
from splitcart.domain import PaymentOutcome, PaymentStatus, ValidationSource
from splitcart.payments._codes import (
    CodeFamily,
    classify_widget_code,
    normalize_webhook_status,
)
from splitcart.payments._signature import verify_signature
from splitcart.ports import PaymentGateway

log = logging.getLogger(__name__)


class ConfirmationChannel(Enum):
    """Declared by the transport layer; detect_channel() is the fallback."""

    WIDGET = "widget"
    TEST = "test"
    WEBHOOK = "webhook"
    UNKNOWN = "unknown"


class Validator(Protocol):
    async def validate(
        self,
        payload: Mapping[str, Any],
        *,
        signature: str | None = None,
        raw_body: bytes | None = None,
    ) -> PaymentOutcome: ...


def _failure(
    source: ValidationSource,
    code: str,
    message: str,
    *,
    method: str | None = None,
    status: PaymentStatus = PaymentStatus.FAILED,
    transaction_id: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> PaymentOutcome:
    return PaymentOutcome(
        success=False,
        source=source,
        status=status,
        transaction_id=transaction_id,
        payment_method=method,
        error_code=code,
        error_message=message,
        metadata=dict(metadata or {}),
    )


def _truthy(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


# ═══════════════════════════════════════════════════════════════════════════════
# Widget — synchronous gateway verification
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class WidgetValidator:
    gateway: PaymentGateway
    payment_method: str = "datafast"

    async def validate(
        self,
        payload: Mapping[str, Any],
        *,
        signature: str | None = None,
        raw_body: bytes | None = None,
    ) -> PaymentOutcome:
        resource_path = payload.get("resource_path")
        transaction_id = payload.get("transaction_id")
        for name, value in (("resource_path", resource_path), ("transaction_id", transaction_id)):
            if not value:
                return _failure(
                    ValidationSource.WIDGET,
                    "WIDGET_VALIDATION_ERROR",
                    f"Missing required field: {name}",
                    method=self.payment_method,
                )

        try:
            verification = await self.gateway.verify_payment(str(resource_path))
        except Exception as e:
            log.warning("widget verification transport error: %s", e)
            return _failure(
                ValidationSource.WIDGET,
                "GATEWAY_ERROR",
                "Could not reach the payment gateway. Try again.",
                method=self.payment_method,
                transaction_id=str(transaction_id),
            )

        code = classify_widget_code(verification.result_code, verification.description)
        metadata = {
            "result_code": verification.result_code,
            "payment_id": verification.transaction_id or transaction_id,
            "resource_path": resource_path,
        }

        if not code.is_success:
            return _failure(
                ValidationSource.WIDGET,
                code.code,
                code.message,
                method=self.payment_method,
                status=(
                    PaymentStatus.PENDING
                    if code.family is CodeFamily.PENDING
                    else PaymentStatus.FAILED
                ),
                transaction_id=str(transaction_id),
                metadata=metadata,
            )

        amount = verification.amount
        if amount is None and payload.get("calculated_total") is not None:
            amount = money(payload["calculated_total"])

        return PaymentOutcome(
            success=True,
            source=ValidationSource.WIDGET,
            status=PaymentStatus.COMPLETED,
            transaction_id=str(transaction_id),
            amount=amount,
            payment_method=verification.payment_method or self.payment_method,
            metadata=metadata,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Test — simulated confirmation, non-production only
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class TestValidator:
    allowed: bool
    payment_method: str = "test"
    new_id: Callable[[], str] = field(default=lambda: f"TEST_{uuid.uuid4().hex[:16]}")

    __test__ = False  # not a pytest class

    async def validate(
        self,
        payload: Mapping[str, Any],
        *,
        signature: str | None = None,
        raw_body: bytes | None = None,
    ) -> PaymentOutcome:
        if not self.allowed:
            log.warning("simulated payment rejected: test mode disabled in production")
            return _failure(
                ValidationSource.TEST,
                "TEST_MODE_FORBIDDEN",
                "Simulated payments are not allowed in production",
                method=self.payment_method,
            )
        if not _truthy(payload.get("simulate_success")):
            return _failure(
                ValidationSource.TEST,
                "TEST_SIMULATED_FAILURE",
                "Simulated payment failure",
                method=self.payment_method,
            )

        raw_amount = payload.get("calculated_total", payload.get("amount"))
        try:
            amount = money(raw_amount) if raw_amount is not None else None
        except ValueError:
            amount = None

        return PaymentOutcome(
            success=True,
            source=ValidationSource.TEST,
            status=PaymentStatus.COMPLETED,
            transaction_id=str(payload.get("transaction_id") or self.new_id()),
            amount=amount,
            payment_method=self.payment_method,
            simulated=True,
            metadata={"simulated": True},
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Webhook — asynchronous provider push
# ═══════════════════════════════════════════════════════════════════════════════

PAYMENT_ID_FIELDS = ("idTransaction", "payment_id", "idTransacionReference")


def webhook_field(payload: Mapping[str, Any], *names: str) -> Any:
    """First non-empty field, at top level or under "data"."""
    data = payload.get("data")
    scopes = (payload, data) if isinstance(data, Mapping) else (payload,)
    for scope in scopes:
        for name in names:
            value = scope.get(name)
            if value not in (None, ""):
                return value
    return None


def canonical_body(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str).encode()


@dataclass(frozen=True, slots=True)
class WebhookValidator:
    secret: str | None
    payment_method: str = "deuna"

    async def validate(
        self,
        payload: Mapping[str, Any],
        *,
        signature: str | None = None,
        raw_body: bytes | None = None,
    ) -> PaymentOutcome:
        payment_id = webhook_field(payload, *PAYMENT_ID_FIELDS)
        ident = str(payment_id) if payment_id is not None else None

        if signature:
            if not self.secret:
                return _failure(
                    ValidationSource.WEBHOOK,
                    "INVALID_SIGNATURE",
                    "Signature present but no webhook secret is configured",
                    method=self.payment_method,
                    transaction_id=ident,
                )
            body = raw_body if raw_body is not None else canonical_body(payload)
            if not verify_signature(body, signature, self.secret):
                log.warning("webhook signature mismatch payment=%s", ident)
                return _failure(
                    ValidationSource.WEBHOOK,
                    "INVALID_SIGNATURE",
                    "Webhook signature mismatch",
                    method=self.payment_method,
                    transaction_id=ident,
                )

        raw_status = webhook_field(payload, "status")
        raw_amount = webhook_field(payload, "amount")
        for name, value in (("status", raw_status), ("amount", raw_amount), ("idTransaction", ident)):
            if value is None:
                return _failure(
                    ValidationSource.WEBHOOK,
                    "MISSING_FIELD",
                    f"Missing required field: {name}",
                    method=self.payment_method,
                    transaction_id=ident,
                )

        try:
            amount = money(raw_amount)
        except ValueError:
            amount = None
        if amount is None or amount < 0:
            return _failure(
                ValidationSource.WEBHOOK,
                "INVALID_AMOUNT",
                f"Invalid amount: {raw_amount!r}",
                method=self.payment_method,
                transaction_id=ident,
            )

        status = normalize_webhook_status(raw_status)
        metadata = {"raw_status": raw_status, "payment_id": ident}
        if status is None:
            return _failure(
                ValidationSource.WEBHOOK,
                "UNKNOWN_STATUS",
                f"Unknown webhook status: {raw_status!r}",
                method=self.payment_method,
                transaction_id=ident,
                metadata=metadata,
            )

        success = status is PaymentStatus.COMPLETED
        return PaymentOutcome(
            success=success,
            source=ValidationSource.WEBHOOK,
            status=status,
            transaction_id=ident,
            amount=amount,
            payment_method=self.payment_method,
            error_code=None if success else f"PAYMENT_{status.name}",
            error_message=None if success else f"Payment {status.value}",
            metadata=metadata,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Unknown — terminal case
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class UnknownValidator:
    async def validate(
        self,
        payload: Mapping[str, Any],
        *,
        signature: str | None = None,
        raw_body: bytes | None = None,
    ) -> PaymentOutcome:
        return _failure(
            ValidationSource.UNKNOWN,
            "UNKNOWN_CONFIRMATION_SOURCE",
            "Could not determine the confirmation source",
            metadata={"fields": sorted(str(k) for k in payload)},
        )


__all__ = (
    "ConfirmationChannel",
    "Validator",
    "WidgetValidator",
    "TestValidator",
    "WebhookValidator",
    "UnknownValidator",
    "PAYMENT_ID_FIELDS",
    "webhook_field",
    "canonical_body",
)
