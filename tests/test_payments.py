import json
from decimal import Decimal

import pytest

from conftest import WEBHOOK_SECRET, FakeGateway
from splitcart.domain import GatewayVerification, PaymentStatus, ValidationSource
from splitcart.payments import (
    CodeFamily,
    ConfirmationChannel,
    ConfirmationNormalizer,
    TestValidator,
    UnknownValidator,
    WebhookValidator,
    WidgetValidator,
    canonical_body,
    classify_widget_code,
    detect_channel,
    normalize_webhook_status,
    sign,
    verify_signature,
)

WIDGET_PAYLOAD = {"resource_path": "/v1/checkouts/abc/payment", "transaction_id": "TX-9"}


# ═══════════════════════════════════════════════════════════════════════════════
# Code vocabularies
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    ("code", "family", "internal"),
    [
        ("000.000.000", CodeFamily.SUCCESS, "APPROVED"),
        ("000.200.100", CodeFamily.PENDING, "CHECKOUT_CREATED_PENDING"),
        ("800.100.155", CodeFamily.CARD_DECLINED, "INSUFFICIENT_FUNDS"),
        ("100.380.401", CodeFamily.THREE_DS, "3DS_AUTH_FAILED"),
        ("900.100.201", CodeFamily.GATEWAY, "GATEWAY_ERROR"),
        ("123.456.789", CodeFamily.UNKNOWN, "UNKNOWN_ERROR"),
        (None, CodeFamily.UNKNOWN, "UNKNOWN_ERROR"),
    ],
)
def test_widget_codes(code, family, internal):
    result = classify_widget_code(code)
    assert result.family is family
    assert result.code == internal


def test_unknown_code_keeps_provider_description():
    assert classify_widget_code("1.2.3", "bank said no").message == "bank said no"


@pytest.mark.parametrize(
    ("raw", "status"),
    [
        ("SUCCESS", PaymentStatus.COMPLETED),
        ("approved", PaymentStatus.COMPLETED),
        (" Processing ", PaymentStatus.PENDING),
        ("DECLINED", PaymentStatus.FAILED),
        ("canceled", PaymentStatus.CANCELLED),
        ("REFUNDED", PaymentStatus.REFUNDED),
        ("WHATEVER", None),
        (42, None),
    ],
)
def test_webhook_statuses(raw, status):
    assert normalize_webhook_status(raw) is status


# ═══════════════════════════════════════════════════════════════════════════════
# Channel detection
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    ("payload", "channel"),
    [
        ({"simulate_success": "true", "resource_path": "/x"}, ConfirmationChannel.TEST),
        ({"resource_path": "/x", "status": "SUCCESS"}, ConfirmationChannel.WIDGET),
        ({"id": "abc"}, ConfirmationChannel.WIDGET),
        ({"status": "SUCCESS", "idTransaction": "P"}, ConfirmationChannel.WEBHOOK),
        ({"event": "payment.updated"}, ConfirmationChannel.WEBHOOK),
        ({"simulate_success": "false"}, ConfirmationChannel.UNKNOWN),
        ({}, ConfirmationChannel.UNKNOWN),
    ],
)
def test_detect_channel(payload, channel):
    assert detect_channel(payload) is channel


# ═══════════════════════════════════════════════════════════════════════════════
# Signatures
# ═══════════════════════════════════════════════════════════════════════════════


def test_signature_roundtrip_and_prefix():
    body = b'{"a":1}'
    digest = sign(body, "s3cret")
    assert verify_signature(body, digest, "s3cret")
    assert verify_signature(body, "sha256=" + digest.upper(), "s3cret")
    assert not verify_signature(body, digest, "other")
    assert not verify_signature(b'{"a":2}', digest, "s3cret")


# ═══════════════════════════════════════════════════════════════════════════════
# Widget
# ═══════════════════════════════════════════════════════════════════════════════


async def test_widget_success():
    gateway = FakeGateway(
        verification=GatewayVerification("000.000.000", transaction_id="TX-9", amount=Decimal("12.50"))
    )
    outcome = await WidgetValidator(gateway).validate(WIDGET_PAYLOAD)
    assert outcome.success
    assert outcome.source is ValidationSource.WIDGET
    assert outcome.status is PaymentStatus.COMPLETED
    assert outcome.amount == Decimal("12.50")


async def test_widget_amount_falls_back_to_calculated_total():
    outcome = await WidgetValidator(FakeGateway()).validate(
        {**WIDGET_PAYLOAD, "calculated_total": "99.90"}
    )
    assert outcome.amount == Decimal("99.90")


async def test_widget_pending():
    gateway = FakeGateway(verification=GatewayVerification("000.200.100"))
    outcome = await WidgetValidator(gateway).validate(WIDGET_PAYLOAD)
    assert not outcome.success
    assert outcome.status is PaymentStatus.PENDING
    assert outcome.error_code == "CHECKOUT_CREATED_PENDING"


async def test_widget_declined():
    gateway = FakeGateway(verification=GatewayVerification("800.100.155"))
    outcome = await WidgetValidator(gateway).validate(WIDGET_PAYLOAD)
    assert outcome.status is PaymentStatus.FAILED
    assert outcome.error_code == "INSUFFICIENT_FUNDS"


async def test_widget_transport_error_never_raises():
    gateway = FakeGateway(fail_with=ConnectionError("timeout"))
    outcome = await WidgetValidator(gateway).validate(WIDGET_PAYLOAD)
    assert not outcome.success
    assert outcome.error_code == "GATEWAY_ERROR"
    assert outcome.transaction_id == "TX-9"


async def test_widget_missing_field():
    outcome = await WidgetValidator(FakeGateway()).validate({"resource_path": "/x"})
    assert outcome.error_code == "WIDGET_VALIDATION_ERROR"
    assert "transaction_id" in (outcome.error_message or "")


# ═══════════════════════════════════════════════════════════════════════════════
# Test channel
# ═══════════════════════════════════════════════════════════════════════════════


async def test_simulated_payment_forbidden_in_production():
    outcome = await TestValidator(allowed=False).validate({"simulate_success": True})
    assert outcome.error_code == "TEST_MODE_FORBIDDEN"


async def test_simulated_payment_allowed():
    validator = TestValidator(allowed=True, new_id=lambda: "TEST_fixed")
    outcome = await validator.validate({"simulate_success": "yes", "calculated_total": "10"})
    assert outcome.success
    assert outcome.simulated
    assert outcome.transaction_id == "TEST_fixed"
    assert outcome.amount == Decimal("10")


async def test_simulated_failure():
    outcome = await TestValidator(allowed=True).validate({"simulate_success": "0"})
    assert outcome.error_code == "TEST_SIMULATED_FAILURE"


# ═══════════════════════════════════════════════════════════════════════════════
# Webhook
# ═══════════════════════════════════════════════════════════════════════════════


def webhook(status: str = "SUCCESS", **extra) -> dict:
    return {"idTransaction": "PAY-1", "status": status, "amount": "28.75", **extra}


async def test_webhook_success_with_valid_signature():
    payload = webhook()
    body = json.dumps(payload).encode()
    outcome = await WebhookValidator(WEBHOOK_SECRET).validate(
        payload, signature=sign(body, WEBHOOK_SECRET), raw_body=body
    )
    assert outcome.success
    assert outcome.transaction_id == "PAY-1"
    assert outcome.amount == Decimal("28.75")


async def test_webhook_signature_over_canonical_body_without_raw():
    payload = webhook()
    signature = sign(canonical_body(payload), WEBHOOK_SECRET)
    outcome = await WebhookValidator(WEBHOOK_SECRET).validate(payload, signature=signature)
    assert outcome.success


async def test_webhook_bad_signature():
    outcome = await WebhookValidator(WEBHOOK_SECRET).validate(webhook(), signature="deadbeef")
    assert outcome.error_code == "INVALID_SIGNATURE"
    assert outcome.transaction_id == "PAY-1"


async def test_webhook_signature_without_secret():
    outcome = await WebhookValidator(None).validate(webhook(), signature="deadbeef")
    assert outcome.error_code == "INVALID_SIGNATURE"


async def test_webhook_fields_under_data():
    payload = {"data": {"payment_id": "PAY-2", "status": "PAID", "amount": 5}}
    outcome = await WebhookValidator(None).validate(payload)
    assert outcome.success
    assert outcome.transaction_id == "PAY-2"


@pytest.mark.parametrize("missing", ["status", "amount", "idTransaction"])
async def test_webhook_missing_field(missing):
    payload = webhook()
    del payload[missing]
    outcome = await WebhookValidator(None).validate(payload)
    assert outcome.error_code == "MISSING_FIELD"


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity", "sNaN", "-5.00", "abc"])
async def test_webhook_rejects_non_finite_or_negative_amount(amount):
    outcome = await WebhookValidator(None).validate(webhook(amount=amount))
    assert not outcome.success
    assert outcome.error_code == "INVALID_AMOUNT"
    assert outcome.transaction_id == "PAY-1"


async def test_webhook_unknown_status():
    outcome = await WebhookValidator(None).validate(webhook("LIMBO"))
    assert outcome.error_code == "UNKNOWN_STATUS"


async def test_webhook_failed_status_is_reported_not_rejected():
    outcome = await WebhookValidator(None).validate(webhook("DECLINED"))
    assert not outcome.success
    assert outcome.status is PaymentStatus.FAILED
    assert outcome.error_code == "PAYMENT_FAILED"


# ═══════════════════════════════════════════════════════════════════════════════
# Normalizer
# ═══════════════════════════════════════════════════════════════════════════════


async def test_unknown_source():
    outcome = await UnknownValidator().validate({"foo": 1})
    assert outcome.source is ValidationSource.UNKNOWN
    assert outcome.error_code == "UNKNOWN_CONFIRMATION_SOURCE"


async def test_normalizer_dispatches_on_detected_channel():
    normalizer = ConfirmationNormalizer.build(FakeGateway(), allow_test=False)
    assert (await normalizer.validate({"simulate_success": True})).error_code == "TEST_MODE_FORBIDDEN"
    assert (await normalizer.validate(WIDGET_PAYLOAD)).success
    assert (await normalizer.validate({"bogus": 1})).source is ValidationSource.UNKNOWN


async def test_declared_channel_overrides_detection():
    normalizer = ConfirmationNormalizer.build(FakeGateway(), allow_test=True)
    outcome = await normalizer.validate(WIDGET_PAYLOAD, ConfirmationChannel.WEBHOOK)
    assert outcome.source is ValidationSource.WEBHOOK
    assert outcome.error_code == "MISSING_FIELD"
