"""
Payments — confirmation normalization across widget, test and webhook
channels.

    from splitcart import payments as Pay

    normalizer = Pay.ConfirmationNormalizer.build(gateway, allow_test=True)
    outcome = await normalizer.validate(payload, Pay.ConfirmationChannel.WEBHOOK)
"""

from splitcart.payments._codes import (
    CodeFamily,
    ResultCode,
    WIDGET_CODES,
    WEBHOOK_STATUSES,
    classify_widget_code,
    normalize_webhook_status,
)
from splitcart.payments._signature import sign, verify_signature
from splitcart.payments._validators import (
    ConfirmationChannel,
    Validator,
    WidgetValidator,
    TestValidator,
    WebhookValidator,
    UnknownValidator,
    webhook_field,
    canonical_body,
)
from splitcart.payments._normalizer import detect_channel, ConfirmationNormalizer

__all__ = (
    "CodeFamily",
    "ResultCode",
    "WIDGET_CODES",
    "WEBHOOK_STATUSES",
    "classify_widget_code",
    "normalize_webhook_status",
    "sign",
    "verify_signature",
    "ConfirmationChannel",
    "Validator",
    "WidgetValidator",
    "TestValidator",
    "WebhookValidator",
    "UnknownValidator",
    "webhook_field",
    "canonical_body",
    "detect_channel",
    "ConfirmationNormalizer",
)
