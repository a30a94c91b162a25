"""
Confirmation normalizer — one entry point for every confirmation source.

The transport layer should declare the channel explicitly. Shape
detection is kept as a fallback and always has an "unknown" terminal
case, so an unrecognized payload fails loudly instead of being accepted.

Detection precedence:
    simulate_success flag   → TEST
    resource_path / id      → WIDGET
    event / type / status   → WEBHOOK
    otherwise               → UNKNOWN
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from splitcart.domain import PaymentOutcome
from splitcart.payments._validators import (
    ConfirmationChannel,
    TestValidator,
    UnknownValidator,
    Validator,
    WebhookValidator,
    WidgetValidator,
    _truthy,
)
from splitcart.ports import PaymentGateway

log = logging.getLogger(__name__)

WIDGET_TOKEN_FIELDS = ("resource_path", "id")
WEBHOOK_TYPE_FIELDS = ("event", "type", "status")


def detect_channel(payload: Mapping[str, Any]) -> ConfirmationChannel:
    if _truthy(payload.get("simulate_success")):
        return ConfirmationChannel.TEST
    if any(payload.get(name) for name in WIDGET_TOKEN_FIELDS):
        return ConfirmationChannel.WIDGET
    if any(payload.get(name) for name in WEBHOOK_TYPE_FIELDS):
        return ConfirmationChannel.WEBHOOK
    return ConfirmationChannel.UNKNOWN


@dataclass(frozen=True, slots=True)
class ConfirmationNormalizer:
    """
    Example:
        normalizer = ConfirmationNormalizer.build(gateway, allow_test=not config.is_production)

        outcome = await normalizer.validate(payload, channel=ConfirmationChannel.WIDGET)
        if not outcome.success:
            print(outcome.error_code, outcome.error_message)
    """

    widget: Validator
    test: Validator
    webhook: Validator
    unknown: Validator = UnknownValidator()

    @classmethod
    def build(
        cls,
        gateway: PaymentGateway,
        *,
        allow_test: bool,
        webhook_secret: str | None = None,
    ) -> ConfirmationNormalizer:
        return cls(
            widget=WidgetValidator(gateway),
            test=TestValidator(allowed=allow_test),
            webhook=WebhookValidator(secret=webhook_secret),
        )

    def validator_for(self, channel: ConfirmationChannel) -> Validator:
        match channel:
            case ConfirmationChannel.WIDGET:
                return self.widget
            case ConfirmationChannel.TEST:
                return self.test
            case ConfirmationChannel.WEBHOOK:
                return self.webhook
            case ConfirmationChannel.UNKNOWN:
                return self.unknown

    async def validate(
        self,
        payload: Mapping[str, Any],
        channel: ConfirmationChannel | None = None,
        *,
        signature: str | None = None,
        raw_body: bytes | None = None,
    ) -> PaymentOutcome:
        if channel is None:
            channel = detect_channel(payload)
            log.debug("confirmation channel detected: %s", channel.value)

        outcome = await self.validator_for(channel).validate(
            payload, signature=signature, raw_body=raw_body
        )
        if not outcome.success:
            log.info(
                "confirmation rejected channel=%s code=%s tx=%s",
                channel.value, outcome.error_code, outcome.transaction_id,
            )
        return outcome


__all__ = (
    "WIDGET_TOKEN_FIELDS",
    "WEBHOOK_TYPE_FIELDS",
    "detect_channel",
    "ConfirmationNormalizer",
)
