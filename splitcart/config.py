"""
Checkout configuration.

    from splitcart.config import CheckoutConfig

    config = CheckoutConfig.from_env()                  # SPLITCART_* vars
    config = CheckoutConfig(tax_rate=Decimal("0.12"))   # explicit

Config is an immutable pydantic model handed to every service at
construction time. Values are coerced and range-checked on the way in,
so a bad SPLITCART_* variable fails at startup with a ValidationError
naming the field. Nothing in splitcart reads the environment after
startup.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from splitcart.pricing._tiers import VolumeTier, DEFAULT_TIERS

ENV_PREFIX = "SPLITCART_"

# ═══════════════════════════════════════════════════════════════════════════════
# Environment
# ═══════════════════════════════════════════════════════════════════════════════


class Environment(Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


# ═══════════════════════════════════════════════════════════════════════════════
# Config
# ═══════════════════════════════════════════════════════════════════════════════


class CheckoutConfig(BaseModel):
    """
    All tunables of the checkout engine.

    Percentages (max_seller_discount, commission_rate) are in 0..100.
    Rates and fractions (tax_rate, max_shipping_fraction) are in 0..1.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: Environment = Environment.DEVELOPMENT
    currency: str = Field("USD", min_length=3, max_length=3)

    # Pricing
    tax_rate: Decimal = Field(Decimal("0.15"), ge=0, le=1)
    shipping_enabled: bool = True
    shipping_cost: Decimal = Field(Decimal("5.00"), ge=0)
    free_shipping_threshold: Decimal = Field(Decimal("50.00"), ge=0)
    max_seller_discount: Decimal = Field(Decimal("90"), ge=0, le=100)
    volume_tiers: tuple[VolumeTier, ...] = DEFAULT_TIERS

    # Cart limits
    max_items: int = Field(100, ge=1)
    max_quantity_per_item: int = Field(99, ge=1)

    # Settlement
    max_shipping_fraction: Decimal = Field(Decimal("0.8"), gt=0, le=1)
    commission_rate: Decimal = Field(Decimal("10"), ge=0, le=100)
    order_number_prefix: str = Field("ORD", min_length=1)

    # Verification
    price_tolerance: Decimal = Field(Decimal("0.01"), ge=0)
    trusted_payment_methods: frozenset[str] = frozenset(
        {"datafast_confirmed", "deuna_confirmed"}
    )

    # Idempotency markers
    event_marker_ttl: timedelta = timedelta(seconds=300)
    webhook_marker_ttl: timedelta = timedelta(seconds=3600)

    # Webhooks
    webhook_secret: str | None = None

    # Storage
    database_url: str = "sqlite+aiosqlite:///:memory:"

    @field_validator("trusted_payment_methods", mode="before")
    @classmethod
    def split_methods(cls, value: Any) -> Any:
        """Accept "a,b" from the environment."""
        if isinstance(value, str):
            return frozenset(m.strip() for m in value.split(",") if m.strip())
        return value

    @field_validator("event_marker_ttl", "webhook_marker_ttl", mode="before")
    @classmethod
    def ttl_seconds(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return value

    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION

    @property
    def isolation_level(self) -> str | None:
        """Strongest isolation for production traffic only."""
        return "SERIALIZABLE" if self.is_production else None

    def with_overrides(self, **changes: Any) -> CheckoutConfig:
        """New config with `changes` applied and validated."""
        return type(self).model_validate(self.model_dump() | changes)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CheckoutConfig:
        """
        Build config from SPLITCART_* variables; unset or empty vars keep defaults.

            SPLITCART_ENVIRONMENT=production
            SPLITCART_TAX_RATE=0.15
            SPLITCART_TRUSTED_PAYMENT_METHODS=datafast_confirmed,deuna_confirmed
            SPLITCART_WEBHOOK_MARKER_TTL=3600
        """
        env = os.environ if environ is None else environ
        values = {
            name.removeprefix(ENV_PREFIX).lower(): value
            for name, value in env.items()
            if name.startswith(ENV_PREFIX) and value != ""
        }
        return cls.model_validate(
            {field: value for field, value in values.items() if field in cls.model_fields}
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Logging
# ═══════════════════════════════════════════════════════════════════════════════

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure root logging for processes embedding splitcart."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "ENV_PREFIX",
    "Environment",
    "CheckoutConfig",
    "LOG_FORMAT",
    "configure_logging",
)
