"""
Money helpers for splitcart.

All monetary arithmetic runs on Decimal at full precision. Rounding to
cents happens only when a value is presented (serialized, compared by a
human, persisted as a display column).
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

# ═══════════════════════════════════════════════════════════════════════════════
# Money
# ═══════════════════════════════════════════════════════════════════════════════

type Money = Decimal

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def money(value: object) -> Money:
    """
    Coerce a raw amount into Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its
    binary expansion. NaN and infinities raise ValueError.

        money("12.50")   # Decimal("12.50")
        money(19.99)     # Decimal("19.99")
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount


def cents(value: Money) -> Money:
    """Round to 2 decimals, half-up. Presentation only."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(value: Money, pct: Money) -> Money:
    return value * pct / HUNDRED


def within(a: Money, b: Money, tolerance: Money) -> bool:
    return abs(a - b) <= tolerance


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Money",
    "ZERO",
    "ONE",
    "HUNDRED",
    "CENT",
    "money",
    "cents",
    "percent_of",
    "within",
)
