"""
Price integrity verification.

The server recomputes pricing from catalog data and compares it with what
the client declared. A mismatch is a security event: it is logged to the
audit channel and the checkout is aborted by the caller, never patched.

    verifier = PriceVerifier(calculator, tolerance=Decimal("0.01"))
    if not await verifier.verify(lines, buyer_id, coupon_code):
        ...  # PriceTamperingDetected
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal

from kungfu import Ok, Error

from splitcart._types import Money, ZERO, money, within
from splitcart.domain import LineRequest, PricingBreakdown
from splitcart.pricing import PricingCalculator

log = logging.getLogger(__name__)
audit = logging.getLogger("splitcart.audit")

# Client field name → breakdown attribute. "iva_amount" is the legacy name.
TOTAL_FIELDS: Mapping[str, str] = {
    "final_total": "final_total",
    "subtotal_with_discounts": "subtotal_with_discounts",
    "tax_amount": "tax_amount",
    "shipping_cost": "shipping_cost",
}
FIELD_ALIASES: Mapping[str, str] = {"iva_amount": "tax_amount"}


# ═══════════════════════════════════════════════════════════════════════════════
# Pure checks against an existing breakdown
# ═══════════════════════════════════════════════════════════════════════════════


def check_lines(
    breakdown: PricingBreakdown,
    client_items: Sequence[LineRequest],
    tolerance: Money,
) -> str | None:
    """
    Return a mismatch description, or None when prices agree.

    Without a coupon every line's declared unit price must match the
    server's final unit price. With a coupon only the whole-cart item
    total is compared, since the client cannot know how the coupon is
    apportioned per line.
    """
    if len(client_items) != len(breakdown.lines):
        return f"line count: client={len(client_items)} server={len(breakdown.lines)}"

    if breakdown.coupon_code is None:
        for index, (item, line) in enumerate(zip(client_items, breakdown.lines)):
            if item.product_id != line.product_id:
                return f"line {index}: product {item.product_id} != {line.product_id}"
            if item.price is None:
                return f"line {index}: no declared price for product {item.product_id}"
            if not within(item.price, line.final_unit_price, tolerance):
                return (
                    f"line {index}: product {item.product_id} "
                    f"client={item.price} server={line.final_unit_price}"
                )
        return None

    declared = sum(
        ((item.price if item.price is not None else ZERO) * item.quantity for item in client_items),
        Decimal("0"),
    )
    if not within(declared, breakdown.subtotal_after_volume, tolerance):
        return f"items total: client={declared} server={breakdown.subtotal_after_volume}"
    return None


def check_totals(
    breakdown: PricingBreakdown,
    client_totals: Mapping[str, object],
    tolerance: Money,
) -> str | None:
    """Compare declared aggregate totals; missing fields count as 0."""
    normalized: dict[str, object] = {}
    for key, value in client_totals.items():
        normalized[FIELD_ALIASES.get(key, key)] = value

    for field, attr in TOTAL_FIELDS.items():
        try:
            client_value = money(normalized.get(field, 0) or 0)
        except ValueError:
            return f"{field}: not an amount ({normalized.get(field)!r})"
        server_value: Money = getattr(breakdown, attr)
        if not within(client_value, server_value, tolerance):
            return f"{field}: client={client_value} server={server_value}"
    return None


# ═══════════════════════════════════════════════════════════════════════════════
# Verifier
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class PriceVerifier:
    calculator: PricingCalculator
    tolerance: Money = Decimal("0.01")

    async def verify(
        self,
        client_items: Sequence[LineRequest],
        buyer_id: int,
        coupon_code: str | None = None,
    ) -> bool:
        try:
            match await self.calculator.calculate(client_items, buyer_id, coupon_code):
                case Error(e):
                    log.warning("verification pricing failed: %s %s", e.code, e.message)
                    return False
                case Ok(breakdown):
                    mismatch = check_lines(breakdown, client_items, self.tolerance)
        except Exception:
            log.exception("price verification crashed for buyer %s", buyer_id)
            return False

        if mismatch is not None:
            audit.warning(
                "price tampering suspected buyer=%s coupon=%s %s",
                buyer_id, coupon_code, mismatch,
            )
            return False
        return True

    async def verify_totals(
        self,
        server_items: Sequence[LineRequest],
        client_totals: Mapping[str, object],
        buyer_id: int,
        coupon_code: str | None = None,
    ) -> bool:
        try:
            match await self.calculator.calculate(server_items, buyer_id, coupon_code):
                case Error(e):
                    log.warning("verification pricing failed: %s %s", e.code, e.message)
                    return False
                case Ok(breakdown):
                    mismatch = check_totals(breakdown, client_totals, self.tolerance)
        except Exception:
            log.exception("totals verification crashed for buyer %s", buyer_id)
            return False

        if mismatch is not None:
            audit.warning(
                "totals tampering suspected buyer=%s coupon=%s %s",
                buyer_id, coupon_code, mismatch,
            )
            return False
        return True


__all__ = (
    "TOTAL_FIELDS",
    "check_lines",
    "check_totals",
    "PriceVerifier",
)
