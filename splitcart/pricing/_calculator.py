"""
Pricing calculator — deterministic totals from raw cart lines.

Order of operations:

    catalog price
      → seller discount            (per line, seller's own percentage)
      → volume discount            (per line, tier from whole-cart quantity)
      → coupon                     (cart level, on the post-volume subtotal)
      → shipping                   (free above threshold, else flat)
      → tax                        ((subtotal + shipping) × rate)

Only catalog data is trusted: any price the client put on a line is
ignored here. Arithmetic stays in Decimal with no intermediate rounding,
so the same input always yields an identical PricingBreakdown.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from kungfu import Result, Ok, Error

from combinators import lift as L

from splitcart._types import Money, ZERO, ONE, HUNDRED, percent_of
from splitcart.domain import (
    Coupon,
    LineRequest,
    PricedLine,
    PricingBreakdown,
    Product,
)
from splitcart.errors import Errors, PricingError, CouponRejected
from splitcart.pricing._tiers import volume_percent

if TYPE_CHECKING:
    from splitcart.config import CheckoutConfig
    from splitcart.ports import CouponStore, ProductCatalog

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Calculator
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class PricingCalculator:
    """
    Example:
        calc = PricingCalculator(tx.catalog, tx.coupons, config)

        match await calc.calculate(lines, buyer_id=7, coupon_code="THANKS5"):
            case Ok(breakdown):
                print(breakdown.presented()["final_total"])
            case Error(e):
                print(e.code, e.message)
    """

    catalog: ProductCatalog
    coupons: CouponStore
    config: CheckoutConfig
    clock: Callable[[], datetime] = field(default=datetime.now)

    async def calculate(
        self,
        items: Sequence[LineRequest],
        buyer_id: int,
        coupon_code: str | None = None,
        *,
        best_effort_coupon: bool = False,
    ) -> Result[PricingBreakdown, PricingError]:
        match self._check_shape(items):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass

        products: list[Product] = []
        for item in items:
            match await self._product(item.product_id):
                case Ok(product):
                    products.append(product)
                case Error(e):
                    return Error(e)

        vol_pct = volume_percent(
            sum(item.quantity for item in items), self.config.volume_tiers
        )
        lines = [
            self._price_line(item, product, vol_pct)
            for item, product in zip(items, products)
        ]

        coupon: Coupon | None = None
        if coupon_code:
            match await self._coupon(coupon_code, buyer_id):
                case Ok(found):
                    coupon = found
                case Error(CouponRejected() as rejected) if best_effort_coupon:
                    log.info(
                        "coupon %s dropped for buyer %s: %s",
                        coupon_code, buyer_id, rejected.message,
                    )
                case Error(e):
                    return Error(e)

        return Ok(self._totals(lines, vol_pct, coupon))

    # ─────────────────────────────────────────────────────────────────────────
    # Steps
    # ─────────────────────────────────────────────────────────────────────────

    def _check_shape(self, items: Sequence[LineRequest]) -> Result[None, PricingError]:
        if not items:
            return Error(Errors.validation("Cart is empty"))
        if len(items) > self.config.max_items:
            return Error(
                Errors.validation(f"Too many lines: {len(items)} > {self.config.max_items}")
            )
        for item in items:
            if item.quantity < 1:
                return Error(
                    Errors.validation(f"Quantity for product {item.product_id} must be positive")
                )
            if item.quantity > self.config.max_quantity_per_item:
                return Error(
                    Errors.validation(
                        f"Quantity for product {item.product_id} exceeds "
                        f"{self.config.max_quantity_per_item}"
                    )
                )
        return Ok(None)

    async def _product(self, product_id: int) -> Result[Product, PricingError]:
        found = await L.catching_async(
            lambda: self.catalog.find_by_id(product_id),
            on_error=Errors.storage,
        )
        match found:
            case Ok(None):
                return Error(Errors.unknown_product(product_id))
            case Ok(product):
                return Ok(product)
            case Error(e):
                return Error(e)

    def _price_line(self, item: LineRequest, product: Product, vol_pct: Money) -> PricedLine:
        seller_pct = min(max(product.seller_discount_pct, ZERO), self.config.max_seller_discount)
        discounted = product.price * (ONE - seller_pct / HUNDRED)
        final = discounted * (ONE - vol_pct / HUNDRED)
        return PricedLine(
            product_id=product.id,
            seller_id=product.seller_id,
            name=product.name,
            quantity=item.quantity,
            original_unit_price=product.price,
            seller_discount_pct=seller_pct,
            seller_discounted_unit_price=discounted,
            volume_discount_pct=vol_pct,
            final_unit_price=final,
        )

    async def _coupon(self, code: str, buyer_id: int) -> Result[Coupon, PricingError]:
        found = await L.catching_async(
            lambda: self.coupons.find_by_code(code),
            on_error=Errors.storage,
        )
        match found:
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(Errors.coupon(code, "Coupon does not exist"))
            case Ok(coupon):
                pass

        now = self.clock()
        if coupon.is_used:
            return Error(Errors.coupon(code, "Coupon has already been used"))
        if coupon.is_expired(now):
            return Error(Errors.coupon(code, "Coupon has expired"))
        if coupon.owner_id is not None and coupon.owner_id != buyer_id:
            return Error(Errors.coupon(code, "Coupon belongs to another buyer"))

        used = await L.catching_async(
            lambda: self.coupons.has_been_used_by(code, buyer_id),
            on_error=Errors.storage,
        )
        match used:
            case Error(e):
                return Error(e)
            case Ok(True):
                return Error(Errors.coupon(code, "Coupon already used by this buyer"))
            case Ok(_):
                return Ok(coupon)

    def _totals(
        self,
        lines: list[PricedLine],
        vol_pct: Money,
        coupon: Coupon | None,
    ) -> PricingBreakdown:
        cfg = self.config
        coupon_pct = coupon.percentage if coupon is not None else ZERO

        if coupon_pct:
            lines = [
                _with_coupon_share(line, percent_of(line.subtotal, coupon_pct))
                for line in lines
            ]

        original = _sum(line.original_subtotal for line in lines)
        seller_disc = _sum(line.seller_discount_amount for line in lines)
        volume_disc = _sum(line.volume_discount_amount for line in lines)
        after_volume = _sum(line.subtotal for line in lines)
        coupon_disc = _sum(line.coupon_share for line in lines)
        after_all = after_volume - coupon_disc

        shipping, free = shipping_for(after_all, cfg)
        tax = (after_all + shipping) * cfg.tax_rate

        return PricingBreakdown(
            lines=tuple(lines),
            original_subtotal=original,
            seller_discount_amount=seller_disc,
            volume_discount_pct=vol_pct,
            volume_discount_amount=volume_disc,
            subtotal_after_volume=after_volume,
            coupon_code=coupon.code if coupon is not None else None,
            coupon_pct=coupon_pct,
            coupon_discount_amount=coupon_disc,
            subtotal_with_discounts=after_all,
            shipping_cost=shipping,
            free_shipping=free,
            free_shipping_threshold=cfg.free_shipping_threshold,
            tax_rate=cfg.tax_rate,
            tax_amount=tax,
            final_total=after_all + shipping + tax,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Shipping
# ═══════════════════════════════════════════════════════════════════════════════


def shipping_for(subtotal: Money, config: CheckoutConfig) -> tuple[Money, bool]:
    """(cost, is_free) for a post-coupon subtotal."""
    if not config.shipping_enabled:
        return ZERO, True
    if subtotal >= config.free_shipping_threshold:
        return ZERO, True
    return config.shipping_cost, False


# ═══════════════════════════════════════════════════════════════════════════════
# Degraded mode — totals inferred from a paid amount
# ═══════════════════════════════════════════════════════════════════════════════


def simple_totals_from_amount(amount: Money, config: CheckoutConfig) -> PricingBreakdown:
    """
    Back out subtotal/shipping/tax from an amount already paid.

    Only for confirmations whose stored payment carries no item data.
    No lines, no discounts, flagged degraded=True; never used to drive
    stock or seller settlement.
    """
    rate = ONE + config.tax_rate
    subtotal = amount / rate
    shipping, free = ZERO, True

    if config.shipping_enabled and subtotal < config.free_shipping_threshold:
        shipping, free = config.shipping_cost, False
        subtotal = amount / rate - shipping

    tax = amount - subtotal - shipping
    return PricingBreakdown(
        lines=(),
        original_subtotal=subtotal,
        seller_discount_amount=ZERO,
        volume_discount_pct=ZERO,
        volume_discount_amount=ZERO,
        subtotal_after_volume=subtotal,
        coupon_code=None,
        coupon_pct=ZERO,
        coupon_discount_amount=ZERO,
        subtotal_with_discounts=subtotal,
        shipping_cost=shipping,
        free_shipping=free,
        free_shipping_threshold=config.free_shipping_threshold,
        tax_rate=config.tax_rate,
        tax_amount=tax,
        final_total=amount,
        degraded=True,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════


def _sum(values: object) -> Money:
    return sum(values, Decimal("0"))  # type: ignore[arg-type]


def _with_coupon_share(line: PricedLine, share: Money) -> PricedLine:
    return PricedLine(
        product_id=line.product_id,
        seller_id=line.seller_id,
        name=line.name,
        quantity=line.quantity,
        original_unit_price=line.original_unit_price,
        seller_discount_pct=line.seller_discount_pct,
        seller_discounted_unit_price=line.seller_discounted_unit_price,
        volume_discount_pct=line.volume_discount_pct,
        final_unit_price=line.final_unit_price,
        coupon_share=share,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "PricingCalculator",
    "shipping_for",
    "simple_totals_from_amount",
)
