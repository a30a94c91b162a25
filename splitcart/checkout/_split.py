"""
Seller split — one settlement share per seller in the order.

Seller totals are sums of exact per-line figures, so they add up to the
order's discounted subtotal with no rounding at all. Shared shipping is
the only amount that gets apportioned; its shares are rounded to cents
so that they add up to the shipping cost exactly.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal, ROUND_DOWN
from typing import TYPE_CHECKING

from splitcart._types import Money, ZERO, ONE, CENT, cents, percent_of
from splitcart.domain import OrderItem, PricedLine, PricingBreakdown, SellerShare

if TYPE_CHECKING:
    from splitcart.config import CheckoutConfig


# ═══════════════════════════════════════════════════════════════════════════════
# Shipping apportionment
# ═══════════════════════════════════════════════════════════════════════════════


def apportion_shipping(
    cost: Money,
    weights: Sequence[tuple[int, Money]],
    max_fraction: Money,
) -> dict[int, Money]:
    """
    Split `cost` across sellers proportionally to their weights.

    No seller carries more than max_fraction of the cost; what a capped
    seller does not absorb is redistributed over the others in
    proportion. When max_fraction × sellers < 1 the cap cannot be met,
    and the effective cap becomes an even split.

        apportion_shipping(Decimal("5.00"), [(1, Decimal("90")), (2, Decimal("10"))], Decimal("0.8"))
        # {1: Decimal("4.00"), 2: Decimal("1.00")}
    """
    if not weights:
        return {}
    total = cents(cost)
    if total <= ZERO:
        return {seller_id: ZERO for seller_id, _ in weights}

    count = len(weights)
    cap = total * max(max_fraction, ONE / count)

    weight_of = {seller_id: max(weight, ZERO) for seller_id, weight in weights}
    if sum(weight_of.values(), ZERO) == ZERO:
        weight_of = {seller_id: ONE for seller_id in weight_of}

    exact: dict[int, Money] = {}
    active = list(weight_of)
    remaining = total
    while active:
        active_weight = sum((weight_of[s] for s in active), ZERO)
        if active_weight == ZERO:
            for s in active:
                exact[s] = remaining / len(active)
            break
        tentative = {s: remaining * weight_of[s] / active_weight for s in active}
        capped = [s for s in active if tentative[s] > cap]
        if not capped:
            exact.update(tentative)
            break
        for s in capped:
            exact[s] = cap
            remaining -= cap
            active.remove(s)

    return _largest_remainder(total, [(s, exact.get(s, ZERO)) for s, _ in weights])


def _largest_remainder(total: Money, exact: list[tuple[int, Money]]) -> dict[int, Money]:
    floored = {s: value.quantize(CENT, rounding=ROUND_DOWN) for s, value in exact}
    leftover = int((total - sum(floored.values(), ZERO)) / CENT)
    by_remainder = sorted(
        range(len(exact)),
        key=lambda i: (exact[i][1] - floored[exact[i][0]], -i),
        reverse=True,
    )
    for i in by_remainder[: max(leftover, 0)]:
        floored[exact[i][0]] += CENT
    return floored


# ═══════════════════════════════════════════════════════════════════════════════
# Split
# ═══════════════════════════════════════════════════════════════════════════════


def group_by_seller(lines: Sequence[PricedLine]) -> dict[int, tuple[PricedLine, ...]]:
    """Sellers in order of first appearance."""
    groups: dict[int, list[PricedLine]] = {}
    for line in lines:
        groups.setdefault(line.seller_id, []).append(line)
    return {seller_id: tuple(group) for seller_id, group in groups.items()}


def split_by_seller(
    breakdown: PricingBreakdown, config: CheckoutConfig
) -> tuple[SellerShare, ...]:
    groups = group_by_seller(breakdown.lines)

    totals = {
        seller_id: sum((line.total for line in lines), ZERO)
        for seller_id, lines in groups.items()
    }
    shipping = apportion_shipping(
        breakdown.shipping_cost,
        list(totals.items()),
        config.max_shipping_fraction,
    )

    shares: list[SellerShare] = []
    for seller_id, lines in groups.items():
        subtotal = sum((line.subtotal for line in lines), ZERO)
        original = sum((line.original_subtotal for line in lines), ZERO)
        coupon = sum((line.coupon_share for line in lines), ZERO)
        total = totals[seller_id]
        ship = shipping.get(seller_id, ZERO)
        fee = percent_of(total, config.commission_rate)
        shares.append(
            SellerShare(
                seller_id=seller_id,
                lines=lines,
                subtotal=subtotal,
                original_subtotal=original,
                discount=original - subtotal,
                coupon_share=coupon,
                total=total,
                shipping_share=ship,
                tax_share=(total + ship) * breakdown.tax_rate,
                platform_fee=fee,
                earnings=total - fee,
            )
        )
    return tuple(shares)


def order_items_from(breakdown: PricingBreakdown) -> tuple[OrderItem, ...]:
    return tuple(
        OrderItem(
            product_id=line.product_id,
            seller_id=line.seller_id,
            quantity=line.quantity,
            unit_price=line.final_unit_price,
            original_unit_price=line.original_unit_price,
            seller_discount_pct=line.seller_discount_pct,
            volume_discount_pct=line.volume_discount_pct,
            coupon_share=line.coupon_share,
            subtotal=line.subtotal,
        )
        for line in breakdown.lines
    )


__all__ = (
    "apportion_shipping",
    "group_by_seller",
    "split_by_seller",
    "order_items_from",
)
