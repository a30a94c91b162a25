"""
Pricing — tamper-resistant totals from raw cart lines.

    from splitcart import pricing as P

    calc = P.PricingCalculator(catalog, coupons, config)
    breakdown = await calc.calculate(lines, buyer_id, coupon_code)
"""

from splitcart.pricing._tiers import VolumeTier, DEFAULT_TIERS, volume_percent
from splitcart.pricing._calculator import (
    PricingCalculator,
    shipping_for,
    simple_totals_from_amount,
)

__all__ = (
    "VolumeTier",
    "DEFAULT_TIERS",
    "volume_percent",
    "PricingCalculator",
    "shipping_for",
    "simple_totals_from_amount",
)
