"""
Volume discount tiers.

The tier is chosen from the total quantity of the whole cart, then the
same percentage is applied to every line's seller-discounted price.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True, slots=True)
class VolumeTier:
    min_quantity: int
    percent: Decimal


DEFAULT_TIERS: tuple[VolumeTier, ...] = (
    VolumeTier(10, Decimal("15")),
    VolumeTier(6, Decimal("10")),
    VolumeTier(5, Decimal("8")),
    VolumeTier(3, Decimal("5")),
)


def volume_percent(total_quantity: int, tiers: Iterable[VolumeTier] = DEFAULT_TIERS) -> Decimal:
    """
    Highest tier the quantity reaches; 0 below the lowest tier.

        volume_percent(6)    # Decimal("10")
        volume_percent(2)    # Decimal("0")
    """
    best: VolumeTier | None = None
    for tier in tiers:
        if total_quantity >= tier.min_quantity and (
            best is None or tier.min_quantity > best.min_quantity
        ):
            best = tier
    return best.percent if best is not None else Decimal("0")


__all__ = ("VolumeTier", "DEFAULT_TIERS", "volume_percent")
