from datetime import timedelta
from decimal import Decimal

import pytest
from kungfu import Ok, Error

from conftest import (
    NOW,
    PRODUCT_A,
    PRODUCT_B,
    PRODUCT_C,
    FakeCatalog,
    FakeCoupons,
    product,
    scenario_products,
)
from splitcart._types import cents
from splitcart.config import CheckoutConfig
from splitcart.domain import Coupon, LineRequest, PricingBreakdown
from splitcart.errors import CouponRejected, InvalidLineItem, ValidationError
from splitcart.pricing import (
    PricingCalculator,
    VolumeTier,
    shipping_for,
    simple_totals_from_amount,
    volume_percent,
)

SCENARIO = (
    LineRequest(PRODUCT_A, 2),
    LineRequest(PRODUCT_B, 3),
    LineRequest(PRODUCT_C, 1),
)


def calculator(*coupons: Coupon, config: CheckoutConfig | None = None) -> PricingCalculator:
    return PricingCalculator(
        FakeCatalog(*scenario_products()),
        FakeCoupons(*coupons),
        config or CheckoutConfig(),
        clock=lambda: NOW,
    )


async def priced(calc: PricingCalculator, lines=SCENARIO, coupon: str | None = None, **kw) -> PricingBreakdown:
    match await calc.calculate(lines, 7, coupon, **kw):
        case Ok(breakdown):
            return breakdown
        case Error(e):
            raise AssertionError(f"pricing failed: {e}")


# ═══════════════════════════════════════════════════════════════════════════════
# Reference scenario
# ═══════════════════════════════════════════════════════════════════════════════


async def test_reference_cart_totals():
    breakdown = await priced(
        calculator(Coupon("THANKS5", Decimal("5"))), coupon="THANKS5"
    )

    assert breakdown.original_subtotal == Decimal("3450")
    assert breakdown.original_subtotal - breakdown.seller_discount_amount == Decimal("3045.00")
    assert breakdown.volume_discount_pct == Decimal("10")
    assert breakdown.subtotal_after_volume == Decimal("2740.50")
    assert breakdown.coupon_discount_amount == Decimal("137.025")
    assert breakdown.subtotal_with_discounts == Decimal("2603.475")
    assert breakdown.shipping_cost == Decimal("0")
    assert breakdown.free_shipping is True
    assert breakdown.tax_amount == Decimal("390.52125")
    assert breakdown.final_total == Decimal("2993.99625")
    assert breakdown.presented()["final_total"] == Decimal("2994.00")


async def test_final_total_is_exact_sum_of_components():
    breakdown = await priced(calculator())
    assert breakdown.final_total == (
        breakdown.subtotal_with_discounts + breakdown.shipping_cost + breakdown.tax_amount
    )


async def test_per_line_prices_after_seller_and_volume_discount():
    breakdown = await priced(calculator())
    units = {line.product_id: line.final_unit_price for line in breakdown.lines}
    assert units == {
        PRODUCT_A: Decimal("972"),
        PRODUCT_B: Decimal("229.5"),
        PRODUCT_C: Decimal("108"),
    }


async def test_coupon_shares_add_up_to_coupon_discount():
    breakdown = await priced(
        calculator(Coupon("THANKS5", Decimal("5"))), coupon="THANKS5"
    )
    assert sum(line.coupon_share for line in breakdown.lines) == breakdown.coupon_discount_amount
    assert sum(line.total for line in breakdown.lines) == breakdown.subtotal_with_discounts


async def test_pricing_is_deterministic():
    calc = calculator(Coupon("THANKS5", Decimal("5")))
    first = await priced(calc, coupon="THANKS5")
    second = await priced(calc, coupon="THANKS5")
    assert first == second
    assert first.snapshot() == second.snapshot()


async def test_snapshot_restores_identical_breakdown():
    breakdown = await priced(
        calculator(Coupon("THANKS5", Decimal("5"))), coupon="THANKS5"
    )
    assert PricingBreakdown.from_snapshot(breakdown.snapshot()) == breakdown


async def test_client_declared_prices_are_ignored():
    cheap = tuple(LineRequest(line.product_id, line.quantity, price=Decimal("0.01")) for line in SCENARIO)
    assert await priced(calculator(), cheap) == await priced(calculator())


# ═══════════════════════════════════════════════════════════════════════════════
# Discounts
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    ("quantity", "percent"),
    [(1, "0"), (2, "0"), (3, "5"), (4, "5"), (5, "8"), (6, "10"), (9, "10"), (10, "15"), (40, "15")],
)
def test_volume_tiers(quantity: int, percent: str):
    assert volume_percent(quantity) == Decimal(percent)


def test_custom_tiers_pick_highest_reached():
    tiers = (VolumeTier(2, Decimal("1")), VolumeTier(4, Decimal("3")))
    assert volume_percent(5, tiers) == Decimal("3")
    assert volume_percent(1, tiers) == Decimal("0")


async def test_seller_discount_is_clamped():
    catalog = FakeCatalog(product(9, 1, "100", "150"))
    calc = PricingCalculator(catalog, FakeCoupons(), CheckoutConfig(), clock=lambda: NOW)
    breakdown = await priced(calc, (LineRequest(9, 1),))
    assert breakdown.lines[0].seller_discount_pct == Decimal("90")
    assert breakdown.lines[0].final_unit_price == Decimal("10")


# ═══════════════════════════════════════════════════════════════════════════════
# Shipping
# ═══════════════════════════════════════════════════════════════════════════════


def test_shipping_free_at_threshold():
    config = CheckoutConfig()
    assert shipping_for(Decimal("50.00"), config) == (Decimal("0"), True)
    assert shipping_for(Decimal("49.99"), config) == (Decimal("5.00"), False)


def test_shipping_disabled():
    config = CheckoutConfig(shipping_enabled=False)
    assert shipping_for(Decimal("1"), config) == (Decimal("0"), True)


async def test_small_cart_pays_shipping_and_tax_on_it():
    catalog = FakeCatalog(product(9, 1, "20"))
    calc = PricingCalculator(catalog, FakeCoupons(), CheckoutConfig(), clock=lambda: NOW)
    breakdown = await priced(calc, (LineRequest(9, 1),))
    assert breakdown.shipping_cost == Decimal("5.00")
    assert breakdown.tax_amount == Decimal("3.75")
    assert breakdown.final_total == Decimal("28.75")


# ═══════════════════════════════════════════════════════════════════════════════
# Coupons
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "coupon",
    [
        Coupon("C", Decimal("5"), is_used=True),
        Coupon("C", Decimal("5"), expires_at=NOW - timedelta(seconds=1)),
        Coupon("C", Decimal("5"), owner_id=99),
    ],
    ids=["used", "expired", "other-owner"],
)
async def test_rejected_coupons(coupon: Coupon):
    match await calculator(coupon).calculate(SCENARIO, 7, "C"):
        case Error(CouponRejected(coupon_code=code)):
            assert code == "C"
        case other:
            raise AssertionError(f"expected CouponRejected, got {other}")


async def test_unknown_coupon_rejected():
    match await calculator().calculate(SCENARIO, 7, "NOPE"):
        case Error(CouponRejected()):
            pass
        case other:
            raise AssertionError(f"expected CouponRejected, got {other}")


async def test_coupon_already_used_by_buyer():
    coupons = FakeCoupons(Coupon("C", Decimal("5")))
    coupons.usages.add(("C", 7))
    calc = PricingCalculator(FakeCatalog(*scenario_products()), coupons, CheckoutConfig(), clock=lambda: NOW)
    match await calc.calculate(SCENARIO, 7, "C"):
        case Error(CouponRejected()):
            pass
        case other:
            raise AssertionError(f"expected CouponRejected, got {other}")


async def test_best_effort_drops_rejected_coupon():
    calc = calculator(Coupon("C", Decimal("5"), is_used=True))
    breakdown = await priced(calc, coupon="C", best_effort_coupon=True)
    assert breakdown.coupon_code is None
    assert breakdown.coupon_discount_amount == Decimal("0")


# ═══════════════════════════════════════════════════════════════════════════════
# Input shape
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "lines",
    [
        (),
        (LineRequest(PRODUCT_A, 0),),
        (LineRequest(PRODUCT_A, 100),),
    ],
    ids=["empty", "zero-quantity", "over-max-quantity"],
)
async def test_invalid_shapes(lines):
    match await calculator().calculate(lines, 7):
        case Error(ValidationError()):
            pass
        case other:
            raise AssertionError(f"expected ValidationError, got {other}")


async def test_too_many_lines():
    config = CheckoutConfig(max_items=2)
    match await calculator(config=config).calculate(SCENARIO, 7):
        case Error(ValidationError()):
            pass
        case other:
            raise AssertionError(f"expected ValidationError, got {other}")


async def test_unknown_product():
    match await calculator().calculate((LineRequest(404, 1),), 7):
        case Error(InvalidLineItem(product_id=pid)):
            assert pid == 404
        case other:
            raise AssertionError(f"expected InvalidLineItem, got {other}")


# ═══════════════════════════════════════════════════════════════════════════════
# Degraded totals
# ═══════════════════════════════════════════════════════════════════════════════


def test_simple_totals_above_threshold():
    breakdown = simple_totals_from_amount(Decimal("115.00"), CheckoutConfig())
    assert breakdown.degraded is True
    assert breakdown.lines == ()
    assert breakdown.shipping_cost == Decimal("0")
    assert breakdown.subtotal_with_discounts == Decimal("100")
    assert breakdown.final_total == Decimal("115.00")
    assert breakdown.subtotal_with_discounts + breakdown.tax_amount == Decimal("115.00")


def test_simple_totals_below_threshold_backs_out_shipping():
    breakdown = simple_totals_from_amount(Decimal("28.75"), CheckoutConfig())
    assert breakdown.shipping_cost == Decimal("5.00")
    assert cents(breakdown.subtotal_with_discounts) == Decimal("20.00")
    assert (
        breakdown.subtotal_with_discounts + breakdown.shipping_cost + breakdown.tax_amount
        == Decimal("28.75")
    )
