import json
from decimal import Decimal

from kungfu import Ok, Error
from sqlalchemy import func, select

from conftest import PRODUCT_A, PRODUCT_B, SELLER_X, SELLER_Y, WEBHOOK_SECRET, stock_of
from splitcart.checkout import CheckoutRequest
from splitcart.db import OrderRow
from splitcart.domain import LineRequest, OrderStatus, PaymentRecord, PaymentStatus
from splitcart.payments import sign

# A 1 × 1080 + B 1 × 255, no volume tier, free shipping, 15% tax.
TOTAL = "1535.25"


async def seed_payment(uow, payment_id: str = "PAY-1", *, items=None, amount: str = TOTAL, coupon: str | None = None):
    if items is None:
        items = (LineRequest(PRODUCT_A, 1), LineRequest(PRODUCT_B, 1))
    async with uow.begin() as tx:
        await tx.payments.create(
            PaymentRecord(
                payment_id=payment_id,
                buyer_id=7,
                amount=Decimal(amount),
                currency="USD",
                status=PaymentStatus.CREATED,
                items=tuple(items),
                coupon_code=coupon,
                shipping_address={"city": "Quito"},
            )
        )
        await tx.commit()


def delivery(status: str = "SUCCESS", payment_id: str = "PAY-1", amount: str = TOTAL) -> dict:
    return {"idTransaction": payment_id, "status": status, "amount": amount}


async def order_count(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(OrderRow))


# ═══════════════════════════════════════════════════════════════════════════════
# Materialization
# ═══════════════════════════════════════════════════════════════════════════════


async def test_completed_payment_materializes_order(reconciler, uow, sink):
    await seed_payment(uow)

    response = await reconciler.handle(delivery())

    assert response.success
    assert response.message == "Order created"
    assert response.status is PaymentStatus.COMPLETED
    assert response.warnings == ()

    async with uow.begin() as tx:
        order = await tx.orders.find_by_payment_id("PAY-1")
        assert order is not None
        assert order.id == response.order_id
        assert order.status is OrderStatus.PAID
        assert order.total == Decimal(TOTAL)
        sellers = await tx.seller_orders.for_order(order.id)
        assert {so.seller_id for so in sellers} == {SELLER_X, SELLER_Y}
        record = await tx.payments.find_by_payment_id("PAY-1")
        assert record is not None
        assert record.status is PaymentStatus.COMPLETED
        assert record.order_id == order.id

    assert await stock_of(uow, PRODUCT_A) == 9
    assert await stock_of(uow, PRODUCT_B) == 9
    assert [e.order_id for e in sink.events] == [response.order_id]


async def test_signed_delivery(reconciler, uow):
    await seed_payment(uow)
    body = json.dumps(delivery()).encode()

    response = await reconciler.handle(
        delivery(), signature=sign(body, WEBHOOK_SECRET), raw_body=body
    )
    assert response.success


async def test_amount_mismatch_is_tolerated(reconciler, uow, caplog):
    await seed_payment(uow, amount="1500.00")
    with caplog.at_level("WARNING"):
        response = await reconciler.handle(delivery(amount="1500.00"))
    assert response.success
    assert "stored request prices" in caplog.text


async def test_coupon_from_stored_request_is_consumed(reconciler, uow):
    await seed_payment(uow, coupon="THANKS5")
    response = await reconciler.handle(delivery())
    assert response.success
    async with uow.begin() as tx:
        coupon = await tx.coupons.find_by_code("THANKS5")
        assert coupon is not None and coupon.is_used


async def test_stale_coupon_does_not_block_paid_order(reconciler, uow):
    await seed_payment(uow, coupon="OLD10")
    response = await reconciler.handle(delivery())
    assert response.success
    async with uow.begin() as tx:
        order = await tx.orders.find_by_payment_id("PAY-1")
        assert order is not None
        assert order.pricing.coupon_code is None


async def test_record_without_items_uses_degraded_totals(reconciler, uow):
    await seed_payment(uow, items=(), amount="115.00")

    response = await reconciler.handle(delivery(amount="115.00"))

    assert response.success
    assert response.warnings == ("degraded_totals",)
    async with uow.begin() as tx:
        order = await tx.orders.find_by_payment_id("PAY-1")
        assert order is not None
        assert order.pricing.degraded
        assert order.total == Decimal("115.00")
        assert order.items == ()


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency
# ═══════════════════════════════════════════════════════════════════════════════


async def test_duplicate_delivery_is_a_no_op(reconciler, uow, sink, session_factory):
    await seed_payment(uow)

    first = await reconciler.handle(delivery())
    second = await reconciler.handle(delivery())

    assert first.success and second.success
    assert "already processed" in second.message.lower()
    assert second.order_id is None
    assert await order_count(session_factory) == 1
    assert await stock_of(uow, PRODUCT_A) == 9
    assert len(sink.events) == 1


async def test_redelivery_after_marker_expiry_does_not_duplicate(reconciler, uow, sink, clock, session_factory):
    await seed_payment(uow)
    first = await reconciler.handle(delivery())

    clock.advance(hours=2)
    again = await reconciler.handle(delivery())

    assert again.success
    assert again.message == "Status updated"
    assert again.order_id == first.order_id
    assert await order_count(session_factory) == 1
    assert await stock_of(uow, PRODUCT_A) == 9
    assert len(sink.events) == 1


async def test_unknown_payment_fails_and_releases_marker(reconciler, keystore):
    response = await reconciler.handle(delivery(payment_id="PAY-404"))
    assert not response.success
    assert "not found" in response.message
    assert len(keystore) == 0


async def test_failed_delivery_can_be_retried(reconciler, uow):
    assert not (await reconciler.handle(delivery())).success
    await seed_payment(uow)
    assert (await reconciler.handle(delivery())).message == "Order created"


# ═══════════════════════════════════════════════════════════════════════════════
# Status propagation
# ═══════════════════════════════════════════════════════════════════════════════


async def test_refund_propagates_to_order_and_seller_orders(reconciler, uow):
    await seed_payment(uow)
    created = await reconciler.handle(delivery())

    refunded = await reconciler.handle(delivery("REFUNDED"))

    assert refunded.success
    assert refunded.status is PaymentStatus.REFUNDED
    async with uow.begin() as tx:
        order = await tx.orders.find_by_id(created.order_id)
        assert order is not None
        assert order.status is OrderStatus.REFUNDED
        assert order.payment_status is PaymentStatus.REFUNDED
        sellers = await tx.seller_orders.for_order(order.id)
        assert sellers
        assert all(so.status is OrderStatus.REFUNDED for so in sellers)


async def test_late_pending_never_downgrades_settled_payment(reconciler, uow):
    await seed_payment(uow)
    created = await reconciler.handle(delivery())

    late = await reconciler.handle(delivery("PENDING"))

    assert late.success
    async with uow.begin() as tx:
        order = await tx.orders.find_by_id(created.order_id)
        assert order is not None
        assert order.status is OrderStatus.PAID
        record = await tx.payments.find_by_payment_id("PAY-1")
        assert record is not None
        assert record.status is PaymentStatus.COMPLETED


async def test_failed_payment_without_order_only_updates_record(reconciler, uow, session_factory, sink):
    await seed_payment(uow)

    response = await reconciler.handle(delivery("DECLINED"))

    assert response.success
    assert response.order_id is None
    assert await order_count(session_factory) == 0
    assert sink.events == []
    async with uow.begin() as tx:
        record = await tx.payments.find_by_payment_id("PAY-1")
        assert record is not None
        assert record.status is PaymentStatus.FAILED


# ═══════════════════════════════════════════════════════════════════════════════
# Rejected deliveries
# ═══════════════════════════════════════════════════════════════════════════════


async def test_bad_signature_is_rejected(reconciler, uow, session_factory, keystore):
    await seed_payment(uow)
    response = await reconciler.handle(delivery(), signature="sha256=00")
    assert not response.success
    assert await order_count(session_factory) == 0
    assert len(keystore) == 0


async def test_unknown_status_is_rejected(reconciler, uow):
    await seed_payment(uow)
    assert not (await reconciler.handle(delivery("LIMBO"))).success


async def test_missing_payment_id_is_rejected(reconciler):
    response = await reconciler.handle({"status": "SUCCESS", "amount": "1"})
    assert not response.success
    assert response.payment_id is None


async def test_nan_amount_is_rejected_without_claiming(reconciler, uow, keystore, caplog):
    await seed_payment(uow)
    with caplog.at_level("WARNING", logger="splitcart.audit"):
        response = await reconciler.handle(delivery(amount="NaN"))
    assert not response.success
    assert response.message == "Invalid amount: 'NaN'"
    assert len(keystore) == 0
    assert "INVALID_AMOUNT" in caplog.text


# ═══════════════════════════════════════════════════════════════════════════════
# Confirmations of synchronous checkouts
# ═══════════════════════════════════════════════════════════════════════════════


async def checked_out(orchestrator):
    request = CheckoutRequest(
        buyer_id=7,
        payment={"card_token": "tok_visa"},
        shipping_address={"city": "Quito"},
        items=(LineRequest(PRODUCT_A, 1), LineRequest(PRODUCT_B, 1)),
        payment_method="datafast_confirmed",
    )
    match await orchestrator.checkout(request):
        case Ok(done):
            return done
        case Error(e):
            raise AssertionError(f"checkout failed: {e}")


async def test_checkout_stores_its_payment_record(orchestrator, uow):
    done = await checked_out(orchestrator)

    async with uow.begin() as tx:
        record = await tx.payments.find_by_payment_id("TX-0001")
    assert record is not None
    assert record.status is PaymentStatus.COMPLETED
    assert record.order_id == done.order.id
    assert record.amount == Decimal(TOTAL)
    assert record.transaction_reference == done.order.order_number
    assert [line.product_id for line in record.items] == [PRODUCT_A, PRODUCT_B]


async def test_success_webhook_after_checkout_only_confirms(
    orchestrator, reconciler, uow, sink, session_factory
):
    done = await checked_out(orchestrator)

    response = await reconciler.handle(delivery(payment_id="TX-0001"))

    assert response.success
    assert response.message == "Status updated"
    assert response.order_id == done.order.id
    assert await order_count(session_factory) == 1
    assert await stock_of(uow, PRODUCT_A) == 9
    assert len(sink.events) == 1


async def test_refund_webhook_after_checkout_reaches_seller_orders(orchestrator, reconciler, uow):
    done = await checked_out(orchestrator)

    response = await reconciler.handle(delivery("REFUNDED", payment_id="TX-0001"))

    assert response.success
    async with uow.begin() as tx:
        sellers = await tx.seller_orders.for_order(done.order.id)
        record = await tx.payments.find_by_payment_id("TX-0001")
    assert {so.status for so in sellers} == {OrderStatus.REFUNDED}
    assert record is not None and record.status is PaymentStatus.REFUNDED
