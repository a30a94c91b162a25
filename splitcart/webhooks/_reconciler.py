"""
Webhook reconciler — asynchronous payment confirmations.

Providers deliver webhooks late, out of order and more than once. Each
delivery is normalized, de-duplicated with a `webhook_processed_` marker
per (payment id, status) and applied in a single transaction:

    status != completed, order exists   → propagate status to order + seller orders
    status == completed, no order yet   → materialize the order from the stored request
    status == completed, order exists   → propagate (no recompute)

The marker is completed only after commit and released on any failure,
so the provider's retry gets processed. A duplicate answers success
without writing anything.

Example:
    reconciler = WebhookReconciler(uow, normalizer, keystore, sink, config)
    response = await reconciler.handle(payload, signature=request.headers.get("X-Webhook-Signature"))
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from kungfu import Result, Ok, Error

from splitcart._types import within
from splitcart.audit import audit_failure
from splitcart.checkout import (
    EVENT_MARKER_PREFIX,
    order_items_from,
    order_number,
    settle_sellers,
)
from splitcart.config import CheckoutConfig
from splitcart.domain import (
    ORDER_STATUS_FOR_PAYMENT,
    NewOrder,
    Order,
    OrderStatus,
    PaymentOutcome,
    PaymentRecord,
    PaymentStatus,
    PricingBreakdown,
)
from splitcart.errors import CheckoutError, Errors
from splitcart.events import EventSink, OrderCreated
from splitcart.inventory import Inventory
from splitcart.lift import from_fallible
from splitcart.markers import Guard, Keystore
from splitcart.payments import ConfirmationChannel, ConfirmationNormalizer
from splitcart.ports import Transaction, UnitOfWork
from splitcart.pricing import PricingCalculator, simple_totals_from_amount

log = logging.getLogger(__name__)

WEBHOOK_MARKER_PREFIX = "webhook_processed_"

# Out-of-order deliveries of these never overwrite a settled payment.
_NON_FINAL = frozenset({PaymentStatus.CREATED, PaymentStatus.PENDING})


def _is_late(incoming: PaymentStatus, current: PaymentStatus) -> bool:
    return incoming in _NON_FINAL and current not in _NON_FINAL


# ═══════════════════════════════════════════════════════════════════════════════
# Response
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class WebhookResponse:
    success: bool
    payment_id: str | None
    status: PaymentStatus | None
    message: str
    order_id: int | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class _Applied:
    order: Order | None
    created: bool = False
    warnings: tuple[str, ...] = ()


def _reports_status(outcome: PaymentOutcome) -> bool:
    """Valid delivery, whether or not the payment itself succeeded."""
    return outcome.success or outcome.error_code == f"PAYMENT_{outcome.status.name}"


# ═══════════════════════════════════════════════════════════════════════════════
# Reconciler
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class WebhookReconciler:
    uow: UnitOfWork
    normalizer: ConfirmationNormalizer
    keystore: Keystore
    events: EventSink
    config: CheckoutConfig
    clock: Callable[[], datetime] = field(default=datetime.now)

    @property
    def processed(self) -> Guard:
        return Guard(self.keystore, WEBHOOK_MARKER_PREFIX, self.config.webhook_marker_ttl)

    @property
    def emitted(self) -> Guard:
        return Guard(self.keystore, EVENT_MARKER_PREFIX, self.config.event_marker_ttl)

    async def handle(
        self,
        payload: Mapping[str, Any],
        signature: str | None = None,
        raw_body: bytes | None = None,
    ) -> WebhookResponse:
        outcome = await self.normalizer.validate(
            payload,
            ConfirmationChannel.WEBHOOK,
            signature=signature,
            raw_body=raw_body,
        )
        payment_id = outcome.transaction_id
        if payment_id is None or not _reports_status(outcome):
            audit_failure(
                "webhook",
                outcome.error_code or "INVALID_WEBHOOK",
                outcome.error_message or "Invalid webhook",
                payment_id=outcome.transaction_id,
            )
            return WebhookResponse(
                success=False,
                payment_id=outcome.transaction_id,
                status=None,
                message=outcome.error_message or "Invalid webhook",
            )

        delivery = f"{payment_id}:{outcome.status.value}"

        claimed = False
        match await self.processed.claim(delivery):
            case Ok(False):
                log.info("webhook for payment %s already processed", payment_id)
                duplicate = Errors.duplicate(self.processed.key(delivery))
                return WebhookResponse(True, payment_id, outcome.status, duplicate.message)
            case Ok(True):
                claimed = True
            case Error(e):
                log.warning("webhook marker unavailable (%s); processing unguarded", e.message)

        applied = await from_fallible(
            lambda: self._reconcile(payment_id, outcome),
            on_error=Errors.storage,
        )

        match applied:
            case Error(error):
                if claimed:
                    await self._release(delivery)
                audit_failure(
                    "webhook", error.code, error.message,
                    payment_id=payment_id, status=outcome.status.value,
                )
                return WebhookResponse(False, payment_id, outcome.status, error.message)
            case Ok(done):
                if claimed:
                    match await self.processed.complete(delivery):
                        case Error(e):
                            log.warning("webhook marker not completed: %s", e.message)
                        case Ok(_):
                            pass
                warnings = list(done.warnings)
                if done.created and done.order is not None:
                    if not await self._emit(payment_id, done.order):
                        warnings.append("publish_order_created")
                return WebhookResponse(
                    success=True,
                    payment_id=payment_id,
                    status=outcome.status,
                    message="Order created" if done.created else "Status updated",
                    order_id=done.order.id if done.order is not None else None,
                    warnings=tuple(warnings),
                )

    # ─────────────────────────────────────────────────────────────────────────
    # Transaction body
    # ─────────────────────────────────────────────────────────────────────────

    async def _reconcile(
        self, payment_id: str, outcome: PaymentOutcome
    ) -> Result[_Applied, CheckoutError]:
        async with self.uow.begin(self.config.isolation_level) as tx:
            record = await tx.payments.find_by_payment_id(payment_id)
            if record is None:
                log.error("webhook for unknown payment %s", payment_id)
                await tx.rollback()
                return Error(Errors.validation(f"Payment {payment_id} not found"))

            if not _is_late(outcome.status, record.status):
                await tx.payments.update_status(payment_id, outcome.status)

            order = await tx.orders.find_by_payment_id(payment_id)
            if order is None and record.order_id is not None:
                order = await tx.orders.find_by_id(record.order_id)

            if order is not None:
                result = await self._propagate(tx, order, outcome.status)
            elif outcome.status is PaymentStatus.COMPLETED:
                result = await self._materialize(tx, record, outcome)
            else:
                log.info(
                    "payment %s is %s with no order yet", payment_id, outcome.status.value
                )
                result = Ok(_Applied(order=None))

            match result:
                case Error(e):
                    await tx.rollback()
                    return Error(e)
                case Ok(applied):
                    await tx.commit()
                    return Ok(applied)

    async def _propagate(
        self, tx: Transaction, order: Order, status: PaymentStatus
    ) -> Result[_Applied, CheckoutError]:
        if _is_late(status, order.payment_status):
            log.info(
                "ignoring late %s for order %s already %s",
                status.value, order.id, order.payment_status.value,
            )
            return Ok(_Applied(order=order))

        order_status = ORDER_STATUS_FOR_PAYMENT[status]
        await tx.orders.update_status(order.id, order_status, status)
        touched = await tx.seller_orders.update_status(order.id, order_status, status)
        log.info(
            "order %s → %s (%d seller orders)", order.id, order_status.value, touched
        )
        return Ok(_Applied(order=order))

    async def _materialize(
        self, tx: Transaction, record: PaymentRecord, outcome: PaymentOutcome
    ) -> Result[_Applied, CheckoutError]:
        if not record.items:
            return await self._materialize_degraded(tx, record, outcome)

        calculator = PricingCalculator(tx.catalog, tx.coupons, self.config, self.clock)
        match await calculator.calculate(
            record.items, record.buyer_id, record.coupon_code, best_effort_coupon=True
        ):
            case Error(e):
                return Error(e)
            case Ok(pricing):
                pass

        paid = outcome.amount if outcome.amount is not None else record.amount
        if not within(paid, pricing.final_total, self.config.price_tolerance):
            log.warning(
                "payment %s paid %s but stored request prices at %s",
                record.payment_id, paid, pricing.final_total,
            )

        match await Inventory(tx.catalog).commit_decrement(
            (line.product_id, line.quantity) for line in pricing.lines
        ):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass

        order = await self._create_order(tx, record, outcome, pricing)

        match await settle_sellers(tx, order, self.config):
            case Error(e):
                return Error(e)
            case Ok(settlement):
                warnings = list(settlement.warnings)

        coupon_code = pricing.coupon_code
        if coupon_code is not None:
            consumed = await from_fallible(
                lambda: self._consume_coupon(tx, coupon_code, record.buyer_id),
                on_error=str,
            )
            match consumed:
                case Ok(True):
                    pass
                case Ok(False) | Error(_):
                    log.warning(
                        "coupon %s not marked used for payment %s",
                        coupon_code, record.payment_id,
                    )
                    warnings.append(f"coupon:{coupon_code}")

        return Ok(_Applied(order=order, created=True, warnings=tuple(warnings)))

    async def _materialize_degraded(
        self, tx: Transaction, record: PaymentRecord, outcome: PaymentOutcome
    ) -> Result[_Applied, CheckoutError]:
        amount = outcome.amount if outcome.amount is not None else record.amount
        log.warning(
            "payment %s has no stored items; creating order from amount %s (degraded)",
            record.payment_id, amount,
        )
        pricing = simple_totals_from_amount(amount, self.config)
        order = await self._create_order(tx, record, outcome, pricing)
        return Ok(_Applied(order=order, created=True, warnings=("degraded_totals",)))

    async def _create_order(
        self,
        tx: Transaction,
        record: PaymentRecord,
        outcome: PaymentOutcome,
        pricing: PricingBreakdown,
    ) -> Order:
        order = await tx.orders.create_from_webhook(
            NewOrder(
                order_number=order_number(self.clock(), self.config.order_number_prefix),
                buyer_id=record.buyer_id,
                seller_id=pricing.lines[0].seller_id if pricing.lines else None,
                status=OrderStatus.PAID,
                payment_status=PaymentStatus.COMPLETED,
                payment_method=outcome.payment_method,
                pricing=pricing,
                shipping_address=record.shipping_address,
                billing_address=record.billing_address,
                items=order_items_from(pricing),
                payment_id=record.payment_id,
            )
        )
        await tx.payments.attach_order(record.payment_id, order.id)
        log.info("order %s materialized from payment %s", order.order_number, record.payment_id)
        return order

    async def _consume_coupon(
        self, tx: Transaction, code: str, buyer_id: int
    ) -> Result[bool, str]:
        return Ok(await tx.coupons.mark_as_used(code, buyer_id, self.clock()))

    # ─────────────────────────────────────────────────────────────────────────
    # Markers and events
    # ─────────────────────────────────────────────────────────────────────────

    async def _release(self, delivery: str) -> None:
        match await self.processed.release(delivery):
            case Error(e):
                log.warning("webhook marker for %s not released: %s", delivery, e.message)
            case Ok(_):
                pass

    async def _emit(self, payment_id: str, order: Order) -> bool:
        match await self.emitted.claim(payment_id):
            case Ok(False):
                log.warning("OrderCreated for %s already emitted; skipping", payment_id)
                return True
            case Error(e):
                log.warning("event marker unavailable (%s); emitting unguarded", e.message)
            case Ok(True):
                pass

        try:
            await self.events.publish(OrderCreated.from_order(order))
        except Exception:
            log.exception("OrderCreated publish failed for order %s", order.id)
            await self.emitted.release(payment_id)
            return False

        await self.emitted.complete(payment_id, str(order.id))
        return True


__all__ = ("WEBHOOK_MARKER_PREFIX", "WebhookResponse", "WebhookReconciler")
