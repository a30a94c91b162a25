"""
Checkout orchestrator — the buyer checkout saga.

    Started → items resolved → priced → PriceVerified → StockValidated
      → OrderCreated → PaymentProcessing → PaymentSettled
      → SellerOrdersSplit → StockCommitted → CartCleared → Completed

Every step runs inside one database transaction. A failing critical step
aborts the saga: the transaction rolls back, and the compensators
recorded so far run in reverse (a charged payment is voided). Cart
clearing and shipping stubs are best-effort; their failures come back
as warnings on the result.

OrderCreated is claimed with an idempotency marker during the saga and
published only after the transaction commits, so a rolled-back checkout
never announces an order.

Example:
    orchestrator = CheckoutOrchestrator(uow, gateway, sink, keystore, config)

    match await orchestrator.checkout(CheckoutRequest(buyer_id=7, payment=card, shipping_address=addr)):
        case Ok(done):
            print(done.order.order_number, [so.order_number for so in done.seller_orders])
        case Error(e):
            print(e.code, e.message)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

from kungfu import Result, Ok, Error

from splitcart import saga as S
from splitcart._types import cents
from splitcart.audit import audit_failure
from splitcart.checkout._numbers import order_number
from splitcart.checkout._request import CheckoutRequest, CheckoutResult
from splitcart.checkout._settle import Settlement, settle_sellers
from splitcart.checkout._split import order_items_from
from splitcart.config import CheckoutConfig
from splitcart.domain import (
    Cart,
    GatewayCharge,
    LineRequest,
    NewOrder,
    Order,
    OrderStatus,
    PaymentRecord,
    PaymentStatus,
    PricingBreakdown,
)
from splitcart.errors import CheckoutError, Errors
from splitcart.events import EventSink, OrderCreated
from splitcart.inventory import Inventory
from splitcart.lift import from_fallible
from splitcart.markers import Guard, Keystore
from splitcart.payments import CodeFamily, classify_widget_code
from splitcart.ports import PaymentGateway, Transaction, UnitOfWork
from splitcart.pricing import PricingCalculator
from splitcart.verify import check_lines, check_totals

log = logging.getLogger(__name__)

EVENT_MARKER_PREFIX = "order_created_"


# ═══════════════════════════════════════════════════════════════════════════════
# Saga state
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class _State:
    lines: tuple[LineRequest, ...] = ()
    cart: Cart | None = None
    seller_id: int | None = None
    pricing: PricingBreakdown | None = None
    order: Order | None = None
    charge: GatewayCharge | None = None
    settlement: Settlement | None = None
    event_claimed: bool = False


type _Stage = Callable[[_State], Awaitable[Result[_State, CheckoutError]]]


def _out_of_order(stage: str, missing: str) -> Result[_State, CheckoutError]:
    return Error(Errors.integrity(f"{stage} ran before {missing} was known"))


# ═══════════════════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class CheckoutOrchestrator:
    uow: UnitOfWork
    gateway: PaymentGateway
    events: EventSink
    keystore: Keystore
    config: CheckoutConfig
    clock: Callable[[], datetime] = field(default=datetime.now)

    @property
    def event_guard(self) -> Guard:
        return Guard(self.keystore, EVENT_MARKER_PREFIX, self.config.event_marker_ttl)

    async def checkout(self, request: CheckoutRequest) -> Result[CheckoutResult, CheckoutError]:
        run: _CheckoutRun | None = None
        try:
            async with self.uow.begin(self.config.isolation_level) as tx:
                run = _CheckoutRun(self, tx, request)
                outcome = await S.run(run.saga())

                match outcome:
                    case Ok(done):
                        return Ok(await run.finish(done))
                    case Error(failed):
                        await tx.rollback()
                        await run.abort(failed)
                        return Error(failed.error)
        except Exception as e:
            log.exception("checkout crashed for buyer %s", request.buyer_id)
            if run is not None:
                await run.release_event()
            error = Errors.storage(e)
            audit_failure("checkout", error.code, error.message, buyer_id=request.buyer_id)
            return Error(error)


# ═══════════════════════════════════════════════════════════════════════════════
# One checkout attempt
# ═══════════════════════════════════════════════════════════════════════════════


class _CheckoutRun:
    def __init__(
        self,
        owner: CheckoutOrchestrator,
        tx: Transaction,
        request: CheckoutRequest,
    ) -> None:
        self.owner = owner
        self.config = owner.config
        self.tx = tx
        self.request = request
        self.inventory = Inventory(tx.catalog)
        self.event_key: str | None = None

    def saga(self) -> S.SagaExpr[_State, CheckoutError]:
        return (
            self._stage("resolve_items", self._resolve_items)(_State())
            .then(self._stage("price", self._price))
            .then(self._stage("verify_prices", self._verify))
            .then(self._stage("validate_stock", self._reserve_stock))
            .then(self._stage("create_order", self._create_order))
            .then(self._stage("process_payment", self._charge, compensate=self._void))
            .then(self._stage("settle_payment", self._settle_payment))
            .then(self._stage("claim_order_event", self._claim_event))
            .then(self._stage("split_sellers", self._split_sellers))
            .then(self._stage("commit_stock", self._commit_stock))
            .then(self._best_effort("clear_cart", self._clear_cart))
            .then(self._stage("consume_coupon", self._consume_coupon))
            .then(self._stage("commit", self._commit))
        )

    def _stage(
        self,
        name: str,
        fn: _Stage,
        compensate: Callable[[_State], Awaitable[None]] | None = None,
    ) -> Callable[[_State], S.SagaStep[_State, CheckoutError]]:
        def make(state: _State) -> S.SagaStep[_State, CheckoutError]:
            return S.step(
                name,
                from_fallible(lambda: fn(state), on_error=Errors.storage),
                compensate=compensate,
            )
        return make

    def _best_effort(
        self, name: str, fn: _Stage
    ) -> Callable[[_State], S.SagaStep[_State, CheckoutError]]:
        def make(state: _State) -> S.SagaStep[_State, CheckoutError]:
            return S.best_effort(
                name,
                from_fallible(lambda: fn(state), on_error=Errors.storage),
                fallback=state,
            )
        return make

    # ─────────────────────────────────────────────────────────────────────────
    # Stages
    # ─────────────────────────────────────────────────────────────────────────

    async def _resolve_items(self, state: _State) -> Result[_State, CheckoutError]:
        cart: Cart | None = None
        if self.request.items is not None:
            lines = self.request.items
        else:
            cart = await self.tx.carts.find_by_user_id(self.request.buyer_id)
            lines = cart.items if cart is not None else ()

        if not lines:
            return Error(Errors.validation("Nothing to check out: no items and empty cart"))

        for index, line in enumerate(lines):
            if line.product_id is None:
                log.critical(
                    "line %s for buyer %s has no product id", index, self.request.buyer_id
                )
                return Error(Errors.integrity(f"Line {index} has no product id"))

        return Ok(replace(state, lines=tuple(lines), cart=cart))

    async def _price(self, state: _State) -> Result[_State, CheckoutError]:
        calculator = PricingCalculator(
            self.tx.catalog, self.tx.coupons, self.config, self.owner.clock
        )
        match await calculator.calculate(
            state.lines, self.request.buyer_id, self.request.coupon_code
        ):
            case Error(e):
                return Error(e)
            case Ok(pricing):
                seller_id = self.request.seller_id or pricing.lines[0].seller_id
                return Ok(replace(state, pricing=pricing, seller_id=seller_id))

    async def _verify(self, state: _State) -> Result[_State, CheckoutError]:
        if state.pricing is None:
            return _out_of_order("verify_prices", "pricing")
        if self.request.payment_method in self.config.trusted_payment_methods:
            log.info(
                "price verification skipped for trusted method %s",
                self.request.payment_method,
            )
            return Ok(state)

        tolerance = self.config.price_tolerance
        mismatch: str | None = None

        if self.request.items is not None:
            if any(line.price is None for line in self.request.items):
                return Error(Errors.validation("Every item must declare its price"))
            mismatch = check_lines(state.pricing, self.request.items, tolerance)

        if mismatch is None and self.request.calculated_totals is not None:
            mismatch = check_totals(state.pricing, self.request.calculated_totals, tolerance)

        if mismatch is not None:
            log.warning(
                "price tampering detected buyer=%s: %s", self.request.buyer_id, mismatch
            )
            return Error(Errors.tampering(f"Price verification failed: {mismatch}"))
        return Ok(state)

    async def _reserve_stock(self, state: _State) -> Result[_State, CheckoutError]:
        if state.pricing is None:
            return _out_of_order("validate_stock", "pricing")
        match await self.inventory.reserve_and_validate(
            (line.product_id, line.quantity) for line in state.pricing.lines
        ):
            case Error(e):
                return Error(e)
            case Ok(_):
                return Ok(state)

    async def _create_order(self, state: _State) -> Result[_State, CheckoutError]:
        if state.pricing is None:
            return _out_of_order("create_order", "pricing")
        order = await self.tx.orders.create(
            NewOrder(
                order_number=order_number(self.owner.clock(), self.config.order_number_prefix),
                buyer_id=self.request.buyer_id,
                seller_id=state.seller_id,
                status=OrderStatus.PROCESSING,
                payment_status=PaymentStatus.PENDING,
                payment_method=self.request.payment_method,
                pricing=state.pricing,
                shipping_address=self.request.shipping_address,
                billing_address=self.request.billing_address,
                items=order_items_from(state.pricing),
            )
        )
        log.info("order %s created for buyer %s", order.order_number, order.buyer_id)
        return Ok(replace(state, order=order))

    async def _charge(self, state: _State) -> Result[_State, CheckoutError]:
        if state.pricing is None:
            return _out_of_order("process_payment", "pricing")
        amount = cents(state.pricing.final_total)
        try:
            charge = await self.owner.gateway.process_payment(self.request.payment, amount)
        except Exception as e:
            log.warning("gateway unreachable for buyer %s: %s", self.request.buyer_id, e)
            return Error(Errors.gateway(e))

        if not charge.success:
            code = classify_widget_code(charge.result_code, charge.message)
            message = charge.message or code.message
            if code.family is CodeFamily.GATEWAY:
                return Error(Errors.gateway(f"{code.code}: {message}"))
            return Error(Errors.declined(code.code, message))

        log.info("charged %s for buyer %s tx=%s", amount, self.request.buyer_id, charge.transaction_id)
        return Ok(replace(state, charge=charge))

    async def _void(self, state: _State) -> None:
        if state.charge is not None and state.charge.transaction_id:
            log.warning("voiding payment %s after failed checkout", state.charge.transaction_id)
            await self.owner.gateway.void_payment(state.charge.transaction_id)

    async def _settle_payment(self, state: _State) -> Result[_State, CheckoutError]:
        if state.order is None or state.charge is None or state.pricing is None:
            return _out_of_order("settle_payment", "the charge")
        transaction_id = state.charge.transaction_id
        order = await self.tx.orders.update_payment_info(
            state.order.id,
            payment_id=transaction_id,
            payment_status=PaymentStatus.COMPLETED,
            payment_method=state.charge.payment_method or self.request.payment_method,
            status=OrderStatus.PAID,
        )

        # Later webhooks for this charge only propagate status through the record.
        if transaction_id is None:
            log.warning("charge for order %s has no transaction id; no payment record", order.id)
        else:
            await self.tx.payments.create(
                PaymentRecord(
                    payment_id=transaction_id,
                    buyer_id=self.request.buyer_id,
                    amount=cents(state.pricing.final_total),
                    currency=self.config.currency,
                    status=PaymentStatus.COMPLETED,
                    items=state.lines,
                    transaction_reference=order.order_number,
                    coupon_code=state.pricing.coupon_code,
                    shipping_address=self.request.shipping_address,
                    billing_address=self.request.billing_address,
                    metadata={"channel": "checkout"},
                    order_id=order.id,
                )
            )
        return Ok(replace(state, order=order))

    async def _claim_event(self, state: _State) -> Result[_State, CheckoutError]:
        if state.order is None:
            return _out_of_order("claim_order_event", "the order")
        ident = (state.charge.transaction_id if state.charge else None) or state.order.order_number
        guard = self.owner.event_guard

        match await guard.claim(ident):
            case Ok(True):
                self.event_key = ident
                return Ok(replace(state, event_claimed=True))
            case Ok(False):
                log.warning("OrderCreated for %s already emitted; skipping", ident)
                return Ok(replace(state, event_claimed=False))
            case Error(e):
                log.warning("event marker unavailable (%s); emitting unguarded", e.message)
                return Ok(replace(state, event_claimed=True))

    async def _split_sellers(self, state: _State) -> Result[_State, CheckoutError]:
        if state.order is None:
            return _out_of_order("split_sellers", "the order")
        match await settle_sellers(self.tx, state.order, self.config):
            case Error(e):
                return Error(e)
            case Ok(settlement):
                return Ok(replace(state, settlement=settlement))

    async def _commit_stock(self, state: _State) -> Result[_State, CheckoutError]:
        if state.pricing is None:
            return _out_of_order("commit_stock", "pricing")
        match await self.inventory.commit_decrement(
            (line.product_id, line.quantity) for line in state.pricing.lines
        ):
            case Error(e):
                return Error(e)
            case Ok(_):
                return Ok(state)

    async def _clear_cart(self, state: _State) -> Result[_State, CheckoutError]:
        if state.cart is not None:
            await self.tx.carts.clear_cart(state.cart.id)
        return Ok(state)

    async def _consume_coupon(self, state: _State) -> Result[_State, CheckoutError]:
        if state.pricing is None:
            return _out_of_order("consume_coupon", "pricing")
        code = state.pricing.coupon_code
        if code is None:
            return Ok(state)
        consumed = await self.tx.coupons.mark_as_used(
            code, self.request.buyer_id, self.owner.clock()
        )
        if not consumed:
            return Error(Errors.coupon(code, "Coupon was consumed by a concurrent checkout"))
        return Ok(state)

    async def _commit(self, state: _State) -> Result[_State, CheckoutError]:
        await self.tx.commit()
        return Ok(state)

    # ─────────────────────────────────────────────────────────────────────────
    # Outcome
    # ─────────────────────────────────────────────────────────────────────────

    async def finish(self, done: S.SagaResult[_State]) -> CheckoutResult:
        state = done.value
        if state.order is None or state.pricing is None or state.charge is None:
            raise RuntimeError("checkout saga completed without an order, pricing or charge")
        settlement = state.settlement or Settlement(())
        warnings = [w.step for w in done.warnings] + list(settlement.warnings)

        if state.event_claimed:
            try:
                await self.owner.events.publish(OrderCreated.from_order(state.order))
            except Exception:
                log.exception("OrderCreated publish failed for order %s", state.order.id)
                warnings.append("publish_order_created")
            if self.event_key is not None:
                match await self.owner.event_guard.complete(self.event_key, str(state.order.id)):
                    case Error(e):
                        log.warning("event marker not completed: %s", e.message)
                    case Ok(_):
                        pass

        return CheckoutResult(
            order=state.order,
            seller_orders=settlement.seller_orders,
            payment=state.charge,
            pricing=state.pricing,
            warnings=tuple(warnings),
        )

    async def abort(self, failed: S.SagaError[CheckoutError]) -> None:
        await self.release_event()
        if failed.compensators_failed:
            log.critical(
                "checkout for buyer %s rolled back but %d compensators failed",
                self.request.buyer_id, failed.compensators_failed,
            )
        audit_failure(
            "checkout",
            failed.error.code,
            failed.error.message,
            buyer_id=self.request.buyer_id,
            step=failed.step_failed,
            payment_method=self.request.payment_method,
            coupon_code=self.request.coupon_code,
            payment=dict(self.request.payment),
        )

    async def release_event(self) -> None:
        if self.event_key is None:
            return
        match await self.owner.event_guard.release(self.event_key):
            case Error(e):
                log.warning("event marker %s not released: %s", self.event_key, e.message)
            case Ok(_):
                self.event_key = None


__all__ = ("EVENT_MARKER_PREFIX", "CheckoutOrchestrator")
