"""
Payment initiator — opens an asynchronous (QR / payment link) payment.

    Requested → priced → StockValidated → PaymentOpened → PaymentStored

The request is priced on the server, the provider is asked for a
payment for the computed total, and a PaymentRecord with status
`created` is stored together with the requested items. That record is
the only trusted item source when the provider's webhook later reports
the payment completed (see WebhookReconciler).

No order is created and no stock is taken here. If storing the record
fails, the opened provider payment is voided.

Asking twice for the same client reference while its payment is still
open returns the existing payment instead of opening a second one.

Example:
    initiator = PaymentInitiator(uow, gateway, config)

    match await initiator.create(PaymentIntent(buyer_id=7, reference="web-123", items=lines, customer=customer)):
        case Ok(opened):
            show_qr(opened.qr_code, opened.payment_url)
        case Error(e):
            print(e.code, e.message)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from kungfu import Result, Ok, Error

from splitcart import saga as S
from splitcart._types import Money, cents
from splitcart.audit import audit_failure
from splitcart.config import CheckoutConfig
from splitcart.domain import (
    GatewayCharge,
    LineRequest,
    PaymentRecord,
    PaymentStatus,
    PricingBreakdown,
)
from splitcart.errors import CheckoutError, Errors
from splitcart.inventory import Inventory
from splitcart.lift import from_fallible
from splitcart.ports import PaymentGateway, Transaction, UnitOfWork
from splitcart.pricing import PricingCalculator

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Request / result
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PaymentIntent:
    """
    reference: the client's own transaction reference; one open payment
    per (buyer, reference).
    customer: at least `name` and `email`, forwarded to the provider.
    """

    buyer_id: int
    reference: str
    items: tuple[LineRequest, ...]
    customer: Mapping[str, Any]
    coupon_code: str | None = None
    shipping_address: Mapping[str, Any] = field(default_factory=dict)
    billing_address: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    payment_method: str = "deuna"


@dataclass(frozen=True, slots=True)
class OpenedPayment:
    record: PaymentRecord
    qr_code: str | None = None
    payment_url: str | None = None
    reused: bool = False

    @property
    def payment_id(self) -> str:
        return self.record.payment_id

    @property
    def amount(self) -> Money:
        return self.record.amount

    @classmethod
    def from_record(cls, record: PaymentRecord, *, reused: bool = False) -> OpenedPayment:
        return cls(
            record=record,
            qr_code=record.metadata.get("qr_code"),
            payment_url=record.metadata.get("payment_url"),
            reused=reused,
        )


def _check_intent(intent: PaymentIntent) -> Result[None, CheckoutError]:
    if not intent.reference:
        return Error(Errors.validation("Payment reference is required"))
    if not intent.items:
        return Error(Errors.validation("Nothing to pay for: no items"))
    name = intent.customer.get("name")
    email = intent.customer.get("email")
    if not name:
        return Error(Errors.validation("Customer name is required"))
    if not isinstance(email, str) or "@" not in email.strip("@"):
        return Error(Errors.validation("Valid customer email is required"))
    return Ok(None)


# ═══════════════════════════════════════════════════════════════════════════════
# Saga state
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class _Opening:
    pricing: PricingBreakdown | None = None
    charge: GatewayCharge | None = None
    record: PaymentRecord | None = None


type _Stage = Callable[[_Opening], Awaitable[Result[_Opening, CheckoutError]]]


# ═══════════════════════════════════════════════════════════════════════════════
# Initiator
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class PaymentInitiator:
    uow: UnitOfWork
    gateway: PaymentGateway
    config: CheckoutConfig
    clock: Callable[[], datetime] = field(default=datetime.now)

    async def create(self, intent: PaymentIntent) -> Result[OpenedPayment, CheckoutError]:
        match _check_intent(intent):
            case Error(e):
                self._audit(intent, e)
                return Error(e)
            case Ok(_):
                pass

        try:
            async with self.uow.begin(self.config.isolation_level) as tx:
                existing = await tx.payments.find_open_by_reference(
                    intent.reference, intent.buyer_id
                )
                if existing is not None:
                    log.info(
                        "reusing open payment %s for reference %s",
                        existing.payment_id, intent.reference,
                    )
                    return Ok(OpenedPayment.from_record(existing, reused=True))

                run = _OpeningRun(self, tx, intent)
                match await S.run(run.saga()):
                    case Ok(done):
                        record = done.value.record
                        if record is None:
                            raise RuntimeError("payment saga completed without a record")
                        log.info(
                            "payment %s opened for buyer %s amount=%s",
                            record.payment_id, record.buyer_id, record.amount,
                        )
                        return Ok(OpenedPayment.from_record(record))
                    case Error(failed):
                        await tx.rollback()
                        self._audit(intent, failed.error, step=failed.step_failed)
                        return Error(failed.error)
        except Exception as e:
            log.exception("opening payment crashed for buyer %s", intent.buyer_id)
            error = Errors.storage(e)
            self._audit(intent, error)
            return Error(error)

    def _audit(self, intent: PaymentIntent, error: CheckoutError, **context: Any) -> None:
        audit_failure(
            "payment_open",
            error.code,
            error.message,
            buyer_id=intent.buyer_id,
            reference=intent.reference,
            customer=dict(intent.customer),
            **context,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# One attempt
# ═══════════════════════════════════════════════════════════════════════════════


class _OpeningRun:
    def __init__(
        self, owner: PaymentInitiator, tx: Transaction, intent: PaymentIntent
    ) -> None:
        self.owner = owner
        self.config = owner.config
        self.tx = tx
        self.intent = intent

    def saga(self) -> S.SagaExpr[_Opening, CheckoutError]:
        return (
            self._stage("price", self._price)(_Opening())
            .then(self._stage("validate_stock", self._check_stock))
            .then(self._stage("open_payment", self._open, compensate=self._void))
            .then(self._stage("store_payment", self._store))
            .then(self._stage("commit", self._commit))
        )

    def _stage(
        self,
        name: str,
        fn: _Stage,
        compensate: Callable[[_Opening], Awaitable[None]] | None = None,
    ) -> Callable[[_Opening], S.SagaStep[_Opening, CheckoutError]]:
        def make(state: _Opening) -> S.SagaStep[_Opening, CheckoutError]:
            return S.step(
                name,
                from_fallible(lambda: fn(state), on_error=Errors.storage),
                compensate=compensate,
            )
        return make

    async def _price(self, state: _Opening) -> Result[_Opening, CheckoutError]:
        calculator = PricingCalculator(
            self.tx.catalog, self.tx.coupons, self.config, self.owner.clock
        )
        match await calculator.calculate(
            self.intent.items, self.intent.buyer_id, self.intent.coupon_code
        ):
            case Error(e):
                return Error(e)
            case Ok(pricing):
                return Ok(replace(state, pricing=pricing))

    async def _check_stock(self, state: _Opening) -> Result[_Opening, CheckoutError]:
        if state.pricing is None:
            return Error(Errors.integrity("validate_stock ran before pricing was known"))
        match await Inventory(self.tx.catalog).reserve_and_validate(
            (line.product_id, line.quantity) for line in state.pricing.lines
        ):
            case Error(e):
                return Error(e)
            case Ok(_):
                return Ok(state)

    async def _open(self, state: _Opening) -> Result[_Opening, CheckoutError]:
        if state.pricing is None:
            return Error(Errors.integrity("open_payment ran before pricing was known"))
        amount = cents(state.pricing.final_total)
        payload = {
            "reference": self.intent.reference,
            "currency": self.config.currency,
            "customer": dict(self.intent.customer),
            "items": [
                {
                    "product_id": line.product_id,
                    "name": line.name,
                    "quantity": line.quantity,
                    "price": str(cents(line.final_unit_price)),
                }
                for line in state.pricing.lines
            ],
            "metadata": dict(self.intent.metadata),
        }
        try:
            charge = await self.owner.gateway.create_payment(
                self.intent.reference, amount, payload
            )
        except Exception as e:
            log.warning("gateway unreachable opening payment %s: %s", self.intent.reference, e)
            return Error(Errors.gateway(e))

        if not charge.success or not charge.transaction_id:
            return Error(
                Errors.gateway(charge.message or "Provider did not open the payment")
            )
        return Ok(replace(state, charge=charge))

    async def _void(self, state: _Opening) -> None:
        if state.charge is not None and state.charge.transaction_id:
            log.warning("voiding opened payment %s", state.charge.transaction_id)
            await self.owner.gateway.void_payment(state.charge.transaction_id)

    async def _store(self, state: _Opening) -> Result[_Opening, CheckoutError]:
        if state.pricing is None or state.charge is None or state.charge.transaction_id is None:
            return Error(Errors.integrity("store_payment ran before the payment was opened"))
        raw = state.charge.raw
        record = await self.tx.payments.create(
            PaymentRecord(
                payment_id=state.charge.transaction_id,
                buyer_id=self.intent.buyer_id,
                amount=cents(state.pricing.final_total),
                currency=self.config.currency,
                status=PaymentStatus.CREATED,
                items=self.intent.items,
                transaction_reference=self.intent.reference,
                coupon_code=state.pricing.coupon_code,
                shipping_address=self.intent.shipping_address,
                billing_address=self.intent.billing_address,
                metadata={
                    **self.intent.metadata,
                    "channel": self.intent.payment_method,
                    "qr_code": raw.get("qr_code"),
                    "payment_url": raw.get("payment_url"),
                    "numeric_code": raw.get("numeric_code"),
                },
            )
        )
        return Ok(replace(state, record=record))

    async def _commit(self, state: _Opening) -> Result[_Opening, CheckoutError]:
        await self.tx.commit()
        return Ok(state)


__all__ = ("PaymentIntent", "OpenedPayment", "PaymentInitiator")
