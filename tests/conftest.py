from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
from kungfu import Ok, Error

from splitcart.checkout import CheckoutOrchestrator
from splitcart.config import CheckoutConfig
from splitcart.db import (
    CartItemRow,
    CartRow,
    CouponRow,
    ProductRow,
    SQLAlchemyTransaction,
    SQLAlchemyUnitOfWork,
    create_database,
)
from splitcart.domain import (
    Coupon,
    GatewayCharge,
    GatewayVerification,
    Product,
    StockMode,
)
from splitcart.events import CollectingSink
from splitcart.markers import MemoryKeystore
from splitcart.payments import ConfirmationNormalizer
from splitcart.webhooks import PaymentInitiator, WebhookReconciler

NOW = datetime(2026, 3, 1, 12, 0, 0)
WEBHOOK_SECRET = "whsec-test"

# Seller 10 sells A and C, seller 20 sells B.
PRODUCT_A = 1
PRODUCT_B = 2
PRODUCT_C = 3
SELLER_X = 10
SELLER_Y = 20


class Clock:
    """Mutable clock shared by keystore, repositories and services."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


# ═══════════════════════════════════════════════════════════════════════════════
# Gateway
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class FakeGateway:
    decline_code: str | None = None
    fail_with: Exception | None = None
    verification: GatewayVerification = field(
        default_factory=lambda: GatewayVerification("000.000.000", transaction_id="TX-W")
    )
    charges: list[Decimal] = field(default_factory=list)
    opened: list[tuple[str, Decimal]] = field(default_factory=list)
    voided: list[str] = field(default_factory=list)
    seq: int = 0

    async def process_payment(self, payload: Mapping[str, Any], amount: Decimal) -> GatewayCharge:
        if self.fail_with is not None:
            raise self.fail_with
        self.charges.append(amount)
        if self.decline_code is not None:
            return GatewayCharge(False, None, result_code=self.decline_code)
        self.seq += 1
        return GatewayCharge(
            True, f"TX-{self.seq:04d}", result_code="000.000.000", payment_method="card"
        )

    async def create_payment(
        self, reference: str, amount: Decimal, payload: Mapping[str, Any]
    ) -> GatewayCharge:
        if self.fail_with is not None:
            raise self.fail_with
        self.opened.append((reference, amount))
        self.seq += 1
        payment_id = f"PAY-{self.seq:04d}"
        return GatewayCharge(
            True,
            payment_id,
            raw={"qr_code": f"qr:{payment_id}", "payment_url": f"https://pay.test/{payment_id}"},
        )

    async def verify_payment(self, reference: str) -> GatewayVerification:
        if self.fail_with is not None:
            raise self.fail_with
        return self.verification

    async def void_payment(self, transaction_id: str) -> None:
        self.voided.append(transaction_id)


# ═══════════════════════════════════════════════════════════════════════════════
# In-memory ports for unit tests
# ═══════════════════════════════════════════════════════════════════════════════


class FakeCatalog:
    def __init__(self, *products: Product) -> None:
        self.products = {p.id: p for p in products}
        self.locks: list[int] = []

    async def find_by_id(self, product_id: int) -> Product | None:
        return self.products.get(product_id)

    async def lock_for_update(self, product_ids: Sequence[int]) -> dict[int, Product]:
        self.locks.extend(product_ids)
        return {pid: self.products[pid] for pid in product_ids if pid in self.products}

    async def update_stock(self, product_id: int, quantity: int, mode: StockMode) -> Product:
        product = self.products[product_id]
        match mode:
            case StockMode.DECREASE:
                stock = product.stock - quantity
            case StockMode.INCREASE:
                stock = product.stock + quantity
            case StockMode.REPLACE:
                stock = quantity
        self.products[product_id] = replace(product, stock=stock)
        return self.products[product_id]


class FakeCoupons:
    def __init__(self, *coupons: Coupon) -> None:
        self.coupons = {c.code: c for c in coupons}
        self.usages: set[tuple[str, int]] = set()

    async def find_by_code(self, code: str) -> Coupon | None:
        return self.coupons.get(code)

    async def has_been_used_by(self, code: str, user_id: int) -> bool:
        return (code, user_id) in self.usages

    async def mark_as_used(self, code: str, user_id: int, at: datetime) -> bool:
        coupon = self.coupons[code]
        if coupon.is_used:
            return False
        self.coupons[code] = replace(coupon, is_used=True, used_by=user_id, used_at=at)
        self.usages.add((code, user_id))
        return True


def product(
    id: int, seller_id: int, price: str, discount: str = "0", stock: int = 10, name: str = ""
) -> Product:
    return Product(
        id=id,
        seller_id=seller_id,
        name=name or f"product-{id}",
        price=Decimal(price),
        seller_discount_pct=Decimal(discount),
        stock=stock,
    )


def scenario_products() -> tuple[Product, ...]:
    return (
        product(PRODUCT_A, SELLER_X, "1200", "10", name="Laptop"),
        product(PRODUCT_B, SELLER_Y, "300", "15", name="Monitor"),
        product(PRODUCT_C, SELLER_X, "150", "20", stock=5, name="Keyboard"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def config() -> CheckoutConfig:
    return CheckoutConfig(webhook_secret=WEBHOOK_SECRET)


async def seed_catalog(factory) -> None:
    async with factory() as session:
        session.add_all(
            ProductRow(
                id=p.id,
                seller_id=p.seller_id,
                name=p.name,
                price=p.price,
                seller_discount_pct=p.seller_discount_pct,
                stock=p.stock,
            )
            for p in scenario_products()
        )
        session.add(CouponRow(code="THANKS5", percentage=Decimal("5")))
        session.add(
            CouponRow(
                code="OLD10",
                percentage=Decimal("10"),
                expires_at=NOW - timedelta(days=1),
            )
        )
        await session.commit()


@pytest.fixture
async def session_factory():
    factory, engine = await create_database()
    await seed_catalog(factory)
    yield factory
    await engine.dispose()


@pytest.fixture
async def file_session_factory(tmp_path):
    """Separate connections per session, for tests that need real concurrency."""
    factory, engine = await create_database(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    await seed_catalog(factory)
    yield factory
    await engine.dispose()


@pytest.fixture
def uow(session_factory, clock: Clock) -> SQLAlchemyUnitOfWork:
    return SQLAlchemyUnitOfWork(session_factory, clock=clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def keystore(clock: Clock) -> MemoryKeystore:
    return MemoryKeystore(clock)


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def orchestrator(uow, gateway, sink, keystore, config, clock) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(uow, gateway, sink, keystore, config, clock)


@pytest.fixture
def initiator(uow, gateway, config, clock) -> PaymentInitiator:
    return PaymentInitiator(uow, gateway, config, clock)


@pytest.fixture
def reconciler(uow, gateway, sink, keystore, config, clock) -> WebhookReconciler:
    normalizer = ConfirmationNormalizer.build(
        gateway, allow_test=True, webhook_secret=config.webhook_secret
    )
    return WebhookReconciler(uow, normalizer, keystore, sink, config, clock)


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════


async def stock_of(uow: SQLAlchemyUnitOfWork, product_id: int) -> int:
    async with uow.begin() as tx:
        found = await tx.catalog.find_by_id(product_id)
        assert found is not None
        return found.stock


async def seed_cart(session_factory, user_id: int, *lines: tuple[int, int]) -> int:
    async with session_factory() as session:
        cart = CartRow(user_id=user_id)
        session.add(cart)
        await session.flush()
        for product_id, quantity in lines:
            session.add(CartItemRow(cart_id=cart.id, product_id=product_id, quantity=quantity))
        await session.commit()
        return cart.id


class _FailingCommit:
    def __init__(self, tx: SQLAlchemyTransaction) -> None:
        self._tx = tx

    def __getattr__(self, name: str) -> Any:
        return getattr(self._tx, name)

    async def commit(self) -> None:
        raise RuntimeError("disk full")


class FailingCommitUnitOfWork:
    """Real repositories, but the final commit blows up."""

    def __init__(self, inner: SQLAlchemyUnitOfWork) -> None:
        self.inner = inner

    @asynccontextmanager
    async def begin(self, isolation_level: str | None = None) -> AsyncIterator[Any]:
        async with self.inner.begin(isolation_level) as tx:
            yield _FailingCommit(tx)


def unwrap(result: Any) -> Any:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise AssertionError(f"expected Ok, got Error({e!r})")
    raise AssertionError(f"not a Result: {result!r}")
