"""
Database setup and the SQLAlchemy unit of work.

    session_factory, engine = await create_database(config.database_url)
    uow = SQLAlchemyUnitOfWork(session_factory)

    async with uow.begin(config.isolation_level) as tx:
        product = await tx.catalog.find_by_id(1)
        await tx.commit()
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from splitcart.db._repos import (
    SQLCartStore,
    SQLCouponStore,
    SQLOrderStore,
    SQLPaymentRecordStore,
    SQLProductCatalog,
    SQLSellerOrderStore,
    SQLShippingStubStore,
)
from splitcart.db._tables import Base


# ═══════════════════════════════════════════════════════════════════════════════
# Database Setup
# ═══════════════════════════════════════════════════════════════════════════════


def create_engine(url: str = "sqlite+aiosqlite:///:memory:") -> AsyncEngine:
    if url.endswith(":memory:"):
        # One shared connection, otherwise every session sees an empty database.
        return create_async_engine(
            url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    engine = create_async_engine(url, echo=False)
    if url.startswith("sqlite"):
        _begin_immediate(engine)
    return engine


def _begin_immediate(engine: AsyncEngine) -> None:
    """
    SQLite has no row locks: take the database write lock when the
    transaction starts so concurrent checkouts queue instead of
    interleaving their stock checks.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _driver_autocommit(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


async def create_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create tables and return (session_factory, engine)."""
    engine = create_engine(url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False), engine


# ═══════════════════════════════════════════════════════════════════════════════
# Unit of Work
# ═══════════════════════════════════════════════════════════════════════════════


class SQLAlchemyTransaction:
    def __init__(self, session: AsyncSession, clock: Callable[[], datetime]) -> None:
        self.session = session
        self.catalog = SQLProductCatalog(session)
        self.carts = SQLCartStore(session)
        self.coupons = SQLCouponStore(session)
        self.orders = SQLOrderStore(session, clock)
        self.seller_orders = SQLSellerOrderStore(session, clock)
        self.shipping = SQLShippingStubStore(session)
        self.payments = SQLPaymentRecordStore(session, clock)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


class SQLAlchemyUnitOfWork:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @asynccontextmanager
    async def begin(
        self, isolation_level: str | None = None
    ) -> AsyncIterator[SQLAlchemyTransaction]:
        async with self._session_factory() as session:
            if isolation_level is not None:
                await session.connection(
                    execution_options={"isolation_level": isolation_level}
                )
            try:
                yield SQLAlchemyTransaction(session, self._clock)
            finally:
                if session.in_transaction():
                    await session.rollback()


__all__ = (
    "create_engine",
    "create_database",
    "SQLAlchemyTransaction",
    "SQLAlchemyUnitOfWork",
)
