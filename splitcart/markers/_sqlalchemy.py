"""
SQLAlchemy keystore — markers persisted in a table shared by all workers.

Usage:
    1. Add MarkerMixin to a model:

        class MarkerRow(Base, MarkerMixin):
            __tablename__ = "idempotency_markers"

    2. Create the keystore:

        keystore = SQLAlchemyKeystore(session_factory, model=MarkerRow)

Markers are written in their own short transaction, independent of the
checkout transaction they guard.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, cast

from sqlalchemy import String, DateTime, Text, select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from kungfu import Result, Ok, Error

from splitcart.markers._types import Marker, MarkerState
from splitcart.markers._store import KeystoreError


# ═══════════════════════════════════════════════════════════════════════════════
# Marker Mixin — add to your SQLAlchemy model
# ═══════════════════════════════════════════════════════════════════════════════

class MarkerMixin:
    """
    Mixin for SQLAlchemy marker tables.

    Adds columns:
    - marker_key: primary key
    - marker_state: "claimed" | "done"
    - marker_value: optional payload
    - created_at
    - expires_at: optional TTL
    """

    marker_key: Mapped[str] = mapped_column(String(255), primary_key=True)

    marker_state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="claimed",
    )

    marker_value: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
        index=True,
    )


_STATE_TO_COLUMN = {MarkerState.CLAIMED: "claimed", MarkerState.DONE: "done"}
_COLUMN_TO_STATE = {v: k for k, v in _STATE_TO_COLUMN.items()}


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemy Keystore
# ═══════════════════════════════════════════════════════════════════════════════

class SQLAlchemyKeystore:
    """
    Keystore over any model with MarkerMixin.

    claim() relies on the primary key for atomicity: a concurrent insert
    of the same key fails with IntegrityError and reads as Ok(False).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        model: type[MarkerMixin],
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._session_factory = session_factory
        self._model = model
        self._clock = clock

    async def get(self, key: str) -> Result[Marker | None, KeystoreError]:
        try:
            async with self._session_factory() as session:
                row = await self._row(session, key)
                if row is None or self._expired(row):
                    return Ok(None)
                return Ok(self._to_marker(row))
        except Exception as e:
            return Error(KeystoreError(f"Failed to get: {e}", e))

    async def claim(
        self, key: str, ttl: timedelta | None
    ) -> Result[bool, KeystoreError]:
        now = self._clock()
        model = cast(Any, self._model)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(self._model).where(
                            model.marker_key == key,
                            model.expires_at.is_not(None),
                            model.expires_at <= now,
                        )
                    )
                try:
                    async with session.begin():
                        session.add(
                            self._model(  # type: ignore[call-arg]
                                marker_key=key,
                                marker_state=_STATE_TO_COLUMN[MarkerState.CLAIMED],
                                created_at=now,
                                expires_at=now + ttl if ttl else None,
                            )
                        )
                except IntegrityError:
                    return Ok(False)
                return Ok(True)
        except Exception as e:
            return Error(KeystoreError(f"Failed to claim: {e}", e))

    async def complete(
        self, key: str, ttl: timedelta | None, value: str | None = None
    ) -> Result[None, KeystoreError]:
        now = self._clock()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await self._row(session, key)
                    if row is None:
                        row = self._model(  # type: ignore[call-arg]
                            marker_key=key,
                            created_at=now,
                        )
                        session.add(row)
                    row.marker_state = _STATE_TO_COLUMN[MarkerState.DONE]
                    row.marker_value = value
                    row.expires_at = now + ttl if ttl else None
                return Ok(None)
        except Exception as e:
            return Error(KeystoreError(f"Failed to complete: {e}", e))

    async def release(self, key: str) -> Result[bool, KeystoreError]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await self._row(session, key)
                    if row is None:
                        return Ok(False)
                    await session.delete(row)
                return Ok(True)
        except Exception as e:
            return Error(KeystoreError(f"Failed to release: {e}", e))

    async def _row(self, session: AsyncSession, key: str) -> MarkerMixin | None:
        model = cast(Any, self._model)
        result = await session.execute(select(self._model).where(model.marker_key == key))
        return result.scalar_one_or_none()

    def _expired(self, row: MarkerMixin) -> bool:
        return row.expires_at is not None and self._clock() >= row.expires_at

    def _to_marker(self, row: MarkerMixin) -> Marker:
        return Marker(
            key=row.marker_key,
            state=_COLUMN_TO_STATE.get(row.marker_state, MarkerState.CLAIMED),
            created_at=row.created_at,
            expires_at=row.expires_at,
            value=row.marker_value,
        )


__all__ = (
    "MarkerMixin",
    "SQLAlchemyKeystore",
)
