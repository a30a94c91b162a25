"""
Keystore — TTL key storage for idempotency markers.

Keystore is injected wherever de-duplication is needed; there is no
process-wide cache. All methods return Result for explicit error
handling.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from kungfu import Result, Ok, Error

from splitcart.markers._types import Marker, MarkerState


# ═══════════════════════════════════════════════════════════════════════════════
# Keystore Error
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class KeystoreError:
    """Storage operation error."""

    message: str
    cause: Exception | None = None

    @property
    def code(self) -> str:
        return "KEYSTORE_ERROR"


# ═══════════════════════════════════════════════════════════════════════════════
# Keystore Protocol — Result-based
# ═══════════════════════════════════════════════════════════════════════════════


class Keystore(Protocol):
    """
    TTL keystore protocol.

    Example — Redis implementation:

        class RedisKeystore:
            async def claim(self, key: str, ttl: timedelta | None) -> Result[bool, KeystoreError]:
                try:
                    ok = await self.redis.set(key, "claimed", nx=True, ex=ttl)
                    return Ok(bool(ok))
                except RedisError as e:
                    return Error(KeystoreError("claim failed", e))

            # ... other methods
    """

    async def get(self, key: str) -> Result[Marker | None, KeystoreError]:
        """Get live marker. Expired markers read as Ok(None)."""
        ...

    async def claim(
        self, key: str, ttl: timedelta | None
    ) -> Result[bool, KeystoreError]:
        """
        Atomically create a CLAIMED marker.

        Returns Ok(True) if created, Ok(False) if a live marker exists.
        Must be atomic (compare-and-swap).
        """
        ...

    async def complete(
        self, key: str, ttl: timedelta | None, value: str | None = None
    ) -> Result[None, KeystoreError]:
        """Move a marker to DONE, refreshing its TTL. Creates it if absent."""
        ...

    async def release(self, key: str) -> Result[bool, KeystoreError]:
        """Delete marker. Returns Ok(True) if existed."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Keystore
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryKeystore:
    """
    In-memory keystore.

    Note: single process only; markers do not survive a restart.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._markers: dict[str, Marker] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _sweep(self, now: datetime) -> None:
        expired = [key for key, marker in self._markers.items() if marker.is_expired(now)]
        for key in expired:
            del self._markers[key]

    def _live(self, key: str, now: datetime) -> Marker | None:
        marker = self._markers.get(key)
        if marker is not None and marker.is_expired(now):
            del self._markers[key]
            return None
        return marker

    async def get(self, key: str) -> Result[Marker | None, KeystoreError]:
        async with self._lock:
            return Ok(self._live(key, self._clock()))

    async def claim(
        self, key: str, ttl: timedelta | None
    ) -> Result[bool, KeystoreError]:
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            if key in self._markers:
                return Ok(False)

            self._markers[key] = Marker(
                key=key,
                state=MarkerState.CLAIMED,
                created_at=now,
                expires_at=now + ttl if ttl else None,
            )
            return Ok(True)

    async def complete(
        self, key: str, ttl: timedelta | None, value: str | None = None
    ) -> Result[None, KeystoreError]:
        async with self._lock:
            now = self._clock()
            existing = self._live(key, now)
            self._markers[key] = Marker(
                key=key,
                state=MarkerState.DONE,
                created_at=existing.created_at if existing else now,
                expires_at=now + ttl if ttl else None,
                value=value,
            )
            return Ok(None)

    async def release(self, key: str) -> Result[bool, KeystoreError]:
        async with self._lock:
            return Ok(self._markers.pop(key, None) is not None)

    def __len__(self) -> int:
        return len(self._markers)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "KeystoreError",
    "Keystore",
    "MemoryKeystore",
)
