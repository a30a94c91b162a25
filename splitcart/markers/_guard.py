"""
Guard — "do this once per key within a window".

    guard = Guard(keystore, prefix="webhook_processed_", ttl=timedelta(hours=1))

    match await guard.claim(payment_id):
        case Ok(True):
            ...               # first delivery: do the work, then
            await guard.complete(payment_id)
        case Ok(False):
            ...               # duplicate: skip
        case Error(e):
            ...               # keystore down

A guard is best-effort de-duplication layered on top of transactional
correctness, never a replacement for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from kungfu import Result, Ok, Error

from splitcart.markers._store import Keystore, KeystoreError


@dataclass(frozen=True, slots=True)
class Guard:
    keystore: Keystore
    prefix: str
    ttl: timedelta

    def key(self, ident: object) -> str:
        return f"{self.prefix}{ident}"

    async def seen(self, ident: object) -> Result[bool, KeystoreError]:
        match await self.keystore.get(self.key(ident)):
            case Ok(marker):
                return Ok(marker is not None)
            case Error(e):
                return Error(e)

    async def claim(self, ident: object) -> Result[bool, KeystoreError]:
        return await self.keystore.claim(self.key(ident), self.ttl)

    async def complete(
        self, ident: object, value: str | None = None
    ) -> Result[None, KeystoreError]:
        return await self.keystore.complete(self.key(ident), self.ttl, value)

    async def release(self, ident: object) -> Result[bool, KeystoreError]:
        return await self.keystore.release(self.key(ident))


__all__ = ("Guard",)
