"""
Markers — short-lived idempotency keys with TTL.

    from splitcart import markers as M

    keystore = M.MemoryKeystore()
    events = M.Guard(keystore, prefix="order_created_", ttl=timedelta(minutes=5))

    if (await events.claim(transaction_id)).unwrap():
        await sink.publish(event)

Backends:
    MemoryKeystore        single process, tests
    SQLAlchemyKeystore    any SQL database, via MarkerMixin
"""

from splitcart.markers._types import Marker, MarkerState
from splitcart.markers._store import Keystore, KeystoreError, MemoryKeystore
from splitcart.markers._sqlalchemy import MarkerMixin, SQLAlchemyKeystore
from splitcart.markers._guard import Guard

__all__ = (
    "Marker",
    "MarkerState",
    "Keystore",
    "KeystoreError",
    "MemoryKeystore",
    "MarkerMixin",
    "SQLAlchemyKeystore",
    "Guard",
)
