"""
Marker types — short-lived idempotency records.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto


# ═══════════════════════════════════════════════════════════════════════════════
# Marker State — Lifecycle
# ═══════════════════════════════════════════════════════════════════════════════


class MarkerState(Enum):
    """
    State of a marker.

    Lifecycle:
        CLAIMED → DONE      (work committed)
                → (released/expired)
    """

    CLAIMED = auto()
    DONE = auto()


# ═══════════════════════════════════════════════════════════════════════════════
# Marker — Stored State
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Marker:
    """
    A stored marker.

    value: optional short payload (e.g. the order id an event produced).
    """

    key: str
    state: MarkerState
    created_at: datetime
    expires_at: datetime | None
    value: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    @property
    def is_done(self) -> bool:
        return self.state is MarkerState.DONE


__all__ = ("MarkerState", "Marker")
