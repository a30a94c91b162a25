"""
Lift — helpers for turning repository and gateway calls into Results.

Ports raise; the orchestration layer lifts every call through these
helpers (or combinators.lift.catching_async) so exceptions never cross
a saga boundary.
"""

from __future__ import annotations

from collections.abc import Callable, Awaitable

from kungfu import LazyCoroResult, Result, Error


# ═══════════════════════════════════════════════════════════════════════════════
# splitcart-specific helpers
# ═══════════════════════════════════════════════════════════════════════════════

def from_result[T, E](result: Result[T, E]) -> LazyCoroResult[T, E]:
    """Lift a Result into LazyCoroResult."""
    async def _run() -> Result[T, E]:
        return result
    return LazyCoroResult(_run)


def from_fallible[T, E](
    fn: Callable[[], Awaitable[Result[T, E]]],
    on_error: Callable[[Exception], E],
) -> LazyCoroResult[T, E]:
    """
    Lift an async function that already returns Result.

    Exceptions raised inside are mapped through on_error, so the caller
    sees a single flat Result instead of Result[Result[T, E], E].

        step = from_fallible(
            lambda: inventory.commit_decrement(lines),
            on_error=Errors.storage,
        )
    """
    async def _run() -> Result[T, E]:
        try:
            return await fn()
        except Exception as e:
            return Error(on_error(e))
    return LazyCoroResult(_run)


__all__ = (
    "from_result",
    "from_fallible",
)
