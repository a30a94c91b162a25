"""
Saga step creation.
"""

from __future__ import annotations

from kungfu import LazyCoroResult

from splitcart.saga._types import SagaStep, CompensatorWithValue

# ═══════════════════════════════════════════════════════════════════════════════
# step() — Primary Constructor
# ═══════════════════════════════════════════════════════════════════════════════


def step[T, E](
    name: str,
    action: LazyCoroResult[T, E],
    compensate: CompensatorWithValue[T] | None = None,
) -> SagaStep[T, E]:
    """
    Create a critical saga step.

    Example:
        from combinators import lift as L
        from splitcart import saga as S

        charge = S.step(
            "payment",
            L.catching_async(
                lambda: gateway.process_payment(payload, total),
                on_error=Errors.gateway,
            ),
            compensate=lambda c: gateway.void_payment(c.transaction_id),
        )
    """
    return SagaStep(name=name, action=action, compensate=compensate)


# ═══════════════════════════════════════════════════════════════════════════════
# best_effort() — Non-critical step
# ═══════════════════════════════════════════════════════════════════════════════


def best_effort[T, E](
    name: str,
    action: LazyCoroResult[T, E],
    fallback: T,
) -> SagaStep[T, E]:
    """
    Step whose failure is logged and skipped.

    The saga continues with `fallback` as this step's value; the failure
    shows up in SagaResult.warnings.
    """
    return SagaStep(name=name, action=action, critical=False, fallback=fallback)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("step", "best_effort")
