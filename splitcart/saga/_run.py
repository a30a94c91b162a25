"""
Saga execution with automatic rollback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from kungfu import Result, Ok, Error

from splitcart.saga._types import (
    SagaStep,
    SagaExpr,
    SagaResult,
    SagaError,
    StepWarning,
    Then,
    CompensatorWithValue,
)

log = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Trail — what has run so far
# ═══════════════════════════════════════════════════════════════════════════════

type RecordedCompensator = tuple[str, Any, CompensatorWithValue[Any]]


@dataclass(slots=True)
class _Trail:
    steps: list[str] = field(default_factory=list[str])
    compensators: list[RecordedCompensator] = field(
        default_factory=list[RecordedCompensator]
    )
    warnings: list[StepWarning] = field(default_factory=list[StepWarning])
    failed_at: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# run_step() — Execute single step
# ═══════════════════════════════════════════════════════════════════════════════

async def run_step[T, E](step: SagaStep[T, E], trail: _Trail) -> Result[T, E]:
    """Execute single step, recording compensator on success."""
    result = await step.action
    match result:
        case Ok(value):
            trail.steps.append(step.name)
            if step.compensate is not None:
                trail.compensators.append((step.name, value, step.compensate))
            return Ok(value)
        case Error(e) if not step.critical:
            log.warning("non-critical step %s failed: %s", step.name, e)
            trail.steps.append(step.name)
            trail.warnings.append(StepWarning(step.name, e))
            return Ok(step.fallback)  # type: ignore[arg-type]
        case Error(e):
            trail.failed_at = step.name
            return Error(e)


async def _exec(expr: SagaExpr[Any, Any], trail: _Trail) -> Result[Any, Any]:
    match expr:
        case SagaStep():
            return await run_step(expr, trail)
        case Then(inner, f):
            match await _exec(inner, trail):
                case Ok(value):
                    return await _exec(f(value), trail)
                case Error(e):
                    return Error(e)
    raise TypeError(f"Not a saga expression: {expr!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# run_compensators() — Rollback
# ═══════════════════════════════════════════════════════════════════════════════

async def run_compensators(compensators: list[RecordedCompensator]) -> tuple[int, int]:
    """Run compensators in reverse. Returns (run, failed)."""
    comp_run = 0
    comp_failed = 0

    for name, value, comp in reversed(compensators):
        try:
            await comp(value)
            comp_run += 1
        except Exception:
            log.exception("compensator for step %s failed", name)
            comp_failed += 1

    return comp_run, comp_failed


# ═══════════════════════════════════════════════════════════════════════════════
# run() — Execute Saga
# ═══════════════════════════════════════════════════════════════════════════════

async def run[T, E](saga: SagaExpr[T, E]) -> Result[SagaResult[T], SagaError[E]]:
    """
    Execute a saga (single step or .then() chain) with rollback on failure.

    On success: returns SagaResult with value, step names and warnings.
    On failure: runs compensators in reverse, returns SagaError.

    Example:
        from splitcart import saga as S

        saga = (
            S.step("price", price_cart)
            .then(lambda priced: S.step("charge", charge(priced), void_charge))
            .then(lambda charged: S.best_effort("notify", notify(charged), charged))
        )

        match await S.run(saga):
            case Ok(r):
                print(r.value, r.warnings)
            case Error(e):
                print(f"Failed at {e.step_failed}: {e.error}")
    """
    trail = _Trail()
    result = await _exec(saga, trail)

    match result:
        case Ok(value):
            return Ok(SagaResult(
                value=value,
                steps_executed=tuple(trail.steps),
                compensators_recorded=len(trail.compensators),
                warnings=tuple(trail.warnings),
            ))

        case Error(error):
            comp_run, comp_failed = await run_compensators(trail.compensators)

            return Error(SagaError(
                error=error,
                step_failed=trail.failed_at,
                steps_executed=tuple(trail.steps),
                compensators_run=comp_run,
                compensators_failed=comp_failed,
                rollback_complete=comp_failed == 0,
                warnings=tuple(trail.warnings),
            ))

    raise AssertionError("unreachable")


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("run", "run_step", "run_compensators")
