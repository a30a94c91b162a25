"""
Saga types — core data structures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Callable, Awaitable
from typing import Any

from kungfu import LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Compensator — Undo Action
# ═══════════════════════════════════════════════════════════════════════════════

type CompensatorWithValue[T] = Callable[[T], Awaitable[None]]
"""Compensation function that receives the action result and undoes it."""

# ═══════════════════════════════════════════════════════════════════════════════
# SagaStep — Single Step with Compensation
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaStep[T, E]:
    """
    A single saga step: action + compensator.

    When action succeeds, compensator is recorded.
    If a later step fails, compensators run in reverse.

    Non-critical steps (critical=False) never fail the saga: their error
    is recorded as a StepWarning and `fallback` flows on as the value.
    """

    name: str
    action: LazyCoroResult[T, E]
    compensate: CompensatorWithValue[T] | None = None
    critical: bool = True
    fallback: T | None = None

    def then[U, E2](
        self,
        f: Callable[[T], SagaStep[U, E2]],
    ) -> Then[T, U, E | E2]:
        """Chain another saga step after this one."""
        return Then(self, f)


# ═══════════════════════════════════════════════════════════════════════════════
# Saga AST — Sequential Composition
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Then[T, U, E]:
    """Sequential composition (monadic bind). Chains of any length."""

    inner: SagaStep[T, Any] | Then[Any, T, Any]
    f: Callable[[T], SagaStep[U, Any]]

    def then[V, E2](
        self,
        f: Callable[[U], SagaStep[V, E2]],
    ) -> Then[U, V, E | E2]:
        return Then(self, f)


type SagaExpr[T, E] = SagaStep[T, E] | Then[Any, T, E]

# ═══════════════════════════════════════════════════════════════════════════════
# Result Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class StepWarning:
    """A non-critical step that failed and was skipped."""

    step: str
    error: Any


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    """Successful saga result with metadata."""

    value: T
    steps_executed: tuple[str, ...]
    compensators_recorded: int
    warnings: tuple[StepWarning, ...] = ()


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    """Saga error with rollback status."""

    error: E
    step_failed: str
    steps_executed: tuple[str, ...]
    compensators_run: int
    compensators_failed: int
    rollback_complete: bool
    warnings: tuple[StepWarning, ...] = field(default=())


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "CompensatorWithValue",
    "SagaStep",
    "Then",
    "SagaExpr",
    "StepWarning",
    "SagaResult",
    "SagaError",
)
