"""
Saga — multi-step operations with compensation.

    from splitcart import saga as S

    saga = S.step("a", action, compensate).then(lambda v: S.step("b", action2(v)))
    result = await S.run(saga)
"""

from __future__ import annotations

from splitcart.saga._types import (
    CompensatorWithValue,
    SagaStep,
    Then,
    SagaExpr,
    StepWarning,
    SagaResult,
    SagaError,
)
from splitcart.saga._step import step, best_effort
from splitcart.saga._run import run, run_step, run_compensators

__all__ = (
    "CompensatorWithValue",
    "SagaStep",
    "Then",
    "SagaExpr",
    "StepWarning",
    "SagaResult",
    "SagaError",
    "step",
    "best_effort",
    "run",
    "run_step",
    "run_compensators",
)
