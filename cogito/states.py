"""Run and step states and the transitions allowed between them."""

from __future__ import annotations

from enum import Enum

from cogito.errors import EngineError, ErrorCode


class RunState(str, Enum):
    """Lifecycle of an entire workflow run."""

    PENDING = "pending"
    RUNNING = "running"
    WAITING_APPROVAL = "waiting_approval"
    PAUSED = "paused"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    def __str__(self) -> str:
        return self.value


class StepState(str, Enum):
    """Lifecycle of a single workflow step."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    WAITING_APPROVAL = "waiting_approval"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    def __str__(self) -> str:
        return self.value


TERMINAL_STEP_STATES = frozenset({StepState.SUCCEEDED, StepState.FAILED, StepState.CANCELED})

ALLOWED_RUN_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset({RunState.RUNNING, RunState.CANCELED}),
    RunState.RUNNING: frozenset(
        {
            RunState.WAITING_APPROVAL,
            RunState.PAUSED,
            RunState.SUCCEEDED,
            RunState.FAILED,
            RunState.CANCELED,
        }
    ),
    RunState.WAITING_APPROVAL: frozenset(
        {RunState.RUNNING, RunState.PAUSED, RunState.FAILED, RunState.CANCELED}
    ),
    RunState.PAUSED: frozenset({RunState.RUNNING, RunState.CANCELED}),
}

ALLOWED_STEP_TRANSITIONS: dict[StepState, frozenset[StepState]] = {
    StepState.PENDING: frozenset({StepState.QUEUED, StepState.CANCELED}),
    StepState.QUEUED: frozenset({StepState.RUNNING, StepState.CANCELED}),
    StepState.RUNNING: frozenset(
        {
            StepState.WAITING_APPROVAL,
            StepState.QUEUED,
            StepState.SUCCEEDED,
            StepState.FAILED,
            StepState.CANCELED,
        }
    ),
    StepState.WAITING_APPROVAL: frozenset(
        {
            StepState.RUNNING,
            StepState.QUEUED,
            StepState.SUCCEEDED,
            StepState.FAILED,
            StepState.CANCELED,
        }
    ),
    StepState.FAILED: frozenset({StepState.QUEUED, StepState.CANCELED}),
}


def _quote(state: object) -> str:
    if state is None:
        return '""'
    if isinstance(state, Enum):
        return f'"{state.value}"'
    return f'"{state}"'


def _same(a: object, b: object) -> bool:
    return (a or None) == (b or None)


def ensure_run_transition(current, from_state, to_state) -> None:
    """Raise EngineError unless the run may move from from_state to to_state.

    ``None`` (or an empty string) stands for a run that has not been created.
    """
    if not from_state and to_state == RunState.PENDING:
        if current:
            raise EngineError(
                ErrorCode.STATE,
                f"run state is {_quote(current)}, want empty before creation",
            )
        return

    if not _same(current, from_state):
        raise EngineError(
            ErrorCode.STATE, f"run state is {_quote(current)}, want {_quote(from_state)}"
        )

    allowed = ALLOWED_RUN_TRANSITIONS.get(from_state) if from_state else None
    if allowed is None:
        raise EngineError(ErrorCode.STATE, f"run state {_quote(from_state)} is terminal")

    if to_state not in allowed:
        raise EngineError(
            ErrorCode.STATE,
            f"run state cannot transition from {_quote(from_state)} to {_quote(to_state)}",
        )


def ensure_step_transition(current, from_state, to_state) -> None:
    """Raise EngineError unless a step may move from from_state to to_state."""
    if not _same(current, from_state):
        raise EngineError(
            ErrorCode.STATE, f"step state is {_quote(current)}, want {_quote(from_state)}"
        )

    allowed = ALLOWED_STEP_TRANSITIONS.get(from_state) if from_state else None
    if allowed is None:
        raise EngineError(ErrorCode.STATE, f"step state {_quote(from_state)} is terminal")

    if to_state not in allowed:
        raise EngineError(
            ErrorCode.STATE,
            f"step state cannot transition from {_quote(from_state)} to {_quote(to_state)}",
        )


def is_valid_run_state(state) -> bool:
    """Whether state names a known run state."""
    try:
        RunState(state)
    except ValueError:
        return False
    return True


def is_valid_step_state(state) -> bool:
    """Whether state names a known step state."""
    try:
        StepState(state)
    except ValueError:
        return False
    return True