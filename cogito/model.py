"""Persisted events, checkpoints and compiled workflow definitions."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from cogito.errors import EngineError, ErrorCode


class EventType(str, Enum):
    """Kind of a durable runtime event."""

    RUN_CREATED = "run_created"
    RUN_STARTED = "run_started"
    RUN_PAUSED = "run_paused"
    RUN_WAITING_APPROVAL = "run_waiting_approval"
    RUN_SUCCEEDED = "run_succeeded"
    RUN_FAILED = "run_failed"
    RUN_CANCELED = "run_canceled"
    STEP_QUEUED = "step_queued"
    STEP_STARTED = "step_started"
    STEP_SUCCEEDED = "step_succeeded"
    STEP_FAILED = "step_failed"
    STEP_RETRIED = "step_retried"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_DENIED = "approval_denied"
    APPROVAL_TIMED_OUT = "approval_timed_out"

    def __str__(self) -> str:
        return self.value


@dataclass
class Event:
    """One entry of a run's event log."""

    type: EventType | str
    sequence: int = 0
    run_id: str = ""
    step_id: str = ""
    attempt_id: str = ""
    approval_id: str = ""
    message: str = ""
    data: dict[str, str] = field(default_factory=dict)

    def clone(self) -> "Event":
        """Return a copy whose data mapping is independent of this one."""
        return dataclasses.replace(self, data=dict(self.data or {}))


@dataclass
class StepCheckpoint:
    """Persisted state of one step."""

    state: str = ""
    attempt_id: str = ""
    provider_session_id: str = ""
    approval_id: str = ""
    approval_trigger: str = ""
    summary: str = ""


@dataclass
class Checkpoint:
    """Persisted state of a whole run."""

    run_id: str = ""
    repo_path: str = ""
    working_dir: str = ""
    state: str = ""
    last_sequence: int = 0
    updated_at: str = ""
    steps: dict[str, StepCheckpoint] = field(default_factory=dict)


@dataclass(frozen=True)
class CompiledStep:
    """A step of a compiled workflow with its dependencies."""

    id: str
    kind: str = "command"
    needs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "needs", tuple(self.needs))


class CompiledWorkflow:
    """Steps in declaration order plus a dependency-respecting execution order."""

    def __init__(
        self,
        steps: Iterable[CompiledStep],
        topological_order: Iterable[str] | None = None,
    ) -> None:
        self.steps: tuple[CompiledStep, ...] = tuple(steps)
        self._index: dict[str, CompiledStep] = {}
        for step in self.steps:
            if step.id in self._index:
                raise ValueError(f'duplicate step id "{step.id}"')
            self._index[step.id] = step

        for step in self.steps:
            for dependency in step.needs:
                if dependency not in self._index:
                    raise ValueError(f'step "{step.id}" needs unknown step "{dependency}"')

        if topological_order is None:
            self.topological_order = self._stable_order()
        else:
            order = tuple(topological_order)
            if sorted(order) != sorted(self._index):
                raise ValueError("topological order must list every step exactly once")
            self.topological_order = order

    def _stable_order(self) -> tuple[str, ...]:
        placed: list[str] = []
        done: set[str] = set()
        remaining = list(self.steps)
        while remaining:
            ready = [step for step in remaining if all(need in done for need in step.needs)]
            if not ready:
                cycle = ", ".join(step.id for step in remaining)
                raise ValueError(f"dependency cycle among steps: {cycle}")
            for step in ready:
                placed.append(step.id)
                done.add(step.id)
            remaining = [step for step in remaining if step.id not in done]
        return tuple(placed)

    def step(self, step_id: str) -> CompiledStep:
        """Return the step with this id, raising a config error if unknown."""
        try:
            return self._index[step_id]
        except KeyError:
            raise EngineError(ErrorCode.CONFIG, f'unknown step "{step_id}"') from None

    def has_step(self, step_id: str) -> bool:
        """Whether a step with this id exists."""
        return step_id in self._index

    def __len__(self) -> int:
        return len(self.steps)

    def __repr__(self) -> str:
        return f"CompiledWorkflow(steps={self.steps!r}, topological_order={self.topological_order!r})"