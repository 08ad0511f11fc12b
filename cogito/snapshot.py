"""In-memory run state rebuilt from events, and its checkpoint form."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

from cogito.errors import EngineError, ErrorCode
from cogito.model import Checkpoint, CompiledWorkflow, EventType, StepCheckpoint
from cogito.states import RunState, StepState, is_valid_run_state, is_valid_step_state


@dataclass(frozen=True)
class StepSnapshot:
    """State of one step at a point in time."""

    state: StepState | None = None
    attempt_id: str = ""
    provider_session_id: str = ""
    approval_id: str = ""
    approval_trigger: str = ""
    summary: str = ""


@dataclass
class Snapshot:
    """State of a whole run, folded from its events."""

    run_id: str = ""
    state: RunState | None = None
    last_sequence: int = 0
    updated_at: str = ""
    steps: dict[str, StepSnapshot] = field(default_factory=dict)

    @classmethod
    def empty(cls, run_id: str) -> "Snapshot":
        """A snapshot of a run that has not been created yet."""
        return cls(run_id=run_id)

    def clone(self) -> "Snapshot":
        """Return a copy whose step mapping is independent of this one."""
        return dataclasses.replace(self, steps=dict(self.steps))


@dataclass(frozen=True)
class Transition:
    """One recorded state change of the run or of a step."""

    sequence: int
    event_type: EventType
    scope: str
    step_id: str = ""
    approval_id: str = ""
    from_state: str = ""
    to_state: str = ""
    attempt_id: str = ""
    provider_session_id: str = ""
    summary: str = ""


@dataclass
class ReplayResult:
    """Snapshot and transition history rebuilt from an event log."""

    snapshot: Snapshot
    transitions: list[Transition] = field(default_factory=list)


def _state_text(state) -> str:
    if not state:
        return ""
    return getattr(state, "value", state)


def _first_non_empty(*values: str) -> str:
    return next((value for value in values if value.strip()), "")


def normalize_execution_context(repo_path: str, working_dir: str) -> tuple[str, str]:
    """Trim both paths and let each fall back to the other when blank."""
    repo_path = (repo_path or "").strip()
    working_dir = (working_dir or "").strip()
    if not repo_path:
        repo_path = working_dir
    if not working_dir:
        working_dir = repo_path
    return repo_path, working_dir


def checkpoint_execution_context(
    checkpoint: Checkpoint | None, repo_path: str, working_dir: str
) -> tuple[str, str]:
    """Prefer the paths stored in the checkpoint over the given ones."""
    if checkpoint is None:
        return normalize_execution_context(repo_path, working_dir)
    return normalize_execution_context(
        _first_non_empty((checkpoint.repo_path or "").strip(), repo_path or ""),
        _first_non_empty((checkpoint.working_dir or "").strip(), working_dir or ""),
    )


def checkpoint_from_snapshot(snapshot: Snapshot, repo_path: str, working_dir: str) -> Checkpoint:
    """Build the persisted checkpoint for a snapshot."""
    repo_path, working_dir = normalize_execution_context(repo_path, working_dir)
    steps = {
        step_id: StepCheckpoint(
            state=_state_text(step.state),
            attempt_id=step.attempt_id,
            provider_session_id=step.provider_session_id,
            approval_id=step.approval_id,
            approval_trigger=step.approval_trigger,
            summary=step.summary,
        )
        for step_id, step in snapshot.steps.items()
    }
    return Checkpoint(
        run_id=snapshot.run_id,
        repo_path=repo_path,
        working_dir=working_dir,
        state=_state_text(snapshot.state),
        last_sequence=snapshot.last_sequence,
        updated_at=snapshot.updated_at,
        steps=steps,
    )


def snapshot_from_checkpoint(
    run_id: str, compiled: CompiledWorkflow, checkpoint: Checkpoint | None
) -> Snapshot:
    """Rebuild a snapshot from a checkpoint, validating it against the workflow."""
    if checkpoint is None:
        raise EngineError(ErrorCode.STATE, "checkpoint is required")

    stored_run_id = (checkpoint.run_id or "").strip()
    if stored_run_id and stored_run_id != run_id:
        raise EngineError(
            ErrorCode.STATE,
            f'checkpoint run id "{checkpoint.run_id}" does not match "{run_id}"',
        )

    state_text = (checkpoint.state or "").strip()
    if not is_valid_run_state(state_text):
        raise EngineError(
            ErrorCode.STATE, f'unknown checkpoint run state "{checkpoint.state}"'
        )

    for step_id in checkpoint.steps:
        if not compiled.has_step(step_id):
            raise EngineError(
                ErrorCode.STATE, f'checkpoint references unknown step "{step_id}"'
            )

    steps: dict[str, StepSnapshot] = {}
    for step in compiled.steps:
        stored = checkpoint.steps.get(step.id) or StepCheckpoint()
        step_state = (stored.state or "").strip() or StepState.PENDING.value
        if not is_valid_step_state(step_state):
            raise EngineError(
                ErrorCode.STATE,
                f'unknown checkpoint step state "{stored.state}" for {step.id}',
            )
        steps[step.id] = StepSnapshot(
            state=StepState(step_state),
            attempt_id=stored.attempt_id,
            provider_session_id=stored.provider_session_id,
            approval_id=stored.approval_id,
            approval_trigger=(stored.approval_trigger or "").strip(),
            summary=stored.summary,
        )

    return Snapshot(
        run_id=run_id,
        state=RunState(state_text),
        last_sequence=checkpoint.last_sequence,
        updated_at=checkpoint.updated_at,
        steps=steps,
    )