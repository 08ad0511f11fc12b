"""Persisting runtime transitions as events and folding them into a snapshot."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Callable, Protocol, Sequence

from cogito.errors import EngineError, ErrorCode
from cogito.machine import (
    DATA_FROM_STATE,
    DATA_NORMALIZED_STATUS,
    DATA_OCCURRED_AT,
    DATA_PROVIDER_SESSION_ID,
    DATA_SUMMARY,
    DATA_TO_STATE,
    STATUS_RUNNING,
    apply_event,
    normalize_summary,
)
from cogito.model import Checkpoint, CompiledWorkflow, Event, EventType
from cogito.snapshot import (
    Snapshot,
    StepSnapshot,
    Transition,
    checkpoint_from_snapshot,
)
from cogito.states import RunState, StepState


class EventStore(Protocol):
    """Durable storage for a run's events and its latest checkpoint."""

    def append_event(self, event: Event) -> Event:
        """Store an event and return it with its assigned sequence."""
        ...

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Replace the stored checkpoint."""
        ...

    def load_checkpoint(self) -> Checkpoint | None:
        """Return the stored checkpoint, or None when there is none."""
        ...

    def read_events(self) -> list[Event]:
        """Return every stored event in sequence order."""
        ...


class MemoryEventStore:
    """An event store that keeps everything in memory."""

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._checkpoint: Checkpoint | None = None

    def append_event(self, event: Event) -> Event:
        """Store a copy of event under the next sequence number."""
        expected = latest_event_sequence(self._events) + 1
        if event.sequence and event.sequence != expected:
            raise ValueError(f"event sequence {event.sequence} does not follow {expected - 1}")
        stored = event.clone()
        stored.sequence = expected
        self._events.append(stored)
        return stored.clone()

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Keep a copy of checkpoint as the latest one."""
        self._checkpoint = copy.deepcopy(checkpoint)

    def load_checkpoint(self) -> Checkpoint | None:
        """Return a copy of the latest checkpoint, if any."""
        return copy.deepcopy(self._checkpoint)

    def read_events(self) -> list[Event]:
        """Return copies of all stored events."""
        return [event.clone() for event in self._events]


def _state_text(state) -> str:
    if not state:
        return ""
    return str(getattr(state, "value", state))


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    moment = moment.astimezone(timezone.utc)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    return text + "Z"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def latest_event_sequence(events: Sequence[Event]) -> int:
    """Sequence number of the last event, or 0 for an empty log."""
    if not events:
        return 0
    return events[-1].sequence


class EventRecorder:
    """Records transitions of one run as events and keeps its snapshot current.

    Every event is first applied to a copy of the snapshot, so an invalid
    transition raises before anything is written to the store.
    """

    def __init__(
        self,
        run_id: str,
        compiled: CompiledWorkflow,
        store: EventStore,
        clock: Callable[[], datetime] | None = None,
        repo_path: str = "",
        working_dir: str = "",
    ) -> None:
        run_id = (run_id or "").strip()
        if not run_id:
            raise EngineError(ErrorCode.PATH, "run id is required")
        if compiled is None:
            raise EngineError(ErrorCode.CONFIG, "compiled workflow is required")
        if store is None:
            raise EngineError(ErrorCode.CONFIG, "store is required")

        self.run_id = run_id
        self.compiled = compiled
        self.store = store
        self.clock = clock or _utc_now
        self.repo_path = (repo_path or "").strip()
        self.working_dir = (working_dir or "").strip()
        self.live_snapshot = Snapshot.empty(run_id)
        self.history: list[Transition] = []

    def snapshot(self) -> Snapshot:
        """A copy of the current snapshot."""
        return self.live_snapshot.clone()

    def transitions(self) -> list[Transition]:
        """A copy of the transitions recorded so far."""
        return list(self.history)

    def _now(self) -> str:
        return _format_timestamp(self.clock())

    def _step(self, step_id: str) -> StepSnapshot:
        return self.live_snapshot.steps.get(step_id) or StepSnapshot()

    def ensure_initialized(self) -> None:
        """Record the run's creation unless it already exists."""
        if self.live_snapshot.state:
            return
        self.persist_run_transition(EventType.RUN_CREATED, None, RunState.PENDING, "run created")

    def queue_ready_steps(self) -> None:
        """Queue every pending step whose dependencies have all succeeded."""
        if self.live_snapshot.state != RunState.RUNNING:
            return
        for step_id in self.select_ready_pending_step_ids():
            self.persist_step_transition(
                EventType.STEP_QUEUED,
                step_id,
                StepState.PENDING,
                StepState.QUEUED,
                summary="step ready",
            )

    def select_ready_pending_step_ids(self) -> list[str]:
        """Pending steps, in execution order, whose dependencies have succeeded."""
        return [
            step_id
            for step_id in self.compiled.topological_order
            if self._step(step_id).state == StepState.PENDING
            and all(
                self._step(dependency).state == StepState.SUCCEEDED
                for dependency in self.compiled.step(step_id).needs
            )
        ]

    def persist_run_transition(self, event_type, from_state, to_state, message: str) -> Event:
        """Record a change of the run's state."""
        summary = normalize_summary(message, STATUS_RUNNING)
        event = Event(
            type=EventType(event_type),
            message=summary,
            data={
                DATA_OCCURRED_AT: self._now(),
                DATA_FROM_STATE: _state_text(from_state),
                DATA_TO_STATE: _state_text(to_state),
                DATA_SUMMARY: summary,
            },
        )
        return self.persist_event(event)

    def persist_step_transition(
        self,
        event_type,
        step_id: str,
        from_state,
        to_state,
        attempt_id: str = "",
        provider_session_id: str = "",
        summary: str = "",
        normalized_status: str = "",
    ) -> Event:
        """Record a change of one step's state."""
        text = normalize_summary(summary, STATUS_RUNNING)
        data = {
            DATA_OCCURRED_AT: self._now(),
            DATA_FROM_STATE: _state_text(from_state),
            DATA_TO_STATE: _state_text(to_state),
            DATA_PROVIDER_SESSION_ID: provider_session_id or "",
            DATA_SUMMARY: text,
        }
        status = _state_text(normalized_status)
        if status:
            data[DATA_NORMALIZED_STATUS] = status
        event = Event(
            type=EventType(event_type),
            step_id=step_id,
            attempt_id=attempt_id or "",
            message=text,
            data=data,
        )
        return self.persist_event(event)

    def persist_event(self, event: Event) -> Event:
        """Validate, store and apply event, then save a checkpoint.

        Returns the event as stored, with its sequence number.
        """
        event = event.clone()
        event.run_id = self.run_id

        preview_snapshot = self.live_snapshot.clone()
        preview_event = event.clone()
        preview_event.sequence = preview_snapshot.last_sequence + 1
        apply_event(self.compiled, preview_snapshot, None, preview_event, ErrorCode.STATE)

        appended = self.store.append_event(event)
        apply_event(self.compiled, self.live_snapshot, self.history, appended, ErrorCode.STATE)

        self.store.save_checkpoint(
            checkpoint_from_snapshot(self.live_snapshot, self.repo_path, self.working_dir)
        )
        return appended

    def all_steps_succeeded(self) -> bool:
        """Whether every step of the workflow has succeeded."""
        return all(
            self._step(step.id).state == StepState.SUCCEEDED for step in self.compiled.steps
        )