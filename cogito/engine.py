"""Run lifecycle control on top of the event recorder."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from cogito.errors import EngineError, ErrorCode
from cogito.machine import replay
from cogito.model import CompiledWorkflow, EventType
from cogito.recorder import EventRecorder, EventStore, latest_event_sequence
from cogito.snapshot import (
    Snapshot,
    StepSnapshot,
    Transition,
    checkpoint_execution_context,
    snapshot_from_checkpoint,
)
from cogito.states import RunState, StepState

InterruptHook = Callable[[str, StepSnapshot], None]

_TERMINAL_RUN_STATES = frozenset({RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELED})
_CANCELABLE_RUN_STATES = frozenset(
    {RunState.PENDING, RunState.RUNNING, RunState.WAITING_APPROVAL, RunState.PAUSED}
)


def _quote(state) -> str:
    if not state:
        return '""'
    return f'"{getattr(state, "value", state)}"'


class Engine:
    """Drives the lifecycle of one workflow run through persisted events.

    On construction the run's state is restored from the store: from the
    checkpoint when it is at least as recent as the event log, otherwise by
    replaying the events.  The engine is meant to be driven by one caller.
    """

    def __init__(
        self,
        run_id: str,
        compiled: CompiledWorkflow,
        store: EventStore,
        clock: Callable[[], datetime] | None = None,
        interrupt: InterruptHook | None = None,
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

        self._compiled = compiled
        self._interrupt = interrupt
        self._recorder = EventRecorder(
            run_id,
            compiled,
            store,
            clock=clock,
            repo_path=repo_path,
            working_dir=working_dir,
        )

        try:
            checkpoint = store.load_checkpoint()
        except Exception:  # a missing or unreadable checkpoint is not fatal
            checkpoint = None

        try:
            events = store.read_events()
        except Exception as exc:
            raise EngineError(ErrorCode.REPLAY, "load runtime history", exc) from exc

        if checkpoint is not None and latest_event_sequence(events) <= checkpoint.last_sequence:
            snapshot = snapshot_from_checkpoint(run_id, compiled, checkpoint)
            self._adopt_checkpoint_context(checkpoint)
            self._recorder.live_snapshot = snapshot
            return

        if not events:
            if checkpoint is not None:
                self._adopt_checkpoint_context(checkpoint)
            return

        result = replay(run_id, compiled, events)
        if checkpoint is not None:
            self._adopt_checkpoint_context(checkpoint)
        self._recorder.live_snapshot = result.snapshot
        self._recorder.history = list(result.transitions)

    def _adopt_checkpoint_context(self, checkpoint) -> None:
        recorder = self._recorder
        recorder.repo_path, recorder.working_dir = checkpoint_execution_context(
            checkpoint, recorder.repo_path, recorder.working_dir
        )

    @property
    def run_id(self) -> str:
        """Identifier of the run."""
        return self._recorder.run_id

    @property
    def repo_path(self) -> str:
        """Repository path recorded for the run."""
        return self._recorder.repo_path

    @property
    def working_dir(self) -> str:
        """Working directory recorded for the run."""
        return self._recorder.working_dir

    def snapshot(self) -> Snapshot:
        """A copy of the run's current snapshot."""
        return self._recorder.snapshot()

    def transitions(self) -> list[Transition]:
        """A copy of the transitions recorded or replayed so far."""
        return self._recorder.transitions()

    @property
    def _state(self):
        return self._recorder.live_snapshot.state

    def start(self) -> None:
        """Start or resume the run and queue the steps that are ready."""
        self._recorder.ensure_initialized()
        state = self._state

        if state == RunState.PENDING:
            self._recorder.persist_run_transition(
                EventType.RUN_STARTED, RunState.PENDING, RunState.RUNNING, "run started"
            )
        elif state == RunState.RUNNING:
            pass
        elif state == RunState.PAUSED:
            self._recorder.persist_run_transition(
                EventType.RUN_STARTED, RunState.PAUSED, RunState.RUNNING, "run resumed"
            )
        elif state == RunState.WAITING_APPROVAL:
            raise EngineError(ErrorCode.STATE, "run is waiting approval")
        elif state in _TERMINAL_RUN_STATES:
            return
        else:
            raise EngineError(ErrorCode.STATE, f"unknown run state {_quote(state)}")

        self._recorder.queue_ready_steps()

    def pause(self, message: str = "") -> None:
        """Pause a running run or one waiting for approval."""
        self._recorder.ensure_initialized()
        message = (message or "").strip() or "run paused"
        state = self._state
        if state not in (RunState.RUNNING, RunState.WAITING_APPROVAL):
            raise EngineError(ErrorCode.STATE, f"cannot pause run from {_quote(state)}")
        self._recorder.persist_run_transition(EventType.RUN_PAUSED, state, RunState.PAUSED, message)

    def resume(self, message: str = "") -> None:
        """Resume a paused run and queue the steps that are ready."""
        self._recorder.ensure_initialized()
        message = (message or "").strip() or "run resumed"
        state = self._state
        if state != RunState.PAUSED:
            raise EngineError(ErrorCode.STATE, f"cannot resume run from {_quote(state)}")
        self._recorder.persist_run_transition(
            EventType.RUN_STARTED, RunState.PAUSED, RunState.RUNNING, message
        )
        self._recorder.queue_ready_steps()

    def cancel(self, message: str = "") -> None:
        """Cancel the run, interrupting running steps first."""
        self._recorder.ensure_initialized()
        message = (message or "").strip() or "run canceled"
        state = self._state
        if state not in _CANCELABLE_RUN_STATES:
            raise EngineError(ErrorCode.STATE, f"cannot cancel run from {_quote(state)}")
        if state == RunState.RUNNING:
            self._interrupt_active_steps()
        self._recorder.persist_run_transition(
            EventType.RUN_CANCELED, state, RunState.CANCELED, message
        )

    def _interrupt_active_steps(self) -> None:
        if self._interrupt is None:
            return
        steps = self._recorder.live_snapshot.steps
        for step_id in self._compiled.topological_order:
            step = steps.get(step_id)
            if step is not None and step.state == StepState.RUNNING:
                self._interrupt(step_id, step)

    def ready_step_ids(self) -> list[str]:
        """Queued steps in execution order."""
        steps = self._recorder.live_snapshot.steps
        return [
            step_id
            for step_id in self._compiled.topological_order
            if step_id in steps and steps[step_id].state == StepState.QUEUED
        ]