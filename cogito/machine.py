"""Folding of events into a snapshot, with transition checks."""

from __future__ import annotations

import dataclasses
from typing import Callable, Iterable, Optional

from cogito.errors import EngineError, ErrorCode
from cogito.model import CompiledWorkflow, Event, EventType
from cogito.snapshot import ReplayResult, Snapshot, StepSnapshot, Transition
from cogito.states import (
    TERMINAL_STEP_STATES,
    RunState,
    StepState,
    ensure_run_transition,
    ensure_step_transition,
)

DATA_OCCURRED_AT = "occurred_at"
DATA_FROM_STATE = "from_state"
DATA_TO_STATE = "to_state"
DATA_PROVIDER_SESSION_ID = "provider_session_id"
DATA_APPROVAL_TRIGGER = "approval_trigger"
DATA_SUMMARY = "summary"
DATA_NORMALIZED_STATUS = "normalized_status"

STATUS_RUNNING = "running"
STATUS_FAILED = "failed"

EventHandler = Callable[
    [CompiledWorkflow, Snapshot, Optional[list], Event, dict, ErrorCode], None
]


def normalize_summary(summary: str, status: str) -> str:
    """Trimmed summary, or the status, or a generic text when both are blank."""
    summary = (summary or "").strip()
    if summary:
        return summary
    if status:
        return str(getattr(status, "value", status))
    return "transition recorded"


def _text(value) -> str:
    if not value:
        return ""
    return str(getattr(value, "value", value))


def _as_run_state(text: str):
    if not text:
        return None
    try:
        return RunState(text)
    except ValueError:
        return text


def _as_step_state(text: str):
    if not text:
        return None
    try:
        return StepState(text)
    except ValueError:
        return text


def _field(data: dict, key: str) -> str:
    return (data.get(key) or "").strip()


def _record(transitions: list | None, transition: Transition) -> None:
    if transitions is not None:
        transitions.append(transition)


def _validate_preconditions(compiled, snapshot, event: Event, code: ErrorCode) -> None:
    if compiled is None:
        raise EngineError(code, "compiled workflow is required")
    if snapshot is None:
        raise EngineError(code, "snapshot is required")
    if not (event.run_id or "").strip():
        raise EngineError(code, "event run id is required")
    if not snapshot.run_id:
        snapshot.run_id = event.run_id
    if event.run_id != snapshot.run_id:
        raise EngineError(
            code,
            f'event run id "{event.run_id}" does not match snapshot "{snapshot.run_id}"',
        )
    if event.sequence != snapshot.last_sequence + 1:
        raise EngineError(
            code,
            f"invalid event sequence {event.sequence} after {snapshot.last_sequence}",
        )


def _initialize_pending_steps(snapshot: Snapshot, compiled: CompiledWorkflow) -> None:
    for step in compiled.steps:
        snapshot.steps[step.id] = StepSnapshot(state=StepState.PENDING)


def _cancel_active_steps(snapshot: Snapshot) -> None:
    for step_id, step in list(snapshot.steps.items()):
        if step.state in TERMINAL_STEP_STATES:
            continue
        snapshot.steps[step_id] = dataclasses.replace(step, state=StepState.CANCELED)


def _apply_run_event(compiled, snapshot, transitions, event, data, code) -> None:
    from_state = _as_run_state(_field(data, DATA_FROM_STATE))
    to_state = _as_run_state(_field(data, DATA_TO_STATE))
    summary = _field(data, DATA_SUMMARY)

    try:
        ensure_run_transition(snapshot.state, from_state, to_state)
    except EngineError as exc:
        raise EngineError(code, "invalid transition order", exc) from exc

    snapshot.state = to_state
    if event.type == EventType.RUN_CREATED:
        _initialize_pending_steps(snapshot, compiled)
    if event.type == EventType.RUN_CANCELED:
        _cancel_active_steps(snapshot)

    _record(
        transitions,
        Transition(
            sequence=event.sequence,
            event_type=EventType(event.type),
            scope="run",
            from_state=_text(from_state),
            to_state=_text(to_state),
            summary=normalize_summary(summary, STATUS_RUNNING),
        ),
    )


def _require_step(compiled, event: Event, code: ErrorCode) -> str:
    step_id = (event.step_id or "").strip()
    if not step_id:
        raise EngineError(code, f"event {_text(event.type)} missing step id")
    if not compiled.has_step(step_id):
        raise EngineError(code, f'event references unknown step "{step_id}"')
    return step_id


def _advance_step(snapshot, step_id, event, data, code) -> tuple[StepSnapshot, object, object]:
    current = snapshot.steps.get(step_id) or StepSnapshot()
    from_state = _as_step_state(_field(data, DATA_FROM_STATE))
    to_state = _as_step_state(_field(data, DATA_TO_STATE))
    summary = _field(data, DATA_SUMMARY)
    provider_session_id = _field(data, DATA_PROVIDER_SESSION_ID)

    try:
        ensure_step_transition(current.state, from_state, to_state)
    except EngineError as exc:
        raise EngineError(code, "invalid transition order", exc) from exc

    changes: dict = {"state": to_state}
    if event.attempt_id:
        changes["attempt_id"] = event.attempt_id
    if provider_session_id:
        changes["provider_session_id"] = provider_session_id
    if summary:
        changes["summary"] = summary
    return dataclasses.replace(current, **changes), from_state, to_state


def _apply_step_event(compiled, snapshot, transitions, event, data, code) -> None:
    step_id = _require_step(compiled, event, code)
    current, from_state, to_state = _advance_step(snapshot, step_id, event, data, code)

    if to_state == StepState.QUEUED and event.type == EventType.STEP_RETRIED:
        current = dataclasses.replace(current, attempt_id="", provider_session_id="")

    snapshot.steps[step_id] = current
    _record(
        transitions,
        Transition(
            sequence=event.sequence,
            event_type=EventType(event.type),
            scope="step",
            step_id=step_id,
            from_state=_text(from_state),
            to_state=_text(to_state),
            attempt_id=event.attempt_id,
            provider_session_id=current.provider_session_id,
            summary=normalize_summary(current.summary, STATUS_RUNNING),
        ),
    )


def _apply_approval_event(compiled, snapshot, transitions, event, data, code) -> None:
    step_id = _require_step(compiled, event, code)
    current, from_state, to_state = _advance_step(snapshot, step_id, event, data, code)

    if event.type == EventType.APPROVAL_REQUESTED:
        current = dataclasses.replace(
            current,
            approval_id=event.approval_id,
            approval_trigger=_field(data, DATA_APPROVAL_TRIGGER),
        )
    else:
        current = dataclasses.replace(current, approval_id="", approval_trigger="")

    snapshot.steps[step_id] = current
    _record(
        transitions,
        Transition(
            sequence=event.sequence,
            event_type=EventType(event.type),
            scope="step",
            step_id=step_id,
            approval_id=event.approval_id,
            from_state=_text(from_state),
            to_state=_text(to_state),
            attempt_id=event.attempt_id,
            provider_session_id=current.provider_session_id,
            summary=normalize_summary(current.summary, STATUS_RUNNING),
        ),
    )


_HANDLERS: dict[EventType, EventHandler] = {
    EventType.RUN_CREATED: _apply_run_event,
    EventType.RUN_STARTED: _apply_run_event,
    EventType.RUN_PAUSED: _apply_run_event,
    EventType.RUN_WAITING_APPROVAL: _apply_run_event,
    EventType.RUN_SUCCEEDED: _apply_run_event,
    EventType.RUN_FAILED: _apply_run_event,
    EventType.RUN_CANCELED: _apply_run_event,
    EventType.STEP_QUEUED: _apply_step_event,
    EventType.STEP_STARTED: _apply_step_event,
    EventType.STEP_SUCCEEDED: _apply_step_event,
    EventType.STEP_FAILED: _apply_step_event,
    EventType.STEP_RETRIED: _apply_step_event,
    EventType.APPROVAL_REQUESTED: _apply_approval_event,
    EventType.APPROVAL_GRANTED: _apply_approval_event,
    EventType.APPROVAL_DENIED: _apply_approval_event,
    EventType.APPROVAL_TIMED_OUT: _apply_approval_event,
}


def lookup_event_handler(event_type) -> EventHandler:
    """Return the function that folds events of this type into a snapshot."""
    try:
        return _HANDLERS[EventType(event_type)]
    except (ValueError, KeyError):
        raise EngineError(
            ErrorCode.REPLAY, f'unsupported event type "{_text(event_type)}"'
        ) from None


def apply_event(
    compiled: CompiledWorkflow,
    snapshot: Snapshot,
    transitions: list[Transition] | None,
    event: Event,
    code: ErrorCode,
) -> None:
    """Fold one event into snapshot, appending to transitions when given."""
    _validate_preconditions(compiled, snapshot, event, code)

    data = dict(event.data or {})
    occurred_at = _field(data, DATA_OCCURRED_AT)
    if not occurred_at:
        raise EngineError(code, f"event {_text(event.type)} missing {DATA_OCCURRED_AT}")

    try:
        handler = lookup_event_handler(event.type)
    except EngineError as exc:
        raise EngineError(code, str(exc)) from exc

    handler(compiled, snapshot, transitions, event, data, code)

    snapshot.last_sequence = event.sequence
    snapshot.updated_at = occurred_at


def replay(run_id: str, compiled: CompiledWorkflow, events: Iterable[Event]) -> ReplayResult:
    """Rebuild a run's snapshot and transitions from its events."""
    run_id = (run_id or "").strip()
    if not run_id:
        raise EngineError(ErrorCode.PATH, "run id is required")
    if compiled is None:
        raise EngineError(ErrorCode.CONFIG, "compiled workflow is required")

    snapshot = Snapshot.empty(run_id)
    transitions: list[Transition] = []
    for event in events:
        apply_event(compiled, snapshot, transitions, event, ErrorCode.REPLAY)

    return ReplayResult(snapshot=snapshot.clone(), transitions=list(transitions))