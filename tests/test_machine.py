import pytest

from cogito.errors import EngineError, ErrorCode
from cogito.machine import (
    DATA_APPROVAL_TRIGGER,
    DATA_FROM_STATE,
    DATA_NORMALIZED_STATUS,
    DATA_OCCURRED_AT,
    DATA_PROVIDER_SESSION_ID,
    DATA_SUMMARY,
    DATA_TO_STATE,
    apply_event,
    lookup_event_handler,
    normalize_summary,
    replay,
)
from cogito.model import CompiledStep, CompiledWorkflow, Event, EventType
from cogito.snapshot import Snapshot
from cogito.states import RunState, StepState

OCCURRED_AT = "2026-03-22T15:04:05Z"


def event_data(from_state, to_state, summary, provider_session_id="", normalized_status=""):
    data = {
        DATA_OCCURRED_AT: OCCURRED_AT,
        DATA_FROM_STATE: from_state,
        DATA_TO_STATE: to_state,
        DATA_SUMMARY: summary,
    }
    if provider_session_id:
        data[DATA_PROVIDER_SESSION_ID] = provider_session_id
    if normalized_status:
        data[DATA_NORMALIZED_STATUS] = normalized_status
    return data


def build_event(sequence, event_type, run_id, step_id, attempt_id, approval_id, data):
    return Event(
        type=event_type,
        sequence=sequence,
        run_id=run_id,
        step_id=step_id,
        attempt_id=attempt_id,
        approval_id=approval_id,
        message=data[DATA_SUMMARY],
        data=data,
    )


@pytest.fixture
def single():
    return CompiledWorkflow([CompiledStep("prepare")])


@pytest.fixture
def approval_flow():
    return CompiledWorkflow(
        [
            CompiledStep("draft"),
            CompiledStep("legal", kind="approval", needs=("draft",)),
            CompiledStep("publish", needs=("legal",)),
        ]
    )


def run_start_events(run_id="run-123"):
    return [
        build_event(1, EventType.RUN_CREATED, run_id, "", "", "", event_data("", "pending", "run created")),
        build_event(2, EventType.RUN_STARTED, run_id, "", "", "", event_data("pending", "running", "run started")),
    ]


def test_replay_rejects_invalid_transition_order(single):
    events = [
        build_event(1, EventType.RUN_CREATED, "run-123", "", "", "", event_data("", "pending", "run created")),
        build_event(
            2,
            EventType.STEP_STARTED,
            "run-123",
            "prepare",
            "attempt-prepare-01",
            "",
            event_data("queued", "running", "prepare started", "session-prepare-01"),
        ),
    ]
    with pytest.raises(EngineError) as info:
        replay("run-123", single, events)
    assert "invalid transition order" in str(info.value)
    assert info.value.code == ErrorCode.REPLAY


def test_replay_of_paused_run(single):
    events = run_start_events("run-stale") + [
        build_event(3, EventType.RUN_PAUSED, "run-stale", "", "", "", event_data("running", "paused", "operator pause")),
    ]
    result = replay("run-stale", single, events)
    assert result.snapshot.state == RunState.PAUSED
    assert result.snapshot.last_sequence == 3
    assert len(result.transitions) == 3
    assert result.snapshot.updated_at == OCCURRED_AT


def test_replay_full_step_lifecycle(single):
    events = run_start_events() + [
        build_event(3, EventType.STEP_QUEUED, "run-123", "prepare", "", "", event_data("pending", "queued", "step ready")),
        build_event(
            4,
            EventType.STEP_STARTED,
            "run-123",
            "prepare",
            "attempt-prepare-01",
            "",
            event_data("queued", "running", "prepare started", "command-prepare-01"),
        ),
        build_event(
            5,
            EventType.STEP_SUCCEEDED,
            "run-123",
            "prepare",
            "attempt-prepare-01",
            "",
            event_data("running", "succeeded", "prepare ok", "", "succeeded"),
        ),
        build_event(6, EventType.RUN_SUCCEEDED, "run-123", "", "", "", event_data("running", "succeeded", "run succeeded")),
    ]
    result = replay("run-123", single, events)
    assert result.snapshot.state == RunState.SUCCEEDED
    step = result.snapshot.steps["prepare"]
    assert step.state == StepState.SUCCEEDED
    assert step.attempt_id == "attempt-prepare-01"
    assert step.provider_session_id == "command-prepare-01"
    assert step.summary == "prepare ok"
    assert [t.event_type for t in result.transitions] == [e.type for e in events]
    assert [t.scope for t in result.transitions] == ["run", "run", "step", "step", "step", "run"]
    assert result.transitions[4].provider_session_id == "command-prepare-01"


def test_replay_is_deterministic(single):
    events = run_start_events() + [
        build_event(3, EventType.STEP_QUEUED, "run-123", "prepare", "", "", event_data("pending", "queued", "step ready")),
    ]
    first = replay("run-123", single, events)
    second = replay("run-123", single, events)
    assert first.transitions == second.transitions
    assert first.snapshot == second.snapshot


def test_approval_events_track_approval_fields(approval_flow):
    events = run_start_events() + [
        build_event(3, EventType.STEP_QUEUED, "run-123", "legal", "", "", event_data("pending", "queued", "step ready")),
        build_event(4, EventType.STEP_STARTED, "run-123", "legal", "attempt-legal-01", "", event_data("queued", "running", "legal started")),
    ]
    requested = event_data("running", "waiting_approval", "Legal approval required before publish")
    requested[DATA_APPROVAL_TRIGGER] = "explicit"
    events.append(build_event(5, EventType.APPROVAL_REQUESTED, "run-123", "legal", "attempt-legal-01", "approval-legal-01", requested))
    events.append(build_event(6, EventType.RUN_WAITING_APPROVAL, "run-123", "", "", "", event_data("running", "waiting_approval", "waiting")))

    waiting = replay("run-123", approval_flow, events)
    legal = waiting.snapshot.steps["legal"]
    assert waiting.snapshot.state == RunState.WAITING_APPROVAL
    assert legal.state == StepState.WAITING_APPROVAL
    assert legal.approval_id == "approval-legal-01"
    assert legal.approval_trigger == "explicit"
    assert waiting.transitions[4].approval_id == "approval-legal-01"

    events.append(
        build_event(
            7,
            EventType.APPROVAL_GRANTED,
            "run-123",
            "legal",
            "attempt-legal-01",
            "approval-legal-01",
            event_data("waiting_approval", "running", "approval granted"),
        )
    )
    granted = replay("run-123", approval_flow, events)
    legal = granted.snapshot.steps["legal"]
    assert legal.state == StepState.RUNNING
    assert legal.approval_id == ""
    assert legal.approval_trigger == ""


def test_step_retry_clears_attempt(single):
    events = run_start_events() + [
        build_event(3, EventType.STEP_QUEUED, "run-123", "prepare", "", "", event_data("pending", "queued", "step ready")),
        build_event(4, EventType.STEP_STARTED, "run-123", "prepare", "attempt-prepare-01", "", event_data("queued", "running", "started", "command-prepare-01")),
        build_event(5, EventType.STEP_FAILED, "run-123", "prepare", "attempt-prepare-01", "", event_data("running", "failed", "boom")),
        build_event(6, EventType.STEP_RETRIED, "run-123", "prepare", "", "", event_data("failed", "queued", "retry")),
    ]
    step = replay("run-123", single, events).snapshot.steps["prepare"]
    assert step.state == StepState.QUEUED
    assert step.attempt_id == ""
    assert step.provider_session_id == ""
    assert step.summary == "retry"


def test_run_cancel_cancels_active_steps(approval_flow):
    events = run_start_events() + [
        build_event(3, EventType.STEP_QUEUED, "run-123", "draft", "", "", event_data("pending", "queued", "step ready")),
        build_event(4, EventType.STEP_STARTED, "run-123", "draft", "a1", "", event_data("queued", "running", "started")),
        build_event(5, EventType.STEP_SUCCEEDED, "run-123", "draft", "a1", "", event_data("running", "succeeded", "done")),
        build_event(6, EventType.RUN_CANCELED, "run-123", "", "", "", event_data("running", "canceled", "run canceled")),
    ]
    snapshot = replay("run-123", approval_flow, events).snapshot
    assert snapshot.state == RunState.CANCELED
    assert snapshot.steps["draft"].state == StepState.SUCCEEDED
    assert snapshot.steps["legal"].state == StepState.CANCELED
    assert snapshot.steps["publish"].state == StepState.CANCELED


def test_sequence_gap_rejected(single):
    event = build_event(2, EventType.RUN_CREATED, "run-123", "", "", "", event_data("", "pending", "run created"))
    with pytest.raises(EngineError, match="invalid event sequence 2 after 0"):
        replay("run-123", single, [event])


def test_run_id_mismatch_rejected(single):
    event = build_event(1, EventType.RUN_CREATED, "other", "", "", "", event_data("", "pending", "run created"))
    with pytest.raises(EngineError, match="does not match snapshot"):
        replay("run-123", single, [event])


def test_missing_event_run_id_rejected(single):
    event = build_event(1, EventType.RUN_CREATED, "", "", "", "", event_data("", "pending", "run created"))
    with pytest.raises(EngineError, match="event run id is required"):
        replay("run-123", single, [event])


def test_missing_occurred_at_rejected(single):
    data = event_data("", "pending", "run created")
    del data[DATA_OCCURRED_AT]
    event = build_event(1, EventType.RUN_CREATED, "run-123", "", "", "", data)
    with pytest.raises(EngineError, match="event run_created missing occurred_at"):
        replay("run-123", single, [event])


def test_unknown_step_rejected(single):
    events = run_start_events() + [
        build_event(3, EventType.STEP_QUEUED, "run-123", "ghost", "", "", event_data("pending", "queued", "step ready")),
    ]
    with pytest.raises(EngineError, match="event references unknown step"):
        replay("run-123", single, events)


def test_missing_step_id_rejected(single):
    events = run_start_events() + [
        build_event(3, EventType.STEP_QUEUED, "run-123", "", "", "", event_data("pending", "queued", "step ready")),
    ]
    with pytest.raises(EngineError, match="event step_queued missing step id"):
        replay("run-123", single, events)


def test_unknown_event_type_in_apply(single):
    snapshot = Snapshot.empty("run-123")
    event = build_event(1, "unknown", "run-123", "", "", "", event_data("", "pending", "x"))
    with pytest.raises(EngineError) as info:
        apply_event(single, snapshot, None, event, ErrorCode.STATE)
    assert info.value.code == ErrorCode.STATE
    assert "unsupported event type" in str(info.value)


def test_replay_requires_run_id(single):
    with pytest.raises(EngineError) as info:
        replay("  ", single, [])
    assert info.value.code == ErrorCode.PATH


def test_replay_requires_compiled_workflow():
    with pytest.raises(EngineError) as info:
        replay("run-123", None, [])
    assert info.value.code == ErrorCode.CONFIG


def test_apply_event_without_transitions_list(single):
    snapshot = Snapshot.empty("run-123")
    event = build_event(1, EventType.RUN_CREATED, "run-123", "", "", "", event_data("", "pending", "run created"))
    apply_event(single, snapshot, None, event, ErrorCode.STATE)
    assert snapshot.state == RunState.PENDING
    assert snapshot.last_sequence == 1
    assert snapshot.steps["prepare"].state == StepState.PENDING


def test_apply_event_uses_given_code_for_bad_transition(single):
    snapshot = Snapshot.empty("run-123")
    event = build_event(1, EventType.RUN_STARTED, "run-123", "", "", "", event_data("pending", "running", "go"))
    with pytest.raises(EngineError) as info:
        apply_event(single, snapshot, [], event, ErrorCode.STATE)
    assert info.value.code == ErrorCode.STATE
    assert isinstance(info.value.cause, EngineError)
    assert snapshot.last_sequence == 0


RUN_EVENTS = [
    EventType.RUN_CREATED,
    EventType.RUN_STARTED,
    EventType.RUN_PAUSED,
    EventType.RUN_WAITING_APPROVAL,
    EventType.RUN_SUCCEEDED,
    EventType.RUN_FAILED,
    EventType.RUN_CANCELED,
]
STEP_EVENTS = [
    EventType.STEP_QUEUED,
    EventType.STEP_STARTED,
    EventType.STEP_SUCCEEDED,
    EventType.STEP_FAILED,
    EventType.STEP_RETRIED,
]
APPROVAL_EVENTS = [
    EventType.APPROVAL_REQUESTED,
    EventType.APPROVAL_GRANTED,
    EventType.APPROVAL_DENIED,
    EventType.APPROVAL_TIMED_OUT,
]


def test_event_handlers_cover_builtins():
    run_handlers = {lookup_event_handler(t) for t in RUN_EVENTS}
    step_handlers = {lookup_event_handler(t) for t in STEP_EVENTS}
    approval_handlers = {lookup_event_handler(t) for t in APPROVAL_EVENTS}
    assert len(run_handlers) == 1
    assert len(step_handlers) == 1
    assert len(approval_handlers) == 1
    assert len(run_handlers | step_handlers | approval_handlers) == 3


def test_event_handler_lookup_accepts_plain_strings():
    assert lookup_event_handler("run_created") is lookup_event_handler(EventType.RUN_CREATED)


def test_event_handler_rejects_unknown_type():
    with pytest.raises(EngineError) as info:
        lookup_event_handler("unknown")
    assert "unsupported event type" in str(info.value)
    assert info.value.code == ErrorCode.REPLAY


@pytest.mark.parametrize(
    "summary, status, expected",
    [
        ("  done  ", "running", "done"),
        ("", "failed", "failed"),
        ("   ", "running", "running"),
        ("", "", "transition recorded"),
    ],
)
def test_normalize_summary(summary, status, expected):
    assert normalize_summary(summary, status) == expected