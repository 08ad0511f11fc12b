import pytest

from cogito.errors import EngineError, ErrorCode
from cogito.model import (
    Checkpoint,
    CompiledStep,
    CompiledWorkflow,
    Event,
    EventType,
    StepCheckpoint,
)


def dependency_workflow():
    return CompiledWorkflow(
        [
            CompiledStep("build"),
            CompiledStep("docs"),
            CompiledStep("release", needs=["build", "docs"]),
        ]
    )


def test_event_clone_is_independent():
    event = Event(EventType.RUN_CREATED, sequence=1, run_id="run-123", data={"summary": "run created"})
    copy = event.clone()
    assert copy == event
    copy.data["summary"] = "changed"
    assert event.data["summary"] == "run created"


def test_event_clone_replaces_missing_data():
    event = Event(EventType.STEP_QUEUED, data=None)
    assert event.clone().data == {}


def test_topological_order_respects_dependencies():
    compiled = dependency_workflow()
    assert compiled.topological_order == ("build", "docs", "release")


def test_topological_order_follows_needs_over_declaration():
    compiled = CompiledWorkflow(
        [CompiledStep("notify", needs=["review"]), CompiledStep("review")]
    )
    order = compiled.topological_order
    assert order.index("review") < order.index("notify")


def test_step_lookup():
    compiled = dependency_workflow()
    assert compiled.step("release").needs == ("build", "docs")
    assert compiled.has_step("docs") is True
    assert compiled.has_step("missing") is False


def test_unknown_step_raises_config_error():
    with pytest.raises(EngineError) as info:
        dependency_workflow().step("missing")
    assert info.value.code is ErrorCode.CONFIG
    assert "missing" in str(info.value)


def test_duplicate_step_rejected():
    with pytest.raises(ValueError):
        CompiledWorkflow([CompiledStep("a"), CompiledStep("a")])


def test_unknown_dependency_rejected():
    with pytest.raises(ValueError):
        CompiledWorkflow([CompiledStep("a", needs=["ghost"])])


def test_cycle_rejected():
    with pytest.raises(ValueError):
        CompiledWorkflow([CompiledStep("a", needs=["b"]), CompiledStep("b", needs=["a"])])


def test_explicit_order_must_cover_all_steps():
    with pytest.raises(ValueError):
        CompiledWorkflow([CompiledStep("a"), CompiledStep("b")], topological_order=["a"])
    compiled = CompiledWorkflow([CompiledStep("a"), CompiledStep("b")], topological_order=["b", "a"])
    assert compiled.topological_order == ("b", "a")


def test_checkpoint_defaults_are_separate():
    first = Checkpoint(run_id="run-1")
    second = Checkpoint(run_id="run-2")
    first.steps["prepare"] = StepCheckpoint(state="pending")
    assert second.steps == {}
    assert first.steps["prepare"].state == "pending"
    assert first.last_sequence == 0


def test_event_type_values_roundtrip():
    for event_type in EventType:
        assert EventType(event_type.value) is event_type
    assert len(set(EventType)) == 16