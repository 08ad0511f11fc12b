# cogito

An event-sourced state machine for workflow runs made of dependent steps.

Every change to a run (created, started, step queued, step started, step
succeeded, approval requested, paused, canceled, ...) is recorded as an
`Event` in an event store. The in-memory `Snapshot` is rebuilt by folding those
events, so a run can be inspected, replayed and restored from the same history.
Invalid transitions raise `EngineError` before anything is written.

## Modules

- `cogito.states`: `RunState` and `StepState`, with explicit transition
  tables checked by `ensure_run_transition` and `ensure_step_transition`, and
  `is_valid_run_state` / `is_valid_step_state`.
- `cogito.model`: events (`Event`, `EventType`), checkpoints
  (`Checkpoint`, `StepCheckpoint`) and the compiled workflow
  (`CompiledWorkflow`, `CompiledStep`). When no topological order is given,
  `CompiledWorkflow` derives one and rejects unknown dependencies and cycles.
- `cogito.snapshot`: `Snapshot`, `StepSnapshot`, `Transition`, `ReplayResult`,
  and `checkpoint_from_snapshot` / `snapshot_from_checkpoint`.
- `cogito.machine`: `apply_event` and `replay`, which fold events into a
  snapshot and reject events out of sequence or in an invalid transition order.
- `cogito.recorder`: the `EventStore` protocol, an in-memory
  `MemoryEventStore`, and `EventRecorder`, which checks each event against a
  copy of the snapshot, appends it to the store, applies it and saves a
  checkpoint.
- `cogito.engine`: `Engine`, the run lifecycle (`start`, `pause`, `resume`,
  `cancel`, `ready_step_ids`, `snapshot`, `transitions`). On construction it
  restores state from the store's checkpoint when that is up to date with the
  event log, and otherwise replays the events.
- `cogito.errors`: `EngineError`, carrying an `ErrorCode` and an optional cause.

## Example

```python
from cogito.engine import Engine
from cogito.machine import replay
from cogito.model import CompiledStep, CompiledWorkflow
from cogito.recorder import MemoryEventStore
from cogito.states import RunState

workflow = CompiledWorkflow(
    steps=[
        CompiledStep(id="build"),
        CompiledStep(id="docs"),
        CompiledStep(id="release", needs=("build", "docs")),
    ],
    topological_order=["build", "docs", "release"],
)

store = MemoryEventStore()
engine = Engine("run-1", workflow, store)
engine.start()
print(engine.ready_step_ids())        # ['build', 'docs']

engine.pause("operator pause")
assert engine.snapshot().state is RunState.PAUSED
engine.resume()
engine.cancel()                       # unfinished steps become canceled

result = replay("run-1", workflow, store.read_events())
assert result.transitions == engine.transitions()
```

`Engine.cancel` of a running run first calls the optional `interrupt` hook,
passed to the constructor, with the id and snapshot of each running step.

## Recording step progress

Step transitions are recorded through `EventRecorder`:

```python
from cogito.model import EventType
from cogito.recorder import EventRecorder, MemoryEventStore
from cogito.states import RunState, StepState

recorder = EventRecorder("run-2", workflow, MemoryEventStore())
recorder.ensure_initialized()
recorder.persist_run_transition(EventType.RUN_STARTED, RunState.PENDING, RunState.RUNNING, "run started")
recorder.queue_ready_steps()
recorder.persist_step_transition(
    EventType.STEP_STARTED, "build", StepState.QUEUED, StepState.RUNNING, attempt_id="attempt-1"
)
recorder.persist_step_transition(
    EventType.STEP_SUCCEEDED, "build", StepState.RUNNING, StepState.SUCCEEDED, summary="build ok"
)
```

## What the package does not do

- It does not execute steps: there is no command runner or agent adapter, and
  `Engine` does not start, poll or finish steps itself. Step events are
  recorded by the caller through `EventRecorder`.
- It does not resolve approvals; approval events can be recorded and replayed,
  but there is no approval policy.
- It has no on-disk event store; `MemoryEventStore` keeps everything in memory.
  Any object with the `EventStore` methods can be used instead.
- It does not lock repositories against concurrent runs and has no
  command-line interface.

## Tests

Install with the `test` extra and run `pytest`.