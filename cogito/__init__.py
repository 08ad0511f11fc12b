"""Event-sourced workflow run state machine with replay and checkpoints."""

__version__ = "0.1.0"

__all__ = ["errors", "states", "model", "snapshot", "machine", "recorder", "engine"]