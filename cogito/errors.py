"""Error type raised by the workflow runtime."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Category of a runtime failure."""

    PATH = "path"
    GIT = "git"
    LOCK = "lock"
    DIRTY_WORKTREE = "dirty_worktree"
    PERMISSION = "permission"
    STATE = "state"
    EXECUTION = "execution"
    REPLAY = "replay"
    CONFIG = "config"

    def __str__(self) -> str:
        return self.value


class EngineError(Exception):
    """A runtime failure carrying an error code and an optional cause."""

    def __init__(self, code: ErrorCode, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"runtime {self.code.value} error: {self.message}: {self.cause}"
        return f"runtime {self.code.value} error: {self.message}"

    def __repr__(self) -> str:
        return f"EngineError({self.code.value!r}, {self.message!r}, {self.cause!r})"