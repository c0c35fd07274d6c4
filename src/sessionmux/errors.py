"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ErrorCode(IntEnum):
    SPAWN_FAILED = 1
    NOT_FOUND = 2
    ALREADY_BOUND = 3
    BUSY = 4
    PROCESS_EXITED = 5
    NOT_READY = 6
    VALIDATION_ERROR = 7
    STORE_ERROR = 8
    CONFIG_ERROR = 9
    RUNTIME_ERROR = 10
    INVALID_ARGS = 11


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    NOT_FOUND = 5
    BUSY = 6
    STORE_ERROR = 7


# Errors that end the affected session; everything else is local-recoverable.
SESSION_FATAL_CODES = frozenset({ErrorCode.SPAWN_FAILED, ErrorCode.PROCESS_EXITED})

_EXIT_CODES = {
    ErrorCode.INVALID_ARGS: ExitCode.INVALID_ARGS,
    ErrorCode.VALIDATION_ERROR: ExitCode.INVALID_ARGS,
    ErrorCode.CONFIG_ERROR: ExitCode.CONFIG_ERROR,
    ErrorCode.NOT_FOUND: ExitCode.NOT_FOUND,
    ErrorCode.BUSY: ExitCode.BUSY,
    ErrorCode.STORE_ERROR: ExitCode.STORE_ERROR,
}


@dataclass
class SessionMuxError(Exception):
    message: str
    code: ErrorCode = ErrorCode.RUNTIME_ERROR
    hint: str = ""
    session_id: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message

    @property
    def is_session_fatal(self) -> bool:
        return self.code in SESSION_FATAL_CODES


def exit_code_for(code: ErrorCode) -> ExitCode:
    return _EXIT_CODES.get(code, ExitCode.RUNTIME_ERROR)


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
