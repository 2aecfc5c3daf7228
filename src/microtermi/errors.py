"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    SPAWN_ERROR = 5
    CAPTURE_ERROR = 6
    VALIDATION_ERROR = 7
    SCRIPT_FAILED = 8


@dataclass
class MicrotermiError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


class SpawnError(MicrotermiError):
    """The OS refused to start the process."""

    def __init__(self, message: str, *, hint: str = "") -> None:
        super().__init__(message, ExitCode.SPAWN_ERROR, hint)


class CaptureUnavailable(MicrotermiError):
    """The process started but its output pipes could not be acquired."""

    def __init__(self, message: str, *, hint: str = "") -> None:
        super().__init__(message, ExitCode.CAPTURE_ERROR, hint)


class ValidationError(MicrotermiError):
    def __init__(self, message: str, *, hint: str = "") -> None:
        super().__init__(message, ExitCode.VALIDATION_ERROR, hint)


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
