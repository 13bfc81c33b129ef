"""Taxonomía de errores del motor de comandos."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    UNKNOWN_COMMAND = "unknown_command"
    UNKNOWN_RESOURCE = "unknown_resource"
    MISSING_POSITIONAL_ARGUMENT = "missing_positional_argument"
    UNKNOWN_CONVERSATION = "unknown_conversation"
    NO_PENDING_ACTION = "no_pending_action"
    INVALID_CODE_FORMAT = "invalid_code_format"
    STALE_PENDING_ACTION = "stale_pending_action"
    INVALID_ARGUMENTS = "invalid_arguments"
    REMOTE_EXECUTION_FAILURE = "remote_execution_failure"
    TRANSPORT_FAILURE = "transport_failure"


class CommandError(Exception):
    """Base exception; converted into a failed `DispatchResult` at the boundary."""

    kind: ErrorKind = ErrorKind.INVALID_ARGUMENTS

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class UnknownCommand(CommandError):
    kind = ErrorKind.UNKNOWN_COMMAND


class MissingPositionalArgument(CommandError):
    kind = ErrorKind.MISSING_POSITIONAL_ARGUMENT

    def __init__(self, route_key: str, program_name: str = "fintoc") -> None:
        resource, _, action = route_key.partition(".")
        super().__init__(
            "This command requires an ID argument. "
            f"Usage: {program_name} {resource} {action} <id> [--flags]",
            {"command": route_key},
        )


class InvalidArguments(CommandError):
    kind = ErrorKind.INVALID_ARGUMENTS
