"""Custom exception hierarchy for Dormant.

All dormant-specific exceptions inherit from DormantError, enabling callers
to catch every orchestrator failure with a single except clause. Each error
carries an ErrorKind that the workflow entry points put on the Failure result.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Discriminator reported to callers of a workflow."""

    INVALID_STATE = "InvalidState"
    LOCK_CONFLICT = "LockConflict"
    UPSTREAM = "UpstreamError"
    TIMEOUT = "Timeout"
    COMMAND_FAILED = "CommandFailed"
    NOT_FOUND = "NotFound"
    CONFIGURATION = "ConfigurationError"
    UNEXPECTED_STATE = "UnexpectedState"

    @property
    def status_code(self) -> int:
        match self:
            case ErrorKind.INVALID_STATE:
                return 400
            case ErrorKind.LOCK_CONFLICT:
                return 409
            case ErrorKind.NOT_FOUND:
                return 404
            case _:
                return 500


class DormantError(Exception):
    """Base exception for all Dormant errors."""

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.completed_steps: tuple[str, ...] = ()
        self.failed_step: str | None = None


class InvalidStateError(DormantError):
    """Raised when a workflow precondition is not met."""

    kind = ErrorKind.INVALID_STATE


class InvalidBackupNameError(InvalidStateError):
    """Raised when a backup name fails sanitization."""


class LockConflictError(DormantError):
    """Raised when another workflow holds the action lock."""

    kind = ErrorKind.LOCK_CONFLICT

    def __init__(self, current_action: str, requested: str = "") -> None:
        self.current_action = current_action
        self.requested = requested
        what = f"Cannot start {requested}. " if requested else ""
        super().__init__(f"{what}Another operation is in progress: {current_action}")


class UpstreamError(DormantError):
    """Raised when a control-plane call fails."""

    kind = ErrorKind.UPSTREAM


class PollTimeoutError(DormantError):
    """Raised when a bounded poll exhausts its attempts."""

    kind = ErrorKind.TIMEOUT


class CommandFailedError(DormantError):
    """Raised when a remote command reaches a failed terminal status."""

    kind = ErrorKind.COMMAND_FAILED

    def __init__(self, stderr: str, command_id: str = "") -> None:
        self.stderr = stderr
        self.command_id = command_id
        super().__init__(f"Remote command failed: {stderr}" if stderr else "Remote command failed")


class RestoreAfterResumeError(DormantError):
    """Raised when the server resumed but the requested restore failed.

    Keeps the kind of the underlying failure.
    """

    def __init__(self, cause: DormantError) -> None:
        self.cause = cause
        self.kind = cause.kind
        super().__init__(f"Server resumed but restore failed: {cause}")


class NotFoundError(DormantError):
    """Raised when an instance, volume, image or parameter is missing."""

    kind = ErrorKind.NOT_FOUND


class ConfigurationError(DormantError):
    """Raised for missing identifiers or credentials. Never retried."""

    kind = ErrorKind.CONFIGURATION


class UnexpectedStateError(DormantError):
    """Raised when a waited-for resource enters an incompatible state."""

    kind = ErrorKind.UNEXPECTED_STATE

    def __init__(self, resource_id: str, state: str, expected: str) -> None:
        self.resource_id = resource_id
        self.state = state
        self.expected = expected
        super().__init__(
            f"{resource_id} entered unexpected state {state} while waiting for {expected}"
        )


class ParameterExistsError(DormantError):
    """Raised when a conditional put finds the parameter already present."""

    kind = ErrorKind.LOCK_CONFLICT

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Parameter {name} already exists")
