"""Operator notifications sent when a workflow completes or fails.

Failure bodies never include error details; those stay in the logs.
"""

from __future__ import annotations

from loguru import logger

from dormant.constants import Action
from dormant.exceptions import DormantError
from dormant.protocols import Notifier

log = logger.bind(component="notifications")

SUBJECT_PREFIX = "Minecraft"

_FAILURE_MESSAGES: dict[str, str] = {
    Action.START: "Server startup failed. Check the logs for details.",
    Action.STOP: "Server stop failed. Check the logs for details.",
    Action.BACKUP: "Backup command failed. Check the logs for details.",
    Action.RESTORE: "Restore command failed. Check the logs for details.",
    Action.HIBERNATE: "Hibernation command failed. Check the logs for details.",
    Action.RESUME: "Resume command failed. Check the logs for details.",
}
_UNKNOWN_FAILURE = "Command execution failed. Check the logs for details."

_COMPLETED_SUBJECTS: dict[str, str] = {
    Action.START: "Server Started",
    Action.STOP: "Server Stopped",
    Action.BACKUP: "Backup Completed",
    Action.RESTORE: "Restore Completed",
    Action.HIBERNATE: "Server Hibernated",
    Action.RESUME: "Server Resumed",
}


def failure_message(action: str) -> str:
    return _FAILURE_MESSAGES.get(action, _UNKNOWN_FAILURE)


def completed_subject(action: str) -> str:
    return f"{SUBJECT_PREFIX} {_COMPLETED_SUBJECTS.get(action, 'Command Completed')}"


def failed_subject(action: str) -> str:
    return f"{SUBJECT_PREFIX} {action.capitalize()} Failed"


class NullNotifier:
    """Notifier used when no sender/recipient is configured."""

    def notify(self, subject: str, body: str) -> None:
        log.debug("Notifications disabled, dropping {subject!r}", subject=subject)


class SafeNotifier:
    """Wraps a Notifier so a delivery failure is logged instead of raised."""

    def __init__(self, inner: Notifier) -> None:
        self._inner = inner

    def notify(self, subject: str, body: str) -> None:
        try:
            self._inner.notify(subject, body)
        except DormantError as e:
            log.warning("Failed to send notification {subject!r}: {err}", subject=subject, err=e)

    def completed(self, action: str, body: str) -> None:
        self.notify(completed_subject(action), body)

    def failed(self, action: str) -> None:
        self.notify(failed_subject(action), failure_message(action))
