"""Result union returned by every workflow entry point."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from dormant.exceptions import DormantError, ErrorKind


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _wire(value: Any) -> Any:
    """Convert nested data to the camelCase JSON wire form."""
    match value:
        case dict():
            return {_camel(str(k)): _wire(v) for k, v in value.items()}
        case list() | tuple():
            return [_wire(v) for v in value]
        case _:
            return value


@dataclass(frozen=True, slots=True)
class Success:
    """Workflow result data. Keys are snake_case here and camelCase in ``to_dict()``."""

    data: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return True

    @property
    def status_code(self) -> int:
        return 200

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "data": _wire(self.data)}


@dataclass(frozen=True, slots=True)
class Failure:
    kind: ErrorKind
    message: str
    completed_steps: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return False

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @classmethod
    def from_error(cls, error: DormantError) -> Failure:
        message = str(error)
        if error.failed_step and error.completed_steps:
            done = ", ".join(error.completed_steps)
            message = f"{error.failed_step} failed after {done}: {message}"
        return cls(kind=error.kind, message=message, completed_steps=error.completed_steps)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "errorKind": str(self.kind),
            "message": self.message,
        }
        if self.completed_steps:
            payload["completedSteps"] = list(self.completed_steps)
        return payload


type Result = Success | Failure
