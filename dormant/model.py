"""Immutable records exchanged between the adapters and the workflows.

The orchestrator only reads InstanceDescriptor and VolumeDescriptor; they are
owned by the compute control plane and rebuilt on every describe call.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any

from dormant.constants import AttachmentState, CommandStatus, ServerState, VolumeState

# =============================================================================
# Compute
# =============================================================================


@dataclass(frozen=True, slots=True)
class VolumeRef:
    """Volume as reported on the instance's block device mappings."""

    volume_id: str
    device_name: str


@dataclass(frozen=True, slots=True)
class InstanceDescriptor:
    """Snapshot of an EC2 instance as returned by describe_instances."""

    id: str
    power_state: str
    public_ip: str | None = None
    volumes: tuple[VolumeRef, ...] = ()
    availability_zone: str | None = None

    @property
    def has_volume(self) -> bool:
        return len(self.volumes) > 0


@dataclass(frozen=True, slots=True)
class VolumeDescriptor:
    """Richer view of a volume fetched from the storage control plane."""

    id: str
    state: VolumeState | str
    attachment_state: AttachmentState | str | None = None

    @property
    def detached(self) -> bool:
        return self.attachment_state in (None, AttachmentState.DETACHED)


@dataclass(frozen=True, slots=True)
class MachineImage:
    """Machine image with the snapshot backing its root device."""

    id: str
    created_at: str
    snapshot_id: str | None = None


# =============================================================================
# Remote Commands
# =============================================================================


@dataclass(frozen=True, slots=True)
class CommandInvocation:
    """State of a dispatched remote command."""

    command_id: str
    status: CommandStatus
    stdout: str = ""
    stderr: str = ""

    @property
    def terminal(self) -> bool:
        return self.status is not CommandStatus.PENDING


# =============================================================================
# Action Lock
# =============================================================================


@dataclass(frozen=True, slots=True)
class ActionLockRecord:
    """Value stored under the action lock parameter."""

    action: str
    acquired_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def age_seconds(self, now: float | None = None) -> float:
        now_ms = (now if now is not None else time.time()) * 1000
        return max(0.0, (now_ms - self.acquired_at_ms) / 1000)

    def to_json(self) -> str:
        return json.dumps({"action": self.action, "timestamp": self.acquired_at_ms})

    @classmethod
    def from_json(cls, raw: str) -> ActionLockRecord | None:
        """Parse a stored record. Malformed values yield None."""
        try:
            data = json.loads(raw)
            return cls(action=str(data["action"]), acquired_at_ms=int(data["timestamp"]))
        except (ValueError, KeyError, TypeError):
            return None


# =============================================================================
# Backups
# =============================================================================


@dataclass(frozen=True, slots=True)
class BackupEntry:
    name: str
    size: str = "unknown"
    date: str = "unknown"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "size": self.size, "date": self.date}


@dataclass(frozen=True, slots=True)
class CachedBackupList:
    """Backup listing cached in the parameter store by the refresh workflow."""

    backups: tuple[BackupEntry, ...]
    cached_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_json(self) -> str:
        return json.dumps({
            "backups": [b.to_dict() for b in self.backups],
            "cachedAt": self.cached_at_ms,
        })

    @classmethod
    def from_json(cls, raw: str) -> CachedBackupList:
        data: dict[str, Any] = json.loads(raw)
        backups = tuple(
            BackupEntry(
                name=str(b["name"]),
                size=str(b.get("size", "unknown")),
                date=str(b.get("date", "unknown")),
            )
            for b in data.get("backups", [])
        )
        return cls(backups=backups, cached_at_ms=int(data.get("cachedAt", 0)))


# =============================================================================
# Status
# =============================================================================


@dataclass(frozen=True, slots=True)
class ServerStatus:
    state: ServerState
    instance_id: str
    public_ip: str | None
    has_volume: bool
    action: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": str(self.state),
            "instance_id": self.instance_id,
            "public_ip": self.public_ip,
            "has_volume": self.has_volume,
            "action": self.action,
        }
