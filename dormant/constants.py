"""Centralized constants and enums for Dormant.

All magic strings, parameter names, and default identifiers are defined here
to keep the control-plane adapters and the workflows in agreement.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# EC2 Instance States
# =============================================================================


class PowerState(StrEnum):
    """Raw EC2 instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


class ServerState(StrEnum):
    """Canonical lifecycle state derived from power state and volume count."""

    RUNNING = "running"
    STOPPED = "stopped"
    HIBERNATED = "hibernated"
    PENDING = "pending"
    STOPPING = "stopping"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"


# =============================================================================
# EBS Volume States
# =============================================================================


class VolumeState(StrEnum):
    """EBS volume state names."""

    CREATING = "creating"
    AVAILABLE = "available"
    IN_USE = "in-use"
    DELETING = "deleting"
    DELETED = "deleted"
    ERROR = "error"


class AttachmentState(StrEnum):
    """EBS volume attachment state names."""

    ATTACHING = "attaching"
    ATTACHED = "attached"
    DETACHING = "detaching"
    DETACHED = "detached"
    BUSY = "busy"


# =============================================================================
# SSM Command Status
# =============================================================================


class CommandStatus(StrEnum):
    """SSM command invocation status, collapsed to what the executor needs."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# Raw SSM statuses that end an invocation without success
SSM_FAILURE_STATUSES: Final = frozenset({"Failed", "TimedOut", "Cancelled", "Cancelling"})
SSM_SUCCESS_STATUS: Final = "Success"
SSM_DOCUMENT: Final = "AWS-RunShellScript"


# =============================================================================
# Workflow Actions
# =============================================================================


class Action(StrEnum):
    """Names recorded in the action lock while a workflow runs."""

    START = "start"
    STOP = "stop"
    HIBERNATE = "hibernate"
    RESUME = "resume"
    BACKUP = "backup"
    RESTORE = "restore"


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_REGION: Final = "us-east-1"
DEFAULT_INSTANCE_NAMES: Final = ("MinecraftServer", "MinecraftStack/MinecraftServer")

DEFAULT_IMAGE_OWNER: Final = "amazon"
DEFAULT_IMAGE_NAME: Final = "al2023-ami-2023*-arm64"
DEFAULT_VOLUME_SIZE_GIB: Final = 8
DEFAULT_VOLUME_TYPE: Final = "gp3"
DEFAULT_DEVICE: Final = "/dev/xvda"
DEFAULT_VOLUME_TAGS: Final = (("Name", "MinecraftServerVolume"), ("Backup", "weekly"))

DEFAULT_BACKUP_SCRIPT: Final = "/usr/local/bin/mc-backup.sh"
DEFAULT_RESTORE_SCRIPT: Final = "/usr/local/bin/mc-restore.sh"
DEFAULT_SERVICE: Final = "minecraft"
DEFAULT_RCLONE_CONFIG: Final = "/opt/setup/rclone/rclone.conf"

ACTION_LOCK_PARAMETER: Final = "/minecraft/server-action"
BACKUPS_CACHE_PARAMETER: Final = "/minecraft/backups-cache"

CLOUDFLARE_API_BASE: Final = "https://api.cloudflare.com/client/v4"
DNS_TTL: Final = 60

LATEST_BACKUP: Final = "latest"
BACKUP_NAME_MAX_LENGTH: Final = 64
BACKUP_LISTING_LIMIT: Final = 200
