"""Dormant - lifecycle orchestration for a single cloud game server.

Starts, stops, hibernates and resumes one EC2 instance, runs backups and
restores over SSM, and keeps a Cloudflare A record pointed at it. Hibernation
deletes the root volume; resume recreates it from the newest base image.

Example:

    from dormant import Orchestrator, load_settings

    orchestrator = Orchestrator.from_settings(load_settings())

    result = orchestrator.hibernate()
    result = orchestrator.resume(backup_name="latest")
    print(result.to_dict())
"""

from dormant.config import Settings, load_settings
from dormant.constants import Action, PowerState, ServerState
from dormant.exceptions import (
    CommandFailedError,
    ConfigurationError,
    DormantError,
    ErrorKind,
    InvalidBackupNameError,
    InvalidStateError,
    LockConflictError,
    NotFoundError,
    PollTimeoutError,
    RestoreAfterResumeError,
    UnexpectedStateError,
    UpstreamError,
)
from dormant.instance import InstanceController
from dormant.lock import ActionLock
from dormant.logging import LogConfig, setup_logging, teardown_logging
from dormant.probe import StateProbe, classify
from dormant.remote import RemoteCommandExecutor
from dormant.result import Failure, Result, Success
from dormant.volumes import VolumeLifecycleManager
from dormant.workflows import Orchestrator, Step

__version__ = "0.1.0"

__all__ = [
    # Orchestration
    "Orchestrator",
    "Step",
    "Result",
    "Success",
    "Failure",
    # Components
    "StateProbe",
    "classify",
    "ActionLock",
    "RemoteCommandExecutor",
    "VolumeLifecycleManager",
    "InstanceController",
    # State
    "Action",
    "PowerState",
    "ServerState",
    # Configuration
    "Settings",
    "load_settings",
    "LogConfig",
    "setup_logging",
    "teardown_logging",
    # Errors
    "ErrorKind",
    "DormantError",
    "InvalidStateError",
    "InvalidBackupNameError",
    "LockConflictError",
    "UpstreamError",
    "PollTimeoutError",
    "CommandFailedError",
    "NotFoundError",
    "ConfigurationError",
    "UnexpectedStateError",
    "RestoreAfterResumeError",
]
