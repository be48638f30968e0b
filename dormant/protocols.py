"""Protocols for the externally-owned control planes.

The orchestrator components depend only on these contracts. The boto3 and
HTTP implementations live in dormant.aws and dormant.dns; tests substitute
in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable

from dormant.model import CommandInvocation, InstanceDescriptor, MachineImage, VolumeDescriptor

# =============================================================================
# Compute Control Plane
# =============================================================================


@runtime_checkable
class ComputePlane(Protocol):
    """EC2-style instance and volume operations.

    Implementations raise NotFoundError for missing resources and
    UpstreamError for any other control-plane failure.
    """

    def describe_instance(self, instance_id: str) -> InstanceDescriptor: ...

    def find_instance(self, names: Sequence[str]) -> str | None:
        """Return the id of the first non-terminated instance tagged with one of ``names``."""
        ...

    def start_instance(self, instance_id: str) -> None: ...

    def stop_instance(self, instance_id: str) -> None: ...

    def describe_images(self, owner: str, name: str) -> Sequence[MachineImage]:
        """Available images matching the filter, newest first."""
        ...

    def create_volume(
        self,
        *,
        availability_zone: str,
        snapshot_id: str,
        size_gib: int,
        volume_type: str,
        encrypted: bool,
        tags: Mapping[str, str],
    ) -> str: ...

    def describe_volume(self, volume_id: str) -> VolumeDescriptor: ...

    def attach_volume(self, volume_id: str, instance_id: str, device: str) -> None: ...

    def detach_volume(self, volume_id: str) -> None: ...

    def delete_volume(self, volume_id: str) -> None: ...


# =============================================================================
# Remote Command Channel
# =============================================================================


@runtime_checkable
class CommandChannel(Protocol):
    """Out-of-band shell execution on the instance.

    ``get_invocation`` raises InvocationNotVisible while the channel has not
    registered the invocation yet; that is distinct from a failed status.
    """

    def send_command(self, instance_id: str, command: str) -> str: ...

    def get_invocation(self, command_id: str, instance_id: str) -> CommandInvocation: ...


class InvocationNotVisible(Exception):
    """The command invocation is not visible yet on the remote channel."""


# =============================================================================
# Parameter Store
# =============================================================================


@runtime_checkable
class ParameterStore(Protocol):
    """Shared key-value store holding opaque string values.

    ``put`` with ``overwrite=False`` is a conditional put: it raises
    ParameterExistsError when the key already holds a value.
    ``delete`` raises NotFoundError when the key is absent.
    """

    def get(self, name: str) -> str | None: ...

    def put(self, name: str, value: str, *, overwrite: bool) -> None: ...

    def delete(self, name: str) -> None: ...


# =============================================================================
# DNS and Notifications
# =============================================================================


@runtime_checkable
class DnsUpdater(Protocol):
    """Points the server's A record at a public IP. Idempotent."""

    @property
    def domain(self) -> str | None: ...

    def update(self, ip: str) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    def notify(self, subject: str, body: str) -> None: ...
