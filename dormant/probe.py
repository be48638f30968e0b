"""Canonical server state derived from power state and attached volumes."""

from __future__ import annotations

from loguru import logger

from dormant.constants import PowerState, ServerState
from dormant.model import InstanceDescriptor
from dormant.protocols import ComputePlane

log = logger.bind(component="probe")

_DIRECT: dict[str, ServerState] = {
    PowerState.RUNNING: ServerState.RUNNING,
    PowerState.PENDING: ServerState.PENDING,
    PowerState.STOPPING: ServerState.STOPPING,
    PowerState.TERMINATED: ServerState.TERMINATED,
}


def classify(power_state: str, volume_count: int) -> ServerState:
    """Map a raw power state and volume count to a ServerState.

    A stopped instance without volumes is hibernated. A running instance
    without volumes only happens under external interference and is
    reported as UNKNOWN.
    """
    if power_state == PowerState.STOPPED:
        return ServerState.STOPPED if volume_count > 0 else ServerState.HIBERNATED
    if power_state == PowerState.RUNNING and volume_count == 0:
        return ServerState.UNKNOWN
    return _DIRECT.get(power_state, ServerState.UNKNOWN)


class StateProbe:
    """Read-only view of the instance. Safe to call arbitrarily often."""

    def __init__(self, compute: ComputePlane) -> None:
        self._compute = compute

    def probe(self, instance_id: str) -> tuple[ServerState, InstanceDescriptor]:
        """Describe the instance and classify it.

        Raises:
            NotFoundError: The provider reports no such instance.
            UpstreamError: The describe call failed.
        """
        instance = self._compute.describe_instance(instance_id)
        state = classify(instance.power_state, len(instance.volumes))
        if state is ServerState.UNKNOWN:
            log.warning(
                "Instance {id} has power state {power} with {n} volume(s)",
                id=instance_id,
                power=instance.power_state,
                n=len(instance.volumes),
            )
        log.debug("Instance {id} is {state}", id=instance_id, state=state)
        return state, instance
