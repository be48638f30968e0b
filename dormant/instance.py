"""Power transitions for the managed instance."""

from __future__ import annotations

from loguru import logger

from dormant.config import PollingSettings
from dormant.constants import PowerState
from dormant.exceptions import UnexpectedStateError
from dormant.model import InstanceDescriptor
from dormant.poll import PollPolicy, poll_until
from dormant.protocols import ComputePlane

log = logger.bind(component="instance")

# States from which the instance can never reach the target without outside help
_INCOMPATIBLE: dict[str, frozenset[str]] = {
    PowerState.RUNNING: frozenset({PowerState.TERMINATED, PowerState.SHUTTING_DOWN}),
    PowerState.STOPPED: frozenset({PowerState.TERMINATED, PowerState.SHUTTING_DOWN}),
}

# Public IP is only assigned while the instance is heading for or in running
_NO_PUBLIC_IP: frozenset[str] = frozenset({
    PowerState.STOPPING,
    PowerState.STOPPED,
    PowerState.SHUTTING_DOWN,
    PowerState.TERMINATED,
})


class InstanceController:
    def __init__(self, compute: ComputePlane, polling: PollingSettings | None = None) -> None:
        self._compute = compute
        self.polling = polling or PollingSettings()

    def start(self, instance_id: str) -> None:
        log.info("Starting instance {id}", id=instance_id)
        self._compute.start_instance(instance_id)

    def stop(self, instance_id: str) -> None:
        log.info("Stopping instance {id}", id=instance_id)
        self._compute.stop_instance(instance_id)

    def _policy_for(self, target: str) -> PollPolicy:
        if target == PowerState.STOPPED:
            return self.polling.instance_stopped
        return self.polling.instance_running

    def wait_for_power_state(
        self,
        instance_id: str,
        target: PowerState,
        timeout: float | None = None,
    ) -> InstanceDescriptor:
        """Poll until the instance reports ``target``.

        Args:
            timeout: Optional wall-clock cap on top of the configured attempts.

        Raises:
            UnexpectedStateError: The instance entered a state it cannot leave
                towards ``target`` (e.g. terminated while waiting for running).
            PollTimeoutError: ``target`` was not observed within the budget.
        """
        incompatible = _INCOMPATIBLE.get(target, frozenset())

        def _check(instance: InstanceDescriptor) -> None:
            if instance.power_state in incompatible:
                raise UnexpectedStateError(instance_id, instance.power_state, target)

        instance = poll_until(
            lambda: self._compute.describe_instance(instance_id),
            done=lambda i: i.power_state == target,
            check=_check,
            policy=self._policy_for(target),
            what=f"instance {instance_id} {target}",
            timeout=timeout,
        )
        log.info("Instance {id} is {state}", id=instance_id, state=target)
        return instance

    def resolve_public_ip(self, instance_id: str) -> str:
        """Poll until the instance reports a public IPv4 address."""

        def _check(instance: InstanceDescriptor) -> None:
            if instance.power_state in _NO_PUBLIC_IP:
                raise UnexpectedStateError(instance_id, instance.power_state, "public IP")

        instance = poll_until(
            lambda: self._compute.describe_instance(instance_id),
            done=lambda i: bool(i.public_ip),
            check=_check,
            policy=self.polling.public_ip,
            what=f"public IP of {instance_id}",
        )
        assert instance.public_ip is not None
        log.info("Instance {id} has public IP {ip}", id=instance_id, ip=instance.public_ip)
        return instance.public_ip
