"""Remote shell execution on the instance through the command channel."""

from __future__ import annotations

from loguru import logger

from dormant.constants import CommandStatus
from dormant.exceptions import CommandFailedError
from dormant.poll import PollPolicy, poll_until
from dormant.protocols import CommandChannel, InvocationNotVisible

log = logger.bind(component="remote")


class RemoteCommandExecutor:
    """Dispatch a command, then poll its invocation until a terminal status.

    An invocation the channel does not report yet counts as pending. Only an
    explicit failed status or an exhausted attempt budget is an error.
    """

    def __init__(self, channel: CommandChannel, policy: PollPolicy = PollPolicy(interval=2, attempts=60)) -> None:
        self._channel = channel
        self.policy = policy

    def execute(self, instance_id: str, command: str) -> str:
        """Run ``command`` on the instance and return its standard output.

        Raises:
            CommandFailedError: The invocation ended in a failed status.
            PollTimeoutError: No terminal status within the attempt budget.
        """
        log.info("Executing on {id}: {command}", id=instance_id, command=command)
        command_id = self._channel.send_command(instance_id, command)
        log.debug("Command sent with id {cid}", cid=command_id)

        invocation = poll_until(
            lambda: self._channel.get_invocation(command_id, instance_id),
            done=lambda inv: inv.terminal,
            policy=self.policy,
            what=f"command {command_id} on {instance_id}",
            transient=lambda e: isinstance(e, InvocationNotVisible),
        )

        if invocation.status is CommandStatus.FAILED:
            log.error("Command {cid} failed: {stderr}", cid=command_id, stderr=invocation.stderr)
            raise CommandFailedError(invocation.stderr, command_id=command_id)

        log.info("Command {cid} completed", cid=command_id)
        return invocation.stdout
