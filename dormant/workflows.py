"""Lifecycle workflows: Start, Stop, Hibernate, Resume, Backup and Restore.

Each workflow is an ordered list of named steps run under the action lock:

    1. Resolve the instance and probe its state (read-only)
    2. Reject invalid preconditions before touching the lock
    3. Acquire the lock and probe again
    4. Run the steps in order; the first failure aborts the run
    5. Release the lock on every exit path

No step is compensated on failure. The error is logged, annotated with the
steps that already completed, and returned as a Failure result.

Example:
    from dormant.config import load_settings
    from dormant.workflows import Orchestrator

    orchestrator = Orchestrator.from_settings(load_settings())
    result = orchestrator.start()
    if not result.success:
        print(result.kind, result.message)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from dormant.aws import AwsClients, Ec2ComputePlane, SesNotifier, SsmCommandChannel, SsmParameterStore
from dormant.backups import BackupCatalog, readiness_command, sanitize_backup_name, script_command
from dormant.config import Settings
from dormant.constants import LATEST_BACKUP, Action, PowerState, ServerState
from dormant.dns import CloudflareDnsUpdater
from dormant.exceptions import (
    CommandFailedError,
    ConfigurationError,
    DormantError,
    InvalidStateError,
    PollTimeoutError,
    RestoreAfterResumeError,
    UpstreamError,
)
from dormant.instance import InstanceController
from dormant.lock import ActionLock
from dormant.model import InstanceDescriptor, ServerStatus
from dormant.notifications import NullNotifier, SafeNotifier
from dormant.probe import StateProbe
from dormant.protocols import CommandChannel, ComputePlane, DnsUpdater, Notifier, ParameterStore
from dormant.remote import RemoteCommandExecutor
from dormant.result import Failure, Result, Success
from dormant.volumes import VolumeLifecycleManager

log = logger.bind(component="workflows")

_STARTABLE = frozenset({ServerState.STOPPED, ServerState.HIBERNATED})
_RUNNING = frozenset({ServerState.RUNNING})


# =============================================================================
# Steps
# =============================================================================


@dataclass(slots=True)
class WorkflowRun:
    """Mutable state threaded through the steps of one workflow invocation."""

    action: Action
    instance: InstanceDescriptor
    public_ip: str | None = None
    output: str = ""
    completed: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def instance_id(self) -> str:
        return self.instance.id


@dataclass(frozen=True, slots=True)
class Step:
    """One named unit of a workflow.

    Args:
        name: Reported in logs and in Failure.completed_steps.
        run: Performs the step, recording results on the WorkflowRun.
        best_effort: A DormantError from this step is logged and recorded in
            ``WorkflowRun.skipped`` instead of failing the workflow.
    """

    name: str
    run: Callable[[WorkflowRun], None]
    best_effort: bool = False


def run_steps(run: WorkflowRun, steps: Sequence[Step]) -> WorkflowRun:
    """Run ``steps`` in order, stopping at the first required step that fails.

    The raised DormantError carries the failed step and the names of the
    steps completed before it.
    """
    total = len(steps)
    for i, step in enumerate(steps, 1):
        log.info("{action} step {i}/{n}: {name}", action=run.action, i=i, n=total, name=step.name)
        try:
            step.run(run)
        except DormantError as e:
            if step.best_effort:
                log.warning("{action}: {name} failed, continuing: {err}", action=run.action, name=step.name, err=e)
                run.skipped[step.name] = str(e)
                continue
            e.completed_steps = tuple(run.completed)
            e.failed_step = step.name
            log.error(
                "{action} failed at step {i}/{n} ({name}) [{kind}]: {err}",
                action=run.action,
                i=i,
                n=total,
                name=step.name,
                kind=e.kind,
                err=e,
            )
            raise
        run.completed.append(step.name)
    return run


def _require(
    action: Action,
    state: ServerState,
    allowed: frozenset[ServerState],
    rejections: Mapping[ServerState, str] | None = None,
) -> None:
    if state in allowed:
        return
    if rejections and state in rejections:
        raise InvalidStateError(rejections[state])
    raise InvalidStateError(f"Cannot {action} server in state: {state}")


# =============================================================================
# Orchestrator
# =============================================================================


class Orchestrator:
    """Entry points for every lifecycle workflow.

    Every public method returns a Result; a DormantError never escapes. Any
    other exception is a bug and propagates.

    Args:
        compute: Instance and volume control plane.
        commands: Remote command channel.
        parameters: Parameter store holding the action lock and backup cache.
        dns: Updater for the server's A record. None skips DNS updates.
        notifier: Operator notifications. None disables them.
        settings: Names, scripts and polling budgets.
    """

    def __init__(
        self,
        compute: ComputePlane,
        commands: CommandChannel,
        parameters: ParameterStore,
        *,
        dns: DnsUpdater | None = None,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = s = settings or Settings()
        self._compute = compute
        self.probe = StateProbe(compute)
        self.lock = ActionLock(parameters, key=s.parameters.action_lock, stale_after=s.lock.stale_after)
        self.executor = RemoteCommandExecutor(commands, s.polling.command)
        self.volumes = VolumeLifecycleManager(compute, s.volume, s.polling)
        self.instances = InstanceController(compute, s.polling)
        self.catalog = BackupCatalog(parameters, self.executor, s.scripts, key=s.parameters.backups_cache)
        self.dns = dns
        self.notifier = SafeNotifier(notifier or NullNotifier())

    @classmethod
    def from_settings(cls, settings: Settings, clients: AwsClients | None = None) -> Orchestrator:
        """Wire the boto3, Cloudflare and SES adapters from settings."""
        clients = clients or AwsClients(settings.aws.region)
        d = settings.dns
        dns = CloudflareDnsUpdater(d) if any((d.zone_id, d.record_id, d.domain, d.api_token)) else None
        n = settings.notifications
        notifier = SesNotifier(clients.ses, n.sender, n.recipient) if n.sender and n.recipient else None
        return cls(
            Ec2ComputePlane(clients.ec2),
            SsmCommandChannel(clients.ssm),
            SsmParameterStore(clients.ssm),
            dns=dns,
            notifier=notifier,
            settings=settings,
        )

    @property
    def domain(self) -> str | None:
        return self.dns.domain if self.dns is not None else None

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def resolve_instance_id(self, instance_id: str | None = None) -> str:
        """Explicit id, then configured id, then discovery by Name tag."""
        if instance_id:
            return instance_id
        if self.settings.aws.instance_id:
            return self.settings.aws.instance_id

        names = self.settings.aws.instance_names
        found = self._compute.find_instance(names)
        if found is None:
            raise ConfigurationError(
                f"No instance id configured and no running or stopped instance "
                f"tagged Name={' or '.join(names)} in {self.settings.aws.region}"
            )
        log.debug("Discovered instance {id}", id=found)
        return found

    def _respond(self, action: str, body: Callable[[], dict[str, Any]]) -> Result:
        try:
            data = body()
        except DormantError as e:
            log.error("{action} failed [{kind}]: {err}", action=action, kind=e.kind, err=e)
            return Failure.from_error(e)
        log.info("{action} succeeded", action=action)
        return Success(data)

    def _run_locked(
        self,
        action: Action,
        instance_id: str,
        allowed: frozenset[ServerState],
        steps: Sequence[Step],
    ) -> WorkflowRun:
        try:
            with self.lock.hold(action):
                # Another workflow may have finished between the first probe and acquisition
                state, instance = self.probe.probe(instance_id)
                _require(action, state, allowed)
                return run_steps(WorkflowRun(action=action, instance=instance), steps)
        except DormantError as e:
            if e.failed_step is not None:
                self.notifier.failed(action)
            raise

    def _check_service_ready(self, instance_id: str) -> None:
        service = self.settings.scripts.service
        if not service:
            return
        try:
            status = self.executor.execute(instance_id, readiness_command(service)).strip()
        except (CommandFailedError, PollTimeoutError, UpstreamError) as e:
            log.warning("Could not check {service} status, proceeding: {err}", service=service, err=e)
            return
        if status != "active":
            raise InvalidStateError(
                f"The {service} service is still initializing ({status or 'no status'}). "
                "Please wait a moment and try again."
            )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _recover_volume(self, run: WorkflowRun) -> None:
        volume_id = self.volumes.recover(run.instance)
        if volume_id is not None:
            run.outputs["volume_id"] = volume_id

    def _start_instance(self, run: WorkflowRun) -> None:
        self.instances.start(run.instance_id)

    def _stop_instance(self, run: WorkflowRun) -> None:
        self.instances.stop(run.instance_id)

    def _wait_running(self, run: WorkflowRun) -> None:
        run.instance = self.instances.wait_for_power_state(run.instance_id, PowerState.RUNNING)

    def _wait_stopped(self, run: WorkflowRun) -> None:
        run.instance = self.instances.wait_for_power_state(run.instance_id, PowerState.STOPPED)

    def _resolve_public_ip(self, run: WorkflowRun) -> None:
        run.public_ip = self.instances.resolve_public_ip(run.instance_id)

    def _update_dns(self, run: WorkflowRun) -> None:
        if self.dns is None:
            log.warning("No DNS updater configured, not publishing {ip}", ip=run.public_ip)
            return
        if not run.public_ip:
            run.public_ip = self.instances.resolve_public_ip(run.instance_id)
        self.dns.update(run.public_ip)

    def _delete_volumes(self, run: WorkflowRun) -> None:
        run.outputs["deleted_volumes"] = list(self.volumes.teardown(run.instance))

    def _script(self, script: str, name: str | None = None) -> Callable[[WorkflowRun], None]:
        def _execute(run: WorkflowRun) -> None:
            run.output = self.executor.execute(run.instance_id, script_command(script, name))

        return _execute

    def _restore_after_resume(self, name: str) -> Callable[[WorkflowRun], None]:
        restore = self._script(self.settings.scripts.restore, name)

        def _execute(run: WorkflowRun) -> None:
            try:
                restore(run)
            except DormantError as e:
                raise RestoreAfterResumeError(e) from e

        return _execute

    def _refresh_backups(self, run: WorkflowRun) -> None:
        run.outputs["backup_count"] = len(self.catalog.refresh(run.instance_id).backups)

    # -------------------------------------------------------------------------
    # Start / Stop
    # -------------------------------------------------------------------------

    def start(self, instance_id: str | None = None) -> Result:
        """Recover the root volume if needed, start, and publish the new IP."""
        return self._respond(Action.START, lambda: self._start(instance_id))

    def _start(self, instance_id: str | None) -> dict[str, Any]:
        iid = self.resolve_instance_id(instance_id)
        state, _ = self.probe.probe(iid)
        _require(Action.START, state, _STARTABLE, {ServerState.RUNNING: "Server is already running"})

        run = self._run_locked(Action.START, iid, _STARTABLE, [
            Step("recover volume", self._recover_volume),
            Step("start instance", self._start_instance),
            Step("wait for running", self._wait_running),
            Step("resolve public ip", self._resolve_public_ip),
            Step("update dns", self._update_dns),
        ])
        self.notifier.completed(Action.START, f"Server started, DNS updated to {run.public_ip}")
        return {"instance_id": iid, "public_ip": run.public_ip, "domain": self.domain, **run.outputs}

    def stop(self, instance_id: str | None = None) -> Result:
        return self._respond(Action.STOP, lambda: self._stop(instance_id))

    def _stop(self, instance_id: str | None) -> dict[str, Any]:
        iid = self.resolve_instance_id(instance_id)
        state, _ = self.probe.probe(iid)
        already = "Server is already stopped"
        _require(Action.STOP, state, _RUNNING, {ServerState.STOPPED: already, ServerState.HIBERNATED: already})

        self._run_locked(Action.STOP, iid, _RUNNING, [Step("stop instance", self._stop_instance)])
        self.notifier.completed(Action.STOP, f"Stop requested for instance {iid}")
        return {"instance_id": iid}

    # -------------------------------------------------------------------------
    # Hibernate / Resume
    # -------------------------------------------------------------------------

    def hibernate(self, instance_id: str | None = None) -> Result:
        """Back up, stop, then delete the root volume."""
        return self._respond(Action.HIBERNATE, lambda: self._hibernate(instance_id))

    def _hibernate(self, instance_id: str | None) -> dict[str, Any]:
        iid = self.resolve_instance_id(instance_id)
        state, _ = self.probe.probe(iid)
        if state is ServerState.HIBERNATED:
            log.info("Instance {id} is already hibernated", id=iid)
            return {"instance_id": iid, "backup_output": "Skipped - already hibernating"}
        _require(Action.HIBERNATE, state, _RUNNING)

        run = self._run_locked(Action.HIBERNATE, iid, _RUNNING, [
            Step("run backup", self._script(self.settings.scripts.backup)),
            Step("stop instance", self._stop_instance),
            Step("wait for stopped", self._wait_stopped),
            Step("delete volumes", self._delete_volumes),
        ])
        self.notifier.completed(
            Action.HIBERNATE,
            f"Hibernation completed successfully.\n\nBackup output:\n{run.output}",
        )
        return {"instance_id": iid, "backup_output": run.output, **run.outputs}

    def resume(self, instance_id: str | None = None, backup_name: str | None = None) -> Result:
        """Recreate the root volume, start, publish the IP, and optionally restore.

        A failed restore fails the workflow with every resume step reported
        as completed; the server is left running.
        """
        return self._respond(Action.RESUME, lambda: self._resume(instance_id, backup_name))

    def _resume(self, instance_id: str | None, backup_name: str | None) -> dict[str, Any]:
        name = sanitize_backup_name(backup_name) if backup_name is not None else None
        iid = self.resolve_instance_id(instance_id)
        state, instance = self.probe.probe(iid)
        if state is ServerState.RUNNING:
            log.info("Instance {id} is already running", id=iid)
            return {
                "instance_id": iid,
                "public_ip": instance.public_ip,
                "domain": self.domain,
                "restore": None,
                "message": "Server is already running",
            }
        _require(Action.RESUME, state, _STARTABLE)

        steps = [
            Step("recover volume", self._recover_volume),
            Step("start instance", self._start_instance),
            Step("wait for running", self._wait_running),
            Step("resolve public ip", self._resolve_public_ip),
            Step("update dns", self._update_dns),
        ]
        if name is not None:
            steps.append(Step("run restore", self._restore_after_resume(name)))

        run = self._run_locked(Action.RESUME, iid, _STARTABLE, steps)

        restore: dict[str, Any] | None = None
        message = f"Resumed, DNS: {run.public_ip}"
        if name is not None:
            restore = {"backup_name": name, "success": True, "output": run.output}
            message += f"\nRestored backup {name}"
        self.notifier.completed(Action.RESUME, message)
        return {
            "instance_id": iid,
            "public_ip": run.public_ip,
            "domain": self.domain,
            "restore": restore,
            **run.outputs,
        }

    # -------------------------------------------------------------------------
    # Backup / Restore
    # -------------------------------------------------------------------------

    def backup(self, name: str | None = None, instance_id: str | None = None) -> Result:
        """Run the backup script, then refresh the cached backup listing."""
        return self._respond(Action.BACKUP, lambda: self._backup(name, instance_id))

    def _backup(self, name: str | None, instance_id: str | None) -> dict[str, Any]:
        backup_name = sanitize_backup_name(name) if name is not None else None
        iid = self.resolve_instance_id(instance_id)
        state, _ = self.probe.probe(iid)
        _require(Action.BACKUP, state, _RUNNING)
        self._check_service_ready(iid)

        run = self._run_locked(Action.BACKUP, iid, _RUNNING, [
            Step("run backup", self._script(self.settings.scripts.backup, backup_name)),
            Step("refresh backup list", self._refresh_backups, best_effort=True),
        ])
        self.notifier.completed(Action.BACKUP, f"Backup completed successfully.\n\n{run.output}")
        return {
            "instance_id": iid,
            "backup_name": backup_name,
            "output": run.output,
            "backups_refreshed": "refresh backup list" not in run.skipped,
            **run.outputs,
        }

    def restore(
        self,
        name: str | None = None,
        instance_id: str | None = None,
        *,
        update_dns: bool = False,
    ) -> Result:
        """Run the restore script for ``name`` (default: the latest backup)."""
        return self._respond(Action.RESTORE, lambda: self._restore(name, instance_id, update_dns))

    def _restore(self, name: str | None, instance_id: str | None, update_dns: bool) -> dict[str, Any]:
        backup_name = sanitize_backup_name(name) if name is not None else LATEST_BACKUP
        iid = self.resolve_instance_id(instance_id)
        state, _ = self.probe.probe(iid)
        _require(Action.RESTORE, state, _RUNNING)
        self._check_service_ready(iid)

        steps = [Step("run restore", self._script(self.settings.scripts.restore, backup_name))]
        if update_dns:
            steps += [
                Step("resolve public ip", self._resolve_public_ip),
                Step("update dns", self._update_dns),
            ]

        run = self._run_locked(Action.RESTORE, iid, _RUNNING, steps)
        self.notifier.completed(Action.RESTORE, f"Restore from {backup_name} completed.\n\n{run.output}")
        return {
            "instance_id": iid,
            "backup_name": backup_name,
            "output": run.output,
            "public_ip": run.public_ip,
        }

    # -------------------------------------------------------------------------
    # Read-only and operator entry points
    # -------------------------------------------------------------------------

    def status(self, instance_id: str | None = None) -> Result:
        def _status() -> dict[str, Any]:
            iid = self.resolve_instance_id(instance_id)
            state, instance = self.probe.probe(iid)
            held = self.lock.current()
            return ServerStatus(
                state=state,
                instance_id=iid,
                public_ip=instance.public_ip,
                has_volume=instance.has_volume,
                action=held.action if held else None,
            ).to_dict() | {"domain": self.domain}

        return self._respond("status", _status)

    def refresh_backups(self, instance_id: str | None = None) -> Result:
        """List backups on the running instance and cache them.

        Not serialized by the action lock; the listing is read-only.
        """

        def _refresh() -> dict[str, Any]:
            iid = self.resolve_instance_id(instance_id)
            state, _ = self.probe.probe(iid)
            if state is not ServerState.RUNNING:
                raise InvalidStateError(f"Backups can only be listed while the server is running (currently {state})")
            listing = self.catalog.refresh(iid)
            return {
                "backups": [b.to_dict() for b in listing.backups],
                "cached_at": listing.cached_at_ms,
            }

        return self._respond("refresh-backups", _refresh)

    def list_backups(self) -> Result:
        def _list() -> dict[str, Any]:
            listing = self.catalog.cached()
            if listing is None:
                return {"backups": [], "cached_at": None}
            return {
                "backups": [b.to_dict() for b in listing.backups],
                "cached_at": listing.cached_at_ms,
            }

        return self._respond("list-backups", _list)

    def clear_lock(self) -> Result:
        """Release the action lock regardless of holder.

        Operator escape hatch for a workflow that crashed while holding it.
        """

        def _clear() -> dict[str, Any]:
            held = self.lock.current()
            if held is not None:
                log.warning("Clearing lock held by {action}", action=held.action)
            self.lock.release()
            return {"cleared": held.action if held else None}

        return self._respond("unlock", _clear)


__all__ = [
    "Orchestrator",
    "Step",
    "WorkflowRun",
    "run_steps",
]
