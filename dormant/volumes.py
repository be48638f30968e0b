"""Root volume recovery and teardown around hibernation.

Recovery recreates the root volume from the newest matching machine image
snapshot and attaches it; teardown detaches and deletes every attached
volume. Each sub-step is a bounded poll. Neither path compensates for a
partial failure: a created-but-unattached volume or a detached-but-undeleted
volume is left in place and the error propagates.
"""

from __future__ import annotations

from loguru import logger

from dormant.config import PollingSettings, VolumeSettings
from dormant.constants import AttachmentState, VolumeState
from dormant.exceptions import NotFoundError, UnexpectedStateError, UpstreamError
from dormant.model import InstanceDescriptor, VolumeDescriptor
from dormant.poll import poll_until
from dormant.protocols import ComputePlane

log = logger.bind(component="volumes")


def _fail_on_error_state(volume: VolumeDescriptor) -> None:
    if volume.state == VolumeState.ERROR:
        raise UnexpectedStateError(volume.id, str(volume.state), VolumeState.AVAILABLE)


class VolumeLifecycleManager:
    def __init__(
        self,
        compute: ComputePlane,
        volume: VolumeSettings | None = None,
        polling: PollingSettings | None = None,
    ) -> None:
        self._compute = compute
        self.volume = volume or VolumeSettings()
        self.polling = polling or PollingSettings()

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def find_snapshot(self) -> str:
        """Snapshot id backing the newest image matching the configured family."""
        images = self._compute.describe_images(self.volume.image_owner, self.volume.image_name)
        if not images:
            raise NotFoundError(f"No available image matches {self.volume.image_name}")

        newest = images[0]
        if not newest.snapshot_id:
            raise NotFoundError(f"Image {newest.id} has no backing snapshot")

        log.info("Using snapshot {snap} of image {ami}", snap=newest.snapshot_id, ami=newest.id)
        return newest.snapshot_id

    def recover(self, instance: InstanceDescriptor) -> str | None:
        """Create and attach a root volume if the instance has none.

        Returns:
            The new volume id, or None when the instance already has a volume.
        """
        if instance.volumes:
            log.info(
                "Instance {id} already has {n} volume(s), nothing to recover",
                id=instance.id,
                n=len(instance.volumes),
            )
            return None

        if not instance.availability_zone:
            raise UpstreamError(f"Could not determine availability zone for instance {instance.id}")

        snapshot_id = self.find_snapshot()
        volume_id = self._compute.create_volume(
            availability_zone=instance.availability_zone,
            snapshot_id=snapshot_id,
            size_gib=self.volume.size_gib,
            volume_type=self.volume.volume_type,
            encrypted=self.volume.encrypted,
            tags=self.volume.tags,
        )
        log.info("Created volume {vol} in {az}", vol=volume_id, az=instance.availability_zone)

        poll_until(
            lambda: self._compute.describe_volume(volume_id),
            done=lambda v: v.state == VolumeState.AVAILABLE,
            check=_fail_on_error_state,
            policy=self.polling.volume_available,
            what=f"volume {volume_id} available",
        )

        log.info(
            "Attaching {vol} to {id} at {device}",
            vol=volume_id,
            id=instance.id,
            device=self.volume.device,
        )
        self._compute.attach_volume(volume_id, instance.id, self.volume.device)
        poll_until(
            lambda: self._compute.describe_volume(volume_id),
            done=lambda v: v.attachment_state == AttachmentState.ATTACHED,
            policy=self.polling.volume_attached,
            what=f"volume {volume_id} attached",
        )

        log.info("Restored volume {vol} for instance {id}", vol=volume_id, id=instance.id)
        return volume_id

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def detach(self, volume_id: str) -> None:
        log.info("Detaching volume {vol}", vol=volume_id)
        self._compute.detach_volume(volume_id)
        poll_until(
            lambda: self._compute.describe_volume(volume_id),
            done=lambda v: v.detached,
            policy=self.polling.volume_detached,
            what=f"volume {volume_id} detached",
        )

    def teardown(self, instance: InstanceDescriptor) -> tuple[str, ...]:
        """Detach then delete every volume on the instance.

        Stops at the first failure; volumes already deleted stay deleted.

        Returns:
            Ids of the deleted volumes.
        """
        deleted: list[str] = []
        for ref in instance.volumes:
            self.detach(ref.volume_id)
            self._compute.delete_volume(ref.volume_id)
            log.info("Deleted volume {vol}", vol=ref.volume_id)
            deleted.append(ref.volume_id)
        return tuple(deleted)
