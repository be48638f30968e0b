"""EC2 implementation of the compute control plane."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from loguru import logger

from dormant.aws.errors import upstream_errors
from dormant.constants import PowerState
from dormant.exceptions import NotFoundError
from dormant.model import InstanceDescriptor, MachineImage, VolumeDescriptor, VolumeRef

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="ec2")

_DISCOVERABLE_STATES = [
    PowerState.PENDING,
    PowerState.RUNNING,
    PowerState.STOPPING,
    PowerState.STOPPED,
    PowerState.SHUTTING_DOWN,
]


def _parse_instance(raw: dict[str, Any]) -> InstanceDescriptor:
    volumes = tuple(
        VolumeRef(volume_id=m["Ebs"]["VolumeId"], device_name=m.get("DeviceName", ""))
        for m in raw.get("BlockDeviceMappings", [])
        if m.get("Ebs", {}).get("VolumeId")
    )
    return InstanceDescriptor(
        id=raw["InstanceId"],
        power_state=raw.get("State", {}).get("Name", ""),
        public_ip=raw.get("PublicIpAddress") or None,
        volumes=volumes,
        availability_zone=raw.get("Placement", {}).get("AvailabilityZone"),
    )


def _root_snapshot(raw: dict[str, Any]) -> str | None:
    mappings = raw.get("BlockDeviceMappings", [])
    root = raw.get("RootDeviceName")
    ordered = sorted(mappings, key=lambda m: m.get("DeviceName") != root)
    for mapping in ordered:
        snapshot = mapping.get("Ebs", {}).get("SnapshotId")
        if snapshot:
            return snapshot
    return None


class Ec2ComputePlane:
    """ComputePlane backed by a boto3 EC2 client."""

    def __init__(self, ec2: EC2Client) -> None:
        self._ec2 = ec2

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    def describe_instance(self, instance_id: str) -> InstanceDescriptor:
        with upstream_errors(f"describe instance {instance_id}"):
            response = self._ec2.describe_instances(InstanceIds=[instance_id])

        for reservation in response.get("Reservations", []):
            for raw in reservation.get("Instances", []):
                return _parse_instance(dict(raw))
        raise NotFoundError(f"Instance {instance_id} not found")

    def find_instance(self, names: Sequence[str]) -> str | None:
        log.info("Discovering instance tagged Name={names}", names=", ".join(names))
        with upstream_errors("discover instance"):
            response = self._ec2.describe_instances(
                Filters=[
                    {"Name": "tag:Name", "Values": list(names)},
                    {"Name": "instance-state-name", "Values": [str(s) for s in _DISCOVERABLE_STATES]},
                ]
            )

        for reservation in response.get("Reservations", []):
            for raw in reservation.get("Instances", []):
                log.info(
                    "Discovered instance {id} ({state})",
                    id=raw["InstanceId"],
                    state=raw.get("State", {}).get("Name"),
                )
                return raw["InstanceId"]
        return None

    def start_instance(self, instance_id: str) -> None:
        log.info("Sending start for {id}", id=instance_id)
        with upstream_errors(f"start instance {instance_id}"):
            self._ec2.start_instances(InstanceIds=[instance_id])

    def stop_instance(self, instance_id: str) -> None:
        log.info("Sending stop for {id}", id=instance_id)
        with upstream_errors(f"stop instance {instance_id}"):
            self._ec2.stop_instances(InstanceIds=[instance_id])

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def describe_images(self, owner: str, name: str) -> Sequence[MachineImage]:
        with upstream_errors(f"describe images {name}"):
            response = self._ec2.describe_images(
                Owners=[owner],
                Filters=[
                    {"Name": "name", "Values": [name]},
                    {"Name": "state", "Values": ["available"]},
                ],
            )

        images = [
            MachineImage(
                id=raw["ImageId"],
                created_at=raw.get("CreationDate", ""),
                snapshot_id=_root_snapshot(dict(raw)),
            )
            for raw in response.get("Images", [])
        ]
        images.sort(key=lambda img: img.created_at, reverse=True)
        return images

    # -------------------------------------------------------------------------
    # Volumes
    # -------------------------------------------------------------------------

    def create_volume(
        self,
        *,
        availability_zone: str,
        snapshot_id: str,
        size_gib: int,
        volume_type: str,
        encrypted: bool,
        tags: Mapping[str, str],
    ) -> str:
        args: dict[str, Any] = {
            "AvailabilityZone": availability_zone,
            "SnapshotId": snapshot_id,
            "Size": size_gib,
            "VolumeType": volume_type,
            "Encrypted": encrypted,
        }
        if tags:
            args["TagSpecifications"] = [
                {
                    "ResourceType": "volume",
                    "Tags": [{"Key": k, "Value": v} for k, v in tags.items()],
                }
            ]

        with upstream_errors(f"create volume from {snapshot_id}"):
            response = self._ec2.create_volume(**args)
        return response["VolumeId"]

    def describe_volume(self, volume_id: str) -> VolumeDescriptor:
        with upstream_errors(f"describe volume {volume_id}"):
            response = self._ec2.describe_volumes(VolumeIds=[volume_id])

        volumes = response.get("Volumes", [])
        if not volumes:
            raise NotFoundError(f"Volume {volume_id} not found")

        raw = volumes[0]
        attachments = raw.get("Attachments", [])
        return VolumeDescriptor(
            id=raw["VolumeId"],
            state=raw.get("State", ""),
            attachment_state=attachments[0].get("State") if attachments else None,
        )

    def attach_volume(self, volume_id: str, instance_id: str, device: str) -> None:
        with upstream_errors(f"attach volume {volume_id}"):
            self._ec2.attach_volume(VolumeId=volume_id, InstanceId=instance_id, Device=device)

    def detach_volume(self, volume_id: str) -> None:
        with upstream_errors(f"detach volume {volume_id}"):
            self._ec2.detach_volume(VolumeId=volume_id)

    def delete_volume(self, volume_id: str) -> None:
        with upstream_errors(f"delete volume {volume_id}"):
            self._ec2.delete_volume(VolumeId=volume_id)
