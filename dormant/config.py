"""TOML and environment based configuration.

Loads ~/.dormant/defaults.toml (global) and dormant.toml (project), merges
them, applies a fixed set of environment overrides, and builds the immutable
Settings passed to the Orchestrator.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any

from dormant.constants import (
    ACTION_LOCK_PARAMETER,
    BACKUPS_CACHE_PARAMETER,
    CLOUDFLARE_API_BASE,
    DEFAULT_BACKUP_SCRIPT,
    DEFAULT_DEVICE,
    DEFAULT_IMAGE_NAME,
    DEFAULT_IMAGE_OWNER,
    DEFAULT_INSTANCE_NAMES,
    DEFAULT_RCLONE_CONFIG,
    DEFAULT_REGION,
    DEFAULT_RESTORE_SCRIPT,
    DEFAULT_SERVICE,
    DEFAULT_VOLUME_SIZE_GIB,
    DEFAULT_VOLUME_TAGS,
    DEFAULT_VOLUME_TYPE,
    DNS_TTL,
)
from dormant.exceptions import ConfigurationError
from dormant.poll import PollPolicy

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".dormant" / "defaults.toml"
PROJECT_CONFIG_NAME = "dormant.toml"

# Environment variable -> (section, field)
ENV_OVERRIDES: Mapping[str, tuple[str, str]] = MappingProxyType({
    "AWS_REGION": ("aws", "region"),
    "INSTANCE_ID": ("aws", "instance_id"),
    "CLOUDFLARE_ZONE_ID": ("dns", "zone_id"),
    "CLOUDFLARE_RECORD_ID": ("dns", "record_id"),
    "CLOUDFLARE_MC_DOMAIN": ("dns", "domain"),
    "CLOUDFLARE_API_TOKEN": ("dns", "api_token"),
    "GDRIVE_REMOTE": ("scripts", "gdrive_remote"),
    "GDRIVE_ROOT": ("scripts", "gdrive_root"),
    "NOTIFICATION_EMAIL": ("notifications", "recipient"),
    "VERIFIED_SENDER": ("notifications", "sender"),
})


# =============================================================================
# Sections
# =============================================================================


@dataclass(frozen=True, slots=True)
class AwsSettings:
    """Where the managed instance lives.

    Args:
        region: AWS region of the instance and its volumes.
        instance_id: Fixed instance id. If None, discovered by Name tag.
        instance_names: Name tag values accepted during discovery.
    """

    region: str = DEFAULT_REGION
    instance_id: str | None = None
    instance_names: tuple[str, ...] = DEFAULT_INSTANCE_NAMES


@dataclass(frozen=True, slots=True)
class VolumeSettings:
    """How a replacement root volume is created during recovery."""

    image_owner: str = DEFAULT_IMAGE_OWNER
    image_name: str = DEFAULT_IMAGE_NAME
    size_gib: int = DEFAULT_VOLUME_SIZE_GIB
    volume_type: str = DEFAULT_VOLUME_TYPE
    device: str = DEFAULT_DEVICE
    encrypted: bool = True
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(DEFAULT_VOLUME_TAGS)))


@dataclass(frozen=True, slots=True)
class PollingSettings:
    command: PollPolicy = PollPolicy(interval=2, attempts=60)
    volume_available: PollPolicy = PollPolicy(interval=5, attempts=60)
    volume_attached: PollPolicy = PollPolicy(interval=2, attempts=60)
    volume_detached: PollPolicy = PollPolicy(interval=2, attempts=30)
    instance_running: PollPolicy = PollPolicy(interval=2, attempts=150)
    instance_stopped: PollPolicy = PollPolicy(interval=5, attempts=60)
    public_ip: PollPolicy = PollPolicy(interval=1, attempts=300)


@dataclass(frozen=True, slots=True)
class ScriptSettings:
    """Remote scripts and the backup listing source.

    Args:
        backup: Backup script path; receives an optional backup name.
        restore: Restore script path; receives an optional backup name.
        service: systemd unit that must be active before backup/restore.
            Empty string disables the readiness check.
        rclone_config: rclone config file used for the backup listing.
        gdrive_remote: rclone remote holding backups.
        gdrive_root: Folder under the remote holding backups.
    """

    backup: str = DEFAULT_BACKUP_SCRIPT
    restore: str = DEFAULT_RESTORE_SCRIPT
    service: str = DEFAULT_SERVICE
    rclone_config: str = DEFAULT_RCLONE_CONFIG
    gdrive_remote: str | None = None
    gdrive_root: str | None = None


@dataclass(frozen=True, slots=True)
class ParameterSettings:
    action_lock: str = ACTION_LOCK_PARAMETER
    backups_cache: str = BACKUPS_CACHE_PARAMETER


@dataclass(frozen=True, slots=True)
class LockSettings:
    """Action lock expiry.

    Args:
        stale_after: Seconds after which a held lock for the given action is
            considered abandoned and cleared on the next acquire. Actions not
            listed never expire. Empty by default: a crashed workflow keeps the
            lock until it is cleared manually.
    """

    stale_after: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True, slots=True)
class DnsSettings:
    zone_id: str | None = None
    record_id: str | None = None
    domain: str | None = None
    api_token: str | None = None
    ttl: int = DNS_TTL
    proxied: bool = False
    api_base: str = CLOUDFLARE_API_BASE

    @property
    def configured(self) -> bool:
        return all((self.zone_id, self.record_id, self.domain, self.api_token))


@dataclass(frozen=True, slots=True)
class NotificationSettings:
    sender: str | None = None
    recipient: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.sender and self.recipient)


@dataclass(frozen=True, slots=True)
class Settings:
    """Complete orchestrator configuration. All fields have defaults.

    Example:
        >>> from dormant.config import Settings, AwsSettings
        >>> settings = Settings(aws=AwsSettings(region="eu-west-1", instance_id="i-0abc"))
    """

    aws: AwsSettings = field(default_factory=AwsSettings)
    volume: VolumeSettings = field(default_factory=VolumeSettings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    scripts: ScriptSettings = field(default_factory=ScriptSettings)
    parameters: ParameterSettings = field(default_factory=ParameterSettings)
    lock: LockSettings = field(default_factory=LockSettings)
    dns: DnsSettings = field(default_factory=DnsSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)


# =============================================================================
# Loading
# =============================================================================


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def _apply_env(raw: RawConfig, env: Mapping[str, str]) -> RawConfig:
    result = dict(raw)
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            result[section] = {**result.get(section, {}), key: value}
    return result


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> RawConfig:
    """Read and merge raw configuration.

    ``config_path`` replaces the project file lookup when given.
    """
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = config_path or (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    return _apply_env(merged, os.environ if env is None else env)


def _build_policy(name: str, raw: Any) -> PollPolicy:
    match raw:
        case PollPolicy():
            return raw
        case {"interval": interval, "attempts": attempts}:
            try:
                return PollPolicy(interval=float(interval), attempts=int(attempts))
            except ValueError as e:
                raise ConfigurationError(f"Invalid polling.{name}: {e}") from e
        case _:
            raise ConfigurationError(
                f"polling.{name} must be a table with 'interval' and 'attempts'"
            )


def _build_section[S](cls: type[S], name: str, raw: Any) -> S:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Section [{name}] must be a table")

    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in [{name}]: {', '.join(sorted(unknown))}. "
            f"Valid: {', '.join(sorted(known))}"
        )

    values: dict[str, Any] = {}
    for key, value in raw.items():
        match value:
            case list():
                values[key] = tuple(value)
            case dict() if cls is PollingSettings:
                values[key] = _build_policy(key, value)
            case dict():
                values[key] = MappingProxyType(dict(value))
            case _:
                values[key] = value
    return cls(**values)


def build_settings(raw: RawConfig) -> Settings:
    sections = {
        "aws": AwsSettings,
        "volume": VolumeSettings,
        "polling": PollingSettings,
        "scripts": ScriptSettings,
        "parameters": ParameterSettings,
        "lock": LockSettings,
        "dns": DnsSettings,
        "notifications": NotificationSettings,
    }
    unknown = set(raw) - set(sections)
    if unknown:
        raise ConfigurationError(
            f"Unknown section(s): {', '.join(sorted(unknown))}. Valid: {', '.join(sections)}"
        )
    return Settings(**{
        name: _build_section(cls, name, raw.get(name))
        for name, cls in sections.items()
    })


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    return build_settings(
        load_config(
            project_dir=project_dir,
            global_path=global_path,
            config_path=config_path,
            env=env,
        )
    )
