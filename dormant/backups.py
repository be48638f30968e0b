"""Backup names, remote script commands, and the cached backup listing."""

from __future__ import annotations

import re
import shlex

from loguru import logger

from dormant.config import ScriptSettings
from dormant.constants import BACKUP_LISTING_LIMIT, BACKUP_NAME_MAX_LENGTH, BACKUPS_CACHE_PARAMETER, LATEST_BACKUP
from dormant.exceptions import ConfigurationError, InvalidBackupNameError
from dormant.model import BackupEntry, CachedBackupList
from dormant.protocols import ParameterStore
from dormant.remote import RemoteCommandExecutor

log = logger.bind(component="backups")

_SAFE_NAME = re.compile(r"[a-zA-Z0-9._-]+")


# =============================================================================
# Names and Commands
# =============================================================================


def sanitize_backup_name(name: str) -> str:
    """Trim and validate a user supplied backup name.

    Only letters, digits, dots, dashes and underscores are accepted, up to
    64 characters, so the name can be placed on a shell command line.

    Raises:
        InvalidBackupNameError: The name is empty, too long or unsafe.
    """
    trimmed = name.strip()
    if not trimmed:
        raise InvalidBackupNameError("Backup name cannot be empty")
    if len(trimmed) > BACKUP_NAME_MAX_LENGTH:
        raise InvalidBackupNameError(
            f"Backup name exceeds maximum length of {BACKUP_NAME_MAX_LENGTH} characters"
        )
    if not _SAFE_NAME.fullmatch(trimmed):
        raise InvalidBackupNameError(
            "Backup name contains invalid characters. "
            "Only alphanumeric, dots, dashes, and underscores are allowed."
        )
    return trimmed


def script_command(script: str, name: str | None = None) -> str:
    """Shell command running ``script`` with an optional backup name argument.

    "latest" (or no name) runs the script without an argument; the remote
    script then picks the newest backup.
    """
    if name is None or name == LATEST_BACKUP:
        return script
    return f"{script} {shlex.quote(name)}"


def readiness_command(service: str) -> str:
    # is-active exits non-zero for anything but "active"; keep the status on stdout
    return f"systemctl is-active {shlex.quote(service)} || true"


def listing_command(scripts: ScriptSettings, limit: int = BACKUP_LISTING_LIMIT) -> str:
    """rclone command printing ``name|size|modtime`` lines, newest first.

    Raises:
        ConfigurationError: The backup remote or root folder is not configured.
    """
    if not scripts.gdrive_remote or not scripts.gdrive_root:
        raise ConfigurationError(
            "Backup listing needs scripts.gdrive_remote and scripts.gdrive_root "
            "(GDRIVE_REMOTE / GDRIVE_ROOT)"
        )
    target = shlex.quote(f"{scripts.gdrive_remote}:{scripts.gdrive_root}/")
    return (
        f"RCLONE_CONFIG={shlex.quote(scripts.rclone_config)} "
        f"rclone lsf {target} --files-only "
        '--format "pst" --separator "|" '
        '--include "*.tar.gz" --include "*.gz" --exclude "*" '
        f"--sort time --reverse | head -n {limit}"
    )


def parse_listing(output: str) -> tuple[BackupEntry, ...]:
    """Parse ``name|size|date`` lines into entries sorted newest first."""
    entries: list[BackupEntry] = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        name, _, rest = line.partition("|")
        size, _, date = rest.partition("|")
        entries.append(BackupEntry(name=name, size=size or "unknown", date=date or "unknown"))
    entries.sort(key=lambda e: e.date, reverse=True)
    return tuple(entries)


# =============================================================================
# Catalog
# =============================================================================


class BackupCatalog:
    """Lists backups on the instance and caches the result in the parameter store."""

    def __init__(
        self,
        store: ParameterStore,
        executor: RemoteCommandExecutor,
        scripts: ScriptSettings | None = None,
        *,
        key: str = BACKUPS_CACHE_PARAMETER,
    ) -> None:
        self._store = store
        self._executor = executor
        self.scripts = scripts or ScriptSettings()
        self.key = key

    def refresh(self, instance_id: str) -> CachedBackupList:
        command = listing_command(self.scripts)
        log.info(
            "Listing backups from {remote}:{root}",
            remote=self.scripts.gdrive_remote,
            root=self.scripts.gdrive_root,
        )
        listing = CachedBackupList(backups=parse_listing(self._executor.execute(instance_id, command)))
        self._store.put(self.key, listing.to_json(), overwrite=True)
        log.info("Cached {n} backups", n=len(listing.backups))
        return listing

    def cached(self) -> CachedBackupList | None:
        """Last cached listing, or None when nothing usable is cached."""
        raw = self._store.get(self.key)
        if raw is None:
            return None
        try:
            return CachedBackupList.from_json(raw)
        except (ValueError, KeyError, TypeError, AttributeError):
            log.warning("Ignoring unreadable backup cache in {key}", key=self.key)
            return None


__all__ = [
    "BackupCatalog",
    "listing_command",
    "parse_listing",
    "readiness_command",
    "sanitize_backup_name",
    "script_command",
]
