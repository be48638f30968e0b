from __future__ import annotations

import json

import pytest

from dormant.backups import (
    BackupCatalog,
    listing_command,
    parse_listing,
    readiness_command,
    sanitize_backup_name,
    script_command,
)
from dormant.config import ScriptSettings
from dormant.constants import BACKUPS_CACHE_PARAMETER
from dormant.exceptions import ConfigurationError, ErrorKind, InvalidBackupNameError
from dormant.poll import PollPolicy
from dormant.remote import RemoteCommandExecutor
from tests.fakes import FakeChannel, FakeStore

pytestmark = [pytest.mark.xdist_group("unit")]


class TestSanitizeBackupName:
    @pytest.mark.parametrize("name", ["nightly", "world-2024.06.01", "A_b-C.tar.gz", "x" * 64])
    def test_accepts_safe_names(self, name: str):
        assert sanitize_backup_name(name) == name

    def test_trims_whitespace(self):
        assert sanitize_backup_name("  nightly \n") == "nightly"

    @pytest.mark.parametrize(
        "name",
        ["", "   ", "x" * 65, "a b", "a;b", "$(reboot)", "a/b", "`id`", "name\nrm"],
    )
    def test_rejects_unsafe_names(self, name: str):
        with pytest.raises(InvalidBackupNameError) as exc:
            sanitize_backup_name(name)
        assert exc.value.kind is ErrorKind.INVALID_STATE


class TestCommands:
    def test_script_without_name(self):
        assert script_command("/usr/local/bin/mc-backup.sh") == "/usr/local/bin/mc-backup.sh"

    def test_latest_means_no_argument(self):
        assert script_command("/usr/local/bin/mc-restore.sh", "latest") == "/usr/local/bin/mc-restore.sh"

    def test_named(self):
        assert script_command("/opt/backup.sh", "nightly-2024") == "/opt/backup.sh nightly-2024"

    def test_readiness(self):
        assert readiness_command("minecraft") == "systemctl is-active minecraft || true"

    def test_listing_command(self):
        command = listing_command(ScriptSettings(gdrive_remote="gdrive", gdrive_root="mc-backups"), limit=50)
        assert command.startswith("RCLONE_CONFIG=/opt/setup/rclone/rclone.conf rclone lsf gdrive:mc-backups/")
        assert '--format "pst"' in command
        assert command.endswith("| head -n 50")

    @pytest.mark.parametrize(
        ("remote", "root"),
        [(None, "backups"), ("gdrive", None), (None, None)],
    )
    def test_listing_requires_drive_config(self, remote, root):
        with pytest.raises(ConfigurationError):
            listing_command(ScriptSettings(gdrive_remote=remote, gdrive_root=root))


class TestParseListing:
    def test_sorted_newest_first(self):
        output = (
            "old.tar.gz|100|2024-01-01 00:00:00\n"
            "\n"
            "new.tar.gz|300|2024-06-01 00:00:00\n"
            "mid.tar.gz|200|2024-03-01 00:00:00\n"
        )
        names = [b.name for b in parse_listing(output)]
        assert names == ["new.tar.gz", "mid.tar.gz", "old.tar.gz"]

    def test_missing_fields_are_unknown(self):
        (entry,) = parse_listing("bare.tar.gz\n")
        assert entry.size == "unknown"
        assert entry.date == "unknown"

    def test_empty_output(self):
        assert parse_listing("") == ()


class TestBackupCatalog:
    def _catalog(self, channel: FakeChannel, store: FakeStore) -> BackupCatalog:
        executor = RemoteCommandExecutor(channel, PollPolicy(interval=0, attempts=3))
        return BackupCatalog(store, executor, ScriptSettings(gdrive_remote="gdrive", gdrive_root="backups"))

    def test_refresh_writes_cache(self):
        channel, store = FakeChannel(), FakeStore()
        channel.on("rclone lsf", stdout="a.tar.gz|10|2024-06-01 00:00:00\n")

        listing = self._catalog(channel, store).refresh("i-1")

        cached = json.loads(store.values[BACKUPS_CACHE_PARAMETER])
        assert cached["backups"] == [{"name": "a.tar.gz", "size": "10", "date": "2024-06-01 00:00:00"}]
        assert cached["cachedAt"] == listing.cached_at_ms
        assert store.puts[-1][2] is True

    def test_cached_round_trip(self):
        channel, store = FakeChannel(), FakeStore()
        channel.on("rclone lsf", stdout="a.tar.gz|10|2024-06-01 00:00:00\n")
        catalog = self._catalog(channel, store)

        refreshed = catalog.refresh("i-1")
        assert catalog.cached() == refreshed

    def test_no_cache(self):
        assert self._catalog(FakeChannel(), FakeStore()).cached() is None

    def test_unreadable_cache(self):
        store = FakeStore({BACKUPS_CACHE_PARAMETER: "{broken"})
        assert self._catalog(FakeChannel(), store).cached() is None
