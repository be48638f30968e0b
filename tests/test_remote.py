from __future__ import annotations

import pytest

from dormant.constants import CommandStatus
from dormant.exceptions import CommandFailedError, PollTimeoutError
from dormant.poll import PollPolicy
from dormant.remote import RemoteCommandExecutor
from tests.fakes import FakeChannel

pytestmark = [pytest.mark.xdist_group("unit")]

POLICY = PollPolicy(interval=0, attempts=6)


class TestRemoteCommandExecutor:
    def test_returns_stdout_after_invocation_becomes_visible(self):
        channel = FakeChannel()
        channel.on("echo", stdout="hello\n", not_visible=3)

        output = RemoteCommandExecutor(channel, POLICY).execute("i-1", "echo hello")

        assert output == "hello\n"
        assert channel.sent == [("i-1", "echo hello")]

    def test_pending_then_success(self):
        channel = FakeChannel()
        channel.on("backup", stdout="done", pending=2, not_visible=1)
        assert RemoteCommandExecutor(channel, POLICY).execute("i-1", "backup") == "done"

    def test_failed_status_raises_with_stderr(self):
        channel = FakeChannel()
        channel.on("restore", status=CommandStatus.FAILED, stderr="no such backup")

        with pytest.raises(CommandFailedError) as exc:
            RemoteCommandExecutor(channel, POLICY).execute("i-1", "restore x")

        assert exc.value.stderr == "no such backup"
        assert exc.value.command_id == "cmd-1"
        assert "no such backup" in str(exc.value)

    def test_never_visible_times_out(self):
        channel = FakeChannel()
        channel.on("stuck", not_visible=100)

        with pytest.raises(PollTimeoutError):
            RemoteCommandExecutor(channel, POLICY).execute("i-1", "stuck")

    def test_never_terminal_times_out(self):
        channel = FakeChannel()
        channel.on("slow", pending=100)

        with pytest.raises(PollTimeoutError):
            RemoteCommandExecutor(channel, POLICY).execute("i-1", "slow")

    def test_dispatches_once(self):
        channel = FakeChannel()
        channel.on("once", pending=3)
        RemoteCommandExecutor(channel, POLICY).execute("i-1", "once")
        assert len(channel.sent) == 1
