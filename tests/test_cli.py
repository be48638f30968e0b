from __future__ import annotations

import json

import pytest

from dormant import cli
from dormant.constants import ACTION_LOCK_PARAMETER, PowerState
from dormant.exceptions import ConfigurationError
from dormant.model import ActionLockRecord
from tests.fakes import INSTANCE_ID, PUBLIC_IP, FakeStore, make_instance

pytestmark = [pytest.mark.xdist_group("unit")]


@pytest.fixture
def run_cli(monkeypatch: pytest.MonkeyPatch, settings, orchestrator_for):
    """Run ``dormant`` against an orchestrator over fakes; returns (exit_code, compute)."""

    def _run(argv: list[str], instance=None):
        orchestrator, compute = orchestrator_for(instance)
        monkeypatch.setattr(cli, "load_settings", lambda config_path=None: settings)
        monkeypatch.setattr(cli, "_build_orchestrator", lambda s: orchestrator)
        return cli.main(argv), compute

    return _run


class TestParser:
    def test_resume_backup_option(self):
        args = cli.build_parser().parse_args(["--instance-id", "i-9", "resume", "--backup", "nightly"])
        assert args.command == "resume"
        assert args.backup == "nightly"
        assert args.instance_id == "i-9"

    def test_restore_defaults(self):
        args = cli.build_parser().parse_args(["restore"])
        assert args.name is None
        assert args.update_dns is False

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    def test_start_json(self, run_cli, capsys):
        code, compute = run_cli(["--json", "start"], make_instance(PowerState.STOPPED))

        payload = json.loads(capsys.readouterr().out)
        assert code == 0
        assert payload["success"] is True
        assert payload["data"]["publicIp"] == PUBLIC_IP
        assert compute.count("start_instance") == 1

    def test_rejected_start_exits_nonzero(self, run_cli, capsys):
        code, compute = run_cli(["--json", "start"], make_instance(PowerState.RUNNING, public_ip=PUBLIC_IP))

        payload = json.loads(capsys.readouterr().out)
        assert code == 1
        assert payload == {
            "success": False,
            "errorKind": "InvalidState",
            "message": "Server is already running",
        }
        assert compute.mutations == []

    def test_status_table(self, run_cli, capsys):
        code, _ = run_cli(["status"], make_instance(PowerState.STOPPED, volumes=()))

        out = capsys.readouterr().out
        assert code == 0
        assert "status succeeded" in out
        assert "hibernated" in out

    def test_failure_rendering(self, run_cli, capsys):
        code, _ = run_cli(["--instance-id", "i-missing", "status"])

        out = capsys.readouterr().out
        assert code == 1
        assert "status failed" in out
        assert "NotFound" in out

    def test_empty_backup_listing(self, run_cli, capsys):
        code, _ = run_cli(["backups"])
        assert code == 0
        assert "No backups cached" in capsys.readouterr().out

    def test_unlock(self, run_cli, capsys, store: FakeStore):
        store.values[ACTION_LOCK_PARAMETER] = ActionLockRecord("hibernate").to_json()

        code, _ = run_cli(["--json", "unlock"])

        assert code == 0
        assert json.loads(capsys.readouterr().out)["data"] == {"cleared": "hibernate"}
        assert ACTION_LOCK_PARAMETER not in store.values

    def test_explicit_instance_id(self, run_cli, capsys):
        code, _ = run_cli(["--json", "--instance-id", INSTANCE_ID, "status"])
        assert code == 0
        assert json.loads(capsys.readouterr().out)["data"]["instanceId"] == INSTANCE_ID

    def test_configuration_error(self, monkeypatch: pytest.MonkeyPatch, capsys):
        def broken(config_path=None):
            raise ConfigurationError("Invalid TOML in dormant.toml")

        monkeypatch.setattr(cli, "load_settings", broken)

        code = cli.main(["--json", "status"])

        payload = json.loads(capsys.readouterr().out)
        assert code == 1
        assert payload["errorKind"] == "ConfigurationError"
