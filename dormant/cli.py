"""Command line trigger for the lifecycle workflows.

Usage:
    dormant status
    dormant start
    dormant hibernate
    dormant resume --backup world-2024-06-01
    dormant backup nightly
    dormant restore latest --update-dns
    dormant backups --refresh
    dormant unlock

Exit status is 0 when the workflow succeeds and 1 otherwise.
"""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from loguru import logger
from rich.console import Console
from rich.table import Table
from rich.text import Text

from dormant.config import Settings, load_settings
from dormant.exceptions import DormantError
from dormant.logging import LogConfig, setup_logging, teardown_logging
from dormant.result import Failure, Result
from dormant.workflows import Orchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dormant",
        description="Start, stop, hibernate and back up a single cloud game server",
    )
    parser.add_argument("--instance-id", default=None, help="Instance to manage (default: configured or discovered)")
    parser.add_argument("--config", type=Path, default=None, help="Project config file (default: ./dormant.toml)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level",
    )

    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")
    sub.add_parser("status", help="Show server state and any in-flight action")
    sub.add_parser("start", help="Start the server (recreating its volume if hibernated)")
    sub.add_parser("stop", help="Stop the server, keeping its volume")
    sub.add_parser("hibernate", help="Back up, stop, and delete the server volume")

    resume = sub.add_parser("resume", help="Resume a hibernated server")
    resume.add_argument("--backup", default=None, metavar="NAME", help="Restore this backup after resuming")

    backup = sub.add_parser("backup", help="Back up the running server")
    backup.add_argument("name", nargs="?", default=None)

    restore = sub.add_parser("restore", help="Restore a backup on the running server")
    restore.add_argument("name", nargs="?", default=None, help="Backup name (default: latest)")
    restore.add_argument("--update-dns", action="store_true", help="Republish the server IP afterwards")

    backups = sub.add_parser("backups", help="Show cached backups")
    backups.add_argument("--refresh", action="store_true", help="List backups on the server and update the cache")

    sub.add_parser("unlock", help="Clear the action lock left by a crashed workflow")
    return parser


def _build_orchestrator(settings: Settings) -> Orchestrator:
    return Orchestrator.from_settings(settings)


def dispatch(orchestrator: Orchestrator, args: argparse.Namespace) -> Result:
    iid = args.instance_id
    match args.command:
        case "status":
            return orchestrator.status(iid)
        case "start":
            return orchestrator.start(iid)
        case "stop":
            return orchestrator.stop(iid)
        case "hibernate":
            return orchestrator.hibernate(iid)
        case "resume":
            return orchestrator.resume(iid, backup_name=args.backup)
        case "backup":
            return orchestrator.backup(args.name, iid)
        case "restore":
            return orchestrator.restore(args.name, iid, update_dns=args.update_dns)
        case "backups" if args.refresh:
            return orchestrator.refresh_backups(iid)
        case "backups":
            return orchestrator.list_backups()
        case "unlock":
            return orchestrator.clear_lock()
        case _:
            raise ValueError(f"Unknown command: {args.command}")


# =============================================================================
# Rendering
# =============================================================================


def _format_value(value: Any) -> str:
    match value:
        case None:
            return "-"
        case bool():
            return "yes" if value else "no"
        case list() | tuple():
            return ", ".join(str(v) for v in value) or "-"
        case dict():
            return ", ".join(f"{k}={_format_value(v)}" for k, v in value.items())
        case _:
            return str(value)


def _render_backups(console: Console, backups: list[dict[str, str]]) -> None:
    if not backups:
        console.print("[bright_black]No backups cached. Run 'dormant backups --refresh'.[/]")
        return
    table = Table(show_edge=False, box=None, padding=(0, 2))
    table.add_column("Name")
    table.add_column("Size", justify="right", style="bright_black")
    table.add_column("Date", style="bright_black")
    for b in backups:
        table.add_row(b["name"], b["size"], b["date"])
    console.print(table)


def render(console: Console, command: str, result: Result) -> None:
    if isinstance(result, Failure):
        console.print(Text.assemble(("✗ ", "bold red"), (f"{command} failed ", "bold"), (f"[{result.kind}]", "red")))
        console.print(Text(result.message))
        if result.completed_steps:
            console.print(f"[bright_black]Completed steps: {', '.join(result.completed_steps)}[/]")
        return

    console.print(Text.assemble(("✓ ", "bold green"), (f"{command} succeeded", "bold")))
    data = dict(result.data)
    backups = data.pop("backups", None)

    overview = Table(show_header=False, show_edge=False, box=None, padding=(0, 2))
    overview.add_column("key", style="bright_black", min_width=12)
    overview.add_column("value")
    for key, value in data.items():
        if key == "output":
            continue
        overview.add_row(key.replace("_", " "), _format_value(value))
    if overview.row_count:
        console.print(overview)

    if backups is not None:
        _render_backups(console, backups)
    if data.get("output"):
        console.print(Text(str(data["output"]).rstrip(), style="bright_black"))


# =============================================================================
# Entry point
# =============================================================================


def _run(args: argparse.Namespace) -> Result:
    try:
        settings = load_settings(config_path=args.config)
    except DormantError as e:
        return Failure.from_error(e)
    return dispatch(_build_orchestrator(settings), args)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()

    logger.remove()
    handler_ids = setup_logging(LogConfig(level=args.log_level))

    try:
        result = _run(args)
    finally:
        teardown_logging(handler_ids)

    if args.json:
        console.print_json(data=result.to_dict())
    else:
        render(console, args.command, result)
    return 0 if result.success else 1


__all__ = ["build_parser", "dispatch", "main", "render"]
