"""Update commands: check-update, apply-update (helper mode)."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.markup import escape
from rich.panel import Panel

from ._common import (
    EXIT_FAILED,
    EXIT_OK,
    PACKSYNC_HOME,
    __version__,
    console,
    fetcher_factory,
    follow_job,
    home_path,
)
from ..config import load_settings
from ..jobs import JobRunner
from ..models import UpdateResult
from ..update.apply import DEFAULT_WAIT_TIMEOUT, apply_update, discard_update, launch_update_helper
from ..update.verifier import default_executable


def _result_panel(result: UpdateResult) -> Panel:
    if not result.ok:
        return Panel(
            f"[red]{escape(result.error)}[/]\n\n"
            f"Local version: {result.local_version or '?'}\n"
            f"Remote version: {result.remote_version or '?'}",
            title="Update check failed",
            border_style="red",
        )
    if not result.different:
        return Panel(
            f"You are running the latest version ([bold]{result.local_version}[/]).",
            title="Up to date",
            border_style="green",
        )
    return Panel(
        f"Local version: [bold]{result.local_version}[/]\n"
        f"New version: [bold green]{result.remote_version}[/]\n"
        f"SHA-256: [dim]{result.expected_digest}[/]\n"
        f"Signer: [dim]{result.signer_fingerprint}[/]",
        title="Verified update available",
        border_style="cyan",
    )


def register_update_commands(main: click.Group) -> None:
    """Register the self-update commands."""

    @main.command("check-update")
    @click.option("--home", default=PACKSYNC_HOME, type=click.Path())
    @click.option("--yes", is_flag=True, help="Apply a verified update without asking.")
    def check_update(home: str, yes: bool):
        """Check for a newer packsync build and offer to install it.

        A new build is downloaded and must match the published SHA-256
        and carry a signature from a pinned signer before it is offered.
        """
        settings = load_settings(home_path(home))
        executable = default_executable(settings)

        runner = JobRunner(fetcher_factory=fetcher_factory(settings))
        sub = runner.events.subscribe()
        if runner.start_update_check(settings, __version__, executable) is None:
            sys.exit(EXIT_FAILED)
        event = follow_job(runner, sub, until="update_check")
        runner.wait()

        result: UpdateResult = event.result
        console.print()
        console.print(_result_panel(result))
        if not result.ok:
            sys.exit(EXIT_FAILED)
        if not result.different or result.downloaded_temp_path is None or executable is None:
            sys.exit(EXIT_OK)

        if not yes and not click.confirm("Install the update now? packsync will restart.", default=True):
            discard_update(result.downloaded_temp_path)
            console.print("  [dim]Update declined; download removed.[/]")
            sys.exit(EXIT_OK)

        try:
            launch_update_helper(result.downloaded_temp_path, executable)
        except OSError as exc:
            discard_update(result.downloaded_temp_path)
            console.print(f"[bold red]Could not start the update helper:[/] {escape(str(exc))}")
            sys.exit(EXIT_FAILED)
        console.print("  [green]Updating...[/] packsync will restart when done.")
        sys.exit(EXIT_OK)

    @main.command("apply-update", hidden=True)
    @click.argument("pid", type=int)
    @click.argument("downloaded", type=click.Path(path_type=Path))
    @click.argument("target", type=click.Path(path_type=Path))
    @click.option("--wait", "wait_timeout", default=DEFAULT_WAIT_TIMEOUT, show_default=True,
                  help="Seconds to wait for the old process to exit.")
    @click.option("--no-relaunch", is_flag=True, help="Do not start the updated binary.")
    def apply_update_cmd(pid: int, downloaded: Path, target: Path, wait_timeout: float, no_relaunch: bool):
        """Helper mode: replace TARGET with DOWNLOADED once PID exits."""
        sys.exit(apply_update(pid, downloaded, target, wait_timeout, relaunch=not no_relaunch))
