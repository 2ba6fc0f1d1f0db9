"""Sync commands: sync, remove."""

from __future__ import annotations

import sys
from typing import Optional

import click
from rich.markup import escape
from rich.panel import Panel

from ._common import (
    EXIT_CANCELED,
    EXIT_FAILED,
    EXIT_OK,
    PACKSYNC_HOME,
    console,
    fetcher_factory,
    follow_job,
    home_path,
    logger,
)
from ..config import PackSyncSettings, build_sync_config, load_settings, save_settings
from ..jobs import JobRunner
from ..models import RunPhase, SyncMode, SyncOutcome
from ..preflight import check_install_dir


def _resolve_install_dir(settings: PackSyncSettings, install_dir: Optional[str]) -> str:
    folder = install_dir or settings.install_dir
    if not folder:
        console.print(
            "[bold red]No installation folder.[/] Pass --install-dir or set install_dir in config.yaml."
        )
        sys.exit(EXIT_FAILED)
    return folder


def _summary_panel(outcome: SyncOutcome) -> Panel:
    c = outcome.counters
    if outcome.mode == SyncMode.SYNC:
        body = (
            f"Downloaded: [bold]{c.downloaded}[/]\n"
            f"Updated: [bold]{c.updated}[/]\n"
            f"Unchanged: [bold]{c.unchanged}[/]\n"
            f"Deleted: [bold]{c.deleted}[/]\n"
            f"Directories removed: [bold]{c.dirs_removed}[/]\n"
            f"Failed: [bold]{c.failed}[/]"
        )
    else:
        body = (
            f"Deleted: [bold]{c.deleted}[/]\n"
            f"Already absent: [bold]{c.missing}[/]\n"
            f"Directories removed: [bold]{c.dirs_removed}[/]\n"
            f"Failed: [bold]{c.failed}[/]"
        )
    if outcome.ok:
        style, title = ("green" if not c.failed else "yellow"), "Done"
    elif outcome.phase == RunPhase.CANCELED:
        style, title = "yellow", "Canceled"
    else:
        style, title = "red", "Aborted"
        body = f"[red]{escape(outcome.error or 'run did not complete')}[/]\n\n" + body
    return Panel(body, title=f"{outcome.mode.value}: {title}", border_style=style)


def _run(mode: SyncMode, home: str, install_dir: Optional[str]) -> None:
    home_dir = home_path(home)
    settings = load_settings(home_dir)
    folder = _resolve_install_dir(settings, install_dir)

    pre = check_install_dir(folder, settings)
    if not pre.ok or pre.install_root is None:
        for err in pre.errors:
            console.print(f"[bold red]ERROR:[/] {escape(err)}")
        sys.exit(EXIT_FAILED)
    if settings.install_dir != str(pre.install_root):
        settings.install_dir = str(pre.install_root)
        try:
            save_settings(settings, home_dir)
        except OSError as exc:
            logger.warning("Could not remember install folder: %s", exc)

    config = build_sync_config(settings, pre.install_root)
    console.print(f"\n  [bold]{mode.value.capitalize()}[/] [cyan]{config.sync_root}[/]\n")

    runner = JobRunner(fetcher_factory=fetcher_factory(settings))
    sub = runner.events.subscribe()
    if runner.start_sync(config, mode) is None:
        sys.exit(EXIT_FAILED)
    event = follow_job(runner, sub, until="result")
    runner.wait()

    outcome: SyncOutcome = event.outcome
    console.print()
    console.print(_summary_panel(outcome))
    if outcome.ok:
        sys.exit(EXIT_OK)
    if outcome.phase == RunPhase.CANCELED:
        sys.exit(EXIT_CANCELED)
    sys.exit(EXIT_FAILED)


def register_sync_commands(main: click.Group) -> None:
    """Register the sync and remove commands."""

    @main.command("sync")
    @click.option("--install-dir", default=None, help="Game installation folder.")
    @click.option("--home", default=PACKSYNC_HOME, type=click.Path())
    def sync(install_dir: Optional[str], home: str):
        """Bring the managed folder in line with the manifest.

        Downloads missing and changed files, verifies every download
        against its SHA-256, removes files the manifest no longer lists
        and points the client prefs at the pack. Ctrl-C cancels at the
        next safe point.
        """
        _run(SyncMode.SYNC, home, install_dir)

    @main.command("remove")
    @click.option("--install-dir", default=None, help="Game installation folder.")
    @click.option("--home", default=PACKSYNC_HOME, type=click.Path())
    @click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
    def remove(install_dir: Optional[str], home: str, yes: bool):
        """Remove every pack file and restore the default prefs value."""
        if not yes:
            click.confirm("Remove all pack files from the installation?", abort=True)
        _run(SyncMode.REMOVE, home, install_dir)
