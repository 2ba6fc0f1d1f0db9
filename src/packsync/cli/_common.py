"""Shared utilities for all CLI command modules.

Provides the Rich console instance, logging setup, and the loop that
follows a background job through the event channel and renders it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn

from .. import PACKSYNC_HOME, __version__
from ..config import PackSyncSettings
from ..events import Event, LogEvent, ProgressEvent, Subscription
from ..fetcher import ContentFetcher
from ..jobs import JobRunner

console = Console()
logger = logging.getLogger("packsync.cli")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELED = 2


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure the root logger once for a CLI invocation.

    Job output already reaches the terminal through the event channel,
    so a stderr handler is only added with ``--verbose``.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)
    if verbose:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(formatter)
        root.addHandler(handler)
    if not root.handlers:
        root.addHandler(logging.NullHandler())


def home_path(home: str) -> Path:
    return Path(home).expanduser()


def _style_for(level: int) -> str:
    if level >= logging.ERROR:
        return "bold red"
    if level >= logging.WARNING:
        return "yellow"
    return ""


def _render_log(progress: Progress, event: LogEvent) -> None:
    style = _style_for(event.level)
    progress.console.print(event.message, style=style or None, markup=False, highlight=False)


def follow_job(runner: JobRunner, sub: Subscription, until: str) -> Event:
    """Render events from ``sub`` until one of kind ``until`` arrives.

    Ctrl-C asks the job to cancel and keeps following it, so the
    terminal event is always reached.

    Returns:
        The terminal event.
    """
    columns = (
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
    )
    with Progress(*columns, console=console, transient=True) as progress:
        task = progress.add_task("Starting...", total=None)
        while True:
            try:
                event = sub.get(timeout=0.2)
            except KeyboardInterrupt:
                progress.console.print("Canceling... (waiting for a safe stopping point)", style="yellow")
                runner.cancel()
                continue
            if event is None:
                continue
            if isinstance(event, LogEvent):
                _render_log(progress, event)
            elif isinstance(event, ProgressEvent):
                progress.update(
                    task,
                    completed=event.current,
                    total=event.total or None,
                    description=event.text[-60:] or "Working...",
                )
            if event.kind == until:
                return event


def fetcher_factory(settings: PackSyncSettings) -> Callable[[], ContentFetcher]:
    """Build fetchers carrying the configured User-Agent."""
    return lambda: ContentFetcher(user_agent=settings.remote.user_agent)
