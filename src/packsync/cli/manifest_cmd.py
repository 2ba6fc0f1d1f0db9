"""Manifest commands: check."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.table import Table
from rich.markup import escape
from rich.text import Text

from ._common import EXIT_FAILED, PACKSYNC_HOME, console, home_path
from ..config import load_settings
from ..manifest.parser import ManifestFormatError, parse_legacy_paths, parse_manifest
from ..manifest.paths import UnsafePathError, normalize_manifest_path
from ..manifest.validator import ManifestValidationError, validate_manifest


def register_manifest_commands(main: click.Group) -> None:
    """Register the manifest command group."""

    @main.group()
    def manifest():
        """Inspect manifest documents offline."""

    @manifest.command("check")
    @click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
    @click.option("--legacy", is_flag=True, help="Treat FILE as an old-format (path-only) manifest.")
    @click.option("--home", default=PACKSYNC_HOME, type=click.Path())
    def manifest_check(file: Path, legacy: bool, home: str):
        """Parse and validate FILE exactly as a sync run would."""
        settings = load_settings(home_path(home))
        limits = settings.limits
        data = file.read_bytes()

        if legacy:
            try:
                paths = parse_legacy_paths(
                    data, max_bytes=limits.manifest_max_bytes, max_depth=limits.json_max_depth
                )
            except ManifestFormatError as exc:
                console.print(f"[bold red]Parse failed:[/] {escape(str(exc))}")
                sys.exit(EXIT_FAILED)
            table = Table(title=f"Legacy manifest: {file.name}")
            table.add_column("Listed path")
            table.add_column("Deletes (under legacy root)")
            for raw in paths:
                try:
                    rel = Text(normalize_manifest_path(raw, settings.layout.legacy_strip_prefixes))
                except UnsafePathError as exc:
                    rel = Text(f"skipped: {exc.reason}", style="red")
                table.add_row(Text(raw), rel)
            console.print(table)
            console.print(f"  [bold]{len(paths)}[/] path(s)")
            return

        try:
            parsed = parse_manifest(
                data, max_bytes=limits.manifest_max_bytes, max_depth=limits.json_max_depth
            )
            md = validate_manifest(
                parsed.entries,
                strip_prefixes=settings.layout.strip_prefixes,
                base_url=parsed.base_url,
            )
        except ManifestFormatError as exc:
            console.print(f"[bold red]Parse failed:[/] {escape(str(exc))}")
            sys.exit(EXIT_FAILED)
        except ManifestValidationError as exc:
            console.print(f"[bold red]Rejected:[/] {escape(str(exc))}")
            sys.exit(EXIT_FAILED)

        table = Table(title=f"Manifest: {file.name}")
        table.add_column("Path (sync root)", style="cyan")
        table.add_column("SHA-256", style="dim")
        table.add_column("Remote path")
        for entry in md.work_list:
            table.add_row(Text(entry.rel_path), entry.sha256[:16] + "...", Text(entry.remote_path))
        console.print(table)
        if md.base_url:
            console.print(f"  base_url: [cyan]{md.base_url}[/]")
        console.print(f"  [green]OK[/] [bold]{len(md.work_list)}[/] file(s)")
