"""Config commands: show, init."""

from __future__ import annotations

import sys

import click
import yaml

from ._common import EXIT_FAILED, PACKSYNC_HOME, console, home_path
from ..config import PackSyncSettings, load_settings, save_settings, settings_path


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """View or create ~/.packsync/config.yaml."""

    @config.command("show")
    @click.option("--home", default=PACKSYNC_HOME, type=click.Path())
    def config_show(home: str):
        """Print the effective settings."""
        home_dir = home_path(home)
        path = settings_path(home_dir)
        settings = load_settings(home_dir)
        source = str(path) if path.exists() else f"{path} (not found, defaults)"
        console.print(f"[dim]# {source}[/]")
        console.print(
            yaml.dump(settings.model_dump(mode="json"), default_flow_style=False, sort_keys=False),
            markup=False,
            highlight=False,
        )

    @config.command("init")
    @click.option("--home", default=PACKSYNC_HOME, type=click.Path())
    @click.option("--force", is_flag=True, help="Overwrite an existing file.")
    def config_init(home: str, force: bool):
        """Write a config.yaml with every default filled in."""
        home_dir = home_path(home)
        path = settings_path(home_dir)
        if path.exists() and not force:
            console.print(f"[yellow]{path} already exists.[/] Use --force to overwrite.")
            sys.exit(EXIT_FAILED)
        written = save_settings(PackSyncSettings(), home_dir)
        console.print(f"[green]Wrote[/] {written}")
