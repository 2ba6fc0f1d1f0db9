"""
packsync CLI -- headless front end for the sync engine and updater.

The main Click group is defined here and all subcommands are registered
from their own modules via register functions.

Entry point: packsync.cli:main
"""

from __future__ import annotations

from typing import Optional

import click

from .. import __version__
from ._common import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="packsync")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Also log to this file.")
def main(verbose: bool, log_file: Optional[str]):
    """packsync -- keep a game install in step with a published pack.

    Downloads missing or changed files listed in a signed-off manifest,
    removes files the manifest no longer lists, and checks for verified
    updates of packsync itself.
    """
    setup_logging(verbose, log_file)


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .sync_cmd import register_sync_commands
from .update_cmd import register_update_commands
from .manifest_cmd import register_manifest_commands
from .config_cmd import register_config_commands

register_sync_commands(main)
register_update_commands(main)
register_manifest_commands(main)
register_config_commands(main)
