"""
Preflight checks for the chosen installation folder.

Runs before any sync or remove pass:
  - the folder was given and exists
  - it looks like a game install (contains the marker file)
  - the sync root exists, or can be created

Creating the sync root is the only write preflight performs, and a
failure there is fatal: no run starts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import PackSyncSettings, build_sync_config
from .models import SyncConfig

logger = logging.getLogger("packsync.preflight")


class PreflightError(Exception):
    """The installation folder cannot be used."""


@dataclass
class PreflightResult:
    """Outcome of validating an installation folder."""

    install_root: Optional[Path] = None
    sync_root: Optional[Path] = None
    created_sync_root: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when the folder passed every check."""
        return not self.errors and self.sync_root is not None


def clean_folder_input(raw: str) -> str:
    """Trim whitespace and one pair of surrounding double quotes."""
    value = raw.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1].strip()
    return value


def check_install_dir(folder: str, settings: PackSyncSettings) -> PreflightResult:
    """Validate ``folder`` as an installation root.

    Args:
        folder: Folder as typed or pasted by the user.
        settings: Loaded settings (layout and marker file).

    Returns:
        PreflightResult; ``errors`` lists every reason it is not usable.
    """
    result = PreflightResult()
    cleaned = clean_folder_input(folder or "")
    if not cleaned:
        result.errors.append("Installation folder not selected.")
        return result

    root = Path(cleaned).expanduser()
    if not root.is_dir():
        result.errors.append(f"Selected folder '{root}' does not exist.")
        return result
    result.install_root = root

    marker = settings.layout.install_marker
    if marker and not (root / marker).exists():
        result.errors.append(f"Selected folder does not contain {marker}.")
        return result

    sync_root = build_sync_config(settings, root).sync_root
    if sync_root.exists():
        if not sync_root.is_dir():
            result.errors.append(f"{sync_root} exists but is not a directory.")
            return result
    else:
        try:
            sync_root.mkdir(parents=True)
        except OSError as exc:
            result.errors.append(f"Failed to create {sync_root}: {exc}")
            return result
        result.created_sync_root = True
        logger.info("Created sync root %s", sync_root)

    result.sync_root = sync_root
    return result


def require_install_dir(folder: str, settings: PackSyncSettings) -> SyncConfig:
    """Run preflight and build the run configuration.

    Raises:
        PreflightError: With every preflight error joined, if any.
    """
    result = check_install_dir(folder, settings)
    if not result.ok or result.install_root is None:
        raise PreflightError("; ".join(result.errors))
    return build_sync_config(settings, result.install_root)
