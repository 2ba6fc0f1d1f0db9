"""
Settings -- ~/.packsync/config.yaml.

Everything that was a compile-time constant in earlier tools lives here:
the remote host and document paths, the on-disk layout of the managed
tree, the prefs line to keep in step, timeout and size limits, and the
self-update endpoints and pinned signer fingerprints.

A missing file means defaults. A file that cannot be read or does not
validate is reported with a warning and also means defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from . import PACKSYNC_HOME
from .fetcher import DEFAULT_USER_AGENT, join_url
from .manifest.paths import DEFAULT_STRIP_PREFIXES, resolve_segments
from .models import FetchTimeouts, SyncConfig

logger = logging.getLogger("packsync.config")

CONFIG_FILENAME = "config.yaml"
DEFAULT_HOST = "https://istaria-mappack.s3.us-west-2.amazonaws.com"


class RemoteSettings(BaseModel):
    """Where the manifests and files are published."""

    host: str = DEFAULT_HOST
    files_root_path: str = "/resources_override/"
    manifest_path: str = "/mappack_manifest.json"
    legacy_manifest_path: str = Field(
        default="/mappack_manifest_old.json",
        description="Old-format manifest; empty disables the legacy pass",
    )
    user_agent: str = DEFAULT_USER_AGENT


class LayoutSettings(BaseModel):
    """Directory layout below the installation root."""

    sync_subdir: str = "resources_override/mappack"
    strip_prefixes: list[str] = Field(default_factory=lambda: list(DEFAULT_STRIP_PREFIXES))
    orphan_subdir: str = Field(
        default="",
        description="Sub-path of the sync root the orphan pass is limited to; empty = whole root",
    )
    orphan_extensions: list[str] = Field(default_factory=list)
    install_marker: str = "istaria.exe"
    legacy_subdir: str = "resources_override"
    legacy_strip_prefixes: list[str] = Field(default_factory=lambda: ["resources_override"])
    legacy_dir_cleanup_subdirs: list[str] = Field(
        default_factory=lambda: ["resources/interface/maps"]
    )


class PrefsSettings(BaseModel):
    """The client prefs line kept pointing at the right map directory."""

    file: str = "prefs/ClientPrefs_Common.def"
    key: str = "string mapPath"
    sync_value: str = "resources_override/mappack/resources/interface/maps"
    remove_value: str = "resources/mappack/resources/interface/maps"


class TimeoutSettings(BaseModel):
    text_connect: float = 15.0
    text_total: float = 120.0
    file_connect: float = 15.0
    file_total: float = Field(default=0.0, description="0 = unbounded")


class LimitSettings(BaseModel):
    manifest_max_bytes: int = 16 * 1024 * 1024
    descriptor_max_bytes: int = 64 * 1024
    signature_max_bytes: int = 64 * 1024
    json_max_depth: int = 64


class UpdateSettings(BaseModel):
    """Self-update endpoints and the signers allowed to publish builds."""

    version_url: str = DEFAULT_HOST + "/version.txt"
    binary_url: str = DEFAULT_HOST + "/MapPackSyncTool.exe"
    signature_url: str = Field(default="", description="Empty = <binary_url>.sig")
    pinned_fingerprints: list[str] = Field(default_factory=list)
    executable: Optional[str] = None

    @property
    def effective_signature_url(self) -> str:
        return self.signature_url or self.binary_url + ".sig"


class PackSyncSettings(BaseModel):
    """Top-level contents of config.yaml."""

    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    layout: LayoutSettings = Field(default_factory=LayoutSettings)
    prefs: PrefsSettings = Field(default_factory=PrefsSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)
    update: UpdateSettings = Field(default_factory=UpdateSettings)
    install_dir: Optional[str] = None


def resolve_home(home: Optional[Path] = None) -> Path:
    return (home or Path(PACKSYNC_HOME)).expanduser()


def settings_path(home: Optional[Path] = None) -> Path:
    return resolve_home(home) / CONFIG_FILENAME


def load_settings(home: Optional[Path] = None) -> PackSyncSettings:
    """Load settings from ``<home>/config.yaml``.

    Args:
        home: Settings directory. Defaults to ``~/.packsync``.

    Returns:
        PackSyncSettings from the file, or defaults.
    """
    config_file = settings_path(home)
    if not config_file.exists():
        return PackSyncSettings()
    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        return PackSyncSettings.model_validate(data)
    except (OSError, yaml.YAMLError, ValidationError) as exc:
        logger.warning("Failed to load %s: %s; using defaults", config_file, exc)
        return PackSyncSettings()


def save_settings(settings: PackSyncSettings, home: Optional[Path] = None) -> Path:
    """Write settings to ``<home>/config.yaml``.

    Returns:
        Path of the written file.
    """
    config_file = settings_path(home)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="json")
    config_file.write_text(
        yaml.dump(data, default_flow_style=False, sort_keys=False), encoding="utf-8"
    )
    logger.debug("Settings written to %s", config_file)
    return config_file


def _subpath(root: Path, sub: str) -> Path:
    """Join a configured relative sub-path to ``root`` without leaving it."""
    parts = resolve_segments(sub)
    return root.joinpath(*parts) if parts else root


def build_sync_config(settings: PackSyncSettings, install_root: Path) -> SyncConfig:
    """Derive the frozen per-run configuration.

    Args:
        settings: Loaded settings.
        install_root: Preflight-validated installation directory.

    Returns:
        SyncConfig for one sync or remove run.
    """
    remote = settings.remote
    layout = settings.layout
    sync_root = _subpath(install_root, layout.sync_subdir)
    legacy_root = _subpath(install_root, layout.legacy_subdir)
    legacy_url = (
        join_url(remote.host, remote.legacy_manifest_path)
        if remote.legacy_manifest_path
        else None
    )
    return SyncConfig(
        manifest_url=join_url(remote.host, remote.manifest_path),
        legacy_manifest_url=legacy_url,
        files_base_url=join_url(remote.host, remote.files_root_path),
        install_root=install_root,
        sync_root=sync_root,
        orphan_root=_subpath(sync_root, layout.orphan_subdir),
        orphan_extensions=tuple(layout.orphan_extensions),
        strip_prefixes=tuple(layout.strip_prefixes),
        legacy_root=legacy_root,
        legacy_strip_prefixes=tuple(layout.legacy_strip_prefixes),
        legacy_dir_cleanup_roots=tuple(
            _subpath(legacy_root, sub) for sub in layout.legacy_dir_cleanup_subdirs
        ),
        prefs_file=_subpath(install_root, settings.prefs.file) if settings.prefs.file else None,
        prefs_key=settings.prefs.key,
        prefs_sync_value=settings.prefs.sync_value,
        prefs_remove_value=settings.prefs.remove_value,
        text_timeouts=FetchTimeouts(
            connect=settings.timeouts.text_connect, total=settings.timeouts.text_total
        ),
        file_timeouts=FetchTimeouts(
            connect=settings.timeouts.file_connect, total=settings.timeouts.file_total
        ),
        manifest_max_bytes=settings.limits.manifest_max_bytes,
        json_max_depth=settings.limits.json_max_depth,
    )
