"""
Update hand-off -- replace the running binary from a helper process.

A running executable cannot overwrite itself on Windows, so applying an
accepted update is delegated to a short-lived helper:

    packsync apply-update <pid> <downloaded> <target>

The helper waits for ``pid`` to exit, moves ``downloaded`` over
``target`` with a single ``os.replace`` and starts ``target`` again.
Only builds that already passed ``SelfUpdateVerifier`` ever get here.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional

from ..sync.atomic import discard

logger = logging.getLogger("packsync.update.apply")

DEFAULT_WAIT_TIMEOUT = 90.0
EXIT_OK = 0
EXIT_REPLACE_FAILED = 3

_POLL_INTERVAL = 0.25


def discard_update(path: Optional[Path]) -> None:
    """Remove a downloaded build that was rejected or declined."""
    if path is not None:
        discard(Path(path))


def _pid_alive(pid: int) -> bool:
    if os.name == "nt":
        import ctypes

        synchronize = 0x00100000
        wait_timeout = 0x00000102
        kernel32 = ctypes.windll.kernel32
        handle = kernel32.OpenProcess(synchronize, False, pid)
        if not handle:
            return False
        try:
            return kernel32.WaitForSingleObject(handle, 0) == wait_timeout
        finally:
            kernel32.CloseHandle(handle)
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def wait_for_exit(pid: int, timeout: float = DEFAULT_WAIT_TIMEOUT) -> bool:
    """Poll until ``pid`` is gone.

    Returns:
        True if the process exited within ``timeout`` seconds.
    """
    deadline = time.monotonic() + timeout
    while _pid_alive(pid):
        if time.monotonic() >= deadline:
            return False
        time.sleep(_POLL_INTERVAL)
    return True


def _detached_kwargs() -> dict:
    if os.name == "nt":
        flags = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        return {"creationflags": flags, "close_fds": True}
    return {"start_new_session": True, "close_fds": True}


def helper_command(downloaded: Path, target: Path, pid: int) -> list[str]:
    """Command line that runs the helper for this install.

    A frozen build cannot run the helper from the file about to be
    replaced, so it runs a copy placed beside it.
    """
    args = ["apply-update", str(pid), str(downloaded), str(target)]
    if getattr(sys, "frozen", False):
        exe = Path(sys.executable)
        helper = exe.with_name(f"{exe.stem}_Updater{exe.suffix}")
        shutil.copy2(exe, helper)
        return [str(helper), *args]
    return [sys.executable, "-m", "packsync", *args]


def launch_update_helper(
    downloaded: Path, target: Path, pid: Optional[int] = None
) -> subprocess.Popen:
    """Start the detached helper; the caller should exit right after.

    Raises:
        OSError: If the helper cannot be started.
    """
    cmd = helper_command(downloaded, target, pid if pid is not None else os.getpid())
    logger.info("Starting update helper: %s", " ".join(cmd))
    return subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        **_detached_kwargs(),
    )


def apply_update(
    pid: int,
    downloaded: Path,
    target: Path,
    wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
    relaunch: bool = True,
) -> int:
    """Helper-process body: wait, replace, relaunch.

    Returns:
        ``EXIT_OK``, or ``EXIT_REPLACE_FAILED`` after removing
        ``downloaded`` when the replace did not happen.
    """
    if not wait_for_exit(pid, wait_timeout):
        logger.warning("Process %d still running after %.0fs; trying anyway", pid, wait_timeout)

    try:
        os.replace(downloaded, target)
    except OSError as exc:
        logger.error("Could not replace %s: %s", target, exc)
        discard_update(downloaded)
        return EXIT_REPLACE_FAILED
    logger.info("Replaced %s", target)

    if relaunch:
        try:
            subprocess.Popen([str(target)], cwd=str(target.parent), **_detached_kwargs())
        except OSError as exc:
            logger.warning("Updated, but could not restart %s: %s", target, exc)
    return EXIT_OK
