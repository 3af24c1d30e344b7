"""Mount, bind mount and unmount helpers for the staged root.

Functions:
    - is_mounted(): check /proc/mounts for an active mountpoint
    - mount_device(): mount a block device or pseudo filesystem
    - bind_mount(): bind a live directory into the staged root
    - unmount(): normal unmount with a lazy fallback

All paths are passed to mount/umount as argument lists, never through a shell.
"""

import os
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from nvme_migrate.logging import LoggerFactory
from nvme_migrate.storage.devices import command_error_text, run_command
from nvme_migrate.storage.exceptions import MountOperationError, UnmountFailedError


log = LoggerFactory.for_system()


def is_mounted(mountpoint: str) -> bool:
    """Check if a mountpoint is currently active."""
    target = os.path.normpath(str(mountpoint))
    try:
        with open("/proc/mounts", "r", encoding="utf-8") as mounts_file:
            for line in mounts_file:
                parts = line.split()
                if len(parts) > 1 and parts[1] == target:
                    return True
    except FileNotFoundError:
        return os.path.ismount(target)
    return False


def _mount(command: Sequence[str], source: str, target: str) -> None:
    Path(target).mkdir(parents=True, exist_ok=True)
    try:
        run_command(command)
    except subprocess.CalledProcessError as error:
        raise MountOperationError(source, target, command_error_text(error)) from error
    log.debug(f"Mounted {source} on {target}")


def mount_device(
    source: str,
    target: str,
    fstype: Optional[str] = None,
    options: Optional[str] = None,
) -> None:
    """Mount ``source`` on ``target``, creating the directory first.

    Raises:
        MountOperationError: If mount fails
    """
    command = ["mount"]
    if fstype:
        command.extend(["-t", fstype])
    if options:
        command.extend(["-o", options])
    command.extend([source, target])
    _mount(command, source, target)


def bind_mount(source: str, target: str) -> None:
    """Bind ``source`` onto ``target``.

    Raises:
        MountOperationError: If mount --bind fails
    """
    _mount(["mount", "--bind", source, target], source, target)


def unmount(target: str, lazy_fallback: bool = True) -> bool:
    """Unmount ``target``.

    Returns:
        True when the lazy fallback was needed, False for a clean unmount

    Raises:
        UnmountFailedError: If the target could not be unmounted at all
    """
    result = run_command(["umount", target], check=False)
    if result.returncode == 0 and not is_mounted(target):
        log.debug(f"Unmounted {target}")
        return False

    reason = (result.stderr or "").strip() or "still mounted"
    if not lazy_fallback:
        raise UnmountFailedError(target, reason)

    log.warning(f"Normal unmount of {target} failed ({reason}), trying lazy unmount")
    result = run_command(["umount", "-l", target], check=False)
    if result.returncode != 0:
        raise UnmountFailedError(target, (result.stderr or "").strip() or reason)
    log.debug(f"Lazy unmounted {target}")
    return True
