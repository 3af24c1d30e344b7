"""Attribute-preserving file tree copy with rsync."""

from __future__ import annotations

import os
import shutil
from typing import Iterable, Sequence

from nvme_migrate.logging import LoggerFactory
from nvme_migrate.storage.devices import directory_usage, run_passthrough, same_filesystem
from nvme_migrate.storage.exceptions import TransferError


log = LoggerFactory.for_provision()

ROOT_EXCLUDES = (
    "/dev/*",
    "/proc/*",
    "/sys/*",
    "/run/*",
    "/tmp/*",
    "/mnt/*",
    "/media/*",
    "/lost+found",
    "/home/*",
)

# separate filesystems whose contents belong on the new root partition
FOLDED_MOUNTS = ("/boot",)

# 23: partial transfer due to error, 24: source files vanished
RSYNC_PARTIAL_CODES = {23, 24}


def build_rsync_command(
    source: str, destination: str, excludes: Iterable[str] = ()
) -> list[str]:
    command = ["rsync", "-aAXH", "--numeric-ids", "--info=progress2"]
    for pattern in excludes:
        command.append(f"--exclude={pattern}")
    command.extend([source, destination])
    return command


def _covered(path: str, prefixes: Iterable[str]) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in prefixes)


def mount_excludes(mountpoints: Iterable[str], skip: Sequence[str] = ()) -> list[str]:
    """Excludes for every separate filesystem mounted below ``/``.

    /boot is copied into the new root (it has no partition of its own in the
    plan); mounts inside an already excluded tree are left alone.
    """
    skip = [path.rstrip("/") for path in skip if path and path.rstrip("/")]
    covered = [pattern[: -len("/*")] for pattern in ROOT_EXCLUDES if pattern.endswith("/*")]
    excludes = []
    for target in mountpoints:
        target = target.rstrip("/")
        if not target or target in FOLDED_MOUNTS:
            continue
        if _covered(target, covered) or _covered(target, skip):
            continue
        pattern = f"{target}/*"
        if pattern not in excludes:
            excludes.append(pattern)
    return excludes


def root_excludes(
    new_root: str, extra: Sequence[str] = (), mountpoints: Iterable[str] = ()
) -> list[str]:
    """Excludes for copying ``/`` into ``new_root`` on a live system."""
    excludes = list(ROOT_EXCLUDES)
    staging = new_root.rstrip("/")
    if not staging.startswith("/mnt/"):
        excludes.append(staging)
    excludes.extend(mount_excludes(mountpoints, skip=[staging]))
    excludes.extend(extra)
    return excludes


def root_copy_bytes(mountpoints: Iterable[str], home: str = "/home") -> int:
    """Bytes the root copy writes: ``/`` without /home, plus folded mounts.

    /home only counts against ``/`` when it is a plain directory there; a
    separate /home filesystem never shows up in the root's used space.
    """
    used = shutil.disk_usage("/").used
    if os.path.isdir(home) and same_filesystem("/", home):
        used -= directory_usage(home)
    mounted = {target.rstrip("/") for target in mountpoints}
    for target in FOLDED_MOUNTS:
        if target in mounted:
            used += shutil.disk_usage(target).used
    return max(used, 0)


def sync_tree(source: str, destination: str, excludes: Iterable[str] = ()) -> int:
    """Copy ``source`` into ``destination`` preserving ACLs, xattrs and links.

    Returns:
        rsync's exit status (0, or 23/24 on a live system)

    Raises:
        TransferError: If rsync fails with any other status
    """
    source = source.rstrip("/") + "/"
    destination = destination.rstrip("/") + "/"
    command = build_rsync_command(source, destination, excludes)
    try:
        result = run_passthrough(command)
    except OSError as error:
        raise TransferError(f"Could not run rsync: {error}") from error

    if result.returncode in RSYNC_PARTIAL_CODES:
        log.warning(
            f"rsync {source} -> {destination} finished with code {result.returncode} "
            "(some files changed or vanished during the copy)"
        )
    elif result.returncode != 0:
        raise TransferError(
            f"rsync {source} -> {destination} failed with code {result.returncode}",
            returncode=result.returncode,
        )
    return result.returncode
