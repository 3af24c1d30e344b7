"""Volume manager interface over the LVM2 command line tools.

Reporting commands are run with ``--noheadings`` and parsed column by column;
everything that changes volume group state raises a typed LvmError subclass
with the tool's own error text.
"""

from __future__ import annotations

import subprocess
from typing import Optional

from nvme_migrate.domain.models import VolumeGroupState
from nvme_migrate.logging import LoggerFactory
from nvme_migrate.storage.devices import command_error_text, run_command, run_passthrough
from nvme_migrate.storage.exceptions import (
    LogicalVolumeGrowError,
    VolumeGroupExtendError,
    VolumeGroupQueryError,
)
from nvme_migrate.storage.mount import is_mounted


log = LoggerFactory.for_lvm()

EXT_FILESYSTEMS = {"ext2", "ext3", "ext4"}


def _columns(line: str) -> list[str]:
    return line.split()


def logical_volume_of(device: str) -> tuple[Optional[str], Optional[str]]:
    """Return (vg_name, lv_name) for a device, or (None, None) if it is no LV."""
    result = run_command(
        ["lvs", "--noheadings", "-o", "vg_name,lv_name", device], check=False
    )
    if result.returncode != 0:
        return None, None
    for line in (result.stdout or "").splitlines():
        columns = _columns(line)
        if len(columns) >= 2:
            return columns[0], columns[1]
    return None, None


def list_physical_volumes() -> list[tuple[str, str]]:
    """Return (pv_name, vg_name) pairs; vg_name is "" for orphan PVs."""
    result = run_command(
        ["pvs", "--noheadings", "-o", "pv_name,vg_name"], check=False
    )
    pvs: list[tuple[str, str]] = []
    if result.returncode != 0:
        log.warning("pvs failed, no physical volumes listed")
        return pvs
    for line in (result.stdout or "").splitlines():
        columns = _columns(line)
        if not columns:
            continue
        pvs.append((columns[0], columns[1] if len(columns) > 1 else ""))
    return pvs


def volume_group_state(vg_name: str) -> VolumeGroupState:
    """Size, free extents and member PVs of ``vg_name``.

    Raises:
        VolumeGroupQueryError: If vgs fails or prints something unparseable
    """
    try:
        result = run_command(
            [
                "vgs",
                "--noheadings",
                "--units",
                "b",
                "--nosuffix",
                "-o",
                "vg_name,vg_size,vg_free_count",
                vg_name,
            ]
        )
    except subprocess.CalledProcessError as error:
        raise VolumeGroupQueryError(vg_name, command_error_text(error)) from error
    columns = _columns(result.stdout or "")
    if len(columns) < 3:
        raise VolumeGroupQueryError(vg_name, f"unexpected vgs output {result.stdout!r}")
    try:
        size_bytes = int(float(columns[1]))
        free_extents = int(columns[2])
    except ValueError as error:
        raise VolumeGroupQueryError(vg_name, f"unexpected vgs output {result.stdout!r}") from error
    members = tuple(pv for pv, vg in list_physical_volumes() if vg == vg_name)
    return VolumeGroupState(
        name=columns[0],
        size_bytes=size_bytes,
        free_extents=free_extents,
        pv_names=members,
    )


def create_physical_volume(device: str, vg_name: str) -> None:
    try:
        run_command(["pvcreate", "-ff", "-y", device])
    except subprocess.CalledProcessError as error:
        raise VolumeGroupExtendError(vg_name, device, command_error_text(error)) from error
    log.info(f"Created physical volume {device}")


def extend_volume_group(vg_name: str, device: str) -> None:
    try:
        run_command(["vgextend", vg_name, device])
    except subprocess.CalledProcessError as error:
        raise VolumeGroupExtendError(vg_name, device, command_error_text(error)) from error
    log.info(f"Extended volume group {vg_name} with {device}")


def extend_logical_volume(lv_path: str) -> None:
    """Grow ``lv_path`` over every free extent of its volume group."""
    try:
        run_command(["lvextend", "-l", "+100%FREE", lv_path])
    except subprocess.CalledProcessError as error:
        raise LogicalVolumeGrowError(lv_path, command_error_text(error)) from error
    log.info(f"Extended logical volume {lv_path}")


def grow_filesystem(lv_path: str, fstype: Optional[str], mountpoint: str) -> bool:
    """Grow the filesystem on ``lv_path`` online.

    Returns:
        True if a resize ran, False when the type is unknown or xfs is not mounted
    """
    if fstype in EXT_FILESYSTEMS:
        command = ["resize2fs", lv_path]
    elif fstype == "xfs":
        if not is_mounted(mountpoint):
            log.warning(f"xfs on {lv_path} is not mounted at {mountpoint}, not growing it")
            return False
        command = ["xfs_growfs", mountpoint]
    else:
        log.warning(
            f"Unknown filesystem type {fstype or '(none)'} on {lv_path}, resize it manually"
        )
        return False

    try:
        run_command(command)
    except subprocess.CalledProcessError as error:
        raise LogicalVolumeGrowError(lv_path, command_error_text(error)) from error
    log.info(f"Grew {fstype} filesystem on {lv_path}")
    return True


def move_extents(old_pv: str, new_pv: str, interval_seconds: int) -> int:
    """Run pvmove in the foreground, returning its exit status."""
    log.info(f"Moving extents {old_pv} -> {new_pv}")
    result = run_passthrough(["pvmove", "-i", str(interval_seconds), old_pv, new_pv])
    return result.returncode


def reduce_volume_group(vg_name: str, pv: str) -> int:
    result = run_command(["vgreduce", vg_name, pv], check=False)
    return result.returncode
