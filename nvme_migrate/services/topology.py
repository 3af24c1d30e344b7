"""Detect boot mode and the disk topology of the running system."""

from __future__ import annotations

import os
import re
from typing import Optional

from nvme_migrate.domain.models import BootMode, DiskTopologySnapshot
from nvme_migrate.logging import LoggerFactory
from nvme_migrate.storage import lvm
from nvme_migrate.storage.devices import (
    block_device_size,
    findmnt_source,
    human_size,
    lsblk_disks,
    lsblk_parent,
    run_command,
)
from nvme_migrate.storage.exceptions import DeviceNotFoundError


log = LoggerFactory.for_detect()

EFI_FIRMWARE_PATH = "/sys/firmware/efi"

_NUMBERED_DISK_PARTITION = re.compile(r"^(?P<disk>.*\d)p\d+$")
_PLAIN_DISK_PARTITION = re.compile(r"^(?P<disk>.*[^\d/])\d+$")
_WHOLE_NUMBERED_DISK = re.compile(r"^(nvme\d+n\d+|mmcblk\d+|loop\d+|nbd\d+)$")


def detect_boot_mode(efi_path: str = EFI_FIRMWARE_PATH) -> BootMode:
    if os.path.isdir(efi_path):
        return BootMode.UEFI
    return BootMode.BIOS


def resolve_boot_mode(detected: BootMode, override: Optional[str]) -> BootMode:
    """Apply an operator override; anything but BIOS/UEFI keeps ``detected``."""
    chosen = BootMode.parse(override)
    if chosen is None:
        if override and override.strip():
            log.warning(
                f"Ignoring invalid boot mode '{override.strip()}', keeping {detected.value}"
            )
        return detected
    if chosen is not detected:
        log.info(f"Boot mode overridden: {detected.value} -> {chosen.value}")
    return chosen


def strip_partition_suffix(device: str) -> str:
    """Derive a disk path from a partition path by name alone.

    ``/dev/nvme0n1p2`` -> ``/dev/nvme0n1``, ``/dev/sda2`` -> ``/dev/sda``.
    Device-mapper names carry no partition number and are returned unchanged.
    """
    name = os.path.basename(device)
    if device.startswith("/dev/mapper/") or name.startswith("dm-"):
        return device
    match = _NUMBERED_DISK_PARTITION.match(device)
    if match:
        return match.group("disk")
    if _WHOLE_NUMBERED_DISK.match(name):
        return device
    match = _PLAIN_DISK_PARTITION.match(device)
    if match:
        return match.group("disk")
    return device


def walk_parents(device: str, max_depth: int = 8) -> str:
    """Follow PKNAME links from ``device`` until a node reports no parent."""
    current = device
    seen = {device}
    for _ in range(max_depth):
        parent = lsblk_parent(current)
        if not parent or parent in seen:
            break
        seen.add(parent)
        current = parent
    return current


def resolve_root_disks(root_device: str) -> list[str]:
    """Every whole disk the root filesystem lives on, primary disk first.

    A root on LVM or dm-crypt sits more than one level above its disk, so a
    single parent lookup would stop at a partition.
    """
    disks = lsblk_disks(root_device)
    if disks:
        return disks
    top = walk_parents(root_device)
    if top != root_device:
        return [top]
    disk = strip_partition_suffix(root_device)
    log.debug(f"lsblk reported no parent for {root_device}, using {disk}")
    return [disk]


def resolve_root_disk(root_device: str) -> str:
    return resolve_root_disks(root_device)[0]


def detect_root_device() -> str:
    source = findmnt_source("/")
    if not source:
        raise DeviceNotFoundError("/", "no mount source reported for the root filesystem")
    return source


def detect_swap() -> tuple[Optional[str], int]:
    """Return the first active swap device and its size in bytes.

    swapon reports the size of swap files as well as partitions; blockdev is
    only asked when that column is missing.
    """
    result = run_command(
        ["swapon", "--noheadings", "--show=NAME,SIZE", "--bytes"], check=False
    )
    if result.returncode != 0:
        return None, 0
    for line in (result.stdout or "").splitlines():
        columns = line.split()
        if not columns:
            continue
        name = columns[0]
        if len(columns) > 1 and columns[1].isdigit():
            return name, int(columns[1])
        return name, block_device_size(name)
    return None, 0


def detect_home_volume() -> tuple[Optional[str], Optional[str], Optional[str]]:
    """Return (source, vg, lv) for /home; missing pieces are None."""
    source = findmnt_source("/home")
    if not source:
        return None, None, None
    vg_name, lv_name = lvm.logical_volume_of(source)
    return source, vg_name, lv_name


def detect_topology() -> DiskTopologySnapshot:
    root_device = detect_root_device()
    root_disks = resolve_root_disks(root_device)
    root_disk = root_disks[0]
    swap_device, swap_size = detect_swap()
    home_device, vg_name, lv_name = detect_home_volume()

    snapshot = DiskTopologySnapshot(
        root_device=root_device,
        root_disk=root_disk,
        swap_device=swap_device,
        swap_size_bytes=swap_size,
        volume_group=vg_name,
        logical_volume=lv_name,
        home_device=home_device,
        root_disks=tuple(root_disks),
    )

    log.info(f"Root device: {root_device}, root disk: {root_disk}")
    if len(root_disks) > 1:
        log.info(f"Root filesystem spans disks: {', '.join(root_disks)}")
    if swap_device:
        log.info(f"Swap: {swap_device} ({human_size(swap_size)})")
    else:
        log.info("No active swap detected, using the 1 GiB minimum")
    if snapshot.has_home_volume:
        log.info(f"/home logical volume: {vg_name}/{lv_name}")
    else:
        log.info("/home is not on a logical volume, LVM steps will be skipped")
    return snapshot
