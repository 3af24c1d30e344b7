"""Safety validation run before any destructive migration step.

This module provides validation functions to prevent dangerous operations:
- Validates the destination is a real block device
- Validates destination is none of the disks holding the running root filesystem
- Checks every required external tool is installed
- Checks the live root fits the fixed-size root partition

All validation functions raise specific exceptions from the exceptions module
rather than returning boolean values, making error handling more explicit.

Example:
    from nvme_migrate.storage.validation import validate_destination

    try:
        validate_destination("/dev/sdb", snapshot.root_disk, snapshot.root_disks)
    except SourceDestinationSameError:
        # Refuse to touch the running disk
        pass
"""

import os
import shutil
from typing import Iterable, Optional, Sequence

from .devices import is_block_device, resolve_device_path
from .exceptions import (
    DeviceNotFoundError,
    InsufficientSpaceError,
    MissingToolError,
    NotABlockDeviceError,
    SourceDestinationSameError,
)


BASE_TOOLS = (
    "findmnt",
    "lsblk",
    "blkid",
    "blockdev",
    "swapon",
    "partprobe",
    "udevadm",
    "parted",
    "mkfs.ext4",
    "mkswap",
    "rsync",
    "mount",
    "umount",
    "chroot",
    "du",
)

UEFI_TOOLS = ("mkfs.vfat",)

LVM_TOOLS = (
    "lvs",
    "vgs",
    "pvs",
    "pvcreate",
    "vgextend",
    "lvextend",
    "resize2fs",
    "pvmove",
    "vgreduce",
)


def validate_tools(tools: Iterable[str]) -> None:
    """Validate that every tool in ``tools`` is on PATH.

    Raises:
        MissingToolError: Listing every missing tool at once
    """
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise MissingToolError(missing)


def validate_block_device(path: str) -> None:
    """Validate that ``path`` exists and is a block device.

    Raises:
        DeviceNotFoundError: If nothing exists at ``path``
        NotABlockDeviceError: If ``path`` is not a block device
    """
    if not path:
        raise DeviceNotFoundError("(empty path)")
    if not os.path.exists(path):
        raise DeviceNotFoundError(path)
    if not is_block_device(path):
        raise NotABlockDeviceError(path)


def validate_devices_different(
    root_disk: str, destination: str, other_disks: Sequence[str] = ()
) -> None:
    """Validate that the destination is not a disk the running root sits on.

    ``other_disks`` lists the remaining disks under an LVM or RAID
    root. All paths are compared after resolving symlinks, so /dev/disk/by-id
    aliases of those disks are refused too.

    Raises:
        SourceDestinationSameError: If the destination resolves to any of them
    """
    target = resolve_device_path(destination)
    for disk in (root_disk, *other_disks):
        if resolve_device_path(disk) == target:
            raise SourceDestinationSameError(disk, destination)


def validate_destination(
    destination: str, root_disk: str, other_disks: Sequence[str] = ()
) -> None:
    validate_block_device(destination)
    validate_devices_different(root_disk, destination, other_disks)


def validate_root_fits(
    capacity_bytes: int, used_bytes: Optional[int] = None, path: str = "/"
) -> None:
    """Validate that the data to copy fits ``capacity_bytes``.

    ``used_bytes`` is the size of the copy when the caller measured it; the
    used space of the filesystem at ``path`` is the fallback.

    Raises:
        InsufficientSpaceError: If used space exceeds the capacity
    """
    used = used_bytes if used_bytes is not None else shutil.disk_usage(path).used
    if used > capacity_bytes:
        raise InsufficientSpaceError(path, used, capacity_bytes)
