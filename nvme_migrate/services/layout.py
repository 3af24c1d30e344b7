"""Partition layout planning for the destination disk.

Everything here is pure: no command is run and no device needs to exist.

Layouts (S = swap size in GiB, at least 1):

    UEFI  1 root       1MiB      .. 37GiB      ext4
          2 swap       37GiB     .. 37+S GiB   linux-swap
          3 ESP        37+S GiB  .. 100%       fat32, boot+esp

    BIOS  1 bios_boot  1MiB      .. 2MiB       bios_grub
          2 root       2MiB      .. 37GiB      ext4
          3 swap       37GiB     .. 37+S GiB   linux-swap
          4 lvm        37+S GiB  .. 100%       lvm
"""

from __future__ import annotations

import math
import os

from nvme_migrate.domain.models import (
    GIB,
    BootMode,
    DeviceNodeSet,
    PartitionPlan,
    PartitionRole,
    PartitionSpec,
)


ROOT_SIZE_GIB = 37
ROOT_SIZE_BYTES = ROOT_SIZE_GIB * GIB


def swap_size_gib(swap_size_bytes: int) -> int:
    return max(1, math.ceil(max(0, swap_size_bytes) / GIB))


def plan(boot_mode: BootMode, swap_size_bytes: int) -> PartitionPlan:
    swap_gib = swap_size_gib(swap_size_bytes)
    swap_end = f"{ROOT_SIZE_GIB + swap_gib}GiB"
    root_end = f"{ROOT_SIZE_GIB}GiB"

    if boot_mode is BootMode.UEFI:
        partitions = (
            PartitionSpec(1, "1MiB", root_end, PartitionRole.ROOT, "ext4"),
            PartitionSpec(2, root_end, swap_end, PartitionRole.SWAP, "linux-swap"),
            PartitionSpec(
                3, swap_end, "100%", PartitionRole.ESP, "fat32", ("boot", "esp")
            ),
        )
    else:
        partitions = (
            PartitionSpec(
                1, "1MiB", "2MiB", PartitionRole.BIOS_BOOT, None, ("bios_grub",)
            ),
            PartitionSpec(2, "2MiB", root_end, PartitionRole.ROOT, "ext4"),
            PartitionSpec(3, root_end, swap_end, PartitionRole.SWAP, "linux-swap"),
            PartitionSpec(4, swap_end, "100%", PartitionRole.LVM, None, ("lvm",)),
        )
    return PartitionPlan(boot_mode=boot_mode, swap_size_gib=swap_gib, partitions=partitions)


def is_nvme_style(disk: str) -> bool:
    """Disks whose name ends in a digit (nvme0n1, mmcblk0) use a ``p`` separator."""
    # the kernel names partitions this way: any disk name ending in a digit
    # gets "p" before the partition number, so loop0p1 and md0p1 as well
    name = os.path.basename(disk.rstrip("/"))
    return bool(name) and name[-1].isdigit()


def partition_path(disk: str, number: int) -> str:
    separator = "p" if is_nvme_style(disk) else ""
    return f"{disk.rstrip('/')}{separator}{number}"


def device_nodes(partition_plan: PartitionPlan, disk: str) -> DeviceNodeSet:
    def node(role: PartitionRole) -> str:
        spec = partition_plan.by_role(role)
        if spec is None:
            raise ValueError(f"{partition_plan.boot_mode.value} plan has no {role.value} partition")
        return partition_path(disk, spec.index)

    bios_spec = partition_plan.by_role(PartitionRole.BIOS_BOOT)
    return DeviceNodeSet(
        disk=disk,
        root=node(PartitionRole.ROOT),
        swap=node(PartitionRole.SWAP),
        extra=node(partition_plan.extra_role),
        extra_role=partition_plan.extra_role,
        bios_boot=partition_path(disk, bios_spec.index) if bios_spec else None,
    )
