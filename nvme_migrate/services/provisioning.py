"""Apply a partition plan to the destination disk and stage the new root.

Order of work:
    1. validate the destination (block device, not a disk under the running root)
    2. write the GPT partition table
    3. wait for the partition nodes to appear
    4. format root, swap and (UEFI) the ESP
    5. mount the new root and create the top-level directories
    6. copy the live root into it, without /home
    7. bind the live pseudo filesystems and /home into it

Everything after step 2 runs on a disk whose previous contents are gone;
failures are raised, never rolled back.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Optional, Sequence

from nvme_migrate.domain.models import DeviceNodeSet, PartitionPlan, PartitionRole
from nvme_migrate.logging import LoggerFactory
from nvme_migrate.services.layout import device_nodes
from nvme_migrate.storage.devices import list_mountpoints
from nvme_migrate.storage import format as disk_format
from nvme_migrate.storage.mount import bind_mount, mount_device
from nvme_migrate.storage.transfer import root_excludes, sync_tree
from nvme_migrate.storage.validation import validate_destination


log = LoggerFactory.for_provision()

TOP_LEVEL_DIRS = ("dev", "proc", "sys", "run", "tmp", "home", "boot", "mnt", "media")
SYSTEM_BINDS = ("dev", "dev/pts", "proc", "sys", "run")


def prepare_disk(
    destination: str,
    partition_plan: PartitionPlan,
    wait_attempts: int = 5,
    wait_delay: float = 1.0,
) -> DeviceNodeSet:
    """Partition and format ``destination``; returns the new device nodes."""
    nodes = device_nodes(partition_plan, destination)
    disk_format.write_partition_table(destination, partition_plan)
    disk_format.wait_for_device_nodes(
        destination, nodes.all_paths(), attempts=wait_attempts, delay=wait_delay
    )

    disk_format.make_ext4(nodes.root)
    disk_format.make_swap(nodes.swap)
    if nodes.extra_role is PartitionRole.ESP:
        disk_format.make_vfat(nodes.extra)
    return nodes


def stage_root(root_node: str, new_root: str) -> None:
    """Mount the new root filesystem and lay out its top-level directories."""
    mount_device(root_node, new_root)
    for name in TOP_LEVEL_DIRS:
        Path(new_root, name).mkdir(parents=True, exist_ok=True)
    os.chmod(Path(new_root, "tmp"), 0o1777)
    log.info(f"Mounted {root_node} on {new_root}")


def copy_root(new_root: str, extra_excludes: Sequence[str] = ()) -> int:
    """Copy the live ``/`` into ``new_root``; /home is migrated with LVM instead.

    Other mounted filesystems (data volumes, the ESP) are left out; a separate
    /boot is copied along since the new disk has no partition for it.
    """
    log.info(f"Copying / to {new_root}")
    excludes = root_excludes(new_root, extra_excludes, list_mountpoints())
    return sync_tree("/", new_root, excludes)


def bind_system_mounts(new_root: str, bind_home: bool = True) -> None:
    for name in SYSTEM_BINDS:
        bind_mount(f"/{name}", os.path.join(new_root, name))
    if bind_home and os.path.isdir("/home"):
        bind_mount("/home", os.path.join(new_root, "home"))
    log.debug(f"Bound live system mounts into {new_root}")


def provision(
    destination: str,
    partition_plan: PartitionPlan,
    root_disk: str,
    new_root: str,
    *,
    root_disks: Sequence[str] = (),
    extra_excludes: Sequence[str] = (),
    wait_attempts: int = 5,
    wait_delay: float = 1.0,
    on_step: Optional[Callable[[str], None]] = None,
) -> DeviceNodeSet:
    """Destroy ``destination`` and stage a copy of the running root on it.

    Raises:
        PreconditionError: Before any destructive call, for an invalid destination
        ProvisioningError: Partition table, device node or format failures
        TransferError: The copy failed; the new root stays mounted
        MountError: Mounting the new root or a bind mount failed
    """

    def step(name: str) -> None:
        if on_step:
            on_step(name)

    validate_destination(destination, root_disk, root_disks)

    step("partition")
    nodes = prepare_disk(
        destination, partition_plan, wait_attempts=wait_attempts, wait_delay=wait_delay
    )

    step("mount")
    stage_root(nodes.root, new_root)

    step("copy")
    copy_root(new_root, extra_excludes)

    step("bind")
    bind_system_mounts(new_root)
    return nodes
