"""Partition table writing and filesystem creation for the destination disk.

Partitioning:
    - GPT partition table written with parted
    - One ``mkpart`` per planned partition, using parted's own position syntax
    - Partition flags (bios_grub, lvm, boot, esp) set after creation
    - mklabel is retried with increasing delays while the kernel settles

Filesystems:
    ext4:        root partition (``mkfs.ext4 -F``)
    linux-swap:  swap partition (``mkswap``)
    vfat:        EFI System Partition (``mkfs.vfat -F 32``)

BIOS boot and LVM partitions are left unformatted.

Example:
    >>> from nvme_migrate.storage.format import write_partition_table
    >>> write_partition_table("/dev/nvme1n1", plan)
"""

import subprocess
import time
from typing import Iterable

from nvme_migrate.domain.models import PartitionPlan, PartitionRole, PartitionSpec
from nvme_migrate.logging import LoggerFactory
from nvme_migrate.storage.devices import (
    command_error_text,
    is_block_device,
    reread_partition_table,
    run_command,
)
from nvme_migrate.storage.exceptions import (
    DeviceNodeTimeoutError,
    FormatOperationError,
    PartitionTableError,
)


log = LoggerFactory.for_provision()

MKLABEL_RETRY_DELAYS = [2, 4, 6]

PARTITION_NAMES = {
    PartitionRole.BIOS_BOOT: "bios_boot",
    PartitionRole.ROOT: "root",
    PartitionRole.SWAP: "swap",
    PartitionRole.ESP: "ESP",
    PartitionRole.LVM: "lvm",
}

ROOT_LABEL = "rootfs"
SWAP_LABEL = "swap"
ESP_LABEL = "EFI"


def _create_partition_table(device_path: str) -> None:
    """Write an empty GPT label, retrying while the device is busy."""
    max_retries = len(MKLABEL_RETRY_DELAYS)
    for attempt in range(max_retries):
        log.debug(
            f"Creating GPT partition table on {device_path} (attempt {attempt + 1}/{max_retries})"
        )
        result = run_command(
            ["parted", "-s", device_path, "mklabel", "gpt"],
            check=False,
            log_command=False,
        )
        if result.returncode == 0:
            log.debug("Partition table created successfully")
            return

        stderr_msg = result.stderr.strip() if result.stderr else "no error message"
        log.error(
            f"parted failed (attempt {attempt + 1}/{max_retries}): stderr='{stderr_msg}' rc={result.returncode}"
        )
        if attempt < max_retries - 1:
            delay = MKLABEL_RETRY_DELAYS[attempt]
            log.debug(f"Retrying in {delay} seconds...")
            reread_partition_table(device_path)
            time.sleep(delay)
        else:
            raise PartitionTableError(device_path, stderr_msg)


def _mkpart_command(device_path: str, spec: PartitionSpec) -> list[str]:
    command = [
        "parted",
        "-s",
        "-a",
        "optimal",
        device_path,
        "mkpart",
        PARTITION_NAMES[spec.role],
    ]
    if spec.filesystem:
        command.append(spec.filesystem)
    command.extend([spec.start, spec.end])
    return command


def write_partition_table(device_path: str, plan: PartitionPlan) -> None:
    """Replace the partition table of ``device_path`` with ``plan``.

    Raises:
        PartitionTableError: If any parted call fails
    """
    log.info(
        f"Writing {plan.boot_mode.value} partition table ({len(plan.partitions)} partitions) to {device_path}"
    )
    _create_partition_table(device_path)

    for spec in plan.partitions:
        try:
            run_command(_mkpart_command(device_path, spec))
            for flag in spec.flags:
                run_command(
                    ["parted", "-s", device_path, "set", str(spec.index), flag, "on"]
                )
        except subprocess.CalledProcessError as error:
            raise PartitionTableError(
                device_path,
                f"partition {spec.index} ({spec.role.value}): {command_error_text(error)}",
            ) from error
        log.debug(
            f"Created partition {spec.index} ({spec.role.value}) {spec.start}..{spec.end}"
        )

    reread_partition_table(device_path)


def wait_for_device_nodes(
    device_path: str,
    node_paths: Iterable[str],
    attempts: int = 5,
    delay: float = 1.0,
) -> None:
    """Wait until every partition node exists as a block device.

    Each round that finds missing nodes asks the kernel to re-read the
    partition table and waits for udev before sleeping.

    Raises:
        DeviceNodeTimeoutError: If nodes are still missing after ``attempts`` rounds
    """
    nodes = list(node_paths)
    missing = nodes
    for attempt in range(1, attempts + 1):
        missing = [node for node in nodes if not is_block_device(node)]
        if not missing:
            log.debug(f"All partition nodes present: {', '.join(nodes)}")
            return
        log.debug(
            f"Waiting for partition nodes (attempt {attempt}/{attempts}): {', '.join(missing)}"
        )
        reread_partition_table(device_path)
        time.sleep(delay)

    missing = [node for node in nodes if not is_block_device(node)]
    if missing:
        raise DeviceNodeTimeoutError(missing, attempts)


def _run_mkfs(command: list[str], partition_path: str, filesystem: str) -> None:
    log.debug(f"Formatting {partition_path} as {filesystem}")
    try:
        run_command(command)
    except subprocess.CalledProcessError as error:
        log.error(f"Format command failed: {' '.join(command)}")
        raise FormatOperationError(
            f"Failed to format {partition_path} as {filesystem}: {command_error_text(error)}",
            device=partition_path,
        ) from error
    log.info(f"Formatted {partition_path} as {filesystem}")


def make_ext4(partition_path: str, label: str = ROOT_LABEL) -> None:
    _run_mkfs(["mkfs.ext4", "-F", "-L", label, partition_path], partition_path, "ext4")


def make_swap(partition_path: str, label: str = SWAP_LABEL) -> None:
    _run_mkfs(["mkswap", "-L", label, partition_path], partition_path, "swap")


def make_vfat(partition_path: str, label: str = ESP_LABEL) -> None:
    _run_mkfs(
        ["mkfs.vfat", "-F", "32", "-n", label, partition_path], partition_path, "vfat"
    )
