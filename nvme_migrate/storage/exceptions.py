"""Custom exceptions for migration operations.

Every failure that should stop the pipeline is raised as a subclass of
MigrationError, so the pipeline can catch one type, record the reason and
exit non-zero.

Exception Hierarchy:
    MigrationError (base)
        ├── PreconditionError
        │   ├── DeviceNotFoundError
        │   ├── NotABlockDeviceError
        │   ├── SourceDestinationSameError
        │   ├── MissingToolError
        │   └── InsufficientSpaceError
        ├── ProvisioningError
        │   ├── PartitionTableError
        │   ├── DeviceNodeTimeoutError
        │   └── FormatOperationError
        ├── TransferError
        ├── BootloaderError
        ├── LvmError
        │   ├── VolumeGroupQueryError
        │   ├── VolumeGroupExtendError
        │   ├── LogicalVolumeGrowError
        │   └── RelocationError
        └── MountError
            ├── MountOperationError
            └── UnmountFailedError

Usage:
    from nvme_migrate.storage.exceptions import SourceDestinationSameError

    if destination == root_disk:
        raise SourceDestinationSameError(root_disk, destination)
"""

from __future__ import annotations

from typing import Iterable, Optional


class MigrationError(Exception):
    """Base exception for all migration operations."""


class PreconditionError(MigrationError):
    """A check that must pass before any destructive command failed."""


class DeviceNotFoundError(PreconditionError):
    """Device was not found or does not exist."""

    def __init__(self, device_name: str, detail: str = ""):
        self.device_name = device_name
        self.detail = detail
        msg = f"Device not found: {device_name}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class NotABlockDeviceError(PreconditionError):
    """Path exists but is not a block device."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Not a block device: {path}")


class SourceDestinationSameError(PreconditionError):
    """Destination disk is the disk currently holding the root filesystem."""

    def __init__(self, source_name: str, destination_name: str):
        self.source_name = source_name
        self.destination_name = destination_name
        super().__init__(
            f"Destination cannot be the current root disk: "
            f"{destination_name} == {source_name}"
        )


class MissingToolError(PreconditionError):
    """One or more required command line tools are not installed."""

    def __init__(self, tools: Iterable[str]):
        self.tools = sorted(tools)
        super().__init__(f"Required tools not found: {', '.join(self.tools)}")


class InsufficientSpaceError(PreconditionError):
    """Data to copy does not fit the fixed root partition."""

    def __init__(self, source_name: str, used_bytes: int, capacity_bytes: int):
        self.source_name = source_name
        self.used_bytes = used_bytes
        self.capacity_bytes = capacity_bytes
        super().__init__(
            f"{source_name} uses {used_bytes} bytes which does not fit "
            f"a {capacity_bytes} byte root partition"
        )


class ProvisioningError(MigrationError):
    """Base exception for destination disk preparation."""


class PartitionTableError(ProvisioningError):
    """parted could not write the partition table."""

    def __init__(self, device: str, reason: str):
        self.device = device
        self.reason = reason
        super().__init__(f"Failed to partition {device}: {reason}")


class DeviceNodeTimeoutError(ProvisioningError):
    """Partition device nodes did not appear in time."""

    def __init__(self, missing: Iterable[str], attempts: int):
        self.missing = list(missing)
        self.attempts = attempts
        super().__init__(
            f"Partition nodes did not appear after {attempts} attempts: "
            f"{', '.join(self.missing)}"
        )


class FormatOperationError(ProvisioningError):
    """Generic format operation failure."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class TransferError(MigrationError):
    """Copying the live root into the new root failed."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message)


class BootloaderError(MigrationError):
    """initramfs, GRUB or fstab work inside the new root failed."""

    def __init__(self, message: str, command: Optional[list[str]] = None):
        self.command = command
        super().__init__(message)


class LvmError(MigrationError):
    """Base exception for volume manager operations."""


class VolumeGroupQueryError(LvmError):
    """vgs could not report the size or free extents of a volume group."""

    def __init__(self, volume_group: str, reason: str):
        self.volume_group = volume_group
        self.reason = reason
        super().__init__(f"Failed to query volume group {volume_group}: {reason}")


class VolumeGroupExtendError(LvmError):
    """The new physical volume could not be added to the volume group."""

    def __init__(self, volume_group: str, pv: str, reason: str):
        self.volume_group = volume_group
        self.pv = pv
        self.reason = reason
        super().__init__(f"Failed to extend {volume_group} with {pv}: {reason}")


class LogicalVolumeGrowError(LvmError):
    """The /home logical volume or its filesystem could not be grown."""

    def __init__(self, lv_path: str, reason: str):
        self.lv_path = lv_path
        self.reason = reason
        super().__init__(f"Failed to grow {lv_path}: {reason}")


class RelocationError(LvmError):
    """Moving extents off the old physical volume failed or was refused."""

    def __init__(self, message: str, recovery_steps: Optional[list[str]] = None):
        self.recovery_steps = list(recovery_steps or [])
        super().__init__(message)


class MountError(MigrationError):
    """Base exception for mount-related errors."""


class MountOperationError(MountError):
    """A mount or bind mount failed."""

    def __init__(self, source: str, target: str, reason: str):
        self.source = source
        self.target = target
        self.reason = reason
        super().__init__(f"Failed to mount {source} on {target}: {reason}")


class UnmountFailedError(MountError):
    """Failed to unmount a target, even lazily."""

    def __init__(self, mountpoint: str, reason: str = ""):
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to unmount {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
