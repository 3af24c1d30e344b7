"""Domain model for a root + swap + LVM /home disk migration.

Detection, planning and the later pipeline stages exchange these objects
instead of raw command output, so each stage only reads the fields it needs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


GIB = 1024**3
MIB = 1024**2


# ==============================================================================
# Boot Mode
# ==============================================================================


class BootMode(Enum):
    """Firmware interface the destination disk must boot under."""

    BIOS = "BIOS"
    UEFI = "UEFI"

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional[BootMode]:
        """Return the mode named by ``text`` or None when it names neither."""
        if not text:
            return None
        candidate = text.strip().upper()
        for mode in cls:
            if mode.value == candidate:
                return mode
        return None


# ==============================================================================
# Source Topology
# ==============================================================================


@dataclass(frozen=True)
class DiskTopologySnapshot:
    """What the running system looks like, captured once before planning."""

    root_device: str  # e.g., "/dev/nvme0n1p2"
    root_disk: str  # e.g., "/dev/nvme0n1"
    swap_device: Optional[str] = None
    swap_size_bytes: int = 0
    volume_group: Optional[str] = None
    logical_volume: Optional[str] = None
    home_device: Optional[str] = None
    # every disk under the root filesystem (several for LVM/RAID roots)
    root_disks: tuple[str, ...] = ()

    @property
    def protected_disks(self) -> tuple[str, ...]:
        """Disks that must never be chosen as the destination."""
        disks = [self.root_disk]
        disks.extend(disk for disk in self.root_disks if disk not in disks)
        return tuple(disks)

    @property
    def has_swap(self) -> bool:
        return self.swap_device is not None

    @property
    def has_home_volume(self) -> bool:
        return bool(self.volume_group and self.logical_volume)

    @property
    def home_lv_path(self) -> Optional[str]:
        """Device path of the /home logical volume (e.g., /dev/vg0/home)."""
        if not self.has_home_volume:
            return None
        return f"/dev/{self.volume_group}/{self.logical_volume}"

    @property
    def swap_size_gib(self) -> int:
        return max(1, math.ceil(self.swap_size_bytes / GIB))


# ==============================================================================
# Partition Plan
# ==============================================================================


class PartitionRole(Enum):
    BIOS_BOOT = "bios_boot"
    ROOT = "root"
    SWAP = "swap"
    ESP = "esp"
    LVM = "lvm"


def _position_mib(position: str) -> Optional[int]:
    """Convert a parted position ("1MiB", "37GiB") to MiB; "100%" gives None."""
    if position.endswith("%"):
        return None
    if position.endswith("GiB"):
        return int(position[:-3]) * 1024
    if position.endswith("MiB"):
        return int(position[:-3])
    raise ValueError(f"Unsupported partition position: {position}")


@dataclass(frozen=True)
class PartitionSpec:
    """One partition of a plan, in parted's own position syntax."""

    index: int  # 1-based partition number
    start: str  # e.g., "1MiB"
    end: str  # e.g., "37GiB" or "100%"
    role: PartitionRole
    filesystem: Optional[str] = None  # parted fs-type hint
    flags: tuple[str, ...] = ()

    @property
    def start_mib(self) -> int:
        value = _position_mib(self.start)
        if value is None:
            raise ValueError("A partition cannot start at a percentage")
        return value

    @property
    def end_mib(self) -> Optional[int]:
        return _position_mib(self.end)

    @property
    def fills_disk(self) -> bool:
        return self.end == "100%"

    @property
    def size_mib(self) -> Optional[int]:
        end = self.end_mib
        if end is None:
            return None
        return end - self.start_mib


@dataclass(frozen=True)
class PartitionPlan:
    """Ordered, immutable partition layout for the destination disk."""

    boot_mode: BootMode
    swap_size_gib: int
    partitions: tuple[PartitionSpec, ...]

    @property
    def roles(self) -> tuple[PartitionRole, ...]:
        return tuple(spec.role for spec in self.partitions)

    @property
    def extra_role(self) -> PartitionRole:
        """Role of the last partition: ESP under UEFI, LVM under BIOS."""
        if self.boot_mode is BootMode.UEFI:
            return PartitionRole.ESP
        return PartitionRole.LVM

    def by_role(self, role: PartitionRole) -> Optional[PartitionSpec]:
        for spec in self.partitions:
            if spec.role is role:
                return spec
        return None


@dataclass(frozen=True)
class DeviceNodeSet:
    """Device paths of the planned partitions on one destination disk."""

    disk: str
    root: str
    swap: str
    extra: str
    extra_role: PartitionRole
    bios_boot: Optional[str] = None

    @property
    def esp(self) -> Optional[str]:
        return self.extra if self.extra_role is PartitionRole.ESP else None

    @property
    def lvm(self) -> Optional[str]:
        return self.extra if self.extra_role is PartitionRole.LVM else None

    def all_paths(self) -> list[str]:
        paths = [self.root, self.swap, self.extra]
        if self.bios_boot:
            paths.insert(0, self.bios_boot)
        return paths


# ==============================================================================
# Volume Manager
# ==============================================================================


@dataclass(frozen=True)
class VolumeGroupState:
    name: str
    size_bytes: int
    free_extents: int
    pv_names: tuple[str, ...] = field(default_factory=tuple)

    def has_pv(self, pv: str) -> bool:
        return pv in self.pv_names


# ==============================================================================
# Session Outcome
# ==============================================================================


class OutcomeKind(Enum):
    SUCCESS = "success"
    ABORTED_BY_OPERATOR = "aborted"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionOutcome:
    kind: OutcomeKind
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> SessionOutcome:
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def aborted(cls, reason: str) -> SessionOutcome:
        return cls(OutcomeKind.ABORTED_BY_OPERATOR, reason)

    @classmethod
    def failed(cls, reason: str) -> SessionOutcome:
        return cls(OutcomeKind.FAILED, reason)

    @property
    def exit_code(self) -> int:
        return 1 if self.kind is OutcomeKind.FAILED else 0
