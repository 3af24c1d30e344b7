"""Domain models for disk migration.

This package contains the immutable objects passed between pipeline stages.
"""

from __future__ import annotations

from .models import (
    GIB,
    MIB,
    BootMode,
    DeviceNodeSet,
    DiskTopologySnapshot,
    OutcomeKind,
    PartitionPlan,
    PartitionRole,
    PartitionSpec,
    SessionOutcome,
    VolumeGroupState,
)


__all__ = [
    "GIB",
    "MIB",
    "BootMode",
    "DeviceNodeSet",
    "DiskTopologySnapshot",
    "OutcomeKind",
    "PartitionPlan",
    "PartitionRole",
    "PartitionSpec",
    "SessionOutcome",
    "VolumeGroupState",
]
