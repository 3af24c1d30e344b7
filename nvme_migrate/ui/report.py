"""Text shown to the operator around the migration."""

from __future__ import annotations

from nvme_migrate.domain.models import (
    DiskTopologySnapshot,
    PartitionPlan,
    PartitionRole,
)
from nvme_migrate.storage.devices import human_size

BANNER = "=== Debian root + LVM /home disk migration ==="

FINAL_INSTRUCTIONS = (
    "Migration of root and LVM prepared.",
    "1) Power off the machine: sudo poweroff",
    "2) Replace the old disk with the new one",
    "3) Boot normally",
)


def describe_topology(snapshot: DiskTopologySnapshot) -> list[str]:
    lines = [f"Root device: {snapshot.root_device}, root disk: {snapshot.root_disk}"]
    if snapshot.swap_device:
        lines.append(f"Swap: {snapshot.swap_device} ({human_size(snapshot.swap_size_bytes)})")
    else:
        lines.append("Swap: none")
    if snapshot.has_home_volume:
        lines.append(f"/home LV: {snapshot.volume_group}/{snapshot.logical_volume}")
    else:
        lines.append("/home LV: none")
    return lines


def describe_plan(plan: PartitionPlan, destination: str) -> list[str]:
    lines = [f"{plan.boot_mode.value} layout for {destination}:"]
    for spec in plan.partitions:
        flags = f" [{','.join(spec.flags)}]" if spec.flags else ""
        fs = spec.filesystem or "-"
        lines.append(
            f"  {spec.index}  {spec.role.value:<9} {spec.start:>8} .. {spec.end:<8} {fs}{flags}"
        )
    root = plan.by_role(PartitionRole.ROOT)
    if root is not None:
        lines.append(f"Root ends at {root.end}, swap {plan.swap_size_gib}GiB, rest {plan.extra_role.value}")
    return lines
