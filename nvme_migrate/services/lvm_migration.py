"""Move the /home volume group onto the destination disk.

Three steps, each gated by what topology detection found:

    extend    pvcreate the new LVM partition and vgextend the /home VG with it
    grow      lvextend /home over the free extents, then grow its filesystem
    relocate  operator-confirmed pvmove off the old PV, then vgreduce

Relocation runs at most once per session and only once the new PV is a
member of the volume group. pvmove can be aborted or resumed by hand, so a
failure is reported with those instructions instead of being retried.
"""

from __future__ import annotations

import os
import re
from typing import Optional

from nvme_migrate.app.session import MigrationSession
from nvme_migrate.logging import LoggerFactory
from nvme_migrate.storage import lvm
from nvme_migrate.storage.devices import blkid_value
from nvme_migrate.storage.exceptions import RelocationError
from nvme_migrate.ui.prompts import Prompter


log = LoggerFactory.for_lvm()

HOME_MOUNTPOINT = "/home"
_PARTITION_SUFFIX = re.compile(r"^p?\d+$")


def _same_device(left: str, right: str) -> bool:
    return os.path.realpath(left) == os.path.realpath(right)


def _on_disk(device: str, disk: str) -> bool:
    resolved = os.path.realpath(device)
    disk = os.path.realpath(disk)
    if resolved == disk:
        return True
    return resolved.startswith(disk) and bool(_PARTITION_SUFFIX.match(resolved[len(disk):]))


def _lvm_target(session: MigrationSession) -> Optional[tuple[str, str]]:
    """(vg_name, new_pv) when LVM work applies to this session."""
    snapshot = session.snapshot
    if snapshot is None or not snapshot.has_home_volume:
        log.info("No /home logical volume detected, skipping LVM steps")
        return None
    if session.nodes is None or session.nodes.lvm is None:
        log.warning(
            "Destination layout has no LVM partition, /home stays on the old disk"
        )
        return None
    return snapshot.volume_group, session.nodes.lvm


def extend(session: MigrationSession) -> bool:
    """Add the new LVM partition to the /home volume group.

    Raises:
        VolumeGroupExtendError: If pvcreate or vgextend fails
    """
    target = _lvm_target(session)
    if target is None:
        return False
    vg_name, new_pv = target
    lvm.create_physical_volume(new_pv, vg_name)
    lvm.extend_volume_group(vg_name, new_pv)
    session.vg_extended = True
    return True


def grow(session: MigrationSession) -> bool:
    """Grow the /home LV and its filesystem into the volume group's free space.

    Raises:
        VolumeGroupQueryError: If the volume group cannot be read
        LogicalVolumeGrowError: If lvextend or the filesystem resize fails
    """
    snapshot = session.snapshot
    if snapshot is None or not snapshot.has_home_volume:
        return False
    state = lvm.volume_group_state(snapshot.volume_group)
    if state.free_extents <= 0:
        log.info(f"Volume group {state.name} has no free extents, nothing to grow")
        return False

    lv_path = snapshot.home_lv_path
    lvm.extend_logical_volume(lv_path)
    fstype = blkid_value(lv_path, "TYPE")
    lvm.grow_filesystem(lv_path, fstype, HOME_MOUNTPOINT)
    return True


def find_old_pv(vg_name: str, root_disk: str, new_pv: str) -> Optional[str]:
    """The volume group member that lives on the old root disk."""
    for pv, vg in lvm.list_physical_volumes():
        if vg != vg_name or _same_device(pv, new_pv):
            continue
        if _on_disk(pv, root_disk):
            return pv
    return None


def recovery_steps(vg_name: str, old_pv: str, new_pv: str) -> list[str]:
    return [
        "Check progress and state with: pvs -o+pv_used",
        f"Resume the interrupted move with: pvmove {old_pv} {new_pv}",
        "Or roll it back with: pvmove --abort",
        f"Once {old_pv} has no used extents, remove it with: vgreduce {vg_name} {old_pv}",
    ]


def _is_member(vg_name: str, pv: str) -> bool:
    state = lvm.volume_group_state(vg_name)
    return any(_same_device(member, pv) for member in state.pv_names)


def relocate(
    session: MigrationSession, prompter: Prompter, interval_seconds: int = 5
) -> bool:
    """Move every extent off the old PV onto the new one, then drop the old PV.

    Returns:
        True when extents were moved, False when skipped or declined

    Raises:
        RelocationError: Second call in one session, pvmove or vgreduce failure
    """
    if session.relocation_done:
        raise RelocationError("Extent relocation already ran in this session")
    target = _lvm_target(session)
    if target is None:
        return False
    vg_name, new_pv = target

    if not prompter.confirm(
        f"Move LVM /home data from the old PV to {new_pv} now (pvmove)?", default=False
    ):
        log.info("Skipping pvmove; it can be run manually later")
        return False

    old_pv = find_old_pv(vg_name, session.snapshot.root_disk, new_pv)
    if old_pv is None:
        log.warning(f"No physical volume of {vg_name} found on {session.snapshot.root_disk}")
        old_pv = prompter.ask("Old physical volume to move (empty to skip)", key="old_pv")
        if not old_pv:
            log.info("No old physical volume given, skipping pvmove")
            return False

    if not _is_member(vg_name, new_pv):
        if not prompter.confirm(
            f"{new_pv} is not part of {vg_name}. Extend the volume group first?",
            default=False,
        ):
            log.info("Volume group not extended, skipping pvmove")
            return False
        extend(session)
        if not _is_member(vg_name, new_pv):
            raise RelocationError(
                f"{new_pv} is still not a member of {vg_name}; refusing to move extents"
            )

    session.relocation_done = True
    returncode = lvm.move_extents(old_pv, new_pv, interval_seconds)
    if returncode != 0:
        raise RelocationError(
            f"pvmove {old_pv} -> {new_pv} failed with code {returncode}",
            recovery_steps=recovery_steps(vg_name, old_pv, new_pv),
        )

    returncode = lvm.reduce_volume_group(vg_name, old_pv)
    if returncode != 0:
        raise RelocationError(
            f"vgreduce {vg_name} {old_pv} failed with code {returncode}",
            recovery_steps=[f"Remove the emptied PV manually: vgreduce {vg_name} {old_pv}"],
        )
    log.success(f"Moved {vg_name} extents from {old_pv} to {new_pv}")
    return True
