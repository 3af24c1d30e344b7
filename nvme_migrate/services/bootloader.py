"""Make the staged root bootable from the destination disk.

UEFI:
    ESP mounted at <new_root>/boot/efi, existing ESP contents copied over,
    efivarfs exposed inside the chroot, initramfs regenerated, GRUB installed
    for x86_64-efi, grub.cfg regenerated.

BIOS:
    initramfs regenerated, grub-pc installed if missing, GRUB installed in
    i386-pc mode on the whole destination disk, grub.cfg regenerated.

A failing grub-install gets exactly one more attempt after a forced
reinstall of the bootloader package.
"""

from __future__ import annotations

import os
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from nvme_migrate.domain.models import BootMode, DeviceNodeSet, DiskTopologySnapshot
from nvme_migrate.logging import LoggerFactory
from nvme_migrate.storage.devices import blkid_value, command_error_text, run_command
from nvme_migrate.storage.exceptions import BootloaderError
from nvme_migrate.storage.mount import is_mounted, mount_device
from nvme_migrate.storage.transfer import sync_tree


log = LoggerFactory.for_boot()

ESP_MOUNT = "boot/efi"
EFIVARS_PATH = "/sys/firmware/efi/efivars"
GRUB_PACKAGES = {BootMode.UEFI: "grub-efi-amd64", BootMode.BIOS: "grub-pc"}
APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def chroot_command(new_root: str, args: Sequence[str]) -> list[str]:
    return ["chroot", new_root, *args]


def _run_in_chroot(
    new_root: str, args: Sequence[str], env: Optional[dict] = None
) -> subprocess.CompletedProcess:
    command = chroot_command(new_root, args)
    try:
        return run_command(command, env=env)
    except subprocess.CalledProcessError as error:
        raise BootloaderError(
            f"{args[0]} failed in {new_root}: {command_error_text(error)}",
            command=command,
        ) from error


def regenerate_initramfs(new_root: str) -> None:
    log.info("Regenerating initramfs")
    _run_in_chroot(new_root, ["update-initramfs", "-u", "-k", "all"])


def update_grub(new_root: str) -> None:
    log.info("Regenerating GRUB configuration")
    _run_in_chroot(new_root, ["update-grub"])


def is_package_installed(new_root: str, package: str) -> bool:
    result = run_command(
        chroot_command(new_root, ["dpkg", "-s", package]), check=False, log_output=False
    )
    return result.returncode == 0


def install_package(new_root: str, package: str, reinstall: bool = False) -> None:
    args = ["apt-get", "install", "-y"]
    if reinstall:
        args.append("--reinstall")
    args.append(package)
    log.info(f"{'Reinstalling' if reinstall else 'Installing'} {package} in {new_root}")
    _run_in_chroot(new_root, args, env=APT_ENV)


def grub_install_args(
    boot_mode: BootMode,
    destination: str,
    bootloader_id: str = "debian",
    efi_target: str = "x86_64-efi",
) -> list[str]:
    if boot_mode is BootMode.UEFI:
        return [
            "grub-install",
            f"--target={efi_target}",
            "--efi-directory=/boot/efi",
            f"--bootloader-id={bootloader_id}",
            "--recheck",
        ]
    return ["grub-install", "--target=i386-pc", "--recheck", destination]


def install_grub(
    new_root: str,
    boot_mode: BootMode,
    destination: str,
    bootloader_id: str = "debian",
    efi_target: str = "x86_64-efi",
) -> None:
    """Run grub-install, retrying once after a forced package reinstall.

    Raises:
        BootloaderError: If the retry fails too
    """
    args = grub_install_args(boot_mode, destination, bootloader_id, efi_target)
    try:
        _run_in_chroot(new_root, args)
        return
    except BootloaderError as error:
        log.warning(f"grub-install failed, reinstalling the bootloader package: {error}")

    install_package(new_root, GRUB_PACKAGES[boot_mode], reinstall=True)
    _run_in_chroot(new_root, args)


def prepare_esp(new_root: str, esp_node: str, source_esp: str = "/boot/efi") -> None:
    """Mount the new ESP inside the staged root and carry over the old one."""
    target = os.path.join(new_root, ESP_MOUNT)
    mount_device(esp_node, target)
    if os.path.isdir(source_esp) and os.listdir(source_esp):
        log.info(f"Copying {source_esp} to {target}")
        sync_tree(source_esp, target)

    efivars_target = os.path.join(new_root, EFIVARS_PATH.lstrip("/"))
    if is_mounted(EFIVARS_PATH) and not is_mounted(efivars_target):
        mount_device("efivarfs", efivars_target, fstype="efivarfs")


def install_bootloader(
    new_root: str,
    boot_mode: BootMode,
    destination: str,
    extra_node: str,
    *,
    bootloader_id: str = "debian",
    efi_target: str = "x86_64-efi",
) -> None:
    """Install GRUB for ``boot_mode`` so ``destination`` boots the staged root.

    ``extra_node`` is the ESP under UEFI; under BIOS it is the LVM partition
    and is not touched here.

    Raises:
        BootloaderError: initramfs, grub-install (after its retry) or update-grub failed
    """
    if boot_mode is BootMode.UEFI:
        prepare_esp(new_root, extra_node)
        regenerate_initramfs(new_root)
    else:
        regenerate_initramfs(new_root)
        if not is_package_installed(new_root, GRUB_PACKAGES[BootMode.BIOS]):
            install_package(new_root, GRUB_PACKAGES[BootMode.BIOS])

    install_grub(new_root, boot_mode, destination, bootloader_id, efi_target)
    update_grub(new_root)
    log.info(f"GRUB installed for {boot_mode.value} on {destination}")


def _home_entries(fstab_text: str) -> list[str]:
    entries = []
    for line in fstab_text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        parts = stripped.split()
        if len(parts) >= 2 and parts[1] == "/home":
            entries.append(stripped)
    return entries


def render_fstab(
    root_uuid: str,
    swap_uuid: Optional[str],
    esp_uuid: Optional[str],
    snapshot: DiskTopologySnapshot,
    home_entries: Sequence[str] = (),
) -> str:
    lines = [f"UUID={root_uuid}  /  ext4  errors=remount-ro  0  1"]
    if swap_uuid:
        lines.append(f"UUID={swap_uuid}  none  swap  sw  0  0")
    if esp_uuid:
        lines.append(f"UUID={esp_uuid}  /boot/efi  vfat  umask=0077  0  1")
    if snapshot.has_home_volume:
        lines.append(
            f"# /home stays on LVM (VG: {snapshot.volume_group}, LV: {snapshot.logical_volume})"
        )
    else:
        lines.append("# /home is not on LVM")
    lines.extend(home_entries)
    return "\n".join(lines) + "\n"


def write_fstab(
    new_root: str,
    nodes: DeviceNodeSet,
    snapshot: DiskTopologySnapshot,
    now: Optional[datetime] = None,
    suffix_format: str = "%Y%m%d-%H%M%S",
) -> Optional[Path]:
    """Write <new_root>/etc/fstab keyed by UUID.

    Returns:
        Path of the timestamped backup of the previous fstab, if there was one

    Raises:
        BootloaderError: If the new root partition has no UUID
    """
    root_uuid = blkid_value(nodes.root, "UUID")
    if not root_uuid:
        raise BootloaderError(f"No UUID found for new root partition {nodes.root}")
    swap_uuid = blkid_value(nodes.swap, "UUID")
    if not swap_uuid:
        log.warning(f"No UUID found for swap partition {nodes.swap}, leaving it out of fstab")
    esp_uuid = blkid_value(nodes.esp, "UUID") if nodes.esp else None

    fstab = Path(new_root, "etc", "fstab")
    fstab.parent.mkdir(parents=True, exist_ok=True)

    backup: Optional[Path] = None
    home_entries: list[str] = []
    if fstab.exists():
        previous = fstab.read_text(encoding="utf-8")
        home_entries = _home_entries(previous)
        stamp = (now or datetime.now()).strftime(suffix_format)
        backup = fstab.with_name(f"fstab.bak-{stamp}")
        backup.write_text(previous, encoding="utf-8")
        log.info(f"Backed up previous fstab to {backup}")

    data = render_fstab(root_uuid, swap_uuid, esp_uuid, snapshot, home_entries)
    with open(fstab, "w", encoding="utf-8") as handle:
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())
    log.info(f"Wrote {fstab}")
    return backup
