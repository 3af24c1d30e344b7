"""The migration pipeline, from detection to the optional extent move.

Steps run strictly in order on one thread:

    preflight -> detect -> choose destination -> confirm -> provision
    -> lvm extend -> bootloader -> fstab -> lvm grow -> teardown
    -> (optional) relocate

Every fatal problem is a MigrationError; the pipeline turns it into a
Failed outcome. Teardown runs after provisioning has started, whatever the
result, except after a failed copy, where the new root stays mounted for
inspection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from nvme_migrate.app.session import MigrationSession
from nvme_migrate.config import settings
from nvme_migrate.domain.models import BootMode, SessionOutcome
from nvme_migrate.logging import LoggerFactory, new_run_id, operation_context
from nvme_migrate.services import bootloader, layout, lvm_migration, provisioning, teardown, topology
from nvme_migrate.storage import transfer, validation
from nvme_migrate.storage.devices import list_block_devices, list_mountpoints, resolve_device_path
from nvme_migrate.storage.exceptions import MigrationError, RelocationError, TransferError
from nvme_migrate.ui import report
from nvme_migrate.ui.prompts import Prompter


log = LoggerFactory.for_system()


@dataclass
class MigrationOptions:
    boot_mode: Optional[str] = None
    destination: Optional[str] = None
    new_root: str = settings.DEFAULT_NEW_ROOT_MOUNT
    skip_relocate: bool = False
    skip_size_check: bool = False
    bootloader_id: str = settings.DEFAULT_BOOTLOADER_ID
    efi_target: str = settings.DEFAULT_EFI_TARGET
    device_wait_attempts: int = settings.DEFAULT_DEVICE_WAIT_ATTEMPTS
    device_wait_delay: float = settings.DEFAULT_DEVICE_WAIT_DELAY
    pvmove_interval: int = settings.DEFAULT_PVMOVE_INTERVAL
    extra_excludes: list[str] = field(default_factory=list)
    fstab_backup_format: str = "%Y%m%d-%H%M%S"

    @classmethod
    def from_settings(cls, **overrides) -> MigrationOptions:
        values = {
            "new_root": settings.get_setting("new_root_mount", settings.DEFAULT_NEW_ROOT_MOUNT),
            "bootloader_id": settings.get_setting("bootloader_id", settings.DEFAULT_BOOTLOADER_ID),
            "efi_target": settings.get_setting("efi_target", settings.DEFAULT_EFI_TARGET),
            "device_wait_attempts": settings.get_int(
                "device_wait_attempts", settings.DEFAULT_DEVICE_WAIT_ATTEMPTS
            ),
            "device_wait_delay": settings.get_float(
                "device_wait_delay_seconds", settings.DEFAULT_DEVICE_WAIT_DELAY
            ),
            "pvmove_interval": settings.get_int(
                "pvmove_interval_seconds", settings.DEFAULT_PVMOVE_INTERVAL
            ),
            "extra_excludes": settings.get_list("extra_excludes"),
            "fstab_backup_format": settings.get_setting(
                "fstab_backup_suffix_format", "%Y%m%d-%H%M%S"
            ),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


def required_tools(boot_mode: BootMode) -> list[str]:
    tools = list(validation.BASE_TOOLS) + list(validation.LVM_TOOLS)
    if boot_mode is BootMode.UEFI:
        tools.extend(validation.UEFI_TOOLS)
    return tools


def choose_boot_mode(options: MigrationOptions, prompter: Prompter) -> BootMode:
    detected = topology.detect_boot_mode()
    prompter.output_fn(f"Detected boot mode: {detected.value}")
    override = options.boot_mode
    if override is None:
        override = prompter.ask("Confirm or change boot mode (BIOS/UEFI)")
    return topology.resolve_boot_mode(detected, override)


def choose_destination(options: MigrationOptions, prompter: Prompter) -> str:
    if options.destination:
        return options.destination
    prompter.output_fn(list_block_devices().rstrip())
    return prompter.ask("New disk (e.g. /dev/sdb or /dev/nvme1n1)")


def preflight(session: MigrationSession, options: MigrationOptions, prompter: Prompter) -> None:
    """Everything that must pass before the destination disk is touched."""
    session.advance("preflight")
    with operation_context("preflight"):
        boot_mode = choose_boot_mode(options, prompter)
        session.boot_mode = boot_mode
        validation.validate_tools(required_tools(boot_mode))

    session.advance("detect")
    with operation_context("detect"):
        session.snapshot = topology.detect_topology()
        for line in report.describe_topology(session.snapshot):
            prompter.output_fn(line)
        if not options.skip_size_check:
            copy_bytes = transfer.root_copy_bytes(list_mountpoints())
            validation.validate_root_fits(layout.ROOT_SIZE_BYTES, copy_bytes)

    session.advance("destination")
    destination = choose_destination(options, prompter)
    validation.validate_destination(
        destination, session.snapshot.root_disk, session.snapshot.protected_disks
    )
    session.destination = resolve_device_path(destination)
    session.plan = layout.plan(boot_mode, session.snapshot.swap_size_bytes)
    for line in report.describe_plan(session.plan, session.destination):
        prompter.output_fn(line)


def _print_recovery(prompter: Prompter, error: RelocationError) -> None:
    prompter.output_fn(f"Extent relocation failed: {error}")
    prompter.output_fn("No data is lost; the move can be finished by hand:")
    for step in error.recovery_steps:
        prompter.output_fn(f"  - {step}")


def run_migration(options: MigrationOptions, prompter: Prompter) -> SessionOutcome:
    session = MigrationSession(run_id=new_run_id(), new_root=options.new_root)
    staged = False
    keep_mounted = False
    log.info(f"Migration session {session.run_id} started")
    prompter.output_fn(report.BANNER)

    try:
        preflight(session, options, prompter)

        session.advance("confirm")
        if not prompter.confirm(
            f"All data on {session.destination} will be erased. Continue?",
            default=False,
            destructive=True,
        ):
            log.info("Operator declined, nothing was changed")
            return session.finish(SessionOutcome.aborted("destination not confirmed"))

        staged = True
        with operation_context("provision", destination=session.destination):
            session.nodes = provisioning.provision(
                session.destination,
                session.plan,
                session.snapshot.root_disk,
                session.new_root,
                root_disks=session.snapshot.protected_disks,
                extra_excludes=options.extra_excludes,
                wait_attempts=options.device_wait_attempts,
                wait_delay=options.device_wait_delay,
                on_step=session.advance,
            )

        session.advance("lvm-extend")
        with operation_context("lvm"):
            lvm_migration.extend(session)

        session.advance("bootloader")
        with operation_context("bootloader", mode=session.boot_mode.value):
            bootloader.install_bootloader(
                session.new_root,
                session.boot_mode,
                session.destination,
                session.nodes.extra,
                bootloader_id=options.bootloader_id,
                efi_target=options.efi_target,
            )

        session.advance("fstab")
        with operation_context("fstab"):
            bootloader.write_fstab(
                session.new_root,
                session.nodes,
                session.snapshot,
                suffix_format=options.fstab_backup_format,
            )

        session.advance("lvm-grow")
        with operation_context("lvm"):
            lvm_migration.grow(session)
    except TransferError as error:
        keep_mounted = True
        log.error(f"Copy failed, {session.new_root} left mounted for inspection")
        return session.finish(SessionOutcome.failed(str(error)))
    except MigrationError as error:
        log.error(f"Step '{session.current_step}' failed: {error}")
        return session.finish(SessionOutcome.failed(str(error)))
    finally:
        if staged and not keep_mounted:
            session.advance("teardown")
            teardown.teardown(session.new_root)

    for line in report.FINAL_INSTRUCTIONS:
        prompter.output_fn(line)

    if not options.skip_relocate:
        session.advance("relocate")
        try:
            with operation_context("relocate"):
                lvm_migration.relocate(session, prompter, options.pvmove_interval)
        except RelocationError as error:
            _print_recovery(prompter, error)
            return session.finish(SessionOutcome.failed(str(error)))
        except MigrationError as error:
            return session.finish(SessionOutcome.failed(str(error)))

    log.success(f"Migration session {session.run_id} finished")
    return session.finish(SessionOutcome.success())
