import argparse
import os
import sys
from pathlib import Path

from nvme_migrate.__version__ import __version__
from nvme_migrate.actions.migrate_actions import MigrationOptions, run_migration
from nvme_migrate.logging import LoggerFactory, setup_logging
from nvme_migrate.ui.prompts import Prompter


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nvme-migrate",
        description=(
            "Migrate a running Debian root, swap and LVM /home to a larger disk"
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--boot-mode",
        choices=["BIOS", "UEFI"],
        type=str.upper,
        help="Boot mode to install for (default: detected, with a prompt to override)",
    )
    parser.add_argument(
        "--destination", help="Destination disk, e.g. /dev/nvme1n1 (default: prompt)"
    )
    parser.add_argument("--new-root", help="Where to mount the new root (default: /mnt/newroot)")
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Answer yes to the destination erase confirmation",
    )
    parser.add_argument(
        "--skip-relocate", action="store_true", help="Do not offer the pvmove step"
    )
    parser.add_argument(
        "--skip-size-check",
        action="store_true",
        help="Do not check that the live root fits the 37 GiB root partition",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log raw command output")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    if hasattr(os, "geteuid") and os.geteuid() != 0:
        log.error("nvme-migrate must run as root")
        return 1

    options = MigrationOptions.from_settings(
        boot_mode=args.boot_mode,
        destination=args.destination,
        new_root=args.new_root,
        skip_relocate=args.skip_relocate or None,
        skip_size_check=args.skip_size_check or None,
    )
    prompter = Prompter(assume_yes=args.yes)

    try:
        outcome = run_migration(options, prompter)
    except KeyboardInterrupt:
        log.warning(f"Interrupted; check mounts under {options.new_root} before retrying")
        return 1

    if outcome.reason:
        log.info(f"Outcome: {outcome.kind.value} ({outcome.reason})")
    else:
        log.info(f"Outcome: {outcome.kind.value}")
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
