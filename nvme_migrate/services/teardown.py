"""Unmount everything staged under the new root, innermost first."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from nvme_migrate.logging import LoggerFactory
from nvme_migrate.storage.exceptions import UnmountFailedError
from nvme_migrate.storage.mount import is_mounted, unmount


log = LoggerFactory.for_teardown()

# Reverse of the order the pipeline mounts them in; "" is the new root itself.
TEARDOWN_ORDER = (
    "home",
    "boot/efi",
    "sys/firmware/efi/efivars",
    "run",
    "sys",
    "proc",
    "dev/pts",
    "dev",
    "",
)


@dataclass
class TeardownReport:
    unmounted: list[str] = field(default_factory=list)
    lazy: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def teardown_targets(new_root: str) -> list[str]:
    root = new_root.rstrip("/") or "/"
    return [os.path.join(root, rel) if rel else root for rel in TEARDOWN_ORDER]


def teardown(new_root: str) -> TeardownReport:
    """Attempt every unmount under ``new_root``; failures are collected, not raised."""
    report = TeardownReport()
    for target in teardown_targets(new_root):
        if not is_mounted(target):
            continue
        try:
            used_lazy = unmount(target)
        except UnmountFailedError as error:
            log.error(str(error))
            report.failed[target] = error.reason
            continue
        except OSError as error:
            log.error(f"Could not run umount for {target}: {error}")
            report.failed[target] = str(error)
            continue
        report.unmounted.append(target)
        if used_lazy:
            report.lazy.append(target)

    if report.ok:
        log.info(f"Unmounted {len(report.unmounted)} mounts under {new_root}")
    else:
        log.warning(
            f"Could not unmount: {', '.join(report.failed)}; clean up manually"
        )
    return report
