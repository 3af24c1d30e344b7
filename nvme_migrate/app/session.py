"""State of one migration run.

The session is created when the process starts and discarded when it exits.
Detected topology and the partition plan are immutable values stored on it;
only the step index, the LVM flags and the outcome change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from nvme_migrate.domain.models import (
    BootMode,
    DeviceNodeSet,
    DiskTopologySnapshot,
    PartitionPlan,
    SessionOutcome,
)


@dataclass
class MigrationSession:
    run_id: str
    new_root: str
    boot_mode: Optional[BootMode] = None
    snapshot: Optional[DiskTopologySnapshot] = None
    destination: Optional[str] = None
    plan: Optional[PartitionPlan] = None
    nodes: Optional[DeviceNodeSet] = None
    step_index: int = 0
    steps: list[str] = field(default_factory=list)
    vg_extended: bool = False
    relocation_done: bool = False
    outcome: Optional[SessionOutcome] = None

    @property
    def current_step(self) -> Optional[str]:
        return self.steps[-1] if self.steps else None

    def advance(self, step: str) -> int:
        self.steps.append(step)
        self.step_index += 1
        return self.step_index

    def finish(self, outcome: SessionOutcome) -> SessionOutcome:
        if self.outcome is None:
            self.outcome = outcome
        return self.outcome
