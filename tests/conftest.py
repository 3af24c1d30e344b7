"""
Pytest configuration and shared fixtures for nvme-migrate tests.

No test touches a real block device: every external command goes through
``run_command``/``run_passthrough`` and is patched per module.
"""

import subprocess
from typing import Callable, List
from unittest.mock import Mock

import pytest

from nvme_migrate.app.session import MigrationSession
from nvme_migrate.domain.models import BootMode, DiskTopologySnapshot, GIB
from nvme_migrate.services import layout
from nvme_migrate.ui.prompts import Prompter


# ==============================================================================
# Command Result Fixtures
# ==============================================================================


@pytest.fixture
def completed() -> Callable[..., Mock]:
    """Factory for fake CompletedProcess results."""

    def _make(returncode: int = 0, stdout: str = "", stderr: str = "") -> Mock:
        return Mock(returncode=returncode, stdout=stdout, stderr=stderr)

    return _make


@pytest.fixture
def called_process_error() -> Callable[..., subprocess.CalledProcessError]:
    """Factory for CalledProcessError carrying stderr."""

    def _make(cmd: List[str], stderr: str = "boom", returncode: int = 1):
        return subprocess.CalledProcessError(returncode, cmd, output="", stderr=stderr)

    return _make


@pytest.fixture
def mock_subprocess_success(mocker) -> Mock:
    """Mock subprocess.run returning success for any command."""
    mock = mocker.patch("subprocess.run")
    mock.return_value = Mock(returncode=0, stdout="", stderr="")
    return mock


# ==============================================================================
# Topology / Plan Fixtures
# ==============================================================================


@pytest.fixture
def snapshot_with_home() -> DiskTopologySnapshot:
    """Running system on a SATA disk with swap and /home on LVM."""
    return DiskTopologySnapshot(
        root_device="/dev/sda2",
        root_disk="/dev/sda",
        swap_device="/dev/sda3",
        swap_size_bytes=2 * GIB,
        volume_group="vg0",
        logical_volume="home",
        home_device="/dev/mapper/vg0-home",
    )


@pytest.fixture
def snapshot_without_home() -> DiskTopologySnapshot:
    """Running system with neither swap nor an LVM /home."""
    return DiskTopologySnapshot(root_device="/dev/nvme0n1p2", root_disk="/dev/nvme0n1")


@pytest.fixture
def bios_plan():
    return layout.plan(BootMode.BIOS, 2 * GIB)


@pytest.fixture
def uefi_plan():
    return layout.plan(BootMode.UEFI, 0)


@pytest.fixture
def bios_session(snapshot_with_home, bios_plan) -> MigrationSession:
    """Session staged for a BIOS migration onto /dev/sdb."""
    session = MigrationSession(run_id="migrate-test", new_root="/mnt/newroot")
    session.boot_mode = BootMode.BIOS
    session.snapshot = snapshot_with_home
    session.destination = "/dev/sdb"
    session.plan = bios_plan
    session.nodes = layout.device_nodes(bios_plan, "/dev/sdb")
    return session


# ==============================================================================
# Operator Fixtures
# ==============================================================================


@pytest.fixture
def scripted_prompter() -> Callable[..., Prompter]:
    """Factory for a Prompter answering from a fixed list of replies."""

    def _make(*replies: str, assume_yes: bool = False) -> Prompter:
        pending = list(replies)
        shown: List[str] = []

        def fake_input(prompt: str) -> str:
            shown.append(prompt)
            if not pending:
                raise EOFError
            return pending.pop(0)

        prompter = Prompter(
            input_fn=fake_input, output_fn=shown.append, assume_yes=assume_yes
        )
        prompter.shown = shown  # type: ignore[attr-defined]
        return prompter

    return _make
