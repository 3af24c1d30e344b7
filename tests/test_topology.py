"""Tests for services/topology.py - boot mode and disk topology detection.

This test suite covers:
- Boot mode detection from the firmware directory
- Operator override (valid and invalid)
- Root disk resolution via lsblk and the name-based fallback
- Swap and /home LV detection, including their absence
"""

from unittest.mock import patch

import pytest

from nvme_migrate.domain.models import GIB, BootMode
from nvme_migrate.services import topology
from nvme_migrate.storage.exceptions import DeviceNotFoundError


class TestBootMode:
    """Tests for detect_boot_mode() and resolve_boot_mode()."""

    def test_uefi_when_firmware_dir_exists(self, tmp_path):
        """Test UEFI is reported when the efi directory exists."""
        (tmp_path / "efi").mkdir()
        assert topology.detect_boot_mode(str(tmp_path / "efi")) is BootMode.UEFI

    def test_bios_when_firmware_dir_missing(self, tmp_path):
        """Test BIOS is reported without the efi directory."""
        assert topology.detect_boot_mode(str(tmp_path / "efi")) is BootMode.BIOS

    def test_valid_override_wins(self):
        """Test a valid override replaces the detected mode."""
        assert topology.resolve_boot_mode(BootMode.UEFI, "bios") is BootMode.BIOS

    @pytest.mark.parametrize("override", [None, "", "   ", "CSM", "efi"])
    def test_invalid_override_keeps_detected(self, override):
        """Test invalid or empty overrides are ignored."""
        assert topology.resolve_boot_mode(BootMode.UEFI, override) is BootMode.UEFI


class TestStripPartitionSuffix:
    """Tests for strip_partition_suffix()."""

    @pytest.mark.parametrize(
        "device,expected",
        [
            ("/dev/nvme0n1p2", "/dev/nvme0n1"),
            ("/dev/mmcblk0p1", "/dev/mmcblk0"),
            ("/dev/sda2", "/dev/sda"),
            ("/dev/vda15", "/dev/vda"),
            ("/dev/nvme0n1", "/dev/nvme0n1"),
            ("/dev/mapper/vg0-root", "/dev/mapper/vg0-root"),
            ("/dev/dm-0", "/dev/dm-0"),
        ],
    )
    def test_strip(self, device, expected):
        assert topology.strip_partition_suffix(device) == expected


class TestResolveRootDisk:
    """Tests for resolve_root_disk() and resolve_root_disks()."""

    @patch("nvme_migrate.services.topology.lsblk_parent")
    @patch("nvme_migrate.services.topology.lsblk_disks")
    def test_uses_kernel_dependency_tree(self, mock_disks, mock_parent):
        """Test the disks lsblk -s reports are used when present."""
        mock_disks.return_value = ["/dev/nvme0n1"]
        assert topology.resolve_root_disk("/dev/nvme0n1p2") == "/dev/nvme0n1"
        mock_parent.assert_not_called()

    @patch("nvme_migrate.storage.devices.run_command")
    def test_mapper_root_resolves_to_disk(self, mock_run, completed):
        """Test a root LV on /dev/sda3 resolves to /dev/sda, not the partition."""
        mock_run.return_value = completed(
            stdout=(
                "/dev/mapper/vg0-root lvm\n"
                "/dev/sda3 part\n"
                "/dev/sda disk\n"
            )
        )

        assert topology.resolve_root_disks("/dev/mapper/vg0-root") == ["/dev/sda"]
        assert mock_run.call_args.args[0][:2] == ["lsblk", "-s"]

    @patch("nvme_migrate.storage.devices.run_command")
    def test_root_spanning_two_disks(self, mock_run, completed):
        """Test every disk under a root LV with two physical volumes is reported."""
        mock_run.return_value = completed(
            stdout=(
                "/dev/mapper/vg0-root lvm\n"
                "/dev/sda3 part\n"
                "/dev/sda disk\n"
                "/dev/sdc1 part\n"
                "/dev/sdc disk\n"
            )
        )

        assert topology.resolve_root_disks("/dev/mapper/vg0-root") == ["/dev/sda", "/dev/sdc"]

    @patch("nvme_migrate.services.topology.lsblk_parent")
    @patch("nvme_migrate.services.topology.lsblk_disks")
    def test_walks_parents_past_partition(self, mock_disks, mock_parent):
        """Test the PKNAME chain is followed until a node has no parent."""
        mock_disks.return_value = []
        parents = {"/dev/mapper/vg0-root": "/dev/sda3", "/dev/sda3": "/dev/sda"}
        mock_parent.side_effect = lambda device: parents.get(device)

        assert topology.resolve_root_disk("/dev/mapper/vg0-root") == "/dev/sda"

    @patch("nvme_migrate.services.topology.lsblk_parent")
    @patch("nvme_migrate.services.topology.lsblk_disks")
    def test_falls_back_to_name(self, mock_disks, mock_parent):
        """Test suffix stripping when lsblk reports no parent."""
        mock_disks.return_value = []
        mock_parent.return_value = None
        assert topology.resolve_root_disk("/dev/sda2") == "/dev/sda"


class TestDetectSwap:
    """Tests for detect_swap()."""

    @patch("nvme_migrate.services.topology.run_command")
    def test_first_swap_with_size(self, mock_run, completed):
        """Test the first swapon entry and its size are used."""
        mock_run.return_value = completed(
            stdout=f"/dev/sda3 {2 * GIB}\n/swapfile 1024\n"
        )
        assert topology.detect_swap() == ("/dev/sda3", 2 * GIB)

    @patch("nvme_migrate.services.topology.block_device_size")
    @patch("nvme_migrate.services.topology.run_command")
    def test_size_from_blockdev_when_missing(self, mock_run, mock_size, completed):
        """Test blockdev is asked when swapon gives no size column."""
        mock_run.return_value = completed(stdout="/dev/sda3\n")
        mock_size.return_value = 4 * GIB
        assert topology.detect_swap() == ("/dev/sda3", 4 * GIB)
        mock_size.assert_called_once_with("/dev/sda3")

    @patch("nvme_migrate.services.topology.run_command")
    def test_no_swap(self, mock_run, completed):
        """Test no active swap is a valid result."""
        mock_run.return_value = completed(stdout="")
        assert topology.detect_swap() == (None, 0)


class TestDetectHomeVolume:
    """Tests for detect_home_volume()."""

    @patch("nvme_migrate.services.topology.lvm.logical_volume_of")
    @patch("nvme_migrate.services.topology.findmnt_source")
    def test_home_on_lvm(self, mock_findmnt, mock_lvs):
        mock_findmnt.return_value = "/dev/mapper/vg0-home"
        mock_lvs.return_value = ("vg0", "home")
        assert topology.detect_home_volume() == ("/dev/mapper/vg0-home", "vg0", "home")

    @patch("nvme_migrate.services.topology.lvm.logical_volume_of")
    @patch("nvme_migrate.services.topology.findmnt_source")
    def test_home_not_separate(self, mock_findmnt, mock_lvs):
        mock_findmnt.return_value = None
        assert topology.detect_home_volume() == (None, None, None)
        mock_lvs.assert_not_called()


class TestDetectTopology:
    """Tests for detect_topology()."""

    @patch("nvme_migrate.services.topology.detect_home_volume")
    @patch("nvme_migrate.services.topology.detect_swap")
    @patch("nvme_migrate.services.topology.resolve_root_disks")
    @patch("nvme_migrate.services.topology.findmnt_source")
    def test_snapshot(self, mock_findmnt, mock_disk, mock_swap, mock_home):
        """Test all detected pieces land in the snapshot."""
        mock_findmnt.return_value = "/dev/sda2"
        mock_disk.return_value = ["/dev/sda"]
        mock_swap.return_value = ("/dev/sda3", GIB)
        mock_home.return_value = ("/dev/mapper/vg0-home", "vg0", "home")

        snapshot = topology.detect_topology()

        assert snapshot.root_device == "/dev/sda2"
        assert snapshot.root_disk == "/dev/sda"
        assert snapshot.protected_disks == ("/dev/sda",)
        assert snapshot.swap_device == "/dev/sda3"
        assert snapshot.has_home_volume

    @patch("nvme_migrate.services.topology.findmnt_source")
    def test_missing_root_source(self, mock_findmnt):
        """Test a root filesystem without a mount source is a precondition failure."""
        mock_findmnt.return_value = None
        with pytest.raises(DeviceNotFoundError):
            topology.detect_topology()
