"""Tests for storage/format.py - partition table and filesystem creation.

This test suite covers:
- GPT label creation with retries
- mkpart and flag commands built from a plan
- Waiting for partition nodes
- mkfs.ext4 / mkswap / mkfs.vfat command lines and failures
"""

from unittest.mock import Mock, call, patch

import pytest

from nvme_migrate.storage import format as format_module
from nvme_migrate.storage.exceptions import (
    DeviceNodeTimeoutError,
    FormatOperationError,
    PartitionTableError,
)


class TestCreatePartitionTable:
    """Tests for _create_partition_table()."""

    @patch("nvme_migrate.storage.format.run_command")
    def test_create_gpt_partition_table_success(self, mock_run):
        """Test successful GPT label creation."""
        mock_run.return_value = Mock(returncode=0, stderr="", stdout="")

        format_module._create_partition_table("/dev/sdb")

        mock_run.assert_called_with(
            ["parted", "-s", "/dev/sdb", "mklabel", "gpt"],
            check=False,
            log_command=False,
        )

    @patch("nvme_migrate.storage.format.time.sleep")
    @patch("nvme_migrate.storage.format.reread_partition_table")
    @patch("nvme_migrate.storage.format.run_command")
    def test_retries_then_succeeds(self, mock_run, mock_reread, mock_sleep):
        """Test a busy device is retried after settling."""
        mock_run.side_effect = [
            Mock(returncode=1, stderr="Device busy", stdout=""),
            Mock(returncode=0, stderr="", stdout=""),
        ]

        format_module._create_partition_table("/dev/sdb")

        assert mock_run.call_count == 2
        mock_reread.assert_called_once_with("/dev/sdb")
        mock_sleep.assert_called_once_with(2)

    @patch("nvme_migrate.storage.format.time.sleep")
    @patch("nvme_migrate.storage.format.reread_partition_table")
    @patch("nvme_migrate.storage.format.run_command")
    def test_gives_up_after_all_retries(self, mock_run, mock_reread, mock_sleep):
        """Test PartitionTableError once every attempt failed."""
        mock_run.return_value = Mock(returncode=1, stderr="Device busy", stdout="")

        with pytest.raises(PartitionTableError, match="Device busy"):
            format_module._create_partition_table("/dev/sdb")

        assert mock_run.call_count == len(format_module.MKLABEL_RETRY_DELAYS)


class TestWritePartitionTable:
    """Tests for write_partition_table()."""

    @patch("nvme_migrate.storage.format.reread_partition_table")
    @patch("nvme_migrate.storage.format._create_partition_table")
    @patch("nvme_migrate.storage.format.run_command")
    def test_bios_plan_commands(self, mock_run, mock_label, mock_reread, bios_plan):
        """Test mkpart and set commands for the BIOS layout."""
        format_module.write_partition_table("/dev/sdb", bios_plan)

        mock_label.assert_called_once_with("/dev/sdb")
        commands = [c.args[0] for c in mock_run.call_args_list]
        assert commands == [
            ["parted", "-s", "-a", "optimal", "/dev/sdb", "mkpart", "bios_boot", "1MiB", "2MiB"],
            ["parted", "-s", "/dev/sdb", "set", "1", "bios_grub", "on"],
            ["parted", "-s", "-a", "optimal", "/dev/sdb", "mkpart", "root", "ext4", "2MiB", "37GiB"],
            ["parted", "-s", "-a", "optimal", "/dev/sdb", "mkpart", "swap", "linux-swap", "37GiB", "39GiB"],
            ["parted", "-s", "-a", "optimal", "/dev/sdb", "mkpart", "lvm", "39GiB", "100%"],
            ["parted", "-s", "/dev/sdb", "set", "4", "lvm", "on"],
        ]
        mock_reread.assert_called_once_with("/dev/sdb")

    @patch("nvme_migrate.storage.format.reread_partition_table")
    @patch("nvme_migrate.storage.format._create_partition_table")
    @patch("nvme_migrate.storage.format.run_command")
    def test_uefi_plan_sets_esp_flags(self, mock_run, mock_label, mock_reread, uefi_plan):
        """Test the ESP gets both boot and esp flags."""
        format_module.write_partition_table("/dev/nvme1n1", uefi_plan)

        commands = [c.args[0] for c in mock_run.call_args_list]
        assert ["parted", "-s", "/dev/nvme1n1", "set", "3", "boot", "on"] in commands
        assert ["parted", "-s", "/dev/nvme1n1", "set", "3", "esp", "on"] in commands

    @patch("nvme_migrate.storage.format._create_partition_table")
    @patch("nvme_migrate.storage.format.run_command")
    def test_mkpart_failure(self, mock_run, mock_label, bios_plan, called_process_error):
        """Test a failing mkpart becomes PartitionTableError."""
        mock_run.side_effect = called_process_error(["parted"], stderr="Error: bad end")

        with pytest.raises(PartitionTableError, match="bad end"):
            format_module.write_partition_table("/dev/sdb", bios_plan)


class TestWaitForDeviceNodes:
    """Tests for wait_for_device_nodes()."""

    @patch("nvme_migrate.storage.format.time.sleep")
    @patch("nvme_migrate.storage.format.reread_partition_table")
    @patch("nvme_migrate.storage.format.is_block_device")
    def test_nodes_present_immediately(self, mock_is_block, mock_reread, mock_sleep):
        mock_is_block.return_value = True

        format_module.wait_for_device_nodes("/dev/sdb", ["/dev/sdb1", "/dev/sdb2"])

        mock_reread.assert_not_called()
        mock_sleep.assert_not_called()

    @patch("nvme_migrate.storage.format.time.sleep")
    @patch("nvme_migrate.storage.format.reread_partition_table")
    @patch("nvme_migrate.storage.format.is_block_device")
    def test_nodes_appear_after_reread(self, mock_is_block, mock_reread, mock_sleep):
        """Test a missing node triggers re-read and settle before the next check."""
        appeared = {"done": False}

        def fake_is_block(path):
            return appeared["done"]

        def fake_reread(device):
            appeared["done"] = True

        mock_is_block.side_effect = fake_is_block
        mock_reread.side_effect = fake_reread

        format_module.wait_for_device_nodes("/dev/sdb", ["/dev/sdb1"], attempts=3, delay=0)

        mock_reread.assert_called_once_with("/dev/sdb")

    @patch("nvme_migrate.storage.format.time.sleep")
    @patch("nvme_migrate.storage.format.reread_partition_table")
    @patch("nvme_migrate.storage.format.is_block_device")
    def test_timeout(self, mock_is_block, mock_reread, mock_sleep):
        """Test DeviceNodeTimeoutError lists the missing nodes."""
        mock_is_block.side_effect = lambda path: path != "/dev/sdb3"

        with pytest.raises(DeviceNodeTimeoutError) as excinfo:
            format_module.wait_for_device_nodes(
                "/dev/sdb", ["/dev/sdb1", "/dev/sdb3"], attempts=4, delay=0.1
            )

        assert excinfo.value.missing == ["/dev/sdb3"]
        assert mock_reread.call_count == 4
        mock_sleep.assert_has_calls([call(0.1)] * 4)


class TestFilesystems:
    """Tests for make_ext4(), make_swap() and make_vfat()."""

    @patch("nvme_migrate.storage.format.run_command")
    def test_make_ext4(self, mock_run):
        format_module.make_ext4("/dev/sdb2")
        mock_run.assert_called_once_with(["mkfs.ext4", "-F", "-L", "rootfs", "/dev/sdb2"])

    @patch("nvme_migrate.storage.format.run_command")
    def test_make_swap(self, mock_run):
        format_module.make_swap("/dev/sdb3")
        mock_run.assert_called_once_with(["mkswap", "-L", "swap", "/dev/sdb3"])

    @patch("nvme_migrate.storage.format.run_command")
    def test_make_vfat(self, mock_run):
        format_module.make_vfat("/dev/sdb3")
        mock_run.assert_called_once_with(
            ["mkfs.vfat", "-F", "32", "-n", "EFI", "/dev/sdb3"]
        )

    @patch("nvme_migrate.storage.format.run_command")
    def test_mkfs_failure(self, mock_run, called_process_error):
        """Test mkfs failures raise FormatOperationError with the device."""
        mock_run.side_effect = called_process_error(["mkfs.ext4"], stderr="no space")

        with pytest.raises(FormatOperationError, match="no space") as excinfo:
            format_module.make_ext4("/dev/sdb2")

        assert excinfo.value.device == "/dev/sdb2"
