"""Block device inspection and command execution helpers.

Every external tool the migration uses goes through ``run_command`` (captured
output, logged at DEBUG/TRACE) or ``run_passthrough`` (output streamed straight
to the operator's terminal, used for long copies and extent moves).

Operations:
    - run_command(): run a tool and capture its output
    - run_passthrough(): run a tool with inherited stdout/stderr
    - findmnt_source(): mount source of a path
    - lsblk_parent(): kernel-reported parent of a partition or mapped device
    - lsblk_disks(): every whole disk a device sits on
    - list_mountpoints(): every mounted target
    - directory_usage(): bytes one tree uses on its own filesystem
    - block_device_size(): size in bytes via blockdev
    - blkid_value(): UUID/TYPE of a device
    - is_block_device(): stat-based block device check
    - list_block_devices(): lsblk table for the operator
    - human_size(): bytes to a short human-readable string

Example:
    >>> from nvme_migrate.storage.devices import blkid_value
    >>> blkid_value("/dev/nvme1n1p1", "UUID")
    '3f2c...'
"""
import os
import re
import stat
import subprocess
from typing import Mapping, Optional, Sequence

from nvme_migrate.logging import LoggerFactory


log = LoggerFactory.for_commands()
output_log = log.bind(tags=["command", "output"])


def run_command(
    command: Sequence[str],
    check: bool = True,
    log_output: bool = True,
    log_command: bool = True,
    env: Optional[Mapping[str, str]] = None,
) -> subprocess.CompletedProcess:
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    run_env = None
    if env:
        run_env = dict(os.environ)
        run_env.update(env)
    try:
        result = subprocess.run(
            list(command), check=check, text=True, capture_output=True, env=run_env
        )
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            output_log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            output_log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and (log_output or result.returncode != 0):
        output_log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        output_log.trace(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    return result


def run_passthrough(
    command: Sequence[str],
    check: bool = False,
    env: Optional[Mapping[str, str]] = None,
) -> subprocess.CompletedProcess:
    """Run a command with its progress output going to the terminal."""
    log.debug(f"Running command (passthrough): {' '.join(command)}")
    run_env = None
    if env:
        run_env = dict(os.environ)
        run_env.update(env)
    result = subprocess.run(list(command), check=check, env=run_env)
    log.debug(f"Command completed with return code {result.returncode}")
    return result


def command_error_text(error: subprocess.CalledProcessError) -> str:
    """Best available reason from a failed command."""
    for stream in (error.stderr, error.stdout):
        if stream and str(stream).strip():
            return str(stream).strip().splitlines()[-1]
    return f"exit status {error.returncode}"


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def _first_line(text: Optional[str]) -> str:
    for line in (text or "").splitlines():
        if line.strip():
            return line.strip()
    return ""


def findmnt_source(path: str) -> Optional[str]:
    """Return the device mounted at ``path`` or None when nothing is."""
    result = run_command(["findmnt", "-no", "SOURCE", path], check=False)
    if result.returncode != 0:
        return None
    return _first_line(result.stdout) or None


def lsblk_parent(device: str) -> Optional[str]:
    """Return the parent disk (``/dev/<PKNAME>``) the kernel reports."""
    result = run_command(["lsblk", "-no", "PKNAME", device], check=False)
    if result.returncode != 0:
        return None
    name = _first_line(result.stdout)
    if not name:
        return None
    return f"/dev/{name}"


def lsblk_disks(device: str) -> list[str]:
    """Return every whole disk under ``device``, through any stacked layers.

    ``lsblk -s`` walks the dependency tree downwards; only rows whose TYPE is
    ``disk`` are kept, in the order lsblk reports them.
    """
    result = run_command(
        ["lsblk", "-s", "-r", "-n", "-p", "-o", "NAME,TYPE", device], check=False
    )
    if result.returncode != 0:
        return []
    disks = []
    for line in (result.stdout or "").splitlines():
        columns = line.split()
        if len(columns) >= 2 and columns[1] == "disk" and columns[0] not in disks:
            disks.append(columns[0])
    return disks


_FINDMNT_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")


def list_mountpoints() -> list[str]:
    """Every mounted target, with findmnt's ``\\x20`` escapes decoded."""
    result = run_command(["findmnt", "-rn", "-o", "TARGET"], check=False, log_output=False)
    if result.returncode != 0:
        log.warning("Could not list mounted filesystems")
        return []
    targets = []
    for line in (result.stdout or "").splitlines():
        line = line.strip()
        if line:
            targets.append(_FINDMNT_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), line))
    return targets


def directory_usage(path: str) -> int:
    """Bytes used under ``path`` without crossing into other filesystems."""
    result = run_command(["du", "-sxb", path], check=False, log_output=False)
    try:
        return int(_first_line(result.stdout).split()[0])
    except (IndexError, ValueError):
        log.warning(f"Could not measure {path} (du exit {result.returncode})")
        return 0


def same_filesystem(first: str, second: str) -> bool:
    try:
        return os.stat(first).st_dev == os.stat(second).st_dev
    except OSError:
        return False


def block_device_size(device: str) -> int:
    result = run_command(["blockdev", "--getsize64", device], check=False)
    if result.returncode != 0:
        log.warning(f"Could not read size of {device}")
        return 0
    try:
        return int(_first_line(result.stdout))
    except ValueError:
        return 0


def blkid_value(device: str, tag: str) -> Optional[str]:
    """Return one blkid tag (UUID, TYPE, ...) or None when it is not set."""
    result = run_command(
        ["blkid", "-s", tag, "-o", "value", device], check=False, log_output=False
    )
    if result.returncode != 0:
        return None
    return _first_line(result.stdout) or None


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def resolve_device_path(path: str) -> str:
    return os.path.realpath(path)


def list_block_devices() -> str:
    """lsblk overview shown before asking for the destination disk."""
    result = run_command(
        ["lsblk", "-o", "NAME,SIZE,MODEL,TRAN"], check=False, log_output=False
    )
    return result.stdout or ""


def reread_partition_table(device: str) -> None:
    """Ask the kernel to pick up a new partition table, ignoring failures."""
    for cmd in (
        ["sync"],
        ["partprobe", device],
        ["blockdev", "--rereadpt", device],
        ["udevadm", "settle", "--timeout=5"],
    ):
        try:
            run_command(cmd, check=False, log_command=False)
        except OSError as error:
            log.debug(f"{cmd[0]} unavailable: {error}")
