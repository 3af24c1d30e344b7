"""Settings storage for migration defaults."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "NVME_MIGRATE_SETTINGS_PATH",
        Path.home() / ".config" / "nvme-migrate" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_NEW_ROOT_MOUNT = "/mnt/newroot"
DEFAULT_BOOTLOADER_ID = "debian"
DEFAULT_EFI_TARGET = "x86_64-efi"
DEFAULT_DEVICE_WAIT_ATTEMPTS = 5
DEFAULT_DEVICE_WAIT_DELAY = 1.0
DEFAULT_PVMOVE_INTERVAL = 5

DEFAULT_SETTINGS: dict[str, Any] = {
    "new_root_mount": DEFAULT_NEW_ROOT_MOUNT,
    "bootloader_id": DEFAULT_BOOTLOADER_ID,
    "efi_target": DEFAULT_EFI_TARGET,
    "device_wait_attempts": DEFAULT_DEVICE_WAIT_ATTEMPTS,
    "device_wait_delay_seconds": DEFAULT_DEVICE_WAIT_DELAY,
    "pvmove_interval_seconds": DEFAULT_PVMOVE_INTERVAL,
    "extra_excludes": [],
    "fstab_backup_suffix_format": "%Y%m%d-%H%M%S",
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_float(key: str, default: float = 0.0) -> float:
    try:
        return float(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_list(key: str) -> list[str]:
    value = get_setting(key, [])
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return []


load_settings()
