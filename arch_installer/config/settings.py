"""Installer configuration and the key=value settings file."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional


DEFAULT_LOG_FILE = Path(os.environ.get("ARCH_INSTALLER_LOG_FILE", "/tmp/arch_install.log"))
DEFAULT_SETTINGS_PATH = Path(
    os.environ.get("ARCH_INSTALLER_SETTINGS_PATH", "/tmp/install_settings")
)
DEFAULT_STAGE_CONFIG_PATH = Path(
    os.environ.get("ARCH_INSTALLER_STAGE_CONFIG", "/tmp/install_config")
)
DEFAULT_MOUNT_ROOT = Path(os.environ.get("ARCH_INSTALLER_MOUNT_ROOT", "/mnt"))

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_PROBE_HOST = "archlinux.org"
DEFAULT_SETTLE_SECONDS = 5.0
DEFAULT_ROOT_FS = "ext4"
DEFAULT_MAPPER_NAME = "cryptroot"

DEFAULT_SETTINGS: dict[str, str] = {
    "root_fs": DEFAULT_ROOT_FS,
    "probe_host": DEFAULT_PROBE_HOST,
}

SUPPORTED_ROOT_FS = ("ext4", "btrfs", "xfs")


@dataclass(frozen=True)
class InstallerConfig:
    """Paths and tunables shared by every component of one installer run."""

    log_file: Path = DEFAULT_LOG_FILE
    settings_path: Path = DEFAULT_SETTINGS_PATH
    stage_config_path: Path = DEFAULT_STAGE_CONFIG_PATH
    mount_root: Path = DEFAULT_MOUNT_ROOT
    probe_host: str = DEFAULT_PROBE_HOST
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    root_fs: str = DEFAULT_ROOT_FS
    mapper_name: str = DEFAULT_MAPPER_NAME

    @property
    def mapped_device(self) -> str:
        return f"/dev/mapper/{self.mapper_name}"

    def with_settings(self, store: SettingsStore) -> InstallerConfig:
        """Return a copy with values the operator saved in the settings file."""
        root_fs = store.get_setting("root_fs", self.root_fs)
        if root_fs not in SUPPORTED_ROOT_FS:
            root_fs = self.root_fs
        probe_host = store.get_setting("probe_host") or self.probe_host
        return replace(self, probe_host=probe_host, root_fs=root_fs)


def parse_key_value_lines(text: str) -> dict[str, str]:
    """Parse ``key=value`` lines; later lines win, blank and comment lines are skipped."""
    values: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values


@dataclass
class SettingsStore:
    path: Path = DEFAULT_SETTINGS_PATH
    values: dict[str, Any] = field(default_factory=dict)

    def load(self) -> None:
        self.values = dict(DEFAULT_SETTINGS)
        if not self.path.exists():
            return
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError:
            return
        self.values.update(parse_key_value_lines(text))

    def get_setting(self, key: str, default: Optional[Any] = None) -> Any:
        return self.values.get(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        """Record a setting; the file is append-only and the last line wins."""
        if "\n" in str(value) or "=" in key:
            raise ValueError(f"Invalid setting {key!r}")
        self.values[key] = str(value)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as settings_file:
            settings_file.write(f"{key}={value}\n")


def load_settings(path: Path = DEFAULT_SETTINGS_PATH) -> SettingsStore:
    store = SettingsStore(path=path)
    store.load()
    return store
