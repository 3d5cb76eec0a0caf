"""Environment checks that must pass before the menu is shown."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from arch_installer.exceptions import FirmwareModeError, PlatformError, PrivilegeError
from arch_installer.logging import LoggerFactory


log = LoggerFactory.for_system()

ARCH_RELEASE_PATH = Path("/etc/arch-release")
OS_RELEASE_PATH = Path("/etc/os-release")
EFIVARS_PATH = Path("/sys/firmware/efi/efivars")


def read_os_release_id(path: Path) -> Optional[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return None
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() == "ID":
            return value.strip().strip("\"'")
    return None


@dataclass
class PreconditionChecker:
    geteuid: Callable[[], int] = os.geteuid
    arch_release_path: Path = ARCH_RELEASE_PATH
    os_release_path: Path = OS_RELEASE_PATH
    efivars_path: Path = EFIVARS_PATH

    def verify(self) -> None:
        """Raise the first failing PreconditionError; privilege is checked first."""
        uid = self.geteuid()
        if uid != 0:
            raise PrivilegeError(uid)

        if not self.arch_release_path.exists():
            detected = read_os_release_id(self.os_release_path)
            if detected != "arch":
                raise PlatformError(detected)

        if not self.efivars_path.is_dir():
            raise FirmwareModeError(self.efivars_path)

        log.info("Preconditions satisfied: root, Arch Linux, EFI firmware")
