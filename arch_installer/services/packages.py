"""Make sure the host tools the installer itself needs are present."""

from __future__ import annotations

import subprocess
from typing import Iterable, List

from arch_installer.exceptions import PackageError
from arch_installer.logging import LoggerFactory
from arch_installer.system.commands import CommandRunner, describe_failure, run_command


log = LoggerFactory.for_system()

REQUIRED_PACKAGES = ("dialog", "curl")


def is_installed(package: str, runner: CommandRunner = run_command) -> bool:
    result = runner(["pacman", "-Qi", package], check=False)
    return result.returncode == 0


def ensure_packages(
    packages: Iterable[str] = REQUIRED_PACKAGES,
    runner: CommandRunner = run_command,
) -> List[str]:
    """Install whatever is missing; returns the packages that were installed."""
    installed: List[str] = []
    for package in packages:
        try:
            if is_installed(package, runner):
                log.debug(f"{package} already installed")
                continue
            log.info(f"Installing {package}")
            runner(["pacman", "-Sy", "--noconfirm", package])
        except (subprocess.CalledProcessError, FileNotFoundError) as error:
            log.error(f"Failed to install {package}: {describe_failure(error)}")
            raise PackageError(package) from error
        installed.append(package)
    return installed
