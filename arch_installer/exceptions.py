"""Exceptions raised by the installer.

Every fatal condition derives from InstallerError; the flow controller catches
that base class, shows the message and exits non-zero. InvalidSizeError is the
only recoverable error and is a ValueError so input parsing can raise it
directly.

Exception Hierarchy:
    InstallerError (base)
        ├── PreconditionError
        │   ├── PrivilegeError
        │   ├── PlatformError
        │   └── FirmwareModeError
        ├── ConnectivityError
        │   ├── NoInterfaceError
        │   ├── NoNetworkFoundError
        │   ├── AuthenticationError
        │   └── UnreachableError
        ├── StorageError
        │   ├── DeviceNotFoundError
        │   ├── PartitionError
        │   ├── FormatError
        │   ├── EncryptionError
        │   └── MountError
        ├── StageConfigError
        │   ├── StageConfigWriteError
        │   └── StageConfigNotFoundError
        ├── StageCommandError
        └── PackageError
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class InstallerError(Exception):
    """Base exception for all fatal installer failures."""


class PreconditionError(InstallerError):
    """The execution environment cannot run the installer."""


class PrivilegeError(PreconditionError):
    """The installer is not running as the superuser."""

    def __init__(self, uid: int):
        self.uid = uid
        super().__init__(f"Installer must run as root (effective uid is {uid})")


class PlatformError(PreconditionError):
    """Host distribution is not the expected one."""

    def __init__(self, detected: Optional[str] = None):
        self.detected = detected
        msg = "Host is not an Arch Linux live environment"
        if detected:
            msg += f" (detected: {detected})"
        super().__init__(msg)


class FirmwareModeError(PreconditionError):
    """EFI variables are missing; legacy BIOS boot is unsupported."""

    def __init__(self, efivars_path: Path):
        self.efivars_path = efivars_path
        super().__init__("System not booted in EFI mode!")


class ConnectivityError(InstallerError):
    """Base exception for network setup failures."""


class NoInterfaceError(ConnectivityError):
    """No interface of the requested kind was found."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"No {kind} interface found!")


class NoNetworkFoundError(ConnectivityError):
    """Wireless scan returned nothing usable or nothing was selected."""

    def __init__(self, message: str = "No wireless networks found!"):
        super().__init__(message)


class AuthenticationError(ConnectivityError):
    """Association with the selected wireless network failed."""

    def __init__(self, network: str, reason: str = ""):
        self.network = network
        self.reason = reason
        msg = f"Failed to connect to {network}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnreachableError(ConnectivityError):
    """Reachability probe still fails after interface setup."""

    def __init__(self, host: str):
        self.host = host
        super().__init__(f"Failed to establish internet connection (cannot reach {host})!")


class StorageError(InstallerError):
    """Base exception for disk operations."""


class DeviceNotFoundError(StorageError):
    """No usable target disk."""

    def __init__(self, message: str = "No suitable disks found!"):
        super().__init__(message)


class PartitionError(StorageError):
    """Partition table or partition creation failed, or the plan does not fit."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class FormatError(StorageError):
    """Filesystem or swap initialization failed."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class EncryptionError(StorageError):
    """LUKS setup failed or the passphrases did not match."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class MountError(StorageError):
    """Mounting a filesystem or activating swap failed."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class StageConfigError(InstallerError):
    """Base exception for the stage configuration file."""


class StageConfigWriteError(StageConfigError):
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to save configuration to {path}: {reason}")


class StageConfigNotFoundError(StageConfigError):
    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"No saved configuration at {path}; run Partition first")


class StageCommandError(InstallerError):
    """An external installation stage command failed."""

    def __init__(self, stage: str, reason: str):
        self.stage = stage
        self.reason = reason
        super().__init__(f"Stage '{stage}' failed: {reason}")


class PackageError(InstallerError):
    """A required host package could not be installed."""

    def __init__(self, package: str):
        self.package = package
        super().__init__(f"Failed to install {package}")


class InvalidSizeError(ValueError):
    """Operator entered a size that is empty, non-numeric or not positive."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid size: {value!r} (enter a positive whole number of GB)")
