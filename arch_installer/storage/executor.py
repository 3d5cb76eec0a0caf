"""Apply a PartitionPlan to the target disk.

Sequencing (fixed order, every step fatal on failure):
    1. New EFI only: GPT label, 1MiB-513MiB FAT32 partition, esp flag, mkfs.fat
    2. Swap partition right after the EFI window, mkswap, swapon
    3. Root partition over the remainder of the disk
    4. Encrypted root: luksFormat, open, mkfs on the mapped device, mount
    5. Plain root: mkfs, mount
    6. <mount root>/boot created and the EFI partition mounted there

The passphrase comparison and the geometry check happen before the first
call that touches the disk. There is no rollback: a failure midway leaves
the disk as it is and the session aborts.

Security Notes:
    - All operations require root privileges
    - Passphrases are only ever passed to cryptsetup on stdin
"""

from __future__ import annotations

import contextlib
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Type

from arch_installer.config.settings import InstallerConfig
from arch_installer.domain.models import (
    AppliedLayout,
    EncryptionCredentials,
    PartitionPlan,
    StageConfig,
)
from arch_installer.exceptions import (
    EncryptionError,
    FormatError,
    MountError,
    PartitionError,
    StorageError,
)
from arch_installer.logging import LoggerFactory, operation_context
from arch_installer.system.commands import CommandRunner, describe_failure, run_command


log = LoggerFactory.for_disk()

ProgressCallback = Callable[[str], None]


def _noop_progress(message: str) -> None:
    return None


@dataclass
class PartitionExecutor:
    config: InstallerConfig
    runner: CommandRunner = run_command
    progress: ProgressCallback = _noop_progress

    def _run(
        self,
        command: Sequence[str],
        error_type: Type[StorageError],
        message: str,
        device: Optional[str] = None,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess[str]:
        try:
            return self.runner(command, input_text=input_text)
        except (subprocess.CalledProcessError, FileNotFoundError) as error:
            raise error_type(f"{message}: {describe_failure(error)}", device=device) from error

    def _settle(self, disk: str) -> None:
        """Let the kernel and udev pick up a changed partition table."""
        for cmd in (["partprobe", disk], ["udevadm", "settle", "--timeout=10"]):
            if shutil.which(cmd[0]):
                with contextlib.suppress(subprocess.CalledProcessError, OSError):
                    self.runner(cmd, check=False)

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    def _preflight(self, plan: PartitionPlan, credentials: Optional[EncryptionCredentials]) -> None:
        if plan.encrypt:
            if credentials is None or not credentials.passphrase:
                raise EncryptionError("An encryption passphrase is required", plan.root_path)
            if not credentials.matches():
                raise EncryptionError("Passphrases do not match!", plan.root_path)
        if not plan.fits():
            raise PartitionError(
                f"Requested layout does not fit {plan.device.path}: swap {plan.swap_gb}GB + "
                f"root {plan.root_gb}GB after {plan.swap_start_mib}MiB needs "
                f"{plan.required_end_mib}MiB, disk has {plan.usable_end_mib}MiB usable",
                device=plan.device.path,
            )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _create_efi(self, plan: PartitionPlan) -> None:
        disk = plan.device.path
        efi = plan.efi
        self.progress("Creating new EFI partition...")
        self._run(["parted", "-s", disk, "mklabel", "gpt"], PartitionError,
                  "Failed to write partition table", disk)
        self._run(
            ["parted", "-s", disk, "mkpart", "primary", "fat32",
             f"{efi.start_mib}MiB", f"{efi.end_mib}MiB"],
            PartitionError, "Failed to create EFI partition", disk,
        )
        self._run(["parted", "-s", disk, "set", str(efi.number), "esp", "on"], PartitionError,
                  "Failed to flag EFI partition", disk)
        self._settle(disk)
        self.progress("Formatting EFI partition...")
        self._run(["mkfs.fat", "-F32", efi.path], FormatError,
                  "Failed to format EFI partition", efi.path)

    def _create_swap(self, plan: PartitionPlan) -> None:
        disk = plan.device.path
        self.progress("Creating swap partition...")
        self._run(
            ["parted", "-s", disk, "mkpart", "primary", "linux-swap",
             f"{plan.swap_start_mib}MiB", f"{plan.swap_end_mib}MiB"],
            PartitionError, "Failed to create swap partition", disk,
        )
        self._settle(disk)
        self._run(["mkswap", plan.swap_path], FormatError,
                  "Failed to initialize swap", plan.swap_path)
        self._run(["swapon", plan.swap_path], MountError,
                  "Failed to activate swap", plan.swap_path)

    def _create_root(self, plan: PartitionPlan) -> None:
        disk = plan.device.path
        self.progress("Creating root partition...")
        self._run(
            ["parted", "-s", disk, "mkpart", "primary", self.config.root_fs,
             f"{plan.root_start_mib}MiB", "100%"],
            PartitionError, "Failed to create root partition", disk,
        )
        self._settle(disk)

    def _make_filesystem(self, device: str) -> None:
        fs = self.config.root_fs
        command = [f"mkfs.{fs}", device]
        if fs in ("btrfs", "xfs"):
            command.insert(1, "-f")
        self._run(command, FormatError, f"Failed to format {device} as {fs}", device)

    def _open_encrypted(self, root_partition: str, passphrase: str) -> str:
        mapped = self.config.mapped_device
        self._run(
            ["cryptsetup", "open", "--key-file=-", root_partition, self.config.mapper_name],
            EncryptionError, "Failed to unlock encrypted root", root_partition,
            input_text=passphrase,
        )
        return mapped

    def _mount(self, device: str, target: Path) -> None:
        self._run(["mount", device, str(target)], MountError,
                  f"Failed to mount {device} on {target}", device)

    def _mount_boot(self, efi_partition: str) -> None:
        boot = self.config.mount_root / "boot"
        try:
            boot.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise MountError(f"Failed to create {boot}: {error}", efi_partition) from error
        self._mount(efi_partition, boot)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply(
        self,
        plan: PartitionPlan,
        credentials: Optional[EncryptionCredentials] = None,
    ) -> AppliedLayout:
        """Partition, format, (encrypt,) and mount according to ``plan``.

        Raises:
            PartitionError, FormatError, EncryptionError, MountError
        """
        self._preflight(plan, credentials)

        with operation_context("partition", device=plan.device.path, encrypt=plan.encrypt):
            if plan.efi.reused:
                log.info(f"Reusing existing EFI partition {plan.efi.path}")
            else:
                self._create_efi(plan)

            self._create_swap(plan)
            self._create_root(plan)

            root_partition = plan.root_path
            if plan.encrypt:
                self.progress("Setting up encryption...")
                self._run(
                    ["cryptsetup", "--batch-mode", "luksFormat", root_partition, "-"],
                    EncryptionError, "Failed to encrypt root partition", root_partition,
                    input_text=credentials.passphrase,
                )
                root_device = self._open_encrypted(root_partition, credentials.passphrase)
                self.progress("Formatting encrypted partition...")
            else:
                root_device = root_partition
                self.progress("Formatting root partition...")
            self._make_filesystem(root_device)
            self._mount(root_device, self.config.mount_root)

            self.progress("Mounting partitions...")
            self._mount_boot(plan.efi.path)

        return AppliedLayout(
            target_disk=plan.device.path,
            efi_partition=plan.efi.path,
            swap_partition=plan.swap_path,
            root_partition=root_partition,
            encrypted=plan.encrypt,
            root_device=root_device,
            mount_root=str(self.config.mount_root),
        )

    def mount_existing(
        self,
        stage_config: StageConfig,
        passphrase: Optional[str] = None,
    ) -> AppliedLayout:
        """Re-mount a layout recorded by a previous Partition run."""
        missing = stage_config.missing_keys()
        if missing:
            raise MountError(f"Saved configuration is incomplete: missing {', '.join(missing)}")

        with operation_context("mount", device=stage_config.target_disk):
            root_partition = stage_config.root_partition
            if stage_config.encrypted:
                if not passphrase:
                    raise EncryptionError("A passphrase is required to unlock root", root_partition)
                root_device = self._open_encrypted(root_partition, passphrase)
            else:
                root_device = root_partition
            self._mount(root_device, self.config.mount_root)
            self._run(["swapon", stage_config.swap_partition], MountError,
                      "Failed to activate swap", stage_config.swap_partition)
            self._mount_boot(stage_config.efi_partition)

        return AppliedLayout(
            target_disk=stage_config.target_disk,
            efi_partition=stage_config.efi_partition,
            swap_partition=stage_config.swap_partition,
            root_partition=root_partition,
            encrypted=stage_config.encrypted,
            root_device=root_device,
            mount_root=str(self.config.mount_root),
        )
