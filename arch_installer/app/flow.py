"""Menu-driven state machine that sequences one installation session.

States: MAIN_MENU -> QUICK_INSTALL | CUSTOM_INSTALL | SYSTEM_SETTINGS -> EXIT.
A cancelled or unknown menu answer redisplays the current menu. Any
InstallerError ends the session: it is logged, shown in an error dialog and
the run returns exit status 1.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from arch_installer.app.session import FlowState, InstallationSession
from arch_installer.config.settings import SUPPORTED_ROOT_FS, InstallerConfig, SettingsStore
from arch_installer.domain.models import (
    AppliedLayout,
    BlockDevice,
    EncryptionCredentials,
    PartitionPlan,
)
from arch_installer.exceptions import (
    DeviceNotFoundError,
    InstallerError,
    InvalidSizeError,
    StageCommandError,
)
from arch_installer.logging import LoggerFactory
from arch_installer.menu.definitions import CUSTOM_INSTALL_MENU, MAIN_MENU, SETTINGS_MENU
from arch_installer.menu.model import MenuScreen
from arch_installer.services.network import ConnectivityEstablisher
from arch_installer.storage import devices
from arch_installer.storage.executor import PartitionExecutor
from arch_installer.storage.planner import DiskPlanner, parse_size
from arch_installer.storage.stage_config import StageConfigStore
from arch_installer.system.commands import CommandRunner, describe_failure, run_command
from arch_installer.ui.dialog import Prompter


log = LoggerFactory.for_menu()

STAGE_TITLES = {
    "base": "Install Base",
    "system": "Configure System",
    "desktop": "Install Desktop",
}

_MAIN_TRANSITIONS = {
    "quick": FlowState.QUICK_INSTALL,
    "custom": FlowState.CUSTOM_INSTALL,
    "settings": FlowState.SYSTEM_SETTINGS,
    "exit": FlowState.EXIT,
}


@dataclass
class InstallationFlow:
    config: InstallerConfig
    prompter: Prompter
    settings: SettingsStore
    planner: DiskPlanner
    executor: PartitionExecutor
    connectivity: ConnectivityEstablisher
    stage_store: StageConfigStore
    runner: CommandRunner = run_command
    session: InstallationSession = field(default_factory=InstallationSession)

    def __post_init__(self) -> None:
        self.executor.progress = self.show_progress

    @classmethod
    def build(
        cls,
        config: InstallerConfig,
        prompter: Prompter,
        settings: SettingsStore,
        runner: CommandRunner = run_command,
    ) -> InstallationFlow:
        config = config.with_settings(settings)
        return cls(
            config=config,
            prompter=prompter,
            settings=settings,
            planner=DiskPlanner(runner=runner),
            executor=PartitionExecutor(config=config, runner=runner),
            connectivity=ConnectivityEstablisher(config=config, prompter=prompter, runner=runner),
            stage_store=StageConfigStore(path=config.stage_config_path),
            runner=runner,
        )

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> int:
        """Drive menus until Exit or a fatal error; returns the exit status."""
        handlers = {
            FlowState.MAIN_MENU: self._main_menu,
            FlowState.QUICK_INSTALL: self.quick_install,
            FlowState.CUSTOM_INSTALL: self._custom_menu,
            FlowState.SYSTEM_SETTINGS: self._settings_menu,
        }
        try:
            while self.session.state is not FlowState.EXIT:
                handlers[self.session.state]()
        except InstallerError as error:
            log.error(f"Installation aborted: {error}")
            self.prompter.msgbox(
                "Error", f"Error: {error}\nCheck {self.config.log_file} for details."
            )
            self.session.exit_code = 1
            self.session.state = FlowState.EXIT
        log.info(f"Session finished with exit status {self.session.exit_code}")
        return self.session.exit_code

    def _choose(self, screen: MenuScreen, choices=None) -> Optional[str]:
        tag = self.prompter.menu(screen.title, screen.prompt, choices or screen.choices())
        if screen.find(tag) is None:
            log.debug(f"No valid selection on {screen.screen_id} ({tag!r}); redisplaying")
            return None
        log.debug(f"Selected {screen.screen_id}/{tag}")
        return tag

    def _main_menu(self) -> None:
        tag = self._choose(MAIN_MENU)
        if tag == "network":
            self.configure_network()
        elif tag in _MAIN_TRANSITIONS:
            self.session.state = _MAIN_TRANSITIONS[tag]

    def show_progress(self, message: str) -> None:
        self.prompter.infobox("Installing", message)

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def configure_network(self) -> None:
        state = self.connectivity.ensure_connectivity()
        self.session.network = state
        via = state.interface or "existing connection"
        self.prompter.msgbox("Network", f"Internet connection established ({via}).")

    def _ensure_online(self) -> None:
        if not self.session.online:
            self.session.network = self.connectivity.ensure_connectivity()

    # ------------------------------------------------------------------
    # Quick install
    # ------------------------------------------------------------------

    def quick_install(self) -> None:
        """Recommended layout on the first candidate disk, no encryption."""
        candidates = self.planner.list_candidates()
        if not candidates:
            raise DeviceNotFoundError()
        device = candidates[0]
        plan = self.planner.recommended_plan(device)

        if not self.prompter.yesno(
            "Quick Install",
            f"Install to {device.path} ({device.format_label()})?\n\n"
            f"Root: {plan.root_gb}GB  Swap: {plan.swap_gb}GB  Encryption: off\n\n"
            "WARNING: the partition table on this disk will be modified.",
        ):
            log.info("Quick install declined")
            self.session.state = FlowState.MAIN_MENU
            return

        self._ensure_online()
        self._apply(plan)
        for stage in STAGE_TITLES:
            if self.settings.get_setting(f"stage.{stage}"):
                self.run_stage(stage)
        self.prompter.msgbox("Quick Install", "Installation steps completed successfully!")
        self.session.state = FlowState.EXIT

    # ------------------------------------------------------------------
    # Custom install
    # ------------------------------------------------------------------

    def _custom_menu(self) -> None:
        choices = []
        for step in self.session.steps:
            item = CUSTOM_INSTALL_MENU.find(step)
            if item is None:
                continue
            done = " (done)" if step in self.session.completed_steps else ""
            choices.append((item.tag, f"{item.label}{done}"))
        tag = self._choose(CUSTOM_INSTALL_MENU, choices)
        if tag == "partition":
            self.partition_step()
        elif tag == "mount":
            self.mount_step()
        elif tag in STAGE_TITLES:
            self.run_stage(tag)
        elif tag == "return":
            self.session.state = FlowState.MAIN_MENU

    def _select_disk(self) -> BlockDevice:
        candidates = self.planner.list_candidates()
        if not candidates:
            raise DeviceNotFoundError()
        tag = self.prompter.menu(
            "Select Disk",
            "Select the installation disk:",
            [(device.path, device.format_label()) for device in candidates],
        )
        for device in candidates:
            if device.path == tag:
                return device
        raise DeviceNotFoundError("No disk selected!")

    def _ask_size(self, title: str, prompt: str, default: int) -> Optional[int]:
        """Prompt until a positive whole number is entered; None when cancelled."""
        init = str(default) if default > 0 else ""
        while True:
            text = self.prompter.inputbox(title, prompt, init)
            if text is None:
                return None
            try:
                return parse_size(text)
            except InvalidSizeError as error:
                log.warning(str(error))
                self.prompter.msgbox(title, str(error))

    def _ask_credentials(self) -> EncryptionCredentials:
        passphrase = self.prompter.passwordbox("Encryption", "Enter encryption passphrase:")
        confirmation = self.prompter.passwordbox("Encryption", "Confirm encryption passphrase:")
        return EncryptionCredentials(passphrase or "", confirmation or "")

    def partition_step(self) -> None:
        self._ensure_online()
        device = self._select_disk()
        if not self.prompter.yesno(
            "Confirm Disk",
            f"WARNING: The partition table on {device.path} will be modified.\n\n"
            "Existing data on the disk may be lost. Continue?",
        ):
            log.info(f"Partitioning of {device.path} declined")
            return

        existing = self.planner.existing_partitions(device)
        efi = devices.find_existing_efi(existing)
        if efi is not None:
            self.prompter.msgbox(
                "EFI Partition",
                f"Existing EFI partition found at {efi.path}.\nIt will be reused.",
            )

        recommendation = self.planner.recommend(device)
        if recommendation.valid:
            root_prompt = f"Root partition size in GB (recommended: {recommendation.root_gb}):"
            swap_prompt = f"Swap partition size in GB (recommended: {recommendation.swap_gb}):"
            root_default, swap_default = recommendation.root_gb, recommendation.swap_gb
        else:
            self.prompter.msgbox(
                "Partition Sizes",
                f"{device.path} is too small for the recommended layout "
                f"({recommendation.swap_gb}GB swap plus root).\n"
                "Enter the sizes manually.",
            )
            root_prompt = "Root partition size in GB:"
            swap_prompt = "Swap partition size in GB:"
            root_default = swap_default = 0

        root_gb = self._ask_size("Root Partition", root_prompt, root_default)
        if root_gb is None:
            return
        swap_gb = self._ask_size("Swap Partition", swap_prompt, swap_default)
        if swap_gb is None:
            return

        encrypt = self.prompter.yesno("Encryption", "Encrypt the root partition?")
        credentials = self._ask_credentials() if encrypt else None

        plan = self.planner.plan(
            device,
            root_gb=root_gb,
            swap_gb=swap_gb,
            encrypt=encrypt,
            existing_partitions=existing,
        )
        self._apply(plan, credentials)
        self.session.mark_completed("partition")
        self.prompter.msgbox("Partition", "Disk partitioning completed successfully!")

    def _apply(
        self, plan: PartitionPlan, credentials: Optional[EncryptionCredentials] = None
    ) -> AppliedLayout:
        layout = self.executor.apply(plan, credentials)
        self.stage_store.persist(layout)
        self.session.layout = layout
        return layout

    def _layout_saved(self, title: str) -> bool:
        if self.stage_store.exists():
            return True
        log.warning(f"{title} chosen before any layout was saved")
        self.prompter.msgbox(
            title,
            f"No saved disk layout at {self.stage_store.path}.\nRun Partition first.",
        )
        return False

    def mount_step(self) -> None:
        if not self._layout_saved("Mount"):
            return
        stage_config = self.stage_store.load()
        passphrase = None
        if stage_config.encrypted:
            passphrase = self.prompter.passwordbox(
                "Mount", f"Passphrase for {stage_config.root_partition}:"
            )
        self.session.layout = self.executor.mount_existing(stage_config, passphrase)
        self.session.mark_completed("mount")
        self.prompter.msgbox("Mount", f"Partitions mounted at {self.config.mount_root}.")

    def run_stage(self, stage: str) -> None:
        """Hand off to the external command configured as ``stage.<name>``."""
        title = STAGE_TITLES[stage]
        command_line = self.settings.get_setting(f"stage.{stage}")
        if not command_line:
            self.prompter.msgbox(
                title,
                f"No command configured for this step.\n"
                f"Set stage.{stage} in {self.settings.path}.",
            )
            return
        if not self._layout_saved(title):
            return

        self._ensure_online()
        self.show_progress(f"{title}...")
        env = dict(os.environ)
        env["INSTALL_CONFIG"] = str(self.stage_store.path)
        env["INSTALL_MOUNT_ROOT"] = str(self.config.mount_root)
        try:
            result = self.runner(shlex.split(command_line), env=env)
        except (subprocess.CalledProcessError, FileNotFoundError) as error:
            raise StageCommandError(stage, describe_failure(error)) from error
        if result.stdout:
            log.info(f"{stage} output:\n{result.stdout.strip()}")
        self.session.mark_completed(stage)
        log.info(f"Stage {stage} completed")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _settings_menu(self) -> None:
        current = {
            "root_fs": self.config.root_fs,
            "probe_host": self.config.probe_host,
        }
        choices = [
            (tag, f"{label} [{current[tag]}]" if tag in current else label)
            for tag, label in SETTINGS_MENU.choices()
        ]
        tag = self._choose(SETTINGS_MENU, choices)
        if tag == "root_fs":
            fs = self.prompter.menu(
                "Root Filesystem",
                "Filesystem for the root partition:",
                [(name, name) for name in SUPPORTED_ROOT_FS],
                default=self.config.root_fs,
            )
            if fs in SUPPORTED_ROOT_FS:
                self._update_setting("root_fs", fs)
        elif tag == "probe_host":
            host = self.prompter.inputbox(
                "Connectivity Check", "Host to ping:", self.config.probe_host
            )
            if host and not any(char.isspace() for char in host):
                self._update_setting("probe_host", host)
        elif tag == "log":
            self.show_log()
        elif tag == "return":
            self.session.state = FlowState.MAIN_MENU

    def _update_setting(self, key: str, value: str) -> None:
        self.settings.set_setting(key, value)
        self.config = self.config.with_settings(self.settings)
        self.executor.config = self.config
        self.connectivity.config = self.config
        log.info(f"Setting {key} changed to {value}")

    def show_log(self) -> None:
        if self.config.log_file.is_file():
            self.prompter.textbox("Installation Log", self.config.log_file)
        else:
            self.prompter.msgbox("Installation Log", f"{self.config.log_file} does not exist yet.")
