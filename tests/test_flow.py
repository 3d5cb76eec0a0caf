"""Tests for the installation menu state machine."""

from __future__ import annotations

import json

import pytest

from arch_installer.app.flow import InstallationFlow
from arch_installer.app.session import FlowState
from arch_installer.services.network import ConnectivityEstablisher
from arch_installer.storage.executor import PartitionExecutor
from arch_installer.storage.planner import DiskPlanner
from arch_installer.storage.stage_config import StageConfigStore


STAGE_RECORD = (
    "TARGET_DISK=/dev/sda\nEFI_PART=/dev/sda1\nSWAP_PART=/dev/sda2\n"
    "ROOT_PART=/dev/sda3\nENCRYPT_ROOT=0\n"
)


@pytest.fixture
def build_flow(installer_config, settings_store, fake_runner, lsblk_json, mocker):
    mocker.patch("arch_installer.storage.executor.shutil.which", return_value=None)
    fake_runner.on("lsblk", stdout=lsblk_json)
    fake_runner.on("parted", "-m", returncode=1, stderr="unrecognised disk label")

    def factory(dialog):
        return InstallationFlow(
            config=installer_config,
            prompter=dialog,
            settings=settings_store,
            planner=DiskPlanner(runner=fake_runner, memory_reader=lambda: 8),
            executor=PartitionExecutor(config=installer_config, runner=fake_runner),
            connectivity=ConnectivityEstablisher(
                config=installer_config,
                prompter=dialog,
                runner=fake_runner,
                sleep=lambda seconds: None,
            ),
            stage_store=StageConfigStore(path=installer_config.stage_config_path),
            runner=fake_runner,
        )

    return factory


def _disk_mutations(fake_runner):
    return fake_runner.called("parted", "-s") + fake_runner.called("mkfs.fat")


class TestMainMenu:
    def test_exit_returns_success(self, build_flow, make_dialog):
        dialog = make_dialog(menu=["exit"])

        assert build_flow(dialog).run() == 0
        assert dialog.menu_choices[0] == [
            ("quick", "Quick Install (recommended defaults)"),
            ("custom", "Custom Install"),
            ("network", "Configure Network"),
            ("settings", "System Settings"),
            ("exit", "Exit"),
        ]

    def test_cancelled_and_unknown_entries_redisplay(self, build_flow, make_dialog):
        dialog = make_dialog(menu=[None, "bogus", "exit"])
        flow = build_flow(dialog)

        assert flow.run() == 0
        assert len(dialog.menu_choices) == 3
        assert flow.session.state is FlowState.EXIT

    def test_configure_network(self, build_flow, make_dialog, fake_runner):
        dialog = make_dialog(menu=["network", "exit"])
        flow = build_flow(dialog)

        assert flow.run() == 0
        assert flow.session.online
        assert "Internet connection established (existing connection)." in dialog.shown("msgbox")

    def test_network_failure_is_fatal(self, build_flow, make_dialog, fake_runner, installer_config):
        fake_runner.on("ping", returncode=1)
        fake_runner.on("ip", "-o", "link", "show", stdout="1: lo: <LOOPBACK> mtu 65536\n")
        dialog = make_dialog(menu=["network"], yesno=[True])

        assert build_flow(dialog).run() == 1
        assert dialog.shown("msgbox")[-1] == (
            f"Error: No wireless interface found!\nCheck {installer_config.log_file} for details."
        )


class TestQuickInstall:
    def test_installs_recommended_layout_on_first_disk(
        self, build_flow, make_dialog, fake_runner, installer_config
    ):
        dialog = make_dialog(menu=["quick"], yesno=[True])
        flow = build_flow(dialog)

        assert flow.run() == 0

        confirmation = dialog.shown("yesno")[0]
        assert "/dev/sda" in confirmation
        assert "Root: 218GB" in confirmation
        assert "Swap: 10GB" in confirmation
        assert ["parted", "-s", "/dev/sda", "mklabel", "gpt"] in fake_runner.calls
        assert fake_runner.called("cryptsetup") == []
        assert installer_config.stage_config_path.read_text() == STAGE_RECORD
        assert flow.session.layout.root_partition == "/dev/sda3"
        assert "Installation steps completed successfully!" in dialog.shown("msgbox")
        assert "Creating new EFI partition..." in dialog.shown("infobox")

    def test_connectivity_is_established_before_partitioning(
        self, build_flow, make_dialog, fake_runner
    ):
        build_flow(make_dialog(menu=["quick"], yesno=[True])).run()

        assert fake_runner.index_of("ping") < fake_runner.index_of("parted", "-s")

    def test_declined_confirmation_returns_to_menu(self, build_flow, make_dialog, fake_runner):
        dialog = make_dialog(menu=["quick", "exit"], yesno=[False])

        assert build_flow(dialog).run() == 0
        assert _disk_mutations(fake_runner) == []
        assert fake_runner.called("ping") == []

    def test_no_disks_is_fatal(self, build_flow, make_dialog, fake_runner):
        fake_runner.on("lsblk", stdout=json.dumps({"blockdevices": []}), replace=True)
        dialog = make_dialog(menu=["quick"])

        assert build_flow(dialog).run() == 1
        assert dialog.shown("msgbox")[-1].startswith("Error: No suitable disks found!")

    def test_runs_configured_stages(self, build_flow, make_dialog, fake_runner, settings_store):
        settings_store.set_setting("stage.base", "/opt/install-base")
        settings_store.set_setting("stage.desktop", "/opt/install-desktop kde")

        assert build_flow(make_dialog(menu=["quick"], yesno=[True])).run() == 0

        assert ["/opt/install-base"] in fake_runner.calls
        assert ["/opt/install-desktop", "kde"] in fake_runner.calls
        assert fake_runner.index_of("/opt/install-base") < fake_runner.index_of(
            "/opt/install-desktop"
        )


class TestCustomPartition:
    def test_interactive_partitioning_with_reprompt(
        self, build_flow, make_dialog, fake_runner, installer_config
    ):
        dialog = make_dialog(
            menu=["custom", "partition", "/dev/sda", "return", "exit"],
            yesno=[True, False],
            inputbox=["abc", "200", "10"],
        )
        flow = build_flow(dialog)

        assert flow.run() == 0

        assert dialog.menu_choices[2] == [
            ("/dev/sda", "250G - Samsung SSD 870"),
            ("/dev/nvme0n1", "512G - WD Black SN770"),
        ]
        assert any("Invalid size: 'abc'" in text for text in dialog.shown("msgbox"))
        assert [call[1] for call in dialog.calls if call[0] == "inputbox"] == [
            "Root Partition",
            "Root Partition",
            "Swap Partition",
        ]
        assert [
            "parted", "-s", "/dev/sda", "mkpart", "primary", "linux-swap", "513MiB", "10753MiB",
        ] in fake_runner.calls
        assert installer_config.stage_config_path.read_text() == STAGE_RECORD
        assert "Disk partitioning completed successfully!" in dialog.shown("msgbox")
        assert flow.session.completed_steps == ["partition"]
        assert ("partition", "Partition and format the target disk (done)") in (
            dialog.menu_choices[3]
        )

    def test_connectivity_is_established_before_disk_selection(
        self, build_flow, make_dialog, fake_runner
    ):
        dialog = make_dialog(
            menu=["custom", "partition", "/dev/sda", "return", "exit"],
            yesno=[True, False],
            inputbox=["200", "10"],
        )

        assert build_flow(dialog).run() == 0
        assert fake_runner.index_of("ping") < fake_runner.index_of("lsblk")
        assert fake_runner.index_of("ping") < fake_runner.index_of("parted", "-s")

    def test_offline_without_interface_never_touches_disk(
        self, build_flow, make_dialog, fake_runner, installer_config
    ):
        fake_runner.on("ping", returncode=1)
        fake_runner.on("ip", "-o", "link", "show", stdout="1: lo: <LOOPBACK> mtu 65536\n")
        dialog = make_dialog(menu=["custom", "partition"], yesno=[False])

        assert build_flow(dialog).run() == 1
        assert fake_runner.called("lsblk") == []
        assert fake_runner.called("parted", "-s") == []
        assert not installer_config.stage_config_path.exists()
        assert dialog.shown("msgbox")[-1].startswith("Error: No wired interface found!")

    def test_disk_too_small_for_recommendation(
        self, build_flow, make_dialog, fake_runner, installer_config
    ):
        small_disk = {
            "name": "sda",
            "path": "/dev/sda",
            "size": 20 * 1024 ** 3,
            "model": "Small SSD",
            "type": "disk",
            "rm": False,
            "tran": "sata",
        }
        fake_runner.on("lsblk", stdout=json.dumps({"blockdevices": [small_disk]}), replace=True)
        dialog = make_dialog(
            menu=["custom", "partition", "/dev/sda", "return", "exit"],
            yesno=[True, False],
            inputbox=["12", "4"],
        )

        assert build_flow(dialog).run() == 0

        assert any(
            "too small for the recommended layout" in text for text in dialog.shown("msgbox")
        )
        assert dialog.shown("inputbox") == [
            "Root partition size in GB:",
            "Swap partition size in GB:",
        ]
        assert not any("-12" in text for text in dialog.shown("inputbox"))
        assert installer_config.stage_config_path.read_text() == STAGE_RECORD

    def test_declined_disk_confirmation_changes_nothing(
        self, build_flow, make_dialog, fake_runner, installer_config
    ):
        dialog = make_dialog(
            menu=["custom", "partition", "/dev/sda", "return", "exit"], yesno=[False]
        )

        assert build_flow(dialog).run() == 0
        assert _disk_mutations(fake_runner) == []
        assert not installer_config.stage_config_path.exists()
        assert "WARNING" in dialog.shown("yesno")[0]

    def test_no_disk_selected_is_fatal(self, build_flow, make_dialog):
        dialog = make_dialog(menu=["custom", "partition", None])

        assert build_flow(dialog).run() == 1
        assert dialog.shown("msgbox")[-1].startswith("Error: No disk selected!")

    def test_passphrase_mismatch_is_fatal_without_mutation(
        self, build_flow, make_dialog, fake_runner, installer_config
    ):
        dialog = make_dialog(
            menu=["custom", "partition", "/dev/sda"],
            yesno=[True, True],
            inputbox=["200", "10"],
            passwordbox=["abc", "abd"],
        )

        assert build_flow(dialog).run() == 1
        assert _disk_mutations(fake_runner) == []
        assert not installer_config.stage_config_path.exists()
        assert dialog.shown("msgbox")[-1].startswith("Error: Passphrases do not match!")

    def test_existing_efi_is_announced_and_reused(
        self, build_flow, make_dialog, fake_runner, parted_with_efi
    ):
        fake_runner.on("parted", "-m", stdout=parted_with_efi, replace=True)
        dialog = make_dialog(
            menu=["custom", "partition", "/dev/sda", "return", "exit"],
            yesno=[True, False],
            inputbox=["200", "10"],
        )

        assert build_flow(dialog).run() == 0
        assert any("Existing EFI partition found at /dev/sda1" in t for t in dialog.shown("msgbox"))
        assert fake_runner.called("parted", "-s", "/dev/sda", "mklabel") == []

    def test_cancelled_size_prompt_returns_to_steps(self, build_flow, make_dialog, fake_runner):
        dialog = make_dialog(
            menu=["custom", "partition", "/dev/sda", "return", "exit"],
            yesno=[True],
            inputbox=[None],
        )

        assert build_flow(dialog).run() == 0
        assert _disk_mutations(fake_runner) == []

    def test_oversized_request_is_fatal_before_mutation(self, build_flow, make_dialog, fake_runner):
        dialog = make_dialog(
            menu=["custom", "partition", "/dev/sda"],
            yesno=[True, False],
            inputbox=["500", "10"],
        )

        assert build_flow(dialog).run() == 1
        assert _disk_mutations(fake_runner) == []


class TestCustomSteps:
    def test_mount_step(self, build_flow, make_dialog, fake_runner, installer_config):
        installer_config.stage_config_path.write_text(STAGE_RECORD)
        dialog = make_dialog(menu=["custom", "mount", "return", "exit"])
        flow = build_flow(dialog)

        assert flow.run() == 0
        assert ["swapon", "/dev/sda2"] in fake_runner.calls
        assert flow.session.layout.root_device == "/dev/sda3"

    def test_mount_without_saved_layout_returns_to_steps(
        self, build_flow, make_dialog, fake_runner
    ):
        dialog = make_dialog(menu=["custom", "mount", "return", "exit"])

        assert build_flow(dialog).run() == 0
        assert "Run Partition first." in dialog.shown("msgbox")[-1]
        assert fake_runner.called("mount") == []
        assert fake_runner.called("swapon") == []

    def test_unconfigured_stage_shows_message(self, build_flow, make_dialog, fake_runner):
        dialog = make_dialog(menu=["custom", "base", "return", "exit"])

        assert build_flow(dialog).run() == 0
        assert any("No command configured" in text for text in dialog.shown("msgbox"))
        assert fake_runner.called("ping") == []

    def test_configured_stage_receives_layout_path(
        self, build_flow, make_dialog, fake_runner, installer_config, settings_store
    ):
        installer_config.stage_config_path.write_text(STAGE_RECORD)
        settings_store.set_setting("stage.system", "/opt/configure-system --locale en_US")
        dialog = make_dialog(menu=["custom", "system", "return", "exit"])
        flow = build_flow(dialog)

        assert flow.run() == 0

        index = fake_runner.index_of("/opt/configure-system")
        assert fake_runner.calls[index] == ["/opt/configure-system", "--locale", "en_US"]
        env = fake_runner.envs[index]
        assert env["INSTALL_CONFIG"] == str(installer_config.stage_config_path)
        assert env["INSTALL_MOUNT_ROOT"] == str(installer_config.mount_root)
        assert flow.session.completed_steps == ["system"]

    def test_stage_without_saved_layout_returns_to_steps(
        self, build_flow, make_dialog, fake_runner, settings_store
    ):
        settings_store.set_setting("stage.base", "/opt/install-base")
        dialog = make_dialog(menu=["custom", "base", "return", "exit"])

        assert build_flow(dialog).run() == 0
        assert "No saved disk layout" in dialog.shown("msgbox")[-1]
        assert fake_runner.called("/opt/install-base") == []
        assert fake_runner.called("ping") == []

    def test_step_menu_follows_session_steps(self, build_flow, make_dialog):
        dialog = make_dialog(menu=["custom", "return", "exit"])
        flow = build_flow(dialog)
        flow.session.steps = ["mount", "return"]
        flow.session.mark_completed("mount")

        assert flow.run() == 0
        assert dialog.menu_choices[1] == [
            ("mount", "Mount a previously partitioned disk (done)"),
            ("return", "Return to the main menu"),
        ]

    def test_failing_stage_is_fatal(
        self, build_flow, make_dialog, fake_runner, installer_config, settings_store
    ):
        installer_config.stage_config_path.write_text(STAGE_RECORD)
        settings_store.set_setting("stage.desktop", "/opt/install-desktop")
        fake_runner.on("/opt/install-desktop", returncode=2, stderr="pacstrap failed")
        dialog = make_dialog(menu=["custom", "desktop"])

        assert build_flow(dialog).run() == 1
        assert "Stage 'desktop' failed" in dialog.shown("msgbox")[-1]


class TestSystemSettings:
    def test_change_root_filesystem(self, build_flow, make_dialog, settings_store):
        dialog = make_dialog(menu=["settings", "root_fs", "btrfs", "return", "exit"])
        flow = build_flow(dialog)

        assert flow.run() == 0
        assert ("root_fs", "Root filesystem [ext4]") in dialog.menu_choices[1]
        assert settings_store.path.read_text() == "root_fs=btrfs\n"
        assert flow.config.root_fs == "btrfs"
        assert flow.executor.config.root_fs == "btrfs"

    def test_change_probe_host(self, build_flow, make_dialog):
        dialog = make_dialog(
            menu=["settings", "probe_host", "return", "exit"], inputbox=["mirror.example"]
        )
        flow = build_flow(dialog)

        assert flow.run() == 0
        assert flow.connectivity.config.probe_host == "mirror.example"

    def test_view_log(self, build_flow, make_dialog, installer_config):
        installer_config.log_file.write_text("log line\n")
        dialog = make_dialog(menu=["settings", "log", "return", "exit"])

        assert build_flow(dialog).run() == 0
        assert ("textbox", "Installation Log", str(installer_config.log_file)) in dialog.calls


def test_build_applies_saved_settings(installer_config, settings_store, make_dialog, fake_runner):
    settings_store.set_setting("root_fs", "xfs")

    flow = InstallationFlow.build(installer_config, make_dialog(), settings_store, fake_runner)

    assert flow.config.root_fs == "xfs"
    assert flow.executor.config.root_fs == "xfs"
    assert flow.stage_store.path == installer_config.stage_config_path
    assert flow.executor.progress == flow.show_progress
