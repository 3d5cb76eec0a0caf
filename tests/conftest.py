"""
Pytest configuration and shared fixtures for arch-installer tests.

Nothing here touches a real disk or network: external tools are replaced by
FakeRunner, which records every command line, and the dialog UI by
FakeDialog, which answers prompts from scripted queues.
"""

import json
import subprocess
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from arch_installer.config.settings import InstallerConfig, SettingsStore
from arch_installer.domain.models import GIB


# ==============================================================================
# Command runner fake
# ==============================================================================


class FakeRunner:
    """Callable with the run_command signature.

    ``on(*prefix, ...)`` registers an outcome for commands starting with
    ``prefix``. Registering the same prefix again queues another outcome; the
    last queued outcome repeats once the earlier ones are used up;
    ``replace=True`` discards what was queued before. The longest
    matching prefix wins; unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.redactions: List[Optional[Sequence[int]]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self._outcomes: Dict[tuple, deque] = {}

    def on(self, *prefix, stdout="", stderr="", returncode=0, raises=None, replace=False):
        if replace:
            self._outcomes.pop(tuple(prefix), None)
        self._outcomes.setdefault(tuple(prefix), deque()).append(
            (stdout, stderr, returncode, raises)
        )
        return self

    def __call__(self, command, check=True, input_text=None, redactions=None, env=None):
        command = list(command)
        self.calls.append(command)
        self.inputs.append(input_text)
        self.redactions.append(redactions)
        self.envs.append(env)

        outcome = ("", "", 0, None)
        matches = [prefix for prefix in self._outcomes if tuple(command[: len(prefix)]) == prefix]
        if matches:
            queue = self._outcomes[max(matches, key=len)]
            outcome = queue.popleft() if len(queue) > 1 else queue[0]
        stdout, stderr, returncode, raises = outcome
        if raises is not None:
            raise raises
        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, command, output=stdout, stderr=stderr)
        return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)

    def called(self, *prefix) -> List[List[str]]:
        return [call for call in self.calls if tuple(call[: len(prefix)]) == prefix]

    def index_of(self, *prefix) -> int:
        for index, call in enumerate(self.calls):
            if tuple(call[: len(prefix)]) == prefix:
                return index
        raise AssertionError(f"{prefix} was never called")


# ==============================================================================
# Dialog fake
# ==============================================================================


class FakeDialog:
    """Prompter that pops scripted answers; an unscripted prompt fails the test."""

    def __init__(self, menu=(), yesno=(), inputbox=(), passwordbox=()) -> None:
        self.answers = {
            "menu": deque(menu),
            "yesno": deque(yesno),
            "inputbox": deque(inputbox),
            "passwordbox": deque(passwordbox),
        }
        self.calls: List[tuple] = []
        self.menu_choices: List[list] = []

    def _next(self, kind: str, title: str):
        if not self.answers[kind]:
            raise AssertionError(f"Unexpected {kind} prompt: {title}")
        return self.answers[kind].popleft()

    def menu(self, title, prompt, choices, default=None):
        self.calls.append(("menu", title, prompt))
        self.menu_choices.append(list(choices))
        return self._next("menu", title)

    def yesno(self, title, text):
        self.calls.append(("yesno", title, text))
        return self._next("yesno", title)

    def inputbox(self, title, prompt, init=""):
        self.calls.append(("inputbox", title, prompt))
        return self._next("inputbox", title)

    def passwordbox(self, title, prompt):
        self.calls.append(("passwordbox", title, prompt))
        return self._next("passwordbox", title)

    def msgbox(self, title, text):
        self.calls.append(("msgbox", title, text))

    def infobox(self, title, text):
        self.calls.append(("infobox", title, text))

    def textbox(self, title, path):
        self.calls.append(("textbox", title, str(path)))

    def shown(self, kind: str) -> List[str]:
        return [call[2] for call in self.calls if call[0] == kind]


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_dialog():
    """Factory fixture: ``make_dialog(menu=[...], yesno=[...])``."""
    return FakeDialog


@pytest.fixture
def installer_config(tmp_path: Path) -> InstallerConfig:
    return InstallerConfig(
        log_file=tmp_path / "arch_install.log",
        settings_path=tmp_path / "install_settings",
        stage_config_path=tmp_path / "install_config",
        mount_root=tmp_path / "mnt",
        settle_seconds=0,
    )


@pytest.fixture
def settings_store(installer_config: InstallerConfig) -> SettingsStore:
    store = SettingsStore(path=installer_config.settings_path)
    store.load()
    return store


@pytest.fixture
def lsblk_devices() -> List[dict]:
    """Whole-disk entries as returned by ``lsblk -J -b -d``."""
    return [
        {
            "name": "sda",
            "path": "/dev/sda",
            "size": 250 * GIB,
            "model": "Samsung SSD 870 ",
            "type": "disk",
            "rm": False,
            "tran": "sata",
        },
        {
            "name": "sdb",
            "path": "/dev/sdb",
            "size": 16 * GIB,
            "model": "USB Flash Drive",
            "type": "disk",
            "rm": True,
            "tran": "usb",
        },
        {
            "name": "sr0",
            "path": "/dev/sr0",
            "size": 1073741312,
            "model": "DVD-RW",
            "type": "rom",
            "rm": True,
            "tran": "ata-optical",
        },
        {
            "name": "nvme0n1",
            "path": "/dev/nvme0n1",
            "size": 512 * GIB,
            "model": "WD Black SN770",
            "type": "disk",
            "rm": False,
            "tran": "nvme",
        },
        {
            "name": "loop0",
            "path": "/dev/loop0",
            "size": 800 * 1024 * 1024,
            "model": None,
            "type": "loop",
            "rm": False,
            "tran": None,
        },
    ]


@pytest.fixture
def lsblk_json(lsblk_devices) -> str:
    return json.dumps({"blockdevices": lsblk_devices})


@pytest.fixture
def parted_with_efi() -> str:
    """``parted -m -s /dev/sda unit MiB print`` for a disk holding an EFI partition."""
    return (
        "BYT;\n"
        "/dev/sda:256000MiB:scsi:512:512:gpt:ATA Samsung SSD 870:;\n"
        "1:1.00MiB:513MiB:512MiB:fat32:EFI system partition:boot, esp;\n"
    )
