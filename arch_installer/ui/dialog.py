"""Thin wrapper around the ``dialog`` terminal toolkit.

dialog draws on the terminal (stdout) and writes the operator's answer to
stderr, so only stderr is captured. Exit status 0 means OK/Yes, 1 means
Cancel/No and 255 means ESC; cancel, ESC and an empty answer are all
reported as ``None`` ("no selection").
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

from arch_installer.logging import LoggerFactory


log = LoggerFactory.for_menu()

MenuChoice = Tuple[str, str]

DIALOG_OK = 0


class Prompter(Protocol):
    def menu(
        self, title: str, prompt: str, choices: Sequence[MenuChoice], default: Optional[str] = None
    ) -> Optional[str]: ...

    def yesno(self, title: str, text: str) -> bool: ...

    def inputbox(self, title: str, prompt: str, init: str = "") -> Optional[str]: ...

    def passwordbox(self, title: str, prompt: str) -> Optional[str]: ...

    def msgbox(self, title: str, text: str) -> None: ...

    def infobox(self, title: str, text: str) -> None: ...

    def textbox(self, title: str, path: Path) -> None: ...


class Dialog:
    def __init__(self, binary: str = "dialog", backtitle: str = "Arch Linux Installer") -> None:
        self.binary = binary
        self.backtitle = backtitle

    def _run(self, title: str, widget: List[str]) -> Tuple[int, str]:
        command = [self.binary, "--backtitle", self.backtitle, "--title", title, *widget]
        result = subprocess.run(command, stderr=subprocess.PIPE, text=True)
        return result.returncode, (result.stderr or "").strip()

    def menu(
        self,
        title: str,
        prompt: str,
        choices: Sequence[MenuChoice],
        default: Optional[str] = None,
    ) -> Optional[str]:
        widget: List[str] = []
        if default:
            widget += ["--default-item", default]
        widget += ["--menu", prompt, "18", "70", str(min(max(len(choices), 1), 10))]
        for tag, label in choices:
            widget += [tag, label]
        code, answer = self._run(title, widget)
        log.debug(f"Menu '{title}' returned code={code} answer={answer!r}")
        if code != DIALOG_OK or not answer:
            return None
        return answer

    def yesno(self, title: str, text: str) -> bool:
        code, _ = self._run(title, ["--yesno", text, "10", "60"])
        log.debug(f"Yes/no '{title}' returned code={code}")
        return code == DIALOG_OK

    def inputbox(self, title: str, prompt: str, init: str = "") -> Optional[str]:
        code, answer = self._run(title, ["--inputbox", prompt, "10", "60", init])
        log.debug(f"Input '{title}' returned code={code} answer={answer!r}")
        if code != DIALOG_OK or not answer:
            return None
        return answer

    def passwordbox(self, title: str, prompt: str) -> Optional[str]:
        code, answer = self._run(title, ["--insecure", "--passwordbox", prompt, "8", "60"])
        log.debug(f"Password '{title}' returned code={code}")
        if code != DIALOG_OK:
            return None
        return answer

    def msgbox(self, title: str, text: str) -> None:
        self._run(title, ["--msgbox", text, "10", "60"])

    def infobox(self, title: str, text: str) -> None:
        self._run(title, ["--infobox", text, "5", "60"])

    def textbox(self, title: str, path: Path) -> None:
        self._run(title, ["--textbox", str(path), "20", "76"])
