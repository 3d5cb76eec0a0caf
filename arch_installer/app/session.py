from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from arch_installer.domain.models import AppliedLayout, NetworkState


class FlowState(Enum):
    MAIN_MENU = "main_menu"
    QUICK_INSTALL = "quick_install"
    CUSTOM_INSTALL = "custom_install"
    SYSTEM_SETTINGS = "system_settings"
    EXIT = "exit"


CUSTOM_STEPS = ("partition", "mount", "base", "system", "desktop", "return")


@dataclass
class InstallationSession:
    """What one interactive run has done so far."""

    state: FlowState = FlowState.MAIN_MENU
    steps: List[str] = field(default_factory=lambda: list(CUSTOM_STEPS))
    completed_steps: List[str] = field(default_factory=list)
    network: Optional[NetworkState] = None
    layout: Optional[AppliedLayout] = None
    exit_code: int = 0

    @property
    def online(self) -> bool:
        return self.network is not None and self.network.connected

    def mark_completed(self, step: str) -> None:
        if step not in self.completed_steps:
            self.completed_steps.append(step)
