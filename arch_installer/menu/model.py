from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass
class MenuItem:
    tag: str
    label: str
    submenu: Optional[MenuScreen] = None


@dataclass
class MenuScreen:
    screen_id: str
    title: str
    prompt: str = "Select an option:"
    items: List[MenuItem] = field(default_factory=list)

    def choices(self) -> List[Tuple[str, str]]:
        return [(item.tag, item.label) for item in self.items]

    def find(self, tag: Optional[str]) -> Optional[MenuItem]:
        for item in self.items:
            if item.tag == tag:
                return item
        return None
