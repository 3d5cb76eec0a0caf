"""Menu hierarchy definitions.

Tags are what dialog returns and what the flow controller dispatches on;
edit labels freely, keep tags stable.
"""

from __future__ import annotations

from arch_installer.menu.model import MenuItem, MenuScreen


def menu_entry(tag: str, label: str, *, submenu: MenuScreen | None = None) -> MenuItem:
    return MenuItem(tag=tag, label=label, submenu=submenu)


def _collect_screens(root: MenuScreen) -> dict[str, MenuScreen]:
    screens: dict[str, MenuScreen] = {}

    def walk(screen: MenuScreen) -> None:
        if screen.screen_id in screens:
            return
        screens[screen.screen_id] = screen
        for item in screen.items:
            if item.submenu:
                walk(item.submenu)

    walk(root)
    return screens


CUSTOM_INSTALL_MENU = MenuScreen(
    screen_id="custom_install",
    title="Custom Install",
    prompt="Run the installation one step at a time:",
    items=[
        menu_entry("partition", "Partition and format the target disk"),
        menu_entry("mount", "Mount a previously partitioned disk"),
        menu_entry("base", "Install the base system"),
        menu_entry("system", "Configure the installed system"),
        menu_entry("desktop", "Install a desktop environment"),
        menu_entry("return", "Return to the main menu"),
    ],
)

SETTINGS_MENU = MenuScreen(
    screen_id="settings",
    title="System Settings",
    items=[
        menu_entry("root_fs", "Root filesystem"),
        menu_entry("probe_host", "Connectivity check host"),
        menu_entry("log", "View installation log"),
        menu_entry("return", "Return to the main menu"),
    ],
)

MAIN_MENU = MenuScreen(
    screen_id="main",
    title="Arch Linux Installer",
    prompt="Choose an installation mode:",
    items=[
        menu_entry("quick", "Quick Install (recommended defaults)"),
        menu_entry("custom", "Custom Install", submenu=CUSTOM_INSTALL_MENU),
        menu_entry("network", "Configure Network"),
        menu_entry("settings", "System Settings", submenu=SETTINGS_MENU),
        menu_entry("exit", "Exit"),
    ],
)

SCREENS = _collect_screens(MAIN_MENU)

__all__ = [
    "CUSTOM_INSTALL_MENU",
    "MAIN_MENU",
    "SCREENS",
    "SETTINGS_MENU",
    "menu_entry",
]
