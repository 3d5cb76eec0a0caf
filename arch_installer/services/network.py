"""Bring the live environment online before anything is downloaded.

The probe is a single ``ping`` to the configured host. When it fails the
operator chooses wireless (iwd's ``iwctl``) or wired (``dhcpcd``) setup, the
chosen interface is configured and the probe is repeated once after a settle
delay. Every failure resets the NetworkState to disconnected and propagates;
nothing here retries.
"""

from __future__ import annotations

import re
import subprocess
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from arch_installer.config.settings import InstallerConfig
from arch_installer.domain.models import NetworkState, NetworkStatus
from arch_installer.exceptions import (
    AuthenticationError,
    ConnectivityError,
    NoInterfaceError,
    NoNetworkFoundError,
    UnreachableError,
)
from arch_installer.logging import LoggerFactory
from arch_installer.system.commands import CommandRunner, describe_failure, run_command
from arch_installer.ui.dialog import Prompter


log = LoggerFactory.for_network()

ANSI_ESCAPE_RE = re.compile(r"\x1B\[([0-9]{1,3}(;[0-9]{1,3})*)?[mGK]")
WIRELESS_PREFIXES = ("wl",)
WIRED_PREFIXES = ("en", "eth")
# iwctl separates table columns with runs of spaces; names may contain single spaces
_COLUMN_SPLIT_RE = re.compile(r"\s{2,}")


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub("", text)


def parse_link_names(output: str) -> List[str]:
    """Interface names from ``ip -o link show`` (``2: wlan0: <...> mtu ...``)."""
    names: List[str] = []
    for line in output.splitlines():
        parts = line.split(":", 2)
        if len(parts) < 3:
            continue
        name = parts[1].strip().split("@", 1)[0]
        if name:
            names.append(name)
    return names


def parse_iwctl_networks(output: str) -> List[str]:
    """SSIDs from ``iwctl station <if> get-networks``.

    The table has a title, dashed rules and a column header before the rows;
    the connected network is marked with a leading ``>``.
    """
    networks: List[str] = []
    for raw_line in strip_ansi(output).splitlines():
        line = raw_line.strip()
        if not line or line.startswith("-"):
            continue
        if line.startswith("Available networks") or line.startswith("Network name"):
            continue
        if line.startswith("No networks available"):
            continue
        if line.startswith(">"):
            line = line[1:].strip()
        name = _COLUMN_SPLIT_RE.split(line, 1)[0].strip()
        if name and name not in networks:
            networks.append(name)
    return networks


@dataclass
class ConnectivityEstablisher:
    config: InstallerConfig
    prompter: Prompter
    runner: CommandRunner = run_command
    sleep: Callable[[float], None] = time.sleep
    state: NetworkState = field(default_factory=NetworkState)

    def probe(self) -> bool:
        host = self.config.probe_host
        try:
            result = self.runner(["ping", "-c", "1", host], check=False)
        except FileNotFoundError as error:
            log.warning(f"ping unavailable: {error}")
            return False
        reachable = result.returncode == 0
        log.info(f"Reachability probe to {host}: {'ok' if reachable else 'failed'}")
        return reachable

    def list_interfaces(self, prefixes: tuple) -> List[str]:
        try:
            result = self.runner(["ip", "-o", "link", "show"])
        except (subprocess.CalledProcessError, FileNotFoundError) as error:
            log.error(f"Interface enumeration failed: {describe_failure(error)}")
            return []
        return [name for name in parse_link_names(result.stdout) if name.startswith(prefixes)]

    def ensure_connectivity(self) -> NetworkState:
        """Return a connected NetworkState or raise a ConnectivityError."""
        self.state = NetworkState()
        state = self.state
        try:
            if self.probe():
                state.advance(NetworkStatus.CONNECTING)
                state.advance(NetworkStatus.CONNECTED)
                return state

            if self.prompter.yesno(
                "Network Setup",
                "No internet connection detected.\n\nUse a wireless connection?\n"
                "(Choose No for wired)",
            ):
                self._connect_wireless(state)
            else:
                self._connect_wired(state)

            self.sleep(self.config.settle_seconds)
            if not self.probe():
                raise UnreachableError(self.config.probe_host)
            state.advance(NetworkStatus.CONNECTED)
        except ConnectivityError as error:
            log.error(f"Network setup failed: {error}")
            state.fail()
            raise
        log.info(f"Connected via {state.interface}" + (f" ({state.network})" if state.network else ""))
        return state

    def _bring_up(self, interface: str) -> None:
        try:
            self.runner(["ip", "link", "set", interface, "up"])
        except (subprocess.CalledProcessError, FileNotFoundError) as error:
            raise ConnectivityError(
                f"Failed to bring up {interface}: {describe_failure(error)}"
            ) from error

    def _choose_interface(self, kind: str, prefixes: tuple) -> str:
        """A single match is used as is; several are offered in a menu."""
        interfaces = self.list_interfaces(prefixes)
        if not interfaces:
            raise NoInterfaceError(kind)
        if len(interfaces) == 1:
            return interfaces[0]
        choice = self.prompter.menu(
            "Network Setup",
            f"Select the {kind} interface:",
            [(name, name) for name in interfaces],
        )
        if choice not in interfaces:
            raise ConnectivityError(f"No {kind} interface selected!")
        return choice

    def _connect_wireless(self, state: NetworkState) -> None:
        interface = self._choose_interface("wireless", WIRELESS_PREFIXES)
        state.interface = interface
        state.advance(NetworkStatus.CONNECTING)
        self._bring_up(interface)

        self.prompter.infobox("Network Setup", f"Scanning for networks on {interface}...")
        try:
            self.runner(["iwctl", "station", interface, "scan"])
            self.sleep(self.config.settle_seconds)
            result = self.runner(["iwctl", "station", interface, "get-networks"])
        except (subprocess.CalledProcessError, FileNotFoundError) as error:
            log.error(f"Wireless scan failed: {describe_failure(error)}")
            raise NoNetworkFoundError() from error
        networks = parse_iwctl_networks(result.stdout)
        log.info(f"Found {len(networks)} wireless network(s) on {interface}")
        if not networks:
            raise NoNetworkFoundError()

        ssid = self.prompter.menu(
            "Wireless Networks",
            "Select a network:",
            [(str(index), name) for index, name in enumerate(networks, start=1)],
        )
        if ssid is None or not ssid.isdigit() or not 1 <= int(ssid) <= len(networks):
            raise NoNetworkFoundError("No network selected!")
        network = networks[int(ssid) - 1]
        state.network = network

        passphrase = self.prompter.passwordbox("Wireless Networks", f"Passphrase for {network}:")
        if passphrase is None:
            raise AuthenticationError(network, "passphrase entry cancelled")
        self._associate(interface, network, passphrase)

    def _associate(self, interface: str, network: str, passphrase: Optional[str]) -> None:
        if passphrase:
            command = ["iwctl", "--passphrase", passphrase, "station", interface, "connect", network]
            redactions = [2]
        else:
            command = ["iwctl", "station", interface, "connect", network]
            redactions = None
        try:
            self.runner(command, redactions=redactions)
        except (subprocess.CalledProcessError, FileNotFoundError) as error:
            raise AuthenticationError(network, describe_failure(error)) from error
        log.info(f"Associated {interface} with {network}")

    def _connect_wired(self, state: NetworkState) -> None:
        interface = self._choose_interface("wired", WIRED_PREFIXES)
        state.interface = interface
        state.advance(NetworkStatus.CONNECTING)
        self._bring_up(interface)
        self.prompter.infobox("Network Setup", f"Requesting an address on {interface}...")
        try:
            self.runner(["dhcpcd", interface])
        except (subprocess.CalledProcessError, FileNotFoundError) as error:
            log.error(f"dhcpcd failed on {interface}: {describe_failure(error)}")
            raise UnreachableError(self.config.probe_host) from error
