"""Domain model for a single-disk installation.

Disk facts (BlockDevice) are observed from the operating system and never
mutated. A PartitionPlan is built once per attempt and is frozen: changing a
size or the target disk means building a new plan. AppliedLayout is what the
executor actually produced and what the next stage reads back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


MIB = 1024**2
GIB = 1024**3

EFI_START_MIB = 1
EFI_SIZE_MIB = 512
EFI_END_MIB = EFI_START_MIB + EFI_SIZE_MIB
# GPT keeps a backup header in the last MiB of the disk
GPT_TAIL_MIB = 1


def partition_path(disk: str, number: int) -> str:
    """Partition node for a disk (nvme/mmcblk/loop devices use a ``p`` suffix)."""
    if disk[-1:].isdigit():
        return f"{disk}p{number}"
    return f"{disk}{number}"


# ==============================================================================
# Block devices
# ==============================================================================


@dataclass(frozen=True)
class BlockDevice:
    """A whole disk that can receive the installation."""

    path: str  # e.g., "/dev/sda"
    size_bytes: int
    model: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def size_gb(self) -> int:
        """Capacity in whole GiB, rounded down."""
        return self.size_bytes // GIB

    @property
    def size_mib(self) -> int:
        return self.size_bytes // MIB

    def format_label(self) -> str:
        """e.g. "250G - Samsung SSD 870" for dialog menus."""
        model = (self.model or "").strip() or "Unknown model"
        return f"{self.size_gb}G - {model}"

    @classmethod
    def from_lsblk_dict(cls, device: Mapping[str, Any]) -> BlockDevice:
        """Convert an ``lsblk -J -b`` entry.

        Raises:
            KeyError: If name/path is missing
            ValueError: If size cannot be converted to int
        """
        path = device.get("path") or f"/dev/{device['name']}"
        size_bytes = int(device.get("size") or 0)
        model = device.get("model")
        if model:
            model = model.strip()
        return cls(path=path, size_bytes=size_bytes, model=model or None)


@dataclass(frozen=True)
class ExistingPartition:
    """A partition already present on the target disk."""

    path: str
    number: int
    start_mib: int
    end_mib: int
    is_efi: bool = False

    def overlaps(self, start_mib: int, end_mib: int) -> bool:
        return self.start_mib < end_mib and start_mib < self.end_mib


@dataclass(frozen=True)
class EfiPartition:
    path: str
    number: int
    start_mib: int = EFI_START_MIB
    end_mib: int = EFI_END_MIB
    reused: bool = False

    @classmethod
    def new(cls, disk: str) -> EfiPartition:
        return cls(path=partition_path(disk, 1), number=1)

    @classmethod
    def reuse(cls, partition: ExistingPartition) -> EfiPartition:
        return cls(
            path=partition.path,
            number=partition.number,
            start_mib=partition.start_mib,
            end_mib=partition.end_mib,
            reused=True,
        )


# ==============================================================================
# Partition plan
# ==============================================================================


@dataclass(frozen=True)
class PartitionPlan:
    device: BlockDevice
    efi: EfiPartition
    swap_gb: int
    root_gb: int
    encrypt: bool = False
    swap_number: int = 2
    root_number: int = 3

    @property
    def swap_start_mib(self) -> int:
        return self.efi.end_mib

    @property
    def swap_end_mib(self) -> int:
        return self.swap_start_mib + self.swap_gb * 1024

    @property
    def root_start_mib(self) -> int:
        return self.swap_end_mib

    @property
    def required_end_mib(self) -> int:
        """Last MiB the planned root size needs; the root partition itself takes the remainder."""
        return self.root_start_mib + self.root_gb * 1024

    @property
    def usable_end_mib(self) -> int:
        return self.device.size_mib - GPT_TAIL_MIB

    @property
    def swap_path(self) -> str:
        return partition_path(self.device.path, self.swap_number)

    @property
    def root_path(self) -> str:
        return partition_path(self.device.path, self.root_number)

    def fits(self) -> bool:
        return (
            self.swap_gb > 0
            and self.root_gb > 0
            and self.swap_end_mib <= self.root_start_mib <= self.usable_end_mib
            and self.required_end_mib <= self.usable_end_mib
        )


@dataclass(frozen=True)
class SizeRecommendation:
    capacity_gb: int
    memory_gb: int
    root_gb: int
    swap_gb: int

    @property
    def valid(self) -> bool:
        return self.root_gb > 0 and self.swap_gb > 0


@dataclass(frozen=True)
class EncryptionCredentials:
    passphrase: str = field(repr=False)
    confirmation: str = field(repr=False)

    def matches(self) -> bool:
        return self.passphrase == self.confirmation


# ==============================================================================
# Applied layout and stage configuration
# ==============================================================================


STAGE_KEYS = ("TARGET_DISK", "EFI_PART", "SWAP_PART", "ROOT_PART", "ENCRYPT_ROOT")


@dataclass(frozen=True)
class AppliedLayout:
    target_disk: str
    efi_partition: str
    swap_partition: str
    root_partition: str
    encrypted: bool
    root_device: str  # mapped device when encrypted, root partition otherwise
    mount_root: str

    def to_stage_config(self) -> StageConfig:
        return StageConfig(
            {
                "TARGET_DISK": self.target_disk,
                "EFI_PART": self.efi_partition,
                "SWAP_PART": self.swap_partition,
                "ROOT_PART": self.root_partition,
                "ENCRYPT_ROOT": "1" if self.encrypted else "0",
            }
        )


class StageConfig(Dict[str, str]):
    """Flat key/value record handed from disk setup to the later stages."""

    @property
    def target_disk(self) -> str:
        return self["TARGET_DISK"]

    @property
    def efi_partition(self) -> str:
        return self["EFI_PART"]

    @property
    def swap_partition(self) -> str:
        return self["SWAP_PART"]

    @property
    def root_partition(self) -> str:
        return self["ROOT_PART"]

    @property
    def encrypted(self) -> bool:
        return self.get("ENCRYPT_ROOT", "0") == "1"

    def missing_keys(self) -> List[str]:
        return [key for key in STAGE_KEYS if not self.get(key)]

    def to_lines(self) -> List[str]:
        ordered = [key for key in STAGE_KEYS if key in self]
        ordered += sorted(key for key in self if key not in STAGE_KEYS)
        return [f"{key}={self[key]}" for key in ordered]


# ==============================================================================
# Network state
# ==============================================================================


class NetworkStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


_FORWARD = {
    NetworkStatus.DISCONNECTED: NetworkStatus.CONNECTING,
    NetworkStatus.CONNECTING: NetworkStatus.CONNECTED,
}


class InvalidTransitionError(RuntimeError):
    pass


@dataclass
class NetworkState:
    """Connectivity status; transitions only forward, failure resets it."""

    status: NetworkStatus = NetworkStatus.DISCONNECTED
    interface: Optional[str] = None
    network: Optional[str] = None
    history: List[NetworkStatus] = field(default_factory=lambda: [NetworkStatus.DISCONNECTED])

    @property
    def connected(self) -> bool:
        return self.status is NetworkStatus.CONNECTED

    def advance(self, target: NetworkStatus) -> None:
        if _FORWARD.get(self.status) is not target:
            raise InvalidTransitionError(
                f"Cannot move network state from {self.status.value} to {target.value}"
            )
        self.status = target
        self.history.append(target)

    def fail(self) -> None:
        self.status = NetworkStatus.DISCONNECTED
        self.interface = None
        self.network = None
        self.history.append(NetworkStatus.DISCONNECTED)

