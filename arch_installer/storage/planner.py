"""Partition size recommendations and plan construction.

Recommendations follow the classic installer rule of thumb:

    swap = system memory (GiB) + 2
    root = capacity (GiB) - 32, capped so root + swap + EFI never exceed the disk

Both are suggestions the operator may edit. The planner only insists on a
positive whole number; whether the sizes fit the disk is re-checked by the
Partition Executor right before the first destructive call.

Numbering:
    New partition table -> EFI 1, swap 2, root 3.
    Reused EFI          -> swap and root take the next numbers after the
                           highest partition already on the disk.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from arch_installer.domain.models import (
    BlockDevice,
    EfiPartition,
    ExistingPartition,
    PartitionPlan,
    SizeRecommendation,
)
from arch_installer.exceptions import InvalidSizeError, PartitionError
from arch_installer.logging import LoggerFactory
from arch_installer.storage import devices
from arch_installer.system.commands import CommandRunner, run_command


log = LoggerFactory.for_disk()

ROOT_HEADROOM_GB = 32
SWAP_EXTRA_GB = 2
# EFI window (512 MiB) plus alignment slack, rounded up to a whole GiB
EFI_RESERVE_GB = 1


def recommend_sizes(capacity_gb: int, memory_gb: int) -> SizeRecommendation:
    swap_gb = memory_gb + SWAP_EXTRA_GB
    root_gb = min(capacity_gb - ROOT_HEADROOM_GB, capacity_gb - swap_gb - EFI_RESERVE_GB)
    return SizeRecommendation(
        capacity_gb=capacity_gb,
        memory_gb=memory_gb,
        root_gb=root_gb,
        swap_gb=swap_gb,
    )


def parse_size(text: Optional[str]) -> int:
    """Operator size entry in GB; raises InvalidSizeError so the caller re-prompts."""
    value = (text or "").strip()
    if value.upper().endswith("GB"):
        value = value[:-2].strip()
    elif value.upper().endswith("G"):
        value = value[:-1].strip()
    if not value.isdigit():
        raise InvalidSizeError(text or "")
    size = int(value)
    if size <= 0:
        raise InvalidSizeError(text or "")
    return size


def build_plan(
    device: BlockDevice,
    *,
    root_gb: int,
    swap_gb: int,
    encrypt: bool = False,
    existing_partitions: Sequence[ExistingPartition] = (),
) -> PartitionPlan:
    """Build an immutable plan for ``device``.

    Raises:
        PartitionError: If a planned swap/root range collides with a partition
            that is kept on the disk.
    """
    efi_partition = devices.find_existing_efi(list(existing_partitions))
    if efi_partition is None:
        plan = PartitionPlan(
            device=device,
            efi=EfiPartition.new(device.path),
            swap_gb=swap_gb,
            root_gb=root_gb,
            encrypt=encrypt,
        )
        log.info(
            f"Planned new layout on {device.path}: EFI 512MiB, swap {swap_gb}GB, "
            f"root {root_gb}GB, encrypted={encrypt}"
        )
        return plan

    next_number = max(partition.number for partition in existing_partitions) + 1
    plan = PartitionPlan(
        device=device,
        efi=EfiPartition.reuse(efi_partition),
        swap_gb=swap_gb,
        root_gb=root_gb,
        encrypt=encrypt,
        swap_number=next_number,
        root_number=next_number + 1,
    )
    for partition in existing_partitions:
        if partition.is_efi:
            continue
        # Root extends to the end of the disk, so anything past swap_start collides.
        if partition.overlaps(plan.swap_start_mib, device.size_mib):
            raise PartitionError(
                f"{partition.path} ({partition.start_mib}-{partition.end_mib}MiB) "
                f"collides with the planned swap/root range starting at "
                f"{plan.swap_start_mib}MiB",
                device=device.path,
            )
    log.info(
        f"Planned layout on {device.path} reusing EFI {efi_partition.path}: "
        f"swap {swap_gb}GB as #{plan.swap_number}, root {root_gb}GB as #{plan.root_number}, "
        f"encrypted={encrypt}"
    )
    return plan


@dataclass
class DiskPlanner:
    """Disk enumeration plus plan construction for one installation attempt."""

    runner: CommandRunner = run_command
    memory_reader: Callable[[], int] = devices.system_memory_gb

    def list_candidates(self) -> List[BlockDevice]:
        return devices.list_candidates(self.runner)

    def existing_partitions(self, device: BlockDevice) -> List[ExistingPartition]:
        return devices.list_partitions(device.path, self.runner)

    def existing_efi(self, device: BlockDevice) -> Optional[ExistingPartition]:
        return devices.find_existing_efi(self.existing_partitions(device))

    def recommend(self, device: BlockDevice) -> SizeRecommendation:
        recommendation = recommend_sizes(device.size_gb, self.memory_reader())
        log.info(
            f"Recommended sizes for {device.path} ({recommendation.capacity_gb}GB, "
            f"{recommendation.memory_gb}GB RAM): root {recommendation.root_gb}GB, "
            f"swap {recommendation.swap_gb}GB"
        )
        if not recommendation.valid:
            log.warning(f"{device.path} is too small for a recommended layout")
        return recommendation

    def plan(
        self,
        device: BlockDevice,
        *,
        root_gb: int,
        swap_gb: int,
        encrypt: bool = False,
        existing_partitions: Optional[Sequence[ExistingPartition]] = None,
    ) -> PartitionPlan:
        if existing_partitions is None:
            existing_partitions = self.existing_partitions(device)
        return build_plan(
            device,
            root_gb=root_gb,
            swap_gb=swap_gb,
            encrypt=encrypt,
            existing_partitions=existing_partitions,
        )

    def recommended_plan(self, device: BlockDevice, encrypt: bool = False) -> PartitionPlan:
        """Plan with the recommended sizes, as used by Quick Install."""
        recommendation = self.recommend(device)
        if not recommendation.valid:
            raise PartitionError(
                f"{device.path} ({device.size_gb}GB) is too small for an automatic layout",
                device=device.path,
            )
        return self.plan(
            device,
            root_gb=recommendation.root_gb,
            swap_gb=recommendation.swap_gb,
            encrypt=encrypt,
        )
