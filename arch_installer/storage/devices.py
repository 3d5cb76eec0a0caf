"""Block device discovery for the Disk Planner.

Candidates come from ``lsblk -J -b -d`` (whole disks only). Existing
partitions on the chosen disk are read from ``parted -m`` in MiB units, which
also exposes the ``esp`` flag used to recognise an EFI system partition.

Filtering Logic:
    1. Must be a whole disk (TYPE == disk)
    2. Device path must follow SATA/SCSI, NVMe or virtio naming (sd*, nvme*, vd*)
    3. Must NOT be removable (RM) and must NOT be an optical drive
"""

from __future__ import annotations

import json
import math
import re
import subprocess
from pathlib import Path
from typing import Any, List, Optional

from arch_installer.domain.models import GIB, BlockDevice, ExistingPartition, partition_path
from arch_installer.logging import LoggerFactory
from arch_installer.system.commands import CommandRunner, run_command


log = LoggerFactory.for_disk()

CANDIDATE_PATH_RE = re.compile(r"^/dev/(sd[a-z]+|nvme\d+n\d+|vd[a-z]+)$")
LSBLK_COLUMNS = "NAME,PATH,SIZE,MODEL,TYPE,RM,TRAN"
MEMINFO_PATH = Path("/proc/meminfo")


def _is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes"}


def is_candidate(device: dict) -> bool:
    if device.get("type") != "disk":
        return False
    path = device.get("path") or f"/dev/{device.get('name', '')}"
    if not CANDIDATE_PATH_RE.match(path):
        return False
    if _is_truthy(device.get("rm")):
        return False
    return device.get("tran") != "ata-optical"


def get_block_devices(runner: CommandRunner = run_command) -> List[dict]:
    try:
        result = runner(["lsblk", "-J", "-b", "-d", "-o", LSBLK_COLUMNS])
        data = json.loads(result.stdout)
    except (subprocess.CalledProcessError, json.JSONDecodeError, FileNotFoundError) as error:
        log.error(f"lsblk failed: {error}")
        return []
    return data.get("blockdevices", []) or []


def list_candidates(runner: CommandRunner = run_command) -> List[BlockDevice]:
    """Whole disks that may be offered as installation targets."""
    candidates = []
    for device in get_block_devices(runner):
        if not is_candidate(device):
            continue
        try:
            candidates.append(BlockDevice.from_lsblk_dict(device))
        except (KeyError, ValueError) as error:
            log.warning(f"Skipping malformed lsblk entry {device!r}: {error}")
    names = ", ".join(device.path for device in candidates) or "none"
    log.info(f"Candidate disks: {names}")
    return candidates


def _parse_mib(value: str) -> float:
    return float(value.strip().removesuffix("MiB"))


def parse_parted_machine_output(disk: str, output: str) -> List[ExistingPartition]:
    """Parse ``parted -m -s <disk> unit MiB print``.

    Partition lines look like ``1:1.00MiB:513MiB:512MiB:fat32:primary:boot, esp;``.
    """
    partitions: List[ExistingPartition] = []
    for raw_line in output.splitlines():
        line = raw_line.strip().rstrip(";")
        fields = line.split(":")
        if len(fields) < 4 or not fields[0].isdigit():
            continue
        number = int(fields[0])
        try:
            start_mib = math.floor(_parse_mib(fields[1]))
            end_mib = math.ceil(_parse_mib(fields[2]))
        except ValueError:
            log.warning(f"Unparseable parted line: {raw_line!r}")
            continue
        name = fields[5] if len(fields) > 5 else ""
        flags = fields[6] if len(fields) > 6 else ""
        flag_set = {flag.strip() for flag in flags.split(",")}
        is_efi = "esp" in flag_set or "EFI" in name.upper()
        partitions.append(
            ExistingPartition(
                path=partition_path(disk, number),
                number=number,
                start_mib=start_mib,
                end_mib=end_mib,
                is_efi=is_efi,
            )
        )
    return partitions


def list_partitions(disk: str, runner: CommandRunner = run_command) -> List[ExistingPartition]:
    """Partitions currently on ``disk``; an unlabeled disk has none."""
    result = runner(["parted", "-m", "-s", disk, "unit", "MiB", "print"], check=False)
    if result.returncode != 0:
        log.info(f"No readable partition table on {disk}")
        return []
    return parse_parted_machine_output(disk, result.stdout)


def find_existing_efi(partitions: List[ExistingPartition]) -> Optional[ExistingPartition]:
    for partition in partitions:
        if partition.is_efi:
            return partition
    return None


def system_memory_gb(meminfo_path: Path = MEMINFO_PATH) -> int:
    """Total memory in whole GiB, rounded down (what ``free -g`` reports)."""
    for line in meminfo_path.read_text(encoding="utf-8").splitlines():
        if line.startswith("MemTotal:"):
            kib = int(line.split()[1])
            return (kib * 1024) // GIB
    raise ValueError(f"MemTotal missing from {meminfo_path}")
