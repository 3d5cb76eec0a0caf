"""Domain models for single-disk provisioning."""

from __future__ import annotations

from .models import (
    AppliedLayout,
    BlockDevice,
    EfiPartition,
    EncryptionCredentials,
    ExistingPartition,
    NetworkState,
    NetworkStatus,
    PartitionPlan,
    SizeRecommendation,
    StageConfig,
)


__all__ = [
    "AppliedLayout",
    "BlockDevice",
    "EfiPartition",
    "EncryptionCredentials",
    "ExistingPartition",
    "NetworkState",
    "NetworkStatus",
    "PartitionPlan",
    "SizeRecommendation",
    "StageConfig",
]
