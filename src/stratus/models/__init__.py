"""Pydantic models for declarations, snapshots and platform documents."""

from stratus.models.config import StratusConfig, EngineConfig
from stratus.models.vm import (
    VMSpec,
    OriginSpec,
    SizingSpec,
    NetworkAttachment,
    InternalDiskSpec,
    IndependentDiskSpec,
    CustomizationSpec,
    DomainJoinSpec,
)
from stratus.models.state import (
    ObservedState,
    ObservedNetwork,
    ObservedDisk,
    ObservedCustomization,
    ResourceAllocation,
)

__all__ = [
    "StratusConfig",
    "EngineConfig",
    "VMSpec",
    "OriginSpec",
    "SizingSpec",
    "NetworkAttachment",
    "InternalDiskSpec",
    "IndependentDiskSpec",
    "CustomizationSpec",
    "DomainJoinSpec",
    "ObservedState",
    "ObservedNetwork",
    "ObservedDisk",
    "ObservedCustomization",
    "ResourceAllocation",
]
