"""Pydantic schemas shared by the lifecycle components."""

from __future__ import annotations

from coder_lifecycle.schemas.backend import BackendConfig, BackendDescriptor
from coder_lifecycle.schemas.backup import (
    Backup,
    BackupContents,
    BackupKind,
    BackupManifest,
    BackupOptions,
    RestoreComponent,
    RestoreOptions,
    RestoreReport,
)
from coder_lifecycle.schemas.cost import CostComponent, CostDelta, CostEstimate, CostPeriod
from coder_lifecycle.schemas.environment import (
    EnvironmentContext,
    EnvironmentName,
    LegacyLayout,
    Phase,
    TwoPhaseLayout,
)
from coder_lifecycle.schemas.inventory import (
    EnvironmentInventory,
    ResourceSnapshot,
    SnapshotStatus,
    WorkspaceActivity,
    WorkspaceStatus,
)
from coder_lifecycle.schemas.lifecycle import (
    SetupOptions,
    SetupReport,
    SetupState,
    TeardownOptions,
    TeardownReport,
    TeardownState,
    TeardownStatus,
)
from coder_lifecycle.schemas.safety import GateState, SafetyConfirmation

__all__: list[str] = [
    "BackendConfig",
    "BackendDescriptor",
    "Backup",
    "BackupContents",
    "BackupKind",
    "BackupManifest",
    "BackupOptions",
    "CostComponent",
    "CostDelta",
    "CostEstimate",
    "CostPeriod",
    "EnvironmentContext",
    "EnvironmentInventory",
    "EnvironmentName",
    "GateState",
    "LegacyLayout",
    "Phase",
    "ResourceSnapshot",
    "RestoreComponent",
    "RestoreOptions",
    "RestoreReport",
    "SafetyConfirmation",
    "SetupOptions",
    "SetupReport",
    "SetupState",
    "SnapshotStatus",
    "TeardownOptions",
    "TeardownReport",
    "TeardownState",
    "TeardownStatus",
    "TwoPhaseLayout",
    "WorkspaceActivity",
    "WorkspaceStatus",
]
