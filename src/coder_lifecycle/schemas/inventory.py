"""Resource inventory schemas.

A snapshot is always freshly queried and never persisted. Callers must
distinguish a confirmed-empty phase from one whose state could not be
read; the two statuses are never interchangeable.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from coder_lifecycle.schemas.environment import EnvironmentName, Phase


class SnapshotStatus(str, Enum):
    """Outcome of reading the state of a phase.

    Attributes:
        PRESENT: State readable and tracks at least one resource.
        EMPTY: State readable and tracks nothing.
        UNKNOWN: State could not be read; existence is unverified.
    """

    PRESENT = "present"
    EMPTY = "empty"
    UNKNOWN = "unknown"


class WorkspaceStatus(str, Enum):
    KNOWN = "known"
    UNKNOWN = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceSnapshot(BaseModel):
    """Point-in-time view of the resources tracked by one phase."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: EnvironmentName
    phase: Phase
    status: SnapshotStatus
    resources: tuple[str, ...] = Field(default_factory=tuple)
    reason: str | None = Field(default=None, description="Why the state is unknown")
    taken_at: datetime = Field(default_factory=_utcnow)

    @property
    def count(self) -> int | None:
        """Resource count, or None when the state could not be read."""
        if self.status == SnapshotStatus.UNKNOWN:
            return None
        return len(self.resources)

    @property
    def confirmed_empty(self) -> bool:
        return self.status == SnapshotStatus.EMPTY


class WorkspaceActivity(BaseModel):
    """Live workspace deployments found in the running cluster."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: WorkspaceStatus
    workspaces: tuple[str, ...] = Field(default_factory=tuple)
    reason: str | None = Field(default=None)

    @property
    def count(self) -> int | None:
        if self.status == WorkspaceStatus.UNKNOWN:
            return None
        return len(self.workspaces)

    @property
    def active(self) -> bool:
        """True only when workspaces are confirmed to be running."""
        return self.status == WorkspaceStatus.KNOWN and bool(self.workspaces)


class EnvironmentInventory(BaseModel):
    """All phase snapshots plus workspace activity for one environment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: EnvironmentName
    layout: str
    snapshots: tuple[ResourceSnapshot, ...]
    workspaces: WorkspaceActivity

    def snapshot(self, phase: Phase) -> ResourceSnapshot | None:
        for snapshot in self.snapshots:
            if snapshot.phase == phase:
                return snapshot
        return None


__all__: list[str] = [
    "EnvironmentInventory",
    "ResourceSnapshot",
    "SnapshotStatus",
    "WorkspaceActivity",
    "WorkspaceStatus",
]
