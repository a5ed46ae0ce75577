"""Database resize schemas."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from coder_lifecycle.schemas.cost import CostDelta
from coder_lifecycle.schemas.environment import EnvironmentName


class ResizeOutcome(str, Enum):
    RESIZED = "resized"
    UNCHANGED = "unchanged"
    PLANNED = "planned"


class ResizeOptions(BaseModel):
    """Operator choices for a database resize.

    Attributes:
        instance_type: Target node type (e.g. DB-GP-M). Optional with
            ``analyze_only``, which then reports the current type.
        dry_run: Show the plan without changing anything.
        analyze_only: Show the cost impact only.
        auto_approve: Skip the interactive confirmation.
        no_backup: Skip the pre-resize backup.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    instance_type: str | None = None
    dry_run: bool = False
    analyze_only: bool = False
    auto_approve: bool = False
    no_backup: bool = False

    @model_validator(mode="after")
    def _require_target(self) -> ResizeOptions:
        if self.instance_type is None and not self.analyze_only:
            raise ValueError("instance_type is required unless analyze_only is set")
        return self


class ResizeReport(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: EnvironmentName
    database_id: str
    current_type: str
    target_type: str
    outcome: ResizeOutcome
    cost_delta: CostDelta | None = None
    backup_name: str | None = None
    duration_seconds: float = Field(default=0.0)


__all__: list[str] = ["ResizeOptions", "ResizeOutcome", "ResizeReport"]
