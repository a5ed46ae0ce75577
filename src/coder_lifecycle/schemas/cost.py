"""Cost estimate schemas.

Estimates are pure derived values with no identity: money is carried as
Decimal so repeated computation is exact.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CostPeriod(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class CostComponent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    description: str
    monthly: Decimal


class CostEstimate(BaseModel):
    """Monthly cost figure for an environment or database instance type.

    Attributes:
        target: Environment name or instance type the estimate is for.
        kind: ``environment`` or ``instance_type``.
        monthly: Monthly cost in EUR.
        hourly: Hourly rate in EUR for instance types.
        description: Human-readable resource summary.
        components: Per-resource breakdown for environments.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: str
    kind: str
    monthly: Decimal
    hourly: Decimal | None = Field(default=None)
    description: str
    components: tuple[CostComponent, ...] = Field(default_factory=tuple)
    currency: str = Field(default="EUR")


class CostDelta(BaseModel):
    """Monthly cost change between two instance types."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    current: CostEstimate
    target: CostEstimate
    monthly_delta: Decimal
    percent_change: Decimal | None = Field(default=None)

    @property
    def is_increase(self) -> bool:
        return self.monthly_delta > 0


__all__: list[str] = ["CostComponent", "CostDelta", "CostEstimate", "CostPeriod"]
