"""Safety gate schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from coder_lifecycle.schemas.environment import EnvironmentName


class GateState(str, Enum):
    """States of the destructive-action confirmation protocol.

    START → NAME_CONFIRMED → (PROD_CONFIRMED) → FINAL_CONFIRMED → AUTHORIZED,
    or START → AUTHORIZED directly in an emergency.
    """

    START = "start"
    NAME_CONFIRMED = "name_confirmed"
    PROD_CONFIRMED = "prod_confirmed"
    FINAL_CONFIRMED = "final_confirmed"
    AUTHORIZED = "authorized"


class SafetyConfirmation(BaseModel):
    """Record of the gates passed for one destructive invocation.

    Attributes:
        environment: Environment the authorization applies to.
        state: Terminal gate state (AUTHORIZED when returned).
        gates_passed: Ordered states traversed.
        emergency: True when the emergency bypass was used.
        delay_skipped: True when the abort window was not waited out.
        authorized_at: When authorization completed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: EnvironmentName
    state: GateState
    gates_passed: tuple[GateState, ...] = Field(default_factory=tuple)
    emergency: bool = Field(default=False)
    delay_skipped: bool = Field(default=False)
    authorized_at: datetime

    @property
    def authorized(self) -> bool:
        return self.state == GateState.AUTHORIZED

    def covers(self, environment: EnvironmentName) -> bool:
        """True if this confirmation authorizes action on ``environment``."""
        return self.authorized and self.environment == environment


__all__: list[str] = ["GateState", "SafetyConfirmation"]
