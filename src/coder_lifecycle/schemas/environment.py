"""Environment, phase and layout schemas.

Key Components:
    EnvironmentName: The three supported deployment targets
    Phase: Infrastructure vs application provisioning unit
    TwoPhaseLayout / LegacyLayout: Tagged variant describing how an
        environment's Terraform is split across working directories
    EnvironmentContext: Immutable value object passed to every component

The context replaces ambient process state (exported credentials,
kubeconfig paths in environment variables): every component receives
what it needs through it.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class EnvironmentName(str, Enum):
    """Named deployment targets.

    Examples:
        >>> EnvironmentName("prod").value
        'prod'
    """

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class Phase(str, Enum):
    """Provisioning unit within an environment.

    The application phase depends on the infrastructure phase: it is
    applied after it on setup and destroyed before it on teardown.
    """

    INFRASTRUCTURE = "infrastructure"
    APPLICATION = "application"


class TwoPhaseLayout(BaseModel):
    """Infrastructure and application live in separate working directories."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["two-phase"] = "two-phase"
    infra: Path = Field(..., description="Infrastructure phase working directory")
    app: Path = Field(..., description="Application phase working directory")

    @property
    def phases(self) -> tuple[Phase, ...]:
        """Phases in apply order."""
        return (Phase.INFRASTRUCTURE, Phase.APPLICATION)

    def workdir(self, phase: Phase) -> Path | None:
        return self.infra if phase == Phase.INFRASTRUCTURE else self.app

    def plan_name(self, phase: Phase) -> str:
        return "infra-tfplan" if phase == Phase.INFRASTRUCTURE else "coder-tfplan"


class LegacyLayout(BaseModel):
    """Infrastructure and application share one combined working directory.

    The combined unit is addressed as the infrastructure phase; there is no
    separately plannable application phase.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["legacy"] = "legacy"
    combined: Path = Field(..., description="Combined working directory")

    @property
    def phases(self) -> tuple[Phase, ...]:
        return (Phase.INFRASTRUCTURE,)

    def workdir(self, phase: Phase) -> Path | None:
        return self.combined if phase == Phase.INFRASTRUCTURE else None

    def plan_name(self, phase: Phase) -> str:  # noqa: ARG002
        return "tfplan"


Layout = Annotated[Union[TwoPhaseLayout, LegacyLayout], Field(discriminator="kind")]
"""Tagged variant over the supported environment layouts."""


class EnvironmentContext(BaseModel):
    """Everything a component needs to act on one environment.

    Attributes:
        name: Environment name.
        region: Scaleway region (e.g. fr-par).
        zone: Scaleway availability zone (e.g. fr-par-1).
        project_root: Repository root holding ``environments/``.
        env_dir: ``environments/<name>`` directory.
        layout: Detected structural layout.
        kubeconfig_path: Where the cluster credentials are written.
        domain: Optional custom domain.
        subdomain: Subdomain used with ``domain``.
        organization_id: Scaleway organization id.
        project_id: Scaleway project id.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: EnvironmentName
    region: str = Field(default="fr-par")
    zone: str = Field(default="fr-par-1")
    project_root: Path
    env_dir: Path
    layout: Layout
    kubeconfig_path: Path
    domain: str | None = Field(default=None)
    subdomain: str
    organization_id: str | None = Field(default=None)
    project_id: str | None = Field(default=None)

    @property
    def is_production(self) -> bool:
        return self.name == EnvironmentName.PROD

    @property
    def hostname(self) -> str | None:
        """Fully qualified access hostname when a domain is configured."""
        if not self.domain:
            return None
        return f"{self.subdomain}.{self.domain}"

    def workdirs(self) -> list[tuple[Phase, Path]]:
        """Return ``(phase, workdir)`` pairs in apply order."""
        pairs = []
        for phase in self.layout.phases:
            workdir = self.layout.workdir(phase)
            if workdir is not None:
                pairs.append((phase, workdir))
        return pairs

    def terraform_vars(self, phase: Phase) -> dict[str, str]:
        """Build the Terraform variables for a phase."""
        variables = {
            "scaleway_region": self.region,
            "scaleway_zone": self.zone,
        }
        if self.organization_id:
            variables["scaleway_organization_id"] = self.organization_id
        if self.project_id:
            variables["scaleway_project_id"] = self.project_id
        if phase == Phase.INFRASTRUCTURE and self.domain:
            variables["domain_name"] = self.domain
            variables["subdomain"] = self.subdomain
        return variables


__all__: list[str] = [
    "EnvironmentContext",
    "EnvironmentName",
    "Layout",
    "LegacyLayout",
    "Phase",
    "TwoPhaseLayout",
]
