"""Lifecycle state machine schemas.

Key Components:
    SetupState / TeardownState: States reached by the two protocols
    LifecycleStep: Every sub-step either protocol can execute
    FailurePolicy / STEP_POLICIES: Which step failures are warnings and
        which propagate
    StepResult: Outcome of one sub-step
    SetupOptions / TeardownOptions: Operator choices
    SetupReport / TeardownReport: Final summaries

Neither protocol is atomic. A failed step leaves the environment where the
last successful step put it, and the next run rediscovers that position
through inventory inspection.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from coder_lifecycle.errors import TeardownIncompleteError
from coder_lifecycle.schemas.cost import CostEstimate
from coder_lifecycle.schemas.environment import EnvironmentName, Phase


class SetupState(str, Enum):
    VALIDATED = "validated"
    BACKEND_READY = "backend_ready"
    INFRA_PLANNED = "infra_planned"
    INFRA_APPLIED = "infra_applied"
    APP_PLANNED = "app_planned"
    APP_APPLIED = "app_applied"
    VALIDATED_DEPLOYED = "validated_deployed"


class TeardownState(str, Enum):
    CONFIRMED = "confirmed"
    BACKED_UP = "backed_up"
    DRAINED = "drained"
    APP_DESTROYED = "app_destroyed"
    INFRA_DESTROYED = "infra_destroyed"
    CLEANED = "cleaned"
    VALIDATED_ABSENT = "validated_absent"


class LifecycleStep(str, Enum):
    """Sub-steps of the setup and teardown protocols."""

    VALIDATE = "validate"
    BACKEND = "backend"
    PRE_HOOK = "pre_hook"
    PRE_CHANGE_BACKUP = "pre_change_backup"
    INFRA_PLAN = "infra_plan"
    INFRA_APPLY = "infra_apply"
    CREDENTIALS = "credentials"
    APP_PLAN = "app_plan"
    APP_APPLY = "app_apply"
    TEMPLATE_DEPLOY = "template_deploy"
    POST_HOOK = "post_hook"
    FINAL_VALIDATION = "final_validation"
    CONFIRM = "confirm"
    INSPECT = "inspect"
    PRE_DESTROY_BACKUP = "pre_destroy_backup"
    DRAIN = "drain"
    APP_DESTROY = "app_destroy"
    INFRA_DESTROY = "infra_destroy"
    ARCHIVE_STATE = "archive_state"
    CLEANUP = "cleanup"
    VERIFY_ABSENT = "verify_absent"


class FailurePolicy(str, Enum):
    """What happens when a step fails.

    Attributes:
        WARN: Log, record on the report, continue.
        PROPAGATE: Raise and stop the protocol.
    """

    WARN = "warn"
    PROPAGATE = "propagate"


STEP_POLICIES: dict[LifecycleStep, FailurePolicy] = {
    LifecycleStep.VALIDATE: FailurePolicy.PROPAGATE,
    LifecycleStep.BACKEND: FailurePolicy.PROPAGATE,
    LifecycleStep.PRE_HOOK: FailurePolicy.PROPAGATE,
    LifecycleStep.PRE_CHANGE_BACKUP: FailurePolicy.WARN,
    LifecycleStep.INFRA_PLAN: FailurePolicy.PROPAGATE,
    LifecycleStep.INFRA_APPLY: FailurePolicy.PROPAGATE,
    LifecycleStep.CREDENTIALS: FailurePolicy.PROPAGATE,
    LifecycleStep.APP_PLAN: FailurePolicy.PROPAGATE,
    LifecycleStep.APP_APPLY: FailurePolicy.PROPAGATE,
    LifecycleStep.TEMPLATE_DEPLOY: FailurePolicy.PROPAGATE,
    LifecycleStep.POST_HOOK: FailurePolicy.WARN,
    LifecycleStep.FINAL_VALIDATION: FailurePolicy.WARN,
    LifecycleStep.CONFIRM: FailurePolicy.PROPAGATE,
    LifecycleStep.INSPECT: FailurePolicy.PROPAGATE,
    LifecycleStep.PRE_DESTROY_BACKUP: FailurePolicy.WARN,
    LifecycleStep.DRAIN: FailurePolicy.WARN,
    LifecycleStep.APP_DESTROY: FailurePolicy.PROPAGATE,
    LifecycleStep.INFRA_DESTROY: FailurePolicy.PROPAGATE,
    LifecycleStep.ARCHIVE_STATE: FailurePolicy.WARN,
    LifecycleStep.CLEANUP: FailurePolicy.WARN,
    LifecycleStep.VERIFY_ABSENT: FailurePolicy.WARN,
}

_BACKUP_STEPS = frozenset({LifecycleStep.PRE_CHANGE_BACKUP, LifecycleStep.PRE_DESTROY_BACKUP})


def policy_for(
    step: LifecycleStep,
    *,
    force: bool = False,
    require_backup: bool = False,
) -> FailurePolicy:
    """Resolve the failure policy of a step for the current invocation.

    ``require_backup`` escalates backup steps to PROPAGATE. ``force``
    downgrades the application destroy to WARN so the infrastructure
    destroy is still attempted.

    Examples:
        >>> policy_for(LifecycleStep.DRAIN)
        <FailurePolicy.WARN: 'warn'>
        >>> policy_for(LifecycleStep.APP_DESTROY, force=True)
        <FailurePolicy.WARN: 'warn'>
    """
    if step in _BACKUP_STEPS and require_backup:
        return FailurePolicy.PROPAGATE
    if step == LifecycleStep.APP_DESTROY and force:
        return FailurePolicy.WARN
    return STEP_POLICIES[step]


class StepResult(BaseModel):
    """Outcome of one lifecycle sub-step."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    step: LifecycleStep
    ok: bool
    policy: FailurePolicy
    message: str = Field(default="")
    skipped: bool = Field(default=False)


class SetupOptions(BaseModel):
    """Operator choices for a setup run.

    Attributes:
        templates: Workspace templates to deploy after the application phase.
        dry_run: Plan only; apply nothing.
        auto_approve: Skip the interactive apply confirmation.
        backup_existing: Take a pre-change backup.
        require_backup: Treat a backup failure as fatal.
        deploy_application: Apply the application phase (two-phase layouts).
        force_backend_recreate: Rewrite backend files even if valid.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    templates: tuple[str, ...] = Field(default_factory=tuple)
    dry_run: bool = False
    auto_approve: bool = False
    backup_existing: bool = True
    require_backup: bool = False
    deploy_application: bool = True
    force_backend_recreate: bool = False


class TeardownOptions(BaseModel):
    """Operator choices for a teardown run.

    Attributes:
        force: Proceed despite active workspaces or a failed application destroy.
        emergency: Bypass every confirmation gate; implies force.
        backup: Take a pre-destroy backup.
        preserve_data: Require the backup to contain the database and volumes.
        require_backup: Treat a backup failure as fatal.
        dry_run: Plan the destroys only.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    force: bool = False
    emergency: bool = False
    backup: bool = True
    preserve_data: bool = False
    require_backup: bool = False
    dry_run: bool = False

    @model_validator(mode="after")
    def _check_preserve_data(self) -> TeardownOptions:
        if self.preserve_data and not self.backup:
            raise ValueError("preserve_data requires a backup; drop --no-backup")
        return self

    @property
    def effective_force(self) -> bool:
        return self.force or self.emergency

    @property
    def backup_required(self) -> bool:
        return self.require_backup or self.preserve_data


class DnsRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str
    name: str
    value: str
    ttl: int = 300


class TemplateResult(BaseModel):
    """Outcome of deploying one workspace template."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    ok: bool
    output: str = ""


class SetupReport(BaseModel):
    """Summary of a setup run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: EnvironmentName
    layout: str
    dry_run: bool = False
    states: tuple[SetupState, ...] = Field(default_factory=tuple)
    steps: tuple[StepResult, ...] = Field(default_factory=tuple)
    access_url: str | None = None
    wildcard_access_url: str | None = None
    load_balancer_ip: str | None = None
    admin_username: str | None = None
    cost: CostEstimate | None = None
    dns_records: tuple[DnsRecord, ...] = Field(default_factory=tuple)
    templates: tuple[TemplateResult, ...] = Field(default_factory=tuple)
    backup_name: str | None = None
    issues: tuple[str, ...] = Field(default_factory=tuple)
    duration_seconds: float = 0.0

    @property
    def warnings(self) -> list[StepResult]:
        return [step for step in self.steps if not step.ok]


class TeardownStatus(str, Enum):
    """Final status of a teardown.

    Attributes:
        COMPLETE: Every phase verified empty.
        INCOMPLETE: Resources remain in state.
        UNVERIFIED: State of at least one phase could not be read.
        PLANNED: Dry run; nothing was destroyed.
    """

    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    UNVERIFIED = "unverified"
    PLANNED = "planned"


class TeardownReport(BaseModel):
    """Summary of a teardown run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: EnvironmentName
    layout: str
    status: TeardownStatus
    dry_run: bool = False
    states: tuple[TeardownState, ...] = Field(default_factory=tuple)
    steps: tuple[StepResult, ...] = Field(default_factory=tuple)
    backup_name: str | None = None
    destroyed_phases: tuple[Phase, ...] = Field(default_factory=tuple)
    skipped_phases: tuple[Phase, ...] = Field(default_factory=tuple)
    remaining_resources: tuple[str, ...] = Field(default_factory=tuple)
    unverified_phases: tuple[Phase, ...] = Field(default_factory=tuple)
    archive_path: Path | None = None
    monthly_savings: CostEstimate | None = None
    duration_seconds: float = 0.0

    def raise_for_status(self) -> None:
        """Raise TeardownIncompleteError unless zero resources were confirmed."""
        if self.status in (TeardownStatus.INCOMPLETE, TeardownStatus.UNVERIFIED):
            raise TeardownIncompleteError(
                list(self.remaining_resources),
                [phase.value for phase in self.unverified_phases],
                environment=self.environment.value,
                step=LifecycleStep.VERIFY_ABSENT.value,
            )


__all__: list[str] = [
    "STEP_POLICIES",
    "DnsRecord",
    "FailurePolicy",
    "LifecycleStep",
    "SetupOptions",
    "SetupReport",
    "SetupState",
    "StepResult",
    "TeardownOptions",
    "TeardownReport",
    "TeardownState",
    "TeardownStatus",
    "TemplateResult",
    "policy_for",
]
