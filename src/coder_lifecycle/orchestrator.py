"""Environment lifecycle orchestration.

Drives the two protocols over the components:

Setup:
    VALIDATED → BACKEND_READY → INFRA_PLANNED → INFRA_APPLIED
    → APP_PLANNED → APP_APPLIED → VALIDATED_DEPLOYED

Teardown:
    CONFIRMED → BACKED_UP → DRAINED → APP_DESTROYED → INFRA_DESTROYED
    → CLEANED → VALIDATED_ABSENT

Infrastructure is always applied before the application and destroyed
after it. Every sub-step runs through a recorder that applies the failure
policy table: WARN steps are logged and recorded on the report, PROPAGATE
steps raise with environment/phase/step context attached. There is no
rollback; a failed run is resumed by invoking it again, with the inventory
inspector rediscovering what already exists.

Example:
    >>> orchestrator = LifecycleOrchestrator(provider, cluster_factory, backend,
    ...     inspector, safety, backups, prompter=ClickPrompter(),
    ...     archive_dir=Path("archives"))
    >>> report = orchestrator.setup(ctx, SetupOptions(auto_approve=True))
    >>> report.states[-1]
    <SetupState.VALIDATED_DEPLOYED: 'validated_deployed'>
"""

from __future__ import annotations

import json
import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import structlog
from opentelemetry import trace

from coder_lifecycle.backend import StateBackendManager
from coder_lifecycle.backup import BackupCoordinator
from coder_lifecycle.cost import estimate
from coder_lifecycle.environment import phase_workdir
from coder_lifecycle.errors import (
    ActiveWorkspacesPresentError,
    ClusterUnreachableError,
    InvalidConfigurationError,
    LifecycleError,
    OperationCancelled,
    PhaseOrderError,
    TemplateDeployFailedError,
)
from coder_lifecycle.hooks import POST_SETUP, POST_TEARDOWN, PRE_SETUP, PRE_TEARDOWN, HookRunner
from coder_lifecycle.inventory import ResourceInventoryInspector
from coder_lifecycle.polling import wait_for_condition
from coder_lifecycle.providers.base import (
    ApplyResult,
    ClusterClient,
    ClusterFactory,
    InfrastructureProvider,
    PlanArtifact,
)
from coder_lifecycle.providers.terraform import DESTROY_PLAN_NAME
from coder_lifecycle.safety import Prompter, SafetyGateController, confirm, require_authorization
from coder_lifecycle.schemas.backup import BackupKind, BackupOptions
from coder_lifecycle.schemas.cost import CostEstimate
from coder_lifecycle.schemas.environment import EnvironmentContext, Phase, TwoPhaseLayout
from coder_lifecycle.schemas.inventory import ResourceSnapshot, SnapshotStatus
from coder_lifecycle.schemas.lifecycle import (
    DnsRecord,
    FailurePolicy,
    LifecycleStep,
    SetupOptions,
    SetupReport,
    SetupState,
    StepResult,
    TeardownOptions,
    TeardownReport,
    TeardownState,
    TeardownStatus,
    TemplateResult,
    policy_for,
)
from coder_lifecycle.telemetry import get_tracer
from coder_lifecycle.templates import TemplateDeployer

logger = structlog.get_logger(__name__)

ACCESS_URL_OUTPUTS: tuple[str, ...] = ("coder_url", "access_url")
PLAN_FILE_PATTERNS: tuple[str, ...] = ("*tfplan", DESTROY_PLAN_NAME)


def http_probe(url: str, timeout: float = 10.0) -> bool:
    """Return True when ``url`` answers with a non-5xx status."""
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.debug("http_probe_failed", url=url, error=str(e))
        return False
    return response.status_code < 500


def dns_records(ctx: EnvironmentContext, load_balancer_ip: str | None) -> tuple[DnsRecord, ...]:
    """DNS records the operator must create for a custom domain."""
    hostname = ctx.hostname
    if hostname is None or not load_balancer_ip:
        return ()
    return (
        DnsRecord(type="A", name=hostname, value=load_balancer_ip),
        DnsRecord(type="CNAME", name=f"*.{hostname}", value=hostname),
    )


class _StepRecorder:
    """Run sub-steps under the failure policy table and record results."""

    def __init__(
        self,
        protocol: str,
        ctx: EnvironmentContext,
        *,
        force: bool = False,
        require_backup: bool = False,
    ) -> None:
        self._protocol = protocol
        self._ctx = ctx
        self._force = force
        self._require_backup = require_backup
        self.results: list[StepResult] = []

    @contextmanager
    def step(self, step: LifecycleStep, phase: Phase | None = None) -> Iterator[None]:
        policy = policy_for(step, force=self._force, require_backup=self._require_backup)
        tracer = get_tracer()
        with tracer.start_as_current_span(f"lifecycle.{self._protocol}.{step.value}") as span:
            span.set_attribute("environment", self._ctx.name.value)
            if phase is not None:
                span.set_attribute("phase", phase.value)
            try:
                yield
            except Exception as e:
                if isinstance(e, LifecycleError):
                    e.environment = e.environment or self._ctx.name.value
                    e.phase = e.phase or (phase.value if phase else None)
                    e.step = e.step or step.value
                self.results.append(
                    StepResult(step=step, ok=False, policy=policy, message=str(e))
                )
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                if policy == FailurePolicy.PROPAGATE or isinstance(e, OperationCancelled):
                    logger.error(
                        "step_failed",
                        step=step.value,
                        environment=self._ctx.name.value,
                        phase=phase.value if phase else None,
                        error=str(e),
                    )
                    raise
                logger.warning(
                    "step_failed_continuing",
                    step=step.value,
                    environment=self._ctx.name.value,
                    error=str(e),
                )
            else:
                self.results.append(StepResult(step=step, ok=True, policy=policy))

    def skip(self, step: LifecycleStep, reason: str) -> None:
        policy = policy_for(step, force=self._force, require_backup=self._require_backup)
        self.results.append(
            StepResult(step=step, ok=True, policy=policy, message=reason, skipped=True)
        )
        logger.info("step_skipped", step=step.value, reason=reason)

    def succeeded(self, step: LifecycleStep) -> bool:
        for result in reversed(self.results):
            if result.step == step:
                return result.ok and not result.skipped
        return False


class LifecycleOrchestrator:
    """Run setup and teardown for one environment at a time.

    Args:
        provider: Infrastructure provider.
        cluster_factory: Builds a cluster client from a kubeconfig path.
        backend: State backend manager.
        inspector: Resource inventory inspector.
        safety: Safety gate controller.
        backups: Backup coordinator.
        prompter: Source of operator answers.
        archive_dir: Root of teardown archives.
        hooks: Optional lifecycle hook runner.
        templates: Optional template deployer.
        workspace_namespace: Namespace of the application workloads.
        drain_timeout: Max seconds to wait for pods to terminate.
        drain_grace_period: Grace period for deleted workloads.
        drain_poll_interval: Seconds between pod-count polls.
        probe: URL reachability check used by final validation.
        sleep: Sleep function (polling).
        clock: Monotonic clock (durations and polling).
        now: Wall clock (archive names).
    """

    def __init__(
        self,
        provider: InfrastructureProvider,
        cluster_factory: ClusterFactory,
        backend: StateBackendManager,
        inspector: ResourceInventoryInspector,
        safety: SafetyGateController,
        backups: BackupCoordinator,
        *,
        prompter: Prompter,
        archive_dir: Path,
        hooks: HookRunner | None = None,
        templates: TemplateDeployer | None = None,
        workspace_namespace: str = "coder",
        drain_timeout: int = 120,
        drain_grace_period: int = 60,
        drain_poll_interval: float = 5.0,
        probe: Callable[[str], bool] = http_probe,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._provider = provider
        self._cluster_factory = cluster_factory
        self._backend = backend
        self._inspector = inspector
        self._safety = safety
        self._backups = backups
        self._prompter = prompter
        self._archive_dir = archive_dir
        self._hooks = hooks
        self._templates = templates
        self._namespace = workspace_namespace
        self._drain_timeout = drain_timeout
        self._drain_grace_period = drain_grace_period
        self._drain_poll_interval = drain_poll_interval
        self._probe = probe
        self._sleep = sleep
        self._clock = clock
        self._now = now

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup(self, ctx: EnvironmentContext, options: SetupOptions) -> SetupReport:
        """Provision an environment: backend, infrastructure, application.

        Raises:
            InvalidConfigurationError: On invalid templates, before any remote call.
            BackendUnreachableError: If the state bucket cannot be probed.
            OperationCancelled: If the operator declines the apply.
            ProviderApplyFailedError: If a plan or apply fails.
            ClusterUnreachableError: If the cluster cannot be reached after apply.
            PhaseOrderError: If the infrastructure phase is not confirmed before
                the application phase.
            TemplateDeployFailedError: If a template fails to deploy.
        """
        started = self._clock()
        rec = _StepRecorder("setup", ctx, require_backup=options.require_backup)
        states: list[SetupState] = []
        log = logger.bind(environment=ctx.name.value, layout=ctx.layout.kind)
        log.info("setup_started", dry_run=options.dry_run)

        with rec.step(LifecycleStep.VALIDATE):
            if options.templates:
                if self._templates is None:
                    raise InvalidConfigurationError(
                        "Templates requested but template deployment is not configured"
                    )
                self._templates.catalog.validate(options.templates)
        states.append(SetupState.VALIDATED)

        cost = estimate(ctx.name.value)
        log.info("estimated_cost", monthly_eur=str(cost.monthly), resources=cost.description)

        with rec.step(LifecycleStep.BACKEND):
            self._backend.ensure_backend(
                ctx, force_recreate=options.force_backend_recreate, dry_run=options.dry_run
            )
        states.append(SetupState.BACKEND_READY)

        if options.dry_run:
            return self._setup_dry_run(ctx, options, rec, states, cost, started)

        self._run_hook(rec, ctx, PRE_SETUP, LifecycleStep.PRE_HOOK)

        backup_name = None
        if options.backup_existing:
            with rec.step(LifecycleStep.PRE_CHANGE_BACKUP):
                backup = self._backups.create_backup(
                    ctx,
                    BackupOptions(kind=BackupKind.BACKUP, require_complete=options.require_backup),
                )
                backup_name = backup.name
        else:
            rec.skip(LifecycleStep.PRE_CHANGE_BACKUP, "backup disabled")

        infra_plan = self._plan_phase(rec, ctx, Phase.INFRASTRUCTURE, LifecycleStep.INFRA_PLAN)
        states.append(SetupState.INFRA_PLANNED)

        if infra_plan.has_changes and not options.auto_approve:
            question = (
                f"About to apply infrastructure changes to '{ctx.name.value}' "
                f"(estimated EUR {cost.monthly}/month). Continue?"
            )
            if not confirm(self._prompter, question):
                log.info("setup_declined")
                raise OperationCancelled("Setup cancelled by operator", environment=ctx.name.value)

        infra_result: ApplyResult | None = None
        with rec.step(LifecycleStep.INFRA_APPLY, Phase.INFRASTRUCTURE):
            infra_result = self._provider.apply(infra_plan)
        states.append(SetupState.INFRA_APPLIED)

        with rec.step(LifecycleStep.CREDENTIALS, Phase.INFRASTRUCTURE):
            cluster = self._connect(ctx)

        deploy_app = isinstance(ctx.layout, TwoPhaseLayout) and options.deploy_application
        if deploy_app:
            self._require_infrastructure(
                ctx, infra_applied=infra_result is not None and infra_result.changed
            )
            app_plan = self._plan_phase(rec, ctx, Phase.APPLICATION, LifecycleStep.APP_PLAN)
            states.append(SetupState.APP_PLANNED)
            with rec.step(LifecycleStep.APP_APPLY, Phase.APPLICATION):
                self._provider.apply(app_plan)
            states.append(SetupState.APP_APPLIED)
        elif isinstance(ctx.layout, TwoPhaseLayout):
            rec.skip(LifecycleStep.APP_PLAN, "application deployment disabled")
            rec.skip(LifecycleStep.APP_APPLY, "application deployment disabled")

        outputs = self._collect_outputs(ctx)
        access_url = next((outputs[k] for k in ACCESS_URL_OUTPUTS if outputs.get(k)), None)

        templates: tuple[TemplateResult, ...] = ()
        if options.templates and self._templates is not None:
            with rec.step(LifecycleStep.TEMPLATE_DEPLOY):
                if not access_url:
                    raise TemplateDeployFailedError(
                        {name: "no access URL available" for name in options.templates}
                    )
                templates = tuple(self._templates.deploy(options.templates, str(access_url)))

        self._run_hook(rec, ctx, POST_SETUP, LifecycleStep.POST_HOOK)

        issues: list[str] = []
        with rec.step(LifecycleStep.FINAL_VALIDATION):
            issues = self._validate_deployment(
                ctx,
                cluster,
                access_url=str(access_url) if access_url else None,
                expect_application=deploy_app or not isinstance(ctx.layout, TwoPhaseLayout),
            )
        for issue in issues:
            log.warning("deployment_issue", issue=issue)
        states.append(SetupState.VALIDATED_DEPLOYED)

        load_balancer_ip = outputs.get("load_balancer_ip")
        report = SetupReport(
            environment=ctx.name,
            layout=ctx.layout.kind,
            states=tuple(states),
            steps=tuple(rec.results),
            access_url=str(access_url) if access_url else None,
            wildcard_access_url=_as_str(outputs.get("wildcard_access_url")),
            load_balancer_ip=_as_str(load_balancer_ip),
            admin_username=_as_str(outputs.get("admin_username")),
            cost=cost,
            dns_records=dns_records(ctx, _as_str(load_balancer_ip)),
            templates=templates,
            backup_name=backup_name,
            issues=tuple(issues),
            duration_seconds=round(self._clock() - started, 1),
        )
        log.info("setup_completed", duration=report.duration_seconds, issues=len(issues))
        return report

    def _setup_dry_run(
        self,
        ctx: EnvironmentContext,
        options: SetupOptions,
        rec: _StepRecorder,
        states: list[SetupState],
        cost: CostEstimate,
        started: float,
    ) -> SetupReport:
        self._plan_phase(rec, ctx, Phase.INFRASTRUCTURE, LifecycleStep.INFRA_PLAN)
        states.append(SetupState.INFRA_PLANNED)

        if isinstance(ctx.layout, TwoPhaseLayout) and options.deploy_application:
            snapshot = self._inspector.inspect(ctx, Phase.INFRASTRUCTURE)
            if snapshot.status == SnapshotStatus.PRESENT:
                self._plan_phase(rec, ctx, Phase.APPLICATION, LifecycleStep.APP_PLAN)
                states.append(SetupState.APP_PLANNED)
            else:
                rec.skip(LifecycleStep.APP_PLAN, "infrastructure phase not provisioned yet")

        logger.info("setup_dry_run_completed", environment=ctx.name.value)
        return SetupReport(
            environment=ctx.name,
            layout=ctx.layout.kind,
            dry_run=True,
            states=tuple(states),
            steps=tuple(rec.results),
            cost=cost,
            duration_seconds=round(self._clock() - started, 1),
        )

    def _plan_phase(
        self,
        rec: _StepRecorder,
        ctx: EnvironmentContext,
        phase: Phase,
        step: LifecycleStep,
    ) -> PlanArtifact:
        workdir = phase_workdir(ctx, phase)
        with rec.step(step, phase):
            artifact = self._provider.plan(
                workdir, ctx.terraform_vars(phase), ctx.layout.plan_name(phase)
            )
        return artifact

    def _require_infrastructure(self, ctx: EnvironmentContext, *, infra_applied: bool) -> None:
        """Refuse the application phase unless infrastructure is confirmed."""
        if infra_applied:
            return
        snapshot = self._inspector.inspect(ctx, Phase.INFRASTRUCTURE)
        if snapshot.status != SnapshotStatus.PRESENT:
            raise PhaseOrderError(
                f"Infrastructure phase of {ctx.name.value} is {snapshot.status.value}; "
                "apply it before the application phase",
                environment=ctx.name.value,
                phase=Phase.APPLICATION.value,
            )

    def _connect(self, ctx: EnvironmentContext) -> ClusterClient:
        """Write cluster credentials and verify the cluster answers."""
        infra_dir = phase_workdir(ctx, Phase.INFRASTRUCTURE)
        kubeconfig = self._provider.output(infra_dir, "kubeconfig")
        if kubeconfig:
            _write_private(ctx.kubeconfig_path, kubeconfig)
            logger.info("kubeconfig_written", path=str(ctx.kubeconfig_path))
        elif not ctx.kubeconfig_path.is_file():
            raise ClusterUnreachableError(
                "No kubeconfig output and no existing kubeconfig", environment=ctx.name.value
            )

        cluster = self._cluster_factory(ctx.kubeconfig_path)
        if not cluster.cluster_reachable():
            raise ClusterUnreachableError(
                f"Cluster of {ctx.name.value} is not reachable with {ctx.kubeconfig_path}",
                environment=ctx.name.value,
            )
        return cluster

    def _collect_outputs(self, ctx: EnvironmentContext) -> dict[str, Any]:
        """Merge outputs of all phases; later phases win on conflicts."""
        merged: dict[str, Any] = {}
        for phase, workdir in ctx.workdirs():
            try:
                merged.update(self._provider.outputs(workdir))
            except LifecycleError as e:
                logger.warning("outputs_unavailable", phase=phase.value, error=str(e))
        return merged

    def _validate_deployment(
        self,
        ctx: EnvironmentContext,
        cluster: ClusterClient,
        *,
        access_url: str | None,
        expect_application: bool,
    ) -> list[str]:
        issues = []
        expected = [Phase.INFRASTRUCTURE]
        if isinstance(ctx.layout, TwoPhaseLayout) and expect_application:
            expected.append(Phase.APPLICATION)
        for phase in expected:
            snapshot = self._inspector.inspect(ctx, phase)
            if snapshot.status != SnapshotStatus.PRESENT:
                issues.append(f"{phase.value} phase is {snapshot.status.value} after apply")

        if not cluster.list_nodes():
            issues.append("cluster reports no nodes")

        if expect_application:
            if access_url is None:
                issues.append("no access URL output")
            elif not self._probe(access_url):
                issues.append(f"access URL not responding: {access_url}")
        return issues

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def teardown(self, ctx: EnvironmentContext, options: TeardownOptions) -> TeardownReport:
        """Destroy an environment in reverse dependency order.

        Raises:
            ConfirmationFailedError: If a safety gate rejects an answer.
            OperationCancelled: If the operator declines or aborts.
            ActiveWorkspacesPresentError: If workspaces run and force is unset.
            BackupComponentFailedError: If a required backup is incomplete.
            ProviderDestroyFailedError: If a destroy fails (the application
                destroy only without force).
        """
        started = self._clock()
        rec = _StepRecorder(
            "teardown",
            ctx,
            force=options.effective_force,
            require_backup=options.backup_required,
        )
        log = logger.bind(environment=ctx.name.value, layout=ctx.layout.kind)
        log.info("teardown_started", force=options.force, emergency=options.emergency)

        if options.dry_run:
            return self._teardown_dry_run(ctx, rec, started)

        states: list[TeardownState] = []
        with rec.step(LifecycleStep.CONFIRM):
            confirmation = self._safety.authorize_destructive_action(
                ctx.name, options.emergency, self._prompter, force=options.effective_force
            )
        states.append(TeardownState.CONFIRMED)

        with rec.step(LifecycleStep.INSPECT):
            inventory = self._inspector.inspect_environment(ctx)
            if inventory.workspaces.active:
                if not options.effective_force:
                    raise ActiveWorkspacesPresentError(
                        list(inventory.workspaces.workspaces), environment=ctx.name.value
                    )
                log.warning("active_workspaces_forced", workspaces=inventory.workspaces.count)
            elif inventory.workspaces.count is None:
                log.warning("workspace_activity_unknown", reason=inventory.workspaces.reason)

        self._run_hook(rec, ctx, PRE_TEARDOWN, LifecycleStep.PRE_HOOK)

        backup_name = None
        if options.backup:
            with rec.step(LifecycleStep.PRE_DESTROY_BACKUP):
                backup = self._backups.create_backup(
                    ctx,
                    BackupOptions(
                        kind=BackupKind.PRE_DESTROY,
                        include_data=True,
                        include_templates=True,
                        require_complete=options.backup_required,
                    ),
                )
                backup_name = backup.name
            if rec.succeeded(LifecycleStep.PRE_DESTROY_BACKUP):
                states.append(TeardownState.BACKED_UP)
        else:
            rec.skip(LifecycleStep.PRE_DESTROY_BACKUP, "backup disabled")

        with rec.step(LifecycleStep.DRAIN):
            if self._drain(ctx):
                states.append(TeardownState.DRAINED)

        destroyed: list[Phase] = []
        skipped: list[Phase] = []

        if isinstance(ctx.layout, TwoPhaseLayout):
            with rec.step(LifecycleStep.APP_DESTROY, Phase.APPLICATION):
                require_authorization(confirmation, ctx.name)
                snapshot = inventory.snapshot(Phase.APPLICATION)
                if self._destroy_phase(ctx, Phase.APPLICATION, snapshot):
                    destroyed.append(Phase.APPLICATION)
                else:
                    skipped.append(Phase.APPLICATION)
            if rec.succeeded(LifecycleStep.APP_DESTROY):
                states.append(TeardownState.APP_DESTROYED)
            else:
                log.warning("continuing_after_application_destroy_failure", force=True)

        with rec.step(LifecycleStep.INFRA_DESTROY, Phase.INFRASTRUCTURE):
            require_authorization(confirmation, ctx.name)
            snapshot = inventory.snapshot(Phase.INFRASTRUCTURE)
            if self._destroy_phase(ctx, Phase.INFRASTRUCTURE, snapshot):
                destroyed.append(Phase.INFRASTRUCTURE)
            else:
                skipped.append(Phase.INFRASTRUCTURE)
        states.append(TeardownState.INFRA_DESTROYED)

        stamp = f"{self._now():%Y%m%d-%H%M%S}-{ctx.name.value}"
        archive_path = self._archive_dir / "teardown" / stamp
        with rec.step(LifecycleStep.ARCHIVE_STATE):
            self._archive_state(ctx, archive_path)

        with rec.step(LifecycleStep.CLEANUP):
            self._remove_transient_files(ctx)
        if rec.succeeded(LifecycleStep.CLEANUP):
            states.append(TeardownState.CLEANED)

        self._run_hook(rec, ctx, POST_TEARDOWN, LifecycleStep.POST_HOOK)

        remaining: list[str] = []
        unverified: list[Phase] = []
        with rec.step(LifecycleStep.VERIFY_ABSENT):
            for phase in ctx.layout.phases:
                snapshot = self._inspector.inspect(ctx, phase)
                if snapshot.status == SnapshotStatus.UNKNOWN:
                    unverified.append(phase)
                elif snapshot.status == SnapshotStatus.PRESENT:
                    remaining.extend(f"{phase.value}:{r}" for r in snapshot.resources)

        if remaining:
            status = TeardownStatus.INCOMPLETE
        elif unverified or not rec.succeeded(LifecycleStep.VERIFY_ABSENT):
            status = TeardownStatus.UNVERIFIED
        else:
            status = TeardownStatus.COMPLETE
            states.append(TeardownState.VALIDATED_ABSENT)

        report = TeardownReport(
            environment=ctx.name,
            layout=ctx.layout.kind,
            status=status,
            states=tuple(states),
            steps=tuple(rec.results),
            backup_name=backup_name,
            destroyed_phases=tuple(destroyed),
            skipped_phases=tuple(skipped),
            remaining_resources=tuple(remaining),
            unverified_phases=tuple(unverified),
            archive_path=archive_path if archive_path.is_dir() else None,
            monthly_savings=estimate(ctx.name.value),
            duration_seconds=round(self._clock() - started, 1),
        )
        self._write_summary(report)

        if status == TeardownStatus.COMPLETE:
            log.info("teardown_completed", duration=report.duration_seconds)
        else:
            log.warning(
                "teardown_incomplete",
                status=status.value,
                remaining=len(remaining),
                unverified=[p.value for p in unverified],
            )
        return report

    def _teardown_dry_run(
        self,
        ctx: EnvironmentContext,
        rec: _StepRecorder,
        started: float,
    ) -> TeardownReport:
        """Plan the destroys in teardown order without confirming or applying."""
        inventory = self._inspector.inspect_environment(ctx)
        skipped: list[Phase] = []
        for phase in reversed(ctx.layout.phases):
            snapshot = inventory.snapshot(phase)
            if snapshot is not None and snapshot.confirmed_empty:
                skipped.append(phase)
                continue
            step = (
                LifecycleStep.APP_DESTROY
                if phase == Phase.APPLICATION
                else LifecycleStep.INFRA_DESTROY
            )
            workdir = phase_workdir(ctx, phase)
            with rec.step(step, phase):
                self._provider.destroy_plan(workdir, ctx.terraform_vars(phase))

        logger.info(
            "teardown_dry_run_completed",
            environment=ctx.name.value,
            active_workspaces=inventory.workspaces.count,
        )
        return TeardownReport(
            environment=ctx.name,
            layout=ctx.layout.kind,
            status=TeardownStatus.PLANNED,
            dry_run=True,
            steps=tuple(rec.results),
            skipped_phases=tuple(skipped),
            monthly_savings=estimate(ctx.name.value),
            duration_seconds=round(self._clock() - started, 1),
        )

    def _drain(self, ctx: EnvironmentContext) -> bool:
        """Cordon nodes and stop application workloads, best effort.

        Returns:
            False if the cluster could not be reached and nothing was drained.
        """
        if not ctx.kubeconfig_path.is_file():
            logger.warning("drain_skipped", reason="kubeconfig not found")
            return False
        cluster = self._cluster_factory(ctx.kubeconfig_path)
        if not cluster.cluster_reachable():
            logger.warning("drain_skipped", reason="cluster unreachable")
            return False

        for node in cluster.list_nodes():
            cluster.drain(node)
        cluster.delete_workloads(self._namespace, self._drain_grace_period)

        terminated = wait_for_condition(
            lambda: cluster.count_pods(self._namespace) == 0,
            timeout=self._drain_timeout,
            interval=self._drain_poll_interval,
            description=f"pods in {self._namespace} to terminate",
            raise_on_timeout=False,
            sleep=self._sleep,
            clock=self._clock,
        )
        if not terminated:
            logger.warning(
                "drain_timeout_proceeding",
                environment=ctx.name.value,
                timeout=self._drain_timeout,
            )
        return True

    def _destroy_phase(
        self,
        ctx: EnvironmentContext,
        phase: Phase,
        snapshot: ResourceSnapshot | None,
    ) -> bool:
        """Destroy one phase; returns False if it was confirmed empty and skipped."""
        if snapshot is not None and snapshot.confirmed_empty:
            logger.info("destroy_skipped", environment=ctx.name.value, phase=phase.value)
            return False
        if snapshot is None or snapshot.status == SnapshotStatus.UNKNOWN:
            logger.warning(
                "destroying_unverified_phase", environment=ctx.name.value, phase=phase.value
            )

        workdir = phase_workdir(ctx, phase)
        artifact = self._provider.destroy_plan(workdir, ctx.terraform_vars(phase))
        self._provider.apply(artifact)
        logger.info("phase_destroyed", environment=ctx.name.value, phase=phase.value)
        return True

    def _archive_state(self, ctx: EnvironmentContext, archive_path: Path) -> None:
        archive_path.mkdir(parents=True, exist_ok=True)
        for phase, workdir in ctx.workdirs():
            (archive_path / f"final-{phase.value}.tfstate").write_text(
                self._provider.state_pull(workdir)
            )
        logger.info("state_archived", path=str(archive_path))

    def _remove_transient_files(self, ctx: EnvironmentContext) -> None:
        """Remove credentials and plan files left by the run."""
        if ctx.kubeconfig_path.exists():
            ctx.kubeconfig_path.unlink()
            logger.info("kubeconfig_removed", path=str(ctx.kubeconfig_path))
        for _, workdir in ctx.workdirs():
            for pattern in PLAN_FILE_PATTERNS:
                for plan_file in workdir.glob(pattern):
                    if plan_file.is_file():
                        plan_file.unlink()
                        logger.debug("plan_file_removed", path=str(plan_file))

    def _write_summary(self, report: TeardownReport) -> None:
        if report.archive_path is None:
            return
        try:
            (report.archive_path / "teardown-summary.json").write_text(
                json.dumps(json.loads(report.model_dump_json()), indent=2)
            )
        except OSError as e:
            logger.warning("teardown_summary_not_written", error=str(e))

    # ------------------------------------------------------------------

    def _run_hook(
        self,
        rec: _StepRecorder,
        ctx: EnvironmentContext,
        name: str,
        step: LifecycleStep,
    ) -> None:
        if self._hooks is None:
            return
        with rec.step(step):
            self._hooks.run(ctx, name)


def _as_str(value: Any) -> str | None:
    return None if value in (None, "") else str(value)


def _write_private(path: Path, content: str) -> None:
    """Write a file readable only by the current user."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    path.chmod(0o600)


__all__: list[str] = [
    "LifecycleOrchestrator",
    "dns_records",
    "http_probe",
]
