"""Managed database resize.

Moves the environment's managed PostgreSQL instance to another node type:
read the instance id from the infrastructure outputs, show the cost
impact, take a pre-resize backup, request the upgrade, then wait for the
instance to come back ``ready`` on the new type.

Example:
    >>> resizer = DatabaseResizer(provider, ScalewayDatabaseClient(), backups,
    ...     prompter=ClickPrompter())
    >>> report = resizer.resize(ctx, ResizeOptions(instance_type="DB-GP-M"))
    >>> report.outcome
    <ResizeOutcome.RESIZED: 'resized'>
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog
from opentelemetry import trace

from coder_lifecycle.backup import BackupCoordinator
from coder_lifecycle.cost import resize_delta, validate_instance_type
from coder_lifecycle.environment import phase_workdir
from coder_lifecycle.errors import OperationCancelled, ResizeFailedError
from coder_lifecycle.polling import PollingConfig, PollingTimeoutError, poll_until
from coder_lifecycle.providers.base import DatabaseClient, DatabaseInstance, InfrastructureProvider
from coder_lifecycle.safety import Prompter, confirm
from coder_lifecycle.schemas.backup import BackupKind, BackupOptions
from coder_lifecycle.schemas.environment import EnvironmentContext, Phase
from coder_lifecycle.schemas.resize import ResizeOptions, ResizeOutcome, ResizeReport
from coder_lifecycle.telemetry import get_tracer

logger = structlog.get_logger(__name__)

DATABASE_ID_OUTPUT = "database_id"
READY_STATUS = "ready"
FAILED_STATUSES = frozenset({"error", "stopped", "locked"})


class DatabaseResizer:
    """Resize the managed database of an environment.

    Args:
        provider: Infrastructure provider, for the ``database_id`` output.
        database: Database client.
        backups: Backup coordinator for the pre-resize backup.
        prompter: Source of the operator's confirmation.
        timeout: Max seconds to wait for the instance to become ready.
        poll_interval: Seconds between status polls.
    """

    def __init__(
        self,
        provider: InfrastructureProvider,
        database: DatabaseClient,
        backups: BackupCoordinator,
        *,
        prompter: Prompter,
        timeout: float = 900.0,
        poll_interval: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._database = database
        self._backups = backups
        self._prompter = prompter
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def database_id(self, ctx: EnvironmentContext) -> str:
        workdir = phase_workdir(ctx, Phase.INFRASTRUCTURE)
        database_id = self._provider.output(workdir, DATABASE_ID_OUTPUT)
        if not database_id:
            raise ResizeFailedError(
                f"No {DATABASE_ID_OUTPUT} output for {ctx.name.value}; "
                "is the infrastructure deployed?",
                environment=ctx.name.value,
            )
        # Regional ids come back as "<region>/<uuid>"
        return database_id.split("/")[-1]

    def resize(self, ctx: EnvironmentContext, options: ResizeOptions) -> ResizeReport:
        """Resize the database to ``options.instance_type``.

        Raises:
            InvalidConfigurationError: If the instance type is unknown.
            OperationCancelled: If the operator declines.
            BackupComponentFailedError: If the pre-resize backup is incomplete.
            ResizeFailedError: If the upgrade fails or does not settle in time.
        """
        started = self._clock()
        requested = (
            validate_instance_type(options.instance_type) if options.instance_type else None
        )
        tracer = get_tracer()
        log = logger.bind(environment=ctx.name.value, target_type=requested)

        with tracer.start_as_current_span("lifecycle.resize") as span:
            span.set_attribute("environment", ctx.name.value)
            try:
                database_id = self.database_id(ctx)
                current = self._database.get_instance(ctx.region, database_id)
                target = requested or current.node_type
                span.set_attribute("target_type", target)
                log.info(
                    "database_found",
                    database_id=database_id,
                    current_type=current.node_type,
                    status=current.status,
                )

                if current.node_type == target:
                    log.info("resize_not_needed")
                    return self._report(ctx, current, target, ResizeOutcome.UNCHANGED, started)

                delta = resize_delta(current.node_type, target)
                log.info(
                    "resize_cost_impact",
                    current_monthly=str(delta.current.monthly),
                    target_monthly=str(delta.target.monthly),
                    monthly_delta=str(delta.monthly_delta),
                )

                if options.dry_run or options.analyze_only:
                    return self._report(
                        ctx, current, target, ResizeOutcome.PLANNED, started, cost_delta=delta
                    )

                if not options.auto_approve:
                    question = (
                        f"Resize {ctx.name.value} database from {current.node_type} to "
                        f"{target} (EUR {delta.monthly_delta:+}/month)? "
                        "The database is briefly unavailable."
                    )
                    if not confirm(self._prompter, question):
                        raise OperationCancelled(
                            "Resize cancelled by operator", environment=ctx.name.value
                        )

                backup_name = None
                if not options.no_backup:
                    backup = self._backups.create_backup(
                        ctx,
                        BackupOptions(
                            kind=BackupKind.PRE_RESIZE,
                            include_data=True,
                            require_complete=True,
                        ),
                    )
                    backup_name = backup.name

                self._database.update_node_type(ctx.region, database_id, target)
                final = self._wait_ready(ctx, database_id)
                if final.node_type != target:
                    raise ResizeFailedError(
                        f"Database is {final.node_type} after resize, expected {target}",
                        environment=ctx.name.value,
                    )
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise

        log.info("database_resized", from_type=current.node_type)
        return self._report(
            ctx,
            current,
            target,
            ResizeOutcome.RESIZED,
            started,
            cost_delta=delta,
            backup_name=backup_name,
        )

    def _wait_ready(self, ctx: EnvironmentContext, database_id: str) -> DatabaseInstance:
        def settled(instance: DatabaseInstance) -> bool:
            if instance.status in FAILED_STATUSES:
                raise ResizeFailedError(
                    f"Database entered status '{instance.status}' during resize",
                    environment=ctx.name.value,
                )
            return instance.status == READY_STATUS

        try:
            return poll_until(
                lambda: self._database.get_instance(ctx.region, database_id),
                settled,
                PollingConfig(
                    timeout=self._timeout,
                    interval=self._poll_interval,
                    description=f"database {database_id} to become ready",
                ),
                sleep=self._sleep,
                clock=self._clock,
            )
        except PollingTimeoutError as e:
            raise ResizeFailedError(str(e), environment=ctx.name.value) from e

    def _report(
        self,
        ctx: EnvironmentContext,
        current: DatabaseInstance,
        target: str,
        outcome: ResizeOutcome,
        started: float,
        **extra: object,
    ) -> ResizeReport:
        return ResizeReport(
            environment=ctx.name,
            database_id=current.id,
            current_type=current.node_type,
            target_type=target,
            outcome=outcome,
            duration_seconds=round(self._clock() - started, 1),
            **extra,
        )


__all__: list[str] = ["DatabaseResizer"]
