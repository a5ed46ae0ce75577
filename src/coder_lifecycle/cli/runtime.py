"""Wiring between CLI commands and the lifecycle components.

Commands never construct adapters themselves: they load settings from the
click context, start an operation (log file plus bound context) and ask a
:class:`Runtime` for ready-made components. Tests replace
:func:`build_runtime` to run commands against in-memory fakes.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import click
import structlog

from coder_lifecycle.backend import StateBackendManager
from coder_lifecycle.backup import BackupCoordinator
from coder_lifecycle.config import LifecycleSettings, check_prerequisites, load_settings
from coder_lifecycle.hooks import HookRunner
from coder_lifecycle.inventory import ResourceInventoryInspector
from coder_lifecycle.orchestrator import LifecycleOrchestrator, http_probe
from coder_lifecycle.providers.base import (
    ClusterFactory,
    DatabaseClient,
    InfrastructureProvider,
    ObjectStorage,
)
from coder_lifecycle.resize import DatabaseResizer
from coder_lifecycle.safety import ClickPrompter, Prompter, SafetyGateController
from coder_lifecycle.telemetry import configure_logging, log_file_path
from coder_lifecycle.templates import TemplateCatalog, TemplateDeployer

logger = structlog.get_logger(__name__)


def settings_from_context(ctx: click.Context) -> LifecycleSettings:
    """Load settings once per invocation using the root group options."""
    obj = ctx.ensure_object(dict)
    if "settings" not in obj:
        obj["settings"] = load_settings(obj.get("config_file"), log_level=obj.get("log_level"))
    settings: LifecycleSettings = obj["settings"]
    return settings


def start_operation(
    ctx: click.Context,
    settings: LifecycleSettings,
    operation: str,
    environment: str,
) -> Path:
    """Configure logging for one operation and bind its context.

    Returns:
        Path of the operation log file.
    """
    obj = ctx.ensure_object(dict)
    log_file = log_file_path(
        settings.logs_path, operation, environment, datetime.now(timezone.utc)
    )
    configure_logging(
        log_level=settings.log_level,
        json_output=bool(obj.get("json_logs")),
        log_file=log_file,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(environment=environment, operation=operation)
    logger.info("operation_started", log_file=str(log_file))
    return log_file


class Runtime:
    """Component factory for one CLI invocation.

    Args:
        settings: Loaded settings.
        provider: Infrastructure provider.
        cluster_factory: Cluster client factory.
        storage_factory: Builds object storage for a region.
        database: Managed database client.
        prompter: Source of operator answers.
        verify_prerequisites: Check tools and credentials before remote work.
        probe: URL reachability check used after setup.
        sleep: Sleep function shared by polling loops.
    """

    def __init__(
        self,
        settings: LifecycleSettings,
        *,
        provider: InfrastructureProvider,
        cluster_factory: ClusterFactory,
        storage_factory: Callable[[str], ObjectStorage],
        database: DatabaseClient,
        prompter: Prompter,
        verify_prerequisites: bool = True,
        probe: Callable[[str], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.cluster_factory = cluster_factory
        self.storage_factory = storage_factory
        self.database = database
        self.prompter = prompter
        self._verify_prerequisites = verify_prerequisites
        self._probe = probe or (
            lambda url: http_probe(url, timeout=settings.http_probe_timeout_seconds)
        )
        self._sleep = sleep

    def require(self, tools: tuple[str, ...]) -> None:
        if self._verify_prerequisites:
            check_prerequisites(self.settings, tools)

    def backend_manager(self, region: str) -> StateBackendManager:
        return StateBackendManager(self.storage_factory(region), self.settings.product)

    def inspector(self) -> ResourceInventoryInspector:
        return ResourceInventoryInspector(
            self.provider, self.cluster_factory, self.settings.workspace_namespace
        )

    def backups(self) -> BackupCoordinator:
        return BackupCoordinator(
            self.provider,
            self.cluster_factory,
            self.settings.backups_path,
            workspace_namespace=self.settings.workspace_namespace,
            job_timeout=self.settings.backup_job_timeout_seconds,
        )

    def safety(self) -> SafetyGateController:
        return SafetyGateController(self.settings.safety_delay_seconds, sleep=self._sleep)

    def catalog(self) -> TemplateCatalog:
        return TemplateCatalog(self.settings.templates_path)

    def deployer(self) -> TemplateDeployer:
        return TemplateDeployer(self.catalog(), max_workers=self.settings.template_concurrency)

    def orchestrator(self, region: str) -> LifecycleOrchestrator:
        return LifecycleOrchestrator(
            self.provider,
            self.cluster_factory,
            self.backend_manager(region),
            self.inspector(),
            self.safety(),
            self.backups(),
            prompter=self.prompter,
            archive_dir=self.settings.archives_path,
            hooks=HookRunner(self.settings.hooks_path),
            templates=self.deployer(),
            workspace_namespace=self.settings.workspace_namespace,
            drain_timeout=self.settings.drain_timeout_seconds,
            drain_grace_period=self.settings.drain_grace_period_seconds,
            probe=self._probe,
            sleep=self._sleep,
        )

    def resizer(self) -> DatabaseResizer:
        return DatabaseResizer(
            self.provider,
            self.database,
            self.backups(),
            prompter=self.prompter,
            timeout=self.settings.resize_timeout_seconds,
            poll_interval=self.settings.resize_poll_interval_seconds,
            sleep=self._sleep,
        )


def _backend_credentials(settings: LifecycleSettings) -> dict[str, str]:
    """S3 backend credentials for terraform, taken from the Scaleway keys."""
    env: dict[str, str] = {}
    if settings.access_key:
        env["AWS_ACCESS_KEY_ID"] = settings.access_key
    if settings.secret_key:
        env["AWS_SECRET_ACCESS_KEY"] = settings.secret_key.get_secret_value()
    return env


def build_runtime(settings: LifecycleSettings) -> Runtime:
    """Build the production runtime: terraform, kubernetes, S3, scw."""
    from coder_lifecycle.providers.cluster import kubernetes_cluster_factory
    from coder_lifecycle.providers.object_storage import MinioObjectStorage
    from coder_lifecycle.providers.scaleway import ScalewayDatabaseClient
    from coder_lifecycle.providers.terraform import TerraformProvider

    secret = settings.secret_key.get_secret_value() if settings.secret_key else ""
    return Runtime(
        settings,
        provider=TerraformProvider(env=_backend_credentials(settings)),
        cluster_factory=kubernetes_cluster_factory,
        storage_factory=lambda region: MinioObjectStorage(
            settings.access_key or "", secret, region
        ),
        database=ScalewayDatabaseClient(),
        prompter=ClickPrompter(),
    )


__all__: list[str] = [
    "Runtime",
    "build_runtime",
    "settings_from_context",
    "start_operation",
]
