"""Backup coordination.

A backup is a directory (optionally compressed to ``.tar.gz``) with one
subdirectory per captured component and a ``backup-manifest.json``
written last:

    <backup_dir>/<name>/
        infrastructure/     Terraform sources, pulled state, outputs
        kubernetes/         Exported resources + inventory.txt
        data/database/      database-dump.sql + database-info.txt
        data/workspaces/    <claim>.tar.gz per workspace volume
        config/             Project scripts/modules/docs + environment summary
        templates/          Workspace templates + template-inventory.txt
        backup-manifest.json

Components are captured best-effort: a failing component is logged,
removed from the bundle, flagged false and listed in the manifest
warnings. Only a caller requiring a complete backup turns such a failure
into an error. Bundles are never modified after the manifest is written.

Restore is the reverse for the infrastructure state, the exported
Kubernetes resources and the database dump. It refuses a bundle whose
checksum does not match its manifest and runs behind the safety gates.

Example:
    >>> coordinator = BackupCoordinator(provider, cluster_factory, Path("backups"))
    >>> backup = coordinator.create_backup(ctx, BackupOptions(include_data=True))
    >>> backup.manifest.contents.database
    True
"""

from __future__ import annotations

import getpass
import hashlib
import json
import shutil
import socket
import tarfile
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path, PurePosixPath
from typing import IO

import structlog
from opentelemetry import trace

from coder_lifecycle.errors import BackupComponentFailedError, BackupError, RestoreFailedError
from coder_lifecycle.providers.base import ClusterClient, ClusterFactory, InfrastructureProvider
from coder_lifecycle.safety import Prompter, SafetyGateController, require_authorization
from coder_lifecycle.schemas.backup import (
    MANIFEST_FILENAME,
    Backup,
    BackupContents,
    BackupManifest,
    BackupOptions,
    RestoreComponent,
    RestoreOptions,
    RestoreReport,
)
from coder_lifecycle.schemas.environment import EnvironmentContext
from coder_lifecycle.telemetry import get_tracer

logger = structlog.get_logger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"
CONFIG_DIRS: tuple[str, ...] = ("scripts", "modules", "shared", "docs")
CONFIG_FILES: tuple[str, ...] = ("README.md", "LICENSE")
MONITORING_NAMESPACE = "monitoring"
# Secrets and config first, the workloads that reference them last
MANIFEST_RESTORE_ORDER: tuple[str, ...] = (
    "secrets",
    "configmaps",
    "pvc",
    "services",
    "deployments",
    "ingresses",
)

_TRANSIENT = shutil.ignore_patterns(".terraform", "*tfplan", "destroy-plan", "*.log")

RESTORE_INSTRUCTIONS = """\
Run 'coder-lifecycle backup restore --env=<env> <name>' to verify the bundle and
restore infrastructure state, Kubernetes resources and the database. By hand:
1. Infrastructure: copy infrastructure/environment back to environments/<env>/ and
   push a state file with 'terraform state push infrastructure/<phase>.tfstate'.
2. Kubernetes: 'kubectl apply -f kubernetes/<namespace>/' after the cluster exists.
3. Database: 'psql -f data/database/database-dump.sql' against the new instance.
4. Workspaces: extract data/workspaces/<claim>.tar.gz into the matching volume.
"""


def _sha256_stream(stream: IO[bytes]) -> str:
    digest = hashlib.sha256()
    for chunk in iter(lambda: stream.read(1024 * 1024), b""):
        digest.update(chunk)
    return digest.hexdigest()


def _sha256_file(path: Path) -> str:
    with path.open("rb") as f:
        return _sha256_stream(f)


def _bundle_files(root: Path) -> list[Path]:
    return sorted(
        p for p in root.rglob("*") if p.is_file() and p.relative_to(root) != Path(MANIFEST_FILENAME)
    )


def _combine(digests: dict[str, str]) -> str:
    lines = [f"{rel}:{digests[rel]}" for rel in sorted(digests, key=PurePosixPath)]
    return hashlib.sha256("\n".join(lines).encode()).hexdigest()


def compute_checksum(root: Path) -> str:
    """Checksum over every file of a bundle except the manifest.

    The digest covers ``<relative path>:<file sha256>`` lines in sorted
    path order, so renames and content changes are both detected.
    """
    digests = {p.relative_to(root).as_posix(): _sha256_file(p) for p in _bundle_files(root)}
    return _combine(digests)


def _archive_members(
    tar: tarfile.TarFile, name: str
) -> Iterator[tuple[PurePosixPath, IO[bytes]]]:
    """Yield ``(path relative to the bundle, content)`` for regular files.

    Raises:
        BackupError: On an absolute or parent-relative member path.
    """
    for member in tar:
        path = PurePosixPath(member.name)
        if path.is_absolute() or ".." in path.parts:
            raise BackupError(f"Unsafe path in archive: {member.name}")
        if not member.isfile() or len(path.parts) < 2 or path.parts[0] != name:
            continue
        content = tar.extractfile(member)
        if content is not None:
            yield PurePosixPath(*path.parts[1:]), content


def archive_checksum(archive: Path, name: str) -> str:
    """Checksum of a compressed bundle, read member by member."""
    with tarfile.open(archive, "r:gz") as tar:
        digests = {
            relative.as_posix(): _sha256_stream(content)
            for relative, content in _archive_members(tar, name)
            if relative != PurePosixPath(MANIFEST_FILENAME)
        }
    return _combine(digests)


def _unpack(archive: Path, name: str, dest: Path) -> Path:
    root = dest / name
    with tarfile.open(archive, "r:gz") as tar:
        for relative, content in _archive_members(tar, name):
            target = root.joinpath(*relative.parts)
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as out:
                shutil.copyfileobj(content, out)
    return root


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class _BackupRun:
    """State of a single backup or restore run (lazily built cluster client)."""

    def __init__(
        self,
        ctx: EnvironmentContext,
        root: Path,
        cluster_factory: ClusterFactory,
    ) -> None:
        self.ctx = ctx
        self.root = root
        self._cluster_factory = cluster_factory
        self._cluster: ClusterClient | None = None

    def cluster(self) -> ClusterClient:
        if self._cluster is None:
            if not self.ctx.kubeconfig_path.is_file():
                raise BackupComponentFailedError(
                    "kubernetes", f"kubeconfig not found: {self.ctx.kubeconfig_path}"
                )
            cluster = self._cluster_factory(self.ctx.kubeconfig_path)
            if not cluster.cluster_reachable():
                raise BackupComponentFailedError("kubernetes", "cluster unreachable")
            self._cluster = cluster
        return self._cluster


class BackupCoordinator:
    """Create, verify, restore, list and purge backups.

    Args:
        provider: Infrastructure provider (state pull, outputs).
        cluster_factory: Builds a cluster client from a kubeconfig path.
        backup_dir: Directory holding all bundles.
        workspace_namespace: Namespace holding the application and volumes.
        job_timeout: Timeout in seconds for each workspace volume archive.
        now: Clock, injectable for tests.
    """

    def __init__(
        self,
        provider: InfrastructureProvider,
        cluster_factory: ClusterFactory,
        backup_dir: Path,
        *,
        workspace_namespace: str = "coder",
        job_timeout: int = 300,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._provider = provider
        self._cluster_factory = cluster_factory
        self._backup_dir = backup_dir
        self._namespace = workspace_namespace
        self._job_timeout = job_timeout
        self._now = now

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def backup_name(self, ctx: EnvironmentContext, options: BackupOptions, at: datetime) -> str:
        if options.name:
            return options.name
        return f"{options.kind.value}-{at:%Y%m%d-%H%M%S}-{ctx.name.value}"

    def create_backup(self, ctx: EnvironmentContext, options: BackupOptions) -> Backup:
        """Create a backup bundle.

        Raises:
            BackupError: If the bundle name is taken or the manifest cannot be written.
            BackupComponentFailedError: If a component fails and
                ``options.require_complete`` is set. No bundle is left behind.
        """
        created_at = self._now()
        name = self.backup_name(ctx, options, created_at)
        root = self._backup_dir / name
        archive = self._backup_dir / f"{name}{ARCHIVE_SUFFIX}"
        if root.exists() or archive.exists():
            raise BackupError(f"Backup {name} already exists", environment=ctx.name.value)

        log = logger.bind(environment=ctx.name.value, backup=name)
        log.info("backup_started", include_data=options.include_data)
        root.mkdir(parents=True, mode=0o700)

        run = _BackupRun(ctx, root, self._cluster_factory)
        plan: list[tuple[str, bool, Callable[[_BackupRun], Path]]] = [
            ("infrastructure", True, self._capture_infrastructure),
            ("kubernetes", True, self._capture_kubernetes),
            ("database", options.include_data, self._capture_database),
            ("workspace_data", options.include_data, self._capture_workspaces),
            ("configuration", options.include_config, self._capture_configuration),
            ("templates", options.include_templates, self._capture_templates),
        ]

        flags: dict[str, bool] = {}
        warnings: list[str] = []
        for component, enabled, capture in plan:
            if not enabled:
                flags[component] = False
                continue
            try:
                capture(run)
            except Exception as e:  # noqa: BLE001
                reason = getattr(e, "reason", None) or str(e) or type(e).__name__
                flags[component] = False
                warnings.append(f"{component}: {reason}")
                log.warning("backup_component_failed", component=component, error=reason)
                if options.require_complete:
                    shutil.rmtree(root, ignore_errors=True)
                    raise BackupComponentFailedError(
                        component, reason, environment=ctx.name.value
                    ) from e
                continue
            flags[component] = True
            log.info("backup_component_captured", component=component)

        manifest = self._write_manifest(ctx, root, name, created_at, options, flags, warnings)
        path = root
        if options.compress:
            path = self._compress(root, archive)

        log.info(
            "backup_completed",
            path=str(path),
            size=manifest.backup_size,
            warnings=len(manifest.warnings),
        )
        return Backup(name=name, path=path, manifest=manifest)

    # -- component captures ------------------------------------------------

    def _component_dir(self, run: _BackupRun, *parts: str) -> Path:
        path = run.root.joinpath(*parts)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _discard(self, path: Path) -> None:
        shutil.rmtree(path, ignore_errors=True)

    def _capture_infrastructure(self, run: _BackupRun) -> Path:
        dest = self._component_dir(run, "infrastructure")
        try:
            shutil.copytree(run.ctx.env_dir, dest / "environment", ignore=_TRANSIENT)
            outputs: dict[str, object] = {}
            for phase, workdir in run.ctx.workdirs():
                try:
                    (dest / f"{phase.value}.tfstate").write_text(
                        self._provider.state_pull(workdir)
                    )
                    outputs[phase.value] = self._provider.outputs(workdir)
                except Exception as e:  # noqa: BLE001
                    logger.warning(
                        "state_export_skipped", phase=phase.value, error=str(e)
                    )
            (dest / "terraform-outputs.json").write_text(
                json.dumps(outputs, indent=2, sort_keys=True, default=str)
            )
        except BaseException:
            self._discard(dest)
            raise
        return dest

    def _capture_kubernetes(self, run: _BackupRun) -> Path:
        cluster = run.cluster()
        dest = self._component_dir(run, "kubernetes")
        try:
            exported = cluster.export_resources([self._namespace, MONITORING_NAMESPACE])
            for relative, content in sorted(exported.items()):
                target = dest / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content)
            inventory = [f"{rel}\t{len(content)}" for rel, content in sorted(exported.items())]
            (dest / "inventory.txt").write_text("\n".join(inventory) + "\n")
        except BaseException:
            self._discard(dest)
            raise
        return dest

    def _capture_database(self, run: _BackupRun) -> Path:
        cluster = run.cluster()
        dest = self._component_dir(run, "data", "database")
        try:
            dump = dest / "database-dump.sql"
            cluster.dump_database(self._namespace, dump)
            (dest / "database-info.txt").write_text(
                f"environment: {run.ctx.name.value}\n"
                f"namespace: {self._namespace}\n"
                f"dump_size: {dump.stat().st_size}\n"
            )
        except BaseException:
            self._discard(dest)
            raise
        return dest

    def _capture_workspaces(self, run: _BackupRun) -> Path:
        cluster = run.cluster()
        dest = self._component_dir(run, "data", "workspaces")
        try:
            claims = cluster.list_volumes(self._namespace)
            for claim in claims:
                cluster.archive_volume(
                    self._namespace, claim, dest / f"{claim}{ARCHIVE_SUFFIX}", self._job_timeout
                )
            (dest / "volumes.txt").write_text("".join(f"{claim}\n" for claim in claims))
        except BaseException:
            self._discard(dest)
            raise
        return dest

    def _capture_configuration(self, run: _BackupRun) -> Path:
        dest = self._component_dir(run, "config")
        root = run.ctx.project_root
        try:
            for dirname in CONFIG_DIRS:
                if (root / dirname).is_dir():
                    shutil.copytree(root / dirname, dest / dirname, ignore=_TRANSIENT)
            for filename in CONFIG_FILES:
                if (root / filename).is_file():
                    shutil.copy2(root / filename, dest / filename)
            (dest / "environment-summary.txt").write_text(
                f"environment: {run.ctx.name.value}\n"
                f"region: {run.ctx.region}\n"
                f"zone: {run.ctx.zone}\n"
                f"layout: {run.ctx.layout.kind}\n"
                f"domain: {run.ctx.hostname or '-'}\n"
            )
        except BaseException:
            self._discard(dest)
            raise
        return dest

    def _capture_templates(self, run: _BackupRun) -> Path:
        source = run.ctx.project_root / "templates"
        if not source.is_dir():
            raise BackupComponentFailedError("templates", f"no templates directory at {source}")
        dest = run.root / "templates"
        try:
            shutil.copytree(source, dest, ignore=_TRANSIENT)
            names = sorted({p.parent.name for p in dest.rglob("main.tf")})
            (dest / "template-inventory.txt").write_text("".join(f"{n}\n" for n in names))
        except BaseException:
            self._discard(dest)
            raise
        return dest

    # -- manifest, compression, verification ------------------------------

    def _write_manifest(
        self,
        ctx: EnvironmentContext,
        root: Path,
        name: str,
        created_at: datetime,
        options: BackupOptions,
        flags: dict[str, bool],
        warnings: list[str],
    ) -> BackupManifest:
        manifest = BackupManifest(
            backup_name=name,
            environment=ctx.name.value,
            created_at=created_at,
            created_by=_current_user(),
            hostname=socket.gethostname(),
            backup_size=sum(p.stat().st_size for p in _bundle_files(root)),
            retention_days=options.retention_days,
            contents=BackupContents(**flags),
            warnings=tuple(warnings),
            restore_instructions=RESTORE_INSTRUCTIONS,
            checksum=compute_checksum(root),
        )
        try:
            (root / MANIFEST_FILENAME).write_text(manifest.model_dump_json(indent=2))
        except OSError as e:
            raise BackupError(f"Cannot write manifest for {name}: {e}") from e
        return manifest

    def _compress(self, root: Path, archive: Path) -> Path:
        with tarfile.open(archive, "w:gz") as tar:
            tar.add(root, arcname=root.name)
        shutil.rmtree(root)
        return archive

    def read_manifest(self, path: Path) -> BackupManifest:
        """Read the manifest of a bundle directory or archive.

        Raises:
            BackupError: If the manifest is missing or invalid.
        """
        try:
            if path.is_dir():
                raw = (path / MANIFEST_FILENAME).read_text()
            else:
                with tarfile.open(path, "r:gz") as tar:
                    name = path.name.removesuffix(ARCHIVE_SUFFIX)
                    member = tar.extractfile(f"{name}/{MANIFEST_FILENAME}")
                    if member is None:
                        raise BackupError(f"No manifest in {path}")
                    raw = member.read().decode()
            return BackupManifest.model_validate_json(raw)
        except (OSError, KeyError, tarfile.TarError, ValueError) as e:
            raise BackupError(f"Cannot read manifest of {path}: {e}") from e

    def find_backup(self, name: str) -> Path:
        """Resolve a bundle name to its directory or archive.

        Raises:
            BackupError: If no such bundle exists.
        """
        for candidate in (self._backup_dir / name, self._backup_dir / f"{name}{ARCHIVE_SUFFIX}"):
            if candidate.exists():
                return candidate
        raise BackupError(f"Backup {name} not found in {self._backup_dir}")

    def verify_backup(self, path: Path) -> bool:
        """Recompute the checksum of a bundle and compare it with the manifest."""
        manifest = self.read_manifest(path)
        if path.is_dir():
            actual = compute_checksum(path)
        else:
            actual = archive_checksum(path, manifest.backup_name)
        ok = actual == manifest.checksum
        logger.info("backup_verified", backup=manifest.backup_name, ok=ok)
        return ok

    # -- restore ------------------------------------------------------------

    @contextmanager
    def _materialize(self, path: Path, name: str) -> Iterator[Path]:
        """Yield a bundle directory, unpacking archives into a temporary one."""
        if path.is_dir():
            yield path
            return
        with tempfile.TemporaryDirectory(prefix="coder-restore-") as tmp:
            try:
                root = _unpack(path, name, Path(tmp))
            except (OSError, tarfile.TarError) as e:
                raise BackupError(f"Cannot unpack {path}: {e}") from e
            yield root

    def _restore_plan(
        self, manifest: BackupManifest, options: RestoreOptions
    ) -> tuple[RestoreComponent, ...]:
        captured = [c for c in RestoreComponent if getattr(manifest.contents, c.value)]
        if not options.components:
            if not captured:
                raise BackupError(f"Backup {manifest.backup_name} holds no restorable component")
            return tuple(captured)
        missing = [c.value for c in options.components if c not in captured]
        if missing:
            raise BackupError(
                f"Backup {manifest.backup_name} did not capture: {', '.join(missing)}"
            )
        return tuple(c for c in RestoreComponent if c in options.components)

    def restore(
        self,
        ctx: EnvironmentContext,
        name: str,
        options: RestoreOptions,
        *,
        safety: SafetyGateController,
        prompter: Prompter,
    ) -> RestoreReport:
        """Restore components of a bundle into the environment it was taken from.

        The bundle is verified against its manifest checksum before the
        operator is asked to confirm, so a corrupt bundle changes nothing.
        Components run in the order infrastructure (state push), kubernetes
        (manifest apply), database (dump load); the first failure stops the
        restore and earlier components stay restored.

        Raises:
            BackupError: If the bundle is missing, belongs to another
                environment, fails verification, or lacks a requested component.
            ConfirmationFailedError: On a confirmation mismatch.
            OperationCancelled: If the operator declines.
            RestoreFailedError: If a component fails to restore.
        """
        path = self.find_backup(name)
        manifest = self.read_manifest(path)
        log = logger.bind(environment=ctx.name.value, backup=manifest.backup_name)
        if manifest.environment != ctx.name.value:
            raise BackupError(
                f"Backup {manifest.backup_name} was taken from {manifest.environment}, "
                f"not {ctx.name.value}",
                environment=ctx.name.value,
            )
        planned = self._restore_plan(manifest, options)

        restorers: dict[RestoreComponent, Callable[[_BackupRun], None]] = {
            RestoreComponent.INFRASTRUCTURE: self._restore_infrastructure,
            RestoreComponent.KUBERNETES: self._restore_kubernetes,
            RestoreComponent.DATABASE: self._restore_database,
        }
        restored: list[RestoreComponent] = []
        with get_tracer().start_as_current_span("backup.restore") as span:
            span.set_attribute("environment", ctx.name.value)
            span.set_attribute("backup", manifest.backup_name)
            with self._materialize(path, manifest.backup_name) as root:
                if compute_checksum(root) != manifest.checksum:
                    log.error("restore_checksum_mismatch")
                    raise BackupError(
                        f"Backup {manifest.backup_name} failed checksum verification",
                        environment=ctx.name.value,
                    )
                log.info("restore_planned", components=[c.value for c in planned])
                if options.dry_run:
                    return RestoreReport(
                        backup_name=manifest.backup_name,
                        environment=ctx.name.value,
                        dry_run=True,
                        planned=planned,
                    )

                confirmation = safety.authorize_destructive_action(
                    ctx.name, options.emergency, prompter, force=options.force, action="restore"
                )
                run = _BackupRun(ctx, root, self._cluster_factory)
                for component in planned:
                    require_authorization(confirmation, ctx.name)
                    try:
                        restorers[component](run)
                    except Exception as e:
                        reason = getattr(e, "reason", None) or str(e) or type(e).__name__
                        log.error(
                            "restore_component_failed", component=component.value, error=reason
                        )
                        span.set_status(trace.Status(trace.StatusCode.ERROR, reason))
                        raise RestoreFailedError(
                            component.value, reason, environment=ctx.name.value
                        ) from e
                    restored.append(component)
                    log.info("restore_component_completed", component=component.value)

        log.info("restore_completed", restored=[c.value for c in restored])
        return RestoreReport(
            backup_name=manifest.backup_name,
            environment=ctx.name.value,
            planned=planned,
            restored=tuple(restored),
        )

    def _restore_infrastructure(self, run: _BackupRun) -> None:
        source = run.root / "infrastructure"
        pushed = 0
        for phase, workdir in run.ctx.workdirs():
            state_file = source / f"{phase.value}.tfstate"
            if not state_file.is_file():
                logger.warning("state_file_missing", phase=phase.value)
                continue
            self._provider.state_push(workdir, state_file)
            pushed += 1
        if not pushed:
            raise RestoreFailedError("infrastructure", "no state file in bundle")

    def _restore_kubernetes(self, run: _BackupRun) -> None:
        source = run.root / "kubernetes"
        manifests = [
            source / namespace / f"{kind}.yaml"
            for namespace in (self._namespace, MONITORING_NAMESPACE)
            for kind in MANIFEST_RESTORE_ORDER
            if (source / namespace / f"{kind}.yaml").is_file()
        ]
        if not manifests:
            raise RestoreFailedError("kubernetes", "no exported manifests in bundle")
        count = run.cluster().apply_manifests(manifests)
        logger.info("kubernetes_restored", files=len(manifests), objects=count)

    def _restore_database(self, run: _BackupRun) -> None:
        dump = run.root / "data" / "database" / "database-dump.sql"
        if not dump.is_file():
            raise RestoreFailedError("database", "no database dump in bundle")
        run.cluster().restore_database(self._namespace, dump)

    def _entries(self) -> list[Path]:
        if not self._backup_dir.is_dir():
            return []
        return sorted(
            p
            for p in self._backup_dir.iterdir()
            if p.is_dir() or p.name.endswith(ARCHIVE_SUFFIX)
        )

    def list_backups(self) -> list[Backup]:
        backups = []
        for entry in self._entries():
            try:
                manifest = self.read_manifest(entry)
            except BackupError as e:
                logger.warning("backup_unreadable", path=str(entry), error=str(e))
                continue
            backups.append(Backup(name=manifest.backup_name, path=entry, manifest=manifest))
        return backups

    def purge_expired(
        self,
        retention_days: int,
        now: datetime | None = None,
    ) -> list[str]:
        """Delete bundles older than the retention window.

        Age comes from the manifest creation time, or the modification time
        for bundles without a readable manifest. Deletion is permanent.

        Returns:
            Names of the purged entries.
        """
        if retention_days < 1:
            raise BackupError("retention_days must be at least 1")
        cutoff = (now or self._now()) - timedelta(days=retention_days)

        purged = []
        for entry in self._entries():
            try:
                created = self.read_manifest(entry).created_at
            except BackupError:
                created = datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc)
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            if created >= cutoff:
                continue
            if entry.is_dir():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            logger.info("backup_purged", backup=entry.name, created_at=created.isoformat())
            purged.append(entry.name)
        return purged


__all__: list[str] = [
    "ARCHIVE_SUFFIX",
    "BackupCoordinator",
    "archive_checksum",
    "compute_checksum",
]
