"""Unit test fixtures for coder-lifecycle.

Provides the in-memory fakes from ``fakes`` as fixtures, a project tree
factory on tmp_path, and ready-made settings, contexts and orchestrators.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import pytest
from click.testing import CliRunner
from fakes import FakeClock, FakeCluster, FakeProvider, FakeStorage

from coder_lifecycle.backend import StateBackendManager
from coder_lifecycle.backup import BackupCoordinator
from coder_lifecycle.config import LifecycleSettings
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.hooks import HookRunner
from coder_lifecycle.inventory import ResourceInventoryInspector
from coder_lifecycle.orchestrator import LifecycleOrchestrator
from coder_lifecycle.safety import SafetyGateController, SequencePrompter
from coder_lifecycle.schemas.environment import EnvironmentContext
from coder_lifecycle.templates import TemplateCatalog, TemplateDeployer


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def make_project(tmp_path: Path) -> Callable[..., Path]:
    """Factory creating a project tree under tmp_path.

    Usage:
        root = make_project("dev", layout="legacy")
    """

    def _make(*envs: str, layout: str = "two-phase", templates: Sequence[str] = ()) -> Path:
        for env in envs or ("dev",):
            env_dir = tmp_path / "environments" / env
            if layout == "legacy":
                env_dir.mkdir(parents=True, exist_ok=True)
                (env_dir / "main.tf").write_text("# combined\n")
            else:
                for unit in ("infra", "coder"):
                    (env_dir / unit).mkdir(parents=True, exist_ok=True)
                    (env_dir / unit / "main.tf").write_text(f"# {unit}\n")
        for name in templates:
            template_dir = tmp_path / "templates" / "backend" / name
            template_dir.mkdir(parents=True, exist_ok=True)
            (template_dir / "main.tf").write_text(f"# template {name}\n")
        (tmp_path / "scripts").mkdir(exist_ok=True)
        return tmp_path

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> LifecycleSettings:
    return LifecycleSettings(
        project_root=tmp_path,
        kube_dir=tmp_path / ".kube",
        safety_delay_seconds=0,
        access_key="SCWXXXXXXXXXXXXXXXXX",
        secret_key="secret",
        project_id="project-1",
    )


@pytest.fixture
def dev_ctx(make_project: Callable[..., Path], settings: LifecycleSettings) -> EnvironmentContext:
    make_project("dev", templates=("python-dev", "go-dev"))
    return resolve_environment("dev", settings)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def cluster_factory(cluster: FakeCluster) -> Callable[[Path], FakeCluster]:
    return lambda kubeconfig: cluster


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provisioned(dev_ctx: EnvironmentContext, provider: FakeProvider) -> EnvironmentContext:
    """Mark both phases of dev as applied and write its kubeconfig."""
    for _, workdir in dev_ctx.workdirs():
        provider.state[workdir] = [f"scaleway_resource.{workdir.name}"]
    dev_ctx.kubeconfig_path.parent.mkdir(parents=True, exist_ok=True)
    dev_ctx.kubeconfig_path.write_text("apiVersion: v1\n")
    return dev_ctx


@pytest.fixture
def make_orchestrator(
    settings: LifecycleSettings,
    provider: FakeProvider,
    cluster_factory: Callable[[Path], FakeCluster],
    storage: FakeStorage,
    clock: FakeClock,
) -> Iterator[Callable[..., LifecycleOrchestrator]]:
    """Factory building an orchestrator over the fakes.

    Usage:
        orchestrator = make_orchestrator(answers=["dev", "yes"])
    """

    def _make(
        answers: Sequence[str] = (),
        probe: Callable[[str], bool] = lambda url: True,
        deployer: TemplateDeployer | None = None,
        drain_timeout: int = 120,
    ) -> LifecycleOrchestrator:
        return LifecycleOrchestrator(
            provider,
            cluster_factory,
            StateBackendManager(storage, settings.product),
            ResourceInventoryInspector(provider, cluster_factory),
            SafetyGateController(0, sleep=clock.sleep),
            BackupCoordinator(provider, cluster_factory, settings.backups_path),
            prompter=SequencePrompter(answers),
            archive_dir=settings.archives_path,
            hooks=HookRunner(settings.hooks_path),
            templates=deployer or TemplateDeployer(TemplateCatalog(settings.templates_path)),
            drain_timeout=drain_timeout,
            probe=probe,
            sleep=clock.sleep,
            clock=clock,
        )

    yield _make


@pytest.fixture
def temp_dir(tmp_path: Path) -> Iterator[Path]:
    """Provide a temporary directory for test files."""
    yield tmp_path
