"""Unit tests for the teardown protocol of LifecycleOrchestrator."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest
from fakes import FakeClock, FakeCluster, FakeProvider

from coder_lifecycle.config import LifecycleSettings
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.errors import (
    ActiveWorkspacesPresentError,
    BackupComponentFailedError,
    ConfirmationFailedError,
    OperationCancelled,
    ProviderDestroyFailedError,
    TeardownIncompleteError,
)
from coder_lifecycle.orchestrator import LifecycleOrchestrator
from coder_lifecycle.providers.base import Workload
from coder_lifecycle.safety import PRODUCTION_PHRASE
from coder_lifecycle.schemas.environment import EnvironmentContext, Phase
from coder_lifecycle.schemas.lifecycle import (
    LifecycleStep,
    TeardownOptions,
    TeardownState,
    TeardownStatus,
)

OrchestratorFactory = Callable[..., LifecycleOrchestrator]

CONFIRM_DEV = ["dev", "yes"]


def _workdirs(ctx: EnvironmentContext) -> tuple[Path, Path]:
    infra = ctx.layout.workdir(Phase.INFRASTRUCTURE)
    app = ctx.layout.workdir(Phase.APPLICATION)
    assert infra is not None and app is not None
    return infra, app


class TestTeardown:
    """Tests for a confirmed teardown run."""

    def test_destroys_application_before_infrastructure(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        report = make_orchestrator(answers=CONFIRM_DEV).teardown(provisioned, TeardownOptions())

        infra, app = _workdirs(provisioned)
        assert provider.ops("destroy") == [app, infra]
        assert report.status == TeardownStatus.COMPLETE
        assert report.destroyed_phases == (Phase.APPLICATION, Phase.INFRASTRUCTURE)
        assert report.states == (
            TeardownState.CONFIRMED,
            TeardownState.BACKED_UP,
            TeardownState.DRAINED,
            TeardownState.APP_DESTROYED,
            TeardownState.INFRA_DESTROYED,
            TeardownState.CLEANED,
            TeardownState.VALIDATED_ABSENT,
        )
        report.raise_for_status()

    def test_backup_taken_before_any_destroy(
        self,
        provisioned: EnvironmentContext,
        settings: LifecycleSettings,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        report = make_orchestrator(answers=CONFIRM_DEV).teardown(provisioned, TeardownOptions())
        assert report.backup_name is not None
        assert report.backup_name.startswith("pre-destroy-")
        bundle = settings.backups_path / report.backup_name
        assert (bundle / "data" / "database" / "database-dump.sql").is_file()
        assert (bundle / "templates").is_dir()

    def test_archives_state_and_summary(
        self,
        provisioned: EnvironmentContext,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        report = make_orchestrator(answers=CONFIRM_DEV).teardown(provisioned, TeardownOptions())

        assert report.archive_path is not None
        assert (report.archive_path / "final-infrastructure.tfstate").is_file()
        assert (report.archive_path / "final-application.tfstate").is_file()
        summary = json.loads((report.archive_path / "teardown-summary.json").read_text())
        assert summary["status"] == "complete"
        assert summary["environment"] == "dev"

    def test_cleanup_removes_credentials_and_plans(
        self,
        provisioned: EnvironmentContext,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        infra, _ = _workdirs(provisioned)
        (infra / "infra-tfplan").write_text("plan")
        (infra / "destroy-plan").write_text("plan")
        (infra / ".terraform").mkdir()

        make_orchestrator(answers=CONFIRM_DEV).teardown(provisioned, TeardownOptions())

        assert not provisioned.kubeconfig_path.exists()
        assert not (infra / "infra-tfplan").exists()
        assert not (infra / "destroy-plan").exists()
        assert (infra / ".terraform").is_dir()

    def test_drain_cordons_nodes_and_deletes_workloads(
        self,
        provisioned: EnvironmentContext,
        cluster: FakeCluster,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        make_orchestrator(answers=CONFIRM_DEV).teardown(provisioned, TeardownOptions())
        assert cluster.drained == ["node-1", "node-2"]
        assert cluster.deleted == [("coder", 60)]

    def test_drain_timeout_proceeds(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster: FakeCluster,
        clock: FakeClock,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        cluster.pods_after_delete = 3
        report = make_orchestrator(answers=CONFIRM_DEV, drain_timeout=30).teardown(
            provisioned, TeardownOptions()
        )
        assert sum(clock.sleeps) == 30
        assert len(provider.ops("destroy")) == 2
        assert report.status == TeardownStatus.COMPLETE

    def test_unreachable_cluster_skips_drain(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster: FakeCluster,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        cluster.reachable = False
        report = make_orchestrator(answers=CONFIRM_DEV).teardown(
            provisioned, TeardownOptions(backup=False)
        )
        assert TeardownState.DRAINED not in report.states
        assert cluster.drained == []
        assert len(provider.ops("destroy")) == 2

    def test_confirmed_empty_phase_is_skipped(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        infra, app = _workdirs(provisioned)
        provider.state[app] = []

        report = make_orchestrator(answers=CONFIRM_DEV).teardown(provisioned, TeardownOptions())

        assert provider.ops("destroy") == [infra]
        assert report.skipped_phases == (Phase.APPLICATION,)
        assert report.status == TeardownStatus.COMPLETE

    def test_legacy_layout_destroys_single_unit(
        self,
        make_project: Callable[..., Path],
        settings: LifecycleSettings,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        make_project("staging", layout="legacy")
        ctx = resolve_environment("staging", settings)
        provider.state[ctx.env_dir] = ["scaleway_k8s_cluster.main"]

        report = make_orchestrator(answers=["staging", "yes"]).teardown(
            ctx, TeardownOptions(backup=False)
        )

        assert provider.ops("destroy") == [ctx.env_dir]
        assert report.destroyed_phases == (Phase.INFRASTRUCTURE,)
        assert TeardownState.APP_DESTROYED not in report.states


class TestTeardownGates:
    """Tests for confirmation, workspace and backup gates."""

    def test_wrong_name_destroys_nothing(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        settings: LifecycleSettings,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        with pytest.raises(ConfirmationFailedError):
            make_orchestrator(answers=["staging", "yes"]).teardown(
                provisioned, TeardownOptions()
            )
        assert provider.ops("destroy_plan") == []
        assert not settings.backups_path.exists()

    def test_declining_cancels(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        with pytest.raises(OperationCancelled):
            make_orchestrator(answers=["dev", "no"]).teardown(provisioned, TeardownOptions())
        assert provider.ops("destroy") == []

    def test_prod_requires_production_phrase(
        self,
        make_project: Callable[..., Path],
        settings: LifecycleSettings,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        make_project("prod")
        ctx = resolve_environment("prod", settings)
        with pytest.raises(ConfirmationFailedError):
            make_orchestrator(answers=["prod", "yes"]).teardown(ctx, TeardownOptions())

        report = make_orchestrator(answers=["prod", PRODUCTION_PHRASE, "yes"]).teardown(
            ctx, TeardownOptions(backup=False)
        )
        assert report.status == TeardownStatus.COMPLETE

    def test_emergency_needs_no_answers(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        report = make_orchestrator(answers=[]).teardown(
            provisioned, TeardownOptions(emergency=True)
        )
        assert len(provider.ops("destroy")) == 2
        assert report.status == TeardownStatus.COMPLETE

    def test_active_workspaces_block_teardown(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster: FakeCluster,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        cluster.workloads = [Workload(name="coder-alice-workspace", namespace="coder", replicas=1)]
        with pytest.raises(ActiveWorkspacesPresentError) as exc_info:
            make_orchestrator(answers=CONFIRM_DEV).teardown(provisioned, TeardownOptions())
        assert exc_info.value.workspaces == ["coder-alice-workspace"]
        assert exc_info.value.step == LifecycleStep.INSPECT.value
        assert provider.ops("destroy") == []

    def test_force_overrides_active_workspaces(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster: FakeCluster,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        cluster.workloads = [Workload(name="coder-alice-workspace", namespace="coder", replicas=1)]
        report = make_orchestrator(answers=CONFIRM_DEV).teardown(
            provisioned, TeardownOptions(force=True)
        )
        assert len(provider.ops("destroy")) == 2
        assert report.status == TeardownStatus.COMPLETE

    def test_preserve_data_aborts_on_incomplete_backup(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster: FakeCluster,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        cluster.fail_dump = True
        with pytest.raises(BackupComponentFailedError):
            make_orchestrator(answers=CONFIRM_DEV).teardown(
                provisioned, TeardownOptions(preserve_data=True)
            )
        assert provider.ops("destroy") == []
        assert cluster.drained == []

    def test_incomplete_backup_is_a_warning_by_default(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster: FakeCluster,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        cluster.fail_dump = True
        report = make_orchestrator(answers=CONFIRM_DEV).teardown(provisioned, TeardownOptions())
        assert report.backup_name is not None
        assert len(provider.ops("destroy")) == 2


class TestTeardownFailures:
    """Tests for destroy failures and verification outcomes."""

    def test_application_destroy_failure_stops_without_force(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        infra, app = _workdirs(provisioned)
        provider.failing.add(app)

        with pytest.raises(ProviderDestroyFailedError) as exc_info:
            make_orchestrator(answers=CONFIRM_DEV).teardown(provisioned, TeardownOptions())

        assert exc_info.value.phase == Phase.APPLICATION.value
        assert ("destroy_plan", infra) not in provider.calls
        assert provider.state[infra]

    def test_force_continues_to_infrastructure_and_reports_remaining(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        infra, app = _workdirs(provisioned)
        provider.failing.add(app)

        report = make_orchestrator(answers=CONFIRM_DEV).teardown(
            provisioned, TeardownOptions(force=True)
        )

        assert provider.state[infra] == []
        assert report.status == TeardownStatus.INCOMPLETE
        assert report.remaining_resources == ("application:scaleway_resource.coder",)
        assert [w.step for w in report.steps if not w.ok] == [LifecycleStep.APP_DESTROY]
        with pytest.raises(TeardownIncompleteError) as exc_info:
            report.raise_for_status()
        assert exc_info.value.exit_code == 3

    def test_infrastructure_destroy_failure_propagates(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        infra, _ = _workdirs(provisioned)
        provider.failing.add(infra)
        with pytest.raises(ProviderDestroyFailedError) as exc_info:
            make_orchestrator(answers=CONFIRM_DEV).teardown(
                provisioned, TeardownOptions(force=True)
            )
        assert exc_info.value.step == LifecycleStep.INFRA_DESTROY.value

    def test_unreadable_state_is_unverified_not_complete(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        infra, _ = _workdirs(provisioned)
        provider.unreadable.add(infra)

        report = make_orchestrator(answers=CONFIRM_DEV).teardown(
            provisioned, TeardownOptions(backup=False)
        )

        assert report.status == TeardownStatus.UNVERIFIED
        assert report.unverified_phases == (Phase.INFRASTRUCTURE,)
        assert TeardownState.VALIDATED_ABSENT not in report.states
        with pytest.raises(TeardownIncompleteError):
            report.raise_for_status()


class TestTeardownDryRun:
    """Tests for teardown with dry_run."""

    def test_plans_destroys_in_teardown_order(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        settings: LifecycleSettings,
        make_orchestrator: OrchestratorFactory,
    ) -> None:
        report = make_orchestrator(answers=[]).teardown(
            provisioned, TeardownOptions(dry_run=True)
        )

        infra, app = _workdirs(provisioned)
        assert provider.ops("destroy_plan") == [app, infra]
        assert provider.ops("destroy") == []
        assert report.status == TeardownStatus.PLANNED
        assert provisioned.kubeconfig_path.exists()
        assert not settings.backups_path.exists()
        report.raise_for_status()
