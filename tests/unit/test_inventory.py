"""Unit tests for resource inventory inspection."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from fakes import FakeCluster, FakeProvider

from coder_lifecycle.config import LifecycleSettings
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.inventory import ResourceInventoryInspector
from coder_lifecycle.providers.base import Workload
from coder_lifecycle.schemas.environment import EnvironmentContext, Phase
from coder_lifecycle.schemas.inventory import SnapshotStatus, WorkspaceStatus


class TestInspect:
    """Tests for ResourceInventoryInspector.inspect."""

    def test_present_phase(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster_factory: Callable[[Path], FakeCluster],
    ) -> None:
        snapshot = ResourceInventoryInspector(provider, cluster_factory).inspect(
            provisioned, Phase.INFRASTRUCTURE
        )
        assert snapshot.status == SnapshotStatus.PRESENT
        assert snapshot.count == 1

    def test_empty_phase(
        self,
        dev_ctx: EnvironmentContext,
        provider: FakeProvider,
        cluster_factory: Callable[[Path], FakeCluster],
    ) -> None:
        snapshot = ResourceInventoryInspector(provider, cluster_factory).inspect(
            dev_ctx, Phase.APPLICATION
        )
        assert snapshot.status == SnapshotStatus.EMPTY
        assert snapshot.confirmed_empty
        assert snapshot.count == 0

    def test_unreadable_state_is_unknown_not_empty(
        self,
        dev_ctx: EnvironmentContext,
        provider: FakeProvider,
        cluster_factory: Callable[[Path], FakeCluster],
    ) -> None:
        infra = dev_ctx.layout.workdir(Phase.INFRASTRUCTURE)
        assert infra is not None
        provider.unreadable.add(infra)

        snapshot = ResourceInventoryInspector(provider, cluster_factory).inspect(
            dev_ctx, Phase.INFRASTRUCTURE
        )

        assert snapshot.status == SnapshotStatus.UNKNOWN
        assert snapshot.count is None
        assert not snapshot.confirmed_empty
        assert snapshot.reason == "access denied"

    def test_legacy_application_phase_is_empty(
        self,
        make_project: Callable[..., Path],
        settings: LifecycleSettings,
        provider: FakeProvider,
        cluster_factory: Callable[[Path], FakeCluster],
    ) -> None:
        make_project("prod", layout="legacy")
        ctx = resolve_environment("prod", settings)
        snapshot = ResourceInventoryInspector(provider, cluster_factory).inspect(
            ctx, Phase.APPLICATION
        )
        assert snapshot.status == SnapshotStatus.EMPTY
        assert provider.calls == []


class TestInspectWorkspaces:
    """Tests for ResourceInventoryInspector.inspect_workspaces."""

    def test_counts_running_workspace_deployments(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster: FakeCluster,
        cluster_factory: Callable[[Path], FakeCluster],
    ) -> None:
        cluster.workloads = [
            Workload(name="coder-alice-workspace", namespace="coder", replicas=1),
            Workload(name="coder-bob-workspace", namespace="coder", replicas=0),
            Workload(name="coder", namespace="coder", replicas=2),
        ]
        activity = ResourceInventoryInspector(provider, cluster_factory).inspect_workspaces(
            provisioned
        )
        assert activity.status == WorkspaceStatus.KNOWN
        assert activity.workspaces == ("coder-alice-workspace",)
        assert activity.active

    def test_missing_kubeconfig_is_unknown(
        self,
        dev_ctx: EnvironmentContext,
        provider: FakeProvider,
        cluster_factory: Callable[[Path], FakeCluster],
    ) -> None:
        activity = ResourceInventoryInspector(provider, cluster_factory).inspect_workspaces(
            dev_ctx
        )
        assert activity.status == WorkspaceStatus.UNKNOWN
        assert activity.count is None
        assert not activity.active

    def test_unreachable_cluster_is_unknown(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster: FakeCluster,
        cluster_factory: Callable[[Path], FakeCluster],
    ) -> None:
        cluster.reachable = False
        activity = ResourceInventoryInspector(provider, cluster_factory).inspect_workspaces(
            provisioned
        )
        assert activity.status == WorkspaceStatus.UNKNOWN
        assert activity.reason == "cluster unreachable"

    def test_environment_inventory_has_snapshot_per_phase(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        cluster_factory: Callable[[Path], FakeCluster],
    ) -> None:
        inventory = ResourceInventoryInspector(provider, cluster_factory).inspect_environment(
            provisioned
        )
        assert inventory.layout == "two-phase"
        assert [s.phase for s in inventory.snapshots] == [Phase.INFRASTRUCTURE, Phase.APPLICATION]
        application = inventory.snapshot(Phase.APPLICATION)
        assert application is not None
        assert application.status == SnapshotStatus.PRESENT
