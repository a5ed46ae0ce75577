"""Resource inventory inspection.

The inspector is the single source of truth for "what exists": the
orchestrator never infers resource existence any other way. A state that
cannot be read yields an UNKNOWN snapshot, never an empty one.

Example:
    >>> inspector = ResourceInventoryInspector(provider, cluster_factory)
    >>> snapshot = inspector.inspect(ctx, Phase.INFRASTRUCTURE)
    >>> snapshot.status
    <SnapshotStatus.PRESENT: 'present'>
"""

from __future__ import annotations

import re

import structlog

from coder_lifecycle.errors import StateUnreadableError
from coder_lifecycle.providers.base import ClusterFactory, InfrastructureProvider
from coder_lifecycle.schemas.environment import EnvironmentContext, Phase
from coder_lifecycle.schemas.inventory import (
    EnvironmentInventory,
    ResourceSnapshot,
    SnapshotStatus,
    WorkspaceActivity,
    WorkspaceStatus,
)

logger = structlog.get_logger(__name__)

WORKSPACE_PATTERN = re.compile(r"coder-.*workspace")


class ResourceInventoryInspector:
    """Query provisioned resources and live workspace activity.

    Args:
        provider: Infrastructure provider used to list state.
        cluster_factory: Builds a cluster client from a kubeconfig path.
        workspace_namespace: Namespace holding workspace deployments.
    """

    def __init__(
        self,
        provider: InfrastructureProvider,
        cluster_factory: ClusterFactory,
        workspace_namespace: str = "coder",
    ) -> None:
        self._provider = provider
        self._cluster_factory = cluster_factory
        self._namespace = workspace_namespace

    def inspect(self, ctx: EnvironmentContext, phase: Phase) -> ResourceSnapshot:
        """Read the state of one phase.

        A legacy layout has no separate application unit; its application
        phase is reported EMPTY since nothing is tracked under it.
        """
        workdir = ctx.layout.workdir(phase)
        if workdir is None:
            return ResourceSnapshot(
                environment=ctx.name, phase=phase, status=SnapshotStatus.EMPTY
            )

        try:
            resources = self._provider.state_list(workdir)
        except StateUnreadableError as e:
            logger.warning(
                "state_unreadable",
                environment=ctx.name.value,
                phase=phase.value,
                reason=e.reason,
            )
            return ResourceSnapshot(
                environment=ctx.name,
                phase=phase,
                status=SnapshotStatus.UNKNOWN,
                reason=e.reason,
            )

        status = SnapshotStatus.PRESENT if resources else SnapshotStatus.EMPTY
        logger.info(
            "phase_inspected",
            environment=ctx.name.value,
            phase=phase.value,
            status=status.value,
            count=len(resources),
        )
        return ResourceSnapshot(
            environment=ctx.name,
            phase=phase,
            status=status,
            resources=tuple(resources),
        )

    def inspect_workspaces(self, ctx: EnvironmentContext) -> WorkspaceActivity:
        """Report running workspace deployments, or UNKNOWN if unreachable."""
        if not ctx.kubeconfig_path.is_file():
            return WorkspaceActivity(
                status=WorkspaceStatus.UNKNOWN,
                reason=f"kubeconfig not found: {ctx.kubeconfig_path}",
            )

        cluster = self._cluster_factory(ctx.kubeconfig_path)
        if not cluster.cluster_reachable():
            logger.warning("cluster_unreachable", environment=ctx.name.value)
            return WorkspaceActivity(status=WorkspaceStatus.UNKNOWN, reason="cluster unreachable")

        try:
            workloads = cluster.list_workloads(self._namespace)
        except Exception as e:  # noqa: BLE001
            logger.warning("workload_query_failed", environment=ctx.name.value, error=str(e))
            return WorkspaceActivity(status=WorkspaceStatus.UNKNOWN, reason=str(e))

        active = tuple(
            w.name for w in workloads if WORKSPACE_PATTERN.search(w.name) and w.replicas > 0
        )
        logger.info("workspaces_inspected", environment=ctx.name.value, active=len(active))
        return WorkspaceActivity(status=WorkspaceStatus.KNOWN, workspaces=active)

    def inspect_environment(self, ctx: EnvironmentContext) -> EnvironmentInventory:
        snapshots = tuple(self.inspect(ctx, phase) for phase in ctx.layout.phases)
        return EnvironmentInventory(
            environment=ctx.name,
            layout=ctx.layout.kind,
            snapshots=snapshots,
            workspaces=self.inspect_workspaces(ctx),
        )


__all__: list[str] = ["WORKSPACE_PATTERN", "ResourceInventoryInspector"]
