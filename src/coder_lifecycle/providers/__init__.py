"""Adapters for the external systems driven by the lifecycle orchestrator."""

from __future__ import annotations

from coder_lifecycle.providers.base import (
    ApplyResult,
    ClusterClient,
    ClusterFactory,
    DatabaseClient,
    DatabaseInstance,
    InfrastructureProvider,
    ObjectStorage,
    PlanArtifact,
    Workload,
)

__all__: list[str] = [
    "ApplyResult",
    "ClusterClient",
    "ClusterFactory",
    "DatabaseClient",
    "DatabaseInstance",
    "InfrastructureProvider",
    "ObjectStorage",
    "PlanArtifact",
    "Workload",
]
