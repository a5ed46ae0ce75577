"""Contracts for the external systems the orchestrator drives.

The orchestrator never shells out or calls an SDK directly; it talks to
these protocols. Concrete adapters live beside this module
(terraform, kubernetes, object_storage, scaleway) and tests substitute
in-memory fakes.

Key Components:
    InfrastructureProvider: plan/apply/destroy/output/state against IaC
    ClusterClient: queries and drain actions against the running cluster
    ObjectStorage: state bucket probe and creation
    DatabaseClient: managed database node-type changes
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class PlanArtifact(BaseModel):
    """A saved plan ready to be applied.

    Attributes:
        workdir: Terraform working directory.
        path: Saved plan file.
        destroy: True for a destroy plan.
        has_changes: False when the plan is a no-op.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    workdir: Path
    path: Path
    destroy: bool = False
    has_changes: bool = True


class ApplyResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    workdir: Path
    changed: bool
    output: str = ""


class Workload(BaseModel):
    """A running deployment in the cluster."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    namespace: str
    replicas: int = Field(default=0, ge=0)
    ready_replicas: int = Field(default=0, ge=0)


class DatabaseInstance(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str = ""
    node_type: str
    status: str


@runtime_checkable
class InfrastructureProvider(Protocol):
    """Plan/apply primitives against a declarative IaC backend.

    Applying a plan with no changes must be a no-op.
    """

    def plan(
        self,
        workdir: Path,
        variables: Mapping[str, str],
        plan_name: str = "tfplan",
    ) -> PlanArtifact: ...

    def apply(self, artifact: PlanArtifact) -> ApplyResult: ...

    def destroy_plan(self, workdir: Path, variables: Mapping[str, str]) -> PlanArtifact: ...

    def output(self, workdir: Path, key: str) -> str | None: ...

    def outputs(self, workdir: Path) -> dict[str, Any]: ...

    def state_list(self, workdir: Path) -> list[str]: ...

    def state_pull(self, workdir: Path) -> str: ...

    def state_push(self, workdir: Path, state_file: Path) -> None: ...


@runtime_checkable
class ClusterClient(Protocol):
    """Queries and actions against the running Kubernetes cluster."""

    def cluster_reachable(self) -> bool: ...

    def list_workloads(self, namespace: str) -> list[Workload]: ...

    def list_nodes(self) -> list[str]: ...

    def drain(self, node: str) -> None: ...

    def delete_workloads(self, namespace: str, grace_period: int) -> int: ...

    def count_pods(self, namespace: str) -> int: ...

    def export_resources(self, namespaces: list[str]) -> dict[str, str]: ...

    def dump_database(self, namespace: str, destination: Path) -> None: ...

    def list_volumes(self, namespace: str) -> list[str]: ...

    def archive_volume(
        self, namespace: str, claim: str, destination: Path, timeout: int
    ) -> None: ...

    def apply_manifests(self, paths: list[Path]) -> int: ...

    def restore_database(self, namespace: str, source: Path) -> None: ...


ClusterFactory = Callable[[Path], ClusterClient]
"""Builds a ClusterClient from a kubeconfig path."""


@runtime_checkable
class ObjectStorage(Protocol):
    """S3-compatible bucket operations.

    ``bucket_exists`` must raise BackendUnreachableError when the probe
    cannot complete; it never returns False for an unanswered probe.
    """

    def bucket_exists(self, name: str) -> bool: ...

    def create_bucket(self, name: str, region: str) -> None: ...


@runtime_checkable
class DatabaseClient(Protocol):
    def get_instance(self, region: str, instance_id: str) -> DatabaseInstance: ...

    def update_node_type(self, region: str, instance_id: str, node_type: str) -> None: ...


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
