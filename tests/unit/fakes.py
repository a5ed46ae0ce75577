"""In-memory fakes for the adapter protocols.

- FakeProvider: terraform state per working directory, records calls
- FakeCluster: nodes, workloads and pods of one cluster
- FakeStorage: object storage buckets
- FakeDatabase: a managed database walking through status updates
- FakeClock: monotonic clock advanced by its own sleep
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from coder_lifecycle.errors import (
    BackendUnreachableError,
    BackupComponentFailedError,
    ProviderApplyFailedError,
    ProviderDestroyFailedError,
    StateUnreadableError,
)
from coder_lifecycle.providers.base import (
    ApplyResult,
    DatabaseInstance,
    PlanArtifact,
    Workload,
)


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProvider:
    """InfrastructureProvider keeping terraform state in memory."""

    def __init__(self) -> None:
        self.state: dict[Path, list[str]] = {}
        self.outputs_by_dir: dict[Path, dict[str, Any]] = {}
        self.resources_on_apply: dict[Path, list[str]] = {}
        self.unreadable: set[Path] = set()
        self.failing: set[Path] = set()
        self.has_changes = True
        self.variables: dict[Path, dict[str, str]] = {}
        self.calls: list[tuple[str, Path]] = []

    def ops(self, name: str) -> list[Path]:
        return [workdir for op, workdir in self.calls if op == name]

    def _check_readable(self, workdir: Path) -> None:
        if workdir in self.unreadable:
            raise StateUnreadableError(str(workdir), "access denied")

    def plan(
        self,
        workdir: Path,
        variables: dict[str, str],
        plan_name: str = "tfplan",
    ) -> PlanArtifact:
        self.calls.append(("plan", workdir))
        self.variables[workdir] = dict(variables)
        return PlanArtifact(
            workdir=workdir, path=workdir / plan_name, has_changes=self.has_changes
        )

    def destroy_plan(self, workdir: Path, variables: dict[str, str]) -> PlanArtifact:
        self.calls.append(("destroy_plan", workdir))
        return PlanArtifact(workdir=workdir, path=workdir / "destroy-plan", destroy=True)

    def apply(self, artifact: PlanArtifact) -> ApplyResult:
        op = "destroy" if artifact.destroy else "apply"
        self.calls.append((op, artifact.workdir))
        if artifact.workdir in self.failing:
            error = ProviderDestroyFailedError if artifact.destroy else ProviderApplyFailedError
            raise error(f"{op} failed in {artifact.workdir.name}")
        if not artifact.has_changes:
            return ApplyResult(workdir=artifact.workdir, changed=False)
        if artifact.destroy:
            self.state[artifact.workdir] = []
        else:
            self.state[artifact.workdir] = list(
                self.resources_on_apply.get(
                    artifact.workdir, [f"scaleway_resource.{artifact.workdir.name}"]
                )
            )
        return ApplyResult(workdir=artifact.workdir, changed=True)

    def output(self, workdir: Path, key: str) -> str | None:
        value = self.outputs_by_dir.get(workdir, {}).get(key)
        return None if value is None else str(value)

    def outputs(self, workdir: Path) -> dict[str, Any]:
        self._check_readable(workdir)
        return dict(self.outputs_by_dir.get(workdir, {}))

    def state_list(self, workdir: Path) -> list[str]:
        self._check_readable(workdir)
        return list(self.state.get(workdir, []))

    def state_pull(self, workdir: Path) -> str:
        self._check_readable(workdir)
        return json.dumps({"version": 4, "resources": self.state.get(workdir, [])})

    def state_push(self, workdir: Path, state_file: Path) -> None:
        self.calls.append(("state_push", workdir))
        if workdir in self.failing:
            raise ProviderApplyFailedError(f"state push failed in {workdir.name}")
        self.state[workdir] = list(json.loads(state_file.read_text())["resources"])


class FakeCluster:
    """ClusterClient for one in-memory cluster."""

    def __init__(
        self,
        *,
        reachable: bool = True,
        workloads: Sequence[Workload] = (),
        nodes: Sequence[str] = ("node-1", "node-2"),
        pods: int = 0,
    ) -> None:
        self.reachable = reachable
        self.workloads = list(workloads)
        self.nodes = list(nodes)
        self.pods = pods
        self.pods_after_delete = 0
        self.volumes = ["coder-alice-workspace-home"]
        self.fail_dump = False
        self.fail_restore = False
        self.drained: list[str] = []
        self.deleted: list[tuple[str, int]] = []
        self.applied: list[str] = []
        self.restored_dumps: list[str] = []

    def cluster_reachable(self) -> bool:
        return self.reachable

    def list_workloads(self, namespace: str) -> list[Workload]:
        return list(self.workloads)

    def list_nodes(self) -> list[str]:
        return list(self.nodes)

    def drain(self, node: str) -> None:
        self.drained.append(node)

    def delete_workloads(self, namespace: str, grace_period: int) -> int:
        self.deleted.append((namespace, grace_period))
        count = len(self.workloads)
        self.workloads = []
        self.pods = self.pods_after_delete
        return count

    def count_pods(self, namespace: str) -> int:
        return self.pods

    def export_resources(self, namespaces: list[str]) -> dict[str, str]:
        return {f"{ns}/deployments.yaml": "kind: List\nitems: []\n" for ns in namespaces}

    def dump_database(self, namespace: str, destination: Path) -> None:
        if self.fail_dump:
            raise BackupComponentFailedError("database", "pg_dump exited with 1")
        destination.write_text("-- PostgreSQL database dump\n")

    def list_volumes(self, namespace: str) -> list[str]:
        return list(self.volumes)

    def archive_volume(
        self, namespace: str, claim: str, destination: Path, timeout: int
    ) -> None:
        destination.write_bytes(b"\x1f\x8b fake tar")

    def apply_manifests(self, paths: list[Path]) -> int:
        self.applied.extend(f"{p.parent.name}/{p.name}" for p in paths)
        return len(paths)

    def restore_database(self, namespace: str, source: Path) -> None:
        if self.fail_restore:
            raise BackupComponentFailedError("database-restore", "psql exited with 3")
        self.restored_dumps.append(source.read_text())


class FakeStorage:
    """ObjectStorage holding bucket names."""

    def __init__(self, buckets: Sequence[str] = (), reachable: bool = True) -> None:
        self.buckets = set(buckets)
        self.reachable = reachable
        self.calls: list[str] = []

    def bucket_exists(self, name: str) -> bool:
        self.calls.append(f"exists:{name}")
        if not self.reachable:
            raise BackendUnreachableError(name, "connection refused")
        return name in self.buckets

    def create_bucket(self, name: str, region: str) -> None:
        self.calls.append(f"create:{name}")
        self.buckets.add(name)


class FakeDatabase:
    """DatabaseClient replaying a status sequence after an upgrade."""

    def __init__(self, node_type: str = "DB-DEV-S") -> None:
        self.instance = DatabaseInstance(
            id="11111111-2222", name="coder-db", node_type=node_type, status="ready"
        )
        self.statuses_after_upgrade: list[str] = ["upgrading", "ready"]
        self.applied_type: str | None = None
        self.upgrades: list[str] = []

    def get_instance(self, region: str, instance_id: str) -> DatabaseInstance:
        if self.applied_type is not None and self.statuses_after_upgrade:
            status = self.statuses_after_upgrade.pop(0)
            node_type = self.applied_type if status == "ready" else self.instance.node_type
            self.instance = self.instance.model_copy(
                update={"status": status, "node_type": node_type}
            )
        return self.instance

    def update_node_type(self, region: str, instance_id: str, node_type: str) -> None:
        self.upgrades.append(node_type)
        self.applied_type = node_type


__all__: list[str] = [
    "FakeClock",
    "FakeCluster",
    "FakeDatabase",
    "FakeProvider",
    "FakeStorage",
]
