"""Kubernetes adapter for the ClusterClient contract.

Queries and drain actions go through the kubernetes python client, built
from the environment's own kubeconfig file rather than the process-wide
default configuration. The data captures and the database restore that
must run inside the cluster (pg_dump, psql, volume tar) are launched with
``kubectl run``; exported manifests are re-applied with ``kubectl apply``.

Example:
    >>> cluster = KubernetesCluster(Path("~/.kube/config-coder-dev").expanduser())
    >>> cluster.cluster_reachable()
    True
"""

from __future__ import annotations

import base64
import json
import subprocess
import tempfile
import time
from contextlib import ExitStack
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

import structlog
import yaml

from coder_lifecycle.errors import BackupComponentFailedError
from coder_lifecycle.polling import wait_for_condition
from coder_lifecycle.providers.base import Workload

if TYPE_CHECKING:
    from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api

logger = structlog.get_logger(__name__)

DATABASE_SECRETS: tuple[str, ...] = ("coder-db-secret", "coder-database")
PG_DUMP_IMAGE = "postgres:15"
ARCHIVE_IMAGE = "alpine:3.20"

_NAMESPACED_EXPORTS: tuple[tuple[str, str, str], ...] = (
    ("apps", "list_namespaced_deployment", "deployments"),
    ("core", "list_namespaced_service", "services"),
    ("core", "list_namespaced_config_map", "configmaps"),
    ("core", "list_namespaced_secret", "secrets"),
    ("core", "list_namespaced_persistent_volume_claim", "pvc"),
    ("networking", "list_namespaced_ingress", "ingresses"),
)
_CLUSTER_EXPORTS: tuple[tuple[str, str, str], ...] = (
    ("core", "list_node", "nodes"),
    ("storage", "list_storage_class", "storageclasses"),
    ("rbac", "list_cluster_role", "clusterroles"),
    ("rbac", "list_cluster_role_binding", "clusterrolebindings"),
)

# Exported file stem -> (apiVersion, kind) of its items
_MANIFEST_KINDS: dict[str, tuple[str, str]] = {
    "secrets": ("v1", "Secret"),
    "configmaps": ("v1", "ConfigMap"),
    "pvc": ("v1", "PersistentVolumeClaim"),
    "services": ("v1", "Service"),
    "deployments": ("apps/v1", "Deployment"),
    "ingresses": ("networking.k8s.io/v1", "Ingress"),
}
_SERVER_METADATA: tuple[str, ...] = (
    "uid",
    "resourceVersion",
    "creationTimestamp",
    "generation",
    "managedFields",
    "selfLink",
)


def _restorable(item: dict[str, Any], api_version: str, kind: str) -> dict[str, Any]:
    """Strip an exported object down to what ``kubectl apply`` can re-create."""
    obj = {k: v for k, v in item.items() if k != "status"}
    obj["apiVersion"] = obj.get("apiVersion") or api_version
    obj["kind"] = obj.get("kind") or kind
    metadata = {k: v for k, v in (obj.get("metadata") or {}).items() if k not in _SERVER_METADATA}
    annotations = {
        k: v
        for k, v in (metadata.get("annotations") or {}).items()
        if k != "kubectl.kubernetes.io/last-applied-configuration"
    }
    if annotations:
        metadata["annotations"] = annotations
    else:
        metadata.pop("annotations", None)
    obj["metadata"] = metadata
    if kind == "Service":
        spec = dict(obj.get("spec") or {})
        for key in ("clusterIP", "clusterIPs"):
            spec.pop(key, None)
        obj["spec"] = spec
    return obj


class KubernetesCluster:
    """ClusterClient backed by the kubernetes python client.

    Args:
        kubeconfig: Path to the environment kubeconfig.
        kubectl: kubectl executable used for in-cluster data captures.
        request_timeout: API request timeout in seconds.
    """

    def __init__(
        self,
        kubeconfig: Path,
        kubectl: str = "kubectl",
        request_timeout: int = 10,
    ) -> None:
        self._kubeconfig = kubeconfig
        self._kubectl = kubectl
        self._request_timeout = request_timeout
        self._api_client: ApiClient | None = None

    def _client(self) -> ApiClient:
        if self._api_client is None:
            from kubernetes import config as k8s_config

            self._api_client = k8s_config.new_client_from_config(
                config_file=str(self._kubeconfig)
            )
        return self._api_client

    def _api(self, group: str) -> Any:
        from kubernetes import client

        apis = {
            "core": client.CoreV1Api,
            "apps": client.AppsV1Api,
            "networking": client.NetworkingV1Api,
            "storage": client.StorageV1Api,
            "rbac": client.RbacAuthorizationV1Api,
        }
        return apis[group](self._client())

    @property
    def core(self) -> CoreV1Api:
        return self._api("core")

    @property
    def apps(self) -> AppsV1Api:
        return self._api("apps")

    def cluster_reachable(self) -> bool:
        if not self._kubeconfig.is_file():
            logger.debug("kubeconfig_missing", path=str(self._kubeconfig))
            return False
        try:
            self.core.list_node(limit=1, _request_timeout=self._request_timeout)
        except Exception as e:  # noqa: BLE001
            logger.debug("cluster_unreachable", error=str(e))
            return False
        return True

    def list_workloads(self, namespace: str) -> list[Workload]:
        from kubernetes.client import ApiException

        try:
            deployments = self.apps.list_namespaced_deployment(
                namespace, _request_timeout=self._request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                return []
            raise
        return [
            Workload(
                name=item.metadata.name,
                namespace=namespace,
                replicas=item.spec.replicas or 0,
                ready_replicas=(item.status.ready_replicas or 0) if item.status else 0,
            )
            for item in deployments.items
        ]

    def list_nodes(self) -> list[str]:
        nodes = self.core.list_node(_request_timeout=self._request_timeout)
        return [item.metadata.name for item in nodes.items]

    def drain(self, node: str) -> None:
        """Cordon a node so no new pods are scheduled on it."""
        self.core.patch_node(node, {"spec": {"unschedulable": True}})
        logger.info("node_cordoned", node=node)

    def delete_workloads(self, namespace: str, grace_period: int) -> int:
        from kubernetes import client

        deleted = 0
        for workload in self.list_workloads(namespace):
            self.apps.delete_namespaced_deployment(
                workload.name,
                namespace,
                body=client.V1DeleteOptions(grace_period_seconds=grace_period),
            )
            deleted += 1
        logger.info("workloads_deleted", namespace=namespace, count=deleted)
        return deleted

    def count_pods(self, namespace: str) -> int:
        pods = self.core.list_namespaced_pod(namespace, _request_timeout=self._request_timeout)
        return len(pods.items)

    def _dump(self, items: Any) -> str:
        data = self._client().sanitize_for_serialization(items)
        return yaml.safe_dump(data, sort_keys=False)

    def export_resources(self, namespaces: list[str]) -> dict[str, str]:
        """Export resources as YAML keyed by relative file path.

        Per-kind failures are logged and skipped so one forbidden kind does
        not lose the rest of the export.
        """
        from kubernetes.client import ApiException

        exported: dict[str, str] = {}
        for namespace in namespaces:
            for group, method, kind in _NAMESPACED_EXPORTS:
                try:
                    items = getattr(self._api(group), method)(namespace)
                except ApiException as e:
                    logger.warning("export_failed", namespace=namespace, kind=kind, error=e.reason)
                    continue
                exported[f"{namespace}/{kind}.yaml"] = self._dump(items)

        for group, method, kind in _CLUSTER_EXPORTS:
            try:
                items = getattr(self._api(group), method)()
            except ApiException as e:
                logger.warning("export_failed", kind=kind, error=e.reason)
                continue
            exported[f"cluster/{kind}.yaml"] = self._dump(items)
        return exported

    def _database_credentials(self, namespace: str) -> dict[str, str]:
        from kubernetes.client import ApiException

        for secret_name in DATABASE_SECRETS:
            try:
                secret = self.core.read_namespaced_secret(secret_name, namespace)
            except ApiException as e:
                if e.status == 404:
                    continue
                raise
            data = secret.data or {}
            return {
                key: base64.b64decode(value).decode()
                for key, value in data.items()
                if key in ("host", "port", "username", "password", "database")
            }
        raise BackupComponentFailedError(
            "database", f"no database secret found ({', '.join(DATABASE_SECRETS)})"
        )

    def _kubectl_run(
        self,
        name: str,
        namespace: str,
        image: str,
        command: list[str],
        destination: Path | None,
        timeout: int,
        *,
        env: dict[str, str] | None = None,
        overrides: dict[str, Any] | None = None,
        source: Path | None = None,
    ) -> None:
        """Run a one-shot pod to completion.

        ``source`` is fed to the pod's stdin and its stdout is streamed into
        ``destination``; either may be None.
        """
        cmd = [
            self._kubectl,
            f"--kubeconfig={self._kubeconfig}",
            "run",
            name,
            f"--namespace={namespace}",
            f"--image={image}",
            "--restart=Never",
            "--rm",
            "-i",
            "--quiet",
        ]
        for key, value in (env or {}).items():
            cmd.append(f"--env={key}={value}")
        if overrides is not None:
            cmd.append(f"--overrides={json.dumps(overrides)}")
        cmd.extend(["--", *command])

        with ExitStack() as stack:
            out: IO[bytes] | int = subprocess.DEVNULL
            if destination is not None:
                destination.parent.mkdir(parents=True, exist_ok=True)
                out = stack.enter_context(destination.open("wb"))
            stdin: IO[bytes] | int = subprocess.DEVNULL
            if source is not None:
                stdin = stack.enter_context(source.open("rb"))
            err = stack.enter_context(tempfile.TemporaryFile())
            proc = subprocess.Popen(cmd, stdin=stdin, stdout=out, stderr=err)
            finished = wait_for_condition(
                lambda: proc.poll() is not None,
                timeout=timeout,
                interval=2,
                description=f"pod {name}",
                raise_on_timeout=False,
            )
            if not finished:
                proc.kill()
                proc.wait()
                if destination is not None:
                    destination.unlink(missing_ok=True)
                raise BackupComponentFailedError(name, f"timed out after {timeout}s")
            err.seek(0)
            stderr = err.read().decode(errors="replace")

        if proc.returncode != 0:
            if destination is not None:
                destination.unlink(missing_ok=True)
            raise BackupComponentFailedError(name, stderr.strip() or f"exit {proc.returncode}")

    def dump_database(self, namespace: str, destination: Path) -> None:
        creds = self._database_credentials(namespace)
        missing = [k for k in ("host", "username", "password", "database") if k not in creds]
        if missing:
            raise BackupComponentFailedError(
                "database", f"secret lacks key(s): {', '.join(missing)}"
            )

        self._kubectl_run(
            f"pg-dump-{int(time.time())}",
            namespace,
            PG_DUMP_IMAGE,
            [
                "pg_dump",
                "-h",
                creds["host"],
                "-p",
                creds.get("port", "5432"),
                "-U",
                creds["username"],
                "-d",
                creds["database"],
                "--no-owner",
                "--no-privileges",
            ],
            destination,
            timeout=600,
            env={"PGPASSWORD": creds["password"]},
        )

    def list_volumes(self, namespace: str) -> list[str]:
        claims = self.core.list_namespaced_persistent_volume_claim(namespace)
        return [item.metadata.name for item in claims.items]

    def archive_volume(self, namespace: str, claim: str, destination: Path, timeout: int) -> None:
        pod_name = f"backup-{claim}"[:63].rstrip("-")
        overrides = {
            "apiVersion": "v1",
            "spec": {
                "containers": [
                    {
                        "name": pod_name,
                        "image": ARCHIVE_IMAGE,
                        "command": ["tar", "czf", "-", "-C", "/data", "."],
                        "stdin": True,
                        "volumeMounts": [{"name": "data", "mountPath": "/data", "readOnly": True}],
                    }
                ],
                "volumes": [{"name": "data", "persistentVolumeClaim": {"claimName": claim}}],
            },
        }
        self._kubectl_run(
            pod_name,
            namespace,
            ARCHIVE_IMAGE,
            ["tar", "czf", "-", "-C", "/data", "."],
            destination,
            timeout,
            overrides=overrides,
        )

    def apply_manifests(self, paths: list[Path]) -> int:
        """Apply exported resource lists with ``kubectl apply``, in order.

        The file stem names the kind (``deployments.yaml``). Server-populated
        fields are dropped so the objects can be re-created in a new cluster.

        Returns:
            Number of objects applied.
        """
        applied = 0
        for path in paths:
            label = f"{path.parent.name}/{path.name}"
            if path.stem not in _MANIFEST_KINDS:
                raise BackupComponentFailedError("kubernetes", f"{label}: unsupported kind")
            api_version, kind = _MANIFEST_KINDS[path.stem]
            exported = yaml.safe_load(path.read_text()) or {}
            items = [
                _restorable(item, api_version, kind) for item in exported.get("items") or []
            ]
            if not items:
                continue
            document = yaml.safe_dump({"apiVersion": "v1", "kind": "List", "items": items})
            result = subprocess.run(
                [self._kubectl, f"--kubeconfig={self._kubeconfig}", "apply", "-f", "-"],
                input=document,
                capture_output=True,
                text=True,
                check=False,
            )
            if result.returncode != 0:
                raise BackupComponentFailedError("kubernetes", f"{label}: {result.stderr.strip()}")
            applied += len(items)
            logger.info("manifests_applied", file=label, count=len(items))
        return applied

    def restore_database(self, namespace: str, source: Path) -> None:
        """Load a plain SQL dump with psql in a one-shot pod."""
        creds = self._database_credentials(namespace)
        missing = [k for k in ("host", "username", "password", "database") if k not in creds]
        if missing:
            raise BackupComponentFailedError(
                "database", f"secret lacks key(s): {', '.join(missing)}"
            )

        self._kubectl_run(
            f"database-restore-{int(time.time())}",
            namespace,
            PG_DUMP_IMAGE,
            [
                "psql",
                "-h",
                creds["host"],
                "-p",
                creds.get("port", "5432"),
                "-U",
                creds["username"],
                "-d",
                creds["database"],
                "-v",
                "ON_ERROR_STOP=1",
                "-f",
                "/dev/stdin",
            ],
            None,
            timeout=1800,
            env={"PGPASSWORD": creds["password"]},
            source=source,
        )
        logger.info("database_restored", namespace=namespace, dump=str(source))


def kubernetes_cluster_factory(kubeconfig: Path) -> KubernetesCluster:
    """ClusterFactory for real clusters."""
    return KubernetesCluster(kubeconfig)


__all__: list[str] = ["KubernetesCluster", "kubernetes_cluster_factory"]
