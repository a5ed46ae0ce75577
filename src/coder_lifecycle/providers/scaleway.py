"""Scaleway managed database adapter (``scw rdb``)."""

from __future__ import annotations

import json
import subprocess

import structlog

from coder_lifecycle.errors import ResizeFailedError
from coder_lifecycle.providers.base import DatabaseInstance

logger = structlog.get_logger(__name__)


class ScalewayDatabaseClient:
    """DatabaseClient using the ``scw`` CLI with JSON output."""

    def __init__(self, binary: str = "scw", timeout: float = 60.0) -> None:
        self._binary = binary
        self._timeout = timeout

    def _run(self, *args: str) -> str:
        cmd = [self._binary, "rdb", "instance", *args, "-o", "json"]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self._timeout,
            )
        except subprocess.CalledProcessError as e:
            raise ResizeFailedError(f"scw {' '.join(args[:1])} failed: {e.stderr.strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise ResizeFailedError(f"scw {' '.join(args[:1])} timed out") from e
        return result.stdout

    def get_instance(self, region: str, instance_id: str) -> DatabaseInstance:
        raw = json.loads(self._run("get", instance_id, f"region={region}"))
        return DatabaseInstance(
            id=raw["id"],
            name=raw.get("name", ""),
            node_type=raw["node_type"],
            status=raw["status"],
        )

    def update_node_type(self, region: str, instance_id: str, node_type: str) -> None:
        self._run("upgrade", instance_id, f"node-type={node_type}", f"region={region}")
        logger.info("database_upgrade_requested", instance_id=instance_id, node_type=node_type)


__all__: list[str] = ["ScalewayDatabaseClient"]
