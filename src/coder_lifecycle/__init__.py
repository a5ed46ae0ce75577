"""coder-lifecycle: Lifecycle orchestration for Coder environments on Scaleway.

This package provides:
- LifecycleOrchestrator: Two-phase setup and reverse-order teardown
- StateBackendManager: Idempotent remote state backend bootstrap
- ResourceInventoryInspector: What exists, with "unknown" kept distinct from "empty"
- SafetyGateController: Confirmation gates before destructive actions
- BackupCoordinator: Checksummed backup bundles with retention
- DatabaseResizer: Managed database node type changes
- Cost estimation: Static monthly estimates and resize deltas
- Errors: LifecycleError hierarchy with CLI exit codes

Example:
    >>> from coder_lifecycle import load_settings, resolve_environment
    >>> settings = load_settings()
    >>> ctx = resolve_environment("dev", settings)
    >>> ctx.layout.kind
    'two-phase'

See Also:
    - coder_lifecycle.cli: Command-line interface
    - coder_lifecycle.providers: Terraform, Kubernetes, S3 and scw adapters
    - coder_lifecycle.schemas: Pydantic models for every value passed around
"""

from __future__ import annotations

__version__ = "0.1.0"

from coder_lifecycle.backend import StateBackendManager
from coder_lifecycle.backup import BackupCoordinator
from coder_lifecycle.config import LifecycleSettings, load_settings
from coder_lifecycle.cost import estimate, resize_delta
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.errors import LifecycleError
from coder_lifecycle.inventory import ResourceInventoryInspector
from coder_lifecycle.orchestrator import LifecycleOrchestrator
from coder_lifecycle.resize import DatabaseResizer
from coder_lifecycle.safety import SafetyGateController

__all__: list[str] = [
    "__version__",
    "BackupCoordinator",
    "DatabaseResizer",
    "LifecycleError",
    "LifecycleOrchestrator",
    "LifecycleSettings",
    "ResourceInventoryInspector",
    "SafetyGateController",
    "StateBackendManager",
    "estimate",
    "load_settings",
    "resize_delta",
    "resolve_environment",
]
