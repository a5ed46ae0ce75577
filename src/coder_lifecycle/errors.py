"""Exception hierarchy for coder-lifecycle.

All exceptions inherit from LifecycleError, so callers (the CLI in
particular) can catch every lifecycle failure with a single except clause
and read the ``exit_code`` attribute to decide the process exit status.

Exception Hierarchy:
    LifecycleError (base)
    ├── InvalidConfigurationError      # Bad input, caught before remote calls
    │   └── DeprecatedConfigurationError  # Backend file uses flat endpoint syntax
    ├── BackendUnreachableError        # Bucket existence probe could not complete
    ├── StateUnreadableError           # Remote state could not be read
    ├── ClusterUnreachableError        # Cluster API not reachable after provisioning
    ├── ConfirmationFailedError        # Safety gate rejected an input
    ├── OperationCancelled             # Operator declined (exit 0)
    ├── ActiveWorkspacesPresentError   # Live workspaces block a teardown
    ├── ProviderApplyFailedError       # terraform apply failed
    ├── ProviderDestroyFailedError     # terraform destroy failed
    ├── BackupError                    # Backup bundle could not be written
    │   └── BackupComponentFailedError # One sub-capture failed
    ├── HookFailedError                # Lifecycle hook script exited non-zero
    ├── TemplateDeployFailedError      # One or more templates failed to push
    ├── ResizeFailedError              # Database resize did not reach target
    ├── PhaseOrderError                # Application phase before infrastructure
    └── TeardownIncompleteError        # Resources remain after teardown

Exit Codes:
    0 - Success or clean cancellation (OperationCancelled)
    1 - Validation or execution failure
    3 - Teardown finished but verification incomplete (TeardownIncompleteError)

Example:
    >>> from coder_lifecycle.errors import InvalidConfigurationError
    >>> raise InvalidConfigurationError("unknown environment 'qa'")
    Traceback (most recent call last):
        ...
    InvalidConfigurationError: unknown environment 'qa'
"""

from __future__ import annotations


class LifecycleError(Exception):
    """Base exception for all lifecycle errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
        environment: Environment the failing operation targeted, if known.
        phase: Phase (infrastructure/application) that failed, if any.
        step: Lifecycle step that failed, if any.
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        environment: str | None = None,
        phase: str | None = None,
        step: str | None = None,
    ) -> None:
        self.environment = environment
        self.phase = phase
        self.step = step
        super().__init__(message)


class InvalidConfigurationError(LifecycleError):
    """Raised for bad operator input or an invalid project layout.

    Always raised before any remote system is touched; never retried.
    """

    exit_code: int = 1


class DeprecatedConfigurationError(InvalidConfigurationError):
    """Raised when a backend file uses the single flat ``endpoint`` key.

    Attributes:
        path: Path of the offending backend file.
    """

    def __init__(self, path: str, message: str | None = None, **context: str | None) -> None:
        self.path = path
        super().__init__(
            message
            or f"Deprecated backend syntax in {path}: replace 'endpoint = ...' "
            "with an 'endpoints = { s3 = ... }' block",
            **context,
        )


class BackendUnreachableError(LifecycleError):
    """Raised when the state bucket existence probe cannot complete.

    Provisioning never proceeds on a failed probe, so a bucket is never
    created twice because of a transient error.

    Attributes:
        bucket: Name of the bucket being probed.
        reason: Underlying failure description.
    """

    def __init__(self, bucket: str, reason: str, **context: str | None) -> None:
        self.bucket = bucket
        self.reason = reason
        super().__init__(f"Cannot reach state backend bucket {bucket}: {reason}", **context)


class StateUnreadableError(LifecycleError):
    """Raised when the remote state of a working directory cannot be read."""

    def __init__(self, workdir: str, reason: str, **context: str | None) -> None:
        self.workdir = workdir
        self.reason = reason
        super().__init__(f"Cannot read state in {workdir}: {reason}", **context)


class ClusterUnreachableError(LifecycleError):
    """Raised when the cluster API cannot be reached after provisioning."""


class ConfirmationFailedError(LifecycleError):
    """Raised when a safety gate input does not match exactly.

    Attributes:
        gate: Name of the gate that rejected the input.
    """

    def __init__(self, gate: str, message: str, **context: str | None) -> None:
        self.gate = gate
        super().__init__(message, **context)


class OperationCancelled(LifecycleError):
    """Raised when the operator declines or aborts before anything changed.

    Cancellation is not a failure: the CLI exits with code 0.
    """

    exit_code: int = 0


class ActiveWorkspacesPresentError(LifecycleError):
    """Raised when live workspaces would be killed by a teardown.

    Attributes:
        workspaces: Names of the running workspace deployments.
    """

    def __init__(self, workspaces: list[str], **context: str | None) -> None:
        self.workspaces = list(workspaces)
        super().__init__(
            f"{len(self.workspaces)} active workspace(s) running: "
            f"{', '.join(self.workspaces)}. Stop them first or pass --force",
            **context,
        )


class ProviderApplyFailedError(LifecycleError):
    """Raised when a plan or apply fails in the infrastructure provider.

    The provider's own error output is preserved verbatim in ``output``.
    """

    def __init__(self, message: str, output: str = "", **context: str | None) -> None:
        self.output = output
        super().__init__(message, **context)


class ProviderDestroyFailedError(ProviderApplyFailedError):
    """Raised when a destroy plan or destroy apply fails."""


class BackupError(LifecycleError):
    """Raised when a backup bundle cannot be created or read."""


class BackupComponentFailedError(BackupError):
    """Raised when a single backup sub-capture fails.

    Normally recorded as a manifest warning; only escalated when the
    caller requires a complete backup.

    Attributes:
        component: Name of the component that failed.
    """

    def __init__(self, component: str, reason: str, **context: str | None) -> None:
        self.component = component
        self.reason = reason
        super().__init__(f"Backup component '{component}' failed: {reason}", **context)


class RestoreFailedError(BackupError):
    """Raised when restoring one component of a backup bundle fails.

    Components restored before the failure stay restored.

    Attributes:
        component: Name of the component that failed.
    """

    def __init__(self, component: str, reason: str, **context: str | None) -> None:
        self.component = component
        self.reason = reason
        super().__init__(f"Restore of '{component}' failed: {reason}", **context)


class HookFailedError(LifecycleError):
    """Raised when a lifecycle hook script exits non-zero."""


class TemplateDeployFailedError(LifecycleError):
    """Raised when one or more templates fail to deploy.

    Attributes:
        failures: Mapping of template name to error output.
    """

    def __init__(self, failures: dict[str, str], **context: str | None) -> None:
        self.failures = dict(failures)
        super().__init__(
            f"Failed to deploy template(s): {', '.join(sorted(self.failures))}", **context
        )


class ResizeFailedError(LifecycleError):
    """Raised when a database resize does not reach the requested type."""


class PhaseOrderError(LifecycleError):
    """Raised when the application phase would run before the infrastructure phase."""


class TeardownIncompleteError(LifecycleError):
    """Raised when post-teardown verification cannot confirm zero resources.

    This is a warning-level outcome with its own exit code so automation
    can tell a hard failure from a run that needs a manual check.

    Attributes:
        remaining: Resource addresses still tracked in state.
        unverified_phases: Phases whose state could not be read.
    """

    exit_code: int = 3

    def __init__(
        self,
        remaining: list[str],
        unverified_phases: list[str] | None = None,
        **context: str | None,
    ) -> None:
        self.remaining = list(remaining)
        self.unverified_phases = list(unverified_phases or [])
        parts = []
        if self.remaining:
            parts.append(f"{len(self.remaining)} resource(s) remain")
        if self.unverified_phases:
            parts.append(f"could not verify phase(s): {', '.join(self.unverified_phases)}")
        super().__init__("Teardown incomplete: " + "; ".join(parts), **context)


__all__: list[str] = [
    "ActiveWorkspacesPresentError",
    "BackendUnreachableError",
    "BackupComponentFailedError",
    "BackupError",
    "ClusterUnreachableError",
    "ConfirmationFailedError",
    "DeprecatedConfigurationError",
    "HookFailedError",
    "InvalidConfigurationError",
    "LifecycleError",
    "OperationCancelled",
    "PhaseOrderError",
    "ProviderApplyFailedError",
    "ProviderDestroyFailedError",
    "ResizeFailedError",
    "RestoreFailedError",
    "StateUnreadableError",
    "TeardownIncompleteError",
    "TemplateDeployFailedError",
]
