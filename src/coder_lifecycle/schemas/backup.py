"""Backup bundle schemas.

Key Components:
    BackupKind: Why a backup was taken (drives the default name prefix)
    BackupOptions: What to capture
    BackupContents: Per-component flags recorded in the manifest
    BackupManifest: ``backup-manifest.json``, written last
    Backup: A finished, immutable bundle on disk
    RestoreOptions: What to restore from a bundle
    RestoreReport: Outcome of a restore run
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

MANIFEST_FILENAME = "backup-manifest.json"


class BackupKind(str, Enum):
    BACKUP = "backup"
    PRE_DESTROY = "pre-destroy"
    PRE_RESIZE = "pre-resize"


class BackupOptions(BaseModel):
    """Options controlling a backup run.

    Attributes:
        include_data: Capture the database dump and workspace volumes.
        include_templates: Copy the workspace templates.
        include_config: Copy project scripts/modules/docs.
        name: Explicit bundle name; derived from kind, time and environment if unset.
        kind: Reason for the backup.
        retention_days: Retention recorded in the manifest.
        require_complete: Escalate any component failure to an error.
        compress: Replace the bundle directory with a ``.tar.gz``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    include_data: bool = Field(default=False)
    include_templates: bool = Field(default=False)
    include_config: bool = Field(default=True)
    name: str | None = Field(default=None)
    kind: BackupKind = Field(default=BackupKind.BACKUP)
    retention_days: int = Field(default=30, ge=1)
    require_complete: bool = Field(default=False)
    compress: bool = Field(default=False)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if not value or "/" in value or value.startswith("."):
            raise ValueError(f"invalid backup name: {value!r}")
        return value


class BackupContents(BaseModel):
    """Which components were captured."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    infrastructure: bool = False
    kubernetes: bool = False
    database: bool = False
    workspace_data: bool = False
    configuration: bool = False
    templates: bool = False


class BackupManifest(BaseModel):
    """Content of ``backup-manifest.json``.

    The checksum covers every file of the bundle except the manifest itself.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_name: str
    environment: str
    created_at: datetime
    created_by: str
    hostname: str
    backup_size: int = Field(..., ge=0, description="Total size in bytes of captured files")
    retention_days: int
    contents: BackupContents
    warnings: tuple[str, ...] = Field(default_factory=tuple)
    restore_instructions: str
    checksum: str


class Backup(BaseModel):
    """A finished backup bundle.

    Attributes:
        name: Bundle name.
        path: Bundle directory, or archive path when compressed.
        manifest: The manifest as written.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    path: Path
    manifest: BackupManifest

    @property
    def complete(self) -> bool:
        return not self.manifest.warnings


class RestoreComponent(str, Enum):
    """Restorable bundle components, in restore order.

    Values match the ``BackupContents`` flag of the component.
    """

    INFRASTRUCTURE = "infrastructure"
    KUBERNETES = "kubernetes"
    DATABASE = "database"


class RestoreOptions(BaseModel):
    """Options controlling a restore run.

    Attributes:
        components: Components to restore; empty restores every captured one.
        emergency: Bypass the confirmation gates.
        force: Skip the abort window after confirmation.
        dry_run: Verify the bundle and report the plan without changing anything.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    components: tuple[RestoreComponent, ...] = Field(default_factory=tuple)
    emergency: bool = Field(default=False)
    force: bool = Field(default=False)
    dry_run: bool = Field(default=False)


class RestoreReport(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_name: str
    environment: str
    dry_run: bool = False
    planned: tuple[RestoreComponent, ...] = Field(default_factory=tuple)
    restored: tuple[RestoreComponent, ...] = Field(default_factory=tuple)


__all__: list[str] = [
    "MANIFEST_FILENAME",
    "Backup",
    "BackupContents",
    "BackupKind",
    "BackupManifest",
    "BackupOptions",
    "RestoreComponent",
    "RestoreOptions",
    "RestoreReport",
]
