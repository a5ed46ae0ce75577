"""Remote state backend schemas."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class BackendDescriptor(BaseModel):
    """Description of the remote state backend of one environment.

    Every field is derivable from the backend files on disk, so two calls
    against an already-configured environment return equal descriptors.

    Attributes:
        bucket_name: Object-storage bucket holding the state.
        region: Bucket region.
        endpoint: S3-compatible endpoint URL.
        configured: True when the backend files exist and validate.
        state_keys: State object key per phase value.
        files: Backend descriptor files, one per Terraform working directory.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    bucket_name: str = Field(..., min_length=3, max_length=63)
    region: str
    endpoint: str
    configured: bool = Field(default=False)
    state_keys: dict[str, str] = Field(default_factory=dict)
    files: tuple[Path, ...] = Field(default_factory=tuple)


class BackendConfig(BaseModel):
    """Parsed content of a single ``backend.tf`` file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    bucket: str
    key: str
    region: str
    endpoint: str
    skip_metadata_api_check: bool = Field(default=False)


__all__: list[str] = ["BackendConfig", "BackendDescriptor"]
