"""Configuration for coder-lifecycle.

Settings come from ``CODER_LIFECYCLE_*`` environment variables, an optional
``.env`` file and an optional YAML file passed with ``--config``. Scaleway
credentials are read from the standard ``SCW_*`` variables.

Example:
    >>> settings = load_settings()
    >>> settings.safety_delay_seconds
    300
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, Literal

import structlog
from pydantic import AliasChoices, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coder_lifecycle.errors import InvalidConfigurationError

logger = structlog.get_logger(__name__)

SUPPORTED_REGIONS: tuple[str, ...] = ("fr-par", "nl-ams", "pl-waw")

SETUP_TOOLS: tuple[str, ...] = ("terraform", "kubectl")
RESIZE_TOOLS: tuple[str, ...] = ("scw",)


class LifecycleSettings(BaseSettings):
    """Runtime settings for lifecycle operations.

    Environment Variables:
        CODER_LIFECYCLE_PROJECT_ROOT: Repository root holding ``environments/``
        CODER_LIFECYCLE_SAFETY_DELAY_SECONDS: Teardown abort window
        CODER_LIFECYCLE_DRAIN_TIMEOUT_SECONDS: Max wait for pods during drain
        SCW_ACCESS_KEY / SCW_SECRET_KEY: Scaleway API credentials
        SCW_DEFAULT_PROJECT_ID / SCW_DEFAULT_ORGANIZATION_ID: Scaleway ids
    """

    model_config = SettingsConfigDict(
        env_prefix="CODER_LIFECYCLE_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    project_root: Path = Field(
        default_factory=Path.cwd,
        description="Repository root holding environments/, templates/ and scripts/",
    )
    product: str = Field(default="coder", description="Product name used in bucket names")
    region: str = Field(default="fr-par", description="Default Scaleway region")
    zone: str = Field(default="fr-par-1", description="Default Scaleway zone")

    backup_dir: Path | None = Field(default=None, description="Defaults to <root>/backups")
    archive_dir: Path | None = Field(default=None, description="Defaults to <root>/archives")
    log_dir: Path | None = Field(default=None, description="Defaults to <root>/logs")
    kube_dir: Path = Field(
        default_factory=lambda: Path.home() / ".kube",
        description="Directory receiving per-environment kubeconfig files",
    )
    workspace_namespace: str = Field(default="coder")

    # Timing
    safety_delay_seconds: int = Field(default=300, ge=0)
    drain_timeout_seconds: int = Field(default=120, ge=0)
    drain_grace_period_seconds: int = Field(default=60, ge=0)
    backup_job_timeout_seconds: int = Field(default=300, ge=1)
    resize_timeout_seconds: int = Field(default=900, ge=1)
    resize_poll_interval_seconds: int = Field(default=30, ge=1)
    http_probe_timeout_seconds: float = Field(default=10.0, gt=0)

    backup_retention_days: int = Field(default=30, ge=1)
    template_concurrency: int = Field(
        default=2,
        ge=1,
        le=2,
        description="Concurrent template deployments (capped to avoid API rate limits)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    # Scaleway credentials
    access_key: str | None = Field(
        default=None, validation_alias=AliasChoices("SCW_ACCESS_KEY", "access_key")
    )
    secret_key: SecretStr | None = Field(
        default=None, validation_alias=AliasChoices("SCW_SECRET_KEY", "secret_key")
    )
    project_id: str | None = Field(
        default=None, validation_alias=AliasChoices("SCW_DEFAULT_PROJECT_ID", "project_id")
    )
    organization_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SCW_DEFAULT_ORGANIZATION_ID", "organization_id"),
    )

    @field_validator("region")
    @classmethod
    def _validate_region(cls, value: str) -> str:
        if value not in SUPPORTED_REGIONS:
            msg = f"unsupported region {value!r}; expected one of {', '.join(SUPPORTED_REGIONS)}"
            raise ValueError(msg)
        return value

    @property
    def backups_path(self) -> Path:
        return self.backup_dir or self.project_root / "backups"

    @property
    def archives_path(self) -> Path:
        return self.archive_dir or self.project_root / "archives"

    @property
    def logs_path(self) -> Path:
        return self.log_dir or self.project_root / "logs"

    @property
    def environments_path(self) -> Path:
        return self.project_root / "environments"

    @property
    def templates_path(self) -> Path:
        return self.project_root / "templates"

    @property
    def hooks_path(self) -> Path:
        return self.project_root / "scripts" / "hooks"


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load a YAML mapping of settings.

    Raises:
        InvalidConfigurationError: If the file cannot be parsed or is not a mapping.
    """
    import yaml

    try:
        with config_path.open() as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise InvalidConfigurationError(f"Cannot read config file {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"Config file {config_path} must contain a mapping")
    return data


def load_settings(config_file: Path | None = None, **overrides: Any) -> LifecycleSettings:
    """Build settings from the environment, a YAML file and explicit overrides.

    Precedence, highest first: overrides, the YAML file, environment
    variables, the ``.env`` file, field defaults.

    Args:
        config_file: Optional YAML file with setting values.
        **overrides: Values taking precedence over everything else.

    Raises:
        InvalidConfigurationError: If any value fails validation.
    """
    values: dict[str, Any] = {}
    if config_file is not None:
        values.update(load_yaml_config(config_file))
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return LifecycleSettings(**values)
    except ValidationError as e:
        raise InvalidConfigurationError(f"Invalid settings: {e}") from e


def check_prerequisites(
    settings: LifecycleSettings,
    tools: tuple[str, ...] = SETUP_TOOLS,
) -> None:
    """Verify required CLI tools and Scaleway credentials are available.

    Raises:
        InvalidConfigurationError: Listing every missing tool or credential.
    """
    missing_tools = [tool for tool in tools if shutil.which(tool) is None]
    missing_credentials = [
        name
        for name, value in (
            ("SCW_ACCESS_KEY", settings.access_key),
            ("SCW_SECRET_KEY", settings.secret_key),
            ("SCW_DEFAULT_PROJECT_ID", settings.project_id),
        )
        if not value
    ]

    problems = []
    if missing_tools:
        problems.append(f"missing tools: {', '.join(missing_tools)}")
    if missing_credentials:
        problems.append(f"missing credentials: {', '.join(missing_credentials)}")
    if problems:
        raise InvalidConfigurationError("Prerequisites not met: " + "; ".join(problems))

    logger.debug("prerequisites_ok", tools=list(tools))


__all__: list[str] = [
    "RESIZE_TOOLS",
    "SETUP_TOOLS",
    "SUPPORTED_REGIONS",
    "LifecycleSettings",
    "check_prerequisites",
    "load_settings",
    "load_yaml_config",
]
