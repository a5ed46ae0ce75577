"""Environment discovery and context construction.

An environment is declared by its directory under ``environments/``. Its
layout is detected from the Terraform roots present:

    environments/<env>/infra/main.tf + environments/<env>/coder/main.tf
        → two-phase
    environments/<env>/main.tf
        → legacy (single combined unit)

Anything else, including both shapes at once, is rejected.

Example:
    >>> ctx = resolve_environment("dev", settings)
    >>> ctx.layout.kind
    'two-phase'
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from coder_lifecycle.config import SUPPORTED_REGIONS
from coder_lifecycle.errors import InvalidConfigurationError
from coder_lifecycle.schemas.environment import (
    EnvironmentContext,
    EnvironmentName,
    LegacyLayout,
    Phase,
    TwoPhaseLayout,
)
from coder_lifecycle.validation import (
    resolve_subdomain,
    validate_domain,
    validate_environment_name,
)

if TYPE_CHECKING:
    from coder_lifecycle.config import LifecycleSettings

logger = structlog.get_logger(__name__)

INFRA_DIR = "infra"
APP_DIR = "coder"
TERRAFORM_ROOT = "main.tf"


def detect_layout(env_dir: Path) -> TwoPhaseLayout | LegacyLayout:
    """Detect the structural layout of an environment directory.

    Any ``infra/`` or ``coder/`` directory marks the environment as two-phase,
    and both phase roots must then be complete.

    Raises:
        InvalidConfigurationError: If the directory is missing, mixes both
            layouts, holds an incomplete two-phase tree, or matches neither.
    """
    if not env_dir.is_dir():
        raise InvalidConfigurationError(f"Environment directory not found: {env_dir}")

    infra = env_dir / INFRA_DIR
    app = env_dir / APP_DIR
    markers = [d for d in (infra, app) if d.is_dir()]
    legacy = (env_dir / TERRAFORM_ROOT).is_file()

    if markers and legacy:
        found = ", ".join(f"{d.name}/" for d in markers)
        raise InvalidConfigurationError(
            f"Mixed layout in {env_dir}: {TERRAFORM_ROOT} exists next to {found}; "
            "keep exactly one layout"
        )
    if markers:
        missing = [
            f"{d.name}/{TERRAFORM_ROOT}" for d in (infra, app) if not (d / TERRAFORM_ROOT).is_file()
        ]
        if missing:
            raise InvalidConfigurationError(
                f"Incomplete two-phase layout in {env_dir}: missing {', '.join(missing)}"
            )
        return TwoPhaseLayout(infra=infra, app=app)
    if legacy:
        return LegacyLayout(combined=env_dir)
    raise InvalidConfigurationError(
        f"Unknown layout in {env_dir}: expected {INFRA_DIR}/{TERRAFORM_ROOT} and "
        f"{APP_DIR}/{TERRAFORM_ROOT}, or {TERRAFORM_ROOT}"
    )


def kubeconfig_path(kube_dir: Path, environment: EnvironmentName) -> Path:
    return kube_dir / f"config-coder-{environment.value}"


def phase_workdir(ctx: EnvironmentContext, phase: Phase) -> Path:
    """Return the working directory of ``phase`` in the context's layout.

    Raises:
        InvalidConfigurationError: If the layout has no such phase.
    """
    workdir = ctx.layout.workdir(phase)
    if workdir is None:
        raise InvalidConfigurationError(
            f"{ctx.layout.kind} layout of {ctx.name.value} has no {phase.value} phase",
            environment=ctx.name.value,
            phase=phase.value,
        )
    return workdir


def resolve_environment(
    name: str,
    settings: LifecycleSettings,
    *,
    domain: str | None = None,
    subdomain: str | None = None,
    region: str | None = None,
) -> EnvironmentContext:
    """Validate inputs and build the context for one environment.

    Args:
        name: Environment name (dev, staging, prod).
        settings: Loaded settings.
        domain: Optional custom domain.
        subdomain: Optional subdomain; defaults per environment.
        region: Optional region override.

    Raises:
        InvalidConfigurationError: On any invalid input or layout.
    """
    environment = validate_environment_name(name)
    env_dir = settings.environments_path / environment.value
    layout = detect_layout(env_dir)

    validated_domain = validate_domain(domain) if domain else None
    validated_subdomain = resolve_subdomain(environment, subdomain)

    effective_region = region or settings.region
    if effective_region not in SUPPORTED_REGIONS:
        raise InvalidConfigurationError(f"Unsupported region: {effective_region}")

    ctx = EnvironmentContext(
        name=environment,
        region=effective_region,
        zone=settings.zone,
        project_root=settings.project_root,
        env_dir=env_dir,
        layout=layout,
        kubeconfig_path=kubeconfig_path(settings.kube_dir, environment),
        domain=validated_domain,
        subdomain=validated_subdomain,
        organization_id=settings.organization_id,
        project_id=settings.project_id,
    )
    logger.debug(
        "environment_resolved",
        environment=environment.value,
        layout=layout.kind,
        region=ctx.region,
    )
    return ctx


__all__: list[str] = ["detect_layout", "kubeconfig_path", "phase_workdir", "resolve_environment"]
