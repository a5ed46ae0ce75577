"""State backend bootstrap.

Each Terraform working directory of an environment gets a ``backend.tf``
pointing at a per-environment Scaleway Object Storage bucket. Bootstrap is
idempotent: an environment whose backend files already validate is
returned as-is without touching object storage.

Example:
    >>> manager = StateBackendManager(storage, product="coder")
    >>> descriptor = manager.ensure_backend(ctx)
    >>> descriptor.bucket_name
    'terraform-state-coder-dev'

Note:
    Scaleway Object Storage offers no state locking. Running two lifecycle
    operations against the same environment at once is unsupported and must
    be prevented externally (for example with CI concurrency groups).
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path

import structlog

from coder_lifecycle.errors import DeprecatedConfigurationError, InvalidConfigurationError
from coder_lifecycle.providers.base import ObjectStorage
from coder_lifecycle.providers.object_storage import s3_endpoint
from coder_lifecycle.schemas.backend import BackendConfig, BackendDescriptor
from coder_lifecycle.schemas.environment import EnvironmentContext, Phase, TwoPhaseLayout

logger = structlog.get_logger(__name__)

BACKEND_FILENAME = "backend.tf"

_DEPRECATED_ENDPOINT = re.compile(r"^\s*endpoint\s*=", re.MULTILINE)
_ENDPOINTS_BLOCK = re.compile(r"endpoints\s*=\s*\{[^}]*?\bs3\s*=\s*\"([^\"]+)\"", re.DOTALL)
_SKIP_METADATA = re.compile(r"^\s*skip_metadata_api_check\s*=\s*true\b", re.MULTILINE)


def _attribute(name: str, text: str) -> str | None:
    match = re.search(rf"^\s*{name}\s*=\s*\"([^\"]*)\"", text, re.MULTILINE)
    return match.group(1) if match else None


def bucket_name(product: str, environment: str) -> str:
    """Deterministic state bucket name.

    Examples:
        >>> bucket_name("coder", "prod")
        'terraform-state-coder-prod'
    """
    return f"terraform-state-{product}-{environment}"


def state_keys(ctx: EnvironmentContext) -> dict[Phase, str]:
    """State object key per phase of the environment layout."""
    env = ctx.name.value
    if isinstance(ctx.layout, TwoPhaseLayout):
        return {
            Phase.INFRASTRUCTURE: f"{env}/infra/terraform.tfstate",
            Phase.APPLICATION: f"{env}/coder/terraform.tfstate",
        }
    return {Phase.INFRASTRUCTURE: f"{env}/terraform.tfstate"}


def render_backend_config(bucket: str, key: str, region: str) -> str:
    """Render a ``backend.tf`` for Scaleway's S3-compatible storage."""
    return f"""terraform {{
  backend "s3" {{
    bucket = "{bucket}"
    key    = "{key}"
    region = "{region}"

    endpoints = {{
      s3 = "{s3_endpoint(region)}"
    }}

    # Required for S3-compatible storage outside AWS
    skip_credentials_validation = true
    skip_region_validation      = true
    skip_requesting_account_id  = true
    skip_metadata_api_check     = true

    # Scaleway Object Storage does not support state locking
  }}
}}
"""


def parse_backend_config(text: str, path: Path) -> BackendConfig:
    """Parse and validate the content of a backend file.

    Raises:
        DeprecatedConfigurationError: If the flat ``endpoint`` key is used.
        InvalidConfigurationError: If a required attribute or block is missing.
    """
    if _DEPRECATED_ENDPOINT.search(text):
        raise DeprecatedConfigurationError(str(path))

    endpoints = _ENDPOINTS_BLOCK.search(text)
    if endpoints is None:
        raise InvalidConfigurationError(f"{path}: missing 'endpoints = {{ s3 = ... }}' block")
    if not _SKIP_METADATA.search(text):
        raise InvalidConfigurationError(f"{path}: missing 'skip_metadata_api_check = true'")

    values = {name: _attribute(name, text) for name in ("bucket", "key", "region")}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise InvalidConfigurationError(f"{path}: missing attribute(s) {', '.join(missing)}")

    return BackendConfig(
        bucket=values["bucket"] or "",
        key=values["key"] or "",
        region=values["region"] or "",
        endpoint=endpoints.group(1),
        skip_metadata_api_check=True,
    )


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class StateBackendManager:
    """Ensure remote state storage exists and is configured.

    Args:
        storage: Object storage used to probe and create the bucket.
        product: Product name used in the bucket name.
    """

    def __init__(self, storage: ObjectStorage, product: str = "coder") -> None:
        self._storage = storage
        self._product = product

    def _backend_files(self, ctx: EnvironmentContext) -> dict[Phase, Path]:
        return {phase: workdir / BACKEND_FILENAME for phase, workdir in ctx.workdirs()}

    def read_existing(self, ctx: EnvironmentContext) -> BackendDescriptor | None:
        """Return the descriptor of a fully configured backend, or None.

        Returns None when any backend file is absent.

        Raises:
            DeprecatedConfigurationError: If a file uses deprecated syntax.
            InvalidConfigurationError: If files are malformed or disagree.
        """
        files = self._backend_files(ctx)
        if not all(path.is_file() for path in files.values()):
            return None

        configs = {
            phase: parse_backend_config(path.read_text(), path) for phase, path in files.items()
        }
        buckets = {config.bucket for config in configs.values()}
        regions = {config.region for config in configs.values()}
        if len(buckets) != 1 or len(regions) != 1:
            raise InvalidConfigurationError(
                f"Backend files of {ctx.name.value} disagree on bucket/region"
            )

        first = next(iter(configs.values()))
        return BackendDescriptor(
            bucket_name=first.bucket,
            region=first.region,
            endpoint=first.endpoint,
            configured=True,
            state_keys={phase.value: config.key for phase, config in configs.items()},
            files=tuple(files.values()),
        )

    def ensure_backend(
        self,
        ctx: EnvironmentContext,
        force_recreate: bool = False,
        dry_run: bool = False,
    ) -> BackendDescriptor:
        """Ensure the environment's state backend exists and is configured.

        Args:
            ctx: Environment context.
            force_recreate: Rewrite backend files even when they validate.
            dry_run: Report what would be configured without probing or writing.

        Returns:
            Descriptor of the configured backend.

        Raises:
            BackendUnreachableError: If the bucket probe cannot complete.
            DeprecatedConfigurationError: If existing files use deprecated
                syntax and ``force_recreate`` is not set.
        """
        log = logger.bind(environment=ctx.name.value)

        if not force_recreate:
            try:
                existing = self.read_existing(ctx)
            except DeprecatedConfigurationError:
                log.error("backend_config_deprecated")
                raise
            except InvalidConfigurationError as e:
                log.warning("backend_config_invalid", error=str(e))
                existing = None
            if existing is not None:
                log.info("backend_already_configured", bucket=existing.bucket_name)
                return existing

        bucket = bucket_name(self._product, ctx.name.value)
        keys = state_keys(ctx)
        files = self._backend_files(ctx)

        descriptor = BackendDescriptor(
            bucket_name=bucket,
            region=ctx.region,
            endpoint=s3_endpoint(ctx.region),
            configured=not dry_run,
            state_keys={phase.value: key for phase, key in keys.items()},
            files=tuple(files.values()),
        )
        if dry_run:
            log.info("backend_dry_run", bucket=bucket)
            return descriptor

        if self._storage.bucket_exists(bucket):
            log.info("bucket_exists", bucket=bucket)
        else:
            self._storage.create_bucket(bucket, ctx.region)
            log.info("bucket_created", bucket=bucket, region=ctx.region)

        for phase, path in files.items():
            _write_atomic(path, render_backend_config(bucket, keys[phase], ctx.region))
            log.info("backend_config_written", path=str(path), key=keys[phase])

        return descriptor

    def ensure_all(
        self,
        contexts: list[EnvironmentContext],
        force_recreate: bool = False,
        dry_run: bool = False,
    ) -> list[BackendDescriptor]:
        return [self.ensure_backend(ctx, force_recreate, dry_run) for ctx in contexts]


__all__: list[str] = [
    "BACKEND_FILENAME",
    "StateBackendManager",
    "bucket_name",
    "parse_backend_config",
    "render_backend_config",
    "state_keys",
]
