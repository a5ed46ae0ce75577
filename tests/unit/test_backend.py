"""Unit tests for state backend bootstrap."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from coder_lifecycle.backend import (
    BACKEND_FILENAME,
    StateBackendManager,
    bucket_name,
    parse_backend_config,
    render_backend_config,
)
from coder_lifecycle.config import LifecycleSettings
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.errors import (
    BackendUnreachableError,
    DeprecatedConfigurationError,
    InvalidConfigurationError,
)
from coder_lifecycle.schemas.environment import EnvironmentContext

from fakes import FakeStorage

DEPRECATED_BACKEND = """terraform {
  backend "s3" {
    bucket   = "terraform-state-coder-dev"
    key      = "dev/infra/terraform.tfstate"
    region   = "fr-par"
    endpoint = "https://s3.fr-par.scw.cloud"
  }
}
"""


class TestBackendConfig:
    """Tests for rendering and parsing backend.tf."""

    def test_bucket_name_is_deterministic(self) -> None:
        assert bucket_name("coder", "prod") == "terraform-state-coder-prod"

    def test_rendered_config_parses(self, tmp_path: Path) -> None:
        text = render_backend_config("terraform-state-coder-dev", "dev/terraform.tfstate", "fr-par")
        config = parse_backend_config(text, tmp_path / BACKEND_FILENAME)
        assert config.bucket == "terraform-state-coder-dev"
        assert config.endpoint == "https://s3.fr-par.scw.cloud"
        assert config.skip_metadata_api_check

    def test_flat_endpoint_is_deprecated(self, tmp_path: Path) -> None:
        with pytest.raises(DeprecatedConfigurationError) as exc_info:
            parse_backend_config(DEPRECATED_BACKEND, tmp_path / BACKEND_FILENAME)
        assert "endpoints" in str(exc_info.value)

    def test_missing_skip_metadata_rejected(self, tmp_path: Path) -> None:
        text = render_backend_config("b-coder", "k", "fr-par").replace(
            "skip_metadata_api_check     = true", ""
        )
        with pytest.raises(InvalidConfigurationError, match="skip_metadata_api_check"):
            parse_backend_config(text, tmp_path / BACKEND_FILENAME)


class TestEnsureBackend:
    """Tests for StateBackendManager.ensure_backend."""

    def test_creates_bucket_and_writes_one_file_per_phase(
        self, dev_ctx: EnvironmentContext, storage: FakeStorage
    ) -> None:
        descriptor = StateBackendManager(storage).ensure_backend(dev_ctx)

        assert descriptor.bucket_name == "terraform-state-coder-dev"
        assert descriptor.configured
        assert descriptor.state_keys == {
            "infrastructure": "dev/infra/terraform.tfstate",
            "application": "dev/coder/terraform.tfstate",
        }
        assert "terraform-state-coder-dev" in storage.buckets
        for _, workdir in dev_ctx.workdirs():
            assert (workdir / BACKEND_FILENAME).is_file()

    def test_second_call_is_a_no_op(
        self, dev_ctx: EnvironmentContext, storage: FakeStorage
    ) -> None:
        manager = StateBackendManager(storage)
        first = manager.ensure_backend(dev_ctx)
        storage.calls.clear()

        second = manager.ensure_backend(dev_ctx)

        assert second == first
        assert storage.calls == []

    def test_existing_bucket_is_not_recreated(
        self, dev_ctx: EnvironmentContext
    ) -> None:
        storage = FakeStorage(buckets=["terraform-state-coder-dev"])
        StateBackendManager(storage).ensure_backend(dev_ctx)
        assert not any(call.startswith("create:") for call in storage.calls)

    def test_unreachable_storage_creates_nothing(self, dev_ctx: EnvironmentContext) -> None:
        storage = FakeStorage(reachable=False)
        with pytest.raises(BackendUnreachableError):
            StateBackendManager(storage).ensure_backend(dev_ctx)
        assert storage.buckets == set()
        for _, workdir in dev_ctx.workdirs():
            assert not (workdir / BACKEND_FILENAME).exists()

    def test_deprecated_file_fails_unless_recreated(
        self, dev_ctx: EnvironmentContext, storage: FakeStorage
    ) -> None:
        for _, workdir in dev_ctx.workdirs():
            (workdir / BACKEND_FILENAME).write_text(DEPRECATED_BACKEND)
        manager = StateBackendManager(storage)

        with pytest.raises(DeprecatedConfigurationError):
            manager.ensure_backend(dev_ctx)

        descriptor = manager.ensure_backend(dev_ctx, force_recreate=True)
        assert descriptor.configured
        infra = dev_ctx.layout.workdir(dev_ctx.layout.phases[0])
        assert infra is not None
        assert "endpoints" in (infra / BACKEND_FILENAME).read_text()

    def test_dry_run_touches_nothing(
        self, dev_ctx: EnvironmentContext, storage: FakeStorage
    ) -> None:
        descriptor = StateBackendManager(storage).ensure_backend(dev_ctx, dry_run=True)
        assert not descriptor.configured
        assert storage.calls == []

    def test_legacy_layout_uses_single_key(
        self,
        make_project: Callable[..., Path],
        settings: LifecycleSettings,
        storage: FakeStorage,
    ) -> None:
        make_project("staging", layout="legacy")
        ctx = resolve_environment("staging", settings)
        descriptor = StateBackendManager(storage).ensure_backend(ctx)
        assert descriptor.state_keys == {"infrastructure": "staging/terraform.tfstate"}
        assert (ctx.env_dir / BACKEND_FILENAME).is_file()

    def test_ensure_all_covers_each_environment(
        self,
        make_project: Callable[..., Path],
        settings: LifecycleSettings,
        storage: FakeStorage,
    ) -> None:
        make_project("dev", "staging", "prod")
        contexts = [resolve_environment(env, settings) for env in ("dev", "staging", "prod")]
        descriptors = StateBackendManager(storage).ensure_all(contexts)
        assert [d.bucket_name for d in descriptors] == [
            "terraform-state-coder-dev",
            "terraform-state-coder-staging",
            "terraform-state-coder-prod",
        ]
