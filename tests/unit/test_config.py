"""Unit tests for settings loading and prerequisite checks."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from coder_lifecycle.config import (
    LifecycleSettings,
    check_prerequisites,
    load_settings,
)
from coder_lifecycle.errors import InvalidConfigurationError


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(project_root=tmp_path)
        assert settings.safety_delay_seconds == 300
        assert settings.template_concurrency == 2
        assert settings.backups_path == tmp_path / "backups"
        assert settings.hooks_path == tmp_path / "scripts" / "hooks"

    def test_yaml_file(self, tmp_path: Path) -> None:
        config = tmp_path / "lifecycle.yaml"
        config.write_text(
            f"project_root: {tmp_path}\nsafety_delay_seconds: 10\nbackup_dir: /srv/backups\n"
        )
        settings = load_settings(config)
        assert settings.safety_delay_seconds == 10
        assert settings.backups_path == Path("/srv/backups")

    def test_overrides_win_and_none_is_ignored(self, tmp_path: Path) -> None:
        config = tmp_path / "lifecycle.yaml"
        config.write_text("log_level: DEBUG\n")
        assert load_settings(config, log_level="ERROR").log_level == "ERROR"
        assert load_settings(config, log_level=None).log_level == "DEBUG"

    def test_environment_variables(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CODER_LIFECYCLE_PROJECT_ROOT", str(tmp_path))
        monkeypatch.setenv("CODER_LIFECYCLE_DRAIN_TIMEOUT_SECONDS", "30")
        monkeypatch.setenv("SCW_ACCESS_KEY", "SCWKEY")
        monkeypatch.setenv("SCW_SECRET_KEY", "s3cr3t")
        settings = load_settings()
        assert settings.project_root == tmp_path
        assert settings.drain_timeout_seconds == 30
        assert settings.access_key == "SCWKEY"
        assert settings.secret_key is not None
        assert settings.secret_key.get_secret_value() == "s3cr3t"
        assert "s3cr3t" not in repr(settings)

    def test_invalid_region_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidConfigurationError, match="unsupported region"):
            load_settings(project_root=tmp_path, region="us-east-1")

    def test_template_concurrency_capped(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidConfigurationError):
            load_settings(project_root=tmp_path, template_concurrency=5)

    def test_non_mapping_yaml_rejected(self, tmp_path: Path) -> None:
        config = tmp_path / "lifecycle.yaml"
        config.write_text("- a\n- b\n")
        with pytest.raises(InvalidConfigurationError, match="mapping"):
            load_settings(config)


class TestCheckPrerequisites:
    """Tests for check_prerequisites()."""

    def test_all_present(self, settings: LifecycleSettings) -> None:
        with patch("coder_lifecycle.config.shutil.which", return_value="/usr/bin/tool"):
            check_prerequisites(settings, ("terraform", "kubectl"))

    def test_reports_every_missing_item(self, tmp_path: Path) -> None:
        bare = LifecycleSettings(project_root=tmp_path)
        with patch("coder_lifecycle.config.shutil.which", return_value=None):
            with pytest.raises(InvalidConfigurationError) as exc_info:
                check_prerequisites(bare, ("terraform", "scw"))
        message = str(exc_info.value)
        assert "terraform, scw" in message
        assert "SCW_ACCESS_KEY" in message
        assert "SCW_DEFAULT_PROJECT_ID" in message
