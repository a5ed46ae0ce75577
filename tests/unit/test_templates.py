"""Unit tests for template discovery and deployment."""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest

from coder_lifecycle.errors import InvalidConfigurationError, TemplateDeployFailedError
from coder_lifecycle.templates import TemplateCatalog, TemplateDeployer


@pytest.fixture
def catalog(make_project: Callable[..., Path]) -> TemplateCatalog:
    root = make_project("dev", templates=("python-dev", "go-dev", "node-dev"))
    return TemplateCatalog(root / "templates")


def _completed(
    args: list[str], returncode: int = 0, stderr: str = ""
) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args, returncode, stdout="pushed", stderr=stderr)


class TestTemplateCatalog:
    """Tests for TemplateCatalog."""

    def test_discover(self, catalog: TemplateCatalog) -> None:
        assert sorted(catalog.discover()) == ["go-dev", "node-dev", "python-dev"]

    def test_missing_directory_is_empty(self, tmp_path: Path) -> None:
        assert TemplateCatalog(tmp_path / "nope").discover() == {}

    def test_validate_unknown_lists_available(self, catalog: TemplateCatalog) -> None:
        with pytest.raises(InvalidConfigurationError) as exc_info:
            catalog.validate(["python-dev", "rust-dev"])
        assert "rust-dev" in str(exc_info.value)
        assert "go-dev, node-dev, python-dev" in str(exc_info.value)


class TestTemplateDeployer:
    """Tests for TemplateDeployer.deploy."""

    def test_pushes_each_template_with_access_url(self, catalog: TemplateCatalog) -> None:
        with patch("coder_lifecycle.templates.subprocess.run") as mock_run:
            mock_run.side_effect = lambda args, **kwargs: _completed(args)
            results = TemplateDeployer(catalog).deploy(
                ["python-dev", "go-dev"], "https://coder.example.com"
            )

        assert [r.name for r in results] == ["python-dev", "go-dev"]
        assert all(r.ok for r in results)
        assert mock_run.call_count == 2
        for call in mock_run.call_args_list:
            assert call.args[0][:3] == ["coder", "templates", "push"]
            assert call.kwargs["env"]["CODER_URL"] == "https://coder.example.com"

    def test_every_template_attempted_and_failures_reported(
        self, catalog: TemplateCatalog
    ) -> None:
        def run(args: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
            if args[3] == "go-dev":
                return _completed(args, returncode=1, stderr="provider error")
            return _completed(args)

        with patch("coder_lifecycle.templates.subprocess.run", side_effect=run) as mock_run:
            with pytest.raises(TemplateDeployFailedError) as exc_info:
                TemplateDeployer(catalog).deploy(
                    ["python-dev", "go-dev", "node-dev"], "https://coder.example.com"
                )

        assert mock_run.call_count == 3
        assert exc_info.value.failures == {"go-dev": "provider error"}

    def test_concurrency_capped_at_two(self, catalog: TemplateCatalog) -> None:
        with patch("coder_lifecycle.templates.ThreadPoolExecutor") as mock_pool:
            mock_pool.return_value.__exit__.return_value = False
            mock_pool.return_value.__enter__.return_value.submit.side_effect = RuntimeError
            with pytest.raises(RuntimeError):
                TemplateDeployer(catalog, max_workers=8).deploy(["go-dev"], "https://x")
        mock_pool.assert_called_once_with(max_workers=2)

    def test_timeout_is_a_failure(self, catalog: TemplateCatalog) -> None:
        with patch(
            "coder_lifecycle.templates.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["coder"], 600),
        ):
            with pytest.raises(TemplateDeployFailedError) as exc_info:
                TemplateDeployer(catalog).deploy(["go-dev"], "https://x")
        assert "timed out" in exc_info.value.failures["go-dev"]
