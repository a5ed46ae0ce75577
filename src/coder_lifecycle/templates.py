"""Workspace template discovery and deployment.

Templates are directories under ``templates/`` holding a ``main.tf``; the
template name is the directory name. Deployment pushes each template with
the ``coder`` CLI, at most two at a time to stay clear of API rate limits.

Example:
    >>> catalog = TemplateCatalog(Path("templates"))
    >>> catalog.validate(["python-dev"])
    >>> TemplateDeployer(catalog).deploy(["python-dev"], "https://coder.example.com")
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

import structlog

from coder_lifecycle.errors import InvalidConfigurationError, TemplateDeployFailedError
from coder_lifecycle.schemas.lifecycle import TemplateResult

logger = structlog.get_logger(__name__)

MAX_CONCURRENT_DEPLOYMENTS = 2


class TemplateCatalog:
    """Index of the templates available under a directory."""

    def __init__(self, templates_dir: Path) -> None:
        self._templates_dir = templates_dir

    def discover(self) -> dict[str, Path]:
        """Map template name to template directory."""
        if not self._templates_dir.is_dir():
            return {}
        found: dict[str, Path] = {}
        for main_tf in sorted(self._templates_dir.rglob("main.tf")):
            found.setdefault(main_tf.parent.name, main_tf.parent)
        return found

    def validate(self, names: Sequence[str]) -> dict[str, Path]:
        """Resolve template names.

        Raises:
            InvalidConfigurationError: If any name is unknown.
        """
        available = self.discover()
        unknown = [name for name in names if name not in available]
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown template(s): {', '.join(unknown)}. "
                f"Available: {', '.join(sorted(available)) or 'none'}"
            )
        return {name: available[name] for name in names}


class TemplateDeployer:
    """Push templates to a Coder deployment.

    Args:
        catalog: Template catalog.
        max_workers: Concurrency, capped at MAX_CONCURRENT_DEPLOYMENTS.
        coder_binary: coder CLI executable.
        session_token: Optional Coder session token.
        timeout: Per-template timeout in seconds.
    """

    def __init__(
        self,
        catalog: TemplateCatalog,
        max_workers: int = MAX_CONCURRENT_DEPLOYMENTS,
        coder_binary: str = "coder",
        session_token: str | None = None,
        timeout: float = 600.0,
    ) -> None:
        self._catalog = catalog
        self._max_workers = max(1, min(max_workers, MAX_CONCURRENT_DEPLOYMENTS))
        self._coder = coder_binary
        self._session_token = session_token
        self._timeout = timeout

    @property
    def catalog(self) -> TemplateCatalog:
        return self._catalog

    def _push(self, name: str, directory: Path, access_url: str) -> TemplateResult:
        env = {**os.environ, "CODER_URL": access_url}
        if self._session_token:
            env["CODER_SESSION_TOKEN"] = self._session_token
        try:
            result = subprocess.run(
                [self._coder, "templates", "push", name, "--directory", str(directory), "--yes"],
                env=env,
                capture_output=True,
                text=True,
                check=False,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired:
            return TemplateResult(name=name, ok=False, output=f"timed out after {self._timeout}s")
        output = (result.stdout if result.returncode == 0 else result.stderr).strip()
        return TemplateResult(name=name, ok=result.returncode == 0, output=output)

    def deploy(self, names: Sequence[str], access_url: str) -> list[TemplateResult]:
        """Deploy templates with bounded parallelism.

        Every template is attempted; failures are reported together.

        Raises:
            InvalidConfigurationError: If a name is unknown.
            TemplateDeployFailedError: If any template failed.
        """
        directories = self._catalog.validate(names)
        if not directories:
            return []

        results: list[TemplateResult] = []
        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            futures = {
                executor.submit(self._push, name, directory, access_url): name
                for name, directory in directories.items()
            }
            for future in as_completed(futures):
                result = future.result()
                results.append(result)
                if result.ok:
                    logger.info("template_deployed", template=result.name)
                else:
                    logger.error(
                        "template_deploy_failed", template=result.name, output=result.output
                    )

        results.sort(key=lambda r: names.index(r.name))
        failures = {r.name: r.output for r in results if not r.ok}
        if failures:
            raise TemplateDeployFailedError(failures)
        return results


__all__: list[str] = ["MAX_CONCURRENT_DEPLOYMENTS", "TemplateCatalog", "TemplateDeployer"]
