"""Lifecycle hook scripts.

Projects can drop ``scripts/hooks/<name>.sh`` to run custom logic around
setup and teardown. A hook receives ``--env=<environment>``; a missing
hook is simply skipped.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

import structlog

from coder_lifecycle.errors import HookFailedError
from coder_lifecycle.schemas.environment import EnvironmentContext

logger = structlog.get_logger(__name__)

PRE_SETUP = "pre-setup"
POST_SETUP = "post-setup"
PRE_TEARDOWN = "pre-teardown"
POST_TEARDOWN = "post-teardown"


class HookRunner:
    """Run hook scripts found under a hooks directory.

    Args:
        hooks_dir: Directory holding ``<name>.sh`` scripts.
        timeout: Maximum runtime of a hook in seconds.
    """

    def __init__(self, hooks_dir: Path, timeout: float = 600.0) -> None:
        self._hooks_dir = hooks_dir
        self._timeout = timeout

    def hook_path(self, name: str) -> Path:
        return self._hooks_dir / f"{name}.sh"

    def run(self, ctx: EnvironmentContext, name: str) -> bool:
        """Run a hook if present.

        Returns:
            True if the hook ran, False if there is no such hook.

        Raises:
            HookFailedError: If the hook exits non-zero or times out.
        """
        path = self.hook_path(name)
        if not path.is_file():
            logger.debug("hook_absent", hook=name)
            return False

        logger.info("hook_started", hook=name, environment=ctx.name.value)
        try:
            result = subprocess.run(
                ["bash", str(path), f"--env={ctx.name.value}"],
                cwd=ctx.project_root,
                capture_output=True,
                text=True,
                check=False,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise HookFailedError(
                f"Hook {name} timed out after {self._timeout:.0f}s",
                environment=ctx.name.value,
                step=name,
            ) from e

        if result.returncode != 0:
            raise HookFailedError(
                f"Hook {name} exited with {result.returncode}: {result.stderr.strip()}",
                environment=ctx.name.value,
                step=name,
            )
        logger.info("hook_completed", hook=name, environment=ctx.name.value)
        return True


__all__: list[str] = [
    "POST_SETUP",
    "POST_TEARDOWN",
    "PRE_SETUP",
    "PRE_TEARDOWN",
    "HookRunner",
]
