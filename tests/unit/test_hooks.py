"""Unit tests for lifecycle hook scripts."""

from __future__ import annotations

from pathlib import Path

import pytest

from coder_lifecycle.errors import HookFailedError
from coder_lifecycle.hooks import PRE_SETUP, PRE_TEARDOWN, HookRunner
from coder_lifecycle.schemas.environment import EnvironmentContext


@pytest.fixture
def hooks_dir(dev_ctx: EnvironmentContext) -> Path:
    path = dev_ctx.project_root / "scripts" / "hooks"
    path.mkdir(parents=True)
    return path


class TestHookRunner:
    """Tests for HookRunner.run."""

    def test_missing_hook_is_skipped(self, hooks_dir: Path, dev_ctx: EnvironmentContext) -> None:
        assert HookRunner(hooks_dir).run(dev_ctx, PRE_SETUP) is False

    def test_hook_receives_environment(self, hooks_dir: Path, dev_ctx: EnvironmentContext) -> None:
        (hooks_dir / "pre-setup.sh").write_text('echo "$1" > hook-ran.txt\n')
        assert HookRunner(hooks_dir).run(dev_ctx, PRE_SETUP) is True
        assert (dev_ctx.project_root / "hook-ran.txt").read_text().strip() == "--env=dev"

    def test_failing_hook_raises(self, hooks_dir: Path, dev_ctx: EnvironmentContext) -> None:
        (hooks_dir / "pre-teardown.sh").write_text('echo "not today" >&2\nexit 2\n')
        with pytest.raises(HookFailedError, match="not today") as exc_info:
            HookRunner(hooks_dir).run(dev_ctx, PRE_TEARDOWN)
        assert exc_info.value.step == PRE_TEARDOWN

    def test_timeout_raises(self, hooks_dir: Path, dev_ctx: EnvironmentContext) -> None:
        (hooks_dir / "pre-setup.sh").write_text("sleep 5\n")
        with pytest.raises(HookFailedError, match="timed out"):
            HookRunner(hooks_dir, timeout=0.2).run(dev_ctx, PRE_SETUP)
