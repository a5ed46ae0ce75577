"""Terraform adapter for the InfrastructureProvider contract.

Every primitive is a ``terraform`` subprocess run in the phase working
directory. Errors from terraform are preserved verbatim on the raised
exception so the operator sees exactly what the provider reported.

Example:
    >>> provider = TerraformProvider(env={"AWS_ACCESS_KEY_ID": "..."})
    >>> artifact = provider.plan(Path("environments/dev/infra"), {"scaleway_region": "fr-par"})
    >>> provider.apply(artifact)
"""

from __future__ import annotations

import json
import os
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

from coder_lifecycle.errors import (
    ProviderApplyFailedError,
    ProviderDestroyFailedError,
    StateUnreadableError,
)
from coder_lifecycle.providers.base import ApplyResult, PlanArtifact

logger = structlog.get_logger(__name__)

DESTROY_PLAN_NAME = "destroy-plan"

# terraform plan -detailed-exitcode
_PLAN_NO_CHANGES = 0
_PLAN_HAS_CHANGES = 2


class TerraformProvider:
    """Run terraform plan/apply/state commands.

    Args:
        binary: terraform executable.
        env: Extra environment variables (backend credentials).
        timeout: Per-command timeout in seconds, None for no limit.
    """

    def __init__(
        self,
        binary: str = "terraform",
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        self._binary = binary
        self._env = {**os.environ, **(env or {})}
        self._timeout = timeout

    def _run(self, workdir: Path, *args: str) -> subprocess.CompletedProcess[str]:
        cmd = [self._binary, *args]
        logger.debug("terraform_command", workdir=str(workdir), args=list(args))
        return subprocess.run(
            cmd,
            cwd=workdir,
            env=self._env,
            capture_output=True,
            text=True,
            check=False,
            timeout=self._timeout,
        )

    def init(self, workdir: Path) -> subprocess.CompletedProcess[str]:
        return self._run(workdir, "init", "-input=false", "-no-color")

    @staticmethod
    def _var_args(variables: Mapping[str, str]) -> list[str]:
        args = []
        for key, value in sorted(variables.items()):
            args.extend(["-var", f"{key}={value}"])
        return args

    def _plan(
        self,
        workdir: Path,
        variables: Mapping[str, str],
        plan_name: str,
        *,
        destroy: bool,
    ) -> PlanArtifact:
        error_cls = ProviderDestroyFailedError if destroy else ProviderApplyFailedError

        init = self.init(workdir)
        if init.returncode != 0:
            raise error_cls(f"terraform init failed in {workdir}", output=init.stderr)

        args = ["plan", "-input=false", "-no-color", "-detailed-exitcode", f"-out={plan_name}"]
        if destroy:
            args.append("-destroy")
        result = self._run(workdir, *args, *self._var_args(variables))

        if result.returncode not in (_PLAN_NO_CHANGES, _PLAN_HAS_CHANGES):
            raise error_cls(f"terraform plan failed in {workdir}", output=result.stderr)

        artifact = PlanArtifact(
            workdir=workdir,
            path=workdir / plan_name,
            destroy=destroy,
            has_changes=result.returncode == _PLAN_HAS_CHANGES,
        )
        logger.info(
            "terraform_planned",
            workdir=str(workdir),
            destroy=destroy,
            has_changes=artifact.has_changes,
        )
        return artifact

    def plan(
        self,
        workdir: Path,
        variables: Mapping[str, str],
        plan_name: str = "tfplan",
    ) -> PlanArtifact:
        return self._plan(workdir, variables, plan_name, destroy=False)

    def destroy_plan(self, workdir: Path, variables: Mapping[str, str]) -> PlanArtifact:
        return self._plan(workdir, variables, DESTROY_PLAN_NAME, destroy=True)

    def apply(self, artifact: PlanArtifact) -> ApplyResult:
        """Apply a saved plan; a plan without changes is not applied."""
        if not artifact.has_changes:
            logger.info("terraform_apply_noop", workdir=str(artifact.workdir))
            return ApplyResult(workdir=artifact.workdir, changed=False)

        result = self._run(
            artifact.workdir, "apply", "-input=false", "-no-color", artifact.path.name
        )
        if result.returncode != 0:
            error_cls = ProviderDestroyFailedError if artifact.destroy else ProviderApplyFailedError
            action = "destroy" if artifact.destroy else "apply"
            raise error_cls(
                f"terraform {action} failed in {artifact.workdir}", output=result.stderr
            )

        logger.info("terraform_applied", workdir=str(artifact.workdir), destroy=artifact.destroy)
        return ApplyResult(workdir=artifact.workdir, changed=True, output=result.stdout)

    def output(self, workdir: Path, key: str) -> str | None:
        """Return a raw output value, or None when the output is not defined."""
        result = self._run(workdir, "output", "-no-color", "-raw", key)
        if result.returncode != 0:
            logger.debug("terraform_output_missing", workdir=str(workdir), key=key)
            return None
        return result.stdout.strip() or None

    def outputs(self, workdir: Path) -> dict[str, Any]:
        result = self._run(workdir, "output", "-no-color", "-json")
        if result.returncode != 0:
            raise StateUnreadableError(str(workdir), result.stderr.strip())
        try:
            raw = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise StateUnreadableError(str(workdir), f"invalid output JSON: {e}") from e
        return {key: entry.get("value") for key, entry in raw.items()}

    def state_list(self, workdir: Path) -> list[str]:
        """List resource addresses in state.

        Raises:
            StateUnreadableError: If init or the state read fails.
        """
        if not workdir.is_dir():
            raise StateUnreadableError(str(workdir), "working directory does not exist")

        init = self.init(workdir)
        if init.returncode != 0:
            raise StateUnreadableError(str(workdir), init.stderr.strip())

        result = self._run(workdir, "state", "list")
        if result.returncode != 0:
            raise StateUnreadableError(str(workdir), result.stderr.strip())
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def state_pull(self, workdir: Path) -> str:
        result = self._run(workdir, "state", "pull")
        if result.returncode != 0:
            raise StateUnreadableError(str(workdir), result.stderr.strip())
        return result.stdout

    def state_push(self, workdir: Path, state_file: Path) -> None:
        """Replace the remote state of ``workdir`` with ``state_file``.

        Terraform refuses a push whose lineage differs or whose serial is
        older than the current state.

        Raises:
            ProviderApplyFailedError: If init or the push fails.
        """
        init = self.init(workdir)
        if init.returncode != 0:
            raise ProviderApplyFailedError(
                f"terraform init failed in {workdir}", output=init.stderr
            )

        result = self._run(workdir, "state", "push", str(state_file.resolve()))
        if result.returncode != 0:
            raise ProviderApplyFailedError(
                f"terraform state push failed in {workdir}", output=result.stderr
            )
        logger.info("terraform_state_pushed", workdir=str(workdir), state_file=str(state_file))


__all__: list[str] = ["DESTROY_PLAN_NAME", "TerraformProvider"]
