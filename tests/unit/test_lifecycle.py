"""Unit tests for step failure policies, options and reports."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from coder_lifecycle.errors import (
    InvalidConfigurationError,
    LifecycleError,
    OperationCancelled,
    TeardownIncompleteError,
)
from coder_lifecycle.schemas.environment import EnvironmentName, Phase
from coder_lifecycle.schemas.lifecycle import (
    FailurePolicy,
    LifecycleStep,
    STEP_POLICIES,
    TeardownOptions,
    TeardownReport,
    TeardownStatus,
    policy_for,
)


class TestPolicyFor:
    """Tests for policy_for."""

    def test_every_step_has_a_policy(self) -> None:
        assert set(STEP_POLICIES) == set(LifecycleStep)

    @pytest.mark.parametrize(
        "step",
        [LifecycleStep.PRE_CHANGE_BACKUP, LifecycleStep.PRE_DESTROY_BACKUP],
    )
    def test_required_backup_propagates(self, step: LifecycleStep) -> None:
        assert policy_for(step) == FailurePolicy.WARN
        assert policy_for(step, require_backup=True) == FailurePolicy.PROPAGATE

    def test_force_downgrades_only_application_destroy(self) -> None:
        assert policy_for(LifecycleStep.APP_DESTROY) == FailurePolicy.PROPAGATE
        assert policy_for(LifecycleStep.APP_DESTROY, force=True) == FailurePolicy.WARN
        assert policy_for(LifecycleStep.INFRA_DESTROY, force=True) == FailurePolicy.PROPAGATE

    def test_require_backup_leaves_other_steps_alone(self) -> None:
        assert policy_for(LifecycleStep.DRAIN, require_backup=True) == FailurePolicy.WARN


class TestTeardownOptions:
    def test_emergency_implies_force(self) -> None:
        assert TeardownOptions(emergency=True).effective_force is True
        assert TeardownOptions().effective_force is False

    def test_preserve_data_requires_backup(self) -> None:
        with pytest.raises(ValidationError, match="preserve_data"):
            TeardownOptions(preserve_data=True, backup=False)
        assert TeardownOptions(preserve_data=True).backup_required is True


class TestTeardownReport:
    """Tests for TeardownReport.raise_for_status."""

    def _report(self, status: TeardownStatus, **extra: object) -> TeardownReport:
        return TeardownReport(
            environment=EnvironmentName.DEV, layout="two-phase", status=status, **extra
        )

    @pytest.mark.parametrize("status", [TeardownStatus.COMPLETE, TeardownStatus.PLANNED])
    def test_clean_status_does_not_raise(self, status: TeardownStatus) -> None:
        self._report(status).raise_for_status()

    def test_incomplete_raises_with_remaining(self) -> None:
        report = self._report(
            TeardownStatus.INCOMPLETE,
            remaining_resources=("infrastructure:scaleway_vpc.main",),
        )
        with pytest.raises(TeardownIncompleteError) as exc_info:
            report.raise_for_status()
        assert exc_info.value.exit_code == 3
        assert exc_info.value.environment == "dev"

    def test_unverified_raises(self) -> None:
        report = self._report(
            TeardownStatus.UNVERIFIED, unverified_phases=(Phase.APPLICATION,)
        )
        with pytest.raises(TeardownIncompleteError):
            report.raise_for_status()


class TestExitCodes:
    def test_exit_codes(self) -> None:
        assert LifecycleError("boom").exit_code == 1
        assert InvalidConfigurationError("bad").exit_code == 1
        assert OperationCancelled("no").exit_code == 0
        assert issubclass(TeardownIncompleteError, LifecycleError)
