"""Unit tests for the managed database resize."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from fakes import FakeClock, FakeCluster, FakeDatabase, FakeProvider
from pydantic import ValidationError

from coder_lifecycle.backup import BackupCoordinator
from coder_lifecycle.errors import (
    BackupComponentFailedError,
    InvalidConfigurationError,
    OperationCancelled,
    ResizeFailedError,
)
from coder_lifecycle.resize import DatabaseResizer
from coder_lifecycle.safety import SequencePrompter
from coder_lifecycle.schemas.environment import EnvironmentContext, Phase
from coder_lifecycle.schemas.resize import ResizeOptions, ResizeOutcome

ResizerFactory = Callable[..., DatabaseResizer]


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase(node_type="DB-DEV-S")


@pytest.fixture
def make_resizer(
    provisioned: EnvironmentContext,
    provider: FakeProvider,
    cluster_factory: Callable[[Path], FakeCluster],
    database: FakeDatabase,
    clock: FakeClock,
    tmp_path: Path,
) -> ResizerFactory:
    infra = provisioned.layout.workdir(Phase.INFRASTRUCTURE)
    assert infra is not None
    provider.outputs_by_dir[infra] = {"database_id": "fr-par/11111111-2222"}
    backups = BackupCoordinator(
        provider,
        cluster_factory,
        tmp_path / "backups",
        now=lambda: datetime(2025, 3, 1, tzinfo=timezone.utc),
    )

    def _make(answers: list[str] | None = None, timeout: float = 900.0) -> DatabaseResizer:
        return DatabaseResizer(
            provider,
            database,
            backups,
            prompter=SequencePrompter(answers or []),
            timeout=timeout,
            poll_interval=30.0,
            sleep=clock.sleep,
            clock=clock,
        )

    return _make


class TestResize:
    """Tests for DatabaseResizer.resize."""

    def test_resizes_and_waits_until_ready(
        self,
        provisioned: EnvironmentContext,
        database: FakeDatabase,
        clock: FakeClock,
        make_resizer: ResizerFactory,
    ) -> None:
        report = make_resizer().resize(
            provisioned, ResizeOptions(instance_type="DB-GP-S", auto_approve=True)
        )

        assert database.upgrades == ["DB-GP-S"]
        assert report.outcome == ResizeOutcome.RESIZED
        assert report.current_type == "DB-DEV-S"
        assert report.target_type == "DB-GP-S"
        assert report.database_id == "11111111-2222"
        assert report.cost_delta is not None
        assert report.cost_delta.monthly_delta == Decimal("6.12")
        assert report.backup_name == "pre-resize-20250301-000000-dev"
        assert clock.sleeps == [30.0]

    def test_same_type_is_unchanged(
        self,
        provisioned: EnvironmentContext,
        database: FakeDatabase,
        make_resizer: ResizerFactory,
    ) -> None:
        report = make_resizer().resize(
            provisioned, ResizeOptions(instance_type="DB-DEV-S", auto_approve=True)
        )
        assert report.outcome == ResizeOutcome.UNCHANGED
        assert database.upgrades == []

    @pytest.mark.parametrize("flag", ["dry_run", "analyze_only"])
    def test_dry_run_and_analysis_change_nothing(
        self,
        provisioned: EnvironmentContext,
        database: FakeDatabase,
        tmp_path: Path,
        make_resizer: ResizerFactory,
        flag: str,
    ) -> None:
        report = make_resizer().resize(
            provisioned, ResizeOptions(instance_type="DB-GP-M", **{flag: True})
        )
        assert report.outcome == ResizeOutcome.PLANNED
        assert report.cost_delta is not None and report.cost_delta.is_increase
        assert database.upgrades == []
        assert not (tmp_path / "backups").exists()

    def test_analysis_without_target_reports_current_type(
        self, provisioned: EnvironmentContext, make_resizer: ResizerFactory
    ) -> None:
        report = make_resizer().resize(provisioned, ResizeOptions(analyze_only=True))
        assert report.outcome == ResizeOutcome.UNCHANGED
        assert report.target_type == "DB-DEV-S"

    def test_declined_confirmation_cancels(
        self,
        provisioned: EnvironmentContext,
        database: FakeDatabase,
        make_resizer: ResizerFactory,
    ) -> None:
        with pytest.raises(OperationCancelled):
            make_resizer(answers=["n"]).resize(provisioned, ResizeOptions(instance_type="DB-GP-S"))
        assert database.upgrades == []

    def test_invalid_type_rejected_before_any_call(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_resizer: ResizerFactory,
    ) -> None:
        resizer = make_resizer()
        with pytest.raises(InvalidConfigurationError):
            resizer.resize(provisioned, ResizeOptions(instance_type="DB-XL"))
        assert provider.calls == []

    def test_incomplete_backup_aborts(
        self,
        provisioned: EnvironmentContext,
        cluster: FakeCluster,
        database: FakeDatabase,
        make_resizer: ResizerFactory,
    ) -> None:
        cluster.fail_dump = True
        with pytest.raises(BackupComponentFailedError):
            make_resizer().resize(
                provisioned, ResizeOptions(instance_type="DB-GP-S", auto_approve=True)
            )
        assert database.upgrades == []

    def test_no_backup_skips_backup(
        self,
        provisioned: EnvironmentContext,
        cluster: FakeCluster,
        make_resizer: ResizerFactory,
    ) -> None:
        cluster.fail_dump = True
        report = make_resizer().resize(
            provisioned,
            ResizeOptions(instance_type="DB-GP-S", auto_approve=True, no_backup=True),
        )
        assert report.outcome == ResizeOutcome.RESIZED
        assert report.backup_name is None

    def test_failed_status_aborts_wait(
        self,
        provisioned: EnvironmentContext,
        database: FakeDatabase,
        make_resizer: ResizerFactory,
    ) -> None:
        database.statuses_after_upgrade = ["upgrading", "error"]
        with pytest.raises(ResizeFailedError, match="error"):
            make_resizer().resize(
                provisioned,
                ResizeOptions(instance_type="DB-GP-S", auto_approve=True, no_backup=True),
            )

    def test_timeout_is_a_resize_failure(
        self,
        provisioned: EnvironmentContext,
        database: FakeDatabase,
        make_resizer: ResizerFactory,
    ) -> None:
        database.statuses_after_upgrade = ["upgrading"] * 100
        with pytest.raises(ResizeFailedError, match="Timeout"):
            make_resizer(timeout=90).resize(
                provisioned,
                ResizeOptions(instance_type="DB-GP-S", auto_approve=True, no_backup=True),
            )

    def test_missing_database_output(
        self,
        provisioned: EnvironmentContext,
        provider: FakeProvider,
        make_resizer: ResizerFactory,
    ) -> None:
        resizer = make_resizer()
        provider.outputs_by_dir.clear()
        with pytest.raises(ResizeFailedError, match="database_id"):
            resizer.resize(provisioned, ResizeOptions(instance_type="DB-GP-S"))


class TestResizeOptions:
    def test_instance_type_required_unless_analyzing(self) -> None:
        with pytest.raises(ValidationError):
            ResizeOptions()
        assert ResizeOptions(analyze_only=True).instance_type is None
