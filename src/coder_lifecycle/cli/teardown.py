"""Environment teardown command.

Example:
    $ coder-lifecycle teardown --env=dev --confirm
    $ coder-lifecycle teardown --env=staging --confirm --dry-run
    $ coder-lifecycle teardown --env=prod --confirm --preserve-data
"""

from __future__ import annotations

import click

from coder_lifecycle.cli import runtime
from coder_lifecycle.cli.utils import (
    CONSOLE_REMINDER,
    ExitCode,
    error_exit,
    fail,
    info,
    success,
    warn,
)
from coder_lifecycle.config import SETUP_TOOLS
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.schemas.lifecycle import TeardownOptions, TeardownReport, TeardownStatus


def _format_teardown_report(report: TeardownReport, output_format: str) -> str:
    if output_format == "json":
        return report.model_dump_json(indent=2)

    lines = [
        "",
        f"Environment:      {report.environment.value}",
        f"Status:           {report.status.value}",
    ]
    if report.destroyed_phases:
        lines.append(f"Destroyed:        {', '.join(p.value for p in report.destroyed_phases)}")
    if report.skipped_phases:
        lines.append(
            f"Already empty:    {', '.join(p.value for p in report.skipped_phases)}"
        )
    if report.backup_name:
        lines.append(f"Backup:           {report.backup_name}")
    if report.archive_path:
        lines.append(f"State archive:    {report.archive_path}")
    if report.monthly_savings is not None and not report.dry_run:
        lines.append(f"Monthly savings:  EUR {report.monthly_savings.monthly}")
    if report.remaining_resources:
        lines.append("Remaining resources:")
        for resource in report.remaining_resources:
            lines.append(f"  - {resource}")
    if report.unverified_phases:
        lines.append(
            f"Unverified:       {', '.join(p.value for p in report.unverified_phases)}"
        )
    lines.append(f"Duration:         {report.duration_seconds}s")
    lines.append("")
    return "\n".join(lines)


@click.command(
    name="teardown",
    help="Destroy an environment: Coder first, then the infrastructure.",
    epilog="""
Examples:
    $ coder-lifecycle teardown --env=dev --confirm
    $ coder-lifecycle teardown --env=prod --confirm --preserve-data
    $ echo -e "staging\\nyes" | coder-lifecycle teardown --env=staging --confirm

Exit Codes:
    0 - Success (or cancelled by the operator)
    1 - Validation or execution failure
    2 - Usage error (missing --confirm)
    3 - Teardown finished but resources remain or could not be verified
""",
)
@click.option("--env", "environment", required=True, metavar="ENV", help="dev, staging or prod.")
@click.option(
    "--confirm",
    is_flag=True,
    default=False,
    help="Required acknowledgement that this destroys the environment.",
)
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Proceed despite active workspaces or a failed application destroy.",
)
@click.option(
    "--emergency",
    is_flag=True,
    default=False,
    help="Skip every confirmation prompt and the safety delay. Implies --force.",
)
@click.option("--no-backup", is_flag=True, default=False, help="Skip the pre-destroy backup.")
@click.option(
    "--preserve-data",
    is_flag=True,
    default=False,
    help="Abort unless the database and workspace volumes are backed up.",
)
@click.option("--region", default=None, help="Scaleway region override.")
@click.option("--dry-run", is_flag=True, default=False, help="Plan the destroys only.")
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def teardown_command(
    ctx: click.Context,
    environment: str,
    confirm: bool,
    force: bool,
    emergency: bool,
    no_backup: bool,
    preserve_data: bool,
    region: str | None,
    dry_run: bool,
    output: str,
) -> None:
    """Tear down an environment."""
    if not confirm:
        error_exit(
            "teardown requires --confirm to acknowledge data loss",
            exit_code=ExitCode.USAGE_ERROR,
        )
    if preserve_data and no_backup:
        error_exit(
            "--preserve-data cannot be combined with --no-backup",
            exit_code=ExitCode.USAGE_ERROR,
        )

    try:
        settings = runtime.settings_from_context(ctx)
        env_ctx = resolve_environment(environment, settings, region=region)
        log_file = runtime.start_operation(ctx, settings, "teardown", env_ctx.name.value)
        rt = runtime.build_runtime(settings)
        rt.require(SETUP_TOOLS)

        if emergency:
            warn("Emergency mode: confirmation prompts and safety delay are bypassed")
        if output == "table":
            info(f"Tearing down {env_ctx.name.value} ({env_ctx.layout.kind} layout)")
        options = TeardownOptions(
            force=force,
            emergency=emergency,
            backup=not no_backup,
            preserve_data=preserve_data,
            dry_run=dry_run,
        )
        report = rt.orchestrator(env_ctx.region).teardown(env_ctx, options)
    except Exception as e:
        fail(e, destructive=True)

    click.echo(_format_teardown_report(report, output))
    for step in report.steps:
        if not step.ok:
            warn(f"{step.step.value} failed: {step.message}")
    if output == "table":
        info(f"Log file: {log_file}")

    try:
        report.raise_for_status()
    except Exception as e:
        fail(e, destructive=True)

    if report.status == TeardownStatus.PLANNED:
        success("Dry run complete, nothing was destroyed")
    else:
        success(f"Environment {env_ctx.name.value} destroyed")
        if output == "table":
            info(CONSOLE_REMINDER)


__all__: list[str] = ["teardown_command"]
