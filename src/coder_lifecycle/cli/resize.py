"""Database resize command.

Example:
    $ coder-lifecycle resize --env=prod --instance-type=DB-GP-L --confirm
    $ coder-lifecycle resize --env=staging --instance-type=DB-GP-M --dry-run
    $ coder-lifecycle resize --env=dev --analyze-only
"""

from __future__ import annotations

import click

from coder_lifecycle.cli import runtime
from coder_lifecycle.cli.utils import ExitCode, error_exit, fail, info, success
from coder_lifecycle.config import RESIZE_TOOLS
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.schemas.resize import ResizeOptions, ResizeOutcome, ResizeReport


def _format_resize_report(report: ResizeReport, output_format: str) -> str:
    if output_format == "json":
        return report.model_dump_json(indent=2)

    lines = [
        "",
        f"Environment:      {report.environment.value}",
        f"Database:         {report.database_id}",
        f"Current type:     {report.current_type}",
        f"Target type:      {report.target_type}",
        f"Outcome:          {report.outcome.value}",
    ]
    delta = report.cost_delta
    if delta is not None:
        lines.append(f"Current cost:     EUR {delta.current.monthly}/month")
        lines.append(f"Target cost:      EUR {delta.target.monthly}/month")
        change = f"EUR {delta.monthly_delta:+}/month"
        if delta.percent_change is not None:
            change += f" ({delta.percent_change:+}%)"
        lines.append(f"Change:           {change}")
    if report.backup_name:
        lines.append(f"Backup:           {report.backup_name}")
    lines.append("")
    return "\n".join(lines)


@click.command(
    name="resize",
    help="Change the node type of an environment's managed database.",
    epilog="""
Examples:
    $ coder-lifecycle resize --env=prod --instance-type=DB-GP-L --confirm
    $ coder-lifecycle resize --env=dev --analyze-only

Exit Codes:
    0 - Resized, unchanged, planned or cancelled
    1 - Validation failure or resize failure
    2 - Usage error
""",
)
@click.option("--env", "environment", required=True, metavar="ENV", help="dev, staging or prod.")
@click.option("--instance-type", default=None, help="Target node type, e.g. DB-GP-M.")
@click.option(
    "--confirm",
    is_flag=True,
    default=False,
    help="Confirm the resize up front instead of at the prompt.",
)
@click.option("--auto-approve", is_flag=True, default=False, help="Skip the confirmation prompt.")
@click.option("--dry-run", is_flag=True, default=False, help="Show the plan only.")
@click.option("--analyze-only", is_flag=True, default=False, help="Show the cost impact only.")
@click.option("--no-backup", is_flag=True, default=False, help="Skip the pre-resize backup.")
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def resize_command(
    ctx: click.Context,
    environment: str,
    instance_type: str | None,
    confirm: bool,
    auto_approve: bool,
    dry_run: bool,
    analyze_only: bool,
    no_backup: bool,
    output: str,
) -> None:
    """Resize the managed database."""
    if instance_type is None and not analyze_only:
        error_exit("--instance-type is required unless --analyze-only", ExitCode.USAGE_ERROR)

    try:
        settings = runtime.settings_from_context(ctx)
        env_ctx = resolve_environment(environment, settings)
        log_file = runtime.start_operation(ctx, settings, "resize", env_ctx.name.value)
        rt = runtime.build_runtime(settings)
        rt.require(RESIZE_TOOLS)

        options = ResizeOptions(
            instance_type=instance_type,
            dry_run=dry_run,
            analyze_only=analyze_only,
            auto_approve=auto_approve or confirm,
            no_backup=no_backup,
        )
        report = rt.resizer().resize(env_ctx, options)
    except Exception as e:
        fail(e, destructive=True)

    click.echo(_format_resize_report(report, output))
    if output == "table":
        info(f"Log file: {log_file}")
    if report.outcome == ResizeOutcome.RESIZED:
        success(f"Database resized to {report.target_type}")
    elif report.outcome == ResizeOutcome.UNCHANGED:
        success(f"Database already {report.target_type}, nothing to do")
    else:
        success("Dry run complete, no changes were made")


__all__: list[str] = ["resize_command"]
