"""Environment setup command.

Example:
    $ coder-lifecycle setup --env=dev --auto-approve
    $ coder-lifecycle setup --env=prod --domain=example.com --template=python-dev
    $ coder-lifecycle setup --env=staging --dry-run
"""

from __future__ import annotations

import click

from coder_lifecycle.cli import runtime
from coder_lifecycle.cli.utils import fail, info, success, warn
from coder_lifecycle.config import SETUP_TOOLS
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.schemas.lifecycle import SetupOptions, SetupReport


def _format_setup_report(report: SetupReport, output_format: str) -> str:
    if output_format == "json":
        return report.model_dump_json(indent=2)

    lines = [
        "",
        f"Environment:      {report.environment.value}",
        f"Layout:           {report.layout}",
        f"Reached:          {report.states[-1].value if report.states else 'none'}",
    ]
    if report.cost is not None:
        lines.append(
            f"Estimated cost:   EUR {report.cost.monthly}/month ({report.cost.description})"
        )
    if report.dry_run:
        lines.append("Mode:             dry run, no changes applied")
        lines.append("")
        return "\n".join(lines)

    lines.append(f"Access URL:       {report.access_url or 'unknown'}")
    if report.wildcard_access_url:
        lines.append(f"Workspace URLs:   {report.wildcard_access_url}")
    if report.admin_username:
        lines.append(f"Admin user:       {report.admin_username}")
    if report.backup_name:
        lines.append(f"Backup:           {report.backup_name}")
    for template in report.templates:
        lines.append(f"Template:         {template.name} ({'ok' if template.ok else 'failed'})")
    if report.dns_records:
        lines.append("")
        lines.append("DNS records to create:")
        for record in report.dns_records:
            lines.append(f"  {record.type:<6} {record.name} -> {record.value} (TTL {record.ttl})")
    lines.append(f"Duration:         {report.duration_seconds}s")
    lines.append("")
    return "\n".join(lines)


@click.command(
    name="setup",
    help="Provision an environment: state backend, infrastructure, then Coder.",
    epilog="""
Examples:
    $ coder-lifecycle setup --env=dev --auto-approve
    $ coder-lifecycle setup --env=prod --domain=example.com --template=python-dev

Exit Codes:
    0 - Success (or cancelled by the operator)
    1 - Validation or execution failure
""",
)
@click.option("--env", "environment", required=True, metavar="ENV", help="dev, staging or prod.")
@click.option(
    "--template",
    "templates",
    multiple=True,
    metavar="NAME",
    help="Workspace template to deploy after setup (repeatable).",
)
@click.option("--domain", default=None, help="Custom domain for the Coder access URL.")
@click.option("--subdomain", default=None, help="Subdomain under --domain.")
@click.option("--region", default=None, help="Scaleway region override.")
@click.option("--dry-run", is_flag=True, default=False, help="Plan only, change nothing.")
@click.option("--auto-approve", is_flag=True, default=False, help="Skip the apply prompt.")
@click.option("--no-backup", is_flag=True, default=False, help="Skip the pre-change backup.")
@click.option(
    "--require-backup",
    is_flag=True,
    default=False,
    help="Fail if the pre-change backup is incomplete.",
)
@click.option(
    "--no-coder",
    is_flag=True,
    default=False,
    help="Apply infrastructure only, skip the Coder application phase.",
)
@click.option(
    "--force-backend",
    is_flag=True,
    default=False,
    help="Rewrite backend configuration even when present.",
)
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def setup_command(
    ctx: click.Context,
    environment: str,
    templates: tuple[str, ...],
    domain: str | None,
    subdomain: str | None,
    region: str | None,
    dry_run: bool,
    auto_approve: bool,
    no_backup: bool,
    require_backup: bool,
    no_coder: bool,
    force_backend: bool,
    output: str,
) -> None:
    """Provision or update an environment."""
    try:
        settings = runtime.settings_from_context(ctx)
        env_ctx = resolve_environment(
            environment, settings, domain=domain, subdomain=subdomain, region=region
        )
        log_file = runtime.start_operation(ctx, settings, "setup", env_ctx.name.value)
        rt = runtime.build_runtime(settings)
        rt.require(SETUP_TOOLS)

        if output == "table":
            info(f"Setting up {env_ctx.name.value} ({env_ctx.layout.kind} layout)")
        options = SetupOptions(
            templates=templates,
            dry_run=dry_run,
            auto_approve=auto_approve,
            backup_existing=not no_backup,
            require_backup=require_backup,
            deploy_application=not no_coder,
            force_backend_recreate=force_backend,
        )
        report = rt.orchestrator(env_ctx.region).setup(env_ctx, options)
    except Exception as e:
        fail(e)

    click.echo(_format_setup_report(report, output))
    for step in report.warnings:
        warn(f"{step.step.value} failed: {step.message}")
    for issue in report.issues:
        warn(issue)
    if output == "table":
        info(f"Log file: {log_file}")
        if report.dry_run:
            success("Dry run complete")
        else:
            success(f"Environment {env_ctx.name.value} is ready")


__all__: list[str] = ["setup_command"]
