"""Backup commands.

Example:
    $ coder-lifecycle backup create --env=prod --include-data
    $ coder-lifecycle backup list
    $ coder-lifecycle backup verify backup-20250101-020000-prod
    $ coder-lifecycle backup restore --env=prod backup-20250101-020000-prod --confirm
    $ coder-lifecycle backup purge --retention-days=14
"""

from __future__ import annotations

import json

import click

from coder_lifecycle.cli import runtime
from coder_lifecycle.cli.utils import ExitCode, error_exit, fail, info, success, warn
from coder_lifecycle.config import SETUP_TOOLS
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.schemas.backup import (
    Backup,
    BackupKind,
    BackupOptions,
    RestoreComponent,
    RestoreOptions,
)


def _format_backup(backup: Backup) -> str:
    manifest = backup.manifest
    contents = manifest.contents
    captured = [name for name, flag in contents.model_dump().items() if flag]
    lines = [
        "",
        f"Backup:           {backup.name}",
        f"Path:             {backup.path}",
        f"Environment:      {manifest.environment}",
        f"Created:          {manifest.created_at.isoformat()}",
        f"Size:             {manifest.backup_size} bytes",
        f"Retention:        {manifest.retention_days} days",
        f"Contents:         {', '.join(captured) or 'none'}",
        f"Checksum:         {manifest.checksum}",
        "",
    ]
    return "\n".join(lines)


@click.group(name="backup", help="Create, list, verify, restore and purge environment backups.")
def backup() -> None:
    """Backup command group."""
    pass


@backup.command(
    name="create",
    help="Back up an environment's state, cluster resources and optionally data.",
    epilog="""
Examples:
    $ coder-lifecycle backup create --env=prod --include-data --include-templates
    $ coder-lifecycle backup create --env=dev --backup-name=before-upgrade --compress

Exit Codes:
    0 - Success (components that failed are listed as warnings)
    1 - Backup could not be written
""",
)
@click.option("--env", "environment", required=True, metavar="ENV", help="dev, staging or prod.")
@click.option("--backup-name", default=None, help="Bundle name. Derived from the time if unset.")
@click.option("--include-data", is_flag=True, default=False, help="Database and workspace volumes.")
@click.option("--include-templates", is_flag=True, default=False, help="Workspace templates.")
@click.option(
    "--pre-destroy",
    is_flag=True,
    default=False,
    help="Name the bundle as a pre-destroy backup.",
)
@click.option(
    "--retention-days", type=int, default=None, help="Retention recorded in the manifest."
)
@click.option("--compress", is_flag=True, default=False, help="Store as a single .tar.gz archive.")
@click.option(
    "--require-complete",
    is_flag=True,
    default=False,
    help="Fail and discard the bundle if any component fails.",
)
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def create_command(
    ctx: click.Context,
    environment: str,
    backup_name: str | None,
    include_data: bool,
    include_templates: bool,
    pre_destroy: bool,
    retention_days: int | None,
    compress: bool,
    require_complete: bool,
    output: str,
) -> None:
    """Create a backup bundle."""
    try:
        settings = runtime.settings_from_context(ctx)
        env_ctx = resolve_environment(environment, settings)
        log_file = runtime.start_operation(ctx, settings, "backup", env_ctx.name.value)
        rt = runtime.build_runtime(settings)
        rt.require(SETUP_TOOLS)

        options = BackupOptions(
            include_data=include_data,
            include_templates=include_templates,
            name=backup_name,
            kind=BackupKind.PRE_DESTROY if pre_destroy else BackupKind.BACKUP,
            retention_days=retention_days or settings.backup_retention_days,
            require_complete=require_complete,
            compress=compress,
        )
        result = rt.backups().create_backup(env_ctx, options)
    except Exception as e:
        fail(e)

    if output == "json":
        click.echo(result.model_dump_json(indent=2))
    else:
        click.echo(_format_backup(result))
        info(f"Log file: {log_file}")
    for warning_text in result.manifest.warnings:
        warn(f"Component not captured: {warning_text}")
    success(f"Backup {result.name} created")


@backup.command(name="list", help="List backups with their manifests.")
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def list_command(ctx: click.Context, output: str) -> None:
    """List existing backups."""
    try:
        settings = runtime.settings_from_context(ctx)
        backups = runtime.build_runtime(settings).backups().list_backups()
    except Exception as e:
        fail(e)

    if output == "json":
        click.echo(json.dumps([json.loads(b.model_dump_json()) for b in backups], indent=2))
        return
    if not backups:
        info("No backups found")
        return
    for entry in backups:
        complete = "complete" if entry.complete else "partial"
        click.echo(
            f"{entry.name:<45} {entry.manifest.environment:<8} "
            f"{entry.manifest.created_at:%Y-%m-%d %H:%M} {complete}"
        )


@backup.command(
    name="verify",
    help="Recompute a bundle checksum and compare it with its manifest.",
    epilog="""
Exit Codes:
    0 - Checksum matches
    1 - Checksum mismatch or unreadable bundle
""",
)
@click.argument("name")
@click.pass_context
def verify_command(ctx: click.Context, name: str) -> None:
    """Verify backup integrity.

    \b
    NAME: Bundle name as shown by 'backup list'.
    """
    try:
        settings = runtime.settings_from_context(ctx)
        coordinator = runtime.build_runtime(settings).backups()
        ok = coordinator.verify_backup(coordinator.find_backup(name))
    except Exception as e:
        fail(e)

    if not ok:
        error_exit("Checksum mismatch", exit_code=ExitCode.FAILURE, backup=name)
    success(f"Backup {name} verified")


@backup.command(
    name="restore",
    help="Restore infrastructure state, cluster resources and the database from a bundle.",
    epilog="""
Examples:
    $ coder-lifecycle backup restore --env=staging backup-20250301-120000-staging --confirm
    $ coder-lifecycle backup restore --env=prod nightly --component=database --confirm
    $ coder-lifecycle backup restore --env=dev nightly --dry-run

Exit Codes:
    0 - Success (or cancelled by the operator)
    1 - Verification or restore failure
    2 - Usage error (missing --confirm)
""",
)
@click.argument("name")
@click.option("--env", "environment", required=True, metavar="ENV", help="dev, staging or prod.")
@click.option(
    "--component",
    "components",
    multiple=True,
    type=click.Choice([c.value for c in RestoreComponent]),
    help="Component to restore (repeatable). Defaults to every captured component.",
)
@click.option(
    "--confirm",
    is_flag=True,
    default=False,
    help="Required acknowledgement that this overwrites the environment.",
)
@click.option("--force", is_flag=True, default=False, help="Skip the safety delay.")
@click.option(
    "--emergency",
    is_flag=True,
    default=False,
    help="Skip every confirmation prompt and the safety delay.",
)
@click.option("--dry-run", is_flag=True, default=False, help="Verify and show the plan only.")
@click.pass_context
def restore_command(
    ctx: click.Context,
    name: str,
    environment: str,
    components: tuple[str, ...],
    confirm: bool,
    force: bool,
    emergency: bool,
    dry_run: bool,
) -> None:
    """Restore a backup bundle into its environment.

    \b
    NAME: Bundle name as shown by 'backup list'.
    """
    if not confirm and not dry_run:
        error_exit(
            "restore requires --confirm to acknowledge that current state is overwritten",
            exit_code=ExitCode.USAGE_ERROR,
        )

    try:
        settings = runtime.settings_from_context(ctx)
        env_ctx = resolve_environment(environment, settings)
        log_file = runtime.start_operation(ctx, settings, "restore", env_ctx.name.value)
        rt = runtime.build_runtime(settings)
        rt.require(SETUP_TOOLS)

        if emergency:
            warn("Emergency mode: confirmation prompts and safety delay are bypassed")
        options = RestoreOptions(
            components=tuple(RestoreComponent(c) for c in components),
            emergency=emergency,
            force=force,
            dry_run=dry_run,
        )
        report = rt.backups().restore(
            env_ctx, name, options, safety=rt.safety(), prompter=rt.prompter
        )
    except Exception as e:
        fail(e)

    info(f"Log file: {log_file}")
    if report.dry_run:
        success(
            f"Backup {report.backup_name} verified; would restore: "
            + ", ".join(c.value for c in report.planned)
        )
        return
    for component in report.restored:
        info(f"Restored {component.value}")
    success(f"Backup {report.backup_name} restored into {report.environment}")


@backup.command(name="purge", help="Delete backups older than the retention window.")
@click.option(
    "--retention-days",
    type=int,
    default=None,
    help="Retention window in days. Defaults to the configured retention.",
)
@click.pass_context
def purge_command(ctx: click.Context, retention_days: int | None) -> None:
    """Purge expired backups. Deletion is permanent."""
    try:
        settings = runtime.settings_from_context(ctx)
        runtime.start_operation(ctx, settings, "backup", "all")
        coordinator = runtime.build_runtime(settings).backups()
        purged = coordinator.purge_expired(retention_days or settings.backup_retention_days)
    except Exception as e:
        fail(e)

    for name in purged:
        info(f"Purged {name}")
    success(f"Purged {len(purged)} backup(s)")


__all__: list[str] = ["backup"]
