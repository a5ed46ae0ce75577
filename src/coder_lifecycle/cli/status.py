"""Environment status command.

Example:
    $ coder-lifecycle status --env=dev
    $ coder-lifecycle status --env=prod --output=json
"""

from __future__ import annotations

import click

from coder_lifecycle.cli import runtime
from coder_lifecycle.cli.utils import fail
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.schemas.inventory import EnvironmentInventory

_STATUS_ICONS = {"present": "✓", "empty": "✗", "unknown": "?"}


def _format_inventory(inventory: EnvironmentInventory) -> str:
    lines = [
        "",
        f"Environment Status: {inventory.environment.value}",
        "=" * 50,
        f"Layout: {inventory.layout}",
        "",
        "Phases:",
    ]
    for snapshot in inventory.snapshots:
        icon = _STATUS_ICONS[snapshot.status.value]
        detail = (
            f"{snapshot.count} resources"
            if snapshot.count is not None
            else f"unknown ({snapshot.reason or 'state unreadable'})"
        )
        lines.append(f"  {icon} {snapshot.phase.value}: {detail}")

    workspaces = inventory.workspaces
    lines.append("")
    if workspaces.count is None:
        lines.append(f"Workspaces: unknown ({workspaces.reason})")
    else:
        lines.append(f"Workspaces: {workspaces.count} running")
        for name in workspaces.workspaces:
            lines.append(f"  • {name}")
    lines.append("")
    return "\n".join(lines)


@click.command(
    name="status",
    help="Show provisioned resources and running workspaces of an environment.",
)
@click.option("--env", "environment", required=True, metavar="ENV", help="dev, staging or prod.")
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def status_command(ctx: click.Context, environment: str, output: str) -> None:
    """Inspect an environment without changing it."""
    try:
        settings = runtime.settings_from_context(ctx)
        env_ctx = resolve_environment(environment, settings)
        inventory = runtime.build_runtime(settings).inspector().inspect_environment(env_ctx)
    except Exception as e:
        fail(e)

    if output == "json":
        click.echo(inventory.model_dump_json(indent=2))
    else:
        click.echo(_format_inventory(inventory))


__all__: list[str] = ["status_command"]
