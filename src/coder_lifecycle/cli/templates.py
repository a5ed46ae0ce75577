"""Workspace template commands."""

from __future__ import annotations

import json

import click

from coder_lifecycle.cli import runtime
from coder_lifecycle.cli.utils import fail, info


@click.group(name="templates", help="Workspace template catalog.")
def templates() -> None:
    """Templates command group."""
    pass


@templates.command(name="list", help="List templates available for --template.")
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def list_command(ctx: click.Context, output: str) -> None:
    """List discovered workspace templates."""
    try:
        settings = runtime.settings_from_context(ctx)
        found = runtime.build_runtime(settings).catalog().discover()
    except Exception as e:
        fail(e)

    if output == "json":
        click.echo(json.dumps({name: str(path) for name, path in sorted(found.items())}, indent=2))
        return
    if not found:
        info(f"No templates found under {settings.templates_path}")
        return
    for name, path in sorted(found.items()):
        click.echo(f"{name:<30} {path.relative_to(settings.templates_path)}")


__all__: list[str] = ["templates"]
