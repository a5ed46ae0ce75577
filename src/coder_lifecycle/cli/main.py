"""Main entry point for the coder-lifecycle CLI.

Commands:
    coder-lifecycle setup: Provision an environment
    coder-lifecycle teardown: Destroy an environment
    coder-lifecycle backup: Create, list, verify and purge backups
    coder-lifecycle backend: Bootstrap the remote state backend
    coder-lifecycle status: Inspect provisioned resources
    coder-lifecycle cost: Estimate costs
    coder-lifecycle resize: Resize the managed database
    coder-lifecycle templates: List workspace templates

Example:
    $ coder-lifecycle --help
    $ coder-lifecycle setup --env=dev --auto-approve
    $ coder-lifecycle --json-logs teardown --env=staging --confirm
"""

from __future__ import annotations

import sys
from importlib.metadata import version as get_version
from pathlib import Path

import click

from coder_lifecycle.cli.backend import backend
from coder_lifecycle.cli.backup import backup
from coder_lifecycle.cli.cost import cost_command
from coder_lifecycle.cli.resize import resize_command
from coder_lifecycle.cli.setup import setup_command
from coder_lifecycle.cli.status import status_command
from coder_lifecycle.cli.teardown import teardown_command
from coder_lifecycle.cli.templates import templates


def _get_version() -> str:
    """Get the coder-lifecycle package version, or 'unknown' if not installed."""
    try:
        return get_version("coder-lifecycle")
    except Exception:
        return "unknown"


@click.group(
    name="coder-lifecycle",
    help="coder-lifecycle - Provision and decommission Coder environments on Scaleway.",
    epilog="Use 'coder-lifecycle <command> --help' for command-specific help.",
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="coder-lifecycle",
    message="%(prog)s %(version)s",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file with settings (takes precedence over CODER_LIFECYCLE_* variables).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level (default: INFO).",
)
@click.option("--json-logs", is_flag=True, default=False, help="Render logs as JSON on stderr.")
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    log_level: str | None,
    json_logs: bool,
) -> None:
    """Root command group for the coder-lifecycle CLI."""
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["log_level"] = log_level.upper() if log_level else None
    ctx.obj["json_logs"] = json_logs


cli.add_command(setup_command)
cli.add_command(teardown_command)
cli.add_command(backup)
cli.add_command(backend)
cli.add_command(status_command)
cli.add_command(cost_command)
cli.add_command(resize_command)
cli.add_command(templates)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the coder-lifecycle CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
