"""State backend commands.

Example:
    $ coder-lifecycle backend ensure --env=dev
    $ coder-lifecycle backend ensure --env=all --dry-run
"""

from __future__ import annotations

import json

import click

from coder_lifecycle.cli import runtime
from coder_lifecycle.cli.utils import fail, info, success, warn
from coder_lifecycle.environment import resolve_environment
from coder_lifecycle.errors import InvalidConfigurationError
from coder_lifecycle.schemas.backend import BackendDescriptor
from coder_lifecycle.schemas.environment import EnvironmentContext, EnvironmentName

ALL_ENVIRONMENTS = "all"


def _format_descriptor(env: str, descriptor: BackendDescriptor) -> str:
    lines = [
        "",
        f"Environment:      {env}",
        f"Bucket:           {descriptor.bucket_name}",
        f"Region:           {descriptor.region}",
        f"Endpoint:         {descriptor.endpoint}",
        f"Configured:       {'yes' if descriptor.configured else 'no (dry run)'}",
    ]
    for phase, key in descriptor.state_keys.items():
        lines.append(f"State key:        {phase} -> {key}")
    return "\n".join(lines)


@click.group(name="backend", help="Manage the remote Terraform state backend.")
def backend() -> None:
    """Backend command group."""
    pass


@backend.command(
    name="ensure",
    help="Create the state bucket and backend configuration if missing.",
    epilog="""
Examples:
    $ coder-lifecycle backend ensure --env=dev
    $ coder-lifecycle backend ensure --env=all --region=nl-ams

Exit Codes:
    0 - Backend ready (or dry run)
    1 - Invalid or deprecated configuration, or bucket unreachable
""",
)
@click.option(
    "--env",
    "environment",
    required=True,
    metavar="ENV",
    help="dev, staging, prod or 'all'.",
)
@click.option("--region", default=None, help="Scaleway region override.")
@click.option(
    "--force-recreate",
    is_flag=True,
    default=False,
    help="Rewrite backend files even when valid, replacing deprecated syntax.",
)
@click.option("--dry-run", is_flag=True, default=False, help="Show what would be configured.")
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def ensure_command(
    ctx: click.Context,
    environment: str,
    region: str | None,
    force_recreate: bool,
    dry_run: bool,
    output: str,
) -> None:
    """Ensure the backend of one or all environments."""
    try:
        settings = runtime.settings_from_context(ctx)
        runtime.start_operation(ctx, settings, "backend", environment)
        if environment == ALL_ENVIRONMENTS:
            contexts: list[EnvironmentContext] = []
            for name in EnvironmentName:
                try:
                    contexts.append(resolve_environment(name.value, settings, region=region))
                except InvalidConfigurationError as e:
                    warn(f"Skipping {name.value}: {e}")
            if not contexts:
                raise InvalidConfigurationError("No environment directories found")
        else:
            contexts = [resolve_environment(environment, settings, region=region)]

        rt = runtime.build_runtime(settings)
        rt.require(("terraform",))
        manager = rt.backend_manager(contexts[0].region)
        descriptors = manager.ensure_all(contexts, force_recreate=force_recreate, dry_run=dry_run)
    except Exception as e:
        fail(e)

    if output == "json":
        click.echo(
            json.dumps(
                {
                    c.name.value: json.loads(d.model_dump_json())
                    for c, d in zip(contexts, descriptors)
                },
                indent=2,
            )
        )
        return

    for env_ctx, descriptor in zip(contexts, descriptors):
        click.echo(_format_descriptor(env_ctx.name.value, descriptor))
    click.echo("")
    if dry_run:
        info("Dry run: no bucket or file was created")
    success(f"Backend ready for {', '.join(c.name.value for c in contexts)}")


__all__: list[str] = ["backend"]
