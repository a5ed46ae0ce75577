"""Cost estimate command.

Example:
    $ coder-lifecycle cost --env=prod
    $ coder-lifecycle cost --instance-type=DB-GP-M --period=yearly
"""

from __future__ import annotations

import json

import click

from coder_lifecycle.cli.utils import ExitCode, error_exit, fail
from coder_lifecycle.cost import estimate, project
from coder_lifecycle.schemas.cost import CostEstimate, CostPeriod
from coder_lifecycle.validation import validate_environment_name


def _format_estimate(cost: CostEstimate, period: CostPeriod) -> str:
    lines = [
        "",
        f"Cost estimate: {cost.target}",
        "=" * 40,
        f"Resources: {cost.description}",
    ]
    for component in cost.components:
        lines.append(f"  {component.name:<16} EUR {component.monthly:>8}/month")
    lines.append(f"{period.value.capitalize()}: EUR {project(cost, period)}")
    lines.append("")
    return "\n".join(lines)


@click.command(
    name="cost",
    help="Estimate the cost of an environment or a database instance type.",
    epilog="""
Examples:
    $ coder-lifecycle cost --env=staging
    $ coder-lifecycle cost --instance-type=DB-GP-L --period=daily --output=json
""",
)
@click.option("--env", "environment", default=None, metavar="ENV", help="dev, staging or prod.")
@click.option("--instance-type", default=None, help="Database node type, e.g. DB-GP-M.")
@click.option(
    "--period",
    type=click.Choice([p.value for p in CostPeriod], case_sensitive=False),
    default=CostPeriod.MONTHLY.value,
    show_default=True,
    help="Billing period to project to.",
)
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
def cost_command(
    environment: str | None,
    instance_type: str | None,
    period: str,
    output: str,
) -> None:
    """Show a cost estimate. Exactly one of --env or --instance-type is required."""
    if (environment is None) == (instance_type is None):
        error_exit(
            "Provide exactly one of --env or --instance-type",
            exit_code=ExitCode.USAGE_ERROR,
        )

    billing_period = CostPeriod(period.lower())
    try:
        if environment is not None:
            cost = estimate(validate_environment_name(environment).value)
        else:
            cost = estimate(str(instance_type))
    except Exception as e:
        fail(e)

    if output == "json":
        data = json.loads(cost.model_dump_json())
        data["period"] = billing_period.value
        data["projected"] = str(project(cost, billing_period))
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(_format_estimate(cost, billing_period))


__all__: list[str] = ["cost_command"]
