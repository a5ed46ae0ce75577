"""Cost and impact estimation.

Pure lookups over static price tables: no I/O, no shared mutable state,
safe to call before any resource exists and from any thread. Figures are
indicative. Instance-type monthly costs are a linear extrapolation of the
hourly rate over 720 hours, with no discounts, partial-month billing or
regional price differences.

Example:
    >>> estimate("dev").monthly
    Decimal('53.70')
    >>> resize_delta("DB-DEV-S", "DB-GP-S").monthly_delta
    Decimal('6.12')
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType

from coder_lifecycle.errors import InvalidConfigurationError
from coder_lifecycle.schemas.cost import CostComponent, CostDelta, CostEstimate, CostPeriod

HOURS_PER_MONTH = Decimal("720")
_CENT = Decimal("0.01")

PERIOD_MULTIPLIERS: MappingProxyType[CostPeriod, Decimal] = MappingProxyType(
    {
        CostPeriod.HOURLY: Decimal("1"),
        CostPeriod.DAILY: Decimal("24"),
        CostPeriod.MONTHLY: Decimal("720"),
        CostPeriod.YEARLY: Decimal("8640"),
    }
)

_ENVIRONMENT_PROFILES: MappingProxyType[str, tuple[CostComponent, ...]] = MappingProxyType(
    {
        "dev": (
            CostComponent(name="cluster", description="2x GP1-XS nodes", monthly=Decimal("30.40")),
            CostComponent(name="database", description="DB-DEV-S", monthly=Decimal("12.30")),
            CostComponent(name="load_balancer", description="LB-S", monthly=Decimal("8.90")),
            CostComponent(name="network", description="VPC and IPs", monthly=Decimal("2.10")),
        ),
        "staging": (
            CostComponent(name="cluster", description="3x GP1-S nodes", monthly=Decimal("68.40")),
            CostComponent(name="database", description="DB-GP-S", monthly=Decimal("18.45")),
            CostComponent(name="load_balancer", description="LB-S", monthly=Decimal("8.90")),
            CostComponent(name="network", description="VPC and IPs", monthly=Decimal("2.10")),
        ),
        "prod": (
            CostComponent(name="cluster", description="5x GP1-M nodes", monthly=Decimal("228.00")),
            CostComponent(name="database", description="DB-GP-M HA", monthly=Decimal("73.80")),
            CostComponent(name="load_balancer", description="LB-GP-M", monthly=Decimal("45.60")),
            CostComponent(name="network", description="VPC and IPs", monthly=Decimal("2.10")),
            CostComponent(name="storage", description="Block storage", monthly=Decimal("25.00")),
        ),
    }
)

# node type -> (hourly EUR, description)
_INSTANCE_TYPES: MappingProxyType[str, tuple[Decimal, str]] = MappingProxyType(
    {
        "DB-DEV-S": (Decimal("0.0171"), "1 vCPU, 2GB RAM"),
        "DB-GP-S": (Decimal("0.0256"), "2 vCPU, 4GB RAM"),
        "DB-GP-M": (Decimal("0.0513"), "4 vCPU, 16GB RAM"),
        "DB-GP-L": (Decimal("0.1025"), "8 vCPU, 32GB RAM"),
    }
)

INSTANCE_TYPES: tuple[str, ...] = tuple(_INSTANCE_TYPES)
ENVIRONMENT_PROFILES: tuple[str, ...] = tuple(_ENVIRONMENT_PROFILES)


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def validate_instance_type(instance_type: str) -> str:
    if instance_type not in _INSTANCE_TYPES:
        raise InvalidConfigurationError(
            f"Invalid instance type '{instance_type}'. Valid types: {', '.join(INSTANCE_TYPES)}"
        )
    return instance_type


def estimate(target: str) -> CostEstimate:
    """Estimate the monthly cost of an environment or database instance type.

    Args:
        target: Environment name (dev, staging, prod) or node type (DB-GP-M).

    Raises:
        InvalidConfigurationError: If ``target`` is neither.
    """
    components = _ENVIRONMENT_PROFILES.get(target)
    if components is not None:
        monthly = sum((c.monthly for c in components), Decimal("0"))
        return CostEstimate(
            target=target,
            kind="environment",
            monthly=_money(monthly),
            hourly=(monthly / HOURS_PER_MONTH).quantize(Decimal("0.0001")),
            description=", ".join(f"{c.description}" for c in components),
            components=components,
        )

    rate = _INSTANCE_TYPES.get(target)
    if rate is not None:
        hourly, description = rate
        return CostEstimate(
            target=target,
            kind="instance_type",
            monthly=_money(hourly * HOURS_PER_MONTH),
            hourly=hourly,
            description=description,
        )

    raise InvalidConfigurationError(
        f"Unknown cost target '{target}'. Expected one of "
        f"{', '.join(ENVIRONMENT_PROFILES + INSTANCE_TYPES)}"
    )


def project(cost: CostEstimate, period: CostPeriod) -> Decimal:
    """Scale a monthly estimate to another billing period.

    Examples:
        >>> project(estimate("DB-GP-S"), CostPeriod.DAILY)
        Decimal('0.61')
    """
    hourly = cost.monthly / PERIOD_MULTIPLIERS[CostPeriod.MONTHLY]
    return _money(hourly * PERIOD_MULTIPLIERS[period])


def resize_delta(current: str, target: str) -> CostDelta:
    """Monthly cost change of moving a database between node types."""
    current_cost = estimate(validate_instance_type(current))
    target_cost = estimate(validate_instance_type(target))
    delta = target_cost.monthly - current_cost.monthly
    percent = (
        _money(delta / current_cost.monthly * 100) if current_cost.monthly else None
    )
    return CostDelta(
        current=current_cost,
        target=target_cost,
        monthly_delta=delta,
        percent_change=percent,
    )


__all__: list[str] = [
    "ENVIRONMENT_PROFILES",
    "HOURS_PER_MONTH",
    "INSTANCE_TYPES",
    "PERIOD_MULTIPLIERS",
    "estimate",
    "project",
    "resize_delta",
    "validate_instance_type",
]
