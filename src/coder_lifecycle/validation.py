"""Input validation for operator-supplied values.

All checks here are local and run before any remote system is touched.
Each raises InvalidConfigurationError with a message naming the bad value.
"""

from __future__ import annotations

import re

from coder_lifecycle.errors import InvalidConfigurationError
from coder_lifecycle.schemas.environment import EnvironmentName

DOMAIN_PATTERN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?)*$"
)
SUBDOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?$")

DEFAULT_SUBDOMAINS: dict[EnvironmentName, str] = {
    EnvironmentName.DEV: "coder-dev",
    EnvironmentName.STAGING: "coder-staging",
    EnvironmentName.PROD: "coder",
}


def validate_environment_name(name: str) -> EnvironmentName:
    """Parse an environment name.

    Examples:
        >>> validate_environment_name("staging")
        <EnvironmentName.STAGING: 'staging'>
    """
    try:
        return EnvironmentName(name)
    except ValueError:
        valid = ", ".join(e.value for e in EnvironmentName)
        raise InvalidConfigurationError(
            f"Invalid environment '{name}'. Valid environments: {valid}",
            environment=name,
        ) from None


def validate_domain(domain: str) -> str:
    if len(domain) > 253 or not DOMAIN_PATTERN.match(domain):
        raise InvalidConfigurationError(f"Invalid domain name format: {domain}")
    return domain.lower()


def validate_subdomain(subdomain: str) -> str:
    if len(subdomain) > 63 or not SUBDOMAIN_PATTERN.match(subdomain):
        raise InvalidConfigurationError(f"Invalid subdomain format: {subdomain}")
    return subdomain.lower()


def resolve_subdomain(environment: EnvironmentName, subdomain: str | None) -> str:
    """Return the validated subdomain, defaulting per environment."""
    if subdomain is None:
        return DEFAULT_SUBDOMAINS[environment]
    return validate_subdomain(subdomain)


__all__: list[str] = [
    "DEFAULT_SUBDOMAINS",
    "DOMAIN_PATTERN",
    "SUBDOMAIN_PATTERN",
    "resolve_subdomain",
    "validate_domain",
    "validate_environment_name",
    "validate_subdomain",
]
