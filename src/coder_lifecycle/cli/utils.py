"""CLI utility functions and error handling.

Shared output helpers and exit codes for the coder-lifecycle CLI. Errors
and progress go to stderr so that ``--output json`` stays parseable on
stdout.

Example:
    from coder_lifecycle.cli.utils import error_exit, ExitCode

    if not confirmed:
        error_exit("teardown requires --confirm", exit_code=ExitCode.USAGE_ERROR)
"""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import TYPE_CHECKING

import click
import structlog

from coder_lifecycle.errors import LifecycleError, OperationCancelled

if TYPE_CHECKING:
    from typing import NoReturn

logger = structlog.get_logger(__name__)

CONSOLE_REMINDER = (
    "Check the Scaleway console for orphaned billable resources "
    "(clusters, databases, load balancers, volumes)."
)


class ExitCode(IntEnum):
    """Exit codes for CLI commands, stable for CI pipelines."""

    SUCCESS = 0
    """Command completed successfully, or the operator cancelled cleanly."""

    FAILURE = 1
    """Validation or execution failure."""

    USAGE_ERROR = 2
    """Invalid usage (bad arguments, missing required options)."""

    INCOMPLETE = 3
    """Teardown finished but resources remain or could not be verified."""


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Apply failed", environment="dev", phase="infrastructure")
        # Output: Error: Apply failed (environment=dev, phase=infrastructure)
    """
    context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
    full_message = f"Error: {message} ({context_str})" if context_str else f"Error: {message}"
    click.echo(full_message, err=True)


def error_exit(
    message: str,
    exit_code: ExitCode = ExitCode.FAILURE,
    **context: str | int | bool | None,
) -> NoReturn:
    """Print an error message to stderr and exit with ``exit_code``."""
    error(message, **context)
    sys.exit(exit_code)


def warn(message: str, **context: str | int | bool | None) -> None:
    """Print a warning message to stderr."""
    context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
    full_message = f"Warning: {message} ({context_str})" if context_str else f"Warning: {message}"
    click.echo(full_message, err=True)


# Alias for warn
warning = warn


def success(message: str) -> None:
    """Print a success message to stdout."""
    click.echo(message)


def info(message: str) -> None:
    """Print an informational message to stderr.

    Used for progress updates that should not be captured by stdout
    redirection.
    """
    click.echo(message, err=True)


def exit_code_for(exc: BaseException) -> int:
    """Map an exception to the process exit code."""
    if isinstance(exc, LifecycleError):
        return exc.exit_code
    return ExitCode.FAILURE


def fail(exc: Exception, *, destructive: bool = False) -> NoReturn:
    """Report a failed operation and exit.

    A cancellation is reported as information and exits 0. Any other
    error prints the environment, phase and step it carries; destructive
    operations additionally remind the operator to check for orphaned
    resources.
    """
    if isinstance(exc, OperationCancelled):
        info(f"Cancelled: {exc}")
        sys.exit(ExitCode.SUCCESS)

    exit_code = exit_code_for(exc)
    logger.error(
        "operation_failed",
        error_type=type(exc).__name__,
        error_summary=str(exc)[:200] if str(exc) else "Unknown error",
    )
    if isinstance(exc, LifecycleError):
        error(str(exc), environment=exc.environment, phase=exc.phase, step=exc.step)
    else:
        error(f"{type(exc).__name__}: {exc}")
    if destructive:
        warn(CONSOLE_REMINDER)
    sys.exit(exit_code)


__all__: list[str] = [
    "CONSOLE_REMINDER",
    "ExitCode",
    "error",
    "error_exit",
    "exit_code_for",
    "fail",
    "info",
    "success",
    "warn",
    "warning",
]
