"""Bounded polling used by every long external wait.

Drain, workspace-volume archive jobs and the database resize all wait on
remote state through these helpers, never through ad-hoc sleep loops.

Functions:
    wait_for_condition: Poll until a condition is true or timeout
    poll_until: Poll a value until a predicate accepts it or timeout

Example:
    from coder_lifecycle.polling import wait_for_condition

    drained = wait_for_condition(
        lambda: cluster.count_pods("coder") == 0,
        timeout=120,
        interval=5,
        description="workspace pods to terminate",
        raise_on_timeout=False,
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class PollingConfig(BaseModel):
    """Configuration for polling helpers.

    Attributes:
        timeout: Maximum wait time in seconds.
        interval: Poll interval in seconds.
        description: What is being waited for, used in messages.
    """

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(default=30.0, ge=0.0, description="Maximum wait time in seconds")
    interval: float = Field(default=5.0, gt=0.0, description="Poll interval in seconds")
    description: str = Field(default="condition", min_length=1)


class PollingTimeoutError(TimeoutError):
    """Raised when a polling operation times out.

    Attributes:
        description: What was being waited for.
        timeout: How long we waited.
        last_error: Last exception encountered during polling, if any.
    """

    def __init__(
        self,
        description: str,
        timeout: float,
        last_error: Exception | None = None,
    ) -> None:
        self.description = description
        self.timeout = timeout
        self.last_error = last_error
        message = f"Timeout waiting for {description} after {timeout:.1f}s"
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message)


def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 30.0,
    interval: float = 5.0,
    description: str = "condition",
    *,
    raise_on_timeout: bool = True,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll until ``condition`` is True or ``timeout`` elapses.

    Exceptions raised by ``condition`` count as "not yet" and the last one
    is attached to the timeout error.

    Args:
        condition: Callable returning True when the condition is met.
        timeout: Maximum wait time in seconds.
        interval: Poll interval in seconds.
        description: Description for messages.
        raise_on_timeout: Raise PollingTimeoutError on timeout instead of
            returning False.
        sleep: Sleep function (injectable for tests).
        clock: Monotonic clock (injectable for tests).

    Returns:
        True if the condition was met, False on timeout when not raising.

    Raises:
        PollingTimeoutError: On timeout when ``raise_on_timeout`` is True.
    """
    start_time = clock()
    last_error: Exception | None = None

    while True:
        try:
            if condition():
                return True
        except Exception as e:  # noqa: BLE001
            last_error = e
            logger.debug("poll_condition_error", description=description, error=str(e))

        elapsed = clock() - start_time
        if elapsed >= timeout:
            if raise_on_timeout:
                raise PollingTimeoutError(description, timeout, last_error)
            logger.warning(
                "poll_timeout",
                description=description,
                timeout=timeout,
                last_error=str(last_error) if last_error else None,
            )
            return False

        sleep_time = min(interval, timeout - elapsed)
        if sleep_time > 0:
            sleep(sleep_time)


def poll_until(
    fetch: Callable[[], T],
    done: Callable[[T], bool],
    config: PollingConfig,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Fetch a value repeatedly until ``done`` accepts it.

    Unlike :func:`wait_for_condition`, exceptions raised by ``fetch`` or
    ``done`` propagate immediately, so a predicate can abort the wait on a
    terminal failure state.

    Returns:
        The accepted value.

    Raises:
        PollingTimeoutError: If no accepted value is seen within the timeout.
    """
    start_time = clock()

    while True:
        value = fetch()
        if done(value):
            return value

        elapsed = clock() - start_time
        if elapsed >= config.timeout:
            raise PollingTimeoutError(config.description, config.timeout)

        logger.debug(
            "poll_waiting",
            description=config.description,
            value=str(value),
            elapsed=round(elapsed, 1),
        )
        sleep(min(config.interval, config.timeout - elapsed))


__all__: list[str] = [
    "PollingConfig",
    "PollingTimeoutError",
    "poll_until",
    "wait_for_condition",
]
