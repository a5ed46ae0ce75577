"""Confirmation protocol for destructive actions.

Gates, in order, with no retries (any failure aborts the whole operation):

    START ──emergency──────────────────────────────────────────▶ AUTHORIZED
    START ─▶ NAME_CONFIRMED ─▶ [PROD_CONFIRMED] ─▶ FINAL_CONFIRMED ─▶ AUTHORIZED
             exact env name     "DELETE PRODUCTION"   "yes"            abort window

A mismatch at the name or production gate raises ConfirmationFailedError.
Anything other than "yes" at the final gate is a clean cancellation
(OperationCancelled, exit 0). The abort window between FINAL_CONFIRMED and
AUTHORIZED can be interrupted with Ctrl-C or an abort event; nothing
destructive has started at that point.

Example:
    >>> controller = SafetyGateController(delay_seconds=0)
    >>> confirmation = controller.authorize_destructive_action(
    ...     "prod", emergency=False, inputs=["prod", "DELETE PRODUCTION", "yes"]
    ... )
    >>> confirmation.state
    <GateState.AUTHORIZED: 'authorized'>
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Protocol, Union

import click
import structlog

from coder_lifecycle.errors import ConfirmationFailedError, OperationCancelled
from coder_lifecycle.schemas.environment import EnvironmentName
from coder_lifecycle.schemas.safety import GateState, SafetyConfirmation
from coder_lifecycle.validation import validate_environment_name

logger = structlog.get_logger(__name__)

PRODUCTION_PHRASE = "DELETE PRODUCTION"
AFFIRMATIVE_TOKEN = "yes"


class Prompter(Protocol):
    """Source of operator answers."""

    def ask(self, prompt: str) -> str: ...


class ClickPrompter:
    """Read answers interactively (or from piped stdin) with click."""

    def ask(self, prompt: str) -> str:
        return click.prompt(prompt, default="", show_default=False)


class SequencePrompter:
    """Serve answers from a fixed sequence.

    Attributes:
        consumed: Number of answers handed out so far.
    """

    def __init__(self, answers: Sequence[str]) -> None:
        self._answers = list(answers)
        self.consumed = 0

    def ask(self, prompt: str) -> str:
        if self.consumed >= len(self._answers):
            raise ConfirmationFailedError("input", f"No answer available for prompt: {prompt}")
        answer = self._answers[self.consumed]
        self.consumed += 1
        return answer


ConfirmationInputs = Union[Prompter, Sequence[str]]


def as_prompter(inputs: ConfirmationInputs) -> Prompter:
    if isinstance(inputs, (list, tuple)):
        return SequencePrompter(inputs)
    return inputs  # type: ignore[return-value]


def confirm(prompter: Prompter, question: str) -> bool:
    """Ask a y/N question; only ``y``/``yes`` counts as agreement."""
    return prompter.ask(f"{question} (y/N)").strip().lower() in ("y", "yes")


class SafetyGateController:
    """Run the destructive-action confirmation protocol.

    Args:
        delay_seconds: Abort window after the final confirmation.
        sleep: Sleep function used by the abort window.
        abort_event: Optional event that cancels the abort window when set.
        now: Clock used for ``authorized_at``.
    """

    def __init__(
        self,
        delay_seconds: int = 300,
        *,
        sleep: Callable[[float], None] = time.sleep,
        abort_event: threading.Event | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._delay = delay_seconds
        self._sleep = sleep
        self._abort_event = abort_event
        self._now = now

    def authorize_destructive_action(
        self,
        environment: EnvironmentName | str,
        emergency: bool,
        inputs: ConfirmationInputs,
        *,
        force: bool = False,
        action: str = "teardown",
    ) -> SafetyConfirmation:
        """Obtain an AUTHORIZED confirmation for ``environment``.

        Args:
            environment: Target environment.
            emergency: Bypass every gate. Must be requested explicitly.
            inputs: Prompter, or the sequence of operator answers.
            force: Skip the abort window (gates still apply).
            action: Name of the destructive action, used in the prompts.

        Raises:
            ConfirmationFailedError: On a name or production-phrase mismatch.
            OperationCancelled: If the operator declines or aborts the window.
        """
        env = (
            environment
            if isinstance(environment, EnvironmentName)
            else validate_environment_name(environment)
        )
        log = logger.bind(environment=env.value, action=action)

        if emergency:
            log.warning("safety_gates_bypassed", reason="emergency")
            return SafetyConfirmation(
                environment=env,
                state=GateState.AUTHORIZED,
                gates_passed=(GateState.START, GateState.AUTHORIZED),
                emergency=True,
                delay_skipped=True,
                authorized_at=self._now(),
            )

        prompter = as_prompter(inputs)
        passed = [GateState.START]

        answer = prompter.ask(f"Type the environment name '{env.value}' to confirm")
        if answer != env.value:
            log.error("confirmation_failed", gate="environment_name")
            raise ConfirmationFailedError(
                "environment_name",
                f"Environment name mismatch: expected '{env.value}'",
                environment=env.value,
            )
        passed.append(GateState.NAME_CONFIRMED)

        if env == EnvironmentName.PROD:
            answer = prompter.ask(f"PRODUCTION {action}. Type '{PRODUCTION_PHRASE}' to confirm")
            if answer != PRODUCTION_PHRASE:
                log.error("confirmation_failed", gate="production_phrase")
                raise ConfirmationFailedError(
                    "production_phrase",
                    "Production confirmation phrase mismatch",
                    environment=env.value,
                )
            passed.append(GateState.PROD_CONFIRMED)

        answer = prompter.ask(
            f"Last chance. Type '{AFFIRMATIVE_TOKEN}' to proceed with {action} of {env.value}"
        )
        if answer != AFFIRMATIVE_TOKEN:
            log.info("destructive_action_declined")
            raise OperationCancelled("Cancelled by operator", environment=env.value)
        passed.append(GateState.FINAL_CONFIRMED)

        delay_skipped = force or self._delay <= 0
        if not delay_skipped:
            self._wait_abort_window(env)
        passed.append(GateState.AUTHORIZED)

        log.info("destructive_action_authorized", delay_skipped=delay_skipped)
        return SafetyConfirmation(
            environment=env,
            state=GateState.AUTHORIZED,
            gates_passed=tuple(passed),
            emergency=False,
            delay_skipped=delay_skipped,
            authorized_at=self._now(),
        )

    def _wait_abort_window(self, env: EnvironmentName) -> None:
        remaining = self._delay
        logger.warning(
            "safety_delay_started",
            environment=env.value,
            seconds=remaining,
            hint="press Ctrl-C to abort",
        )
        try:
            while remaining > 0:
                if remaining % 60 == 0 or remaining <= 10:
                    logger.warning("safety_delay", environment=env.value, remaining=remaining)
                if self._abort_event is not None:
                    if self._abort_event.wait(1):
                        raise OperationCancelled(
                            "Aborted during safety delay; nothing was destroyed",
                            environment=env.value,
                        )
                else:
                    self._sleep(1)
                remaining -= 1
        except KeyboardInterrupt:
            raise OperationCancelled(
                "Aborted during safety delay; nothing was destroyed", environment=env.value
            ) from None


def require_authorization(
    confirmation: SafetyConfirmation | None,
    environment: EnvironmentName,
) -> None:
    """Refuse to continue without an AUTHORIZED confirmation for ``environment``."""
    if confirmation is None or not confirmation.covers(environment):
        raise ConfirmationFailedError(
            "authorization",
            f"No authorized confirmation for {environment.value}",
            environment=environment.value,
        )


__all__: list[str] = [
    "AFFIRMATIVE_TOKEN",
    "PRODUCTION_PHRASE",
    "ClickPrompter",
    "ConfirmationInputs",
    "Prompter",
    "SafetyGateController",
    "SequencePrompter",
    "as_prompter",
    "confirm",
    "require_authorization",
]
