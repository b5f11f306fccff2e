"""Failure policies for remote operations.

Every remote command and SFTP call goes through a :class:`FailurePolicy`.
Two policies are provided:

- :class:`RetryPolicy` (default): classifies transient connection faults,
  reconnects and retries with exponential backoff. Suitable for unattended
  pipelines.
- :class:`InteractiveFailurePolicy`: asks the operator at the terminal
  whether to retry, skip or quit each failed operation.
"""

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, TypeVar

import click
import paramiko

from .exceptions import DeployAuthenticationError, RemoteCommandError
from .utils import BACKOFF_FACTOR, DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Messages that indicate a dropped or unusable connection
TRANSIENT_ERROR_PATTERN = re.compile(
    r"ECONNRESET|connection reset|ETIMEDOUT|timed out|connection lost"
    r"|socket (?:is )?closed|broken pipe|not connected|no connection"
    r"|session not active|\bfailure\b",
    re.IGNORECASE,
)

NON_TRANSIENT_ERRORS = (
    RemoteCommandError,
    DeployAuthenticationError,
    paramiko.AuthenticationException,
)


def is_transient_error(error: BaseException) -> bool:
    """Check whether an error looks like a transient connection fault.

    Remote commands that ran and exited non-zero, and authentication
    failures, are never transient.

    Args:
        error: The exception raised by a remote operation

    Returns:
        True if reconnecting and retrying may succeed
    """
    if isinstance(error, NON_TRANSIENT_ERRORS):
        return False
    message = str(error) or type(error).__name__
    return bool(TRANSIENT_ERROR_PATTERN.search(message))


class FailurePolicy(ABC):
    """Strategy deciding what happens when a remote operation fails."""

    @abstractmethod
    def run(
        self,
        operation: Callable[[], T],
        name: str = "Operation",
        reconnect: Optional[Callable[[], None]] = None,
    ) -> Optional[T]:
        """Invoke ``operation`` under this policy.

        Args:
            operation: Zero-argument callable performing the remote work
            name: Label used in log messages
            reconnect: Callable that replaces the broken connection

        Returns:
            The operation's result, or None if the operation was skipped
        """
        ...


class RetryPolicy(FailurePolicy):
    """Retry transient failures with exponential backoff.

    The delay before retry ``n`` is ``base_delay * 1.5 ** (n - 1)``. Before
    every retry the ``reconnect`` callable (if any) is invoked so the
    operation runs on a fresh connection. Non-transient errors propagate on
    the first failure.

    Examples:
        >>> policy = RetryPolicy(max_attempts=3, base_delay=0.1)
        >>> policy.run(lambda: 42)
        42
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        backoff_factor: float = BACKOFF_FACTOR,
        sleep: Callable[[float], None] = time.sleep,
        classifier: Callable[[BaseException], bool] = is_transient_error,
    ):
        """Initialize retry policy.

        Args:
            max_attempts: Total number of attempts before giving up
            base_delay: Delay in seconds before the first retry
            backoff_factor: Multiplier applied per further retry
            sleep: Sleep function (injectable for tests)
            classifier: Decides whether an error is worth retrying
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self._sleep = sleep
        self._classifier = classifier

    def delay_for(self, attempt: int) -> float:
        """Return the delay (seconds) after failed attempt number ``attempt``."""
        return self.base_delay * (self.backoff_factor ** (attempt - 1))

    def is_transient(self, error: BaseException) -> bool:
        """Check whether ``error`` should be retried."""
        return self._classifier(error)

    def run(
        self,
        operation: Callable[[], T],
        name: str = "Operation",
        reconnect: Optional[Callable[[], None]] = None,
    ) -> T:
        attempt = 0
        needs_reconnect = False

        while True:
            attempt += 1
            try:
                if needs_reconnect and reconnect is not None:
                    reconnect()
                return operation()
            except Exception as e:
                if not self.is_transient(e):
                    raise
                if attempt >= self.max_attempts:
                    logger.error(
                        "%s failed after %d attempt(s): %s", name, attempt, e
                    )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.1fs...",
                    name,
                    attempt,
                    self.max_attempts,
                    e,
                    delay,
                )
                needs_reconnect = True
                self._sleep(delay)


class InteractiveFailurePolicy(FailurePolicy):
    """Ask the operator how to proceed whenever a remote operation fails.

    Choices are ``retry`` (reconnecting first if the fault looks transient),
    ``skip`` (continue without the operation's result) and ``quit`` (re-raise
    the error, aborting the run).

    Prompts are serialized, so parallel workers sharing the policy ask one
    question at a time.
    """

    CHOICES = ("retry", "skip", "quit")

    def __init__(
        self,
        prompt: Optional[Callable[[str], str]] = None,
        classifier: Callable[[BaseException], bool] = is_transient_error,
    ):
        """Initialize interactive policy.

        Args:
            prompt: Callable returning one of CHOICES for a message
                (defaults to a ``click.prompt``)
            classifier: Decides whether a reconnect precedes a retry
        """
        self._prompt = prompt or self._click_prompt
        self._classifier = classifier
        self._prompt_lock = threading.Lock()

    @staticmethod
    def _click_prompt(message: str) -> str:
        click.echo(message, err=True)
        return click.prompt(
            "How do you want to proceed?",
            type=click.Choice(["retry", "skip", "quit"]),
            default="retry",
        )

    def run(
        self,
        operation: Callable[[], T],
        name: str = "Operation",
        reconnect: Optional[Callable[[], None]] = None,
    ) -> Optional[T]:
        needs_reconnect = False

        while True:
            try:
                if needs_reconnect and reconnect is not None:
                    reconnect()
                return operation()
            except Exception as e:
                with self._prompt_lock:
                    choice = self._prompt(f"{name} failed: {e}")
                choice = choice.strip().lower()

                if choice == "skip":
                    logger.warning("Skipping %s after failure: %s", name, e)
                    return None
                if choice != "retry":
                    raise

                logger.info("Retrying %s...", name)
                needs_reconnect = self._classifier(e)
