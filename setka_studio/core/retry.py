"""Retry with exponential backoff for provider calls."""

import logging
from typing import Callable, Optional, TypeVar
from tenacity import (
    Retrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from setka_studio.core.cancellation import CancellationToken
from setka_studio.core.exceptions import GenerationCancelled, ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# One initial attempt plus five retries
MAX_ATTEMPTS = 6
BASE_DELAY_MS = 2000


def is_retryable(error: BaseException) -> bool:
    """Return True for provider failures worth retrying."""
    return isinstance(error, ProviderError) and error.retryable


class RetryController:
    """Runs a provider call, retrying transient failures.

    Attempt 1 runs immediately. After a retryable failure on attempt ``n`` the
    controller waits ``base_delay_ms * 2 ** (n - 1)`` before the next attempt.
    Non-retryable failures are raised at once. When all attempts are used up
    the last error is raised.

    The backoff sleep waits on the batch's cancellation token, so a stop
    request ends the wait early with ``GenerationCancelled``.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay_ms: Delay before the first retry, in milliseconds
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay_ms: int = BASE_DELAY_MS,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """Initialize the controller.

        Args:
            max_attempts: Total attempts including the first one
            base_delay_ms: Delay before the first retry, in milliseconds
            sleep: Optional replacement for the token-based sleep (tests)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay_ms < 0:
            raise ValueError("base_delay_ms must not be negative")

        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt``."""
        return self.base_delay_ms * 2 ** (attempt - 1) / 1000

    def call(
        self,
        fn: Callable[[], T],
        token: Optional[CancellationToken] = None,
        description: str = "provider call"
    ) -> T:
        """Run ``fn`` with retries.

        Args:
            fn: Zero-argument callable performing one provider call
            token: Cancellation token of the current batch
            description: Label used in log messages

        Returns:
            Whatever ``fn`` returns on its first successful attempt

        Raises:
            ProviderError: If the call fails fatally or retries are exhausted
            GenerationCancelled: If the batch was cancelled before or between attempts
        """
        token = token or CancellationToken()

        def attempt() -> T:
            if token.cancelled:
                raise GenerationCancelled(f"{description} cancelled")
            return fn()

        def sleep(seconds: float) -> None:
            if self._sleep is not None:
                self._sleep(seconds)
                interrupted = token.cancelled
            else:
                interrupted = token.wait(seconds)
            if interrupted:
                logger.info(f"Backoff for {description} interrupted by cancellation")
                raise GenerationCancelled(f"{description} cancelled during backoff")

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"Retryable error on {description}: {error}. "
                f"Retrying in {delay:.1f}s (attempt {retry_state.attempt_number}/"
                f"{self.max_attempts})"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay_ms / 1000, exp_base=2, min=0),
            retry=retry_if_exception(is_retryable),
            before_sleep=log_retry,
            sleep=sleep,
            reraise=True,
        )

        try:
            return retrying(attempt)
        except ProviderError as e:
            logger.error(f"{description} failed: {e.message}")
            raise

    def __repr__(self) -> str:
        return (
            f"RetryController(max_attempts={self.max_attempts}, "
            f"base_delay_ms={self.base_delay_ms})"
        )
