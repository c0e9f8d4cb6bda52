"""Cooperative cancellation for generation batches."""

import logging
from threading import Event

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-way stop flag shared between a batch and its caller.

    Once cancelled the token stays cancelled; a new batch needs a new token.
    ``wait`` doubles as an interruptible sleep for backoff and pacing.
    """

    def __init__(self):
        self._event = Event()

    def cancel(self) -> None:
        """Request cancellation."""
        if not self._event.is_set():
            logger.info("Cancellation requested")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep for up to ``seconds``.

        Returns:
            True if the token was cancelled before the time elapsed
        """
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
