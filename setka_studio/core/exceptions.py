"""Exception hierarchy for the generation pipeline."""

from enum import Enum
from typing import Optional


class StudioError(Exception):
    """Base class for all generation errors."""


class PreconditionReason(str, Enum):
    """Reasons a batch is refused before it starts."""
    EMPTY_BATCH = "empty_batch"
    UNKNOWN_PROVIDER = "unknown_provider"
    BATCH_TOO_LARGE = "batch_too_large"
    UNSUPPORTED_ASPECT_RATIO = "unsupported_aspect_ratio"
    INCOMPATIBLE_REQUEST = "incompatible_request"
    MISSING_CREDENTIAL = "missing_credential"
    INSUFFICIENT_BALANCE = "insufficient_balance"


class PreconditionError(StudioError):
    """A batch could not start. Nothing was charged or dispatched.

    Attributes:
        reason: Machine-readable cause
    """

    def __init__(self, reason: PreconditionReason, message: str):
        self.reason = reason
        super().__init__(message)


class ProviderError(StudioError):
    """A provider call failed.

    Attributes:
        retryable: Whether the failure is transient (rate limit, safety filter)
        http_status: HTTP status code reported by the provider, if any
        message: Human-readable description
    """

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        http_status: Optional[int] = None
    ):
        self.message = message
        self.retryable = retryable
        self.http_status = http_status
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(message={self.message!r}, "
            f"retryable={self.retryable}, http_status={self.http_status})"
        )


class MalformedResponseError(ProviderError):
    """The provider answered successfully but without a usable image."""

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message, retryable=False, http_status=http_status)


class GenerationCancelled(StudioError):
    """The user stopped the batch."""
