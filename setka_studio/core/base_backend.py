"""Abstract base class for image generation backends."""

import logging
from abc import ABC, abstractmethod
from typing import Optional, List
from .models import GenerationRequest, ProviderCapabilities
from .exceptions import ProviderError

logger = logging.getLogger(__name__)

# Finish reasons that mean the provider filtered or dropped the image. They are
# usually transient, so the request is worth repeating.
RETRYABLE_FINISH_REASONS = frozenset({
    "SAFETY",
    "IMAGE_SAFETY",
    "IMAGE_OTHER",
    "PROHIBITED_CONTENT",
})

_RETRYABLE_MARKERS = ("429", "RESOURCE_EXHAUSTED", "RATE LIMIT", "RATE_LIMIT", "TOO MANY REQUESTS")


def classify_provider_error(
    message: str,
    http_status: Optional[int] = None,
    finish_reason: Optional[str] = None
) -> ProviderError:
    """Build a ProviderError with the right retryable flag.

    Rate limiting, resource exhaustion and content-filter finish reasons are
    retryable. Everything else (bad requests, auth failures, permanent quota
    problems) is fatal.

    Args:
        message: Error description from the provider
        http_status: HTTP status code, if known
        finish_reason: Provider-reported finish reason, if any

    Returns:
        A ProviderError instance (not raised)
    """
    retryable = False
    if http_status == 429:
        retryable = True
    elif finish_reason and finish_reason.upper() in RETRYABLE_FINISH_REASONS:
        retryable = True
    else:
        upper = message.upper()
        retryable = any(marker in upper for marker in _RETRYABLE_MARKERS)

    return ProviderError(message, retryable=retryable, http_status=http_status)


class BaseBackend(ABC):
    """Abstract interface that all image generation backends must implement.

    Each backend wraps one external provider. The orchestrator talks to
    backends only through this interface and never inspects provider ids.

    Attributes:
        api_key: Credential used for the provider, if it needs one
        max_images_per_call: Upper bound for ``generate_images``
    """

    DEFAULT_CAPABILITIES = ProviderCapabilities()
    max_images_per_call = 1

    def __init__(
        self,
        api_key: Optional[str] = None,
        capabilities: Optional[ProviderCapabilities] = None
    ):
        """Initialize the backend.

        Args:
            api_key: Optional credential for the provider
            capabilities: Capability profile; defaults to the class profile
        """
        self.api_key = api_key
        self._capabilities = capabilities or self.DEFAULT_CAPABILITIES

    @abstractmethod
    def generate_image(self, request: GenerationRequest) -> str:
        """Generate one image.

        Args:
            request: The generation request

        Returns:
            The image as a data URL or a remote URL

        Raises:
            ProviderError: If the provider call fails
            PreconditionError: If the request does not fit this backend
        """
        pass

    def generate_images(self, request: GenerationRequest, count: int) -> List[str]:
        """Generate several images for the same request in one round trip.

        Only backends whose capabilities set ``supports_batch_output`` override
        this; the default serves a single image.

        Args:
            request: The generation request
            count: Number of images wanted

        Returns:
            Up to ``count`` images; fewer means the provider dropped some
        """
        if count > self.max_images_per_call:
            raise NotImplementedError(f"{self.name} cannot return several images per call")
        return [self.generate_image(request)]

    @abstractmethod
    def health_check(self) -> bool:
        """Check if the backend is reachable.

        Returns:
            True if the backend is healthy, False otherwise
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""
        pass

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Static capability profile of this backend."""
        return self._capabilities

    @property
    @abstractmethod
    def supported_models(self) -> list[str]:
        """Model identifiers this backend can call."""
        pass

    def __repr__(self) -> str:
        """String representation of the backend."""
        return f"{self.__class__.__name__}(name='{self.name}')"
