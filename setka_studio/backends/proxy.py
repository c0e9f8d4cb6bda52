"""Backend for models served through the server-side relay."""

import logging
from typing import Any, Optional
import requests

from setka_studio.core.base_backend import BaseBackend, classify_provider_error
from setka_studio.core.exceptions import MalformedResponseError, ProviderError
from setka_studio.core.models import AspectRatio, GenerationRequest, ProviderCapabilities

logger = logging.getLogger(__name__)

DEFAULT_RELAY_URL = "http://localhost:7860/api/generate-image"

PROXY_CAPABILITIES = ProviderCapabilities(
    supports_image_input=False,
    max_batch_size=10,
    supported_aspect_ratios=frozenset({
        AspectRatio.SQUARE,
        AspectRatio.LANDSCAPE,
        AspectRatio.PORTRAIT,
    }),
    cost_per_image=1,
)


def extract_image_url(payload: Any) -> Optional[str]:
    """Return the first image from an OpenAI-style ``{"data": [...]}`` body."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return None

    first = data[0]
    if first.get("url"):
        return first["url"]
    if first.get("b64_json"):
        return f"data:image/png;base64,{first['b64_json']}"
    return None


class ProxyBackend(BaseBackend):
    """Text-to-image through the relay endpoint.

    The relay holds the upstream credential, so this backend needs no API key.
    It sends only ``{prompt, model}``; input images are dropped.

    Attributes:
        model: Model identifier forwarded to the relay
        relay_url: Full URL of the relay endpoint
        timeout: Request timeout in seconds
    """

    DEFAULT_CAPABILITIES = PROXY_CAPABILITIES

    def __init__(
        self,
        model: str,
        relay_url: str = DEFAULT_RELAY_URL,
        timeout: int = 120,
        capabilities: Optional[ProviderCapabilities] = None,
        session: Optional[requests.Session] = None
    ):
        """Initialize the proxy backend.

        Args:
            model: Model identifier forwarded to the relay (e.g. ``dall-e``)
            relay_url: Full URL of the relay endpoint
            timeout: Request timeout in seconds
            capabilities: Optional capability profile override
            session: Optional requests session

        Raises:
            ValueError: If model or relay URL is empty
        """
        super().__init__(None, capabilities)

        if not model:
            raise ValueError("Proxy model is required")
        if not relay_url:
            raise ValueError("Relay URL is required")

        self.model = model
        self.relay_url = relay_url
        self.timeout = timeout
        self.session = session or requests.Session()
        logger.info(f"Initialized proxy backend for model {self.model} via {self.relay_url}")

    def generate_image(self, request: GenerationRequest) -> str:
        """Generate an image via the relay.

        Returns:
            Remote image URL, or a data URL if the upstream returned base64

        Raises:
            ProviderError: If the relay is unreachable or answers with an error
            MalformedResponseError: If a successful answer holds no image
        """
        if request.has_image_input:
            logger.warning(
                f"{self.name} cannot use input images; sending the text prompt only"
            )

        logger.info(f"Generating image via relay with prompt: {request.prompt[:50]}...")
        try:
            response = self.session.post(
                self.relay_url,
                json={"prompt": request.prompt, "model": self.model},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderError(f"Relay request failed: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.ok:
            message = None
            if isinstance(payload, dict):
                message = payload.get("message")
            message = message or f"Relay error: {response.status_code} {response.reason}"
            logger.warning(f"{self.name} relay error ({response.status_code}): {message}")
            raise classify_provider_error(message, http_status=response.status_code)

        image = extract_image_url(payload)
        if not image:
            raise MalformedResponseError(
                "Relay returned no image URL", http_status=response.status_code
            )
        return image

    def health_check(self) -> bool:
        """The relay has no status endpoint; a non-5xx answer to GET means it is up."""
        try:
            response = self.session.get(self.relay_url, timeout=10)
            healthy = response.status_code < 500
            logger.debug(f"Health check returned {response.status_code}")
            return healthy
        except requests.RequestException as e:
            logger.warning(f"Health check failed: {e}")
            return False

    @property
    def name(self) -> str:
        return f"Proxy ({self.model})"

    @property
    def supported_models(self) -> list[str]:
        return ["dall-e", "flux-1.1-pro"]
