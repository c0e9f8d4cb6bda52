"""Provider registry and factory for creating backend instances."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Type

from setka_studio.backends.gemini import (
    GEMINI_CAPABILITIES,
    GeminiImageToImageBackend,
    GeminiTextToImageBackend,
)
from setka_studio.backends.imagen import IMAGEN_CAPABILITIES, ImagenBackend
from setka_studio.backends.proxy import DEFAULT_RELAY_URL, PROXY_CAPABILITIES, ProxyBackend
from setka_studio.core.base_backend import BaseBackend
from setka_studio.core.models import AspectRatio, ProviderCapabilities

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSpec:
    """Registry entry describing one selectable provider.

    Attributes:
        provider_id: Identifier used in requests; also the model id sent upstream
        display_name: Label shown in the UI
        capabilities: Capability profile checked before a batch starts
        text_backend: Backend class for text-to-image requests
        image_backend: Backend class for requests with a base image, if any
        requires_credential: Whether a Gemini key must be resolved for the batch
        enabled: Disabled providers are hidden and rejected
    """
    provider_id: str
    display_name: str
    capabilities: ProviderCapabilities
    text_backend: Type[BaseBackend]
    image_backend: Optional[Type[BaseBackend]] = None
    requires_credential: bool = True
    enabled: bool = True


PROVIDERS: Dict[str, ProviderSpec] = {
    spec.provider_id: spec for spec in (
        ProviderSpec(
            provider_id="gemini-2.5-flash-image",
            display_name="Gemini 2.5 Flash Image",
            capabilities=GEMINI_CAPABILITIES,
            text_backend=GeminiTextToImageBackend,
            image_backend=GeminiImageToImageBackend,
        ),
        ProviderSpec(
            provider_id="imagen-4.0-generate-001",
            display_name="Imagen 4",
            capabilities=IMAGEN_CAPABILITIES,
            text_backend=ImagenBackend,
        ),
        ProviderSpec(
            provider_id="dall-e",
            display_name="DALL-E (OhMyGPT)",
            capabilities=PROXY_CAPABILITIES,
            text_backend=ProxyBackend,
            requires_credential=False,
        ),
        ProviderSpec(
            provider_id="flux-1.1-pro",
            display_name="Flux Pro (OhMyGPT)",
            capabilities=PROXY_CAPABILITIES.model_copy(update={"max_batch_size": 8}),
            text_backend=ProxyBackend,
            requires_credential=False,
        ),
    )
}

# Target sizes per aspect ratio, largest first; the first one is the default
RESOLUTION_OPTIONS: Dict[AspectRatio, List[str]] = {
    AspectRatio.SQUARE: ["2048x2048", "1024x1024", "512x512"],
    AspectRatio.LANDSCAPE: ["2560x1440", "1920x1080", "1280x720"],
    AspectRatio.PORTRAIT: ["1440x2560", "1080x1920", "720x1280"],
    AspectRatio.STANDARD_LANDSCAPE: ["2048x1536", "1024x768", "800x600"],
    AspectRatio.STANDARD_PORTRAIT: ["1536x2048", "768x1024", "600x800"],
}


def default_resolution(aspect_ratio: AspectRatio) -> str:
    """Default target size for an aspect ratio (the largest option)."""
    return RESOLUTION_OPTIONS[aspect_ratio][0]


class BackendFactory:
    """Creates backend instances for registered providers.

    The factory picks the backend variant for a batch: providers with an
    image-to-image backend use it when the batch carries a base image.

    Attributes:
        relay_url: Relay endpoint passed to proxy backends
        timeout: Request timeout passed to proxy backends
    """

    def __init__(
        self,
        providers: Optional[Dict[str, ProviderSpec]] = None,
        relay_url: str = DEFAULT_RELAY_URL,
        timeout: int = 120
    ):
        self._providers = dict(PROVIDERS if providers is None else providers)
        self.relay_url = relay_url
        self.timeout = timeout

    def get_spec(self, provider_id: str) -> Optional[ProviderSpec]:
        """Return the enabled provider spec for an id, or None."""
        spec = self._providers.get(provider_id)
        if spec is None or not spec.enabled:
            return None
        return spec

    def get_supported_providers(self) -> list[str]:
        """Get list of enabled provider ids.

        Returns:
            Provider ids in registration order
        """
        return [pid for pid, spec in self._providers.items() if spec.enabled]

    def is_supported(self, provider_id: str) -> bool:
        return self.get_spec(provider_id) is not None

    def create_backend(
        self,
        provider_id: str,
        credential: Optional[str] = None,
        image_input: bool = False
    ) -> BaseBackend:
        """Create a backend instance for a provider.

        Args:
            provider_id: Registered provider id
            credential: Gemini API key for providers that need one
            image_input: Whether the batch carries a base image to vary

        Returns:
            An instance of the matching backend variant

        Raises:
            ValueError: If the provider is unknown or the credential is missing
        """
        spec = self.get_spec(provider_id)
        if spec is None:
            supported = ", ".join(self.get_supported_providers())
            raise ValueError(
                f"Unsupported provider: '{provider_id}'. Supported providers: {supported}"
            )

        if spec.requires_credential and not credential:
            raise ValueError(f"API key is required for {spec.display_name}")

        backend_class = spec.image_backend if image_input and spec.image_backend else spec.text_backend
        logger.info(f"Creating {backend_class.__name__} for provider {provider_id}")

        if spec.requires_credential:
            return backend_class(
                api_key=credential,
                model=provider_id,
                capabilities=spec.capabilities,
            )
        return backend_class(
            model=provider_id,
            relay_url=self.relay_url,
            timeout=self.timeout,
            capabilities=spec.capabilities,
        )
