"""Gemini image backends built on the google-genai SDK."""

import logging
from typing import Any, Callable, List, Optional
import httpx
from google import genai
from google.genai import errors, types

from setka_studio.core.base_backend import BaseBackend, RETRYABLE_FINISH_REASONS, classify_provider_error
from setka_studio.core.exceptions import (
    MalformedResponseError,
    PreconditionError,
    PreconditionReason,
    ProviderError,
)
from setka_studio.core.models import AspectRatio, GenerationRequest, ProviderCapabilities, ReferenceImage
from setka_studio.utils.image_utils import create_format_image, to_data_url
from setka_studio.utils.prompt_builder import FALLBACK_INSTRUCTION, build_variation_prompt

logger = logging.getLogger(__name__)

GEMINI_IMAGE_MODEL = "gemini-2.5-flash-image"

GEMINI_CAPABILITIES = ProviderCapabilities(
    supports_image_input=True,
    max_batch_size=20,
    supported_aspect_ratios=frozenset({
        AspectRatio.SQUARE,
        AspectRatio.LANDSCAPE,
        AspectRatio.PORTRAIT,
    }),
    cost_per_image=1,
)

TEXT_TO_IMAGE_TEMPLATE = (
    "The provided image is a black template that defines the required aspect ratio. "
    "Your output MUST match this aspect ratio. The user's prompt is: \"{prompt}\". "
    "The image should be 8k, ultra high detail, photorealistic."
)

STYLED_TEXT_TO_IMAGE_TEMPLATE = (
    "Use Image 2 as a style reference. The user's prompt is: \"{prompt}\". "
    "Recreate the content of the prompt in the style of Image 2. Image 1 is a black "
    "template that defines the required aspect ratio. Your output MUST match this aspect ratio."
)


def _finish_reason_name(candidate: Any) -> Optional[str]:
    reason = getattr(candidate, "finish_reason", None)
    if reason is None:
        return None
    return getattr(reason, "name", None) or str(reason)


def _image_part(image: ReferenceImage) -> types.Part:
    return types.Part.from_bytes(data=image.data, mime_type=image.mime_type)


class GoogleGenAIBackend(BaseBackend):
    """Shared plumbing for backends that call the Google GenAI API.

    Subclasses build the request; this class owns the client, maps SDK
    errors onto ``ProviderError`` and health checks the configured model.

    Attributes:
        model: Model identifier sent to the API
        client: google-genai client instance
    """

    DEFAULT_MODEL = GEMINI_IMAGE_MODEL
    DEFAULT_CAPABILITIES = GEMINI_CAPABILITIES

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str] = None,
        capabilities: Optional[ProviderCapabilities] = None,
        client: Optional[genai.Client] = None
    ):
        """Initialize the backend.

        Args:
            api_key: Gemini API key
            model: Optional model identifier
            capabilities: Optional capability profile override
            client: Pre-built client (tests)

        Raises:
            ValueError: If no API key is given and no client is supplied
        """
        super().__init__(api_key, capabilities)

        if not api_key and client is None:
            raise ValueError("Gemini API key is required")

        self.model = model or self.DEFAULT_MODEL
        self.client = client or genai.Client(api_key=api_key)
        logger.info(f"Initialized {self.name} backend with model: {self.model}")

    def _call_api(self, call: Callable[[], Any]) -> Any:
        """Run one SDK call, translating API errors."""
        try:
            return call()
        except errors.APIError as e:
            message = f"{e.status}: {e.message}" if e.status else str(e.message or e)
            logger.warning(f"{self.name} API error ({e.code}): {message}")
            raise classify_provider_error(message, http_status=e.code) from e
        except httpx.HTTPError as e:
            logger.warning(f"{self.name} request failed: {e}")
            raise ProviderError(f"Request to {self.name} failed: {e}") from e

    def _generate_content(self, parts: List[types.Part]) -> str:
        """Send a multimodal request and return the first image as a data URL."""
        response = self._call_api(lambda: self.client.models.generate_content(
            model=self.model,
            contents=parts,
            config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
        ))
        return self._extract_image(response)

    def _extract_image(self, response: Any) -> str:
        """Pull the first inline image out of a ``generate_content`` response.

        Raises:
            ProviderError: If the prompt was blocked or the image was filtered
            MalformedResponseError: If the response holds no image for any other reason
        """
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            feedback = getattr(response, "prompt_feedback", None)
            block_reason = getattr(feedback, "block_reason", None) if feedback else None
            if block_reason:
                block_name = getattr(block_reason, "name", None) or str(block_reason)
                raise classify_provider_error(f"Prompt blocked: {block_name}")
            raise MalformedResponseError(f"{self.name} returned no candidates")

        candidate = candidates[0]
        content = getattr(candidate, "content", None)
        parts = (getattr(content, "parts", None) or []) if content else []

        text_parts = []
        for part in parts:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return to_data_url(inline.data, inline.mime_type or None)
            if getattr(part, "text", None):
                text_parts.append(part.text)

        finish_reason = _finish_reason_name(candidate)
        if finish_reason and finish_reason.upper() in RETRYABLE_FINISH_REASONS:
            raise classify_provider_error(
                f"No image returned (finish reason {finish_reason})",
                finish_reason=finish_reason,
            )

        detail = " ".join(text_parts).strip()
        message = f"{self.name} returned no image (finish reason {finish_reason})"
        if detail:
            message += f": {detail[:200]}"
        raise MalformedResponseError(message)

    def health_check(self) -> bool:
        """Check that the configured model is reachable with this key.

        Returns:
            True if the backend is healthy, False otherwise
        """
        try:
            logger.debug("Performing health check...")
            self.client.models.get(model=self.model)
            logger.debug("Health check passed")
            return True
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return False

    @property
    def supported_models(self) -> list[str]:
        return [self.model]


class GeminiTextToImageBackend(GoogleGenAIBackend):
    """Text-to-image through a multimodal Gemini model.

    The model has no aspect-ratio parameter, so a black template of the
    requested shape is sent as the first image. An optional style image is
    sent second.
    """

    def generate_image(self, request: GenerationRequest) -> str:
        """Generate one image from a text prompt.

        Raises:
            PreconditionError: If the request carries images to vary
            ProviderError: If the API call fails
        """
        if request.reference_images:
            raise PreconditionError(
                PreconditionReason.INCOMPATIBLE_REQUEST,
                f"{self.name} does not vary input images; use the image-to-image backend",
            )

        parts = [_image_part(create_format_image(request.aspect_ratio))]
        if request.style_image is not None:
            parts.append(_image_part(request.style_image))
            text = STYLED_TEXT_TO_IMAGE_TEMPLATE.format(prompt=request.prompt)
        else:
            text = TEXT_TO_IMAGE_TEMPLATE.format(prompt=request.prompt)
        parts.append(types.Part.from_text(text=text))

        logger.info(f"Generating text-to-image with prompt: {request.prompt[:50]}...")
        return self._generate_content(parts)

    @property
    def name(self) -> str:
        return "Gemini"


class GeminiImageToImageBackend(GoogleGenAIBackend):
    """Image-to-image (variation and editing) through a multimodal Gemini model."""

    def compose_prompt(self, request: GenerationRequest) -> str:
        """Prompt actually sent alongside the input images.

        With a variation strength the user's text is layered with the identity
        instruction and the strength modifier. Without one the prompt is sent
        as is, or the fallback instruction if it is empty.
        """
        if request.variation_strength is not None:
            return build_variation_prompt(request.prompt, request.variation_strength)
        return request.prompt.strip() or FALLBACK_INSTRUCTION

    def generate_image(self, request: GenerationRequest) -> str:
        """Generate a variation of the request's base image.

        Raises:
            PreconditionError: If the request has no base image
            ProviderError: If the API call fails
        """
        if request.base_image is None:
            raise PreconditionError(
                PreconditionReason.INCOMPATIBLE_REQUEST,
                f"{self.name} needs a base image",
            )

        prompt = self.compose_prompt(request)
        parts = [_image_part(image) for image in request.reference_images]
        if request.style_image is not None:
            parts.append(_image_part(request.style_image))
        parts.append(types.Part.from_text(text=prompt))

        logger.info(
            f"Generating image-to-image from {len(request.reference_images)} image(s) "
            f"with prompt: {prompt[:50]}..."
        )
        return self._generate_content(parts)

    @property
    def name(self) -> str:
        return "Gemini (image-to-image)"
