"""Imagen backend: text-to-image with native multi-image output."""

import logging
from typing import List, Optional
from google.genai import types

from setka_studio.backends.gemini import GoogleGenAIBackend
from setka_studio.core.base_backend import classify_provider_error
from setka_studio.core.exceptions import MalformedResponseError, PreconditionError, PreconditionReason
from setka_studio.core.models import AspectRatio, GenerationRequest, ProviderCapabilities
from setka_studio.utils.image_utils import to_data_url

logger = logging.getLogger(__name__)

IMAGEN_MODEL = "imagen-4.0-generate-001"

IMAGEN_CAPABILITIES = ProviderCapabilities(
    supports_image_input=False,
    max_batch_size=8,
    supported_aspect_ratios=frozenset(AspectRatio),
    cost_per_image=1,
    supports_batch_output=True,
)

IMAGEN_PROMPT_TEMPLATE = (
    "{prompt}. 8k, ultra high detail, photorealistic, "
    "aim for a high resolution around {resolution} pixels."
)


class ImagenBackend(GoogleGenAIBackend):
    """Backend for Google's Imagen models.

    Imagen takes the aspect ratio as a parameter and can return several
    images for one prompt, up to ``max_images_per_call`` per request.
    """

    DEFAULT_MODEL = IMAGEN_MODEL
    DEFAULT_CAPABILITIES = IMAGEN_CAPABILITIES
    max_images_per_call = 4

    def compose_prompt(self, request: GenerationRequest) -> str:
        """Prompt with the quality and resolution suffix."""
        return IMAGEN_PROMPT_TEMPLATE.format(
            prompt=request.prompt.strip().rstrip("."),
            resolution=request.resolution_hint,
        )

    def generate_image(self, request: GenerationRequest) -> str:
        """Generate a single image."""
        return self.generate_images(request, 1)[0]

    def generate_images(self, request: GenerationRequest, count: int) -> List[str]:
        """Generate up to ``count`` images for one prompt in one call.

        Returns:
            The images the provider returned; may be fewer than ``count``

        Raises:
            PreconditionError: If the request carries input images
            ValueError: If count is outside 1..max_images_per_call
            ProviderError: If the call fails or every image was filtered
        """
        if request.has_image_input:
            raise PreconditionError(
                PreconditionReason.INCOMPATIBLE_REQUEST,
                f"{self.name} does not accept input images",
            )
        if not 1 <= count <= self.max_images_per_call:
            raise ValueError(f"count must be between 1 and {self.max_images_per_call}, got {count}")

        prompt = self.compose_prompt(request)
        logger.info(f"Generating {count} image(s) with prompt: {request.prompt[:50]}...")

        response = self._call_api(lambda: self.client.models.generate_images(
            model=self.model,
            prompt=prompt,
            config=types.GenerateImagesConfig(
                number_of_images=count,
                aspect_ratio=request.aspect_ratio.value,
                output_mime_type="image/png",
            ),
        ))

        images: List[str] = []
        filtered_reason: Optional[str] = None
        for generated in getattr(response, "generated_images", None) or []:
            image = getattr(generated, "image", None)
            if image is not None and image.image_bytes:
                images.append(to_data_url(image.image_bytes, image.mime_type or "image/png"))
            elif getattr(generated, "rai_filtered_reason", None):
                filtered_reason = generated.rai_filtered_reason

        if not images:
            if filtered_reason:
                raise classify_provider_error(
                    f"All images were filtered: {filtered_reason}",
                    finish_reason="IMAGE_SAFETY",
                )
            raise MalformedResponseError(f"{self.name} returned no images")

        if len(images) < count:
            logger.warning(f"{self.name} returned {len(images)} of {count} requested images")
        return images

    @property
    def name(self) -> str:
        return "Imagen"
