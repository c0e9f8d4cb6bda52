"""Core data models for the generation pipeline."""

import base64
import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List, FrozenSet
from pydantic import BaseModel, Field, field_validator, model_validator


class AspectRatio(str, Enum):
    """Aspect ratios understood by the providers."""
    SQUARE = "1:1"
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"
    STANDARD_LANDSCAPE = "4:3"
    STANDARD_PORTRAIT = "3:4"

    @property
    def ratio(self) -> float:
        """Width divided by height."""
        width, height = (int(part) for part in self.value.split(":"))
        return width / height


class GenerationStatus(str, Enum):
    """Lifecycle status of a single generated image."""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class ErrorReason(str, Enum):
    """Why a result ended in the error state."""
    PROVIDER_ERROR = "provider_error"
    MALFORMED_RESPONSE = "malformed_response"
    CANCELLED = "cancelled"


class PaymentMode(str, Enum):
    """How a user pays for generations."""
    CREDITS = "credits"
    API_KEY = "api_key"


class BatchState(str, Enum):
    """States of a generation batch."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.+)$", re.DOTALL)


class ReferenceImage(BaseModel):
    """An input image sent alongside the prompt.

    Attributes:
        data: Raw image bytes
        mime_type: MIME type of the image (e.g. image/png)
    """

    data: bytes = Field(..., min_length=1, description="Raw image bytes")
    mime_type: str = Field(default="image/png", description="Image MIME type")

    def to_base64(self) -> str:
        """Encode the image bytes as base64 text."""
        return base64.b64encode(self.data).decode("utf-8")

    def to_data_url(self) -> str:
        """Encode the image as a data URL."""
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @classmethod
    def from_data_url(cls, data_url: str) -> "ReferenceImage":
        """Build a reference image from a ``data:<mime>;base64,...`` URL.

        Raises:
            ValueError: If the string is not a base64 data URL
        """
        match = _DATA_URL_PATTERN.match(data_url.strip())
        if not match:
            raise ValueError("Expected a base64 data URL")
        return cls(data=base64.b64decode(match.group("data")), mime_type=match.group("mime"))


class GenerationRequest(BaseModel):
    """Request for a single output image.

    Attributes:
        prompt: The fully composed instruction sent to the provider
        reference_images: Input images; the first one is the base image to vary
        style_image: Optional style reference
        aspect_ratio: Requested output aspect ratio
        resolution_hint: Target size such as ``1024x1024``
        provider_id: Identifier of the provider to use
        variation_strength: How far an image-to-image result may deviate (1-10)
    """

    prompt: str = Field(default="", max_length=4000, description="Composed prompt text")
    reference_images: List[ReferenceImage] = Field(default_factory=list)
    style_image: Optional[ReferenceImage] = None
    aspect_ratio: AspectRatio = AspectRatio.SQUARE
    resolution_hint: str = Field(default="1024x1024", pattern=r"^\d+x\d+$")
    provider_id: str = Field(..., min_length=1)
    variation_strength: Optional[int] = Field(default=None, ge=1, le=10)

    @model_validator(mode="after")
    def _prompt_or_base_image(self) -> "GenerationRequest":
        # Providers reject empty prompts; a variation of an uploaded image may
        # leave the text to the image-to-image prompt layering.
        if not self.prompt.strip() and not self.reference_images:
            raise ValueError("A prompt is required unless a base image is supplied")
        return self

    @property
    def has_image_input(self) -> bool:
        """Whether the request carries any user-supplied image."""
        return bool(self.reference_images) or self.style_image is not None

    @property
    def base_image(self) -> Optional[ReferenceImage]:
        """The image to vary, if any."""
        return self.reference_images[0] if self.reference_images else None


class ProviderCapabilities(BaseModel):
    """Static capability profile of a provider."""

    supports_image_input: bool = False
    max_batch_size: int = Field(default=1, ge=1)
    supported_aspect_ratios: FrozenSet[AspectRatio] = frozenset({AspectRatio.SQUARE})
    cost_per_image: int = Field(default=1, ge=0)
    supports_batch_output: bool = False

    model_config = {"frozen": True}


class GenerationContext(BaseModel):
    """Who is paying for a batch and how."""

    payment_mode: PaymentMode = PaymentMode.CREDITS
    username: Optional[str] = None


def new_result_id() -> str:
    """Return an id that is unique within any batch."""
    return f"gen_{uuid.uuid4().hex[:12]}"


class GenerationResult(BaseModel):
    """One requested output image and its status.

    A result is created pending and moves exactly once to success or error.
    """

    id: str = Field(default_factory=new_result_id)
    status: GenerationStatus = GenerationStatus.PENDING
    image: Optional[str] = Field(default=None, description="Data URL or remote URL")
    prompt_used: str
    aspect_ratio: AspectRatio
    provider_id: str
    error_reason: Optional[ErrorReason] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("image")
    @classmethod
    def _image_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("image must not be blank")
        return value

    @property
    def is_pending(self) -> bool:
        return self.status == GenerationStatus.PENDING

    def mark_success(self, image: str) -> None:
        """Record the generated image.

        Raises:
            ValueError: If the result already left the pending state
        """
        self._ensure_pending()
        if not image:
            raise ValueError("A successful result needs an image")
        self.image = image
        self.status = GenerationStatus.SUCCESS

    def mark_error(self, reason: ErrorReason, message: Optional[str] = None) -> None:
        """Record a terminal failure.

        Raises:
            ValueError: If the result already left the pending state
        """
        self._ensure_pending()
        self.status = GenerationStatus.ERROR
        self.error_reason = reason
        self.error_message = message

    def _ensure_pending(self) -> None:
        if not self.is_pending:
            raise ValueError(
                f"Result {self.id} is already {self.status.value}; it cannot change again"
            )
