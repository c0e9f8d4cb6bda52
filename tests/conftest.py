"""Shared test fixtures and configuration."""

import pytest
import os
import io
from unittest.mock import Mock
from PIL import Image

from setka_studio.core.models import (
    AspectRatio,
    GenerationContext,
    GenerationRequest,
    GenerationResult,
    PaymentMode,
    ProviderCapabilities,
    ReferenceImage,
)


@pytest.fixture
def sample_prompt():
    """Return a sample prompt for testing."""
    return "A beautiful sunset over mountains"


@pytest.fixture
def sample_generation_request(sample_prompt):
    """Return a sample text-only GenerationRequest for testing."""
    return GenerationRequest(
        prompt=sample_prompt,
        aspect_ratio=AspectRatio.SQUARE,
        provider_id="gemini-2.5-flash-image"
    )


@pytest.fixture
def sample_fake_image():
    """Return a fake PIL Image for testing."""
    return Image.new('RGB', (512, 512), color='red')


@pytest.fixture
def sample_image_bytes(sample_fake_image):
    """Return sample image as PNG bytes."""
    img_byte_arr = io.BytesIO()
    sample_fake_image.save(img_byte_arr, format='PNG')
    return img_byte_arr.getvalue()


@pytest.fixture
def sample_reference_image(sample_image_bytes):
    """Return a ReferenceImage wrapping the sample PNG."""
    return ReferenceImage(data=sample_image_bytes, mime_type="image/png")


@pytest.fixture
def sample_success_result(sample_prompt):
    """Return a successful GenerationResult."""
    result = GenerationResult(
        prompt_used=sample_prompt,
        aspect_ratio=AspectRatio.SQUARE,
        provider_id="gemini-2.5-flash-image"
    )
    result.mark_success("data:image/png;base64,aGVsbG8=")
    return result


@pytest.fixture
def credits_context():
    """Return a context paying with credits."""
    return GenerationContext(payment_mode=PaymentMode.CREDITS, username="alice")


@pytest.fixture
def api_key_context():
    """Return a context paying with the user's own key."""
    return GenerationContext(payment_mode=PaymentMode.API_KEY, username="alice")


@pytest.fixture
def mock_backend():
    """Return a mocked backend with a permissive capability profile."""
    backend = Mock()
    backend.name = "MockBackend"
    backend.max_images_per_call = 1
    backend.capabilities = ProviderCapabilities(
        supports_image_input=True,
        max_batch_size=10,
        supported_aspect_ratios=frozenset(AspectRatio),
    )
    return backend


@pytest.fixture
def test_api_key():
    """Return a test API key."""
    return "gemini_test_key_12345"


# Skip integration tests unless explicitly requested
def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests unless RUN_INTEGRATION_TESTS is set."""
    skip_integration = pytest.mark.skip(reason="Integration tests disabled (set RUN_INTEGRATION_TESTS=true to enable)")

    for item in items:
        if "integration" in item.keywords:
            if not os.getenv("RUN_INTEGRATION_TESTS", "").lower() == "true":
                item.add_marker(skip_integration)
