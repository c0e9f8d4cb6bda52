"""Unit tests for image utilities."""

import io
import pytest
from unittest.mock import Mock, patch
from PIL import Image

from setka_studio.core.models import AspectRatio, GenerationResult, ReferenceImage
from setka_studio.utils.image_utils import (
    ImageFormat,
    add_metadata_to_image,
    create_downloadable_image,
    create_format_image,
    crop_to_aspect_ratio,
    load_image_bytes,
    parse_data_url,
    pil_to_reference,
    reference_from_bytes,
    sniff_mime_type,
    template_size,
    to_data_url,
)


def encode(image, format):
    output = io.BytesIO()
    image.save(output, format=format)
    return output.getvalue()


class TestDataUrls:
    """Tests for data URL helpers."""

    def test_sniff_png(self, sample_image_bytes):
        assert sniff_mime_type(sample_image_bytes) == "image/png"

    def test_sniff_jpeg(self, sample_fake_image):
        assert sniff_mime_type(encode(sample_fake_image, "JPEG")) == "image/jpeg"

    def test_sniff_unknown_uses_default(self):
        assert sniff_mime_type(b"not an image", default="image/webp") == "image/webp"

    def test_to_data_url_detects_type(self, sample_fake_image):
        data = encode(sample_fake_image, "JPEG")

        assert to_data_url(data).startswith("data:image/jpeg;base64,")

    def test_parse_data_url(self):
        assert parse_data_url("data:image/png;base64,aGVsbG8=") == (b"hello", "image/png")

    def test_load_data_url(self):
        assert load_image_bytes("data:image/png;base64,aGVsbG8=") == b"hello"

    @patch('setka_studio.utils.image_utils.requests.get')
    def test_load_remote_url(self, mock_get):
        mock_get.return_value = Mock(content=b"remote-bytes")

        assert load_image_bytes("https://cdn/x.png", timeout=5) == b"remote-bytes"
        mock_get.assert_called_once_with("https://cdn/x.png", timeout=5)
        mock_get.return_value.raise_for_status.assert_called_once()

    def test_load_rejects_other_strings(self):
        with pytest.raises(ValueError):
            load_image_bytes("/tmp/image.png")


class TestFormatTemplate:
    """Tests for aspect-ratio templates."""

    @pytest.mark.parametrize("aspect_ratio,size", [
        (AspectRatio.SQUARE, (1024, 1024)),
        (AspectRatio.LANDSCAPE, (1024, 576)),
        (AspectRatio.PORTRAIT, (576, 1024)),
        (AspectRatio.STANDARD_LANDSCAPE, (1024, 768)),
        (AspectRatio.STANDARD_PORTRAIT, (768, 1024)),
    ])
    def test_template_size(self, aspect_ratio, size):
        assert template_size(aspect_ratio) == size

    def test_create_format_image_is_black_png(self):
        template = create_format_image(AspectRatio.LANDSCAPE)

        assert template.mime_type == "image/png"
        with Image.open(io.BytesIO(template.data)) as image:
            assert image.format == "PNG"
            assert image.size == (1024, 576)
            assert image.getextrema() == ((0, 0), (0, 0), (0, 0))


class TestCrop:
    """Tests for crop_to_aspect_ratio."""

    def test_crop_wide_to_square(self):
        data = encode(Image.new("RGB", (800, 400), "blue"), "PNG")

        cropped = crop_to_aspect_ratio(data, AspectRatio.SQUARE)

        with Image.open(io.BytesIO(cropped)) as image:
            assert image.size == (400, 400)
            assert image.format == "PNG"

    def test_crop_square_to_portrait_keeps_jpeg(self):
        data = encode(Image.new("RGB", (900, 900), "blue"), "JPEG")

        cropped = crop_to_aspect_ratio(data, AspectRatio.PORTRAIT)

        with Image.open(io.BytesIO(cropped)) as image:
            assert image.size == (506, 900)
            assert image.format == "JPEG"


class TestReferences:
    """Tests for building reference images."""

    def test_pil_to_reference(self, sample_fake_image):
        reference = pil_to_reference(sample_fake_image)

        assert isinstance(reference, ReferenceImage)
        assert reference.mime_type == "image/png"
        assert sniff_mime_type(reference.data) == "image/png"

    def test_reference_from_bytes(self, sample_fake_image):
        reference = reference_from_bytes(encode(sample_fake_image, "JPEG"))

        assert reference.mime_type == "image/jpeg"


class TestDownloads:
    """Tests for metadata embedding and downloads."""

    def test_png_metadata(self, sample_fake_image):
        encoded = add_metadata_to_image(sample_fake_image, {"prompt": "A cat", "seed": None})

        with Image.open(io.BytesIO(encoded)) as image:
            assert image.text["prompt"] == "A cat"
            assert "seed" not in image.text
            assert "metadata_json" in image.text

    def test_unsupported_format(self, sample_fake_image):
        with pytest.raises(ValueError, match="Unsupported format"):
            add_metadata_to_image(sample_fake_image, {}, "GIF")

    def test_downloadable_png(self, sample_image_bytes):
        result = GenerationResult(
            prompt_used="A sunset, over hills!",
            aspect_ratio=AspectRatio.SQUARE,
            provider_id="dall-e",
        )
        result.mark_success(to_data_url(sample_image_bytes))

        data, filename = create_downloadable_image(result)

        assert filename.endswith("_A_sunset__over_hills_.png")
        with Image.open(io.BytesIO(data)) as image:
            assert image.text["provider"] == "dall-e"
            assert image.text["aspect_ratio"] == "1:1"

    def test_downloadable_jpeg_from_given_bytes(self, sample_success_result, sample_image_bytes):
        data, filename = create_downloadable_image(
            sample_success_result, ImageFormat.JPEG, image_bytes=sample_image_bytes
        )

        assert filename.endswith(".jpeg")
        assert sniff_mime_type(data) == "image/jpeg"

    def test_pending_result_has_nothing_to_download(self):
        result = GenerationResult(prompt_used="x", aspect_ratio=AspectRatio.SQUARE, provider_id="dall-e")

        with pytest.raises(ValueError, match="no image"):
            create_downloadable_image(result)
