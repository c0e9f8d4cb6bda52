"""Image helpers: data URLs, aspect-ratio templates, cropping and downloads."""

import base64
import io
import json
import logging
from typing import Any, Dict, Optional, Tuple
import requests
from PIL import Image, PngImagePlugin

from setka_studio.core.models import AspectRatio, GenerationResult, ReferenceImage

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"
TEMPLATE_LONG_SIDE = 1024


class ImageFormat:
    """Supported download formats."""
    PNG = "PNG"
    JPEG = "JPEG"
    WEBP = "WEBP"


def sniff_mime_type(data: bytes, default: str = DEFAULT_MIME_TYPE) -> str:
    """Detect the MIME type of encoded image bytes.

    Args:
        data: Encoded image bytes
        default: Returned when Pillow cannot identify the format

    Returns:
        MIME type such as ``image/jpeg``
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            return Image.MIME.get(image.format, default)
    except (OSError, ValueError):
        logger.debug(f"Could not identify image format, assuming {default}")
        return default


def to_data_url(data: bytes, mime_type: Optional[str] = None) -> str:
    """Encode image bytes as a base64 data URL."""
    mime_type = mime_type or sniff_mime_type(data)
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def parse_data_url(data_url: str) -> Tuple[bytes, str]:
    """Split a data URL into bytes and MIME type.

    Raises:
        ValueError: If the string is not a base64 data URL
    """
    reference = ReferenceImage.from_data_url(data_url)
    return reference.data, reference.mime_type


def load_image_bytes(image: str, timeout: int = 30) -> bytes:
    """Return the bytes of a data URL or a remote image URL.

    Args:
        image: Data URL or http(s) URL
        timeout: Download timeout in seconds

    Raises:
        ValueError: If the string is neither a data URL nor an http(s) URL
        requests.RequestException: If downloading a remote image fails
    """
    if image.startswith("data:"):
        data, _ = parse_data_url(image)
        return data

    if image.startswith(("http://", "https://")):
        response = requests.get(image, timeout=timeout)
        response.raise_for_status()
        return response.content

    raise ValueError("Expected a data URL or an http(s) URL")


def template_size(aspect_ratio: AspectRatio, long_side: int = TEMPLATE_LONG_SIDE) -> Tuple[int, int]:
    """Width and height of a template whose longer side is ``long_side``."""
    ratio = aspect_ratio.ratio
    if ratio >= 1:
        return long_side, round(long_side / ratio)
    return round(long_side * ratio), long_side


def create_format_image(
    aspect_ratio: AspectRatio,
    long_side: int = TEMPLATE_LONG_SIDE
) -> ReferenceImage:
    """Create a solid black PNG that fixes the output aspect ratio.

    Models that cannot take an aspect ratio parameter receive this template as
    the first input image and are told to match its shape.
    """
    image = Image.new("RGB", template_size(aspect_ratio, long_side), (0, 0, 0))
    output = io.BytesIO()
    image.save(output, format="PNG")
    return ReferenceImage(data=output.getvalue(), mime_type="image/png")


def crop_to_aspect_ratio(data: bytes, aspect_ratio: AspectRatio) -> bytes:
    """Center-crop encoded image bytes to an aspect ratio.

    The cropped image keeps its original format, or PNG when the format is
    unknown.
    """
    with Image.open(io.BytesIO(data)) as image:
        image_format = image.format or ImageFormat.PNG
        width, height = image.size
        target = aspect_ratio.ratio

        if width / height > target:
            new_width = round(height * target)
            left = (width - new_width) // 2
            box = (left, 0, left + new_width, height)
        else:
            new_height = round(width / target)
            top = (height - new_height) // 2
            box = (0, top, width, top + new_height)

        cropped = image.crop(box)
        if image_format == ImageFormat.JPEG and cropped.mode not in ("RGB", "L"):
            cropped = cropped.convert("RGB")

        output = io.BytesIO()
        cropped.save(output, format=image_format)
        return output.getvalue()


def pil_to_reference(image: Image.Image) -> ReferenceImage:
    """Convert an in-memory Pillow image (e.g. from a UI upload) to PNG bytes."""
    output = io.BytesIO()
    image.save(output, format="PNG")
    return ReferenceImage(data=output.getvalue(), mime_type="image/png")


def reference_from_bytes(data: bytes) -> ReferenceImage:
    """Wrap raw bytes, detecting their MIME type."""
    return ReferenceImage(data=data, mime_type=sniff_mime_type(data))


def add_metadata_to_image(
    image: Image.Image,
    metadata: Dict[str, Any],
    format: str = ImageFormat.PNG
) -> bytes:
    """Encode an image, embedding metadata where the format allows it.

    Args:
        image: PIL Image object
        metadata: Dictionary of metadata to embed
        format: Output format (PNG, JPEG, or WEBP)

    Returns:
        Encoded image bytes
    """
    output = io.BytesIO()

    if format == ImageFormat.PNG:
        pnginfo = PngImagePlugin.PngInfo()
        for key, value in metadata.items():
            if value is not None:
                pnginfo.add_text(key, str(value))
        pnginfo.add_text("metadata_json", json.dumps(metadata, default=str))
        image.save(output, format="PNG", pnginfo=pnginfo)

    elif format == ImageFormat.JPEG:
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        image.save(output, format="JPEG", quality=95)

    elif format == ImageFormat.WEBP:
        image.save(output, format="WEBP", quality=95)

    else:
        raise ValueError(f"Unsupported format: {format}")

    return output.getvalue()


def create_downloadable_image(
    result: GenerationResult,
    format: str = ImageFormat.PNG,
    image_bytes: Optional[bytes] = None
) -> Tuple[bytes, str]:
    """Prepare a successful result for download.

    Args:
        result: A successful generation result
        format: Output format (PNG, JPEG, or WEBP)
        image_bytes: Already fetched image bytes; fetched from ``result.image`` if omitted

    Returns:
        Tuple of (image_bytes, filename)

    Raises:
        ValueError: If the result has no image
    """
    if not result.image:
        raise ValueError(f"Result {result.id} has no image to download")

    data = image_bytes if image_bytes is not None else load_image_bytes(result.image)
    metadata = {
        "prompt": result.prompt_used,
        "provider": result.provider_id,
        "aspect_ratio": result.aspect_ratio.value,
        "timestamp": result.created_at.isoformat(),
    }

    with Image.open(io.BytesIO(data)) as image:
        encoded = add_metadata_to_image(image, metadata, format)

    timestamp_str = result.created_at.strftime("%Y%m%d_%H%M%S")
    clean_prompt = "".join(c if c.isalnum() or c in (' ', '-', '_') else '_'
                           for c in result.prompt_used[:30])
    clean_prompt = clean_prompt.strip().replace(' ', '_')
    filename = f"{timestamp_str}_{clean_prompt or result.id}.{format.lower()}"

    return encoded, filename
