"""Inline media compression for records kept in the local store."""

import base64
import binascii
import io
import logging

from PIL import Image

logger = logging.getLogger(__name__)

IMAGE_FIELDS = ("imageUrl", "thumbnailUrl")
MEDIA_FIELDS = ("videoUrl", "audioUrl")

BASE64_OVERHEAD = 1.33
MAX_DIMENSION = 800
MEDIA_WARN_BYTES = 2 * 1024 * 1024


def _encode_jpeg(image: Image.Image, quality: int) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return "data:image/jpeg;base64," + base64.b64encode(buffer.getvalue()).decode()


def compress_image_data(data_url: str, max_size_kb: int = 500) -> str:
    """
    Shrink an inline ``data:image/...`` URL until it fits ``max_size_kb``.

    The image is bounded to 800px on its longest side and re-encoded as JPEG,
    lowering quality from 80 in steps of 10 (floor 10). Undecodable data is
    returned unchanged.
    """
    limit = max_size_kb * 1024 * BASE64_OVERHEAD
    if len(data_url) < limit:
        return data_url

    try:
        _, encoded = data_url.split(",", 1)
        image = Image.open(io.BytesIO(base64.b64decode(encoded)))
        image.load()
    except (ValueError, OSError, binascii.Error) as e:
        logger.warning(f"Could not compress image, using original: {e}")
        return data_url

    image.thumbnail((MAX_DIMENSION, MAX_DIMENSION), Image.Resampling.LANCZOS)
    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")

    quality = 80
    compressed = _encode_jpeg(image, quality)
    while len(compressed) > limit and quality > 10:
        quality -= 10
        compressed = _encode_jpeg(image, quality)

    logger.info(
        f"Image compressed: {len(data_url) / 1024:.1f}KB -> {len(compressed) / 1024:.1f}KB "
        f"(quality {quality})"
    )
    return compressed


def compress_record_media(record: dict, max_size_kb: int = 500) -> dict:
    """Return a copy of ``record`` with oversized inline images compressed."""
    processed = dict(record)

    for field in IMAGE_FIELDS:
        value = processed.get(field)
        if isinstance(value, str) and value.startswith("data:image/"):
            processed[field] = compress_image_data(value, max_size_kb)

    # Audio/video is only size-checked
    for field in MEDIA_FIELDS:
        value = processed.get(field)
        if isinstance(value, str) and value.startswith("data:"):
            if len(value) > MEDIA_WARN_BYTES * BASE64_OVERHEAD:
                logger.warning(
                    f"{field} is very large ({len(value) / 1024 / 1024:.1f}MB), "
                    f"this may cause storage issues"
                )

    return processed
