"""Upload validation and image probing.

Only the image header is decoded: the pipeline needs the intrinsic size and
format of a frame, never its pixels.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

from PIL import Image, UnidentifiedImageError

from shelfcount.vision.types import ImageCapture

if TYPE_CHECKING:
    from shelfcount.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


class UploadRejected(ValueError):
    """Raised when an uploaded frame exceeds the configured limits."""


def _read_header(image_bytes: bytes) -> tuple[int, int, str] | None:
    """Return ``(width, height, mime_type)``, or ``None`` if the header is unreadable.

    Raises:
        Image.DecompressionBombError: If the header declares more pixels than Pillow will open.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            width, height = image.size
            return width, height, Image.MIME.get(image.format or "", DEFAULT_MIME_TYPE)
    except (UnidentifiedImageError, OSError):
        logger.warning("Could not decode image header (%d bytes)", len(image_bytes))
        return None


def probe_image(image_bytes: bytes) -> ImageCapture:
    """Wrap encoded image bytes, reading width, height and MIME type from the header.

    Undecodable data is still accepted; the size is then unknown and the
    MIME type falls back to JPEG. Uploads go through ``validate_upload``
    first, which rejects oversized headers.
    """
    try:
        header = _read_header(image_bytes)
    except Image.DecompressionBombError as exc:
        logger.warning("Image header exceeds the decoder limit: %s", exc)
        header = None
    if header is None:
        return ImageCapture(data=image_bytes)
    width, height, mime_type = header
    return ImageCapture(data=image_bytes, width=width, height=height, mime_type=mime_type)


def validate_upload(image_bytes: bytes, settings: Settings) -> ImageCapture:
    """Check an uploaded frame against the size limits and probe it.

    Raises:
        UploadRejected: If the upload is empty, too large, or has too many pixels.
    """
    if not image_bytes:
        raise UploadRejected("Uploaded image is empty")
    if len(image_bytes) > settings.max_file_size:
        raise UploadRejected(f"Uploaded image exceeds {settings.max_file_size} bytes")

    try:
        header = _read_header(image_bytes)
    except Image.DecompressionBombError as exc:
        raise UploadRejected(f"Uploaded image has too many pixels, limit is {settings.max_image_pixels}") from exc
    if header is None:
        return ImageCapture(data=image_bytes)

    width, height, mime_type = header
    pixels = width * height
    if pixels > settings.max_image_pixels:
        raise UploadRejected(f"Uploaded image has {pixels} pixels, limit is {settings.max_image_pixels}")
    return ImageCapture(data=image_bytes, width=width, height=height, mime_type=mime_type)
