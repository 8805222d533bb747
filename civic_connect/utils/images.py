import io
import logging

from PIL import Image, UnidentifiedImageError
import pillow_heif

from civic_connect.core.exceptions import InvalidImage

pillow_heif.register_heif_opener()  # phones upload HEIC by default

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024

_MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "HEIF": "image/heic",
    "BMP": "image/bmp",
}


def validate_image(content: bytes, filename: str = "") -> str:
    """Check that content is a readable image and return its content type."""
    if not content:
        raise InvalidImage(f"{filename or 'upload'} is empty")
    if len(content) > MAX_IMAGE_BYTES:
        raise InvalidImage(f"{filename or 'upload'} exceeds {MAX_IMAGE_BYTES // (1024 * 1024)} MB")

    try:
        with Image.open(io.BytesIO(content)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        logger.warning(f"Rejected upload {filename!r}: {e}")
        raise InvalidImage(f"{filename or 'upload'} is not a valid image") from e

    return _MIME_BY_FORMAT.get(image_format or "", "application/octet-stream")
