"""Image validation and downscaling before upload."""

import io
import logging
import mimetypes

from PIL import Image, UnidentifiedImageError

from .errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/heic",
    "image/heif",
)
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB


def guess_content_type(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename)
    if content_type is None and filename.lower().endswith((".heic", ".heif")):
        content_type = "image/heic"
    return content_type or "application/octet-stream"


def validate_image(
    filename: str, data: bytes, max_bytes: int = DEFAULT_MAX_FILE_SIZE
) -> str:
    """Check type and size of an image file.

    Returns:
        The file's content type.

    Raises:
        ValidationError: Unsupported type or file too large.
    """
    errors = []
    content_type = guess_content_type(filename)
    if content_type not in ALLOWED_TYPES:
        errors.append(f"{filename}: unsupported file type {content_type}")
    if len(data) > max_bytes:
        errors.append(
            f"{filename}: file is larger than {max_bytes // (1024 * 1024)}MB"
        )
    if errors:
        raise ValidationError(errors)
    return content_type


def optimize_image(data: bytes, max_width: int = 1920, quality: int = 80) -> bytes:
    """Downscale an image to max_width and re-encode it as JPEG.

    Images already narrower than max_width keep their size but are still
    re-encoded. Aspect ratio is preserved.

    Raises:
        ValidationError: The bytes are not a readable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            width, height = img.size
            if width > max_width:
                new_height = max(1, round(height * max_width / width))
                img = img.resize((max_width, new_height), Image.LANCZOS)
                logger.debug(f"Resized image {width}x{height} -> {max_width}x{new_height}")

            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")

            out = io.BytesIO()
            img.save(out, format="JPEG", quality=quality, optimize=True)
            return out.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Not a readable image: {e}") from e
