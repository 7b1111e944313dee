"""Image validation and resizing for uploads.

Every accepted upload is decoded with Pillow, checked against the configured
limits and re-encoded as JPEG: the original at quality 90 (progressive) and a
thumbnail that fits in a `thumbnail_size` square at quality 75.
"""
import asyncio
import logging
from io import BytesIO
from typing import Any, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError
from pydantic import BaseModel

from .constants import (
    MAX_IMAGE_DIMENSION,
    MAX_IMAGE_DPI,
    MAX_UPLOAD_BYTES,
    ORIGINAL_JPEG_QUALITY,
    THUMBNAIL_JPEG_QUALITY,
    THUMBNAIL_PREFIX,
    THUMBNAIL_SIZE,
)
from .errors import ValidationError
from .storage_helpers import call_storage, remove_files

logger = logging.getLogger(__name__)


class MediaLimits(BaseModel):
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    max_image_dimension: int = MAX_IMAGE_DIMENSION
    max_image_dpi: int = MAX_IMAGE_DPI
    thumbnail_size: int = THUMBNAIL_SIZE

    @classmethod
    def from_settings(cls, settings) -> "MediaLimits":
        return cls(
            max_upload_bytes=settings.max_upload_bytes,
            max_image_dimension=settings.max_image_dimension,
            max_image_dpi=settings.max_image_dpi,
            thumbnail_size=settings.thumbnail_size,
        )


class ProcessedImage(BaseModel):
    original: bytes
    thumbnail: bytes
    width: int
    height: int


def stored_filenames(base_id: str) -> Tuple[str, str]:
    """Names of the original and thumbnail files for a photo or entry id."""
    return f"{base_id}.jpg", f"{THUMBNAIL_PREFIX}{base_id}.jpg"


def image_dpi(img: Image.Image) -> Optional[int]:
    """Embedded DPI of an image, rounded, or None when the file carries none."""
    dpi = img.info.get('dpi')
    if not dpi:
        return None
    try:
        values = [float(v) for v in (dpi if isinstance(dpi, (tuple, list)) else (dpi,))]
    except (TypeError, ValueError):
        return None
    values = [v for v in values if v > 0]
    if not values:
        return None
    return round(max(values))


def _flatten(img: Image.Image) -> Image.Image:
    if img.mode in ('RGBA', 'LA', 'P'):
        img = img.convert('RGBA') if img.mode == 'P' else img
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def _encode_jpeg(img: Image.Image, quality: int, progressive: bool = False) -> bytes:
    with BytesIO() as bio:
        img.save(bio, format='JPEG', quality=quality, progressive=progressive, optimize=progressive)
        return bio.getvalue()


def validate_upload(data: bytes, content_type: Optional[str], limits: MediaLimits) -> Image.Image:
    """Decode an upload and enforce the size, dimension and DPI limits.

    Returns the decoded image. Raises `ValidationError` with a user facing
    message on the first limit that is exceeded.
    """
    if not data:
        raise ValidationError("No photo file provided")
    if not content_type or not content_type.lower().startswith('image/'):
        raise ValidationError("Only image files are allowed")
    if len(data) > limits.max_upload_bytes:
        raise ValidationError(f"File too large. Maximum upload size is {limits.max_upload_bytes} bytes")

    try:
        # Only the header is read here; pixels are decoded once the limits pass
        img = Image.open(BytesIO(data))
    except Image.DecompressionBombError as exc:
        raise ValidationError("Image too large to process") from exc
    except (UnidentifiedImageError, OSError) as exc:
        logger.debug("Rejected undecodable upload: %s", exc)
        raise ValidationError("Uploaded file is not a valid image") from exc

    longest = max(img.size)
    if longest > limits.max_image_dimension:
        raise ValidationError(
            f"Image too large. Maximum dimension is {limits.max_image_dimension}px, "
            f"but your image is {longest}px. Please resize your image before uploading."
        )

    dpi = image_dpi(img)
    if dpi is not None and dpi > limits.max_image_dpi:
        raise ValidationError(
            f"Image DPI too high. Please save your image at {limits.max_image_dpi} DPI or lower "
            f"for web use. Current: {dpi} DPI"
        )

    try:
        img.load()
    except Image.DecompressionBombError as exc:
        raise ValidationError("Image too large to process") from exc
    except OSError as exc:
        logger.debug("Rejected undecodable upload: %s", exc)
        raise ValidationError("Uploaded file is not a valid image") from exc
    return img


def process_image(data: bytes, content_type: Optional[str], limits: MediaLimits) -> ProcessedImage:
    img = validate_upload(data, content_type, limits)
    img = _flatten(ImageOps.exif_transpose(img))

    original = _encode_jpeg(img, ORIGINAL_JPEG_QUALITY, progressive=True)

    thumb = img.copy()
    # thumbnail() never enlarges
    thumb.thumbnail((limits.thumbnail_size, limits.thumbnail_size), Image.Resampling.LANCZOS)
    thumbnail = _encode_jpeg(thumb, THUMBNAIL_JPEG_QUALITY)

    return ProcessedImage(original=original, thumbnail=thumbnail, width=img.width, height=img.height)


async def async_process_and_store(
    storage: Any,
    base_id: str,
    data: bytes,
    content_type: Optional[str],
    limits: MediaLimits,
) -> Tuple[str, str]:
    """Validate, resize and store an upload without blocking the event loop."""
    loop = asyncio.get_running_loop()
    processed = await loop.run_in_executor(None, process_image, data, content_type, limits)
    filename, thumbnail_filename = stored_filenames(base_id)
    try:
        await call_storage(storage, 'save_file', filename, processed.original)
        await call_storage(storage, 'save_file', thumbnail_filename, processed.thumbnail)
    except OSError:
        logger.exception("Failed to store image files for %s", base_id)
        await loop.run_in_executor(None, remove_files, storage, (filename, thumbnail_filename))
        raise
    logger.debug("Stored %s and %s (%dx%d)", filename, thumbnail_filename, processed.width, processed.height)
    return filename, thumbnail_filename
