"""Receipt image checks and pre-processing.

``validate_image_upload`` runs on both sides of the upload: the client calls it
before touching the network and the service calls it again on receipt.
"""

import io

from PIL import Image, ImageOps, UnidentifiedImageError

from larder.domain.errors import ValidationError
from larder.runtime.logging import get_logger
from larder.runtime.settings import ALLOWED_IMAGE_TYPES, MAX_UPLOAD_BYTES

logger = get_logger(__name__)

MAX_IMAGE_DIMENSION = 3000  # Resize if either dimension exceeds this
RECOGNITION_IMAGE_PADDING = 50  # White border so edge text is not cut off


def _too_large(exc: Image.DecompressionBombError) -> ValidationError:
    return ValidationError(f"Image dimensions are too large to process: {exc}")


def sniff_content_type(data: bytes) -> str | None:
    """Best-effort MIME type from the image header, or None if Pillow can't tell.

    Raises:
        ValidationError: if the header declares more pixels than Pillow will decode.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "")
    except Image.DecompressionBombError as exc:
        raise _too_large(exc) from exc
    except (UnidentifiedImageError, OSError):
        return None


def validate_image_upload(
    data: bytes,
    content_type: str | None,
    max_bytes: int = MAX_UPLOAD_BYTES,
    allowed_types: tuple[str, ...] = ALLOWED_IMAGE_TYPES,
) -> str:
    """Reject empty, oversized or non-image uploads; return the normalized MIME type.

    Size is checked first so a huge file is refused without being decoded.
    The header is always read so pixel bombs are refused before storage.
    """
    size = len(data)
    if size == 0:
        raise ValidationError("Image file is empty")
    if size > max_bytes:
        raise ValidationError(
            f"Image is {size / (1024 * 1024):.1f} MB; the limit is {max_bytes / (1024 * 1024):.0f} MB"
        )

    sniffed = sniff_content_type(data)
    mime = (content_type or "").split(";")[0].strip().lower()
    if not mime or mime == "application/octet-stream":
        mime = sniffed or ""
    if mime not in allowed_types:
        raise ValidationError(
            f"Unsupported image type {mime or 'unknown'!r}; expected one of: {', '.join(allowed_types)}"
        )
    return mime


def prepare_for_recognition(
    image_bytes: bytes, max_dimension: int = MAX_IMAGE_DIMENSION, padding: int = RECOGNITION_IMAGE_PADDING
) -> tuple[bytes, str]:
    """
    Normalize a receipt photo before handing it to the recognition worker.

    Applies EXIF orientation, downsizes to ``max_dimension`` and adds a white
    border. Formats Pillow cannot decode (HEIC without a plugin) are passed
    through untouched.

    Returns:
        Tuple of (image bytes, MIME type of those bytes).
    """
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img = ImageOps.exif_transpose(img)
    except Image.DecompressionBombError as exc:
        raise _too_large(exc) from exc
    except (UnidentifiedImageError, OSError) as exc:
        logger.info("Sending original image bytes to recognition: %s", exc)
        return image_bytes, sniff_content_type(image_bytes) or "application/octet-stream"

    width, height = img.size
    if width > max_dimension or height > max_dimension:
        if width > height:
            new_size = (max_dimension, int(height * (max_dimension / width)))
        else:
            new_size = (int(width * (max_dimension / height)), max_dimension)
        img = img.resize(new_size, Image.Resampling.LANCZOS)

    if padding > 0:
        img = ImageOps.expand(img.convert("RGB"), border=padding, fill="white")

    buffer = io.BytesIO()
    img.convert("RGB").save(buffer, format="JPEG", quality=95)
    return buffer.getvalue(), "image/jpeg"
