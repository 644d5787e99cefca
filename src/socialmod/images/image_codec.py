"""
Pure image transforms used by the resize fan-out.

Nothing here touches storage or the network. Decoding and encoding are
CPU-bound and blocking; callers run them through ``asyncio.to_thread``.
"""

from __future__ import annotations

from io import BytesIO
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener

from socialmod.datatypes.image_datatypes import ImageSize
from socialmod.errors import PermanentContentError
from socialmod.util.logger import get_logger

logger = get_logger("image_codec")

register_heif_opener()

JPEG_MIME_TYPE = "image/jpeg"


def decode_image(data: bytes) -> Image.Image:
    """
    Decode an original image into an upright RGB image.

    EXIF orientation is applied so that derived sizes are stored the right way
    up. The whole image is loaded, so the returned object no longer depends on
    ``data``.

    Args:
        data: Encoded image bytes in any format Pillow (or pillow-heif) reads.

    Returns:
        Image.Image: Decoded RGB image.

    Raises:
        PermanentContentError: If the bytes cannot be decoded as an image.
    """
    try:
        with Image.open(BytesIO(data)) as source:
            source.load()
            upright = ImageOps.exif_transpose(source)
            return upright.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise PermanentContentError(f"undecodable image: {exc}") from exc


def read_dimensions(data: bytes) -> Tuple[int, int]:
    """Return ``(width, height)`` from the image header without decoding pixels.

    Raises:
        PermanentContentError: If the header cannot be read.
    """
    try:
        with Image.open(BytesIO(data)) as source:
            return source.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise PermanentContentError(f"unreadable image header: {exc}") from exc


def calculate_target_size(original: Tuple[int, int], longest_edge: int) -> Tuple[int, int]:
    """
    Scale ``original`` so its longest edge equals ``longest_edge``.

    Aspect ratio is preserved and images are never upscaled: an original whose
    longest edge is already at or below the target keeps its dimensions.
    """
    width, height = original
    if width <= 0 or height <= 0:
        raise PermanentContentError(f"invalid image dimensions {width}x{height}")
    current = max(width, height)
    if current <= longest_edge:
        return width, height
    scale = longest_edge / current
    if width >= height:
        return longest_edge, max(1, round(height * scale))
    return max(1, round(width * scale)), longest_edge


def encode_resized(image: Image.Image, size: ImageSize, quality: int) -> bytes:
    """Resize ``image`` for ``size`` and encode it as JPEG at ``quality``.

    Identical inputs produce identical bytes.
    """
    target = calculate_target_size(image.size, size.width)
    resized = image if target == image.size else image.resize(target, Image.Resampling.LANCZOS)
    buffer = BytesIO()
    resized.save(buffer, format="JPEG", quality=quality, optimize=False, progressive=False)
    logger.debug("[CODEC] Encoded size %s: %sx%s -> %sx%s (%d bytes)", size.id, *image.size, *target, buffer.tell())
    return buffer.getvalue()
