"""
Derived image size configuration.

The size table is built once per process and exposed read-only. Every list
is non-empty and strictly increasing in width, and size ids are single
lowercase letters, which never occur in blob handles, so a derived handle
(``blob_handle + size.id``) cannot collide with an original handle.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Sequence, Tuple

from socialmod.datatypes.image_datatypes import ImageSize, ImageType
from socialmod.util.handles import validate_blob_handle

TINY = ImageSize("d", 25)
SMALL = ImageSize("h", 50)
MEDIUM = ImageSize("l", 100)
LARGE = ImageSize("p", 250)
HUGE = ImageSize("t", 500)
GIGANTIC = ImageSize("x", 1000)

ALL_SIZES: Tuple[ImageSize, ...] = (TINY, SMALL, MEDIUM, LARGE, HUGE, GIGANTIC)

DEFAULT_IMAGE_SIZES: Mapping[ImageType, Sequence[ImageSize]] = {
    ImageType.USER_PHOTO: ALL_SIZES,
    ImageType.CONTENT_BLOB: ALL_SIZES,
    ImageType.APP_ICON: (MEDIUM,),
}


def _validate(image_type: ImageType, sizes: Sequence[ImageSize]) -> Tuple[ImageSize, ...]:
    sizes = tuple(sizes)
    if not sizes:
        raise ValueError(f"no image sizes configured for {image_type}")
    seen: set[str] = set()
    previous_width = 0
    for size in sizes:
        if len(size.id) != 1 or not ("a" <= size.id <= "z"):
            raise ValueError(f"image size id must be a single lowercase letter: {size.id!r}")
        if size.id in seen:
            raise ValueError(f"duplicate image size id {size.id!r} for {image_type}")
        if size.width <= previous_width:
            raise ValueError(f"image sizes for {image_type} must be strictly increasing in width")
        seen.add(size.id)
        previous_width = size.width
    return sizes


class ImageSizesConfiguration:
    """Immutable ImageType -> ordered sizes table.

    Args:
        sizes: Mapping to validate and freeze; defaults to ``DEFAULT_IMAGE_SIZES``.
            Every ImageType must be present.

    Raises:
        ValueError: If any list violates the ordering or id rules.
    """

    __slots__ = ("_sizes",)

    def __init__(self, sizes: Mapping[ImageType, Sequence[ImageSize]] | None = None) -> None:
        source = DEFAULT_IMAGE_SIZES if sizes is None else sizes
        missing = [image_type for image_type in ImageType if image_type not in source]
        if missing:
            raise ValueError(f"no image sizes configured for {', '.join(map(str, missing))}")
        self._sizes: Mapping[ImageType, Tuple[ImageSize, ...]] = MappingProxyType(
            {image_type: _validate(image_type, source[image_type]) for image_type in ImageType}
        )

    @property
    def sizes(self) -> Mapping[ImageType, Tuple[ImageSize, ...]]:
        return self._sizes

    def sizes_for(self, image_type: ImageType) -> Tuple[ImageSize, ...]:
        return self._sizes[image_type]

    def size_for(self, image_type: ImageType, size_id: str) -> ImageSize | None:
        for size in self._sizes[image_type]:
            if size.id == size_id:
                return size
        return None

    def largest_for(self, image_type: ImageType, max_width: int) -> ImageSize | None:
        """Largest configured size no wider than ``max_width``."""
        candidates = [size for size in self._sizes[image_type] if size.width <= max_width]
        return candidates[-1] if candidates else None


def derived_blob_handle(blob_handle: str, size: ImageSize) -> str:
    """Blob handle of the ``size`` derivative of ``blob_handle``."""
    validate_blob_handle(blob_handle)
    return blob_handle + size.id
