"""
Blob and image metadata structures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from socialmod.datatypes.content_datatypes import ReviewStatus


class ImageType(Enum):
    """Purpose of an image; selects the configured set of derived sizes."""

    USER_PHOTO = "user_photo"
    CONTENT_BLOB = "content_blob"
    APP_ICON = "app_icon"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class ImageSize:
    """A derived image size: a one-character id and the target width in pixels.

    The width is applied to the longest edge of the image.
    """
    id: str
    width: int

    def __str__(self) -> str:
        return f"{self.id}:{self.width}"


@dataclass(slots=True)
class BlobMetadata:
    """Metadata row for a non-image blob."""
    blob_handle: str
    app_handle: str
    user_handle: str
    content_type: str
    length: int
    created_time: float = 0.0


@dataclass(slots=True)
class ImageMetadata:
    """Metadata row for an image blob.

    ``resizes_completed`` holds the ids of the derived sizes that have been
    written to blob storage.
    """
    blob_handle: str
    app_handle: str
    user_handle: str
    image_type: ImageType
    content_type: str
    length: int
    review_status: ReviewStatus = ReviewStatus.UNKNOWN
    resizes_completed: FrozenSet[str] = field(default_factory=frozenset)
    created_time: float = 0.0

    def pending_sizes(self, sizes: Iterable[ImageSize]) -> list[ImageSize]:
        """Return the sizes from ``sizes`` that have not been written yet, in order."""
        return [size for size in sizes if size.id not in self.resizes_completed]

    def all_resizes_completed(self, sizes: Iterable[ImageSize]) -> bool:
        return not self.pending_sizes(sizes)


@dataclass(slots=True)
class BlobItem:
    """Blob bytes together with their mime type."""
    blob_handle: str
    data: bytes
    content_type: Optional[str] = None
