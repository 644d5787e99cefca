"""
Content, review status and feed data structures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class ContentType(Enum):
    """Kinds of moderatable content."""

    TOPIC = "topic"
    COMMENT = "comment"
    REPLY = "reply"
    IMAGE = "image"
    USER = "user"

    def __str__(self) -> str:
        return self.value


# Content types stored in the content_items table
TEXT_CONTENT_TYPES = frozenset({ContentType.TOPIC, ContentType.COMMENT, ContentType.REPLY})


class ReviewStatus(Enum):
    """Tri-state visibility verdict attached to content or media."""

    UNKNOWN = "unknown"
    ACTIVE = "active"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class ContentItem:
    """A topic, comment or reply.

    Attributes:
        content_handle: Primary handle.
        content_type: One of ``TEXT_CONTENT_TYPES``.
        app_handle: Owning app.
        user_handle: Author.
        text: Body text.
        title: Topic title; None for comments and replies.
        parent_handle: Topic of a comment, comment of a reply.
        blob_handle: Optional attached image.
        review_status: Stored review status.
        created_time: Unix seconds.
    """
    content_handle: str
    content_type: ContentType
    app_handle: str
    user_handle: str
    text: str
    title: Optional[str] = None
    parent_handle: Optional[str] = None
    blob_handle: Optional[str] = None
    review_status: ReviewStatus = ReviewStatus.UNKNOWN
    created_time: float = 0.0


@dataclass(slots=True)
class UserProfile:
    """A user profile within one app."""
    user_handle: str
    app_handle: str
    first_name: str = ""
    last_name: str = ""
    bio: str = ""
    photo_handle: Optional[str] = None
    review_status: ReviewStatus = ReviewStatus.UNKNOWN
    created_time: float = 0.0


@dataclass
class FeedPage(Generic[T]):
    """One page of a feed read.

    ``cursor`` is opaque to callers; pass it back to read the next page.
    It is None when the feed is exhausted.
    """
    items: List[T] = field(default_factory=list)
    cursor: Optional[str] = None
