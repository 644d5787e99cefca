"""
Per-content-type moderation targets.

The moderation manager treats every content type the same way and reaches
the owning manager through a dispatch table of targets. A target knows three
things about its content type: how to build the review payload, how to read
the stored review status, and how to apply a verdict (including its search
and attached-image side effects).
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Protocol

from socialmod.blobs.blobs_manager import BlobsManager
from socialmod.content.content_manager import ContentManager
from socialmod.content.users_manager import UsersManager
from socialmod.datatypes.content_datatypes import TEXT_CONTENT_TYPES, ContentType, ReviewStatus
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import NotFoundError, PermanentContentError
from socialmod.images import image_codec
from socialmod.images.image_sizes import HUGE
from socialmod.images.resize_orchestrator import ResizeOrchestrator
from socialmod.moderation.review_provider import ReviewContent
from socialmod.util.logger import get_logger

logger = get_logger("moderation_targets")


class ModerationTarget(Protocol):
    """Contract shared by every content type."""

    async def build_review_content(
        self, ctx: ExecutionContext, app_handle: str, content_handle: str
    ) -> Optional[ReviewContent]:
        """Payload to submit, or None when there is nothing left to review."""
        ...

    async def read_review_status(
        self, ctx: ExecutionContext, app_handle: str, content_handle: str
    ) -> Optional[ReviewStatus]:
        """Stored status, or None if the target no longer exists."""
        ...

    async def apply_review_status(
        self, ctx: ExecutionContext, app_handle: str, content_handle: str, review_status: ReviewStatus
    ) -> bool:
        """Apply a verdict; returns False if the target no longer exists."""
        ...


class ReviewImageSelector:
    """
    Chooses which rendition of an image is sent for review.

    Originals above ``max_bytes`` are reviewed through their largest derived
    size up to Huge, which is produced on demand. Images with a side shorter
    than ``min_pixels`` are not reviewed at all.
    """

    def __init__(
        self,
        blobs_manager: BlobsManager,
        orchestrator: ResizeOrchestrator,
        max_bytes: int,
        min_pixels: int,
    ) -> None:
        self.blobs_manager = blobs_manager
        self.orchestrator = orchestrator
        self.max_bytes = max_bytes
        self.min_pixels = min_pixels

    async def review_uri(self, ctx: ExecutionContext, blob_handle: str) -> Optional[str]:
        try:
            metadata = await self.blobs_manager.read_image_metadata(ctx, blob_handle)
            original = await self.blobs_manager.read_image(ctx, blob_handle)
        except NotFoundError:
            logger.info("[MODERATION] Image %s no longer exists, not reviewing it", blob_handle)
            return None

        try:
            width, height = await asyncio.to_thread(image_codec.read_dimensions, original.data)
        except PermanentContentError as exc:
            logger.warning("[MODERATION] Image %s is unreadable, not reviewing it: %s", blob_handle, exc)
            return None
        if width < self.min_pixels or height < self.min_pixels:
            logger.info("[MODERATION] Image %s is %dx%d, below the %dpx review minimum", blob_handle, width, height, self.min_pixels)
            return None

        if metadata.length <= self.max_bytes:
            return self.blobs_manager.read_image_cdn_url(blob_handle)

        size = self.blobs_manager.image_sizes.largest_for(metadata.image_type, HUGE.width)
        if size is None:
            logger.info("[MODERATION] Image %s exceeds %d bytes and has no reviewable size", blob_handle, self.max_bytes)
            return None
        if size.id not in metadata.resizes_completed:
            await self.orchestrator.create_image_resizes(ctx, blob_handle)
        logger.debug("[MODERATION] Image %s exceeds %d bytes, reviewing size %s", blob_handle, self.max_bytes, size.id)
        return self.blobs_manager.read_image_cdn_url(blob_handle, size.id)


class TextContentTarget:
    """Topics, comments and replies."""

    def __init__(self, content_manager: ContentManager, blobs_manager: BlobsManager, images: ReviewImageSelector) -> None:
        self.content_manager = content_manager
        self.blobs_manager = blobs_manager
        self.images = images

    async def build_review_content(self, ctx, app_handle, content_handle):
        item = await self.content_manager.content_repo.read(content_handle, ctx.consistency)
        if item is None or item.review_status is ReviewStatus.REJECTED:
            return None
        content = ReviewContent()
        for text in (item.title, item.text):
            if text and text.strip():
                content.add_text(text)
        if item.blob_handle:
            uri = await self.images.review_uri(ctx, item.blob_handle)
            if uri:
                content.add_image_uri(uri)
        return None if content.is_empty else content

    async def read_review_status(self, ctx, app_handle, content_handle):
        item = await self.content_manager.content_repo.read(content_handle, ctx.consistency)
        return item.review_status if item else None

    async def apply_review_status(self, ctx, app_handle, content_handle, review_status):
        item = await self.content_manager.content_repo.read(content_handle)
        if item is None:
            return False
        changed = await self.content_manager.update_review_status(ctx, content_handle, review_status)
        if review_status is ReviewStatus.REJECTED:
            await self.content_manager.remove_from_index(content_handle)
            if item.blob_handle:
                await self.blobs_manager.update_image_review_status(ctx, item.blob_handle, ReviewStatus.REJECTED)
        elif changed:
            await self.content_manager.index_content(item)
        return True


class ImageTarget:
    """Standalone images; the content handle is the blob handle."""

    def __init__(self, blobs_manager: BlobsManager, images: ReviewImageSelector) -> None:
        self.blobs_manager = blobs_manager
        self.images = images

    async def build_review_content(self, ctx, app_handle, content_handle):
        metadata = await self.blobs_manager.image_repo.read(content_handle, ctx.consistency)
        if metadata is None or metadata.review_status is ReviewStatus.REJECTED:
            return None
        uri = await self.images.review_uri(ctx, content_handle)
        return ReviewContent().add_image_uri(uri) if uri else None

    async def read_review_status(self, ctx, app_handle, content_handle):
        metadata = await self.blobs_manager.image_repo.read(content_handle, ctx.consistency)
        return metadata.review_status if metadata else None

    async def apply_review_status(self, ctx, app_handle, content_handle, review_status):
        if await self.blobs_manager.image_repo.read(content_handle) is None:
            return False
        await self.blobs_manager.update_image_review_status(ctx, content_handle, review_status)
        return True


class UserTarget:
    """User profiles; the content handle is the user handle."""

    def __init__(self, users_manager: UsersManager, blobs_manager: BlobsManager, images: ReviewImageSelector) -> None:
        self.users_manager = users_manager
        self.blobs_manager = blobs_manager
        self.images = images

    async def build_review_content(self, ctx, app_handle, content_handle):
        profile = await self.users_manager.users_repo.read(content_handle, app_handle, ctx.consistency)
        if profile is None or profile.review_status is ReviewStatus.REJECTED:
            return None
        content = ReviewContent()
        text = " ".join(part for part in (profile.first_name, profile.last_name, profile.bio) if part and part.strip())
        if text:
            content.add_text(text)
        if profile.photo_handle:
            uri = await self.images.review_uri(ctx, profile.photo_handle)
            if uri:
                content.add_image_uri(uri)
        return None if content.is_empty else content

    async def read_review_status(self, ctx, app_handle, content_handle):
        profile = await self.users_manager.users_repo.read(content_handle, app_handle, ctx.consistency)
        return profile.review_status if profile else None

    async def apply_review_status(self, ctx, app_handle, content_handle, review_status):
        profile = await self.users_manager.users_repo.read(content_handle, app_handle)
        if profile is None:
            return False
        changed = await self.users_manager.update_review_status(ctx, content_handle, app_handle, review_status)
        if review_status is ReviewStatus.REJECTED:
            await self.users_manager.remove_from_index(content_handle, app_handle)
            if profile.photo_handle:
                await self.blobs_manager.update_image_review_status(ctx, profile.photo_handle, ReviewStatus.REJECTED)
        elif changed:
            await self.users_manager.index_profile(profile)
        return True


def build_target_table(
    content_manager: ContentManager,
    users_manager: UsersManager,
    blobs_manager: BlobsManager,
    images: ReviewImageSelector,
) -> Dict[ContentType, ModerationTarget]:
    """Dispatch table used by the moderation manager."""
    text_target = TextContentTarget(content_manager, blobs_manager, images)
    table: Dict[ContentType, ModerationTarget] = {content_type: text_target for content_type in TEXT_CONTENT_TYPES}
    table[ContentType.IMAGE] = ImageTarget(blobs_manager, images)
    table[ContentType.USER] = UserTarget(users_manager, blobs_manager, images)
    return table
