"""
Topics, comments and replies.

Content is accepted on the interactive path with review status unknown,
indexed for search straight away, and handed to moderation. It stays visible
until a verdict says otherwise.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from socialmod.datatypes.content_datatypes import (
    TEXT_CONTENT_TYPES,
    ContentItem,
    ContentType,
    FeedPage,
    ReviewStatus,
)
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import InvalidInputError, NotFoundError
from socialmod.repositories.content_repo import ContentRepo
from socialmod.repositories.feed_cursor import decode_cursor, encode_cursor, validate_limit
from socialmod.repositories.search_index_repo import SearchIndexRepo
from socialmod.util.handles import new_handle, validate_blob_handle, validate_handle
from socialmod.util.logger import get_logger

if TYPE_CHECKING:
    from socialmod.moderation.moderation_manager import ModerationManager

logger = get_logger("content_manager")

_PARENT_TYPE = {
    ContentType.COMMENT: ContentType.TOPIC,
    ContentType.REPLY: ContentType.COMMENT,
}


def feed_keys(app_handle: str, content_type: ContentType, parent_handle: Optional[str]) -> List[str]:
    """Count keys an item contributes to: its app-wide feed and, if any, its parent's feed."""
    keys = [f"{app_handle}:{content_type}"]
    if parent_handle:
        keys.append(f"{app_handle}:{content_type}:{parent_handle}")
    return keys


class ContentManager:
    """Create, read, delete and list text content; apply review statuses."""

    def __init__(self, content_repo: ContentRepo, search_repo: SearchIndexRepo) -> None:
        self.content_repo = content_repo
        self.search_repo = search_repo
        self._moderation: Optional["ModerationManager"] = None

    def bind_moderation(self, moderation_manager: "ModerationManager") -> None:
        self._moderation = moderation_manager

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_topic(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        user_handle: str,
        title: str,
        text: str,
        blob_handle: Optional[str] = None,
    ) -> ContentItem:
        return await self._create(ctx, ContentType.TOPIC, app_handle, user_handle, text, title=title, blob_handle=blob_handle)

    async def create_comment(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        user_handle: str,
        topic_handle: str,
        text: str,
        blob_handle: Optional[str] = None,
    ) -> ContentItem:
        return await self._create(ctx, ContentType.COMMENT, app_handle, user_handle, text, parent_handle=topic_handle, blob_handle=blob_handle)

    async def create_reply(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        user_handle: str,
        comment_handle: str,
        text: str,
    ) -> ContentItem:
        return await self._create(ctx, ContentType.REPLY, app_handle, user_handle, text, parent_handle=comment_handle)

    async def _create(
        self,
        ctx: ExecutionContext,
        content_type: ContentType,
        app_handle: str,
        user_handle: str,
        text: str,
        title: Optional[str] = None,
        parent_handle: Optional[str] = None,
        blob_handle: Optional[str] = None,
    ) -> ContentItem:
        validate_handle(app_handle, "app_handle")
        validate_handle(user_handle, "user_handle")
        if blob_handle is not None:
            validate_blob_handle(blob_handle)
        if not (text or "").strip() and not (title or "").strip() and blob_handle is None:
            raise InvalidInputError(f"{content_type} must have text, a title, or an image")

        if content_type in _PARENT_TYPE:
            validate_handle(parent_handle, "parent_handle")
            parent = await self.content_repo.read(parent_handle, ctx.consistency)
            if parent is None or parent.content_type is not _PARENT_TYPE[content_type] or parent.app_handle != app_handle:
                raise NotFoundError(f"{_PARENT_TYPE[content_type]} {parent_handle} not found")

        item = ContentItem(
            content_handle=new_handle(),
            content_type=content_type,
            app_handle=app_handle,
            user_handle=user_handle,
            text=text or "",
            title=title,
            parent_handle=parent_handle,
            blob_handle=blob_handle,
        )
        await self.content_repo.insert(item, feed_keys(app_handle, content_type, parent_handle))
        await self.index_content(item)
        logger.info("[CONTENT] Created %s %s for %s/%s [%s]", content_type, item.content_handle, app_handle, user_handle, ctx)

        if self._moderation is not None:
            moderation_handle = new_handle()
            await self._moderation.create_content_moderation_request(
                ctx,
                app_handle,
                moderation_handle,
                content_type,
                item.content_handle,
                self._moderation.callback_uri_for(moderation_handle),
            )
        return item

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read_content(self, ctx: ExecutionContext, content_handle: str) -> ContentItem:
        validate_handle(content_handle, "content_handle")
        item = await self.content_repo.read(content_handle, ctx.consistency)
        if item is None or (ctx.is_frontend and item.review_status is ReviewStatus.REJECTED):
            raise NotFoundError(f"content {content_handle} not found")
        return item

    async def read_feed(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        content_type: ContentType,
        cursor: Optional[str] = None,
        limit: int = 20,
        parent_handle: Optional[str] = None,
    ) -> FeedPage[ContentItem]:
        """One page of visible items, oldest first."""
        validate_handle(app_handle, "app_handle")
        if content_type not in TEXT_CONTENT_TYPES:
            raise InvalidInputError(f"{content_type} has no content feed")
        limit = validate_limit(limit)
        rows = await self.content_repo.list_feed(app_handle, content_type, parent_handle, decode_cursor(cursor), limit)
        next_cursor = encode_cursor(rows[-1][0]) if len(rows) == limit else None
        return FeedPage(items=[item for _, item in rows], cursor=next_cursor)

    async def read_count(
        self,
        app_handle: str,
        content_type: ContentType,
        parent_handle: Optional[str] = None,
    ) -> Optional[int]:
        """Number of items created (and not deleted) in a feed; None if never counted."""
        key = feed_keys(app_handle, content_type, parent_handle)[-1]
        return await self.content_repo.read_count(key)

    # ------------------------------------------------------------------
    # Review status & search
    # ------------------------------------------------------------------

    async def update_review_status(self, ctx: ExecutionContext, content_handle: str, review_status: ReviewStatus) -> bool:
        """Conditionally set the review status; rejected content stays rejected."""
        changed = await self.content_repo.update_review_status(content_handle, review_status)
        logger.info("[CONTENT] %s review status -> %s: %s [%s]", content_handle, review_status, "applied" if changed else "not applied", ctx)
        return changed

    async def index_content(self, item: ContentItem) -> None:
        text = "\n".join(part for part in (item.title, item.text) if part)
        await self.search_repo.index(
            item.content_handle,
            item.app_handle,
            item.content_type,
            text,
            {"user_handle": item.user_handle, "parent_handle": item.parent_handle},
        )

    async def remove_from_index(self, content_handle: str) -> None:
        await self.search_repo.remove(content_handle)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_content(self, ctx: ExecutionContext, content_handle: str) -> None:
        item = await self.read_content(ExecutionContext.backend(), content_handle)
        if not await self.content_repo.delete(content_handle, feed_keys(item.app_handle, item.content_type, item.parent_handle)):
            raise NotFoundError(f"content {content_handle} not found")
        await self.search_repo.remove(content_handle)
        logger.info("[CONTENT] Deleted %s %s [%s]", item.content_type, content_handle, ctx)
