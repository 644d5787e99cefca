"""
Persistent storage for topics, comments, replies, user profiles and feed counts.
"""

from __future__ import annotations

import time
from typing import List, Optional, Tuple

import aiosqlite

from socialmod.database.db_cache import DatabaseQueryCache
from socialmod.database.db_connection import ConnectionManager
from socialmod.datatypes.content_datatypes import ContentItem, ContentType, ReviewStatus, UserProfile
from socialmod.datatypes.process_datatypes import StorageConsistencyMode
from socialmod.errors import ConflictError
from socialmod.util.logger import get_logger

logger = get_logger("content_repo")

_CONTENT_COLUMNS = (
    "content_handle, content_type, app_handle, user_handle, parent_handle, title, text, "
    "blob_handle, review_status, created_time"
)
_USER_COLUMNS = (
    "user_handle, app_handle, first_name, last_name, bio, photo_handle, review_status, created_time"
)


def _row_to_content(row: aiosqlite.Row) -> ContentItem:
    return ContentItem(
        content_handle=row["content_handle"],
        content_type=ContentType(row["content_type"]),
        app_handle=row["app_handle"],
        user_handle=row["user_handle"],
        parent_handle=row["parent_handle"],
        title=row["title"],
        text=row["text"],
        blob_handle=row["blob_handle"],
        review_status=ReviewStatus(row["review_status"]),
        created_time=row["created_time"],
    )


def _row_to_user(row: aiosqlite.Row) -> UserProfile:
    return UserProfile(
        user_handle=row["user_handle"],
        app_handle=row["app_handle"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        bio=row["bio"],
        photo_handle=row["photo_handle"],
        review_status=ReviewStatus(row["review_status"]),
        created_time=row["created_time"],
    )


class ContentRepo:
    """CRUD and feed reads for the ``content_items`` table, plus feed counts."""

    def __init__(self, connection: ConnectionManager, cache: DatabaseQueryCache) -> None:
        self._connection = connection
        self._cache = cache

    @staticmethod
    def _key(content_handle: str) -> str:
        return f"content:{content_handle}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, item: ContentItem, feed_keys: List[str]) -> ContentItem:
        """Insert a content item and bump every feed count in ``feed_keys``."""
        if not item.created_time:
            item.created_time = time.time()
        try:
            async with self._connection.transaction() as conn:
                await conn.execute(
                    f"INSERT INTO content_items ({_CONTENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        item.content_handle,
                        item.content_type.value,
                        item.app_handle,
                        item.user_handle,
                        item.parent_handle,
                        item.title,
                        item.text,
                        item.blob_handle,
                        item.review_status.value,
                        item.created_time,
                    ),
                )
                for feed_key in feed_keys:
                    await self._adjust_count(conn, feed_key, 1)
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(f"content {item.content_handle} already exists") from exc
        self._cache.discard(self._key(item.content_handle))
        return item

    async def delete(self, content_handle: str, feed_keys: List[str]) -> bool:
        async with self._connection.transaction() as conn:
            cursor = await conn.execute("DELETE FROM content_items WHERE content_handle = ?", (content_handle,))
            deleted = cursor.rowcount == 1
            if deleted:
                for feed_key in feed_keys:
                    await self._adjust_count(conn, feed_key, -1)
        self._cache.discard(self._key(content_handle))
        return deleted

    async def update_review_status(self, content_handle: str, review_status: ReviewStatus) -> bool:
        """Set the review status unless the item is already rejected."""
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE content_items SET review_status = ? WHERE content_handle = ? AND review_status != ?",
                (review_status.value, content_handle, ReviewStatus.REJECTED.value),
            )
            changed = cursor.rowcount == 1
        self._cache.discard(self._key(content_handle))
        return changed

    @staticmethod
    async def _adjust_count(conn: aiosqlite.Connection, feed_key: str, delta: int) -> None:
        await conn.execute(
            "INSERT INTO feed_counts (feed_key, count) VALUES (?, MAX(?, 0)) "
            "ON CONFLICT(feed_key) DO UPDATE SET count = MAX(count + ?, 0)",
            (feed_key, delta, delta),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(
        self,
        content_handle: str,
        consistency: StorageConsistencyMode = StorageConsistencyMode.STRONG,
    ) -> Optional[ContentItem]:
        key = self._key(content_handle)
        if consistency is StorageConsistencyMode.DEFAULT:
            hit, cached = self._cache.lookup(key)
            if hit:
                return cached

        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_CONTENT_COLUMNS} FROM content_items WHERE content_handle = ?",
                (content_handle,),
            )
            row = await cursor.fetchone()
        item = _row_to_content(row) if row else None
        self._cache.set(key, item)
        return item

    async def list_feed(
        self,
        app_handle: str,
        content_type: ContentType,
        parent_handle: Optional[str],
        after_rowid: int,
        limit: int,
    ) -> List[Tuple[int, ContentItem]]:
        """Visible (non-rejected) items of one feed in insertion order."""
        query = (
            f"SELECT rowid, {_CONTENT_COLUMNS} FROM content_items "
            "WHERE app_handle = ? AND content_type = ? AND review_status != ? AND rowid > ?"
        )
        params: list = [app_handle, content_type.value, ReviewStatus.REJECTED.value, after_rowid]
        if parent_handle is not None:
            query += " AND parent_handle = ?"
            params.append(parent_handle)
        query += " ORDER BY rowid LIMIT ?"
        params.append(limit)

        async with self._connection.read() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        return [(row["rowid"], _row_to_content(row)) for row in rows]

    async def read_count(self, feed_key: str) -> Optional[int]:
        """Materialized count for ``feed_key``; None if never materialized."""
        async with self._connection.read() as conn:
            cursor = await conn.execute("SELECT count FROM feed_counts WHERE feed_key = ?", (feed_key,))
            row = await cursor.fetchone()
        return row["count"] if row else None


class UsersRepo:
    """CRUD for the ``user_profiles`` table."""

    def __init__(self, connection: ConnectionManager, cache: DatabaseQueryCache) -> None:
        self._connection = connection
        self._cache = cache

    @staticmethod
    def _key(user_handle: str, app_handle: str) -> str:
        return f"user:{app_handle}:{user_handle}"

    async def insert(self, profile: UserProfile) -> UserProfile:
        if not profile.created_time:
            profile.created_time = time.time()
        try:
            async with self._connection.transaction() as conn:
                await conn.execute(
                    f"INSERT INTO user_profiles ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        profile.user_handle,
                        profile.app_handle,
                        profile.first_name,
                        profile.last_name,
                        profile.bio,
                        profile.photo_handle,
                        profile.review_status.value,
                        profile.created_time,
                    ),
                )
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(f"user {profile.user_handle} already exists in app {profile.app_handle}") from exc
        self._cache.discard(self._key(profile.user_handle, profile.app_handle))
        return profile

    async def delete(self, user_handle: str, app_handle: str) -> bool:
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM user_profiles WHERE user_handle = ? AND app_handle = ?",
                (user_handle, app_handle),
            )
            deleted = cursor.rowcount == 1
        self._cache.discard(self._key(user_handle, app_handle))
        return deleted

    async def update_review_status(self, user_handle: str, app_handle: str, review_status: ReviewStatus) -> bool:
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE user_profiles SET review_status = ? "
                "WHERE user_handle = ? AND app_handle = ? AND review_status != ?",
                (review_status.value, user_handle, app_handle, ReviewStatus.REJECTED.value),
            )
            changed = cursor.rowcount == 1
        self._cache.discard(self._key(user_handle, app_handle))
        return changed

    async def read(
        self,
        user_handle: str,
        app_handle: str,
        consistency: StorageConsistencyMode = StorageConsistencyMode.STRONG,
    ) -> Optional[UserProfile]:
        key = self._key(user_handle, app_handle)
        if consistency is StorageConsistencyMode.DEFAULT:
            hit, cached = self._cache.lookup(key)
            if hit:
                return cached

        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_USER_COLUMNS} FROM user_profiles WHERE user_handle = ? AND app_handle = ?",
                (user_handle, app_handle),
            )
            row = await cursor.fetchone()
        profile = _row_to_user(row) if row else None
        self._cache.set(key, profile)
        return profile
