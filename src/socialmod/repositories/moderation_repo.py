"""
Persistent storage for moderation requests.

Every state transition is a single conditional UPDATE guarded by the status
the caller expects. The returned boolean tells the caller whether its
compare-and-swap won; a lost swap means another worker (or a replayed
callback) already moved the request on.
"""

from __future__ import annotations

import time
from typing import List, Optional

import aiosqlite

from socialmod.database.db_cache import DatabaseQueryCache
from socialmod.database.db_connection import ConnectionManager
from socialmod.datatypes.content_datatypes import ContentType, ReviewStatus
from socialmod.datatypes.image_datatypes import ImageType
from socialmod.datatypes.moderation_datatypes import ModerationRequest, ModerationStatus
from socialmod.datatypes.process_datatypes import StorageConsistencyMode
from socialmod.errors import ConflictError
from socialmod.util.logger import get_logger

logger = get_logger("moderation_repo")

_COLUMNS = (
    "moderation_handle, app_handle, content_type, content_handle, user_handle, image_type, "
    "callback_uri, status, review_status, created_time, provider_job_id, submitted_time, "
    "result_time, result_payload"
)


def _row_to_request(row: aiosqlite.Row) -> ModerationRequest:
    return ModerationRequest(
        moderation_handle=row["moderation_handle"],
        app_handle=row["app_handle"],
        content_type=ContentType(row["content_type"]),
        content_handle=row["content_handle"],
        user_handle=row["user_handle"],
        image_type=ImageType(row["image_type"]) if row["image_type"] else None,
        callback_uri=row["callback_uri"],
        status=ModerationStatus(row["status"]),
        review_status=ReviewStatus(row["review_status"]),
        created_time=row["created_time"],
        provider_job_id=row["provider_job_id"],
        submitted_time=row["submitted_time"],
        result_time=row["result_time"],
        result_payload=row["result_payload"],
    )


class ModerationRepo:
    """CRUD and state transitions for the ``moderation_requests`` table."""

    def __init__(self, connection: ConnectionManager, cache: DatabaseQueryCache) -> None:
        self._connection = connection
        self._cache = cache

    @staticmethod
    def _key(moderation_handle: str) -> str:
        return f"moderation:{moderation_handle}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, request: ModerationRequest) -> ModerationRequest:
        """Insert a new request; ``created_time`` is stamped if unset.

        Raises:
            ConflictError: If a request with the same handle exists.
        """
        if not request.created_time:
            request.created_time = time.time()
        try:
            async with self._connection.transaction() as conn:
                await conn.execute(
                    f"INSERT INTO moderation_requests ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        request.moderation_handle,
                        request.app_handle,
                        request.content_type.value,
                        request.content_handle,
                        request.user_handle,
                        request.image_type.value if request.image_type else None,
                        request.callback_uri,
                        request.status.value,
                        request.review_status.value,
                        request.created_time,
                        request.provider_job_id,
                        request.submitted_time,
                        request.result_time,
                        request.result_payload,
                    ),
                )
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(f"moderation request {request.moderation_handle} already exists") from exc
        self._cache.discard(self._key(request.moderation_handle))
        return request

    async def mark_submitted(self, moderation_handle: str, provider_job_id: Optional[str]) -> bool:
        """CAS ``created -> submitted``; records the provider job id."""
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE moderation_requests SET status = ?, provider_job_id = ?, submitted_time = ? "
                "WHERE moderation_handle = ? AND status = ?",
                (
                    ModerationStatus.SUBMITTED.value,
                    provider_job_id,
                    time.time(),
                    moderation_handle,
                    ModerationStatus.CREATED.value,
                ),
            )
            won = cursor.rowcount == 1
        self._cache.discard(self._key(moderation_handle))
        return won

    async def mark_abandoned(self, moderation_handle: str) -> bool:
        """CAS ``created -> abandoned``."""
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE moderation_requests SET status = ?, result_time = ? "
                "WHERE moderation_handle = ? AND status = ?",
                (
                    ModerationStatus.ABANDONED.value,
                    time.time(),
                    moderation_handle,
                    ModerationStatus.CREATED.value,
                ),
            )
            won = cursor.rowcount == 1
        self._cache.discard(self._key(moderation_handle))
        return won

    async def record_result(
        self,
        moderation_handle: str,
        status: ModerationStatus,
        review_status: ReviewStatus,
        result_payload: Optional[str],
    ) -> bool:
        """CAS ``submitted -> status`` (``result_received`` or ``failed``)."""
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE moderation_requests SET status = ?, review_status = ?, result_payload = ?, result_time = ? "
                "WHERE moderation_handle = ? AND status = ?",
                (
                    status.value,
                    review_status.value,
                    result_payload,
                    time.time(),
                    moderation_handle,
                    ModerationStatus.SUBMITTED.value,
                ),
            )
            won = cursor.rowcount == 1
        self._cache.discard(self._key(moderation_handle))
        return won

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(
        self,
        moderation_handle: str,
        consistency: StorageConsistencyMode = StorageConsistencyMode.STRONG,
    ) -> Optional[ModerationRequest]:
        key = self._key(moderation_handle)
        if consistency is StorageConsistencyMode.DEFAULT:
            hit, cached = self._cache.lookup(key)
            if hit:
                return cached

        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_COLUMNS} FROM moderation_requests WHERE moderation_handle = ?",
                (moderation_handle,),
            )
            row = await cursor.fetchone()
        request = _row_to_request(row) if row else None
        self._cache.set(key, request)
        return request

    async def list_for_content(
        self, app_handle: str, content_type: ContentType, content_handle: str
    ) -> List[ModerationRequest]:
        """All requests for one target, oldest first (ties broken by insertion order)."""
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_COLUMNS} FROM moderation_requests "
                "WHERE app_handle = ? AND content_type = ? AND content_handle = ? ORDER BY created_time, rowid",
                (app_handle, content_type.value, content_handle),
            )
            rows = await cursor.fetchall()
        return [_row_to_request(row) for row in rows]

    async def list_by_status(self, status: ModerationStatus, limit: int = 100) -> List[ModerationRequest]:
        """Oldest requests in ``status``; used to re-drive stuck submissions."""
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_COLUMNS} FROM moderation_requests WHERE status = ? ORDER BY created_time, rowid LIMIT ?",
                (status.value, limit),
            )
            rows = await cursor.fetchall()
        return [_row_to_request(row) for row in rows]
