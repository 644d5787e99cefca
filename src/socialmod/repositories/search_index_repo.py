"""
Search document storage.

Stands in for the full-text/trending index: it ingests
``(handle, text, metadata)`` tuples and answers simple substring queries.
Ranking is not implemented.
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional

from socialmod.database.db_connection import ConnectionManager
from socialmod.datatypes.content_datatypes import ContentType
from socialmod.util.logger import get_logger

logger = get_logger("search_index_repo")


class SearchIndexRepo:
    """Index, remove and query ``search_documents``."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection

    async def index(
        self,
        handle: str,
        app_handle: str,
        content_type: ContentType,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Insert or replace the document for ``handle``."""
        async with self._connection.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO search_documents (handle, app_handle, content_type, text, metadata, indexed_time)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(handle) DO UPDATE SET
                    text = excluded.text,
                    metadata = excluded.metadata,
                    indexed_time = excluded.indexed_time
                """,
                (handle, app_handle, content_type.value, text, json.dumps(metadata or {}), time.time()),
            )
        logger.debug("[SEARCH] Indexed %s %s", content_type, handle)

    async def remove(self, handle: str) -> bool:
        async with self._connection.transaction() as conn:
            cursor = await conn.execute("DELETE FROM search_documents WHERE handle = ?", (handle,))
            removed = cursor.rowcount == 1
        if removed:
            logger.debug("[SEARCH] Removed %s", handle)
        return removed

    async def is_indexed(self, handle: str) -> bool:
        async with self._connection.read() as conn:
            cursor = await conn.execute("SELECT 1 FROM search_documents WHERE handle = ? LIMIT 1", (handle,))
            return await cursor.fetchone() is not None

    async def search(self, app_handle: str, query: str, limit: int = 20) -> List[str]:
        """Handles of documents in ``app_handle`` whose text contains ``query`` (case-insensitive)."""
        pattern = "%" + query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                "SELECT handle FROM search_documents WHERE app_handle = ? AND text LIKE ? ESCAPE '\\' "
                "ORDER BY indexed_time DESC LIMIT ?",
                (app_handle, pattern, limit),
            )
            rows = await cursor.fetchall()
        return [row["handle"] for row in rows]
