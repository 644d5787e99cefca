"""
Per-app moderation settings.
"""

from __future__ import annotations

from socialmod.database.db_connection import ConnectionManager


class AppSettingsRepo:
    """Read/write the ``app_settings`` table. Apps without a row use the defaults."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection

    async def set_mature_content_allowed(self, app_handle: str, allowed: bool) -> None:
        async with self._connection.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO app_settings (app_handle, mature_content_allowed)
                VALUES (?, ?)
                ON CONFLICT(app_handle) DO UPDATE SET
                    mature_content_allowed = excluded.mature_content_allowed
                """,
                (app_handle, int(allowed)),
            )

    async def is_mature_content_allowed(self, app_handle: str) -> bool:
        """Return True if the app accepts content the provider marks as mature (default False)."""
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                "SELECT mature_content_allowed FROM app_settings WHERE app_handle = ?",
                (app_handle,),
            )
            row = await cursor.fetchone()
        return bool(row["mature_content_allowed"]) if row else False
