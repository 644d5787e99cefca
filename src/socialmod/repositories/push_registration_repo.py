"""
Persistent storage for push hubs and device registrations.

``last_updated_time`` is stored as REAL unix seconds (UTC) and surfaced as an
aware ``datetime``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import aiosqlite

from socialmod.database.db_connection import ConnectionManager
from socialmod.datatypes.push_datatypes import PlatformType, PushHubConfig, PushRegistration
from socialmod.util.logger import get_logger

logger = get_logger("push_registration_repo")

_REGISTRATION_COLUMNS = (
    "user_handle, app_handle, registration_id, platform_type, hub_registration_id, language, last_updated_time"
)


def _to_unix(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _row_to_registration(row: aiosqlite.Row) -> PushRegistration:
    return PushRegistration(
        user_handle=row["user_handle"],
        app_handle=row["app_handle"],
        platform_type=PlatformType(row["platform_type"]),
        registration_id=row["registration_id"],
        hub_registration_id=row["hub_registration_id"],
        language=row["language"],
        last_updated_time=datetime.fromtimestamp(row["last_updated_time"], tz=timezone.utc),
    )


class PushRegistrationRepo:
    """CRUD for ``push_registrations`` and ``push_hubs``."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------

    async def upsert(self, registration: PushRegistration) -> None:
        """Insert a registration, superseding any row with the same registration id."""
        async with self._connection.transaction() as conn:
            await conn.execute(
                f"""
                INSERT INTO push_registrations ({_REGISTRATION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_handle, app_handle, registration_id) DO UPDATE SET
                    platform_type       = excluded.platform_type,
                    hub_registration_id = excluded.hub_registration_id,
                    language            = excluded.language,
                    last_updated_time   = excluded.last_updated_time
                """,
                (
                    registration.user_handle,
                    registration.app_handle,
                    registration.registration_id,
                    registration.platform_type.value,
                    registration.hub_registration_id,
                    registration.language,
                    _to_unix(registration.last_updated_time),
                ),
            )

    async def read(self, user_handle: str, app_handle: str, registration_id: str) -> Optional[PushRegistration]:
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_REGISTRATION_COLUMNS} FROM push_registrations "
                "WHERE user_handle = ? AND app_handle = ? AND registration_id = ?",
                (user_handle, app_handle, registration_id),
            )
            row = await cursor.fetchone()
        return _row_to_registration(row) if row else None

    async def list_for_user(self, user_handle: str, app_handle: str) -> List[PushRegistration]:
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_REGISTRATION_COLUMNS} FROM push_registrations "
                "WHERE user_handle = ? AND app_handle = ? ORDER BY last_updated_time DESC",
                (user_handle, app_handle),
            )
            rows = await cursor.fetchall()
        return [_row_to_registration(row) for row in rows]

    async def delete(self, user_handle: str, app_handle: str, registration_id: str) -> bool:
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM push_registrations WHERE user_handle = ? AND app_handle = ? AND registration_id = ?",
                (user_handle, app_handle, registration_id),
            )
            return cursor.rowcount == 1

    async def delete_for_user(self, user_handle: str, app_handle: str) -> int:
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM push_registrations WHERE user_handle = ? AND app_handle = ?",
                (user_handle, app_handle),
            )
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Hubs
    # ------------------------------------------------------------------

    async def upsert_hub(self, hub: PushHubConfig) -> None:
        async with self._connection.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO push_hubs (platform_type, app_handle, path, key)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(platform_type, app_handle) DO UPDATE SET
                    path = excluded.path,
                    key  = excluded.key
                """,
                (hub.platform_type.value, hub.app_handle, hub.path, hub.key),
            )

    async def read_hub(self, platform_type: PlatformType, app_handle: str) -> Optional[PushHubConfig]:
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                "SELECT platform_type, app_handle, path, key FROM push_hubs WHERE platform_type = ? AND app_handle = ?",
                (platform_type.value, app_handle),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return PushHubConfig(
            platform_type=PlatformType(row["platform_type"]),
            app_handle=row["app_handle"],
            path=row["path"],
            key=row["key"],
        )

    async def delete_hub(self, platform_type: PlatformType, app_handle: str) -> bool:
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM push_hubs WHERE platform_type = ? AND app_handle = ?",
                (platform_type.value, app_handle),
            )
            return cursor.rowcount == 1
