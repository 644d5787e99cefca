"""
Database schema initialization.

One table per entity, keyed by the entity's primary handle. Timestamps are
REAL unix seconds so ordering and TTL arithmetic need no parsing.
"""

import aiosqlite
from socialmod.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates the pipeline's tables and indexes and records the schema version."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all tables and indexes if they do not exist yet.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS moderation_requests (
                moderation_handle TEXT PRIMARY KEY,
                app_handle TEXT NOT NULL,
                content_type TEXT NOT NULL,
                content_handle TEXT NOT NULL,
                user_handle TEXT,
                image_type TEXT,
                callback_uri TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'created',
                review_status TEXT NOT NULL DEFAULT 'unknown',
                created_time REAL NOT NULL,
                provider_job_id TEXT,
                submitted_time REAL,
                result_time REAL,
                result_payload TEXT
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS image_metadata (
                blob_handle TEXT PRIMARY KEY,
                app_handle TEXT NOT NULL,
                user_handle TEXT NOT NULL,
                image_type TEXT NOT NULL,
                content_type TEXT NOT NULL,
                length INTEGER NOT NULL,
                review_status TEXT NOT NULL DEFAULT 'unknown',
                resizes_completed TEXT NOT NULL DEFAULT '',
                created_time REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS blob_metadata (
                blob_handle TEXT PRIMARY KEY,
                app_handle TEXT NOT NULL,
                user_handle TEXT NOT NULL,
                content_type TEXT NOT NULL,
                length INTEGER NOT NULL,
                created_time REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS content_items (
                content_handle TEXT PRIMARY KEY,
                content_type TEXT NOT NULL,
                app_handle TEXT NOT NULL,
                user_handle TEXT NOT NULL,
                parent_handle TEXT,
                title TEXT,
                text TEXT NOT NULL DEFAULT '',
                blob_handle TEXT,
                review_status TEXT NOT NULL DEFAULT 'unknown',
                created_time REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS user_profiles (
                user_handle TEXT NOT NULL,
                app_handle TEXT NOT NULL,
                first_name TEXT NOT NULL DEFAULT '',
                last_name TEXT NOT NULL DEFAULT '',
                bio TEXT NOT NULL DEFAULT '',
                photo_handle TEXT,
                review_status TEXT NOT NULL DEFAULT 'unknown',
                created_time REAL NOT NULL,
                PRIMARY KEY (user_handle, app_handle)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS app_settings (
                app_handle TEXT PRIMARY KEY,
                mature_content_allowed INTEGER NOT NULL DEFAULT 0
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS push_hubs (
                platform_type TEXT NOT NULL,
                app_handle TEXT NOT NULL,
                path TEXT NOT NULL,
                key TEXT,
                PRIMARY KEY (platform_type, app_handle)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS push_registrations (
                user_handle TEXT NOT NULL,
                app_handle TEXT NOT NULL,
                registration_id TEXT NOT NULL,
                platform_type TEXT NOT NULL,
                hub_registration_id TEXT NOT NULL,
                language TEXT NOT NULL DEFAULT '',
                last_updated_time REAL NOT NULL,
                PRIMARY KEY (user_handle, app_handle, registration_id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS search_documents (
                handle TEXT PRIMARY KEY,
                app_handle TEXT NOT NULL,
                content_type TEXT NOT NULL,
                text TEXT NOT NULL DEFAULT '',
                metadata TEXT NOT NULL DEFAULT '{}',
                indexed_time REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS feed_counts (
                feed_key TEXT PRIMARY KEY,
                count INTEGER NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        await db.execute("CREATE INDEX IF NOT EXISTS idx_moderation_requests_content ON moderation_requests(app_handle, content_type, content_handle, created_time)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_moderation_requests_status ON moderation_requests(status)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_image_metadata_user ON image_metadata(app_handle, user_handle)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_content_items_feed ON content_items(app_handle, content_type)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_content_items_parent ON content_items(parent_handle)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_push_registrations_user ON push_registrations(user_handle, app_handle)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_search_documents_app ON search_documents(app_handle, content_type)")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
