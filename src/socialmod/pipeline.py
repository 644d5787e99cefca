"""
Composition root.

``Pipeline.open`` builds every repository, manager and queue worker from an
``AppConfig`` and breaks the manager cycle (blobs/content/users create
moderation requests, moderation applies verdicts back to them) with late
``bind_moderation`` calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from socialmod.blobs.blob_store import LocalBlobStore
from socialmod.blobs.blobs_manager import BlobsManager
from socialmod.blobs.cdn import CdnUrlResolver
from socialmod.configuration.app_configuration import AppConfig
from socialmod.content.content_manager import ContentManager
from socialmod.content.users_manager import UsersManager
from socialmod.database.db_cache import DatabaseQueryCache
from socialmod.database.db_connection import ConnectionManager
from socialmod.database.db_schema import SchemaManager
from socialmod.images.image_sizes import ImageSizesConfiguration
from socialmod.images.resize_orchestrator import ResizeOrchestrator
from socialmod.moderation.moderation_manager import ModerationManager
from socialmod.moderation.moderation_targets import ReviewImageSelector, build_target_table
from socialmod.moderation.review_provider import HttpReviewProvider, ReviewProvider
from socialmod.push.push_hub import LoggingPushHub, PushHubFactory
from socialmod.push.push_notifications_manager import PushNotificationsManager
from socialmod.repositories.app_settings_repo import AppSettingsRepo
from socialmod.repositories.blob_metadata_repo import BlobMetadataRepo, ImageMetadataRepo
from socialmod.repositories.content_repo import ContentRepo, UsersRepo
from socialmod.repositories.moderation_repo import ModerationRepo
from socialmod.repositories.push_registration_repo import PushRegistrationRepo
from socialmod.repositories.search_index_repo import SearchIndexRepo
from socialmod.scheduler.pipeline_workers import ModerationWorker, ResizeImagesWorker
from socialmod.scheduler.work_queue import QueueWorker, WorkQueue
from socialmod.util.logger import get_logger

logger = get_logger("pipeline")


@dataclass
class Pipeline:
    """Everything the service needs, wired together."""

    config: AppConfig
    connection: ConnectionManager
    cache: DatabaseQueryCache
    moderation_repo: ModerationRepo
    image_repo: ImageMetadataRepo
    blob_repo: BlobMetadataRepo
    content_repo: ContentRepo
    users_repo: UsersRepo
    app_settings_repo: AppSettingsRepo
    search_repo: SearchIndexRepo
    push_repo: PushRegistrationRepo
    blobs_manager: BlobsManager
    orchestrator: ResizeOrchestrator
    content_manager: ContentManager
    users_manager: UsersManager
    moderation_manager: ModerationManager
    push_manager: PushNotificationsManager
    provider: ReviewProvider
    resize_queue: WorkQueue
    moderation_queue: WorkQueue
    resize_worker: QueueWorker
    moderation_worker: QueueWorker

    @classmethod
    async def open(
        cls,
        config: AppConfig,
        review_provider: Optional[ReviewProvider] = None,
        push_hub_factory: Optional[PushHubFactory] = None,
        image_sizes: Optional[ImageSizesConfiguration] = None,
    ) -> "Pipeline":
        """
        Open the database, create the schema and wire every component.

        Args:
            config: Application configuration.
            review_provider: Provider override; defaults to the HTTP provider
                configured under ``moderation``.
            push_hub_factory: Hub client factory; defaults to ``LoggingPushHub``.
            image_sizes: Size table override; defaults to the built-in table.
        """
        connection = ConnectionManager()
        await connection.open(config.database_path)
        try:
            await SchemaManager.initialize_schema(connection.connection)
            pipeline = cls._assemble(config, connection, review_provider, push_hub_factory, image_sizes)
        except Exception:
            await connection.close()
            raise
        logger.info("[PIPELINE] Pipeline opened on %s", config.database_path)
        return pipeline

    @classmethod
    def _assemble(
        cls,
        config: AppConfig,
        connection: ConnectionManager,
        review_provider: Optional[ReviewProvider],
        push_hub_factory: Optional[PushHubFactory],
        image_sizes: Optional[ImageSizesConfiguration],
    ) -> "Pipeline":
        cache = DatabaseQueryCache(ttl_seconds=config.cache_ttl_seconds)
        moderation_repo = ModerationRepo(connection, cache)
        image_repo = ImageMetadataRepo(connection, cache)
        blob_repo = BlobMetadataRepo(connection, cache)
        content_repo = ContentRepo(connection, cache)
        users_repo = UsersRepo(connection, cache)
        app_settings_repo = AppSettingsRepo(connection)
        search_repo = SearchIndexRepo(connection)
        push_repo = PushRegistrationRepo(connection)

        resize_queue = WorkQueue("resize", config.max_dequeue_count, config.retry_delay_seconds)
        moderation_queue = WorkQueue("moderation", config.max_dequeue_count, config.retry_delay_seconds)

        sizes = image_sizes or ImageSizesConfiguration()
        blob_store = LocalBlobStore(config.blob_root)
        blobs_manager = BlobsManager(
            blob_store, blob_repo, image_repo, CdnUrlResolver(config.cdn_base_url), sizes, resize_queue,
        )
        orchestrator = ResizeOrchestrator(blob_store, image_repo, sizes, config.jpeg_quality)
        content_manager = ContentManager(content_repo, search_repo)
        users_manager = UsersManager(users_repo, search_repo)

        if review_provider is None:
            review_provider = HttpReviewProvider(
                config.review_provider_url, config.review_provider_key, config.provider_timeout_seconds,
            )
        images = ReviewImageSelector(
            blobs_manager, orchestrator, config.max_review_image_bytes, config.min_review_image_pixels,
        )
        moderation_manager = ModerationManager(
            moderation_repo,
            app_settings_repo,
            review_provider,
            build_target_table(content_manager, users_manager, blobs_manager, images),
            config.callback_base_url,
            config.provider_timeout_seconds,
            moderation_queue,
        )
        blobs_manager.bind_moderation(moderation_manager)
        content_manager.bind_moderation(moderation_manager)
        users_manager.bind_moderation(moderation_manager)

        push_manager = PushNotificationsManager(push_repo, push_hub_factory or LoggingPushHub)

        return cls(
            config=config,
            connection=connection,
            cache=cache,
            moderation_repo=moderation_repo,
            image_repo=image_repo,
            blob_repo=blob_repo,
            content_repo=content_repo,
            users_repo=users_repo,
            app_settings_repo=app_settings_repo,
            search_repo=search_repo,
            push_repo=push_repo,
            blobs_manager=blobs_manager,
            orchestrator=orchestrator,
            content_manager=content_manager,
            users_manager=users_manager,
            moderation_manager=moderation_manager,
            push_manager=push_manager,
            provider=review_provider,
            resize_queue=resize_queue,
            moderation_queue=moderation_queue,
            resize_worker=QueueWorker(resize_queue, ResizeImagesWorker(orchestrator).process),
            moderation_worker=QueueWorker(moderation_queue, ModerationWorker(moderation_manager).process),
        )

    def start_workers(self) -> None:
        self.resize_worker.start(self.config.worker_count)
        self.moderation_worker.start(self.config.worker_count)

    async def redrive(self, limit: int = 100) -> int:
        """Re-queue work left unfinished by a previous run."""
        resizes = await ResizeImagesWorker(self.orchestrator).redrive_incomplete(self.resize_queue, limit)
        submissions = await self.moderation_manager.redrive_created_requests(limit)
        return resizes + submissions

    async def drain(self) -> int:
        """Process queued work inline until both queues are empty.

        Resizes run first so that oversized images already have their
        review size when moderation submits them.
        """
        handled = 0
        while self.resize_queue.qsize() or self.moderation_queue.qsize():
            handled += await self.resize_worker.drain()
            handled += await self.moderation_worker.drain()
        return handled

    async def close(self) -> None:
        await self.resize_worker.shutdown()
        await self.moderation_worker.shutdown()
        close_provider = getattr(self.provider, "close", None)
        if callable(close_provider):
            close_provider()
        await self.connection.close()
        logger.info("[PIPELINE] Pipeline closed")
