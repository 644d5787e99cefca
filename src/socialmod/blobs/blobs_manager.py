"""
Blob and image gateway.

This is the only sanctioned path to blob bytes and blob metadata. Creation
writes the bytes first and the metadata second; deletion removes the
metadata first and the bytes second. Metadata presence therefore always
implies that the bytes exist, and a half-finished delete never makes a blob
reappear.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from socialmod.blobs.blob_store import BlobStore
from socialmod.blobs.cdn import CdnUrlResolver
from socialmod.datatypes.content_datatypes import FeedPage, ReviewStatus
from socialmod.datatypes.image_datatypes import BlobItem, BlobMetadata, ImageMetadata, ImageType
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import InvalidInputError, NotFoundError, PipelineError
from socialmod.images.image_sizes import ImageSizesConfiguration, derived_blob_handle
from socialmod.repositories.blob_metadata_repo import BlobMetadataRepo, ImageMetadataRepo
from socialmod.repositories.feed_cursor import decode_cursor, encode_cursor, validate_limit
from socialmod.scheduler.work_queue import WorkQueue
from socialmod.util.handles import new_handle, validate_blob_handle, validate_handle
from socialmod.util.logger import get_logger

if TYPE_CHECKING:
    from socialmod.moderation.moderation_manager import ModerationManager

logger = get_logger("blobs_manager")


class BlobsManager:
    """
    Create, read, delete and resolve blobs and images.

    Args:
        blob_store: Byte storage collaborator.
        blob_repo: Metadata for non-image blobs.
        image_repo: Metadata for images.
        cdn: CDN URL resolver.
        image_sizes: Derived size table.
        resize_queue: Queue receiving one message per ingested image.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        blob_repo: BlobMetadataRepo,
        image_repo: ImageMetadataRepo,
        cdn: CdnUrlResolver,
        image_sizes: ImageSizesConfiguration,
        resize_queue: Optional[WorkQueue] = None,
    ) -> None:
        self.blob_store = blob_store
        self.blob_repo = blob_repo
        self.image_repo = image_repo
        self.cdn = cdn
        self.image_sizes = image_sizes
        self.resize_queue = resize_queue
        self._moderation: Optional["ModerationManager"] = None

    def bind_moderation(self, moderation_manager: "ModerationManager") -> None:
        """Attach the moderation manager that receives a request for every new image."""
        self._moderation = moderation_manager

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_blob(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        user_handle: str,
        data: bytes,
        content_type: str,
        blob_handle: Optional[str] = None,
    ) -> BlobMetadata:
        """Store a non-image blob and its metadata."""
        validate_handle(app_handle, "app_handle")
        validate_handle(user_handle, "user_handle")
        blob_handle = validate_blob_handle(blob_handle or new_handle())
        if not content_type:
            raise InvalidInputError("content_type is required")

        await self.blob_store.insert(blob_handle, data, content_type)
        metadata = await self.blob_repo.insert(
            BlobMetadata(
                blob_handle=blob_handle,
                app_handle=app_handle,
                user_handle=user_handle,
                content_type=content_type,
                length=len(data),
            )
        )
        logger.info("[BLOBS] Created blob %s (%d bytes) for %s/%s [%s]", blob_handle, len(data), app_handle, user_handle, ctx)
        return metadata

    async def create_image(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        user_handle: str,
        data: bytes,
        content_type: str,
        image_type: ImageType,
        blob_handle: Optional[str] = None,
    ) -> ImageMetadata:
        """
        Store an original image, then queue its resize fan-out and moderation.

        The image is acknowledged once bytes and metadata are stored; derived
        sizes and the moderation verdict arrive asynchronously.

        Returns:
            ImageMetadata: The new metadata, with ``review_status`` unknown and
            no completed resizes.

        Raises:
            InvalidInputError: On a malformed handle, a non-image mime type,
                or an unknown image type.
        """
        validate_handle(app_handle, "app_handle")
        validate_handle(user_handle, "user_handle")
        blob_handle = validate_blob_handle(blob_handle or new_handle())
        if not isinstance(image_type, ImageType):
            raise InvalidInputError(f"unsupported image type: {image_type!r}")
        if not content_type or not content_type.lower().startswith("image/"):
            raise InvalidInputError(f"content type {content_type!r} is not an image type")
        if not data:
            raise InvalidInputError("image data is empty")

        await self.blob_store.insert(blob_handle, data, content_type)
        metadata = await self.image_repo.insert(
            ImageMetadata(
                blob_handle=blob_handle,
                app_handle=app_handle,
                user_handle=user_handle,
                image_type=image_type,
                content_type=content_type,
                length=len(data),
            )
        )
        logger.info("[BLOBS] Created %s image %s (%d bytes) for %s/%s [%s]", image_type, blob_handle, len(data), app_handle, user_handle, ctx)

        if self.resize_queue is not None:
            await self.resize_queue.enqueue(blob_handle=blob_handle)

        if self._moderation is not None:
            moderation_handle = new_handle()
            await self._moderation.create_image_moderation_request(
                ctx,
                app_handle,
                moderation_handle,
                blob_handle,
                user_handle,
                image_type,
                self._moderation.callback_uri_for(moderation_handle),
            )
        return metadata

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read_blob(self, ctx: ExecutionContext, blob_handle: str) -> BlobItem:
        await self.read_blob_metadata(ctx, blob_handle)
        return await self.blob_store.read(blob_handle)

    async def read_blob_metadata(self, ctx: ExecutionContext, blob_handle: str) -> BlobMetadata:
        validate_blob_handle(blob_handle)
        metadata = await self.blob_repo.read(blob_handle, ctx.consistency)
        if metadata is None or not await self.blob_store.exists(blob_handle):
            raise NotFoundError(f"blob {blob_handle} not found")
        return metadata

    async def read_image(self, ctx: ExecutionContext, blob_handle: str, size_id: Optional[str] = None) -> BlobItem:
        """
        Read the original image, or one of its derived sizes.

        Args:
            size_id: Id of a derived size; it must already be recorded in
                ``resizes_completed``.

        Raises:
            NotFoundError: If the metadata, the original, or the requested
                derived size is absent, or if a frontend
                caller asks for a rejected image.
            InvalidInputError: If ``size_id`` is not configured for the image type.
        """
        metadata = await self.read_image_metadata(ctx, blob_handle)
        if ctx.is_frontend and metadata.review_status is ReviewStatus.REJECTED:
            raise NotFoundError(f"image {blob_handle} not found")
        if size_id is None:
            return await self.blob_store.read(blob_handle)

        size = self.image_sizes.size_for(metadata.image_type, size_id)
        if size is None:
            raise InvalidInputError(f"size {size_id!r} is not configured for {metadata.image_type}")
        if size.id not in metadata.resizes_completed:
            raise NotFoundError(f"size {size_id!r} of image {blob_handle} is not available yet")
        return await self.blob_store.read(derived_blob_handle(blob_handle, size))

    async def read_image_metadata(self, ctx: ExecutionContext, blob_handle: str) -> ImageMetadata:
        validate_blob_handle(blob_handle)
        metadata = await self.image_repo.read(blob_handle, ctx.consistency)
        if metadata is None or not await self.blob_store.exists(blob_handle):
            raise NotFoundError(f"image {blob_handle} not found")
        return metadata

    async def list_user_images(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        user_handle: str,
        cursor: Optional[str] = None,
        limit: int = 20,
    ) -> FeedPage[ImageMetadata]:
        """Active listing of a user's images; rejected images are never returned."""
        validate_handle(app_handle, "app_handle")
        validate_handle(user_handle, "user_handle")
        limit = validate_limit(limit)
        rows = await self.image_repo.list_active_for_user(app_handle, user_handle, decode_cursor(cursor), limit)
        next_cursor = encode_cursor(rows[-1][0]) if len(rows) == limit else None
        return FeedPage(items=[metadata for _, metadata in rows], cursor=next_cursor)

    # ------------------------------------------------------------------
    # Existence & CDN
    # ------------------------------------------------------------------

    async def blob_exists(self, ctx: ExecutionContext, blob_handle: str) -> bool:
        validate_blob_handle(blob_handle)
        return await self.blob_repo.read(blob_handle, ctx.consistency) is not None

    async def image_exists(self, ctx: ExecutionContext, blob_handle: str) -> bool:
        """True if the image metadata row exists.

        Derived sizes may still be pending; check ``resizes_completed`` when
        every size is needed.
        """
        validate_blob_handle(blob_handle)
        return await self.image_repo.read(blob_handle, ctx.consistency) is not None

    def read_blob_cdn_url(self, blob_handle: str) -> str:
        return self.cdn.url_for(blob_handle)

    def read_image_cdn_url(self, blob_handle: str, size_id: Optional[str] = None) -> str:
        """CDN URL of an image or of one of its derived sizes. Existence is not checked."""
        if size_id is None:
            return self.cdn.url_for(blob_handle)
        for sizes in self.image_sizes.sizes.values():
            for size in sizes:
                if size.id == size_id:
                    return self.cdn.url_for(derived_blob_handle(blob_handle, size))
        raise InvalidInputError(f"unknown image size {size_id!r}")

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_image_review_status(
        self,
        ctx: ExecutionContext,
        blob_handle: str,
        review_status: ReviewStatus,
    ) -> bool:
        """
        Conditionally set an image's review status.

        A rejected image stays rejected. ``resizes_completed`` is untouched.

        Returns:
            True if the stored status changed.
        """
        validate_blob_handle(blob_handle)
        changed = await self.image_repo.update_review_status(blob_handle, review_status)
        if changed:
            logger.info("[BLOBS] Image %s review status -> %s [%s]", blob_handle, review_status, ctx)
        else:
            logger.info("[BLOBS] Image %s review status not changed to %s (missing or rejected) [%s]", blob_handle, review_status, ctx)
        return changed

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_blob(self, ctx: ExecutionContext, blob_handle: str) -> None:
        validate_blob_handle(blob_handle)
        if not await self.blob_repo.delete(blob_handle):
            raise NotFoundError(f"blob {blob_handle} not found")
        await self._delete_bytes(blob_handle)
        logger.info("[BLOBS] Deleted blob %s [%s]", blob_handle, ctx)

    async def delete_image(self, ctx: ExecutionContext, blob_handle: str) -> None:
        """Delete the image metadata, then the original and every derived size."""
        validate_blob_handle(blob_handle)
        metadata = await self.image_repo.read(blob_handle)
        if metadata is None or not await self.image_repo.delete(blob_handle):
            raise NotFoundError(f"image {blob_handle} not found")

        # Derived sizes are removed whether or not they were recorded, since a
        # crash can leave a written blob whose id never reached the metadata.
        for size in self.image_sizes.sizes_for(metadata.image_type):
            await self._delete_bytes(derived_blob_handle(blob_handle, size))
        await self._delete_bytes(blob_handle)
        logger.info("[BLOBS] Deleted image %s [%s]", blob_handle, ctx)

    async def _delete_bytes(self, blob_handle: str) -> None:
        try:
            await self.blob_store.delete(blob_handle)
        except NotFoundError:
            logger.debug("[BLOBS] Blob %s already absent", blob_handle)
        except (OSError, PipelineError) as exc:
            logger.warning("[BLOBS] Failed to delete blob %s, leaving orphan: %s", blob_handle, exc)
