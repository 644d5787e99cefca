"""
Resize fan-out for ingested images.

For one original image the orchestrator writes every configured derived size
that is not yet recorded in ``resizes_completed``:

1. the original is decoded once and reused for every size;
2. each size is encoded, written under ``blob_handle + size.id`` and then
   recorded in the metadata with a single atomic append.

A crash mid fan-out leaves ``resizes_completed`` a strict subset of the
configured ids, and re-running the whole operation picks up where it stopped.
A derived blob that already exists (same handle, same deterministic bytes)
counts as written.
"""

from __future__ import annotations

import asyncio

from PIL import Image

from socialmod.blobs.blob_store import BlobStore
from socialmod.datatypes.image_datatypes import ImageMetadata, ImageSize
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import BlobAlreadyExistsError, NotFoundError
from socialmod.images import image_codec
from socialmod.images.image_sizes import ImageSizesConfiguration, derived_blob_handle
from socialmod.repositories.blob_metadata_repo import ImageMetadataRepo
from socialmod.util.handles import validate_blob_handle
from socialmod.util.logger import get_logger

logger = get_logger("resize_orchestrator")


class ResizeOrchestrator:
    """
    Produces the derived sizes of an image.

    Args:
        blob_store: Where originals are read and derivatives written.
        image_repo: Image metadata, including ``resizes_completed``.
        image_sizes: Immutable size table shared with the gateway.
        jpeg_quality: Fixed encoder quality for every derivative.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        image_repo: ImageMetadataRepo,
        image_sizes: ImageSizesConfiguration,
        jpeg_quality: int = 80,
    ) -> None:
        self.blob_store = blob_store
        self.image_repo = image_repo
        self.image_sizes = image_sizes
        self.jpeg_quality = jpeg_quality

    async def create_image_resizes(self, ctx: ExecutionContext, blob_handle: str) -> ImageMetadata:
        """
        Write every pending derived size of ``blob_handle``.

        Returns:
            ImageMetadata: Metadata after the fan-out.

        Raises:
            NotFoundError: If the image metadata or original bytes are gone.
            PermanentContentError: If the original cannot be decoded; no size
                is written and the image stays pending.
        """
        validate_blob_handle(blob_handle)
        metadata = await self.image_repo.read(blob_handle)
        if metadata is None:
            raise NotFoundError(f"image {blob_handle} not found")

        pending = metadata.pending_sizes(self.image_sizes.sizes_for(metadata.image_type))
        if not pending:
            logger.debug("[RESIZE] %s: all sizes already present [%s]", blob_handle, ctx)
            return metadata

        original = await self.blob_store.read(blob_handle)
        image = await asyncio.to_thread(image_codec.decode_image, original.data)
        logger.info(
            "[RESIZE] %s: writing %d size(s) %s from %sx%s original [%s]",
            blob_handle, len(pending), "".join(size.id for size in pending), *image.size, ctx,
        )

        try:
            for size in pending:
                await self._write_size(blob_handle, image, size)
        finally:
            image.close()

        updated = await self.image_repo.read(blob_handle)
        if updated is None:
            # Deleted while the fan-out was running; the delete path removes derivatives.
            raise NotFoundError(f"image {blob_handle} was deleted during resize")
        return updated

    async def _write_size(self, blob_handle: str, image: Image.Image, size: ImageSize) -> None:
        data = await asyncio.to_thread(image_codec.encode_resized, image, size, self.jpeg_quality)
        child_handle = derived_blob_handle(blob_handle, size)
        try:
            await self.blob_store.insert(child_handle, data, image_codec.JPEG_MIME_TYPE)
        except BlobAlreadyExistsError:
            logger.debug("[RESIZE] %s already stored, recording it", child_handle)
        await self.image_repo.add_resize(blob_handle, size.id)
