"""
Queue handlers for the two background stages of the pipeline.

Each handler is a thin adapter from a ``WorkMessage`` to the manager that
owns the work. The execution context comes from the message's delivery
count, so a re-delivered message runs as a backend retry.
"""

from __future__ import annotations

from socialmod.datatypes.image_datatypes import ImageType
from socialmod.errors import InvalidInputError
from socialmod.images.resize_orchestrator import ResizeOrchestrator
from socialmod.moderation.moderation_manager import ModerationManager
from socialmod.scheduler.work_queue import WorkMessage, WorkQueue
from socialmod.util.logger import get_logger

logger = get_logger("pipeline_workers")


def _require(message: WorkMessage, key: str) -> str:
    value = message.payload.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidInputError(f"message {message.message_id} has no {key}")
    return value


class ResizeImagesWorker:
    """Runs the resize fan-out for ``{"blob_handle": ...}`` messages."""

    def __init__(self, orchestrator: ResizeOrchestrator) -> None:
        self.orchestrator = orchestrator

    async def process(self, message: WorkMessage) -> None:
        blob_handle = _require(message, "blob_handle")
        metadata = await self.orchestrator.create_image_resizes(message.context, blob_handle)
        logger.debug("[RESIZE] %s: %d size(s) complete", blob_handle, len(metadata.resizes_completed))

    async def redrive_incomplete(self, queue: WorkQueue, limit: int = 100) -> int:
        """Queue every image whose fan-out did not finish; returns how many."""
        image_sizes = self.orchestrator.image_sizes
        queued = 0
        for image_type in ImageType:
            handles = await self.orchestrator.image_repo.list_incomplete(
                image_type, len(image_sizes.sizes_for(image_type)), limit
            )
            for blob_handle in handles:
                await queue.enqueue(blob_handle=blob_handle)
            queued += len(handles)
        if queued:
            logger.info("[RESIZE] Re-queued %d image(s) with missing sizes", queued)
        return queued


class ModerationWorker:
    """Submits ``{"moderation_handle": ...}`` messages to the review provider."""

    def __init__(self, moderation_manager: ModerationManager) -> None:
        self.moderation_manager = moderation_manager

    async def process(self, message: WorkMessage) -> None:
        moderation_handle = _require(message, "moderation_handle")
        await self.moderation_manager.submit_request(message.context, moderation_handle)
