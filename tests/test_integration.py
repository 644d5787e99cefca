"""
End-to-end flows through a fully wired pipeline: ingestion, resize fan-out,
submission to the review provider and the provider callback.
"""

import pytest

from conftest import APP, CDN_BASE, USER, make_image_bytes
from socialmod.datatypes.content_datatypes import ContentType, ReviewStatus
from socialmod.datatypes.image_datatypes import ImageType
from socialmod.datatypes.moderation_datatypes import ModerationStatus
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.images.image_sizes import derived_blob_handle

FRONTEND = ExecutionContext.frontend()
BACKEND = ExecutionContext.backend()
BANNED = {"status": "completed", "items": [{"verdict": "banned"}]}
CLEAN = {"status": "completed", "items": [{"verdict": "clean"}]}


async def _only_request(pipeline, content_type, content_handle):
    (request,) = await pipeline.moderation_repo.list_for_content(APP, content_type, content_handle)
    return request


@pytest.mark.asyncio
async def test_user_photo_upload_resize_and_rejection(pipeline, review_provider):
    metadata = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(1200, 800), "image/png", ImageType.USER_PHOTO,
    )
    blob_handle = metadata.blob_handle

    await pipeline.drain()

    store = pipeline.blobs_manager.blob_store
    sizes = pipeline.orchestrator.image_sizes.sizes_for(ImageType.USER_PHOTO)
    assert len(sizes) == 6
    assert await store.exists(blob_handle)
    for size in sizes:
        assert await store.exists(derived_blob_handle(blob_handle, size))

    request = await _only_request(pipeline, ContentType.IMAGE, blob_handle)
    assert review_provider.handles() == [request.moderation_handle]
    _, content, _ = review_provider.calls[0]
    assert content.to_json()[0]["value"] == f"{CDN_BASE}/{blob_handle}"

    assert await pipeline.moderation_manager.process_moderation_results(request.moderation_handle, BANNED)

    assert await pipeline.blobs_manager.image_exists(BACKEND, blob_handle)
    effective = await pipeline.moderation_manager.read_effective_review_status(BACKEND, APP, ContentType.IMAGE, blob_handle)
    assert effective is ReviewStatus.REJECTED
    page = await pipeline.blobs_manager.list_user_images(FRONTEND, APP, USER)
    assert blob_handle not in [item.blob_handle for item in page.items]


@pytest.mark.asyncio
async def test_clean_image_is_listed(pipeline, review_provider):
    metadata = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(300, 200), "image/png", ImageType.USER_PHOTO,
    )
    await pipeline.drain()
    request = await _only_request(pipeline, ContentType.IMAGE, metadata.blob_handle)

    await pipeline.moderation_manager.process_moderation_results(request.moderation_handle, CLEAN)

    stored = await pipeline.blobs_manager.read_image_metadata(BACKEND, metadata.blob_handle)
    assert stored.review_status is ReviewStatus.ACTIVE
    page = await pipeline.blobs_manager.list_user_images(FRONTEND, APP, USER)
    assert [item.blob_handle for item in page.items] == [metadata.blob_handle]


@pytest.mark.asyncio
async def test_rejected_topic_rejects_attached_image(pipeline, review_provider):
    image = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(640, 480), "image/png", ImageType.CONTENT_BLOB,
    )
    topic = await pipeline.content_manager.create_topic(FRONTEND, APP, USER, "Look", "at this", blob_handle=image.blob_handle)
    assert await pipeline.search_repo.is_indexed(topic.content_handle)

    await pipeline.drain()
    topic_request = await _only_request(pipeline, ContentType.TOPIC, topic.content_handle)
    _, content, _ = next(call for call in review_provider.calls if call[0] == topic_request.moderation_handle)
    assert [item["type"] for item in content.to_json()] == ["text", "text", "image"]

    await pipeline.moderation_manager.process_moderation_results(topic_request.moderation_handle, BANNED)

    assert (await pipeline.content_manager.read_content(BACKEND, topic.content_handle)).review_status is ReviewStatus.REJECTED
    assert (await pipeline.blobs_manager.read_image_metadata(BACKEND, image.blob_handle)).review_status is ReviewStatus.REJECTED
    assert not await pipeline.search_repo.is_indexed(topic.content_handle)

    # The image's own clean verdict arrives later and cannot lift the rejection.
    image_request = await _only_request(pipeline, ContentType.IMAGE, image.blob_handle)
    await pipeline.moderation_manager.process_moderation_results(image_request.moderation_handle, CLEAN)
    assert (await pipeline.blobs_manager.read_image_metadata(BACKEND, image.blob_handle)).review_status is ReviewStatus.REJECTED


@pytest.mark.asyncio
async def test_comment_thread_and_counts(pipeline, review_provider):
    topic = await pipeline.content_manager.create_topic(FRONTEND, APP, USER, "Topic", "body")
    comment = await pipeline.content_manager.create_comment(FRONTEND, APP, "USER2", topic.content_handle, "nice")
    await pipeline.content_manager.create_reply(FRONTEND, APP, USER, comment.content_handle, "thanks")

    await pipeline.drain()

    assert len(review_provider.calls) == 3
    requests = await pipeline.moderation_repo.list_by_status(ModerationStatus.SUBMITTED)
    assert {request.content_type for request in requests} == {ContentType.TOPIC, ContentType.COMMENT, ContentType.REPLY}
    assert await pipeline.content_manager.read_count(APP, ContentType.COMMENT, topic.content_handle) == 1
    page = await pipeline.content_manager.read_feed(FRONTEND, APP, ContentType.REPLY, parent_handle=comment.content_handle)
    assert [item.text for item in page.items] == ["thanks"]
