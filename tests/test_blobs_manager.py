from unittest.mock import patch

import pytest

from conftest import APP, CDN_BASE, USER, make_image_bytes
from socialmod.datatypes.content_datatypes import ContentType, ReviewStatus
from socialmod.datatypes.image_datatypes import ImageType
from socialmod.datatypes.moderation_datatypes import ModerationStatus
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import BlobAlreadyExistsError, InvalidInputError, NotFoundError
from socialmod.images.image_sizes import ALL_SIZES, LARGE

FRONTEND = ExecutionContext.frontend()


@pytest.mark.asyncio
async def test_create_image_queues_resize_and_moderation(pipeline):
    metadata = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(), "image/png", ImageType.USER_PHOTO,
    )

    assert metadata.review_status is ReviewStatus.UNKNOWN
    assert metadata.resizes_completed == frozenset()
    assert await pipeline.blobs_manager.image_exists(FRONTEND, metadata.blob_handle)

    assert pipeline.resize_queue.qsize() == 1
    assert pipeline.moderation_queue.qsize() == 1
    requests = await pipeline.moderation_repo.list_for_content(APP, ContentType.IMAGE, metadata.blob_handle)
    assert len(requests) == 1
    assert requests[0].status is ModerationStatus.CREATED
    assert requests[0].image_type is ImageType.USER_PHOTO
    assert requests[0].callback_uri.endswith("/" + requests[0].moderation_handle)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"content_type": "text/plain"},
        {"image_type": "user_photo"},
        {"blob_handle": "lowercase-handle"},
        {"app_handle": ""},
        {"data": b""},
    ],
)
async def test_create_image_validation(pipeline, kwargs):
    arguments = dict(
        ctx=FRONTEND, app_handle=APP, user_handle=USER, data=make_image_bytes(10, 10),
        content_type="image/png", image_type=ImageType.CONTENT_BLOB,
    )
    arguments.update(kwargs)
    with pytest.raises(InvalidInputError):
        await pipeline.blobs_manager.create_image(**arguments)


@pytest.mark.asyncio
async def test_duplicate_blob_handle(pipeline):
    await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(), "image/png", ImageType.CONTENT_BLOB, blob_handle="ABCDEF0123",
    )
    with pytest.raises(BlobAlreadyExistsError):
        await pipeline.blobs_manager.create_image(
            FRONTEND, APP, USER, make_image_bytes(), "image/png", ImageType.CONTENT_BLOB, blob_handle="ABCDEF0123",
        )


@pytest.mark.asyncio
async def test_read_image_sizes(pipeline):
    metadata = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(), "image/png", ImageType.USER_PHOTO,
    )
    handle = metadata.blob_handle

    original = await pipeline.blobs_manager.read_image(FRONTEND, handle)
    assert original.content_type == "image/png"

    with pytest.raises(NotFoundError):
        await pipeline.blobs_manager.read_image(FRONTEND, handle, "t")
    with pytest.raises(InvalidInputError):
        await pipeline.blobs_manager.read_image(FRONTEND, handle, "z")

    await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), handle)
    huge = await pipeline.blobs_manager.read_image(FRONTEND, handle, "t")
    assert huge.content_type == "image/jpeg"


@pytest.mark.asyncio
async def test_cdn_urls(pipeline):
    assert pipeline.blobs_manager.read_blob_cdn_url("ABCDEF0123") == f"{CDN_BASE}/ABCDEF0123"
    assert pipeline.blobs_manager.read_image_cdn_url("ABCDEF0123", "p") == f"{CDN_BASE}/ABCDEF0123p"
    with pytest.raises(InvalidInputError):
        pipeline.blobs_manager.read_image_cdn_url("ABCDEF0123", "q")


@pytest.mark.asyncio
async def test_delete_image_removes_metadata_and_every_size(pipeline):
    metadata = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(), "image/png", ImageType.USER_PHOTO,
    )
    handle = metadata.blob_handle
    await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), handle)

    await pipeline.blobs_manager.delete_image(FRONTEND, handle)

    store = pipeline.blobs_manager.blob_store
    assert not await pipeline.blobs_manager.image_exists(ExecutionContext.backend(), handle)
    assert not await store.exists(handle)
    for size in ALL_SIZES:
        assert not await store.exists(handle + size.id)
    with pytest.raises(NotFoundError):
        await pipeline.blobs_manager.delete_image(FRONTEND, handle)


@pytest.mark.asyncio
async def test_delete_image_survives_a_failed_blob_delete(pipeline):
    metadata = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(), "image/png", ImageType.USER_PHOTO,
    )
    handle = metadata.blob_handle
    await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), handle)
    store = pipeline.blobs_manager.blob_store
    real_delete = store.delete

    async def flaky_delete(blob_handle):
        if blob_handle == handle + LARGE.id:
            raise OSError("disk unavailable")
        await real_delete(blob_handle)

    with patch.object(store, "delete", side_effect=flaky_delete):
        await pipeline.blobs_manager.delete_image(FRONTEND, handle)

    assert not await pipeline.blobs_manager.image_exists(ExecutionContext.backend(), handle)
    assert not await store.exists(handle)
    assert await store.exists(handle + LARGE.id)
    with pytest.raises(NotFoundError):
        await pipeline.blobs_manager.delete_image(FRONTEND, handle)


@pytest.mark.asyncio
async def test_metadata_without_bytes_reads_as_missing(pipeline):
    metadata = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(), "image/png", ImageType.APP_ICON,
    )
    await pipeline.blobs_manager.blob_store.delete(metadata.blob_handle)
    with pytest.raises(NotFoundError):
        await pipeline.blobs_manager.read_image_metadata(FRONTEND, metadata.blob_handle)


@pytest.mark.asyncio
async def test_plain_blobs(pipeline):
    metadata = await pipeline.blobs_manager.create_blob(FRONTEND, APP, USER, b"hello", "text/plain")
    assert await pipeline.blobs_manager.blob_exists(FRONTEND, metadata.blob_handle)
    assert (await pipeline.blobs_manager.read_blob(FRONTEND, metadata.blob_handle)).data == b"hello"

    await pipeline.blobs_manager.delete_blob(FRONTEND, metadata.blob_handle)
    assert not await pipeline.blobs_manager.blob_exists(FRONTEND, metadata.blob_handle)
    with pytest.raises(NotFoundError):
        await pipeline.blobs_manager.read_blob(FRONTEND, metadata.blob_handle)


@pytest.mark.asyncio
async def test_list_user_images_pages_and_hides_rejected(pipeline):
    handles = []
    for _ in range(3):
        metadata = await pipeline.blobs_manager.create_image(
            FRONTEND, APP, USER, make_image_bytes(60, 60), "image/png", ImageType.CONTENT_BLOB,
        )
        handles.append(metadata.blob_handle)
    await pipeline.blobs_manager.update_image_review_status(FRONTEND, handles[1], ReviewStatus.REJECTED)

    first = await pipeline.blobs_manager.list_user_images(FRONTEND, APP, USER, limit=1)
    assert [m.blob_handle for m in first.items] == [handles[0]]
    assert first.cursor is not None

    second = await pipeline.blobs_manager.list_user_images(FRONTEND, APP, USER, cursor=first.cursor, limit=5)
    assert [m.blob_handle for m in second.items] == [handles[2]]
    assert second.cursor is None


@pytest.mark.asyncio
async def test_image_review_status_never_leaves_rejected(pipeline):
    metadata = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(), "image/png", ImageType.CONTENT_BLOB,
    )
    handle = metadata.blob_handle
    assert await pipeline.blobs_manager.update_image_review_status(FRONTEND, handle, ReviewStatus.REJECTED)
    assert not await pipeline.blobs_manager.update_image_review_status(FRONTEND, handle, ReviewStatus.ACTIVE)
    assert (await pipeline.blobs_manager.read_image_metadata(FRONTEND, handle)).review_status is ReviewStatus.REJECTED
    with pytest.raises(NotFoundError):
        await pipeline.blobs_manager.read_image(FRONTEND, handle)
    assert (await pipeline.blobs_manager.read_image(ExecutionContext.backend(), handle)).data
