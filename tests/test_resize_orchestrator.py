from io import BytesIO
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from conftest import APP, USER, make_image_bytes
from socialmod.datatypes.image_datatypes import ImageType
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import NotFoundError, PermanentContentError
from socialmod.images.image_sizes import ALL_SIZES


async def _ingest(pipeline, data: bytes, image_type: ImageType = ImageType.USER_PHOTO) -> str:
    metadata = await pipeline.blobs_manager.create_image(
        ExecutionContext.frontend(), APP, USER, data, "image/png", image_type,
    )
    return metadata.blob_handle


@pytest.mark.asyncio
async def test_creates_every_configured_size(pipeline):
    blob_handle = await _ingest(pipeline, make_image_bytes(1200, 800))

    metadata = await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), blob_handle)

    assert metadata.resizes_completed == frozenset(size.id for size in ALL_SIZES)
    for size in ALL_SIZES:
        item = await pipeline.blobs_manager.blob_store.read(blob_handle + size.id)
        image = Image.open(BytesIO(item.data))
        assert image.format == "JPEG"
        assert max(image.size) == min(size.width, 1200)
        assert item.content_type == "image/jpeg"


@pytest.mark.asyncio
async def test_small_originals_are_not_upscaled(pipeline):
    blob_handle = await _ingest(pipeline, make_image_bytes(80, 60))

    await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), blob_handle)

    gigantic = await pipeline.blobs_manager.read_image(ExecutionContext.backend(), blob_handle, "x")
    assert Image.open(BytesIO(gigantic.data)).size == (80, 60)
    tiny = await pipeline.blobs_manager.read_image(ExecutionContext.backend(), blob_handle, "d")
    assert Image.open(BytesIO(tiny.data)).size == (25, 19)


@pytest.mark.asyncio
async def test_second_run_writes_nothing(pipeline):
    blob_handle = await _ingest(pipeline, make_image_bytes(600, 400))
    await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), blob_handle)

    store = pipeline.orchestrator.blob_store
    spy = AsyncMock(wraps=store.insert)
    pipeline.orchestrator.blob_store = type("Spy", (), {"insert": spy, "read": store.read})()

    metadata = await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(2), blob_handle)

    spy.assert_not_awaited()
    assert metadata.resizes_completed == frozenset(size.id for size in ALL_SIZES)


@pytest.mark.asyncio
async def test_interrupted_fan_out_resumes(pipeline):
    blob_handle = await _ingest(pipeline, make_image_bytes(600, 400))
    store = pipeline.orchestrator.blob_store
    real_insert = store.insert
    calls = []

    async def flaky_insert(handle, data, content_type):
        calls.append(handle)
        if len(calls) == 3:
            raise OSError("disk full")
        await real_insert(handle, data, content_type)

    store.insert = flaky_insert
    with pytest.raises(OSError):
        await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), blob_handle)

    partial = await pipeline.image_repo.read(blob_handle)
    assert partial.resizes_completed == frozenset({"d", "h"})

    store.insert = real_insert
    metadata = await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(2), blob_handle)
    assert metadata.resizes_completed == frozenset(size.id for size in ALL_SIZES)


@pytest.mark.asyncio
async def test_derivative_already_stored_is_recorded(pipeline):
    blob_handle = await _ingest(pipeline, make_image_bytes(600, 400), ImageType.APP_ICON)
    await pipeline.orchestrator.blob_store.insert(blob_handle + "l", b"left by a crashed run", "image/jpeg")

    metadata = await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), blob_handle)
    assert metadata.resizes_completed == frozenset({"l"})


@pytest.mark.asyncio
async def test_missing_image(pipeline):
    with pytest.raises(NotFoundError):
        await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), "ABCDEF0123456789")


@pytest.mark.asyncio
async def test_undecodable_original_writes_nothing(pipeline):
    blob_handle = await _ingest(pipeline, b"\x89PNG but not really")
    with pytest.raises(PermanentContentError):
        await pipeline.orchestrator.create_image_resizes(ExecutionContext.backend(), blob_handle)
    assert (await pipeline.image_repo.read(blob_handle)).resizes_completed == frozenset()
