import pytest

from socialmod.blobs.blob_store import LocalBlobStore
from socialmod.blobs.cdn import CdnUrlResolver
from socialmod.errors import BlobAlreadyExistsError, InvalidInputError, NotFoundError


@pytest.mark.asyncio
async def test_insert_read_delete(tmp_path):
    store = LocalBlobStore(tmp_path / "blobs")
    await store.insert("ABCD1234", b"payload", "text/plain")

    assert await store.exists("ABCD1234")
    item = await store.read("ABCD1234")
    assert item.data == b"payload"
    assert item.content_type == "text/plain"

    await store.delete("ABCD1234")
    assert not await store.exists("ABCD1234")
    with pytest.raises(NotFoundError):
        await store.read("ABCD1234")
    with pytest.raises(NotFoundError):
        await store.delete("ABCD1234")


@pytest.mark.asyncio
async def test_second_insert_of_same_handle_fails_without_overwriting(tmp_path):
    store = LocalBlobStore(tmp_path / "blobs")
    await store.insert("ABCD1234", b"first", "image/png")
    with pytest.raises(BlobAlreadyExistsError):
        await store.insert("ABCD1234", b"second", "image/jpeg")

    item = await store.read("ABCD1234")
    assert item.data == b"first"
    assert item.content_type == "image/png"
    assert not [p for p in (tmp_path / "blobs").iterdir() if p.name.endswith(".tmp")]


@pytest.mark.asyncio
async def test_path_traversal_is_refused(tmp_path):
    store = LocalBlobStore(tmp_path / "blobs")
    with pytest.raises(InvalidInputError):
        await store.insert("../escape", b"x", "text/plain")


def test_cdn_urls():
    cdn = CdnUrlResolver("https://cdn.example.com/images/")
    assert cdn.url_for("ABCD1234t") == "https://cdn.example.com/images/ABCD1234t"
