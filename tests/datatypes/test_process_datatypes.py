import pytest

from socialmod.datatypes.image_datatypes import ImageMetadata, ImageType
from socialmod.datatypes.moderation_datatypes import ModerationStatus
from socialmod.datatypes.process_datatypes import ExecutionContext, ProcessType, StorageConsistencyMode
from socialmod.images.image_sizes import ALL_SIZES, HUGE, TINY


def test_frontend_context_allows_cached_reads():
    ctx = ExecutionContext.frontend()
    assert ctx.process_type is ProcessType.FRONTEND
    assert ctx.consistency is StorageConsistencyMode.DEFAULT
    assert not ctx.is_retry


@pytest.mark.parametrize(
    "dequeue_count, expected_type, expected_attempt",
    [(0, ProcessType.BACKEND, 1), (1, ProcessType.BACKEND, 1), (2, ProcessType.BACKEND_RETRY, 2), (5, ProcessType.BACKEND_RETRY, 5)],
)
def test_backend_context_from_dequeue_count(dequeue_count, expected_type, expected_attempt):
    ctx = ExecutionContext.backend(dequeue_count)
    assert ctx.process_type is expected_type
    assert ctx.attempt == expected_attempt
    assert ctx.consistency is StorageConsistencyMode.STRONG


def test_context_str():
    assert str(ExecutionContext.backend(3)) == "backend_retry#3"


def test_pending_statuses():
    assert ModerationStatus.CREATED.is_pending
    assert ModerationStatus.SUBMITTED.is_pending
    assert not ModerationStatus.RESULT_RECEIVED.is_pending
    assert not ModerationStatus.FAILED.is_pending
    assert not ModerationStatus.ABANDONED.is_pending


def test_image_metadata_pending_sizes():
    metadata = ImageMetadata(
        blob_handle="ABCDEF0123", app_handle="A", user_handle="U",
        image_type=ImageType.USER_PHOTO, content_type="image/png", length=10,
        resizes_completed=frozenset({TINY.id, HUGE.id}),
    )
    pending = metadata.pending_sizes(ALL_SIZES)
    assert [size.id for size in pending] == ["h", "l", "p", "x"]
    assert not metadata.all_resizes_completed(ALL_SIZES)
    assert metadata.all_resizes_completed((TINY, HUGE))
