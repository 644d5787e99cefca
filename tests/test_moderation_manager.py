import pytest

from conftest import APP, USER, make_image_bytes
from socialmod.datatypes.content_datatypes import ContentType, ReviewStatus
from socialmod.datatypes.image_datatypes import ImageType
from socialmod.datatypes.moderation_datatypes import ModerationStatus
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import InvalidInputError, NotFoundError, ProviderUnavailableError
from socialmod.util.handles import new_handle

FRONTEND = ExecutionContext.frontend()
BACKEND = ExecutionContext.backend()

CLEAN = {"status": "completed", "items": [{"verdict": "clean"}]}
MATURE = {"status": "completed", "items": [{"verdict": "clean"}, {"verdict": "mature"}]}
BANNED = {"status": "completed", "items": [{"verdict": "banned"}]}
INCONCLUSIVE = {"status": "completed", "items": [{"verdict": "something-new"}]}
FAILED = {"status": "failed"}


async def _submitted_topic(pipeline, review_provider):
    topic = await pipeline.content_manager.create_topic(FRONTEND, APP, USER, "Title", "Some text")
    await pipeline.drain()
    return topic, review_provider.handles()[-1]


async def _add_request(pipeline, content_handle: str) -> str:
    handle = new_handle()
    mm = pipeline.moderation_manager
    await mm.create_content_moderation_request(FRONTEND, APP, handle, ContentType.TOPIC, content_handle, mm.callback_uri_for(handle))
    return handle


async def _topic_status(pipeline, content_handle: str) -> ReviewStatus:
    return (await pipeline.content_manager.read_content(BACKEND, content_handle)).review_status


# ----------------------------------------------------------------------
# Submission
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_queue_submits_created_request(pipeline, review_provider):
    topic, handle = await _submitted_topic(pipeline, review_provider)

    assert len(review_provider.calls) == 1
    _, content, callback_uri = review_provider.calls[0]
    assert [item["value"] for item in content.to_json()] == ["Title", "Some text"]
    assert callback_uri == pipeline.moderation_manager.callback_uri_for(handle)

    request = await pipeline.moderation_manager.read_moderation_request(BACKEND, handle)
    assert request.status is ModerationStatus.SUBMITTED
    assert request.content_handle == topic.content_handle
    assert request.provider_job_id == f"job-{handle}"


@pytest.mark.asyncio
async def test_resubmission_is_a_no_op(pipeline, review_provider):
    _, handle = await _submitted_topic(pipeline, review_provider)

    assert await pipeline.moderation_manager.submit_request(ExecutionContext.backend(2), handle) is False
    assert len(review_provider.calls) == 1


@pytest.mark.asyncio
async def test_redrive_of_submitted_request_does_not_call_provider_twice(pipeline, review_provider):
    await pipeline.content_manager.create_topic(FRONTEND, APP, USER, "T", "text")
    assert await pipeline.moderation_manager.redrive_created_requests() == 1
    assert pipeline.moderation_queue.qsize() == 2

    await pipeline.drain()
    assert len(review_provider.calls) == 1


@pytest.mark.asyncio
async def test_provider_already_submitted_counts_as_success(pipeline, review_provider):
    review_provider.already_submitted = True
    _, handle = await _submitted_topic(pipeline, review_provider)
    request = await pipeline.moderation_repo.read(handle)
    assert request.status is ModerationStatus.SUBMITTED


@pytest.mark.asyncio
async def test_provider_timeout_is_retryable(pipeline, review_provider):
    topic = await pipeline.content_manager.create_topic(FRONTEND, APP, USER, "T", "text")
    handle = (await pipeline.moderation_repo.list_for_content(APP, ContentType.TOPIC, topic.content_handle))[0].moderation_handle
    review_provider.delay_seconds = 1.0
    pipeline.moderation_manager.provider_timeout_seconds = 0.05

    with pytest.raises(ProviderUnavailableError):
        await pipeline.moderation_manager.submit_request(BACKEND, handle)
    assert (await pipeline.moderation_repo.read(handle)).status is ModerationStatus.CREATED


@pytest.mark.asyncio
async def test_unavailable_provider_is_retried_then_dead_lettered(pipeline, review_provider):
    review_provider.error = ProviderUnavailableError("provider down")
    topic = await pipeline.content_manager.create_topic(FRONTEND, APP, USER, "T", "text")

    await pipeline.drain()

    assert len(review_provider.calls) == pipeline.config.max_dequeue_count
    assert len(pipeline.moderation_queue.dead_letters) == 1
    requests = await pipeline.moderation_repo.list_for_content(APP, ContentType.TOPIC, topic.content_handle)
    assert requests[0].status is ModerationStatus.CREATED


@pytest.mark.asyncio
async def test_nothing_to_review_abandons_request(pipeline, review_provider):
    topic = await pipeline.content_manager.create_topic(FRONTEND, APP, USER, "T", "text")
    await pipeline.content_manager.delete_content(FRONTEND, topic.content_handle)

    await pipeline.drain()

    assert review_provider.calls == []
    requests = await pipeline.moderation_repo.list_for_content(APP, ContentType.TOPIC, topic.content_handle)
    assert requests[0].status is ModerationStatus.ABANDONED


@pytest.mark.asyncio
async def test_submit_arguments_must_match_stored_request(pipeline, review_provider):
    topic = await pipeline.content_manager.create_topic(FRONTEND, APP, USER, "T", "text")
    request = (await pipeline.moderation_repo.list_for_content(APP, ContentType.TOPIC, topic.content_handle))[0]

    with pytest.raises(InvalidInputError):
        await pipeline.moderation_manager.submit_content_for_moderation(
            BACKEND, APP, request.moderation_handle, ContentType.COMMENT, topic.content_handle, request.callback_uri,
        )
    with pytest.raises(NotFoundError):
        await pipeline.moderation_manager.submit_request(BACKEND, "NO-SUCH-REQUEST")


@pytest.mark.asyncio
async def test_create_request_validation(pipeline):
    mm = pipeline.moderation_manager
    with pytest.raises(InvalidInputError):
        await mm.create_content_moderation_request(FRONTEND, APP, new_handle(), ContentType.TOPIC, "T1", "http://api.example.com/cb")
    with pytest.raises(InvalidInputError):
        await mm.create_content_moderation_request(FRONTEND, APP, new_handle(), ContentType.IMAGE, "T1", mm.callback_uri_for("X"))
    with pytest.raises(InvalidInputError):
        await mm.create_image_moderation_request(FRONTEND, APP, new_handle(), "ABCDEF0123", USER, "photo", mm.callback_uri_for("X"))


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_clean_result_activates_content(pipeline, review_provider):
    topic, handle = await _submitted_topic(pipeline, review_provider)

    assert await pipeline.moderation_manager.process_moderation_results(handle, CLEAN) is True

    assert await _topic_status(pipeline, topic.content_handle) is ReviewStatus.ACTIVE
    request = await pipeline.moderation_repo.read(handle)
    assert request.status is ModerationStatus.RESULT_RECEIVED
    assert request.review_status is ReviewStatus.ACTIVE
    assert '"clean"' in request.result_payload


@pytest.mark.asyncio
async def test_duplicate_callback_is_a_no_op(pipeline, review_provider):
    topic, handle = await _submitted_topic(pipeline, review_provider)
    mm = pipeline.moderation_manager

    assert await mm.process_moderation_results(handle, BANNED) is True
    assert await mm.process_moderation_results(handle, CLEAN) is False

    assert await _topic_status(pipeline, topic.content_handle) is ReviewStatus.REJECTED
    assert (await pipeline.moderation_repo.read(handle)).review_status is ReviewStatus.REJECTED


@pytest.mark.asyncio
async def test_banned_result_hides_content(pipeline, review_provider):
    topic, handle = await _submitted_topic(pipeline, review_provider)

    await pipeline.moderation_manager.process_moderation_results(handle, BANNED)

    assert not await pipeline.search_repo.is_indexed(topic.content_handle)
    page = await pipeline.content_manager.read_feed(FRONTEND, APP, ContentType.TOPIC)
    assert page.items == []
    with pytest.raises(NotFoundError):
        await pipeline.content_manager.read_content(FRONTEND, topic.content_handle)
    assert (await pipeline.content_manager.read_content(BACKEND, topic.content_handle)).review_status is ReviewStatus.REJECTED


@pytest.mark.asyncio
async def test_rejected_wins_over_later_active(pipeline, review_provider):
    topic, first = await _submitted_topic(pipeline, review_provider)
    second = await _add_request(pipeline, topic.content_handle)
    await pipeline.drain()
    mm = pipeline.moderation_manager

    await mm.process_moderation_results(second, BANNED)
    await mm.process_moderation_results(first, CLEAN)

    assert await _topic_status(pipeline, topic.content_handle) is ReviewStatus.REJECTED
    effective = await mm.read_effective_review_status(BACKEND, APP, ContentType.TOPIC, topic.content_handle)
    assert effective is ReviewStatus.REJECTED


@pytest.mark.asyncio
async def test_third_request_cannot_lift_rejection(pipeline, review_provider):
    topic, first = await _submitted_topic(pipeline, review_provider)
    mm = pipeline.moderation_manager
    await mm.process_moderation_results(first, BANNED)

    third = await _add_request(pipeline, topic.content_handle)
    await pipeline.drain()

    # Rejected content has nothing left to review, so the new request is abandoned.
    assert (await pipeline.moderation_repo.read(third)).status is ModerationStatus.ABANDONED
    effective = await mm.read_effective_review_status(BACKEND, APP, ContentType.TOPIC, topic.content_handle)
    assert effective is ReviewStatus.REJECTED


@pytest.mark.asyncio
async def test_pending_request_blocks_active(pipeline, review_provider):
    topic, first = await _submitted_topic(pipeline, review_provider)
    second = await _add_request(pipeline, topic.content_handle)
    mm = pipeline.moderation_manager

    assert await mm.process_moderation_results(first, CLEAN) is True
    assert await _topic_status(pipeline, topic.content_handle) is ReviewStatus.UNKNOWN
    assert await mm.read_effective_review_status(BACKEND, APP, ContentType.TOPIC, topic.content_handle) is ReviewStatus.UNKNOWN

    await pipeline.drain()
    await mm.process_moderation_results(second, CLEAN)
    assert await _topic_status(pipeline, topic.content_handle) is ReviewStatus.ACTIVE
    assert await mm.read_effective_review_status(BACKEND, APP, ContentType.TOPIC, topic.content_handle) is ReviewStatus.ACTIVE


@pytest.mark.asyncio
@pytest.mark.parametrize("second_payload", [FAILED, INCONCLUSIVE])
async def test_held_active_verdict_applies_when_later_request_fails(pipeline, review_provider, second_payload):
    topic, first = await _submitted_topic(pipeline, review_provider)
    second = await _add_request(pipeline, topic.content_handle)
    await pipeline.drain()
    mm = pipeline.moderation_manager

    await mm.process_moderation_results(first, CLEAN)
    assert await _topic_status(pipeline, topic.content_handle) is ReviewStatus.UNKNOWN

    assert await mm.process_moderation_results(second, second_payload) is True
    assert (await pipeline.moderation_repo.read(second)).status is ModerationStatus.FAILED
    assert await _topic_status(pipeline, topic.content_handle) is ReviewStatus.ACTIVE
    assert await mm.read_effective_review_status(BACKEND, APP, ContentType.TOPIC, topic.content_handle) is ReviewStatus.ACTIVE
    page = await pipeline.content_manager.read_feed(FRONTEND, APP, ContentType.TOPIC)
    assert [item.content_handle for item in page.items] == [topic.content_handle]


@pytest.mark.asyncio
async def test_pending_request_does_not_block_rejection(pipeline, review_provider):
    topic, first = await _submitted_topic(pipeline, review_provider)
    second = await _add_request(pipeline, topic.content_handle)
    await pipeline.drain()
    assert (await pipeline.moderation_repo.read(second)).status is ModerationStatus.SUBMITTED

    await pipeline.moderation_manager.process_moderation_results(first, BANNED)

    assert await _topic_status(pipeline, topic.content_handle) is ReviewStatus.REJECTED
    effective = await pipeline.moderation_manager.read_effective_review_status(BACKEND, APP, ContentType.TOPIC, topic.content_handle)
    assert effective is ReviewStatus.REJECTED
    page = await pipeline.content_manager.read_feed(FRONTEND, APP, ContentType.TOPIC)
    assert page.items == []


@pytest.mark.asyncio
@pytest.mark.parametrize("mature_allowed, expected", [(False, ReviewStatus.REJECTED), (True, ReviewStatus.ACTIVE)])
async def test_mature_policy(pipeline, review_provider, mature_allowed, expected):
    await pipeline.app_settings_repo.set_mature_content_allowed(APP, mature_allowed)
    topic, handle = await _submitted_topic(pipeline, review_provider)

    await pipeline.moderation_manager.process_moderation_results(handle, MATURE)
    assert await _topic_status(pipeline, topic.content_handle) is expected


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [FAILED, INCONCLUSIVE])
async def test_failed_or_inconclusive_results_change_nothing(pipeline, review_provider, payload):
    topic, handle = await _submitted_topic(pipeline, review_provider)

    assert await pipeline.moderation_manager.process_moderation_results(handle, payload) is True

    request = await pipeline.moderation_repo.read(handle)
    assert request.status is ModerationStatus.FAILED
    assert await _topic_status(pipeline, topic.content_handle) is ReviewStatus.UNKNOWN


@pytest.mark.asyncio
async def test_callback_validation(pipeline, review_provider):
    mm = pipeline.moderation_manager
    with pytest.raises(NotFoundError):
        await mm.process_moderation_results("UNKNOWN-HANDLE", CLEAN)

    topic = await pipeline.content_manager.create_topic(FRONTEND, APP, USER, "T", "text")
    handle = (await pipeline.moderation_repo.list_for_content(APP, ContentType.TOPIC, topic.content_handle))[0].moderation_handle
    with pytest.raises(InvalidInputError):
        await mm.process_moderation_results(handle, None)
    # Not submitted yet: a forged or early callback is ignored.
    assert await mm.process_moderation_results(handle, CLEAN) is False

    await pipeline.drain()
    with pytest.raises(InvalidInputError):
        await mm.process_moderation_results(handle, "not json")
    assert (await pipeline.moderation_repo.read(handle)).status is ModerationStatus.SUBMITTED


@pytest.mark.asyncio
async def test_verdict_for_deleted_content_is_recorded(pipeline, review_provider):
    topic, handle = await _submitted_topic(pipeline, review_provider)
    await pipeline.content_manager.delete_content(FRONTEND, topic.content_handle)

    assert await pipeline.moderation_manager.process_moderation_results(handle, CLEAN) is True
    assert (await pipeline.moderation_repo.read(handle)).status is ModerationStatus.RESULT_RECEIVED


@pytest.mark.asyncio
async def test_rejected_user_rejects_profile_photo(pipeline, review_provider):
    photo = await pipeline.blobs_manager.create_image(
        FRONTEND, APP, USER, make_image_bytes(300, 300), "image/png", ImageType.USER_PHOTO,
    )
    await pipeline.users_manager.create_user_profile(FRONTEND, APP, USER, "Ada", "L", "bio", photo.blob_handle)
    await pipeline.drain()

    user_request = (await pipeline.moderation_repo.list_for_content(APP, ContentType.USER, USER))[0]
    _, content, _ = next(call for call in review_provider.calls if call[0] == user_request.moderation_handle)
    assert [item["type"] for item in content.to_json()] == ["text", "image"]

    await pipeline.moderation_manager.process_moderation_results(user_request.moderation_handle, BANNED)

    profile = await pipeline.users_manager.read_user_profile(BACKEND, USER, APP)
    assert profile.review_status is ReviewStatus.REJECTED
    photo_metadata = await pipeline.blobs_manager.read_image_metadata(BACKEND, photo.blob_handle)
    assert photo_metadata.review_status is ReviewStatus.REJECTED
    assert await pipeline.users_manager.search_repo.search(APP, "Ada") == []
