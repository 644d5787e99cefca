"""
Moderation state machine.

A moderation request moves ``created -> submitted -> result_received``:

* ``create_*_moderation_request`` runs on the interactive path. It persists a
  ``created`` row and queues a submission without contacting the provider.
* ``submit_*_for_moderation`` runs from the moderation queue. It checks the
  stored status before calling the provider, so a retry after a successful
  submission is a no-op. The provider also deduplicates on the moderation
  handle, and its "already submitted" answer counts as success.
* ``process_moderation_results`` is the provider callback. Only ``submitted``
  requests are processed, so replayed and forged callbacks are no-ops.

Verdicts reach the owning managers through the target dispatch table. The
"Rejected wins" rule is enforced by conditional writes in the repositories,
not by locks here.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Mapping, Optional, Union

from socialmod.datatypes.content_datatypes import TEXT_CONTENT_TYPES, ContentType, ReviewStatus
from socialmod.datatypes.image_datatypes import ImageType
from socialmod.datatypes.moderation_datatypes import ModerationRequest, ModerationStatus
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import InvalidInputError, NotFoundError, ProviderUnavailableError
from socialmod.moderation import review_policy
from socialmod.moderation.moderation_targets import ModerationTarget
from socialmod.moderation.review_provider import ReviewProvider, parse_review_result, validate_callback_uri
from socialmod.repositories.app_settings_repo import AppSettingsRepo
from socialmod.repositories.moderation_repo import ModerationRepo
from socialmod.scheduler.work_queue import WorkQueue
from socialmod.util.handles import validate_blob_handle, validate_handle
from socialmod.util.logger import get_logger

logger = get_logger("moderation_manager")

Payload = Union[Mapping[str, Any], str, bytes]


class ModerationManager:
    """
    Owns the lifecycle of moderation requests for content, images and users.

    Args:
        moderation_repo: Request storage.
        app_settings_repo: Per-app mature-content policy.
        provider: External review provider.
        targets: Dispatch table from content type to moderation target.
        callback_base_url: Public https base that callback URIs are built on.
        provider_timeout_seconds: Bound on each provider submission.
        moderation_queue: Queue receiving one message per created request.
    """

    def __init__(
        self,
        moderation_repo: ModerationRepo,
        app_settings_repo: AppSettingsRepo,
        provider: ReviewProvider,
        targets: Dict[ContentType, ModerationTarget],
        callback_base_url: str,
        provider_timeout_seconds: float = 10.0,
        moderation_queue: Optional[WorkQueue] = None,
    ) -> None:
        self.moderation_repo = moderation_repo
        self.app_settings_repo = app_settings_repo
        self.provider = provider
        self.targets = targets
        self.callback_base_url = callback_base_url.rstrip("/")
        self.provider_timeout_seconds = provider_timeout_seconds
        self.moderation_queue = moderation_queue

    def callback_uri_for(self, moderation_handle: str) -> str:
        return f"{self.callback_base_url}/{moderation_handle}"

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_content_moderation_request(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        moderation_handle: str,
        content_type: ContentType,
        content_handle: str,
        callback_uri: str,
    ) -> ModerationRequest:
        """Persist a ``created`` request for a topic, comment or reply."""
        if content_type not in TEXT_CONTENT_TYPES:
            raise InvalidInputError(f"unsupported content type for content moderation: {content_type!r}")
        validate_handle(content_handle, "content_handle")
        return await self._create(ctx, ModerationRequest(
            moderation_handle=moderation_handle,
            app_handle=app_handle,
            content_type=content_type,
            content_handle=content_handle,
            callback_uri=callback_uri,
        ))

    async def create_image_moderation_request(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        moderation_handle: str,
        blob_handle: str,
        user_handle: str,
        image_type: ImageType,
        callback_uri: str,
    ) -> ModerationRequest:
        """Persist a ``created`` request for an image."""
        validate_blob_handle(blob_handle)
        validate_handle(user_handle, "user_handle")
        if not isinstance(image_type, ImageType):
            raise InvalidInputError(f"unsupported image type: {image_type!r}")
        return await self._create(ctx, ModerationRequest(
            moderation_handle=moderation_handle,
            app_handle=app_handle,
            content_type=ContentType.IMAGE,
            content_handle=blob_handle,
            user_handle=user_handle,
            image_type=image_type,
            callback_uri=callback_uri,
        ))

    async def create_user_moderation_request(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        moderation_handle: str,
        user_handle: str,
        callback_uri: str,
    ) -> ModerationRequest:
        """Persist a ``created`` request for a user profile."""
        validate_handle(user_handle, "user_handle")
        return await self._create(ctx, ModerationRequest(
            moderation_handle=moderation_handle,
            app_handle=app_handle,
            content_type=ContentType.USER,
            content_handle=user_handle,
            user_handle=user_handle,
            callback_uri=callback_uri,
        ))

    async def _create(self, ctx: ExecutionContext, request: ModerationRequest) -> ModerationRequest:
        validate_handle(request.app_handle, "app_handle")
        validate_handle(request.moderation_handle, "moderation_handle")
        validate_callback_uri(request.callback_uri)

        await self.moderation_repo.insert(request)
        logger.info(
            "[MODERATION] Created request %s for %s %s [%s]",
            request.moderation_handle, request.content_type, request.content_handle, ctx,
        )
        if self.moderation_queue is not None:
            await self.moderation_queue.enqueue(moderation_handle=request.moderation_handle)
        return request

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit_content_for_moderation(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        moderation_handle: str,
        content_type: ContentType,
        content_handle: str,
        callback_uri: str,
    ) -> bool:
        if content_type not in TEXT_CONTENT_TYPES:
            raise InvalidInputError(f"unsupported content type for content moderation: {content_type!r}")
        return await self._submit(ctx, app_handle, moderation_handle, content_type, content_handle, callback_uri)

    async def submit_image_for_moderation(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        moderation_handle: str,
        blob_handle: str,
        user_handle: str,
        image_type: ImageType,
        callback_uri: str,
    ) -> bool:
        validate_blob_handle(blob_handle)
        validate_handle(user_handle, "user_handle")
        if not isinstance(image_type, ImageType):
            raise InvalidInputError(f"unsupported image type: {image_type!r}")
        return await self._submit(ctx, app_handle, moderation_handle, ContentType.IMAGE, blob_handle, callback_uri)

    async def submit_user_for_moderation(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        moderation_handle: str,
        user_handle: str,
        callback_uri: str,
    ) -> bool:
        return await self._submit(ctx, app_handle, moderation_handle, ContentType.USER, user_handle, callback_uri)

    async def submit_request(self, ctx: ExecutionContext, moderation_handle: str) -> bool:
        """Submit a stored request, dispatching on its content type. Used by the moderation queue."""
        validate_handle(moderation_handle, "moderation_handle")
        request = await self.moderation_repo.read(moderation_handle, ctx.consistency)
        if request is None:
            raise NotFoundError(f"moderation request {moderation_handle} not found")

        if request.content_type is ContentType.IMAGE:
            return await self.submit_image_for_moderation(
                ctx, request.app_handle, moderation_handle, request.content_handle,
                request.user_handle, request.image_type, request.callback_uri,
            )
        if request.content_type is ContentType.USER:
            return await self.submit_user_for_moderation(
                ctx, request.app_handle, moderation_handle, request.content_handle, request.callback_uri,
            )
        return await self.submit_content_for_moderation(
            ctx, request.app_handle, moderation_handle, request.content_type,
            request.content_handle, request.callback_uri,
        )

    async def _submit(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        moderation_handle: str,
        content_type: ContentType,
        content_handle: str,
        callback_uri: str,
    ) -> bool:
        """
        Transition ``created -> submitted``.

        Returns:
            True if the request was submitted by this call, False if it was
            already past ``created`` or was abandoned.

        Raises:
            NotFoundError: If the request does not exist.
            InvalidInputError: If the arguments disagree with the stored request.
            ProviderUnavailableError: If the provider call failed or timed out.
        """
        validate_handle(app_handle, "app_handle")
        validate_handle(moderation_handle, "moderation_handle")
        validate_callback_uri(callback_uri)

        request = await self.moderation_repo.read(moderation_handle)
        if request is None:
            raise NotFoundError(f"moderation request {moderation_handle} not found")
        if (request.app_handle, request.content_type, request.content_handle) != (app_handle, content_type, content_handle):
            raise InvalidInputError(f"arguments do not match moderation request {moderation_handle}")

        if request.status is not ModerationStatus.CREATED:
            logger.info("[MODERATION] Request %s is %s, nothing to submit [%s]", moderation_handle, request.status, ctx)
            return False
        if ctx.is_retry:
            logger.warning("[MODERATION] Retrying submission of %s (attempt %d)", moderation_handle, ctx.attempt)

        target = self.targets[content_type]
        content = await target.build_review_content(ctx, app_handle, content_handle)
        if content is None:
            if await self.moderation_repo.mark_abandoned(moderation_handle):
                logger.info("[MODERATION] Request %s abandoned: %s %s has nothing to review", moderation_handle, content_type, content_handle)
                await self._release_held_verdict(ctx, request)
            return False

        try:
            receipt = await asyncio.wait_for(
                self.provider.submit(moderation_handle, content, callback_uri),
                timeout=self.provider_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailableError(
                f"review provider timed out after {self.provider_timeout_seconds}s for {moderation_handle}"
            ) from exc

        if not await self.moderation_repo.mark_submitted(moderation_handle, receipt.job_id):
            logger.info("[MODERATION] Request %s was submitted concurrently", moderation_handle)
            return False
        logger.info(
            "[MODERATION] Submitted %s for %s %s (job %s%s) [%s]",
            moderation_handle, content_type, content_handle, receipt.job_id,
            ", already known to provider" if receipt.already_submitted else "", ctx,
        )
        return True

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def process_moderation_results(self, moderation_handle: str, payload: Optional[Payload]) -> bool:
        """
        Apply a provider verdict. Safe to call any number of times.

        Returns:
            True if this call moved the request out of ``submitted``.

        Raises:
            InvalidInputError: On an empty handle or an unparseable payload.
            NotFoundError: If no request has this handle.
        """
        validate_handle(moderation_handle, "moderation_handle")
        if payload is None:
            raise InvalidInputError("review payload is required")
        ctx = ExecutionContext.backend()

        request = await self.moderation_repo.read(moderation_handle)
        if request is None:
            raise NotFoundError(f"moderation request {moderation_handle} not found")
        if request.status is not ModerationStatus.SUBMITTED:
            logger.info("[MODERATION] Ignoring callback for %s in state %s", moderation_handle, request.status)
            return False

        result = parse_review_result(payload)
        payload_text = self._payload_text(payload)

        if result.job_failed:
            won = await self.moderation_repo.record_result(moderation_handle, ModerationStatus.FAILED, ReviewStatus.UNKNOWN, payload_text)
            logger.warning("[MODERATION] Provider reported failure for %s", moderation_handle)
            if won:
                await self._release_held_verdict(ctx, request)
            return won

        mature_allowed = await self.app_settings_repo.is_mature_content_allowed(request.app_handle)
        review_status = review_policy.verdict_to_review_status(result.verdict, mature_allowed)
        if review_status is None:
            won = await self.moderation_repo.record_result(moderation_handle, ModerationStatus.FAILED, ReviewStatus.UNKNOWN, payload_text)
            logger.warning("[MODERATION] Inconclusive verdict for %s", moderation_handle)
            if won:
                await self._release_held_verdict(ctx, request)
            return won

        await self._apply(ctx, request, review_status)

        won = await self.moderation_repo.record_result(moderation_handle, ModerationStatus.RESULT_RECEIVED, review_status, payload_text)
        if won:
            logger.info(
                "[MODERATION] %s: verdict %s -> %s for %s %s",
                moderation_handle, result.verdict, review_status, request.content_type, request.content_handle,
            )
        else:
            logger.info("[MODERATION] %s: result already recorded by a concurrent callback", moderation_handle)
        return won

    async def _apply(self, ctx: ExecutionContext, request: ModerationRequest, review_status: ReviewStatus) -> None:
        if review_status is ReviewStatus.ACTIVE:
            history = await self.moderation_repo.list_for_content(request.app_handle, request.content_type, request.content_handle)
            if review_policy.later_pending_request_exists(history, request.moderation_handle):
                logger.info(
                    "[MODERATION] %s: Active verdict for %s %s held back by a later pending request",
                    request.moderation_handle, request.content_type, request.content_handle,
                )
                return

        target = self.targets[request.content_type]
        try:
            found = await target.apply_review_status(ctx, request.app_handle, request.content_handle, review_status)
        except NotFoundError as exc:
            logger.info("[MODERATION] %s: target vanished while applying verdict: %s", request.moderation_handle, exc)
            return
        if not found:
            logger.info(
                "[MODERATION] %s: %s %s no longer exists, verdict not applied",
                request.moderation_handle, request.content_type, request.content_handle,
            )

    async def _release_held_verdict(self, ctx: ExecutionContext, request: ModerationRequest) -> None:
        """Apply an earlier Active verdict once ``request`` stops pending without one."""
        target = self.targets[request.content_type]
        stored = await target.read_review_status(ctx, request.app_handle, request.content_handle)
        if stored is None or stored is ReviewStatus.ACTIVE:
            return
        history = await self.moderation_repo.list_for_content(request.app_handle, request.content_type, request.content_handle)
        if review_policy.effective_review_status(stored, history) is not ReviewStatus.ACTIVE:
            return
        if await target.apply_review_status(ctx, request.app_handle, request.content_handle, ReviewStatus.ACTIVE):
            logger.info(
                "[MODERATION] %s: released held Active verdict for %s %s",
                request.moderation_handle, request.content_type, request.content_handle,
            )

    @staticmethod
    def _payload_text(payload: Payload) -> str:
        if isinstance(payload, bytes):
            return payload.decode("utf-8", errors="replace")
        if isinstance(payload, str):
            return payload
        return json.dumps(dict(payload), sort_keys=True, default=str)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read_moderation_request(self, ctx: ExecutionContext, moderation_handle: str) -> ModerationRequest:
        validate_handle(moderation_handle, "moderation_handle")
        request = await self.moderation_repo.read(moderation_handle, ctx.consistency)
        if request is None:
            raise NotFoundError(f"moderation request {moderation_handle} not found")
        return request

    async def read_effective_review_status(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        content_type: ContentType,
        content_handle: str,
    ) -> ReviewStatus:
        """Review status combining the target's stored status with every request for it."""
        validate_handle(app_handle, "app_handle")
        validate_handle(content_handle, "content_handle")
        stored = await self.targets[content_type].read_review_status(ctx, app_handle, content_handle)
        history = await self.moderation_repo.list_for_content(app_handle, content_type, content_handle)
        return review_policy.effective_review_status(stored, history)

    async def redrive_created_requests(self, limit: int = 100) -> int:
        """Queue a submission for every request still in ``created``; returns how many."""
        if self.moderation_queue is None:
            return 0
        requests = await self.moderation_repo.list_by_status(ModerationStatus.CREATED, limit)
        for request in requests:
            await self.moderation_queue.enqueue(moderation_handle=request.moderation_handle)
        if requests:
            logger.info("[MODERATION] Re-queued %d created request(s)", len(requests))
        return len(requests)
