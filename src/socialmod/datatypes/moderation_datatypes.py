"""
Moderation request and provider result structures.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from socialmod.datatypes.content_datatypes import ContentType, ReviewStatus
from socialmod.datatypes.image_datatypes import ImageType


class ModerationStatus(Enum):
    """Lifecycle state of a moderation request.

    ``CREATED`` and ``SUBMITTED`` are pending; the other states are terminal.
    ``FAILED`` records a provider job failure or an inconclusive verdict;
    ``ABANDONED`` records that there was nothing left to review when the
    request came up for submission.
    """

    CREATED = "created"
    SUBMITTED = "submitted"
    RESULT_RECEIVED = "result_received"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def is_pending(self) -> bool:
        return self in (ModerationStatus.CREATED, ModerationStatus.SUBMITTED)

    def __str__(self) -> str:
        return self.value


class ProviderVerdict(Enum):
    """Verdict reported by the review provider for one item or a whole job."""

    CLEAN = "clean"
    MATURE = "mature"
    BANNED = "banned"
    INCONCLUSIVE = "inconclusive"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class ModerationRequest:
    """One row of the ``moderation_requests`` table.

    For image requests ``content_handle`` is the blob handle; for user
    requests it is the user handle.
    """
    moderation_handle: str
    app_handle: str
    content_type: ContentType
    content_handle: str
    callback_uri: str
    status: ModerationStatus = ModerationStatus.CREATED
    review_status: ReviewStatus = ReviewStatus.UNKNOWN
    user_handle: Optional[str] = None
    image_type: Optional[ImageType] = None
    created_time: float = 0.0
    provider_job_id: Optional[str] = None
    submitted_time: Optional[float] = None
    result_time: Optional[float] = None
    result_payload: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ReviewResult:
    """Parsed provider callback payload."""
    job_failed: bool
    verdict: ProviderVerdict


@dataclass(frozen=True, slots=True)
class SubmissionReceipt:
    """Provider acknowledgement of a submitted review job."""
    job_id: Optional[str]
    already_submitted: bool = False
