"""
Pure review-status policy.

Rules:

* Rejected wins. Once a target is rejected, by its stored status or by any
  moderation request, nothing moves it back to Active. A later Active
  verdict does not lift an earlier rejection either.
* Pending blocks Active. An Active verdict is not applied while a request
  created after it for the same target is still pending.
* Otherwise the most recently created resolved request is authoritative.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from socialmod.datatypes.content_datatypes import ReviewStatus
from socialmod.datatypes.moderation_datatypes import ModerationRequest, ModerationStatus, ProviderVerdict

_SEVERITY = {
    ProviderVerdict.CLEAN: 0,
    ProviderVerdict.INCONCLUSIVE: 1,
    ProviderVerdict.MATURE: 2,
    ProviderVerdict.BANNED: 3,
}


def combine_verdicts(verdicts: Iterable[ProviderVerdict]) -> ProviderVerdict:
    """Most severe verdict among ``verdicts``; INCONCLUSIVE if there are none.

    An inconclusive item outranks clean and is itself outranked by mature and
    banned, so one unreadable item never makes a job look clean.
    """
    result: Optional[ProviderVerdict] = None
    for verdict in verdicts:
        if result is None or _SEVERITY[verdict] > _SEVERITY[result]:
            result = verdict
    return result if result is not None else ProviderVerdict.INCONCLUSIVE


def verdict_to_review_status(verdict: ProviderVerdict, mature_content_allowed: bool) -> Optional[ReviewStatus]:
    """Map a provider verdict to a review status under the app's mature-content policy.

    Returns:
        None for an inconclusive verdict.
    """
    if verdict is ProviderVerdict.BANNED:
        return ReviewStatus.REJECTED
    if verdict is ProviderVerdict.MATURE:
        return ReviewStatus.ACTIVE if mature_content_allowed else ReviewStatus.REJECTED
    if verdict is ProviderVerdict.CLEAN:
        return ReviewStatus.ACTIVE
    return None


def later_pending_request_exists(requests: Sequence[ModerationRequest], moderation_handle: str) -> bool:
    """
    True if a request created after ``moderation_handle`` is still pending.

    Args:
        requests: Every request for one target, oldest first.
    """
    seen = False
    for request in requests:
        if seen and request.status.is_pending:
            return True
        if request.moderation_handle == moderation_handle:
            seen = True
    return False


def effective_review_status(stored: Optional[ReviewStatus], requests: Sequence[ModerationRequest]) -> ReviewStatus:
    """
    Combine a target's stored status with its moderation history.

    Args:
        stored: Status stored on the target; None if the target is gone.
        requests: Every request for the target, oldest first.
    """
    if stored is ReviewStatus.REJECTED or any(r.review_status is ReviewStatus.REJECTED for r in requests):
        return ReviewStatus.REJECTED

    latest_resolved: Optional[int] = None
    for index, request in enumerate(requests):
        if request.status is ModerationStatus.RESULT_RECEIVED:
            latest_resolved = index

    if latest_resolved is not None:
        blocked = any(r.status.is_pending for r in requests[latest_resolved + 1:])
        if not blocked:
            return requests[latest_resolved].review_status

    return stored if stored is not None else ReviewStatus.UNKNOWN
