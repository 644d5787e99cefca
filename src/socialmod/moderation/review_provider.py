"""
External review provider client and payload handling.

The provider is untrusted: callback payloads are parsed defensively and any
structure we do not recognise is rejected as invalid input. Submissions are
keyed by the moderation handle, which the provider treats as an idempotency
key. A repeated submission is answered with HTTP 409 and counts as success.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import uuid
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union
from urllib.parse import urlsplit

import requests

from socialmod.datatypes.moderation_datatypes import ProviderVerdict, ReviewResult, SubmissionReceipt
from socialmod.errors import InvalidInputError, ProviderUnavailableError
from socialmod.moderation.review_policy import combine_verdicts
from socialmod.util.logger import get_logger

logger = get_logger("review_provider")

_LOOPBACK_HOSTS = {"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"}


def _is_loopback_host(host: Optional[str]) -> bool:
    if not host:
        return True
    if host.lower() in _LOOPBACK_HOSTS:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def validate_callback_uri(uri: str) -> str:
    """Callback URIs must be absolute https URIs on a non-loopback host."""
    if not uri or not isinstance(uri, str):
        raise InvalidInputError("callback_uri is required")
    parts = urlsplit(uri)
    if parts.scheme != "https":
        raise InvalidInputError(f"callback_uri must use https: {uri}")
    if _is_loopback_host(parts.hostname):
        raise InvalidInputError(f"callback_uri must not point at a loopback host: {uri}")
    return uri


def validate_content_uri(uri: str) -> str:
    """Content URIs must be http(s) and reachable by the provider (no loopback, no file)."""
    parts = urlsplit(uri or "")
    if parts.scheme not in ("http", "https"):
        raise InvalidInputError(f"content uri must be http or https: {uri!r}")
    if _is_loopback_host(parts.hostname):
        raise InvalidInputError(f"content uri must not point at a loopback host: {uri}")
    return uri


class ReviewContent:
    """Text and image items submitted for one review job."""

    def __init__(self) -> None:
        self.items: List[Dict[str, str]] = []

    def add_text(self, text: Optional[str]) -> "ReviewContent":
        if not text or not text.strip():
            raise InvalidInputError("review text must not be empty")
        self.items.append({"type": "text", "value": text, "external_id": uuid.uuid4().hex})
        return self

    def add_image_uri(self, uri: str) -> "ReviewContent":
        self.items.append({"type": "image", "value": validate_content_uri(uri), "external_id": uuid.uuid4().hex})
        return self

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_json(self) -> List[Dict[str, str]]:
        return [dict(item) for item in self.items]


def parse_review_result(payload: Union[Mapping[str, Any], str, bytes]) -> ReviewResult:
    """
    Parse a provider callback payload.

    Expected shape::

        {"status": "completed" | "failed",
         "items": [{"verdict": "clean" | "mature" | "banned"}, ...]}

    Unknown verdict strings count as inconclusive.

    Raises:
        InvalidInputError: If the payload is not JSON or lacks the fields above.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise InvalidInputError("review payload is not valid JSON") from exc
    if not isinstance(payload, Mapping):
        raise InvalidInputError("review payload must be a JSON object")

    status = payload.get("status")
    if not isinstance(status, str):
        raise InvalidInputError("review payload is missing 'status'")
    if status.lower() == "failed":
        return ReviewResult(job_failed=True, verdict=ProviderVerdict.INCONCLUSIVE)
    if status.lower() != "completed":
        raise InvalidInputError(f"unsupported review job status {status!r}")

    items = payload.get("items")
    if not isinstance(items, list):
        raise InvalidInputError("review payload is missing 'items'")

    verdicts: List[ProviderVerdict] = []
    for item in items:
        if not isinstance(item, Mapping):
            raise InvalidInputError("review payload items must be objects")
        raw = str(item.get("verdict", "")).lower()
        try:
            verdict = ProviderVerdict(raw)
        except ValueError:
            logger.warning("[REVIEW PROVIDER] Unknown verdict %r treated as inconclusive", raw)
            verdict = ProviderVerdict.INCONCLUSIVE
        verdicts.append(verdict)

    return ReviewResult(job_failed=False, verdict=combine_verdicts(verdicts))


class ReviewProvider(Protocol):
    """Interface of the external review provider."""

    async def submit(self, moderation_handle: str, content: ReviewContent, callback_uri: str) -> SubmissionReceipt:
        ...


class HttpReviewProvider:
    """
    Review provider reached over HTTPS with ``requests``.

    Args:
        service_url: Base URL of the provider API.
        subscription_key: API key sent on every request.
        timeout_seconds: Connect/read timeout of each HTTP call.
    """

    def __init__(self, service_url: str, subscription_key: Optional[str], timeout_seconds: float = 10.0) -> None:
        if not service_url:
            raise ValueError("review provider service_url is not configured")
        self.service_url = service_url.rstrip("/")
        self.subscription_key = subscription_key
        self.timeout_seconds = timeout_seconds
        self._session = requests.Session()

    def _post(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> requests.Response:
        return self._session.post(url, json=body, headers=headers, timeout=self.timeout_seconds)

    async def submit(self, moderation_handle: str, content: ReviewContent, callback_uri: str) -> SubmissionReceipt:
        """
        Create a review job.

        Raises:
            ProviderUnavailableError: On connection errors, timeouts, HTTP 429 or 5xx.
            InvalidInputError: On any other rejected request.
        """
        body = {
            "external_id": moderation_handle,
            "callback_url": validate_callback_uri(callback_uri),
            "items": content.to_json(),
        }
        headers = {"Idempotency-Key": moderation_handle}
        if self.subscription_key:
            headers["Subscription-Key"] = self.subscription_key

        try:
            response = await asyncio.to_thread(self._post, f"{self.service_url}/jobs", body, headers)
        except requests.RequestException as exc:
            raise ProviderUnavailableError(f"review provider request failed: {exc}") from exc

        if response.status_code == 409:
            logger.info("[REVIEW PROVIDER] Job for %s already submitted", moderation_handle)
            return SubmissionReceipt(job_id=self._job_id(response), already_submitted=True)
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailableError(f"review provider returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise InvalidInputError(f"review provider rejected job for {moderation_handle}: HTTP {response.status_code}")

        job_id = self._job_id(response)
        logger.debug("[REVIEW PROVIDER] Submitted %s as job %s", moderation_handle, job_id)
        return SubmissionReceipt(job_id=job_id)

    @staticmethod
    def _job_id(response: requests.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        job_id = body.get("job_id") if isinstance(body, dict) else None
        return str(job_id) if job_id is not None else None

    def close(self) -> None:
        self._session.close()
