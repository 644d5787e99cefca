"""
Opaque forward-only feed cursors.

A cursor wraps the rowid of the last item returned; the next page starts
strictly after it. Callers must treat the string as opaque.
"""

from __future__ import annotations

import base64
import binascii
from typing import Optional

from socialmod.errors import InvalidInputError

_PREFIX = "r:"
MAX_FEED_LIMIT = 100


def encode_cursor(rowid: int) -> str:
    return base64.urlsafe_b64encode(f"{_PREFIX}{rowid}".encode("ascii")).decode("ascii")


def decode_cursor(cursor: Optional[str]) -> int:
    """Return the rowid to continue after; 0 for the first page."""
    if not cursor:
        return 0
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("ascii")
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise InvalidInputError(f"malformed cursor: {cursor!r}") from exc
    if not raw.startswith(_PREFIX) or not raw[len(_PREFIX):].isdigit():
        raise InvalidInputError(f"malformed cursor: {cursor!r}")
    return int(raw[len(_PREFIX):])


def validate_limit(limit: int) -> int:
    if not isinstance(limit, int) or limit <= 0:
        raise InvalidInputError("limit must be a positive integer")
    return min(limit, MAX_FEED_LIMIT)
