"""
Validity window of push registrations.

A registration is valid from 24 hours in the future (client clock skew) to
30 days in the past. Naive datetimes are interpreted as UTC.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

REGISTRATION_TTL = timedelta(days=30)
MAX_CLOCK_SKEW = timedelta(hours=24)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def has_registration_expired(last_updated_time: datetime, now: Optional[datetime] = None) -> bool:
    """True if the registration was last refreshed more than 30 days before ``now``."""
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return now - _as_utc(last_updated_time) > REGISTRATION_TTL


def is_registration_too_new(last_updated_time: datetime, now: Optional[datetime] = None) -> bool:
    """True if the registration claims a time more than 24 hours after ``now``."""
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return _as_utc(last_updated_time) - now > MAX_CLOCK_SKEW
