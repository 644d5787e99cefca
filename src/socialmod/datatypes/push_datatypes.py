"""
Push notification registration structures.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class PlatformType(Enum):
    """Device platforms supported by the push hubs."""

    WINDOWS = "windows"
    ANDROID = "android"
    IOS = "ios"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class PushRegistration:
    """A device registration for one (user, app) pair.

    Attributes:
        registration_id: Client-side (OS-issued) registration identifier.
        hub_registration_id: Identifier returned by the push hub.
        last_updated_time: UTC time the client last refreshed the registration.
    """
    user_handle: str
    app_handle: str
    platform_type: PlatformType
    registration_id: str
    hub_registration_id: str
    language: str
    last_updated_time: datetime


@dataclass(slots=True)
class PushHubConfig:
    """Credentials for one (platform, app) push hub."""
    platform_type: PlatformType
    app_handle: str
    path: str
    key: str | None = None
