"""
Push notification hub interface.

One hub exists per (platform, app). Delivery is fire-and-forget: a hub
reports whether it accepted a send, never whether a device received it.
"""

from __future__ import annotations

from typing import Callable, List, Protocol

from socialmod.datatypes.push_datatypes import PushHubConfig
from socialmod.util.handles import new_handle
from socialmod.util.logger import get_logger

logger = get_logger("push_hub")


class PushHub(Protocol):
    config: PushHubConfig

    async def create(self) -> None:
        ...

    async def delete(self) -> None:
        ...

    async def create_registration(self, registration_id: str, tags: List[str]) -> str:
        """Register a device; returns the hub's registration id."""
        ...

    async def delete_registration(self, hub_registration_id: str) -> None:
        ...

    async def send_notification(self, tags: List[str], message: str, activity_handle: str) -> None:
        ...


PushHubFactory = Callable[[PushHubConfig], PushHub]


class LoggingPushHub:
    """Hub that records every call in the log; used where no real hub is configured."""

    def __init__(self, config: PushHubConfig) -> None:
        self.config = config

    async def create(self) -> None:
        logger.info("[PUSH HUB] Created %s hub for %s at %s", self.config.platform_type, self.config.app_handle, self.config.path)

    async def delete(self) -> None:
        logger.info("[PUSH HUB] Deleted %s hub for %s", self.config.platform_type, self.config.app_handle)

    async def create_registration(self, registration_id: str, tags: List[str]) -> str:
        hub_registration_id = new_handle()
        logger.info("[PUSH HUB] Registered %s as %s with tags %s", registration_id, hub_registration_id, tags)
        return hub_registration_id

    async def delete_registration(self, hub_registration_id: str) -> None:
        logger.info("[PUSH HUB] Deleted registration %s", hub_registration_id)

    async def send_notification(self, tags: List[str], message: str, activity_handle: str) -> None:
        logger.info("[PUSH HUB] %s notification for %s (activity %s): %s", self.config.platform_type, tags, activity_handle, message)
