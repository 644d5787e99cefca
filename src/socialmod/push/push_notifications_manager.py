"""
Push notification hubs and device registrations.

Registrations are tagged with the user and app handles, so a notification
for a user is one send per platform hub rather than one per device.
Registrations outside the validity window are refused on create and pruned
when found during a send.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.datatypes.push_datatypes import PlatformType, PushHubConfig, PushRegistration
from socialmod.errors import InvalidInputError, NotFoundError, ProviderUnavailableError
from socialmod.push.push_hub import LoggingPushHub, PushHub, PushHubFactory
from socialmod.push.registration_lifecycle import has_registration_expired, is_registration_too_new
from socialmod.repositories.push_registration_repo import PushRegistrationRepo
from socialmod.util.handles import validate_handle
from socialmod.util.logger import get_logger

logger = get_logger("push_notifications_manager")


def registration_tags(user_handle: str, app_handle: str) -> List[str]:
    return [f"userHandle:{user_handle}", f"appHandle:{app_handle}"]


class PushNotificationsManager:
    """
    Manage push hubs per (platform, app) and the device registrations behind them.

    Args:
        repo: Hub credentials and registrations.
        hub_factory: Builds a hub client from its stored credentials.
    """

    def __init__(self, repo: PushRegistrationRepo, hub_factory: PushHubFactory = LoggingPushHub) -> None:
        self.repo = repo
        self.hub_factory = hub_factory
        self._hubs: Dict[Tuple[PlatformType, str], PushHub] = {}

    # ------------------------------------------------------------------
    # Hubs
    # ------------------------------------------------------------------

    async def create_hub(
        self,
        ctx: ExecutionContext,
        platform_type: PlatformType,
        app_handle: str,
        path: str,
        key: Optional[str] = None,
    ) -> PushHub:
        """
        Create the hub for ``(platform_type, app_handle)`` and store its credentials.

        Raises:
            InvalidInputError: On an unknown platform, an empty path, or a
                missing key on platforms other than iOS (which authenticates
                with a certificate at ``path``).
        """
        if not isinstance(platform_type, PlatformType):
            raise InvalidInputError(f"unsupported platform type: {platform_type!r}")
        validate_handle(app_handle, "app_handle")
        if not path:
            raise InvalidInputError("hub path is required")
        if platform_type is not PlatformType.IOS and not key:
            raise InvalidInputError(f"a key is required for {platform_type} hubs")

        config = PushHubConfig(platform_type=platform_type, app_handle=app_handle, path=path, key=key)
        hub = self.hub_factory(config)
        await hub.create()
        await self.repo.upsert_hub(config)
        self._hubs[(platform_type, app_handle)] = hub
        logger.info("[PUSH] Created %s hub for %s [%s]", platform_type, app_handle, ctx)
        return hub

    async def delete_hub(self, ctx: ExecutionContext, platform_type: PlatformType, app_handle: str) -> None:
        hub = await self._get_hub(platform_type, app_handle)
        await hub.delete()
        await self.repo.delete_hub(platform_type, app_handle)
        self._hubs.pop((platform_type, app_handle), None)
        logger.info("[PUSH] Deleted %s hub for %s [%s]", platform_type, app_handle, ctx)

    async def delete_all_hubs(self, ctx: ExecutionContext, app_handle: str) -> int:
        """Delete every platform's hub for ``app_handle``; returns how many existed."""
        deleted = 0
        for platform_type in PlatformType:
            try:
                await self.delete_hub(ctx, platform_type, app_handle)
            except NotFoundError:
                continue
            deleted += 1
        return deleted

    async def _get_hub(self, platform_type: PlatformType, app_handle: str) -> PushHub:
        hub = self._hubs.get((platform_type, app_handle))
        if hub is not None:
            return hub
        config = await self.repo.read_hub(platform_type, app_handle)
        if config is None:
            raise NotFoundError(f"no {platform_type} hub for app {app_handle}")
        hub = self.hub_factory(config)
        self._hubs[(platform_type, app_handle)] = hub
        return hub

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------

    async def create_registration(
        self,
        ctx: ExecutionContext,
        user_handle: str,
        app_handle: str,
        platform_type: PlatformType,
        registration_id: str,
        language: str,
        last_updated_time: datetime,
    ) -> PushRegistration:
        """
        Register (or re-register) a device, superseding any previous registration.

        Raises:
            InvalidInputError: On bad handles, an unsupported platform, or a
                ``last_updated_time`` that is expired or too far in the future.
            NotFoundError: If no hub exists for the platform and app.
        """
        validate_handle(user_handle, "user_handle")
        validate_handle(app_handle, "app_handle")
        if not registration_id:
            raise InvalidInputError("registration_id is required")
        if not isinstance(platform_type, PlatformType):
            raise InvalidInputError(f"unsupported platform type: {platform_type!r}")
        if has_registration_expired(last_updated_time):
            raise InvalidInputError(f"registration time {last_updated_time.isoformat()} has expired")
        if is_registration_too_new(last_updated_time):
            raise InvalidInputError(f"registration time {last_updated_time.isoformat()} is in the future")

        hub = await self._get_hub(platform_type, app_handle)
        previous = await self.repo.read(user_handle, app_handle, registration_id)
        if previous is not None:
            await self._forget_hub_registration(previous)

        hub_registration_id = await hub.create_registration(registration_id, registration_tags(user_handle, app_handle))
        registration = PushRegistration(
            user_handle=user_handle,
            app_handle=app_handle,
            platform_type=platform_type,
            registration_id=registration_id,
            hub_registration_id=hub_registration_id,
            language=language or "",
            last_updated_time=last_updated_time,
        )
        await self.repo.upsert(registration)
        logger.info("[PUSH] Registered %s device for %s/%s [%s]", platform_type, app_handle, user_handle, ctx)
        return registration

    async def read_registration(self, ctx: ExecutionContext, user_handle: str, app_handle: str, registration_id: str) -> PushRegistration:
        registration = await self.repo.read(user_handle, app_handle, registration_id)
        if registration is None:
            raise NotFoundError(f"registration {registration_id} not found")
        return registration

    async def read_registrations(self, ctx: ExecutionContext, user_handle: str, app_handle: str) -> List[PushRegistration]:
        return await self.repo.list_for_user(user_handle, app_handle)

    async def delete_registration(self, ctx: ExecutionContext, user_handle: str, app_handle: str, registration_id: str) -> None:
        registration = await self.read_registration(ctx, user_handle, app_handle, registration_id)
        await self._forget_hub_registration(registration)
        await self.repo.delete(user_handle, app_handle, registration_id)
        logger.info("[PUSH] Unregistered %s for %s/%s [%s]", registration_id, app_handle, user_handle, ctx)

    async def delete_user_registrations(self, ctx: ExecutionContext, user_handle: str, app_handle: str) -> int:
        for registration in await self.repo.list_for_user(user_handle, app_handle):
            await self._forget_hub_registration(registration)
        return await self.repo.delete_for_user(user_handle, app_handle)

    async def _forget_hub_registration(self, registration: PushRegistration) -> None:
        """Best-effort removal of a registration from its hub."""
        try:
            hub = await self._get_hub(registration.platform_type, registration.app_handle)
            await hub.delete_registration(registration.hub_registration_id)
        except (NotFoundError, ProviderUnavailableError) as exc:
            logger.warning("[PUSH] Could not remove hub registration %s: %s", registration.hub_registration_id, exc)

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_notification(
        self,
        ctx: ExecutionContext,
        user_handle: str,
        app_handle: str,
        activity_handle: str,
        message: str,
    ) -> None:
        """
        Fire-and-forget notification to every device of a user.

        Stale registrations are deleted on the way. Hub failures are logged
        and never raised to the caller.
        """
        validate_handle(user_handle, "user_handle")
        validate_handle(app_handle, "app_handle")

        platforms: List[PlatformType] = []
        for registration in await self.repo.list_for_user(user_handle, app_handle):
            if has_registration_expired(registration.last_updated_time) or is_registration_too_new(registration.last_updated_time):
                logger.info("[PUSH] Pruning stale registration %s for %s/%s", registration.registration_id, app_handle, user_handle)
                try:
                    await self._forget_hub_registration(registration)
                    await self.repo.delete(user_handle, app_handle, registration.registration_id)
                except Exception:
                    logger.exception("[PUSH] Could not prune registration %s", registration.registration_id)
                continue
            if registration.platform_type not in platforms:
                platforms.append(registration.platform_type)

        tags = registration_tags(user_handle, app_handle)
        for platform_type in platforms:
            try:
                hub = await self._get_hub(platform_type, app_handle)
                await hub.send_notification(tags, message, activity_handle)
            except Exception:
                logger.exception("[PUSH] %s notification for %s/%s failed", platform_type, app_handle, user_handle)
        logger.debug("[PUSH] Sent activity %s to %d platform(s) [%s]", activity_handle, len(platforms), ctx)
