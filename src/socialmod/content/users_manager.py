"""User profiles within an app."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from socialmod.datatypes.content_datatypes import ContentType, ReviewStatus, UserProfile
from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import NotFoundError
from socialmod.repositories.content_repo import UsersRepo
from socialmod.repositories.search_index_repo import SearchIndexRepo
from socialmod.util.handles import new_handle, validate_blob_handle, validate_handle
from socialmod.util.logger import get_logger

if TYPE_CHECKING:
    from socialmod.moderation.moderation_manager import ModerationManager

logger = get_logger("users_manager")


def user_search_handle(user_handle: str, app_handle: str) -> str:
    """Search document handle of a profile; user handles are only unique per app."""
    return f"{user_handle}@{app_handle}"


class UsersManager:
    """Create, read and delete user profiles; apply review statuses."""

    def __init__(self, users_repo: UsersRepo, search_repo: SearchIndexRepo) -> None:
        self.users_repo = users_repo
        self.search_repo = search_repo
        self._moderation: Optional["ModerationManager"] = None

    def bind_moderation(self, moderation_manager: "ModerationManager") -> None:
        self._moderation = moderation_manager

    async def create_user_profile(
        self,
        ctx: ExecutionContext,
        app_handle: str,
        user_handle: str,
        first_name: str = "",
        last_name: str = "",
        bio: str = "",
        photo_handle: Optional[str] = None,
    ) -> UserProfile:
        validate_handle(app_handle, "app_handle")
        validate_handle(user_handle, "user_handle")
        if photo_handle is not None:
            validate_blob_handle(photo_handle, "photo_handle")

        profile = await self.users_repo.insert(
            UserProfile(
                user_handle=user_handle,
                app_handle=app_handle,
                first_name=first_name,
                last_name=last_name,
                bio=bio,
                photo_handle=photo_handle,
            )
        )
        await self.index_profile(profile)
        logger.info("[USERS] Created profile %s in %s [%s]", user_handle, app_handle, ctx)

        if self._moderation is not None:
            moderation_handle = new_handle()
            await self._moderation.create_user_moderation_request(
                ctx,
                app_handle,
                moderation_handle,
                user_handle,
                self._moderation.callback_uri_for(moderation_handle),
            )
        return profile

    async def read_user_profile(self, ctx: ExecutionContext, user_handle: str, app_handle: str) -> UserProfile:
        validate_handle(user_handle, "user_handle")
        validate_handle(app_handle, "app_handle")
        profile = await self.users_repo.read(user_handle, app_handle, ctx.consistency)
        if profile is None:
            raise NotFoundError(f"user {user_handle} not found in app {app_handle}")
        return profile

    async def update_review_status(
        self,
        ctx: ExecutionContext,
        user_handle: str,
        app_handle: str,
        review_status: ReviewStatus,
    ) -> bool:
        changed = await self.users_repo.update_review_status(user_handle, app_handle, review_status)
        logger.info("[USERS] %s review status -> %s: %s [%s]", user_handle, review_status, "applied" if changed else "not applied", ctx)
        return changed

    async def index_profile(self, profile: UserProfile) -> None:
        text = " ".join(part for part in (profile.first_name, profile.last_name, profile.bio) if part)
        await self.search_repo.index(
            user_search_handle(profile.user_handle, profile.app_handle),
            profile.app_handle,
            ContentType.USER,
            text,
            {"user_handle": profile.user_handle},
        )

    async def remove_from_index(self, user_handle: str, app_handle: str) -> None:
        await self.search_repo.remove(user_search_handle(user_handle, app_handle))

    async def delete_user_profile(self, ctx: ExecutionContext, user_handle: str, app_handle: str) -> None:
        validate_handle(user_handle, "user_handle")
        validate_handle(app_handle, "app_handle")
        if not await self.users_repo.delete(user_handle, app_handle):
            raise NotFoundError(f"user {user_handle} not found in app {app_handle}")
        await self.remove_from_index(user_handle, app_handle)
        logger.info("[USERS] Deleted profile %s in %s [%s]", user_handle, app_handle, ctx)
