"""Self-service profile, photo library and account deletion."""

import logging
from typing import Any

from studio.core.clock import Clock, utc_now
from studio.core.exceptions import NotFound
from studio.services.sessions import SessionManager
from studio.services.views import Page, UserView, page_offset
from studio.storage.base import Store
from studio.storage.records import PhotoRecord

logger = logging.getLogger(__name__)


class UsersService:
    def __init__(self, store: Store, sessions: SessionManager, clock: Clock = utc_now) -> None:
        self._store = store
        self._sessions = sessions
        self._clock = clock

    async def get_profile(self, user_id: str) -> UserView:
        user = await self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return UserView(user=user, profile=await self._store.get_profile(user_id))

    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> UserView:
        """Create the profile on first update; only the given fields change."""
        user = await self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        profile = await self._store.upsert_profile(user_id, **changes)
        await self._store.commit()
        return UserView(user=user, profile=profile)

    async def list_photos(
        self,
        user_id: str,
        *,
        page: int = 1,
        limit: int = 20,
        favorite: bool | None = None,
        search: str | None = None,
    ) -> Page[PhotoRecord]:
        photos, total = await self._store.list_photos(
            user_id,
            favorite=favorite,
            search=search,
            offset=page_offset(page, limit),
            limit=limit,
        )
        return Page(items=photos, total=total, page=page, limit=limit)

    async def delete_account(self, user_id: str) -> None:
        """
        Soft delete: deactivate, anonymise the email and end every session.

        The row is kept so photos and audit history stay attributable.
        """
        user = await self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        stamp = int(self._clock().timestamp() * 1000)
        await self._store.update_user(
            user_id,
            is_active=False,
            email=f"deleted_{stamp}_{user_id[:8]}@deleted.com",
        )
        await self._sessions.revoke_all(user_id)
        await self._store.commit()
        logger.info("User %s deleted their account", user_id)
