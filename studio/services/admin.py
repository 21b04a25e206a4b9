"""Admin back office: user moderation, provider API keys, stats and audit trail."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from studio.core.clock import Clock, utc_now
from studio.core.exceptions import Forbidden, InternalError, NotFound
from studio.core.permissions import ADMIN_ROLES, Role
from studio.core.security import SecretBox, key_preview
from studio.services.gate import Identity
from studio.services.sessions import SessionManager
from studio.services.views import Page, UserView, page_offset
from studio.storage.base import Store
from studio.storage.records import ApiKeyRecord, AuditLogRecord

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    OPENAI = "openai"
    HUGGINGFACE = "huggingface"
    GEMINI = "gemini"
    STABILITY = "stability"
    REPLICATE = "replicate"


class AuditAction(str, Enum):
    USER_UPDATE = "USER_UPDATE"
    USER_DELETE = "USER_DELETE"
    API_KEY_CREATE = "API_KEY_CREATE"
    API_KEY_UPDATE = "API_KEY_UPDATE"
    API_KEY_DELETE = "API_KEY_DELETE"


@dataclass(frozen=True)
class DashboardStats:
    users_total: int
    users_active: int
    users_new_today: int
    users_new_this_month: int
    photos_total: int
    photos_today: int
    photos_this_month: int


class AdminService:
    """
    Operations behind the /admin routes. Callers are already known to be ADMIN
    or SUPER_ADMIN; finer rules (who may touch admins) are enforced here.
    """

    def __init__(
        self,
        store: Store,
        sessions: SessionManager,
        secret_box: SecretBox,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._secret_box = secret_box
        self._clock = clock

    async def _audit(
        self,
        actor: Identity,
        action: AuditAction,
        resource: str,
        resource_id: str,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> None:
        await self._store.add_audit_log(
            action.value,
            user_id=actor.id,
            resource=resource,
            resource_id=resource_id,
            details=details,
            ip_address=ip_address,
        )

    async def _photo_count(self, user_id: str) -> int:
        _, total = await self._store.list_photos(user_id, limit=0)
        return total

    # -- users ---------------------------------------------------------------

    async def list_users(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        role: Role | None = None,
        is_active: bool | None = None,
    ) -> Page[UserView]:
        users, total = await self._store.list_users(
            search=search,
            role=role,
            is_active=is_active,
            offset=page_offset(page, limit),
            limit=limit,
        )
        views = [
            UserView(
                user=u,
                profile=await self._store.get_profile(u.id),
                photo_count=await self._photo_count(u.id),
            )
            for u in users
        ]
        return Page(items=views, total=total, page=page, limit=limit)

    async def get_user(self, user_id: str) -> UserView:
        user = await self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return UserView(
            user=user,
            profile=await self._store.get_profile(user_id),
            photo_count=await self._photo_count(user_id),
        )

    async def update_user(
        self,
        user_id: str,
        changes: dict[str, Any],
        actor: Identity,
        ip_address: str | None = None,
    ) -> UserView:
        """
        Change role, active or banned state.

        Only a SUPER_ADMIN may grant ADMIN or SUPER_ADMIN, or modify a
        SUPER_ADMIN. Banning, deactivating or changing the role ends every
        session of the target.
        """
        target = await self._store.get_user(user_id)
        if target is None:
            raise NotFound("User not found")

        new_role = Role(changes["role"]) if changes.get("role") is not None else None
        if new_role in ADMIN_ROLES and actor.role != Role.SUPER_ADMIN:
            raise Forbidden("Only Super Admins can create admin accounts")
        if target.role == Role.SUPER_ADMIN and actor.role != Role.SUPER_ADMIN:
            raise Forbidden("Cannot modify Super Admin accounts")

        fields: dict[str, Any] = {}
        if new_role is not None:
            fields["role"] = new_role
        if changes.get("is_active") is not None:
            fields["is_active"] = changes["is_active"]
        if changes.get("is_banned") is True:
            fields["is_banned"] = True
            fields["banned_at"] = self._clock()
            fields["banned_reason"] = changes.get("banned_reason")
        elif changes.get("is_banned") is False:
            fields["is_banned"] = False
            fields["banned_at"] = None
            fields["banned_reason"] = None
        elif changes.get("banned_reason") is not None:
            fields["banned_reason"] = changes["banned_reason"]

        updated = await self._store.update_user(user_id, **fields) if fields else target

        ends_sessions = (
            fields.get("is_banned") is True
            or fields.get("is_active") is False
            or (new_role is not None and new_role != target.role)
        )
        if ends_sessions:
            await self._sessions.revoke_all(user_id)
        if fields.get("is_banned") is True:
            logger.warning("User %s banned by %s", user_id, actor.id)

        await self._audit(
            actor,
            AuditAction.USER_UPDATE,
            "user",
            user_id,
            {k: (v.value if isinstance(v, Enum) else v) for k, v in changes.items() if v is not None},
            ip_address,
        )
        await self._store.commit()
        return UserView(
            user=updated,
            profile=await self._store.get_profile(user_id),
            photo_count=await self._photo_count(user_id),
        )

    async def delete_user(self, user_id: str, actor: Identity, ip_address: str | None = None) -> None:
        """Hard delete. SUPER_ADMIN only, and never of another SUPER_ADMIN."""
        target = await self._store.get_user(user_id)
        if target is None:
            raise NotFound("User not found")
        if actor.role != Role.SUPER_ADMIN:
            raise Forbidden("Only Super Admins can delete users")
        if target.role == Role.SUPER_ADMIN:
            raise Forbidden("Cannot delete Super Admin accounts")

        await self._sessions.revoke_all(user_id)
        await self._store.delete_user(user_id)
        await self._audit(
            actor, AuditAction.USER_DELETE, "user", user_id, {"email": target.email}, ip_address
        )
        await self._store.commit()
        logger.info("User %s deleted by %s", user_id, actor.id)

    async def dashboard_stats(self) -> DashboardStats:
        now = self._clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start_of_month = start_of_day.replace(day=1)
        return DashboardStats(
            users_total=await self._store.count_users(),
            users_active=await self._store.count_users(active_only=True),
            users_new_today=await self._store.count_users(created_since=start_of_day),
            users_new_this_month=await self._store.count_users(created_since=start_of_month),
            photos_total=await self._store.count_photos(),
            photos_today=await self._store.count_photos(created_since=start_of_day),
            photos_this_month=await self._store.count_photos(created_since=start_of_month),
        )

    # -- provider API keys ---------------------------------------------------

    async def list_api_keys(self, actor: Identity) -> list[ApiKeyRecord]:
        return await self._store.list_api_keys(actor.id)

    async def create_api_key(
        self,
        actor: Identity,
        name: str,
        provider: Provider,
        key: str,
        *,
        is_default: bool = False,
        monthly_limit: int | None = None,
        ip_address: str | None = None,
    ) -> ApiKeyRecord:
        """Store ``key`` encrypted; making it the default demotes the previous default."""
        provider = Provider(provider)
        if is_default:
            await self._store.clear_default_api_keys(actor.id, provider.value)
        record = await self._store.create_api_key(
            actor.id,
            name,
            provider.value,
            self._secret_box.encrypt(key),
            key_preview(key),
            is_default=is_default,
            monthly_limit=monthly_limit,
        )
        await self._audit(
            actor,
            AuditAction.API_KEY_CREATE,
            "api_key",
            record.id,
            {"name": name, "provider": provider.value},
            ip_address,
        )
        await self._store.commit()
        return record

    async def update_api_key(
        self,
        key_id: str,
        actor: Identity,
        changes: dict[str, Any],
        ip_address: str | None = None,
    ) -> ApiKeyRecord:
        existing = await self._store.get_api_key(key_id, actor.id)
        if existing is None:
            raise NotFound("API key not found")

        fields = {
            k: v
            for k, v in changes.items()
            if k in ("name", "is_active", "is_default", "monthly_limit") and v is not None
        }
        if changes.get("key"):
            fields["encrypted_key"] = self._secret_box.encrypt(changes["key"])
            fields["key_preview"] = key_preview(changes["key"])
        if fields.get("is_default"):
            await self._store.clear_default_api_keys(actor.id, existing.provider, except_id=key_id)

        updated = await self._store.update_api_key(key_id, **fields) if fields else existing
        await self._audit(
            actor,
            AuditAction.API_KEY_UPDATE,
            "api_key",
            key_id,
            {k: v for k, v in fields.items() if k not in ("encrypted_key", "key_preview")},
            ip_address,
        )
        await self._store.commit()
        return updated

    async def delete_api_key(self, key_id: str, actor: Identity, ip_address: str | None = None) -> None:
        existing = await self._store.get_api_key(key_id, actor.id)
        if existing is None:
            raise NotFound("API key not found")
        await self._store.delete_api_key(key_id)
        await self._audit(
            actor,
            AuditAction.API_KEY_DELETE,
            "api_key",
            key_id,
            {"name": existing.name, "provider": existing.provider},
            ip_address,
        )
        await self._store.commit()

    async def resolve_api_key(self, provider: Provider, owner_id: str | None = None) -> str | None:
        """
        Plaintext of the key to use for ``provider``: the default active key,
        else the newest active one. Records a use. None when no key is set up.
        """
        record = await self._store.find_active_api_key(Provider(provider).value, owner_id)
        if record is None:
            return None
        try:
            plaintext = self._secret_box.decrypt(record.encrypted_key)
        except ValueError as e:
            logger.error("API key %s could not be decrypted; was ENCRYPTION_KEY rotated?", record.id)
            raise InternalError("Stored API key could not be decrypted") from e
        await self._store.record_api_key_usage(record.id, self._clock())
        await self._store.commit()
        return plaintext

    # -- audit log -----------------------------------------------------------

    async def list_audit_logs(
        self,
        *,
        page: int = 1,
        limit: int = 50,
        user_id: str | None = None,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Page[AuditLogRecord]:
        logs, total = await self._store.list_audit_logs(
            user_id=user_id,
            action=action,
            start=start,
            end=end,
            offset=page_offset(page, limit),
            limit=limit,
        )
        return Page(items=logs, total=total, page=page, limit=limit)