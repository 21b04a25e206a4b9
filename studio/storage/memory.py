"""Dict-backed store for tests and local experiments.

No method awaits between reading and writing shared state, so every operation
is atomic with respect to other coroutines on the same event loop.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any

from studio.core.clock import Clock, utc_now
from studio.core.permissions import Role
from studio.storage.base import (
    API_KEY_UPDATABLE_FIELDS,
    PROFILE_FIELDS,
    USER_UPDATABLE_FIELDS,
    Store,
    check_fields,
)
from studio.storage.errors import ConstraintViolation
from studio.storage.records import (
    ApiKeyRecord,
    AuditLogRecord,
    PhotoRecord,
    ProfileRecord,
    RefreshTokenRecord,
    SecretTokenRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


def _page(items: list, offset: int, limit: int) -> tuple[list, int]:
    return items[offset : offset + limit], len(items)


class MemoryStore(Store):
    """Minimal in-memory backing store."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self.users: dict[str, UserRecord] = {}
        self.profiles: dict[str, ProfileRecord] = {}
        self.refresh_tokens: dict[str, RefreshTokenRecord] = {}
        self.secret_tokens: dict[str, SecretTokenRecord] = {}
        self.photos: dict[str, PhotoRecord] = {}
        self.api_keys: dict[str, ApiKeyRecord] = {}
        self.audit_logs: list[AuditLogRecord] = []

    # -- users ---------------------------------------------------------------

    def _email_taken(self, email: str, exclude_id: str | None = None) -> bool:
        return any(u.email == email and u.id != exclude_id for u in self.users.values())

    async def create_user(
        self,
        email: str,
        password_hash: str | None,
        role: Role = Role.USER,
        *,
        email_verified: bool = False,
    ) -> UserRecord:
        email = email.lower()
        if self._email_taken(email):
            raise ConstraintViolation("email already exists", {"field": "email"})
        now = self._clock()
        user = UserRecord(
            id=_new_id(),
            email=email,
            password_hash=password_hash,
            role=Role(role),
            email_verified=email_verified,
            email_verified_at=now if email_verified else None,
            is_active=True,
            is_banned=False,
            created_at=now,
        )
        self.users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> UserRecord | None:
        return self.users.get(user_id)

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        email = email.lower()
        return next((u for u in self.users.values() if u.email == email), None)

    async def update_user(self, user_id: str, **fields: Any) -> UserRecord | None:
        check_fields(fields, USER_UPDATABLE_FIELDS)
        user = self.users.get(user_id)
        if user is None:
            return None
        if "email" in fields:
            fields["email"] = fields["email"].lower()
            if self._email_taken(fields["email"], exclude_id=user_id):
                raise ConstraintViolation("email already exists", {"field": "email"})
        if "role" in fields:
            fields["role"] = Role(fields["role"])
        updated = replace(user, **fields)
        self.users[user_id] = updated
        return updated

    async def record_login(self, user_id: str, at: datetime) -> None:
        user = self.users.get(user_id)
        if user is not None:
            self.users[user_id] = replace(user, last_login_at=at, login_count=user.login_count + 1)

    async def delete_user(self, user_id: str) -> bool:
        if self.users.pop(user_id, None) is None:
            return False
        self.profiles.pop(user_id, None)
        for store in (self.refresh_tokens, self.secret_tokens, self.photos):
            for key in [k for k, v in store.items() if v.user_id == user_id]:
                del store[key]
        for key in [k for k, v in self.api_keys.items() if v.owner_id == user_id]:
            del self.api_keys[key]
        self.audit_logs = [
            replace(log, user_id=None) if log.user_id == user_id else log for log in self.audit_logs
        ]
        return True

    def _matches_search(self, user: UserRecord, needle: str) -> bool:
        profile = self.profiles.get(user.id)
        haystack = [user.email]
        if profile is not None:
            haystack += [profile.first_name or "", profile.last_name or ""]
        return any(needle in value.lower() for value in haystack)

    async def list_users(
        self,
        *,
        search: str | None = None,
        role: Role | None = None,
        is_active: bool | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[UserRecord], int]:
        users = list(self.users.values())
        if search:
            needle = search.lower()
            users = [u for u in users if self._matches_search(u, needle)]
        if role is not None:
            users = [u for u in users if u.role == Role(role)]
        if is_active is not None:
            users = [u for u in users if u.is_active == is_active]
        users.sort(key=lambda u: u.created_at, reverse=True)
        return _page(users, offset, limit)

    async def count_users(
        self, *, active_only: bool = False, created_since: datetime | None = None
    ) -> int:
        users = self.users.values()
        if active_only:
            users = [u for u in users if u.is_active and not u.is_banned]
        if created_since is not None:
            users = [u for u in users if u.created_at >= created_since]
        return len(list(users))

    # -- profiles ------------------------------------------------------------

    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        return self.profiles.get(user_id)

    async def upsert_profile(self, user_id: str, **fields: Any) -> ProfileRecord:
        check_fields(fields, PROFILE_FIELDS)
        if user_id not in self.users:
            raise ConstraintViolation("user does not exist", {"field": "user_id"})
        current = self.profiles.get(user_id) or ProfileRecord(user_id=user_id)
        profile = replace(current, updated_at=self._clock(), **fields)
        self.profiles[user_id] = profile
        return profile

    # -- refresh tokens ------------------------------------------------------

    async def add_refresh_token(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        *,
        ip_address: str | None = None,
        device_info: str | None = None,
    ) -> RefreshTokenRecord:
        if token_hash in self.refresh_tokens:
            raise ConstraintViolation("refresh token already stored")
        record = RefreshTokenRecord(
            id=_new_id(),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=self._clock(),
            ip_address=ip_address,
            device_info=device_info,
        )
        self.refresh_tokens[token_hash] = record
        return record

    async def consume_refresh_token(self, token_hash: str, now: datetime) -> RefreshTokenRecord | None:
        record = self.refresh_tokens.pop(token_hash, None)
        if record is None or record.expires_at <= now:
            return None
        return record

    async def delete_refresh_tokens(self, user_id: str, token_hash: str | None = None) -> int:
        doomed = [
            h
            for h, r in self.refresh_tokens.items()
            if r.user_id == user_id and (token_hash is None or h == token_hash)
        ]
        for h in doomed:
            del self.refresh_tokens[h]
        return len(doomed)

    async def count_refresh_tokens(self, user_id: str) -> int:
        return sum(1 for r in self.refresh_tokens.values() if r.user_id == user_id)

    async def purge_expired_refresh_tokens(self, now: datetime) -> int:
        doomed = [h for h, r in self.refresh_tokens.items() if r.expires_at <= now]
        for h in doomed:
            del self.refresh_tokens[h]
        return len(doomed)

    # -- one-time secret tokens ----------------------------------------------

    async def add_secret_token(
        self, user_id: str, purpose: str, token_hash: str, expires_at: datetime
    ) -> SecretTokenRecord:
        record = SecretTokenRecord(
            id=_new_id(),
            user_id=user_id,
            purpose=purpose,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=self._clock(),
        )
        self.secret_tokens[record.id] = record
        return record

    async def consume_secret_token(self, token_hash: str, purpose: str, now: datetime) -> str | None:
        for record in self.secret_tokens.values():
            if (
                record.token_hash == token_hash
                and record.purpose == purpose
                and record.used_at is None
                and record.expires_at > now
            ):
                self.secret_tokens[record.id] = replace(record, used_at=now)
                return record.user_id
        return None

    async def delete_secret_tokens(self, user_id: str, purpose: str) -> int:
        doomed = [
            k for k, r in self.secret_tokens.items() if r.user_id == user_id and r.purpose == purpose
        ]
        for k in doomed:
            del self.secret_tokens[k]
        return len(doomed)

    async def purge_secret_tokens(self, now: datetime) -> int:
        doomed = [
            k for k, r in self.secret_tokens.items() if r.used_at is not None or r.expires_at <= now
        ]
        for k in doomed:
            del self.secret_tokens[k]
        return len(doomed)

    # -- photos --------------------------------------------------------------

    async def create_photo(
        self,
        user_id: str,
        image_url: str,
        *,
        title: str | None = None,
        prompt: str | None = None,
        provider: str | None = None,
        is_favorite: bool = False,
        tags: tuple[str, ...] = (),
    ) -> PhotoRecord:
        photo = PhotoRecord(
            id=_new_id(),
            user_id=user_id,
            title=title,
            prompt=prompt,
            image_url=image_url,
            provider=provider,
            is_favorite=is_favorite,
            created_at=self._clock(),
            tags=tuple(tags),
        )
        self.photos[photo.id] = photo
        return photo

    async def list_photos(
        self,
        user_id: str,
        *,
        favorite: bool | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[PhotoRecord], int]:
        photos = [p for p in self.photos.values() if p.user_id == user_id]
        if favorite is not None:
            photos = [p for p in photos if p.is_favorite == favorite]
        if search:
            needle = search.lower()
            photos = [
                p for p in photos if needle in (p.title or "").lower() or search in p.tags
            ]
        photos.sort(key=lambda p: p.created_at, reverse=True)
        return _page(photos, offset, limit)

    async def count_photos(self, *, created_since: datetime | None = None) -> int:
        if created_since is None:
            return len(self.photos)
        return sum(1 for p in self.photos.values() if p.created_at >= created_since)

    # -- provider API keys ---------------------------------------------------

    async def create_api_key(
        self,
        owner_id: str,
        name: str,
        provider: str,
        encrypted_key: str,
        key_preview: str,
        *,
        is_default: bool = False,
        monthly_limit: int | None = None,
    ) -> ApiKeyRecord:
        record = ApiKeyRecord(
            id=_new_id(),
            owner_id=owner_id,
            name=name,
            provider=provider,
            encrypted_key=encrypted_key,
            key_preview=key_preview,
            is_active=True,
            is_default=is_default,
            usage_count=0,
            created_at=self._clock(),
            monthly_limit=monthly_limit,
        )
        self.api_keys[record.id] = record
        return record

    async def list_api_keys(self, owner_id: str) -> list[ApiKeyRecord]:
        keys = [k for k in self.api_keys.values() if k.owner_id == owner_id]
        return sorted(keys, key=lambda k: k.created_at, reverse=True)

    async def get_api_key(self, key_id: str, owner_id: str) -> ApiKeyRecord | None:
        key = self.api_keys.get(key_id)
        if key is None or key.owner_id != owner_id:
            return None
        return key

    async def update_api_key(self, key_id: str, **fields: Any) -> ApiKeyRecord | None:
        check_fields(fields, API_KEY_UPDATABLE_FIELDS)
        key = self.api_keys.get(key_id)
        if key is None:
            return None
        updated = replace(key, **fields)
        self.api_keys[key_id] = updated
        return updated

    async def delete_api_key(self, key_id: str) -> bool:
        return self.api_keys.pop(key_id, None) is not None

    async def clear_default_api_keys(
        self, owner_id: str, provider: str, except_id: str | None = None
    ) -> int:
        cleared = 0
        for key_id, key in list(self.api_keys.items()):
            if (
                key.owner_id == owner_id
                and key.provider == provider
                and key.is_default
                and key_id != except_id
            ):
                self.api_keys[key_id] = replace(key, is_default=False)
                cleared += 1
        return cleared

    async def find_active_api_key(self, provider: str, owner_id: str | None = None) -> ApiKeyRecord | None:
        candidates = [
            k
            for k in self.api_keys.values()
            if k.provider == provider and k.is_active and (owner_id is None or k.owner_id == owner_id)
        ]
        defaults = [k for k in candidates if k.is_default]
        pool = defaults or candidates
        if not pool:
            return None
        return max(pool, key=lambda k: k.created_at)

    async def record_api_key_usage(self, key_id: str, at: datetime) -> None:
        key = self.api_keys.get(key_id)
        if key is not None:
            self.api_keys[key_id] = replace(key, usage_count=key.usage_count + 1, last_used_at=at)

    # -- audit log -----------------------------------------------------------

    async def add_audit_log(
        self,
        action: str,
        *,
        user_id: str | None = None,
        resource: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
        ip_address: str | None = None,
    ) -> AuditLogRecord:
        record = AuditLogRecord(
            id=_new_id(),
            user_id=user_id,
            action=action,
            created_at=self._clock(),
            resource=resource,
            resource_id=resource_id,
            details=details,
            ip_address=ip_address,
        )
        self.audit_logs.append(record)
        return record

    async def list_audit_logs(
        self,
        *,
        user_id: str | None = None,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[AuditLogRecord], int]:
        logs = list(self.audit_logs)
        if user_id is not None:
            logs = [log for log in logs if log.user_id == user_id]
        if action is not None:
            logs = [log for log in logs if log.action == action]
        if start is not None:
            logs = [log for log in logs if log.created_at >= start]
        if end is not None:
            logs = [log for log in logs if log.created_at <= end]
        logs.sort(key=lambda log: log.created_at, reverse=True)
        return _page(logs, offset, limit)
