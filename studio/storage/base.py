"""Abstract store interface for users, sessions, one-time tokens and admin data.

Implementations: ``SQLStore`` (SQLAlchemy, one per request session) and
``MemoryStore`` (dict-backed, for tests and local experiments).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from studio.core.permissions import Role
from studio.storage.records import (
    ApiKeyRecord,
    AuditLogRecord,
    PhotoRecord,
    ProfileRecord,
    RefreshTokenRecord,
    SecretTokenRecord,
    UserRecord,
)

# Columns a caller may change through update_user / upsert_profile / update_api_key.
USER_UPDATABLE_FIELDS = frozenset(
    {
        "email",
        "password_hash",
        "role",
        "email_verified",
        "email_verified_at",
        "is_active",
        "is_banned",
        "banned_reason",
        "banned_at",
        "last_login_at",
    }
)
PROFILE_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "display_name",
        "avatar_url",
        "bio",
        "preferred_api",
        "default_quality",
        "notifications_enabled",
    }
)
API_KEY_UPDATABLE_FIELDS = frozenset(
    {"name", "encrypted_key", "key_preview", "is_active", "is_default", "monthly_limit"}
)


def check_fields(fields: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")


class Store(ABC):
    """
    Async persistence contract used by every service.

    Two operations must be atomic with respect to concurrent callers:
    ``consume_refresh_token`` and ``consume_secret_token``. Of two racing calls
    with the same hash, at most one gets a result.
    """

    # -- users ---------------------------------------------------------------

    @abstractmethod
    async def create_user(
        self,
        email: str,
        password_hash: str | None,
        role: Role = Role.USER,
        *,
        email_verified: bool = False,
    ) -> UserRecord:
        """Insert a user; raises ConstraintViolation if the email is taken."""

    @abstractmethod
    async def get_user(self, user_id: str) -> UserRecord | None:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> UserRecord | None:
        """Exact match on the stored (lower-cased) email."""

    @abstractmethod
    async def update_user(self, user_id: str, **fields: Any) -> UserRecord | None:
        """Update columns in USER_UPDATABLE_FIELDS; None if the user does not exist."""

    @abstractmethod
    async def record_login(self, user_id: str, at: datetime) -> None:
        """Set last_login_at and increment login_count."""

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool:
        """Hard delete with cascade to profile, sessions, tokens, photos and API keys."""

    @abstractmethod
    async def list_users(
        self,
        *,
        search: str | None = None,
        role: Role | None = None,
        is_active: bool | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[UserRecord], int]:
        """Newest first; search matches email, first or last name (case-insensitive)."""

    @abstractmethod
    async def count_users(
        self, *, active_only: bool = False, created_since: datetime | None = None
    ) -> int:
        pass

    # -- profiles ------------------------------------------------------------

    @abstractmethod
    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        pass

    @abstractmethod
    async def upsert_profile(self, user_id: str, **fields: Any) -> ProfileRecord:
        """Update the profile if it exists, else create it."""

    # -- refresh tokens ------------------------------------------------------

    @abstractmethod
    async def add_refresh_token(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        *,
        ip_address: str | None = None,
        device_info: str | None = None,
    ) -> RefreshTokenRecord:
        pass

    @abstractmethod
    async def consume_refresh_token(self, token_hash: str, now: datetime) -> RefreshTokenRecord | None:
        """
        Atomically delete the record with ``token_hash`` and return it if it was
        still unexpired. Expired records are deleted as well and yield None.
        """

    @abstractmethod
    async def delete_refresh_tokens(self, user_id: str, token_hash: str | None = None) -> int:
        """Delete one session (by hash) or every session of the user."""

    @abstractmethod
    async def count_refresh_tokens(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def purge_expired_refresh_tokens(self, now: datetime) -> int:
        pass

    # -- one-time secret tokens ----------------------------------------------

    @abstractmethod
    async def add_secret_token(
        self, user_id: str, purpose: str, token_hash: str, expires_at: datetime
    ) -> SecretTokenRecord:
        pass

    @abstractmethod
    async def consume_secret_token(self, token_hash: str, purpose: str, now: datetime) -> str | None:
        """
        Atomically mark an unused, unexpired token as used and return its owner.
        Returns None when no such token exists.
        """

    @abstractmethod
    async def delete_secret_tokens(self, user_id: str, purpose: str) -> int:
        pass

    @abstractmethod
    async def purge_secret_tokens(self, now: datetime) -> int:
        """Delete tokens that are expired or already used."""

    # -- photos --------------------------------------------------------------

    @abstractmethod
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
        pass

    @abstractmethod
    async def list_photos(
        self,
        user_id: str,
        *,
        favorite: bool | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[PhotoRecord], int]:
        """Newest first; search matches title (case-insensitive) or an exact tag."""

    @abstractmethod
    async def count_photos(self, *, created_since: datetime | None = None) -> int:
        pass

    # -- provider API keys ---------------------------------------------------

    @abstractmethod
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
        pass

    @abstractmethod
    async def list_api_keys(self, owner_id: str) -> list[ApiKeyRecord]:
        pass

    @abstractmethod
    async def get_api_key(self, key_id: str, owner_id: str) -> ApiKeyRecord | None:
        pass

    @abstractmethod
    async def update_api_key(self, key_id: str, **fields: Any) -> ApiKeyRecord | None:
        pass

    @abstractmethod
    async def delete_api_key(self, key_id: str) -> bool:
        pass

    @abstractmethod
    async def clear_default_api_keys(
        self, owner_id: str, provider: str, except_id: str | None = None
    ) -> int:
        pass

    @abstractmethod
    async def find_active_api_key(self, provider: str, owner_id: str | None = None) -> ApiKeyRecord | None:
        """The default active key for ``provider``, else the newest active one."""

    @abstractmethod
    async def record_api_key_usage(self, key_id: str, at: datetime) -> None:
        pass

    # -- audit log -----------------------------------------------------------

    @abstractmethod
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
        pass

    @abstractmethod
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
        pass

    # -- unit of work --------------------------------------------------------

    async def commit(self) -> None:
        """Make pending writes durable. No-op for stores without transactions."""

    async def rollback(self) -> None:
        """Discard pending writes. No-op for stores without transactions."""

    async def ping(self) -> bool:
        """True if the backing database is reachable."""
        return True
