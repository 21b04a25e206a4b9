"""Immutable records returned by the store.

Plain data transfer objects that decouple services from the persistence
implementation (ORM rows or in-memory dicts).
"""

from dataclasses import dataclass, field
from datetime import datetime

from studio.core.permissions import Role


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    password_hash: str | None
    role: Role
    email_verified: bool
    is_active: bool
    is_banned: bool
    created_at: datetime
    banned_reason: str | None = None
    banned_at: datetime | None = None
    email_verified_at: datetime | None = None
    last_login_at: datetime | None = None
    login_count: int = 0


@dataclass(frozen=True)
class ProfileRecord:
    user_id: str
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    preferred_api: str | None = None
    default_quality: str | None = None
    notifications_enabled: bool = True
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RefreshTokenRecord:
    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    created_at: datetime
    ip_address: str | None = None
    device_info: str | None = None


@dataclass(frozen=True)
class SecretTokenRecord:
    id: str
    user_id: str
    purpose: str
    token_hash: str
    expires_at: datetime
    created_at: datetime
    used_at: datetime | None = None


@dataclass(frozen=True)
class PhotoRecord:
    id: str
    user_id: str
    title: str | None
    prompt: str | None
    image_url: str
    provider: str | None
    is_favorite: bool
    created_at: datetime
    tags: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ApiKeyRecord:
    id: str
    owner_id: str
    name: str
    provider: str
    encrypted_key: str
    key_preview: str
    is_active: bool
    is_default: bool
    usage_count: int
    created_at: datetime
    last_used_at: datetime | None = None
    monthly_limit: int | None = None


@dataclass(frozen=True)
class AuditLogRecord:
    id: str
    user_id: str | None
    action: str
    created_at: datetime
    resource: str | None = None
    resource_id: str | None = None
    details: dict | None = None
    ip_address: str | None = None
