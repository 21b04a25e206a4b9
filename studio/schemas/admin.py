"""Request/response schemas for the /admin routes."""

from datetime import datetime
from typing import Any

from pydantic import Field

from studio.core.permissions import Role
from studio.schemas.auth import ProfileOut
from studio.schemas.common import CamelModel, PageQuery
from studio.services.admin import DashboardStats, Provider
from studio.services.views import UserView
from studio.storage.records import ApiKeyRecord, AuditLogRecord


class UserListQuery(PageQuery):
    search: str | None = Field(default=None, max_length=200)
    role: Role | None = None
    is_active: bool | None = None


class UserUpdateRequest(CamelModel):
    role: Role | None = None
    is_active: bool | None = None
    is_banned: bool | None = None
    banned_reason: str | None = Field(default=None, max_length=500)


class AdminUserOut(CamelModel):
    """Account as seen by an admin: moderation state and usage counters included."""

    id: str
    email: str
    role: Role
    email_verified: bool
    is_active: bool
    is_banned: bool
    banned_reason: str | None = None
    banned_at: datetime | None = None
    created_at: datetime
    last_login_at: datetime | None = None
    login_count: int
    photo_count: int = 0
    profile: ProfileOut

    @classmethod
    def from_view(cls, view: UserView) -> "AdminUserOut":
        user = view.user
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            email_verified=user.email_verified,
            is_active=user.is_active,
            is_banned=user.is_banned,
            banned_reason=user.banned_reason,
            banned_at=user.banned_at,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
            login_count=user.login_count,
            photo_count=view.photo_count or 0,
            profile=ProfileOut.from_record(view.profile),
        )


class UserStatsOut(CamelModel):
    total: int
    active: int
    new_today: int
    new_this_month: int


class PhotoStatsOut(CamelModel):
    total: int
    today: int
    this_month: int


class DashboardOut(CamelModel):
    users: UserStatsOut
    photos: PhotoStatsOut

    @classmethod
    def from_stats(cls, stats: DashboardStats) -> "DashboardOut":
        return cls(
            users=UserStatsOut(
                total=stats.users_total,
                active=stats.users_active,
                new_today=stats.users_new_today,
                new_this_month=stats.users_new_this_month,
            ),
            photos=PhotoStatsOut(
                total=stats.photos_total,
                today=stats.photos_today,
                this_month=stats.photos_this_month,
            ),
        )


class ApiKeyCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    provider: Provider
    key: str = Field(..., min_length=1, max_length=512)
    monthly_limit: int | None = Field(default=None, gt=0)
    is_default: bool = False


class ApiKeyUpdateRequest(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    key: str | None = Field(default=None, min_length=1, max_length=512)
    is_active: bool | None = None
    is_default: bool | None = None
    monthly_limit: int | None = Field(default=None, gt=0)


class ApiKeyOut(CamelModel):
    """Listing view; the key itself is only ever shown as a preview."""

    id: str
    name: str
    provider: str
    key_preview: str
    is_active: bool
    is_default: bool
    usage_count: int
    monthly_limit: int | None = None
    last_used_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_record(cls, key: ApiKeyRecord) -> "ApiKeyOut":
        return cls(
            id=key.id,
            name=key.name,
            provider=key.provider,
            key_preview=key.key_preview,
            is_active=key.is_active,
            is_default=key.is_default,
            usage_count=key.usage_count,
            monthly_limit=key.monthly_limit,
            last_used_at=key.last_used_at,
            created_at=key.created_at,
        )


class AuditLogQuery(PageQuery):
    limit: int = Field(default=50, ge=1, le=100)
    user_id: str | None = None
    action: str | None = Field(default=None, max_length=64)
    start_date: datetime | None = None
    end_date: datetime | None = None


class AuditLogOut(CamelModel):
    id: str
    user_id: str | None = None
    action: str
    resource: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] | None = None
    ip_address: str | None = None
    created_at: datetime

    @classmethod
    def from_record(cls, log: AuditLogRecord) -> "AuditLogOut":
        return cls(
            id=log.id,
            user_id=log.user_id,
            action=log.action,
            resource=log.resource,
            resource_id=log.resource_id,
            details=log.details,
            ip_address=log.ip_address,
            created_at=log.created_at,
        )
