"""Request/response schemas for auth endpoints."""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, EmailStr, Field
from pydantic_core import PydanticCustomError

from studio.core.permissions import Role
from studio.core.security import EMAIL_MAX_LEN, password_problems
from studio.schemas.common import CamelModel
from studio.services.views import UserView
from studio.storage.records import ProfileRecord

NAME_MAX_LEN = 100

# Error type whose ctx["problems"] lists every failing password rule.
PASSWORD_POLICY_ERROR = "password_policy"


def _check_password(value: str) -> str:
    problems = password_problems(value)
    if problems:
        raise PydanticCustomError(
            PASSWORD_POLICY_ERROR,
            "{summary}",
            {"summary": "; ".join(problems), "problems": problems},
        )
    return value


def _check_email_length(value: str) -> str:
    if len(value) > EMAIL_MAX_LEN:
        raise ValueError("Email is too long")
    return value


Email = Annotated[EmailStr, AfterValidator(_check_email_length)]

# Length and character-class rules; each failing rule is reported under the field.
Password = Annotated[str, AfterValidator(_check_password)]


class SignupRequest(CamelModel):
    email: Email
    password: Password
    first_name: str | None = Field(default=None, min_length=1, max_length=NAME_MAX_LEN)
    last_name: str | None = Field(default=None, max_length=NAME_MAX_LEN)


class LoginRequest(CamelModel):
    """Credentials for login."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(CamelModel):
    """Body fallback for clients that cannot hold the refresh cookie."""

    refresh_token: str | None = None


class VerifyEmailRequest(CamelModel):
    token: str = Field(..., min_length=1)


class EmailRequest(CamelModel):
    """Body of forgot-password and resend-verification."""

    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1)
    password: Password


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: Password


class ProfileOut(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    preferred_api: str | None = Field(default=None, alias="preferredAPI")
    default_quality: str | None = None
    notifications_enabled: bool = True

    @classmethod
    def from_record(cls, profile: ProfileRecord | None) -> "ProfileOut":
        if profile is None:
            return cls()
        return cls(
            first_name=profile.first_name,
            last_name=profile.last_name,
            display_name=profile.display_name,
            avatar_url=profile.avatar_url,
            bio=profile.bio,
            preferred_api=profile.preferred_api,
            default_quality=profile.default_quality,
            notifications_enabled=profile.notifications_enabled,
        )


class UserOut(CamelModel):
    """Public view of an account (never includes the password hash)."""

    id: str
    email: str
    role: Role
    email_verified: bool
    is_active: bool
    created_at: datetime
    last_login_at: datetime | None = None
    profile: ProfileOut

    @classmethod
    def from_view(cls, view: UserView) -> "UserOut":
        user = view.user
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            email_verified=user.email_verified,
            is_active=user.is_active,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
            profile=ProfileOut.from_record(view.profile),
        )


class TokenOut(CamelModel):
    """Access token returned in the body; the refresh token travels in a cookie."""

    access_token: str
    expires_in: int


class AuthOut(TokenOut):
    user: UserOut


class SignupOut(AuthOut):
    requires_verification: bool
