"""SQLAlchemy ORM models."""

from studio.models.admin import ApiKey, AuditLog
from studio.models.base import Base
from studio.models.photo import Photo
from studio.models.token import RefreshToken, SecretToken
from studio.models.user import Profile, User

__all__ = [
    "ApiKey",
    "AuditLog",
    "Base",
    "Photo",
    "Profile",
    "RefreshToken",
    "SecretToken",
    "User",
]
