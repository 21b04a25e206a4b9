"""ORM models for user accounts and their profiles."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from studio.models.base import Base, created_at_column, uuid_pk


class User(Base):
    """
    User account for JWT authentication and role-based access control.

    role: one of 'GUEST', 'USER', 'ADMIN', 'SUPER_ADMIN'. Emails are stored
    lower-cased; password_hash is null for accounts without a password.
    """

    __tablename__ = "users"

    id = uuid_pk()
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(32), nullable=False, default="USER")
    email_verified = Column(Boolean, nullable=False, default=False)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_banned = Column(Boolean, nullable=False, default=False)
    banned_reason = Column(Text, nullable=True)
    banned_at = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    login_count = Column(Integer, nullable=False, default=0)
    created_at = created_at_column()


class Profile(Base):
    """Optional 1:1 display and preference data for a user."""

    __tablename__ = "profiles"

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    display_name = Column(String(200), nullable=True)
    avatar_url = Column(String(2048), nullable=True)
    bio = Column(Text, nullable=True)
    preferred_api = Column(String(32), nullable=True)
    default_quality = Column(String(32), nullable=True)
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
