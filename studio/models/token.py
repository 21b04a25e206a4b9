"""ORM models for stored session and one-time token hashes."""

from sqlalchemy import Column, DateTime, ForeignKey, String

from studio.models.base import Base, created_at_column, uuid_pk


class RefreshToken(Base):
    """One row per live session. Only the SHA-256 hash of the token is stored."""

    __tablename__ = "refresh_tokens"

    id = uuid_pk()
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    ip_address = Column(String(64), nullable=True)
    device_info = Column(String(512), nullable=True)
    created_at = created_at_column()


class SecretToken(Base):
    """
    Single-use email verification or password reset token (hash only).

    purpose: 'EMAIL_VERIFICATION' or 'PASSWORD_RESET'. used_at is set when the
    token is redeemed; used rows are purged by the cleanup job.
    """

    __tablename__ = "secret_tokens"

    id = uuid_pk()
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    purpose = Column(String(32), nullable=False)
    token_hash = Column(String(64), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = created_at_column()
