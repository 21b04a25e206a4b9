"""ORM models for admin-managed provider API keys and the audit trail."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from studio.models.base import Base, JSONType, created_at_column, uuid_pk


class ApiKey(Base):
    """
    Third-party provider credential. encrypted_key holds Fernet ciphertext;
    the plaintext is never stored. At most one default key per owner and provider.
    """

    __tablename__ = "api_keys"

    id = uuid_pk()
    owner_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(100), nullable=False)
    provider = Column(String(32), nullable=False, index=True)
    encrypted_key = Column(String(1024), nullable=False)
    key_preview = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)
    usage_count = Column(Integer, nullable=False, default=0)
    monthly_limit = Column(Integer, nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = created_at_column()


class AuditLog(Base):
    """Append-only record of privileged actions. Survives deletion of the actor."""

    __tablename__ = "audit_logs"

    id = uuid_pk()
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action = Column(String(64), nullable=False, index=True)
    resource = Column(String(64), nullable=True)
    resource_id = Column(String(64), nullable=True)
    details = Column(JSONType, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = created_at_column()
