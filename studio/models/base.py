"""SQLAlchemy declarative Base and shared column helpers."""

import uuid

from sqlalchemy import JSON, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    pass


def new_uuid() -> str:
    return str(uuid.uuid4())


def uuid_pk() -> Column:
    """String UUID primary key generated client-side."""
    return Column(String(36), primary_key=True, default=new_uuid)


def created_at_column() -> Column:
    return Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
