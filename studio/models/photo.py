"""ORM model for generated photos owned by a user."""

from sqlalchemy import Boolean, Column, ForeignKey, String, Text

from studio.models.base import Base, JSONType, created_at_column, uuid_pk


class Photo(Base):
    __tablename__ = "photos"

    id = uuid_pk()
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=True)
    prompt = Column(Text, nullable=True)
    image_url = Column(String(2048), nullable=False)
    provider = Column(String(32), nullable=True)
    is_favorite = Column(Boolean, nullable=False, default=False)
    tags = Column(JSONType, nullable=False, default=list)
    created_at = created_at_column()
