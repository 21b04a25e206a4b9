"""Request/response schemas for the self-service /users routes."""

from datetime import datetime

from pydantic import Field, HttpUrl

from studio.schemas.common import CamelModel, PageQuery
from studio.storage.records import PhotoRecord


class ProfileUpdateRequest(CamelModel):
    """Only fields present in the body are changed."""

    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    display_name: str | None = Field(default=None, max_length=200)
    avatar_url: HttpUrl | None = None
    bio: str | None = Field(default=None, max_length=500)
    preferred_api: str | None = Field(default=None, alias="preferredAPI", max_length=32)
    default_quality: str | None = Field(default=None, max_length=32)
    notifications_enabled: bool | None = None

    def changes(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        if data.get("avatar_url") is not None:
            data["avatar_url"] = str(data["avatar_url"])
        if data.get("notifications_enabled") is None:
            data.pop("notifications_enabled", None)
        return data


class PhotoQuery(PageQuery):
    favorite: bool | None = None
    search: str | None = Field(default=None, max_length=200)


class PhotoOut(CamelModel):
    id: str
    title: str | None = None
    prompt: str | None = None
    image_url: str
    provider: str | None = None
    is_favorite: bool
    tags: list[str] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def from_record(cls, photo: PhotoRecord) -> "PhotoOut":
        return cls(
            id=photo.id,
            title=photo.title,
            prompt=photo.prompt,
            image_url=photo.image_url,
            provider=photo.provider,
            is_favorite=photo.is_favorite,
            tags=list(photo.tags),
            created_at=photo.created_at,
        )
