"""Response envelope, pagination and the camelCase base model shared by every route."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel

from studio.services.views import Page

T = TypeVar("T")


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire; input accepts either."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaginationOut(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_more: bool

    @classmethod
    def from_page(cls, page: Page) -> "PaginationOut":
        return cls(
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
            has_more=page.has_more,
        )


class Envelope(BaseModel, Generic[T]):
    """Uniform success body: ``{success, data?, message?}``. Absent parts are omitted."""

    success: bool = True
    data: T | None = None
    message: str | None = None

    @model_serializer(mode="wrap")
    def _omit_empty(self, handler: Any) -> dict[str, Any]:
        return {k: v for k, v in handler(self).items() if v is not None}


class PaginatedEnvelope(CamelModel, Generic[T]):
    success: bool = True
    data: list[T] = Field(default_factory=list)
    pagination: PaginationOut


class PageQuery(CamelModel):
    """Common ``page``/``limit`` query parameters."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
