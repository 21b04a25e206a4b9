"""Read models returned by services to the HTTP layer."""

import math
from dataclasses import dataclass
from typing import Generic, TypeVar

from studio.storage.records import ProfileRecord, UserRecord

T = TypeVar("T")


@dataclass(frozen=True)
class UserView:
    """A user with their (optional) profile and, for admin views, a photo count."""

    user: UserRecord
    profile: ProfileRecord | None = None
    photo_count: int | None = None


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_more(self) -> bool:
        return (self.page - 1) * self.limit + len(self.items) < self.total


def page_offset(page: int, limit: int) -> int:
    return (max(page, 1) - 1) * limit
