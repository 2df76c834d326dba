"""Limit/offset paging over the newest-first journals."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

MAX_PAGE_SIZE = 100


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int

    @property
    def next_offset(self) -> int | None:
        # A short page is the last one
        if len(self.items) < self.limit:
            return None
        return self.offset + self.limit


def paginate(limit: int, offset: int, max_limit: int = MAX_PAGE_SIZE) -> tuple[int, int]:
    """Clamp to 1 <= limit <= max_limit and offset >= 0."""
    return max(1, min(limit, max_limit)), max(0, offset)
