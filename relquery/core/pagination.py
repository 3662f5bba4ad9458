"""Paginated query results."""

import math
from dataclasses import dataclass, field
from typing import Any

from relquery.core.entity import Entity


@dataclass
class Page:
    """One page of a query plus the state needed to describe the rest."""

    items: list[Entity] = field(default_factory=list)
    page: int = 1
    per_page: int = 15
    total: int = 0
    path: str = ""

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    def url(self, page: int) -> str:
        return f"{self.path}?page={page}"

    def meta(self) -> dict[str, Any]:
        return {
            "current_page": self.page,
            "per_page": self.per_page,
            "total": self.total,
            "total_pages": self.total_pages,
        }

    def links(self) -> dict[str, str | None]:
        return {
            "first": self.url(1),
            "last": self.url(self.total_pages),
            "prev": self.url(self.page - 1) if self.has_previous else None,
            "next": self.url(self.page + 1) if self.has_next else None,
        }

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)
