import math
from dataclasses import dataclass

from fastapi import Query


@dataclass
class Page:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def block(self, total: int, resource: str) -> dict:
        total_pages = math.ceil(total / self.limit)
        return {
            "current_page": self.page,
            "total_pages": total_pages,
            f"total_{resource}": total,
            "has_next_page": self.page < total_pages,
            "has_prev_page": self.page > 1,
            "limit": self.limit,
        }


def page_params(default_limit: int):
    """Build a ``page``/``limit`` dependency with a resource-specific default."""

    def dependency(
        page: int = Query(1, ge=1, description="Page number"),
        limit: int = Query(default_limit, ge=1, le=100, description="Page size"),
    ) -> Page:
        return Page(page=page, limit=limit)

    return dependency
