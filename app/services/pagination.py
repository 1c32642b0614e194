from dataclasses import dataclass
from typing import Any, Dict, List

from app.core.errors import InvalidInput

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class Page:
    items: List[Any]
    page: int
    limit: int
    total_items: int

    @property
    def pages(self) -> int:
        return (self.total_items + self.limit - 1) // self.limit

    def pagination(self) -> Dict[str, int]:
        """Same shape the catalog and admin screens page with."""
        return {
            "current": self.page,
            "total": self.pages,
            "count": len(self.items),
            "total_items": self.total_items,
        }


async def paginate(queryset, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page:
    """Counts the filtered queryset, then fetches one page of it with offset/limit."""
    if page < 1:
        raise InvalidInput(f"page must be 1 or greater, got {page}")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidInput(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")
    total = await queryset.count()
    items = await queryset.offset((page - 1) * limit).limit(limit)
    return Page(items=list(items), page=page, limit=limit, total_items=total)
