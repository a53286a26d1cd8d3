"""Page/limit parameters with documented defaults and a hard cap on page size."""
from dataclasses import dataclass
from typing import Optional

from healbridge.config import get_config

DEFAULT_PAGE = 1


@dataclass(frozen=True)
class Pagination:
    page: int = DEFAULT_PAGE
    limit: int = 20

    @classmethod
    def from_query(cls, page: Optional[int] = None, limit: Optional[int] = None) -> "Pagination":
        """Fill in defaults and clamp `limit` to the configured maximum."""
        api = get_config().api
        page = DEFAULT_PAGE if page is None else max(DEFAULT_PAGE, int(page))
        limit = api.default_page_limit if limit is None else max(1, int(limit))
        return cls(page=page, limit=min(limit, api.max_page_limit))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
