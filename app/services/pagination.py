from __future__ import annotations

import math
from dataclasses import dataclass

from app.core.config import settings

DEFAULT_PAGE_SIZE = 10


@dataclass(frozen=True)
class PageWindow:
    page: int
    page_size: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def page_window(page: int | None, page_size: int | None, total: int) -> PageWindow:
    """Clamp page_size to the configured maximum and page to the last page."""
    size = page_size if page_size and page_size > 0 else DEFAULT_PAGE_SIZE
    size = min(size, settings.ORDER_LIST_MAX_PAGE_SIZE)
    current = page if page and page > 0 else 1
    last_page = max(1, math.ceil(total / size))
    return PageWindow(page=min(current, last_page), page_size=size)
