from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

ASC = "ASC"
DESC = "DESC"


@dataclass
class Page:
    ids: List[int]
    total: int = 0
    offset: int = 0
    limit: int = 0
    has_next: bool = False
    has_prev: bool = False


@dataclass(frozen=True)
class Pagination:
    """
    Sort message identifiers and cut one window out of them.

    limit=None (or 0) means "everything"; page is 1-based and only meaningful
    together with a limit.
    """

    order: str = DESC
    limit: Optional[int] = None
    page: Optional[int] = None

    def __post_init__(self) -> None:
        order = (self.order or "").upper()
        if order not in (ASC, DESC):
            raise ValueError(f"order must be {ASC!r} or {DESC!r}, got {self.order!r}")
        object.__setattr__(self, "order", order)
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.page is not None and self.page < 1:
            raise ValueError("page must be >= 1")

    def apply(self, ids: Iterable[int]) -> Page:
        ordered = sorted((int(i) for i in ids), reverse=self.order == DESC)
        total = len(ordered)

        limit = self.limit or total
        offset = (self.page - 1) * limit if self.page else 0

        window = ordered[offset : offset + limit]
        return Page(
            ids=window,
            total=total,
            offset=offset,
            limit=limit,
            has_next=offset + limit < total,
            has_prev=offset > 0 and total > 0,
        )
