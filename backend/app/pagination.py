"""Page/per_page pagination shared by list endpoints."""
from __future__ import annotations

import math
from dataclasses import dataclass

from fastapi import Query

from .config import settings
from .schemas import PaginationMeta


@dataclass(frozen=True)
class PageParams:
    page: int
    per_page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def page_params(
    page: int = Query(1, ge=1),
    per_page: int | None = Query(None, ge=1),
) -> PageParams:
    """Dependency; per_page defaults to DEFAULT_PAGE_SIZE and is capped at MAX_PAGE_SIZE."""
    size = per_page or settings.DEFAULT_PAGE_SIZE
    return PageParams(page=page, per_page=min(size, settings.MAX_PAGE_SIZE))


def pagination_meta(params: PageParams, total_count: int) -> dict:
    total_pages = math.ceil(total_count / params.per_page) if total_count else 0
    meta = PaginationMeta(
        current_page=params.page,
        per_page=params.per_page,
        total_pages=total_pages,
        total_count=total_count,
        has_next_page=params.page < total_pages,
        has_prev_page=params.page > 1,
    )
    return {"pagination": meta.model_dump()}


def paginate(query, params: PageParams) -> tuple[list, dict]:
    """Return one page of `query` plus its pagination meta."""
    total_count = query.order_by(None).count()
    items = query.offset(params.offset).limit(params.per_page).all()
    return items, pagination_meta(params, total_count)
