"""
Pagination parameter normalization and page arithmetic.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

from ..models.schemas import ImageItem, PageResult

DEFAULT_LIMIT = 20
MAX_LIMIT = 50

# Largest OFFSET SQLite accepts.
MAX_OFFSET = 2**63 - 1

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


class SortOrder(str, Enum):
    """Listing order by upload time."""

    NEWEST = "newest"
    OLDEST = "oldest"


@dataclass(frozen=True)
class PageRequest:
    """Normalized limit/offset/sort."""

    limit: int
    offset: int
    sort: SortOrder

    @property
    def ascending(self) -> bool:
        return self.sort is SortOrder.OLDEST


def coerce_int(value: Any) -> Optional[int]:
    """
    Read an integer from a query value.

    Strings contribute their leading integer ("12abc" is 12). Missing,
    non-numeric and non-finite values yield None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_INT_RE.match(value)
        return int(match.group(1)) if match else None
    return None


def normalize_sort(sort: Any) -> SortOrder:
    """``oldest`` stays oldest; anything else is newest."""
    if isinstance(sort, SortOrder):
        return sort
    return SortOrder.OLDEST if sort == SortOrder.OLDEST.value else SortOrder.NEWEST


def normalize_page(
    limit: Any = None,
    offset: Any = None,
    sort: Any = None,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> PageRequest:
    """
    Normalize listing parameters.

    ``limit`` is clamped to ``[1, max_limit]`` and defaults to
    ``default_limit``; ``offset`` is clamped to ``[0, MAX_OFFSET]`` and
    defaults to 0.
    """
    raw_limit = coerce_int(limit)
    raw_offset = coerce_int(offset)

    normalized_limit = default_limit if raw_limit is None else raw_limit
    normalized_limit = max(1, min(max_limit, normalized_limit))
    normalized_offset = (
        min(MAX_OFFSET, max(0, raw_offset)) if raw_offset is not None else 0
    )

    return PageRequest(
        limit=normalized_limit, offset=normalized_offset, sort=normalize_sort(sort)
    )


def paginate(items: List[ImageItem], total: int, page: PageRequest) -> PageResult:
    """Attach next/prev arithmetic to a page of items."""
    has_next = page.offset + page.limit < total
    has_prev = page.offset > 0
    return PageResult(
        items=items,
        total=total,
        limit=page.limit,
        offset=page.offset,
        has_next=has_next,
        has_prev=has_prev,
        next_offset=page.offset + page.limit if has_next else None,
        prev_offset=max(0, page.offset - page.limit) if has_prev else None,
    )
