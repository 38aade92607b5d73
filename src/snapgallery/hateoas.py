"""
HATEOAS helpers for paginated endpoints.
"""

from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

from .models.schemas import ImageItem, PageResult, PaginatedResponse, PaginationInfo


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_pagination_links(
    base_path: str,
    result: PageResult,
    sort: Optional[str] = None,
    query_params: Optional[Mapping[str, Any]] = None,
) -> Dict[str, str]:
    """
    Build self/next/prev links for a page.

    Query strings carry the non-None ``query_params`` in insertion order,
    then ``limit``, ``offset`` and ``sort``. Only ``offset`` differs between
    links. ``next`` and ``prev`` are omitted when there is no such page.
    """

    def build_link(offset: int) -> str:
        params: Dict[str, str] = {}
        for key, value in (query_params or {}).items():
            if value is not None:
                params[key] = _stringify(value)
        params["limit"] = str(result.limit)
        params["offset"] = str(offset)
        if sort:
            params["sort"] = sort
        return f"{base_path}?{urlencode(params)}"

    links = {"self": build_link(result.offset)}
    if result.has_next and result.next_offset is not None:
        links["next"] = build_link(result.next_offset)
    if result.has_prev and result.prev_offset is not None:
        links["prev"] = build_link(result.prev_offset)
    return links


def build_paginated_response(
    items: List[ImageItem], result: PageResult, links: Dict[str, str]
) -> PaginatedResponse:
    """Wrap a page and its links in the listing envelope."""
    return PaginatedResponse(
        items=items,
        pagination=PaginationInfo(
            total=result.total,
            limit=result.limit,
            offset=result.offset,
            has_next=result.has_next,
            has_prev=result.has_prev,
            links=links,
        ),
    )
