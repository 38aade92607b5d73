"""
Listing and search over images and their metadata.

Text-only searches go through the fuzzy tag-matching procedures of the
metadata store; color filters, oldest-first ordering and searches without
a usable query go through a relational filter.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from ..config import Settings
from ..errors import ImageNotFound, InvalidColorFormat, ValidationError
from ..models.schemas import (
    ColorsResponse,
    ImageItem,
    PageResult,
    SimilarResponse,
)
from ..storage import MetadataStore, overlap_predicate
from .pagination import PageRequest, SortOrder, coerce_int, normalize_page, paginate

logger = logging.getLogger(__name__)

_HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


@dataclass(frozen=True)
class TextOnlySearch:
    """Search served by the fuzzy tag procedures."""

    user_id: str
    term: str
    page: PageRequest


@dataclass(frozen=True)
class FilteredSearch:
    """Search served by the relational filter."""

    user_id: str
    term: Optional[str]
    color: Optional[str]
    dominant_only: bool
    page: PageRequest


SearchPlan = Union[TextOnlySearch, FilteredSearch]


def is_hex_color(value: Any) -> bool:
    return isinstance(value, str) and bool(_HEX_COLOR_RE.match(value))


def normalize_color(color: Optional[str]) -> Optional[str]:
    """
    Validate a ``#rrggbb`` color and lowercase it.

    Blank input means no color filter.

    Raises:
        InvalidColorFormat: If the color is not six hex digits after ``#``
    """
    if color is None or not color.strip():
        return None
    if not is_hex_color(color):
        raise InvalidColorFormat()
    return color.lower()


def resolve_search(
    user_id: str,
    query: Optional[str],
    color: Optional[str],
    dominant_only: bool,
    page: PageRequest,
) -> SearchPlan:
    """Choose the execution path of a search."""
    term = query.strip() if isinstance(query, str) else ""
    normalized_color = normalize_color(color)

    if term and normalized_color is None and page.sort is SortOrder.NEWEST:
        return TextOnlySearch(user_id=user_id, term=term, page=page)

    return FilteredSearch(
        user_id=user_id,
        term=term or None,
        color=normalized_color,
        dominant_only=bool(dominant_only),
        page=page,
    )


def build_filter(plan: FilteredSearch) -> Tuple[str, List[Any]]:
    """Relational predicate (over aliases ``i``/``m``) for a filtered search."""
    clauses: List[str] = []
    params: List[Any] = []

    if plan.term:
        clauses.append(
            "(instr(casefold(coalesce(m.description, '')), casefold(?)) > 0"
            " OR EXISTS (SELECT 1 FROM json_each(m.tags) WHERE value = ?))"
        )
        params.extend([plan.term, plan.term])

    if plan.color:
        if plan.dominant_only:
            clauses.append("m.dominant_color = ?")
            params.append(plan.color)
        else:
            clauses.append(
                "(EXISTS (SELECT 1 FROM json_each(m.colors) WHERE value = ?)"
                " OR m.dominant_color = ?)"
            )
            params.extend([plan.color, plan.color])

    return " AND ".join(clauses), params


def build_procedure_params(plan: TextOnlySearch) -> Dict[str, Any]:
    """Named parameters of the fuzzy tag procedures."""
    return {
        "search_term": plan.term,
        "user_id": plan.user_id,
        "limit": plan.page.limit,
        "offset": plan.page.offset,
    }


def cosine_similarity(left: set, right: set) -> float:
    """Cosine similarity of two binary feature sets."""
    if not left or not right:
        return 0.0
    return len(left & right) / math.sqrt(len(left) * len(right))


def _features(tags: List[str], colors: List[str]) -> set:
    return {f"tag:{t}" for t in tags} | {f"color:{c}" for c in colors}


class SearchEngine:
    """Read side of the gallery: listing, search, detail, colors, similar."""

    def __init__(self, store: MetadataStore, settings: Optional[Settings] = None):
        assert store is not None, "Metadata store is required"

        self.store = store
        self.default_limit = settings.default_page_size if settings else 20
        self.max_limit = settings.max_page_size if settings else 50

    def _page(self, limit: Any, offset: Any, sort: Any) -> PageRequest:
        return normalize_page(
            limit,
            offset,
            sort,
            default_limit=self.default_limit,
            max_limit=self.max_limit,
        )

    def list_images(
        self, user_id: str, limit: Any = None, offset: Any = None, sort: Any = None
    ) -> PageResult:
        """List the user's images, newest first unless ``sort`` is oldest."""
        page = self._page(limit, offset, sort)
        total = self.store.count_items(user_id)
        items = self.store.query_items(
            user_id, ascending=page.ascending, limit=page.limit, offset=page.offset
        )
        return paginate(items, total, page)

    def search_images(
        self,
        user_id: str,
        query: Optional[str] = None,
        color: Optional[str] = None,
        dominant_only: bool = False,
        limit: Any = None,
        offset: Any = None,
        sort: Any = None,
    ) -> PageResult:
        """
        Search the user's images by text and/or color.

        Raises:
            InvalidColorFormat: If ``color`` is not ``#rrggbb``
        """
        page = self._page(limit, offset, sort)
        plan = resolve_search(user_id, query, color, dominant_only, page)

        if isinstance(plan, TextOnlySearch):
            return self._search_fuzzy(plan)
        return self._search_filtered(plan)

    def _search_fuzzy(self, plan: TextOnlySearch) -> PageResult:
        params = build_procedure_params(plan)
        matches = self.store.run_procedure("search_images_by_tags", params)
        count_rows = self.store.run_procedure(
            "count_images_by_tags",
            {"search_term": plan.term, "user_id": plan.user_id},
        )
        total = int(count_rows[0]["count"]) if count_rows else 0

        image_ids = [row["image_id"] for row in matches]
        hydrated = self.store.get_items_by_ids(plan.user_id, image_ids)
        items = [hydrated[i] for i in image_ids if i in hydrated]

        logger.debug(f"Fuzzy search '{plan.term}' matched {total} images")
        return paginate(items, total, plan.page)

    def _search_filtered(self, plan: FilteredSearch) -> PageResult:
        where, params = build_filter(plan)
        total = self.store.count_items(plan.user_id, where, params)
        items = self.store.query_items(
            plan.user_id,
            where,
            params,
            ascending=plan.page.ascending,
            limit=plan.page.limit,
            offset=plan.page.offset,
        )
        return paginate(items, total, plan.page)

    def get_image(self, image_id: int, user_id: str) -> Optional[ImageItem]:
        """Image with metadata, or None when missing or owned by someone else."""
        return self.store.get_item(image_id, user_id)

    def get_distinct_colors(self, user_id: str, limit: Any = None) -> ColorsResponse:
        """Distinct valid colors of the user's completed images."""
        cap = coerce_int(limit)
        if cap is not None and cap <= 0:
            cap = None

        colors: List[str] = []
        seen = set()
        for image_colors in self.store.completed_colors(user_id):
            for color in image_colors:
                if not is_hex_color(color):
                    continue
                normalized = color.lower()
                if normalized in seen:
                    continue
                seen.add(normalized)
                colors.append(normalized)

        if cap is not None:
            colors = colors[:cap]
        return ColorsResponse(colors=colors, total=len(colors))

    def find_similar(
        self, image_id: int, user_id: str, limit: Any = None
    ) -> SimilarResponse:
        """
        Rank the user's other images by shared tags and colors.

        Raises:
            ImageNotFound: If the source image is missing or not owned
            ValidationError: If the source image has no metadata
        """
        source = self.store.get_item(image_id, user_id)
        if source is None:
            raise ImageNotFound()
        if source.metadata is None:
            raise ValidationError("Image has no metadata")

        page = self._page(limit, 0, None)
        tags = source.metadata.tags
        colors = source.metadata.colors

        predicates = []
        params: List[Any] = []
        for column, values in (("m.tags", tags), ("m.colors", colors)):
            predicate, values_params = overlap_predicate(column, values)
            if predicate:
                predicates.append(predicate)
                params.extend(values_params)
        if not predicates:
            return SimilarResponse(items=[], total=0)

        where = f"i.id != ? AND ({' OR '.join(predicates)})"
        candidates = self.store.query_items(user_id, where, [image_id, *params])

        source_features = _features(tags, colors)

        def score(item: ImageItem) -> float:
            if item.metadata is None:
                return 0.0
            return cosine_similarity(
                source_features, _features(item.metadata.tags, item.metadata.colors)
            )

        # sorted() is stable, so equal scores keep newest-first order.
        ranked = sorted(candidates, key=score, reverse=True)[: page.limit]
        return SimilarResponse(items=ranked, total=len(ranked))
