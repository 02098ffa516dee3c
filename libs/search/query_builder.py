"""Translate search filters into an Elasticsearch request body."""

from __future__ import annotations

from typing import Any, Dict, List

from libs.core.exceptions import ValidationError
from libs.core.models import SearchFilters, SortMode

MAX_PAGE_SIZE = 100
# Elasticsearch default for index.max_result_window.
MAX_RESULT_WINDOW = 10000
DEFAULT_PAGE_SIZE = 50
HIGHLIGHT_FRAGMENT_SIZE = 150

# Exact-match filter fields, in the order clauses are emitted.
TERM_FIELDS = ("author_id", "channel_id", "guild_id")

RECENCY_SORT: List[Dict[str, Any]] = [
    {"timestamp": {"order": "desc"}},
    {"message_id": {"order": "asc"}},
]


def text_clause(text: str) -> Dict[str, Any]:
    return {
        "multi_match": {
            "query": text,
            "fields": ["content^2"],
            "type": "best_fields",
            "fuzziness": "AUTO",
        }
    }


def sort_clause(sort: SortMode, has_text: bool) -> List[Dict[str, Any]]:
    if sort is SortMode.RELEVANCE and has_text:
        return [{"_score": {"order": "desc"}}, *RECENCY_SORT]
    return list(RECENCY_SORT)


def page_window(
    page: int,
    page_size: int,
    max_page_size: int = MAX_PAGE_SIZE,
    max_result_window: int = MAX_RESULT_WINDOW,
) -> tuple[int, int]:
    """Return ``(from, size)`` for a 1-based page.

    Pages reaching past ``max_result_window`` are refused here; the cluster
    would reject them anyway.
    """
    if page < 1:
        raise ValidationError(f"page must be >= 1, got {page}")
    if page_size < 1 or page_size > max_page_size:
        raise ValidationError(
            f"page_size must be between 1 and {max_page_size}, got {page_size}"
        )
    offset = (page - 1) * page_size
    if offset + page_size > max_result_window:
        raise ValidationError(
            f"page {page} with page_size {page_size} goes past the first "
            f"{max_result_window} results"
        )
    return offset, page_size


def build_search_query(
    filters: SearchFilters,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    sort: SortMode = SortMode.RECENCY,
    *,
    max_page_size: int = MAX_PAGE_SIZE,
    max_result_window: int = MAX_RESULT_WINDOW,
) -> Dict[str, Any]:
    offset, size = page_window(page, page_size, max_page_size, max_result_window)
    must = [text_clause(filters.text)] if filters.text else [{"match_all": {}}]
    term_filters = [
        {"term": {field: getattr(filters, field)}}
        for field in TERM_FIELDS
        if getattr(filters, field)
    ]
    bool_query: Dict[str, Any] = {"must": must}
    if term_filters:
        bool_query["filter"] = term_filters

    body: Dict[str, Any] = {
        "query": {"bool": bool_query},
        "sort": sort_clause(sort, bool(filters.text)),
        "from": offset,
        "size": size,
        "track_total_hits": True,
    }
    if filters.text:
        body["highlight"] = {
            "fields": {
                "content": {
                    "fragment_size": HIGHLIGHT_FRAGMENT_SIZE,
                    "number_of_fragments": 1,
                }
            }
        }
    return body


__all__ = [
    "build_search_query",
    "page_window",
    "sort_clause",
    "text_clause",
    "MAX_PAGE_SIZE",
    "MAX_RESULT_WINDOW",
    "DEFAULT_PAGE_SIZE",
]
