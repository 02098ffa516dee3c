import pytest

from libs.core.exceptions import ValidationError
from libs.core.models import SearchFilters, SortMode
from libs.search.query_builder import RECENCY_SORT, build_search_query, page_window


def test_no_filters_matches_everything_by_recency():
    body = build_search_query(SearchFilters())

    assert body["query"] == {"bool": {"must": [{"match_all": {}}]}}
    assert body["sort"] == RECENCY_SORT
    assert body["from"] == 0
    assert body["size"] == 50
    assert body["track_total_hits"] is True
    assert "highlight" not in body


def test_blank_filters_are_ignored():
    body = build_search_query(SearchFilters(text="   ", author_id="", channel_id=" "))

    assert body["query"] == {"bool": {"must": [{"match_all": {}}]}}


def test_text_and_term_filters():
    filters = SearchFilters(text="hello world", channel_id="C1", guild_id="G1")

    body = build_search_query(filters, page=3, page_size=20)

    must = body["query"]["bool"]["must"]
    assert must[0]["multi_match"]["query"] == "hello world"
    assert must[0]["multi_match"]["fuzziness"] == "AUTO"
    assert body["query"]["bool"]["filter"] == [
        {"term": {"channel_id": "C1"}},
        {"term": {"guild_id": "G1"}},
    ]
    assert (body["from"], body["size"]) == (40, 20)
    assert body["highlight"]["fields"]["content"]["fragment_size"] == 150


def test_relevance_sort_puts_score_first_with_recency_tiebreak():
    body = build_search_query(SearchFilters(text="cats"), sort=SortMode.RELEVANCE)

    assert body["sort"][0] == {"_score": {"order": "desc"}}
    assert body["sort"][1:] == RECENCY_SORT


def test_relevance_without_text_degrades_to_recency():
    body = build_search_query(SearchFilters(author_id="A1"), sort=SortMode.RELEVANCE)

    assert body["sort"] == RECENCY_SORT


@pytest.mark.parametrize("page,page_size", [(0, 10), (-1, 10), (1, 0), (1, 101)])
def test_invalid_paging_is_rejected(page, page_size):
    with pytest.raises(ValidationError):
        build_search_query(SearchFilters(), page=page, page_size=page_size)


def test_page_window_respects_custom_ceiling():
    assert page_window(2, 250, max_page_size=500) == (250, 250)
    with pytest.raises(ValidationError):
        page_window(1, 101)


def test_pages_past_result_window_are_rejected():
    assert build_search_query(SearchFilters(), page=200, page_size=50)["from"] == 9950

    with pytest.raises(ValidationError):
        build_search_query(SearchFilters(), page=201, page_size=50)
    with pytest.raises(ValidationError):
        build_search_query(SearchFilters(), page=11, page_size=10, max_result_window=100)
