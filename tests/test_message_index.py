import asyncio

import pytest

from conftest import make_messages
from libs.core.exceptions import ConnectivityError, IngestError, ValidationError
from libs.core.models import IndexState, SearchFilters, SortMode
from libs.search.message_index import MESSAGE_INDEX_SCHEMA, MessageIndex


def ingest(index, docs, **kwargs):
    return asyncio.run(index.bulk_ingest(docs, **kwargs))


def test_ensure_index_creates_once(message_index, fake_store):
    async def run():
        return await message_index.ensure_index(), await message_index.ensure_index()

    created, again = asyncio.run(run())

    assert (created, again) == (True, False)
    assert fake_store.schemas["messages"] is MESSAGE_INDEX_SCHEMA
    properties = MESSAGE_INDEX_SCHEMA["mappings"]["properties"]
    assert properties["author_id"]["type"] == "keyword"
    assert properties["content"]["type"] == "text"
    assert properties["timestamp"]["type"] == "date"


def test_search_returns_newest_first_with_total(message_index):
    ingest(message_index, make_messages(30))

    result = asyncio.run(message_index.search(SearchFilters(), page=1, page_size=10))

    assert result.total == 30
    assert len(result.documents) == 10
    assert result.documents[0].message_id == "100000000000000029"
    stamps = [d.timestamp for d in result.documents]
    assert stamps == sorted(stamps, reverse=True)


def test_channel_filter_partitions_corpus(message_index):
    ingest(message_index, make_messages(30, channels=3))

    async def run():
        return [
            await message_index.search(SearchFilters(channel_id=f"C{c}"), page_size=100)
            for c in range(3)
        ]

    results = asyncio.run(run())

    assert [r.total for r in results] == [10, 10, 10]
    seen = {d.message_id for r in results for d in r.documents}
    assert len(seen) == 30
    assert all(d.channel_id == "C1" for d in results[1].documents)


def test_pages_concatenate_to_full_result(message_index):
    ingest(message_index, make_messages(25))

    async def run():
        pages = [await message_index.search(SearchFilters(), page=p, page_size=10) for p in (1, 2, 3)]
        whole = await message_index.search(SearchFilters(), page=1, page_size=25)
        return pages, whole

    pages, whole = asyncio.run(run())

    assert [len(p.documents) for p in pages] == [10, 10, 5]
    assert [d for p in pages for d in p.documents] == whole.documents


def test_fuzzy_text_search_with_highlights(message_index):
    ingest(message_index, make_messages(10))

    result = asyncio.run(message_index.search(SearchFilters(text="cts"), sort=SortMode.RELEVANCE))

    assert result.total == 5
    assert all("cats" in d.content for d in result.documents)
    assert set(result.highlights) == {d.message_id for d in result.documents}


def test_relevance_sort_sends_score_key(message_index, fake_store):
    ingest(message_index, make_messages(4))

    asyncio.run(message_index.search(SearchFilters(text="dogs"), sort=SortMode.RELEVANCE))

    assert fake_store.queries[-1]["sort"][0] == {"_score": {"order": "desc"}}


def test_bulk_ingest_batches_and_is_idempotent(message_index, fake_store):
    docs = make_messages(2500)

    first = ingest(message_index, docs)
    second = ingest(message_index, docs)
    stats = asyncio.run(message_index.stats())

    assert fake_store.upsert_batches == [1000, 1000, 500, 1000, 1000, 500]
    assert (first.imported, first.batches) == (2500, 3)
    assert second.imported == 2500
    assert stats.total_messages == 2500
    assert stats.unique_authors == 5
    assert stats.unique_channels == 3
    assert stats.unique_guilds == 2


def test_bulk_ingest_custom_batch_size(message_index, fake_store):
    report = ingest(message_index, make_messages(7), batch_size=3)

    assert fake_store.upsert_batches == [3, 3, 1]
    assert report.batches == 3


def test_rejected_document_fails_its_batch(message_index, fake_store):
    fake_store.reject_ids = {"100000000000001500"}

    with pytest.raises(IngestError) as excinfo:
        ingest(message_index, make_messages(2500))

    assert excinfo.value.batch_index == 1
    assert excinfo.value.imported == 1000
    assert excinfo.value.failed_ids == ["100000000000001500"]
    assert fake_store.upsert_batches == [1000, 1000]
    assert len(fake_store.indices["messages"]) == 1000


def test_invalid_document_rejected_before_any_write(message_index, fake_store):
    docs = [d.model_dump() for d in make_messages(3)]
    docs[2]["author_id"] = "  "

    with pytest.raises(ValidationError):
        ingest(message_index, docs)

    assert fake_store.upsert_batches == []


def test_missing_field_rejected(message_index):
    with pytest.raises(ValidationError):
        ingest(message_index, [{"message_id": "1", "content": "hi"}])


def test_unreachable_store(message_index, fake_store):
    fake_store.reachable = False

    health = asyncio.run(message_index.check_health())
    assert health.healthy is False
    assert message_index.state is IndexState.UNREACHABLE

    with pytest.raises(ConnectivityError):
        asyncio.run(message_index.search(SearchFilters()))
    with pytest.raises(ConnectivityError):
        asyncio.run(message_index.stats())
    with pytest.raises(IngestError):
        ingest(message_index, make_messages(2))

    fake_store.reachable = True
    asyncio.run(message_index.search(SearchFilters()))
    assert message_index.state is IndexState.HEALTHY


def test_state_starts_configured(fake_store):
    index = MessageIndex(fake_store, "messages")

    assert index.state is IndexState.CONFIGURED
    assert asyncio.run(index.check_health()).state is IndexState.HEALTHY


def test_searches_every_configured_index(fake_store):
    async def run():
        a = MessageIndex(fake_store, "a")
        b = MessageIndex(fake_store, "b")
        await a.bulk_ingest(make_messages(3))
        await b.bulk_ingest(make_messages(6)[3:])
        both = MessageIndex(fake_store, "a", search_indices=["a", "b"])
        return await both.search(SearchFilters()), await both.stats()

    result, stats = asyncio.run(run())

    assert result.total == 6
    assert stats.total_messages == 6


def test_drop_and_close(message_index, fake_store):
    ingest(message_index, make_messages(2))

    async def run():
        await message_index.drop_index()
        await message_index.close()

    asyncio.run(run())

    assert "messages" not in fake_store.indices
    assert fake_store.closed


def test_index_created_once_backend_recovers(message_index, fake_store):
    fake_store.reachable = False

    async def run():
        down = await message_index.check_health()
        fake_store.reachable = True
        up = await message_index.check_health()
        again = await message_index.check_health()
        return down, up, again

    down, up, again = asyncio.run(run())

    assert down.healthy is False
    assert up.healthy is True
    assert again.healthy is True
    assert message_index.state is IndexState.HEALTHY
    assert "messages" in fake_store.schemas
    assert fake_store.create_calls == 1


def test_first_search_creates_missing_index(message_index, fake_store):
    result = asyncio.run(message_index.search(SearchFilters()))

    assert result.total == 0
    assert "messages" in fake_store.schemas


def test_concurrently_created_index_is_not_an_error(message_index, fake_store):
    async def exists_then_raced(index):
        fake_store.indices.setdefault(index, {})
        return False

    fake_store.exists = exists_then_raced

    assert asyncio.run(message_index.ensure_index()) is False
    assert fake_store.create_calls == 1


def test_result_window_enforced_by_index(fake_store):
    index = MessageIndex(fake_store, "messages", max_result_window=100)

    with pytest.raises(ValidationError):
        asyncio.run(index.search(SearchFilters(), page=3, page_size=50))
    assert fake_store.queries == []


def test_malformed_hits_are_skipped(fake_store):
    fake_store.indices["legacy"] = {
        "999": {"message_id": "999", "timestamp": "2030-01-01T00:00:00Z", "author_id": 12},
    }
    index = MessageIndex(fake_store, "messages", search_indices=["messages", "legacy"])
    asyncio.run(index.bulk_ingest(make_messages(3)))

    result = asyncio.run(index.search(SearchFilters()))

    assert result.total == 4
    assert [d.message_id for d in result.documents] == [
        "100000000000000002",
        "100000000000000001",
        "100000000000000000",
    ]
