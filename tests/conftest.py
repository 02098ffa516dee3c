import asyncio
import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Ensure project root on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from libs.core.exceptions import ConnectivityError
from libs.core.models import EntityKind, EntityRecord, MessageDocument
from libs.resolve.chain import Outcome, ResolverChain, ResolverStrategy
from libs.resolve.cache import ResolutionCache
from libs.resolve.fallback import FallbackGenerator
from libs.resolve.images import ImageUrlBuilder
from libs.resolve.resolver import EntityResolver
from libs.search.message_index import MessageIndex


# ---------------------------------------------------------------------------
# In-memory document store


def _tokens(text: str) -> List[str]:
    return re.findall(r"\w+", text.lower())


def _edit_distance(a: str, b: str) -> int:
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        cur = [i]
        for j, cb in enumerate(b, 1):
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + (ca != cb)))
        prev = cur
    return prev[-1]


def _auto_fuzziness(term: str) -> int:
    if len(term) <= 2:
        return 0
    if len(term) <= 5:
        return 1
    return 2


class FakeDocumentStore:
    """Evaluates the subset of the query DSL the query builder emits."""

    def __init__(self) -> None:
        self.indices: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.schemas: Dict[str, Any] = {}
        self.reachable = True
        self.reject_ids: set = set()
        self.upsert_batches: List[int] = []
        self.queries: List[Dict[str, Any]] = []
        self.create_calls = 0
        self.closed = False

    def _check(self) -> None:
        if not self.reachable:
            raise ConnectivityError("connection refused")

    async def exists(self, index: str) -> bool:
        self._check()
        return index in self.indices

    async def create(self, index: str, schema: Dict[str, Any]) -> bool:
        self._check()
        self.create_calls += 1
        if index in self.indices:
            return False
        self.indices[index] = {}
        self.schemas[index] = schema
        return True

    async def upsert_many(self, index, documents, id_field):
        self._check()
        self.upsert_batches.append(len(documents))
        failures = [
            {"id": d[id_field], "status": 400, "error": {"type": "mapper_parsing_exception"}}
            for d in documents
            if d[id_field] in self.reject_ids
        ]
        if failures:
            return failures
        target = self.indices.setdefault(index, {})
        for doc in documents:
            target[doc[id_field]] = dict(doc)
        return []

    def _docs(self, indices) -> Dict[str, Dict[str, Any]]:
        merged: Dict[str, Dict[str, Any]] = {}
        for name in indices:
            merged.update(self.indices.get(name, {}))
        return merged

    @staticmethod
    def _score(clause: Dict[str, Any], doc: Dict[str, Any]) -> Optional[float]:
        if "match_all" in clause:
            return 1.0
        spec = clause["multi_match"]
        content_tokens = _tokens(doc["content"])
        matched = 0
        for term in _tokens(spec["query"]):
            allowed = _auto_fuzziness(term)
            if any(_edit_distance(term, tok) <= allowed for tok in content_tokens):
                matched += 1
        return float(matched * 2) if matched else None

    async def query(self, indices, body):
        self._check()
        self.queries.append(body)
        bool_query = body["query"]["bool"]
        hits = []
        for doc in self._docs(indices).values():
            if any(doc[f] != v for t in bool_query.get("filter", []) for f, v in t["term"].items()):
                continue
            score = 0.0
            for clause in bool_query["must"]:
                s = self._score(clause, doc)
                if s is None:
                    break
                score += s
            else:
                hits.append({"_id": doc["message_id"], "_score": score, "_source": doc})

        for key in reversed(body.get("sort", [])):
            (field, opts), = key.items()
            reverse = opts.get("order") == "desc"
            if field == "_score":
                hits.sort(key=lambda h: h["_score"], reverse=reverse)
            else:
                hits.sort(key=lambda h: h["_source"][field], reverse=reverse)

        start = body.get("from", 0)
        page = hits[start : start + body.get("size", 10)]
        if "highlight" in body:
            for hit in page:
                hit["highlight"] = {"content": [hit["_source"]["content"][:150]]}
        return {"took": 3, "hits": {"total": {"value": len(hits), "relation": "eq"}, "hits": page}}

    async def aggregate(self, indices, aggregations):
        self._check()
        docs = list(self._docs(indices).values())
        result = {}
        for name, spec in aggregations.items():
            if "value_count" in spec:
                field = spec["value_count"]["field"]
                result[name] = {"value": sum(1 for d in docs if d.get(field) is not None)}
            else:
                field = spec["cardinality"]["field"]
                result[name] = {"value": len({d[field] for d in docs})}
        return result

    async def ping(self) -> bool:
        return self.reachable

    async def drop(self, index: str) -> None:
        self._check()
        self.indices.pop(index, None)

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Resolver helpers


class StubStrategy(ResolverStrategy):
    """Returns scripted outcomes and counts attempts."""

    def __init__(
        self,
        outcome: Optional[Outcome] = None,
        name: str = "stub",
        delay: float = 0.0,
        kind: EntityKind = EntityKind.USER,
    ) -> None:
        self.outcome = outcome
        self.kind = kind
        self.name = name
        self.delay = delay
        self.calls: List[tuple] = []

    async def attempt(self, entity_id, guild_id=None):
        self.calls.append((entity_id, guild_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.outcome is not None:
            return self.outcome
        return Outcome.success(make_record(entity_id, kind=self.kind, source=self.name))


def make_record(entity_id: str, kind: EntityKind = EntityKind.USER, source: str = "stub", name: str = "alice") -> EntityRecord:
    return EntityRecord(id=entity_id, kind=kind, display_name=name, source=source)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_messages(count: int, *, channels: int = 3, authors: int = 5, guilds: int = 2) -> List[MessageDocument]:
    """Deterministic corpus; timestamps strictly increase with the index."""
    docs = []
    for i in range(count):
        docs.append(
            MessageDocument(
                message_id=f"{100000000000000000 + i}",
                content=f"message number {i} about {'cats' if i % 2 else 'dogs'}",
                author_id=f"A{i % authors}",
                channel_id=f"C{i % channels}",
                guild_id=f"G{i % guilds}",
                timestamp=(BASE_TIME + timedelta(seconds=i)).strftime("%Y-%m-%dT%H:%M:%SZ"),
            )
        )
    return docs


USER_ID = "123456789012345678"
BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture()
def message_index(fake_store) -> MessageIndex:
    return MessageIndex(fake_store, "messages", batch_size=1000)


@pytest.fixture()
def stub_strategy() -> StubStrategy:
    return StubStrategy()


@pytest.fixture()
def user_cache(stub_strategy, clock) -> ResolutionCache:
    chain = ResolverChain(EntityKind.USER, [stub_strategy], timeout=1.0)
    return ResolutionCache(chain, ttl_seconds=300, max_entries=1000, clock=clock)


def make_resolver(clock: FakeClock) -> EntityResolver:
    """Resolver whose every kind succeeds through a ``StubStrategy``."""
    fallback = FallbackGenerator()
    return EntityResolver(
        {
            kind: ResolutionCache(
                ResolverChain(kind, [StubStrategy(kind=kind)], fallback=fallback), clock=clock
            )
            for kind in EntityKind
        }
    )


@pytest.fixture()
def client(message_index, clock):
    """FastAPI test client with dependencies overridden."""
    from apps.api.main import app, get_images, get_index, get_resolver

    resolver = make_resolver(clock)
    images = ImageUrlBuilder("https://cdn.test")
    app.dependency_overrides[get_resolver] = lambda: resolver
    app.dependency_overrides[get_images] = lambda: images
    app.dependency_overrides[get_index] = lambda: message_index

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
