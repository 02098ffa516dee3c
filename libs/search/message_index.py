from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from libs.core.exceptions import ConnectivityError, IngestError, StoreError, ValidationError
from libs.core.models import (
    HealthStatus,
    IndexState,
    IngestReport,
    MessageDocument,
    SearchFilters,
    SearchResult,
    SortMode,
    StatsSnapshot,
)

from .query_builder import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MAX_RESULT_WINDOW, build_search_query
from .store import DocumentStore

DEFAULT_BATCH_SIZE = 1000

TIMESTAMP_FORMATS = (
    "yyyy-MM-dd HH:mm:ss.SSSSSSXXX"
    "||yyyy-MM-dd HH:mm:ss.SSSXXX"
    "||strict_date_optional_time"
    "||epoch_millis"
)

MESSAGE_INDEX_SCHEMA: Dict[str, Any] = {
    "mappings": {
        "properties": {
            "message_id": {"type": "keyword"},
            "content": {
                "type": "text",
                "analyzer": "standard",
                "search_analyzer": "standard",
            },
            "author_id": {"type": "keyword"},
            "channel_id": {"type": "keyword"},
            "guild_id": {"type": "keyword"},
            "timestamp": {"type": "date", "format": TIMESTAMP_FORMATS},
            "content_length": {"type": "integer"},
            "has_content": {"type": "boolean"},
        }
    },
    "settings": {"number_of_shards": 1, "number_of_replicas": 0},
}

STATS_AGGREGATIONS: Dict[str, Any] = {
    "total_messages": {"value_count": {"field": "message_id"}},
    "unique_authors": {"cardinality": {"field": "author_id"}},
    "unique_channels": {"cardinality": {"field": "channel_id"}},
    "unique_guilds": {"cardinality": {"field": "guild_id"}},
}

DocumentInput = Union[MessageDocument, Mapping[str, Any]]


def to_index_document(doc: MessageDocument) -> Dict[str, Any]:
    body = doc.model_dump()
    body["content_length"] = len(doc.content)
    body["has_content"] = len(doc.content) > 0
    return body


class MessageIndex:
    """Search index of Discord messages.

    Owns the index lifecycle on top of a ``DocumentStore``: schema creation,
    paginated search, batched upserts and aggregate statistics. ``state``
    follows the last observed reachability of the store.
    """

    def __init__(
        self,
        store: DocumentStore,
        index_name: str = "discord-messages",
        search_indices: Optional[Sequence[str]] = None,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
        max_result_window: int = MAX_RESULT_WINDOW,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.index_name = index_name
        self.search_indices = list(search_indices or [index_name])
        self.batch_size = batch_size
        self.max_page_size = max_page_size
        self.max_result_window = max_result_window
        self.state = IndexState.CONFIGURED
        self._index_ready = False
        self.logger = logging.getLogger(__name__)

    # Internal helpers -------------------------------------------------
    def _mark_unreachable(self, exc: ConnectivityError) -> None:
        if self.state is not IndexState.UNREACHABLE:
            self.logger.warning("Search index became unreachable: %s", exc)
        self.state = IndexState.UNREACHABLE
        self._index_ready = False

    @staticmethod
    def _validate(documents: Iterable[DocumentInput]) -> List[MessageDocument]:
        validated: List[MessageDocument] = []
        for position, doc in enumerate(documents):
            if isinstance(doc, MessageDocument):
                validated.append(doc)
                continue
            try:
                validated.append(MessageDocument.model_validate(doc))
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid message document at position {position}: {exc}") from exc
        return validated

    @staticmethod
    def _total(hits: Mapping[str, Any]) -> int:
        total = hits.get("total", 0)
        if isinstance(total, Mapping):
            return int(total.get("value", 0))
        return int(total)

    # Public API -------------------------------------------------------
    async def ensure_index(self) -> bool:
        """Create the index if missing. Returns True when it was created."""
        try:
            if await self.store.exists(self.index_name):
                self.logger.info("Index already exists: %s", self.index_name)
                created = False
            else:
                # Another worker may win the race between exists and create.
                created = await self.store.create(self.index_name, MESSAGE_INDEX_SCHEMA)
        except ConnectivityError as exc:
            self._mark_unreachable(exc)
            raise
        self._index_ready = True
        if created:
            self.logger.info("Created index: %s", self.index_name)
        return created

    async def drop_index(self) -> None:
        await self.store.drop(self.index_name)
        self._index_ready = False
        self.logger.info("Deleted index: %s", self.index_name)

    async def search(
        self,
        filters: Optional[SearchFilters] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: SortMode = SortMode.RECENCY,
    ) -> SearchResult:
        filters = filters or SearchFilters()
        body = build_search_query(
            filters,
            page,
            page_size,
            sort,
            max_page_size=self.max_page_size,
            max_result_window=self.max_result_window,
        )
        if not self._index_ready:
            await self.ensure_index()
        started = time.perf_counter()
        try:
            response = await self.store.query(self.search_indices, body)
        except ConnectivityError as exc:
            self._mark_unreachable(exc)
            raise
        self.state = IndexState.HEALTHY
        hits = response.get("hits", {})
        documents: List[MessageDocument] = []
        highlights: Dict[str, List[str]] = {}
        for hit in hits.get("hits", []):
            try:
                doc = MessageDocument.model_validate(hit.get("_source") or {})
            except PydanticValidationError as exc:
                self.logger.warning(
                    "Skipping malformed document %s in %s",
                    hit.get("_id"),
                    hit.get("_index"),
                    extra={"errors": exc.error_count()},
                )
                continue
            documents.append(doc)
            fragments = (hit.get("highlight") or {}).get("content")
            if fragments:
                highlights[doc.message_id] = list(fragments)
        took = response.get("took")
        elapsed = int(took) if took is not None else int((time.perf_counter() - started) * 1000)
        return SearchResult(
            documents=documents,
            total=self._total(hits),
            elapsed_ms=elapsed,
            highlights=highlights,
            page=page,
            page_size=page_size,
        )

    async def bulk_ingest(
        self, documents: Iterable[DocumentInput], batch_size: Optional[int] = None
    ) -> IngestReport:
        """Upsert documents by ``message_id`` in sequential batches.

        A batch with any rejected document raises ``IngestError`` and stops
        the import; earlier batches stay committed, so a re-run is safe.
        """
        size = batch_size or self.batch_size
        docs = self._validate(documents)
        total_batches = (len(docs) + size - 1) // size
        imported = 0
        for batch_index in range(total_batches):
            batch = docs[batch_index * size : (batch_index + 1) * size]
            try:
                failures = await self.store.upsert_many(
                    self.index_name, [to_index_document(d) for d in batch], "message_id"
                )
            except ConnectivityError as exc:
                self._mark_unreachable(exc)
                raise IngestError(batch_index, [d.message_id for d in batch], imported, str(exc)) from exc
            except StoreError as exc:
                raise IngestError(batch_index, [d.message_id for d in batch], imported, str(exc)) from exc
            if failures:
                failed_ids = [str(f.get("id")) for f in failures]
                self.logger.error(
                    "Bulk batch %d/%d rejected %d documents",
                    batch_index + 1,
                    total_batches,
                    len(failures),
                    extra={"batch_index": batch_index, "failed_ids": failed_ids[:20]},
                )
                raise IngestError(batch_index, failed_ids, imported)
            imported += len(batch)
            self.logger.info(
                "Batch %d/%d completed (%d/%d messages)",
                batch_index + 1,
                total_batches,
                imported,
                len(docs),
            )
        return IngestReport(imported=imported, batches=total_batches)

    async def stats(self) -> StatsSnapshot:
        if not self._index_ready:
            await self.ensure_index()
        try:
            aggs = await self.store.aggregate(self.search_indices, STATS_AGGREGATIONS)
        except ConnectivityError as exc:
            self._mark_unreachable(exc)
            raise
        self.state = IndexState.HEALTHY

        def value(name: str) -> int:
            return int((aggs.get(name) or {}).get("value") or 0)

        return StatsSnapshot(
            total_messages=value("total_messages"),
            unique_authors=value("unique_authors"),
            unique_channels=value("unique_channels"),
            unique_guilds=value("unique_guilds"),
        )

    async def check_health(self) -> HealthStatus:
        """Probe the store. Never raises for an unreachable backend.

        The first successful probe after startup or an outage also makes sure
        the index exists, so a backend that was down at startup still ends up
        with a searchable index.
        """
        try:
            reachable = await self.store.ping()
            detail = None if reachable else "ping failed"
        except ConnectivityError as exc:
            reachable, detail = False, str(exc)
        if not reachable:
            self.state = IndexState.UNREACHABLE
            self._index_ready = False
            return HealthStatus(healthy=False, state=self.state, detail=detail)

        healthy = True
        if not self._index_ready:
            try:
                await self.ensure_index()
            except ConnectivityError as exc:
                return HealthStatus(healthy=False, state=self.state, detail=str(exc))
            except StoreError as exc:
                self.logger.error("Could not prepare index %s: %s", self.index_name, exc)
                healthy, detail = False, f"index unavailable: {exc}"
        self.state = IndexState.HEALTHY
        return HealthStatus(healthy=healthy, state=self.state, detail=detail)

    async def close(self) -> None:
        await self.store.close()


__all__ = [
    "MessageIndex",
    "MESSAGE_INDEX_SCHEMA",
    "STATS_AGGREGATIONS",
    "DEFAULT_BATCH_SIZE",
    "to_index_document",
]
