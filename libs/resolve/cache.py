"""TTL cache with in-flight request coalescing in front of a resolver chain."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from libs.core.models import EntityRecord
from libs.core.snowflake import validate_snowflake

from .chain import ResolverChain

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 1000


@dataclass(frozen=True)
class CacheEntry:
    value: EntityRecord
    fetched_at: float


class ResolutionCache:
    """Resolve ids of one entity kind with caching and de-duplication.

    At most one upstream fetch runs per id: the in-flight task is registered
    before the first suspension point, so concurrent callers for the same id
    all await the same task. Expired entries are dropped lazily on read and
    by a sweep once the cache grows past ``max_entries``.
    """

    def __init__(
        self,
        chain: ResolverChain,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: Optional[int] = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.chain = chain
        self.kind = chain.kind
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._in_flight: Dict[str, "asyncio.Task[EntityRecord]"] = {}
        self.logger = logging.getLogger(__name__)

    # Internal helpers -------------------------------------------------
    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.fetched_at < self.ttl_seconds

    def _lookup(self, entity_id: str) -> Optional[EntityRecord]:
        entry = self._entries.get(entity_id)
        if entry is None:
            return None
        if self._is_fresh(entry, self._clock()):
            return entry.value
        del self._entries[entity_id]
        return None

    def _store(self, entity_id: str, record: EntityRecord) -> None:
        # Re-insert so dict order tracks write time for oldest-first eviction.
        self._entries.pop(entity_id, None)
        self._entries[entity_id] = CacheEntry(value=record, fetched_at=self._clock())
        if self.max_entries is not None and len(self._entries) > self.max_entries:
            self._evict()

    def _evict(self) -> None:
        removed = self.sweep()
        overflow = len(self._entries) - (self.max_entries or 0)
        if overflow > 0:
            for key in list(self._entries)[:overflow]:
                del self._entries[key]
            removed += overflow
        self.logger.debug(
            "Evicted %d %s cache entries", removed, self.kind.value, extra={"size": len(self._entries)}
        )

    async def _fetch(self, entity_id: str, guild_id: Optional[str]) -> EntityRecord:
        task = asyncio.current_task()
        try:
            record = await self.chain.resolve(entity_id, guild_id)
            self._store(entity_id, record)
            return record
        finally:
            if self._in_flight.get(entity_id) is task:
                del self._in_flight[entity_id]

    # Public API -------------------------------------------------------
    async def resolve(self, entity_id: str, guild_id: Optional[str] = None) -> EntityRecord:
        """Return display data for ``entity_id``; raises only on a malformed id."""
        validate_snowflake(entity_id)
        cached = self._lookup(entity_id)
        if cached is not None:
            self.logger.debug("Cache hit for %s %s", self.kind.value, entity_id)
            return cached
        task = self._in_flight.get(entity_id)
        if task is None:
            task = asyncio.ensure_future(self._fetch(entity_id, guild_id))
            self._in_flight[entity_id] = task
        else:
            self.logger.debug("Joining in-flight fetch for %s %s", self.kind.value, entity_id)
        # A caller giving up must not cancel the fetch other callers share.
        return await asyncio.shield(task)

    def peek(self, entity_id: str) -> Optional[EntityRecord]:
        """Fresh cached value without triggering a fetch."""
        return self._lookup(entity_id)

    def invalidate(self, entity_id: str) -> None:
        self._entries.pop(entity_id, None)

    def clear(self, include_in_flight: bool = False) -> None:
        """Drop all entries. Running fetches still complete and write back."""
        self._entries.clear()
        if include_in_flight:
            self._in_flight.clear()

    def sweep(self) -> int:
        """Remove expired entries and return how many were dropped."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if not self._is_fresh(e, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> Dict[str, float]:
        now = self._clock()
        valid = sum(1 for e in self._entries.values() if self._is_fresh(e, now))
        return {
            "total_entries": len(self._entries),
            "valid_entries": valid,
            "expired_entries": len(self._entries) - valid,
            "in_flight": len(self._in_flight),
            "ttl_seconds": self.ttl_seconds,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entries


__all__ = ["ResolutionCache", "CacheEntry", "DEFAULT_TTL_SECONDS", "DEFAULT_MAX_ENTRIES"]
