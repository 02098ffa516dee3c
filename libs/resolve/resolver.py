from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional

import httpx

from libs.core.models import EntityKind, EntityRecord
from libs.core.settings import Settings
from libs.core.snowflake import validate_snowflake

from .cache import ResolutionCache
from .chain import ResolverChain, ResolverStrategy
from .fallback import FallbackGenerator
from .rate_limit import SlidingWindowLimiter
from .strategies import (
    BotApiStrategy,
    PublicApiStrategy,
    WidgetGuildStrategy,
    WidgetMemberStrategy,
)

logger = logging.getLogger(__name__)


class EntityResolver:
    """Entry point for resolving users, guilds and channels.

    Holds one independent ``ResolutionCache`` per entity kind. Constructed
    once at startup and handed to whatever needs it.
    """

    def __init__(self, caches: Mapping[EntityKind, ResolutionCache]) -> None:
        missing = [k.value for k in EntityKind if k not in caches]
        if missing:
            raise ValueError(f"Missing caches for: {', '.join(missing)}")
        self.caches: Dict[EntityKind, ResolutionCache] = dict(caches)

    def cache(self, kind: EntityKind) -> ResolutionCache:
        return self.caches[EntityKind(kind)]

    async def resolve(
        self, kind: EntityKind, entity_id: str, guild_id: Optional[str] = None
    ) -> EntityRecord:
        return await self.cache(kind).resolve(entity_id, guild_id)

    async def resolve_many(
        self,
        kind: EntityKind,
        entity_ids: Iterable[str],
        guild_id: Optional[str] = None,
    ) -> Dict[str, EntityRecord]:
        """Resolve several ids concurrently. All ids are validated up front."""
        unique: List[str] = list(dict.fromkeys(validate_snowflake(i) for i in entity_ids))
        cache = self.cache(kind)
        records = await asyncio.gather(*(cache.resolve(i, guild_id) for i in unique))
        return dict(zip(unique, records))

    def invalidate(self, kind: EntityKind, entity_id: str) -> None:
        self.cache(kind).invalidate(entity_id)

    def clear(self, kind: Optional[EntityKind] = None) -> None:
        targets = [self.cache(kind)] if kind is not None else list(self.caches.values())
        for cache in targets:
            cache.clear()

    def cache_stats(self) -> Dict[str, Dict[str, float]]:
        return {kind.value: cache.stats() for kind, cache in self.caches.items()}


def build_strategies(
    kind: EntityKind,
    settings: Settings,
    client: httpx.AsyncClient,
    limiter: Optional[SlidingWindowLimiter] = None,
) -> List[ResolverStrategy]:
    """Upstream sources for ``kind`` in priority order.

    ``limiter`` is applied to the authenticated API, whose budget is shared
    by every entity kind using the same token.
    """
    common = {"user_agent": settings.discord_user_agent}
    strategies: List[ResolverStrategy] = []
    if settings.discord_bot_token:
        strategies.append(
            BotApiStrategy(
                kind,
                client,
                settings.discord_bot_token,
                api_base=settings.discord_api_base,
                limiter=limiter,
                **common,
            )
        )
    if kind is EntityKind.USER:
        strategies.append(PublicApiStrategy(client, settings.discord_api_base, **common))
        strategies.append(WidgetMemberStrategy(client, settings.discord_api_base, **common))
        strategies.append(
            PublicApiStrategy(
                client, settings.discord_legacy_api_base, name="legacy_api", **common
            )
        )
    elif kind is EntityKind.GUILD:
        strategies.append(WidgetGuildStrategy(client, settings.discord_api_base, **common))
    return strategies


def build_entity_resolver(settings: Settings, client: httpx.AsyncClient) -> EntityResolver:
    if not settings.discord_bot_token:
        logger.warning(
            "Discord bot token not configured; resolving through public sources only"
        )
    fallback = FallbackGenerator()
    limiter = SlidingWindowLimiter(
        max_requests=settings.resolver_rate_limit,
        window_seconds=settings.resolver_rate_window_seconds,
    )
    caches = {}
    for kind in EntityKind:
        chain = ResolverChain(
            kind,
            build_strategies(kind, settings, client, limiter),
            fallback=fallback,
            timeout=settings.resolver_timeout_seconds,
        )
        caches[kind] = ResolutionCache(
            chain,
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )
    return EntityResolver(caches)


__all__ = ["EntityResolver", "build_entity_resolver", "build_strategies"]
