from __future__ import annotations

import asyncio
from typing import Dict, Optional

from pydantic import BaseModel, Field

from libs.core.models import EntityKind, EntityRecord, SearchFilters, SearchResult, SortMode
from libs.core.snowflake import is_snowflake
from libs.resolve import EntityResolver
from libs.search import MessageIndex
from libs.search.query_builder import DEFAULT_PAGE_SIZE


class SearchPage(BaseModel):
    """A search result page with display data for the ids it mentions."""

    result: SearchResult
    users: Dict[str, EntityRecord] = Field(default_factory=dict)
    channels: Dict[str, EntityRecord] = Field(default_factory=dict)
    guilds: Dict[str, EntityRecord] = Field(default_factory=dict)


class SearchMessages:
    """Run a message search and resolve the authors, channels and guilds on the page."""

    def __init__(self, index: MessageIndex, resolver: Optional[EntityResolver] = None) -> None:
        self.index = index
        self.resolver = resolver

    # ------------------------------------------------------------------
    async def __call__(
        self,
        filters: SearchFilters,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: SortMode = SortMode.RECENCY,
        resolve_entities: bool = True,
    ) -> SearchPage:
        result = await self.index.search(filters, page, page_size, sort)
        if not resolve_entities or self.resolver is None or not result.documents:
            return SearchPage(result=result)

        # Ids that are not snowflakes (e.g. hand-edited exports) are left unresolved.
        author_ids = [d.author_id for d in result.documents if is_snowflake(d.author_id)]
        channel_ids = [d.channel_id for d in result.documents if is_snowflake(d.channel_id)]
        guild_ids = [d.guild_id for d in result.documents if is_snowflake(d.guild_id)]
        # Widget lookups need a guild; a page filtered to one guild provides it.
        guild_context = filters.guild_id if filters.guild_id and is_snowflake(filters.guild_id) else None

        users, channels, guilds = await asyncio.gather(
            self.resolver.resolve_many(EntityKind.USER, author_ids, guild_context),
            self.resolver.resolve_many(EntityKind.CHANNEL, channel_ids),
            self.resolver.resolve_many(EntityKind.GUILD, guild_ids),
        )
        return SearchPage(result=result, users=users, channels=channels, guilds=guilds)


__all__ = ["SearchMessages", "SearchPage"]
