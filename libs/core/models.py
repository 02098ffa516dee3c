"""Pydantic models representing core domain entities."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntityKind(str, Enum):
    """Kinds of Discord entities that can be resolved to display data."""

    USER = "user"
    GUILD = "guild"
    CHANNEL = "channel"


class EntityRecord(BaseModel):
    """Display data for a user, guild or channel."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: EntityKind
    display_name: str
    secondary_name: Optional[str] = None
    image_ref: Optional[str] = None
    discriminator: Optional[str] = None
    source: str = Field(..., description="Name of the strategy that produced the record")


class MessageDocument(BaseModel):
    """A single Discord message as stored in the search index."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    content: str
    author_id: str
    channel_id: str
    guild_id: str
    timestamp: str

    @field_validator("message_id", "author_id", "channel_id", "guild_id", "timestamp")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class SortMode(str, Enum):
    RELEVANCE = "relevance"
    RECENCY = "recency"


class SearchFilters(BaseModel):
    """Optional filters for a message search. Blank values count as absent."""

    text: Optional[str] = None
    author_id: Optional[str] = None
    channel_id: Optional[str] = None
    guild_id: Optional[str] = None

    @field_validator("text", "author_id", "channel_id", "guild_id")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class SearchResult(BaseModel):
    """A page of matching messages plus the size of the full match set."""

    documents: List[MessageDocument] = Field(default_factory=list)
    total: int = 0
    elapsed_ms: int = 0
    highlights: Dict[str, List[str]] = Field(default_factory=dict)
    page: int = 1
    page_size: int = 0


class StatsSnapshot(BaseModel):
    """Index statistics. Distinct counts are approximate."""

    total_messages: int
    unique_authors: int
    unique_channels: int
    unique_guilds: int


class IndexState(str, Enum):
    CONFIGURED = "configured"
    HEALTHY = "healthy"
    UNREACHABLE = "unreachable"


class HealthStatus(BaseModel):
    healthy: bool
    state: IndexState
    detail: Optional[str] = None


class IngestReport(BaseModel):
    imported: int
    batches: int


__all__ = [
    "EntityKind",
    "EntityRecord",
    "MessageDocument",
    "SortMode",
    "SearchFilters",
    "SearchResult",
    "StatsSnapshot",
    "IndexState",
    "HealthStatus",
    "IngestReport",
]
