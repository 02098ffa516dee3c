"""Application settings loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for the application."""

    # Discord upstream sources
    discord_bot_token: str = Field(default="")
    discord_api_base: str = Field(default="https://discord.com/api/v10")
    discord_legacy_api_base: str = Field(default="https://discordapp.com/api")
    discord_cdn_base: str = Field(default="https://cdn.discordapp.com")
    discord_user_agent: str = Field(default="DiscordLens/1.0.0 (https://discord.cat)")
    resolver_timeout_seconds: float = Field(default=5.0)
    resolver_rate_limit: int = Field(default=50)
    resolver_rate_window_seconds: float = Field(default=1.0)

    # Resolution cache
    cache_ttl_seconds: float = Field(default=300.0)
    cache_max_entries: int = Field(default=1000)
    # Which default-avatar formula to apply when a user has no avatar hash.
    default_avatar_strategy: Literal["snowflake", "discriminator"] = Field(
        default="snowflake"
    )

    # Elasticsearch. Either a cloud id (with api key or user/password) or a
    # plain URL must be provided for search to be available.
    elasticsearch_url: str = Field(default="")
    elasticsearch_cloud_id: str = Field(default="")
    elasticsearch_username: str = Field(default="")
    elasticsearch_password: str = Field(default="")
    elasticsearch_api_key: str = Field(default="")
    elasticsearch_index: str = Field(default="discord-messages")
    # Comma separated list of indices queried by search/stats.
    elasticsearch_search_indices: str = Field(default="")
    elasticsearch_timeout_seconds: float = Field(default=10.0)
    ingest_batch_size: int = Field(default=1000)
    ingest_refresh: bool = Field(default=True)
    max_page_size: int = Field(default=100)
    # Must match index.max_result_window on the cluster.
    max_result_window: int = Field(default=10000)

    public_url: str = Field(default="http://localhost:3001")
    log_level: str = Field(default="INFO")
    service_name: str = Field(default="discord-lens")
    environment: str = Field(default="development")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def search_configured(self) -> bool:
        return bool(self.elasticsearch_url or self.elasticsearch_cloud_id)

    @property
    def search_indices(self) -> List[str]:
        names = [n.strip() for n in self.elasticsearch_search_indices.split(",")]
        return [n for n in names if n] or [self.elasticsearch_index]


@lru_cache
def get_settings() -> Settings:
    """Return application settings instance."""
    return Settings()


__all__ = ["Settings", "get_settings"]
