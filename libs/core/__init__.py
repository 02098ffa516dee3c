"""Core library exposing domain models, settings and exceptions."""

from .settings import Settings, get_settings
from .exceptions import (
    DomainError,
    ValidationError,
    ConfigurationError,
    ConnectivityError,
    StoreError,
    IngestError,
    Error,
)
from .models import (
    EntityKind,
    EntityRecord,
    MessageDocument,
    SortMode,
    SearchFilters,
    SearchResult,
    StatsSnapshot,
    IndexState,
    HealthStatus,
    IngestReport,
)
from .snowflake import is_snowflake, validate_snowflake, snowflake_created_at

__all__ = [
    "Settings",
    "get_settings",
    "DomainError",
    "ValidationError",
    "ConfigurationError",
    "ConnectivityError",
    "StoreError",
    "IngestError",
    "Error",
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
    "is_snowflake",
    "validate_snowflake",
    "snowflake_created_at",
]
