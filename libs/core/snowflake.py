"""Helpers for Discord snowflake identifiers."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from .exceptions import ValidationError

SNOWFLAKE_RE = re.compile(r"^\d{17,20}$")
# Milliseconds since the Unix epoch at 2015-01-01T00:00:00Z.
DISCORD_EPOCH_MS = 1420070400000


def is_snowflake(value: object) -> bool:
    return isinstance(value, str) and SNOWFLAKE_RE.fullmatch(value) is not None


def validate_snowflake(value: object) -> str:
    """Return ``value`` unchanged or raise ``ValidationError``."""
    if not is_snowflake(value):
        raise ValidationError(
            f"Invalid id {value!r}: must be a Discord snowflake (17-20 digits)"
        )
    return value  # type: ignore[return-value]


def snowflake_created_at(value: str) -> datetime:
    """Creation time encoded in the high bits of a snowflake."""
    ms = (int(validate_snowflake(value)) >> 22) + DISCORD_EPOCH_MS
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=ms)


__all__ = [
    "SNOWFLAKE_RE",
    "DISCORD_EPOCH_MS",
    "is_snowflake",
    "validate_snowflake",
    "snowflake_created_at",
]
