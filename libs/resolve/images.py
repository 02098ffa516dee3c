"""CDN image URLs for resolved entities.

Users without a custom avatar get one of Discord's default avatars. Two
formulas for picking the default index are in use and they disagree for
accounts that still carry a legacy discriminator, so the formula is a named
strategy chosen through configuration:

``snowflake``
    ``(id >> 22) % 6`` for everyone.
``discriminator``
    the snowflake formula when the discriminator is absent or ``"0"``,
    otherwise ``discriminator % 5``.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

from libs.core.models import EntityKind, EntityRecord

DEFAULT_CDN_BASE = "https://cdn.discordapp.com"


def snowflake_avatar_index(entity_id: str, discriminator: Optional[str] = None) -> int:
    return (int(entity_id) >> 22) % 6


def discriminator_avatar_index(entity_id: str, discriminator: Optional[str] = None) -> int:
    if not discriminator or discriminator == "0":
        return snowflake_avatar_index(entity_id)
    try:
        return int(discriminator) % 5
    except ValueError:
        return snowflake_avatar_index(entity_id)


DEFAULT_AVATAR_STRATEGIES: Dict[str, Callable[[str, Optional[str]], int]] = {
    "snowflake": snowflake_avatar_index,
    "discriminator": discriminator_avatar_index,
}


def _extension(image_hash: str) -> str:
    return "gif" if image_hash.startswith("a_") else "png"


class ImageUrlBuilder:
    """Build avatar and icon URLs for entity records."""

    def __init__(self, cdn_base: str = DEFAULT_CDN_BASE, default_avatar_strategy: str = "snowflake") -> None:
        if default_avatar_strategy not in DEFAULT_AVATAR_STRATEGIES:
            raise ValueError(f"Unknown default avatar strategy: {default_avatar_strategy}")
        self.cdn_base = cdn_base.rstrip("/")
        self.default_avatar_strategy = default_avatar_strategy
        self._default_index = DEFAULT_AVATAR_STRATEGIES[default_avatar_strategy]

    def default_avatar_url(self, entity_id: str, discriminator: Optional[str] = None) -> str:
        index = self._default_index(entity_id, discriminator)
        return f"{self.cdn_base}/embed/avatars/{index}.png"

    def avatar_url(self, record: EntityRecord, size: int = 128) -> str:
        if record.image_ref:
            ext = _extension(record.image_ref)
            return f"{self.cdn_base}/avatars/{record.id}/{record.image_ref}.{ext}?size={size}"
        return self.default_avatar_url(record.id, record.discriminator)

    def guild_icon_url(self, record: EntityRecord, size: int = 64) -> Optional[str]:
        if not record.image_ref:
            return None
        ext = _extension(record.image_ref)
        return f"{self.cdn_base}/icons/{record.id}/{record.image_ref}.{ext}?size={size}"

    def url_for(self, record: EntityRecord, size: int = 128) -> Optional[str]:
        if record.kind is EntityKind.USER:
            return self.avatar_url(record, size)
        if record.kind is EntityKind.GUILD:
            return self.guild_icon_url(record, size)
        return None


__all__ = [
    "ImageUrlBuilder",
    "DEFAULT_AVATAR_STRATEGIES",
    "snowflake_avatar_index",
    "discriminator_avatar_index",
]
