from __future__ import annotations

from libs.core.models import EntityKind, EntityRecord

ADJECTIVES = ("Cool", "Epic", "Swift", "Bright", "Bold", "Quick", "Smart", "Wild")
NOUNS = ("Gamer", "Coder", "Artist", "Ninja", "Wizard", "Hunter", "Knight", "Sage")

FALLBACK_SOURCE = "fallback"


class FallbackGenerator:
    """Map an id to stable synthetic display data.

    The output depends only on the id, so it is identical across calls and
    process restarts. No image reference is produced; consumers derive a
    default image instead.
    """

    seed_width = 8

    def seed(self, entity_id: str) -> int:
        tail = entity_id[-self.seed_width :]
        try:
            value = int(tail, 16)
        except ValueError:
            value = 0
        return value or 1

    def generate(self, kind: EntityKind, entity_id: str) -> EntityRecord:
        seed = self.seed(entity_id)
        adjective = ADJECTIVES[seed % len(ADJECTIVES)]
        noun = NOUNS[(seed >> 3) % len(NOUNS)]
        suffix = f"{seed % 10000:04d}"
        return EntityRecord(
            id=entity_id,
            kind=kind,
            display_name=f"{adjective}{noun}{suffix}",
            secondary_name=f"{adjective} {noun}",
            image_ref=None,
            discriminator=None,
            source=FALLBACK_SOURCE,
        )


__all__ = ["FallbackGenerator", "ADJECTIVES", "NOUNS", "FALLBACK_SOURCE"]
