"""Ordered lookup strategies for a single entity kind."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from libs.core.models import EntityKind, EntityRecord

from .fallback import FallbackGenerator


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    NOT_APPLICABLE = "not_applicable"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL = "fatal"


@dataclass(frozen=True)
class Outcome:
    """Result of one strategy attempt."""

    status: OutcomeStatus
    record: Optional[EntityRecord] = None
    reason: str = ""

    @classmethod
    def success(cls, record: EntityRecord) -> "Outcome":
        return cls(OutcomeStatus.SUCCESS, record=record)

    @classmethod
    def not_applicable(cls, reason: str = "") -> "Outcome":
        return cls(OutcomeStatus.NOT_APPLICABLE, reason=reason)

    @classmethod
    def transient(cls, reason: str = "") -> "Outcome":
        return cls(OutcomeStatus.TRANSIENT_FAILURE, reason=reason)

    @classmethod
    def fatal(cls, reason: str = "") -> "Outcome":
        return cls(OutcomeStatus.FATAL, reason=reason)


class ResolverStrategy:
    """One upstream source able to look up entities of a kind."""

    name = "strategy"

    async def attempt(self, entity_id: str, guild_id: Optional[str] = None) -> Outcome:
        raise NotImplementedError


class ResolverChain:
    """Try strategies in priority order, ending at the fallback generator.

    ``resolve`` always returns a record: timeouts and unexpected errors are
    treated as transient failures, and a fatal outcome skips the remaining
    strategies.
    """

    def __init__(
        self,
        kind: EntityKind,
        strategies: Sequence[ResolverStrategy],
        fallback: Optional[FallbackGenerator] = None,
        timeout: Optional[float] = 5.0,
    ) -> None:
        self.kind = kind
        self.strategies = list(strategies)
        self.fallback = fallback or FallbackGenerator()
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    async def _attempt(
        self, strategy: ResolverStrategy, entity_id: str, guild_id: Optional[str]
    ) -> Outcome:
        try:
            return await asyncio.wait_for(
                strategy.attempt(entity_id, guild_id), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return Outcome.transient(f"timed out after {self.timeout}s")
        except Exception as exc:  # noqa: BLE001 - any strategy bug advances the chain
            self.logger.warning(
                "Strategy %s raised for %s %s",
                strategy.name,
                self.kind.value,
                entity_id,
                exc_info=True,
            )
            return Outcome.transient(f"{type(exc).__name__}: {exc}")

    async def resolve(self, entity_id: str, guild_id: Optional[str] = None) -> EntityRecord:
        for strategy in self.strategies:
            outcome = await self._attempt(strategy, entity_id, guild_id)
            if outcome.status is OutcomeStatus.SUCCESS and outcome.record is not None:
                self.logger.debug(
                    "Resolved %s %s via %s", self.kind.value, entity_id, strategy.name
                )
                return outcome.record
            if outcome.status is OutcomeStatus.FATAL:
                self.logger.error(
                    "Strategy %s failed fatally for %s %s: %s",
                    strategy.name,
                    self.kind.value,
                    entity_id,
                    outcome.reason,
                )
                break
            self.logger.info(
                "Strategy %s skipped %s %s (%s): %s",
                strategy.name,
                self.kind.value,
                entity_id,
                outcome.status.value,
                outcome.reason,
            )
        return self.fallback.generate(self.kind, entity_id)


__all__ = ["OutcomeStatus", "Outcome", "ResolverStrategy", "ResolverChain"]
