"""Upstream Discord sources used by the resolver chains.

Each strategy performs at most one HTTP request per attempt and reports the
result as an ``Outcome``:

* 2xx with a usable payload -> success
* 403/404, missing guild context, member absent from a widget -> not applicable
* 429, 5xx, network errors, timeouts, malformed payloads -> transient failure
* 401 on the authenticated API -> fatal (the token itself is bad)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import httpx

from libs.core.exceptions import ConfigurationError
from libs.core.models import EntityKind, EntityRecord

from .chain import Outcome, ResolverStrategy
from .rate_limit import SlidingWindowLimiter

DEFAULT_RETRY_AFTER = 5.0


def _full_username(username: str, discriminator: Optional[str]) -> str:
    if not discriminator or discriminator in ("0", "0000"):
        return f"@{username}"
    return f"{username}#{discriminator}"


def user_record(payload: Mapping[str, Any], source: str) -> EntityRecord:
    username = payload["username"]
    discriminator = payload.get("discriminator")
    return EntityRecord(
        id=str(payload["id"]),
        kind=EntityKind.USER,
        display_name=payload.get("global_name") or username,
        secondary_name=_full_username(username, discriminator),
        image_ref=payload.get("avatar"),
        discriminator=discriminator,
        source=source,
    )


def guild_record(payload: Mapping[str, Any], source: str) -> EntityRecord:
    return EntityRecord(
        id=str(payload["id"]),
        kind=EntityKind.GUILD,
        display_name=payload["name"],
        secondary_name=payload.get("description"),
        image_ref=payload.get("icon"),
        source=source,
    )


def channel_record(payload: Mapping[str, Any], source: str) -> EntityRecord:
    return EntityRecord(
        id=str(payload["id"]),
        kind=EntityKind.CHANNEL,
        display_name=payload["name"],
        secondary_name=payload.get("topic"),
        source=source,
    )


PARSERS: Dict[EntityKind, Callable[[Mapping[str, Any], str], EntityRecord]] = {
    EntityKind.USER: user_record,
    EntityKind.GUILD: guild_record,
    EntityKind.CHANNEL: channel_record,
}

API_PATHS = {
    EntityKind.USER: "users",
    EntityKind.GUILD: "guilds",
    EntityKind.CHANNEL: "channels",
}


class HttpStrategy(ResolverStrategy):
    """Shared request/response handling for httpx based strategies."""

    name = "http"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        limiter: Optional[SlidingWindowLimiter] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.client = client
        self.limiter = limiter
        self.user_agent = user_agent
        self.logger = logging.getLogger(__name__)

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        return headers

    def outcome_for_status(self, response: httpx.Response) -> Outcome:
        status = response.status_code
        if status == 429:
            retry_after = _retry_after(response)
            if self.limiter is not None:
                self.limiter.block_for(retry_after)
            return Outcome.transient(f"rate limited, retry after {retry_after}s")
        if status in (403, 404):
            return Outcome.not_applicable(f"HTTP {status}")
        return Outcome.transient(f"HTTP {status}")

    async def get_json(self, url: str) -> Tuple[Optional[Any], Optional[Outcome]]:
        """Return ``(payload, None)`` on success or ``(None, outcome)``."""
        if self.limiter is not None and not self.limiter.try_acquire():
            return None, Outcome.transient("local rate limit exhausted")
        try:
            response = await self.client.get(url, headers=self.headers())
        except httpx.TimeoutException:
            return None, Outcome.transient("request timed out")
        except httpx.HTTPError as exc:
            return None, Outcome.transient(f"{type(exc).__name__}: {exc}")
        if not response.is_success:
            return None, self.outcome_for_status(response)
        try:
            return response.json(), None
        except ValueError:
            return None, Outcome.transient("response is not JSON")


def _retry_after(response: httpx.Response) -> float:
    raw = response.headers.get("retry-after")
    try:
        return float(raw) if raw is not None else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER


class BotApiStrategy(HttpStrategy):
    """Authenticated lookup through the Discord REST API."""

    name = "bot_api"

    def __init__(
        self,
        kind: EntityKind,
        client: httpx.AsyncClient,
        token: str,
        api_base: str = "https://discord.com/api/v10",
        **kwargs: Any,
    ) -> None:
        if not token:
            raise ConfigurationError("Discord bot token is not configured")
        super().__init__(client, **kwargs)
        self.kind = kind
        self.token = token
        self.api_base = api_base.rstrip("/")

    def headers(self) -> Dict[str, str]:
        headers = super().headers()
        headers["Authorization"] = f"Bot {self.token}"
        return headers

    def outcome_for_status(self, response: httpx.Response) -> Outcome:
        if response.status_code == 401:
            return Outcome.fatal("Invalid Discord bot token")
        return super().outcome_for_status(response)

    async def attempt(self, entity_id: str, guild_id: Optional[str] = None) -> Outcome:
        url = f"{self.api_base}/{API_PATHS[self.kind]}/{entity_id}"
        payload, failure = await self.get_json(url)
        if failure is not None:
            return failure
        try:
            return Outcome.success(PARSERS[self.kind](payload, self.name))
        except (KeyError, TypeError, ValueError) as exc:
            return Outcome.transient(f"malformed payload: {exc}")


class PublicApiStrategy(HttpStrategy):
    """Unauthenticated user lookup; works for a subset of accounts."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_base: str,
        name: str = "public_api",
        **kwargs: Any,
    ) -> None:
        super().__init__(client, **kwargs)
        self.api_base = api_base.rstrip("/")
        self.name = name

    def outcome_for_status(self, response: httpx.Response) -> Outcome:
        if response.status_code == 401:
            return Outcome.not_applicable("authentication required")
        return super().outcome_for_status(response)

    async def attempt(self, entity_id: str, guild_id: Optional[str] = None) -> Outcome:
        payload, failure = await self.get_json(f"{self.api_base}/users/{entity_id}")
        if failure is not None:
            return failure
        try:
            return Outcome.success(user_record(payload, self.name))
        except (KeyError, TypeError, ValueError) as exc:
            return Outcome.transient(f"malformed payload: {exc}")


class WidgetMemberStrategy(HttpStrategy):
    """Find a user among the members listed by a guild's public widget."""

    name = "widget"

    def __init__(self, client: httpx.AsyncClient, api_base: str, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self.api_base = api_base.rstrip("/")

    async def attempt(self, entity_id: str, guild_id: Optional[str] = None) -> Outcome:
        if not guild_id:
            return Outcome.not_applicable("no guild context")
        payload, failure = await self.get_json(f"{self.api_base}/guilds/{guild_id}/widget.json")
        if failure is not None:
            return failure
        members = payload.get("members") if isinstance(payload, dict) else None
        for member in members or []:
            if str(member.get("id")) != entity_id:
                continue
            username = member.get("username")
            if not username:
                return Outcome.transient("widget member without username")
            discriminator = member.get("discriminator")
            return Outcome.success(
                EntityRecord(
                    id=entity_id,
                    kind=EntityKind.USER,
                    display_name=member.get("nick") or username,
                    secondary_name=_full_username(username, discriminator),
                    image_ref=member.get("avatar"),
                    discriminator=discriminator,
                    source=self.name,
                )
            )
        return Outcome.not_applicable("not listed in guild widget")


class WidgetGuildStrategy(HttpStrategy):
    """Guild name from the public widget; carries no icon."""

    name = "widget"

    def __init__(self, client: httpx.AsyncClient, api_base: str, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self.api_base = api_base.rstrip("/")

    async def attempt(self, entity_id: str, guild_id: Optional[str] = None) -> Outcome:
        payload, failure = await self.get_json(f"{self.api_base}/guilds/{entity_id}/widget.json")
        if failure is not None:
            return failure
        if not isinstance(payload, dict) or not payload.get("name"):
            return Outcome.transient("widget without guild name")
        return Outcome.success(
            EntityRecord(
                id=entity_id,
                kind=EntityKind.GUILD,
                display_name=payload["name"],
                source=self.name,
            )
        )


__all__ = [
    "HttpStrategy",
    "BotApiStrategy",
    "PublicApiStrategy",
    "WidgetMemberStrategy",
    "WidgetGuildStrategy",
    "user_record",
    "guild_record",
    "channel_record",
]
