from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from libs.core.exceptions import (
    ConfigurationError,
    ConnectivityError,
    StoreError,
    ValidationError,
)
from libs.core.models import EntityKind, EntityRecord, SearchFilters, SortMode
from libs.core.settings import get_settings
from libs.core.snowflake import is_snowflake
from libs.logging import setup_logging
from libs.resolve import EntityResolver, ImageUrlBuilder, build_entity_resolver
from libs.search import ElasticsearchStore, MessageIndex
from libs.usecases import SearchMessages

MAX_BATCH_USERS = 50

COLLECTIONS = {
    "users": EntityKind.USER,
    "guilds": EntityKind.GUILD,
    "channels": EntityKind.CHANNEL,
}

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application lifecycle


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging()

    http = httpx.AsyncClient(timeout=settings.resolver_timeout_seconds)
    app.state.resolver = build_entity_resolver(settings, http)
    app.state.images = ImageUrlBuilder(
        settings.discord_cdn_base, settings.default_avatar_strategy
    )
    app.state.index = None
    if settings.search_configured:
        index = MessageIndex(
            ElasticsearchStore.from_settings(settings),
            settings.elasticsearch_index,
            settings.search_indices,
            batch_size=settings.ingest_batch_size,
            max_page_size=settings.max_page_size,
            max_result_window=settings.max_result_window,
        )
        # A healthy probe also creates the index; otherwise the first
        # search or health check after the backend recovers does.
        health = await index.check_health()
        if not health.healthy:
            logger.warning("Search backend not ready at startup: %s", health.detail)
        app.state.index = index
    else:
        logger.warning("Elasticsearch not configured; search endpoints are disabled")

    try:
        yield
    finally:
        await http.aclose()
        if app.state.index is not None:
            await app.state.index.close()


# ---------------------------------------------------------------------------
# Dependency factories


def get_resolver(request: Request) -> EntityResolver:
    return request.app.state.resolver


def get_images(request: Request) -> ImageUrlBuilder:
    return request.app.state.images


def get_index(request: Request) -> MessageIndex:
    index = getattr(request.app.state, "index", None)
    if index is None:
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE, detail="Search backend not configured"
        )
    return index


def search_uc(
    index: MessageIndex = Depends(get_index),
    resolver: EntityResolver = Depends(get_resolver),
) -> SearchMessages:
    return SearchMessages(index, resolver)


# ---------------------------------------------------------------------------
# Pydantic schemas


class UserBatchRequest(BaseModel):
    user_ids: List[str] = Field(..., alias="userIds")
    size: int = Field(128, ge=16, le=4096)

    model_config = {"populate_by_name": True}


def _entity_payload(record: EntityRecord, images: ImageUrlBuilder, size: int) -> Dict[str, Any]:
    payload = record.model_dump(mode="json")
    payload["image_url"] = images.url_for(record, size)
    return payload


# ---------------------------------------------------------------------------
# FastAPI application

app = FastAPI(title="Discord Lens API", lifespan=lifespan)


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(ConnectivityError)
async def _connectivity_error(request: Request, exc: ConnectivityError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Search backend unreachable", "error": str(exc)},
    )


@app.exception_handler(ConfigurationError)
async def _configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


# Routes ---------------------------------------------------------------------


@app.get("/health")
def health() -> Dict[str, Any]:
    settings = get_settings()
    return {
        "status": "healthy",
        "bot_token_configured": bool(settings.discord_bot_token),
        "search_configured": settings.search_configured,
    }


@app.post("/api/discord/users/batch")
async def resolve_users_batch(
    req: UserBatchRequest,
    resolver: EntityResolver = Depends(get_resolver),
    images: ImageUrlBuilder = Depends(get_images),
) -> Dict[str, Any]:
    if not req.user_ids:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="userIds must be a non-empty array")
    if len(req.user_ids) > MAX_BATCH_USERS:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum {MAX_BATCH_USERS} users per batch request",
        )
    valid = [uid for uid in req.user_ids if is_snowflake(uid)]
    records = await resolver.resolve_many(EntityKind.USER, valid)
    users: Dict[str, Any] = {}
    for uid in req.user_ids:
        record = records.get(uid)
        if record is None:
            users[uid] = {"error": "Invalid user ID format"}
        else:
            users[uid] = _entity_payload(record, images, req.size)
    return {
        "users": users,
        "total": len(req.user_ids),
        "successful": sum(1 for u in users.values() if "error" not in u),
    }


@app.get("/api/discord/{collection}/{entity_id}")
async def resolve_entity(
    collection: str,
    entity_id: str,
    guild_id: Optional[str] = Query(None),
    size: int = Query(128, ge=16, le=4096),
    resolver: EntityResolver = Depends(get_resolver),
    images: ImageUrlBuilder = Depends(get_images),
) -> Dict[str, Any]:
    kind = COLLECTIONS.get(collection)
    if kind is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Unknown collection: {collection}")
    record = await resolver.resolve(kind, entity_id, guild_id)
    return _entity_payload(record, images, size)


@app.get("/api/cache/stats")
def cache_stats(resolver: EntityResolver = Depends(get_resolver)) -> Dict[str, Any]:
    settings = get_settings()
    return {"caches": resolver.cache_stats(), "cache_ttl_seconds": settings.cache_ttl_seconds}


@app.get("/api/search")
async def search(
    q: Optional[str] = Query(None),
    author_id: Optional[str] = Query(None),
    channel_id: Optional[str] = Query(None),
    guild_id: Optional[str] = Query(None),
    page: int = Query(1),
    page_size: int = Query(50),
    sort: SortMode = Query(SortMode.RECENCY),
    resolve: bool = Query(True),
    uc: SearchMessages = Depends(search_uc),
) -> Dict[str, Any]:
    filters = SearchFilters(text=q, author_id=author_id, channel_id=channel_id, guild_id=guild_id)
    result = await uc(filters, page, page_size, sort, resolve_entities=resolve)
    return result.model_dump(mode="json")


@app.get("/api/search/stats")
async def search_stats(index: MessageIndex = Depends(get_index)) -> Dict[str, Any]:
    snapshot = await index.stats()
    return snapshot.model_dump()


@app.get("/api/search/health")
async def search_health(index: MessageIndex = Depends(get_index)) -> Dict[str, Any]:
    status_ = await index.check_health()
    return status_.model_dump(mode="json")


__all__ = ["app"]
