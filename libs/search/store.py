"""Document store contract and its Elasticsearch implementation."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, Sequence

from elasticsearch import (
    ApiError,
    AsyncElasticsearch,
    ConnectionError as ESConnectionError,
    ConnectionTimeout,
    TransportError,
)

from libs.core.exceptions import ConfigurationError, ConnectivityError, StoreError
from libs.core.settings import Settings


class DocumentStore(Protocol):
    """Indexed document storage with text, keyword and date fields."""

    async def exists(self, index: str) -> bool: ...

    async def create(self, index: str, schema: Mapping[str, Any]) -> bool:
        """Create ``index``; False when it already exists."""
        ...

    async def upsert_many(
        self, index: str, documents: Sequence[Mapping[str, Any]], id_field: str
    ) -> List[Dict[str, Any]]:
        """Insert-or-replace by ``id_field``; return the per-document failures."""
        ...

    async def query(self, indices: Sequence[str], body: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def aggregate(
        self, indices: Sequence[str], aggregations: Mapping[str, Any]
    ) -> Dict[str, Any]: ...

    async def ping(self) -> bool: ...

    async def drop(self, index: str) -> None: ...

    async def close(self) -> None: ...


def build_elasticsearch_client(settings: Settings) -> AsyncElasticsearch:
    """Create the client from settings.

    Supported setups: cloud id with an API key, cloud id with username and
    password, or a plain URL (username defaults to ``elastic``).
    """
    common: Dict[str, Any] = {"request_timeout": settings.elasticsearch_timeout_seconds}
    if settings.elasticsearch_cloud_id:
        if settings.elasticsearch_api_key:
            return AsyncElasticsearch(
                cloud_id=settings.elasticsearch_cloud_id,
                api_key=settings.elasticsearch_api_key,
                **common,
            )
        if settings.elasticsearch_username and settings.elasticsearch_password:
            return AsyncElasticsearch(
                cloud_id=settings.elasticsearch_cloud_id,
                basic_auth=(settings.elasticsearch_username, settings.elasticsearch_password),
                **common,
            )
        raise ConfigurationError(
            "Missing Elasticsearch authentication: set ELASTICSEARCH_API_KEY or both "
            "ELASTICSEARCH_USERNAME and ELASTICSEARCH_PASSWORD"
        )
    if settings.elasticsearch_url:
        if settings.elasticsearch_api_key:
            common["api_key"] = settings.elasticsearch_api_key
        elif settings.elasticsearch_password:
            common["basic_auth"] = (
                settings.elasticsearch_username or "elastic",
                settings.elasticsearch_password,
            )
        return AsyncElasticsearch(hosts=[settings.elasticsearch_url], **common)
    raise ConfigurationError(
        "Missing Elasticsearch configuration: set ELASTICSEARCH_CLOUD_ID or ELASTICSEARCH_URL"
    )


def _error_type(exc: ApiError) -> Optional[str]:
    body = exc.body if isinstance(exc.body, dict) else {}
    error = body.get("error")
    return error.get("type") if isinstance(error, dict) else None


def _body(response: Any) -> Dict[str, Any]:
    """Plain dict from an ``ObjectApiResponse`` (or an already decoded body)."""
    return dict(getattr(response, "body", response) or {})


class ElasticsearchStore:
    """``DocumentStore`` backed by ``AsyncElasticsearch``.

    Transport level failures surface as ``ConnectivityError`` and error
    responses from the cluster as ``StoreError``.
    """

    def __init__(self, client: AsyncElasticsearch, *, refresh_on_write: bool = True) -> None:
        self.client = client
        self.refresh_on_write = refresh_on_write
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ElasticsearchStore":
        return cls(build_elasticsearch_client(settings), refresh_on_write=settings.ingest_refresh)

    @contextmanager
    def _errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (ESConnectionError, ConnectionTimeout) as exc:
            raise ConnectivityError(f"Elasticsearch unreachable during {operation}: {exc}") from exc
        except ApiError as exc:
            raise StoreError(f"Elasticsearch rejected {operation}: {exc}") from exc
        except TransportError as exc:
            raise ConnectivityError(f"Elasticsearch transport error during {operation}: {exc}") from exc

    async def exists(self, index: str) -> bool:
        with self._errors("exists"):
            return bool(await self.client.indices.exists(index=index))

    async def create(self, index: str, schema: Mapping[str, Any]) -> bool:
        with self._errors("create"):
            try:
                await self.client.indices.create(
                    index=index,
                    mappings=schema.get("mappings"),
                    settings=schema.get("settings"),
                )
            except ApiError as exc:
                if _error_type(exc) != "resource_already_exists_exception":
                    raise
                self.logger.info("Index %s was created concurrently", index)
                return False
        return True

    async def upsert_many(
        self, index: str, documents: Sequence[Mapping[str, Any]], id_field: str
    ) -> List[Dict[str, Any]]:
        operations: List[Mapping[str, Any]] = []
        for doc in documents:
            operations.append({"index": {"_index": index, "_id": doc[id_field]}})
            operations.append(doc)
        with self._errors("bulk"):
            response = await self.client.bulk(
                operations=operations,
                refresh="wait_for" if self.refresh_on_write else False,
            )
        response = _body(response)
        if not response.get("errors"):
            return []
        failures: List[Dict[str, Any]] = []
        for item in response.get("items", []):
            result = item.get("index", {})
            if result.get("error"):
                failures.append(
                    {"id": result.get("_id"), "status": result.get("status"), "error": result["error"]}
                )
        return failures

    async def query(self, indices: Sequence[str], body: Mapping[str, Any]) -> Dict[str, Any]:
        params = dict(body)
        if "from" in params:
            params["from_"] = params.pop("from")
        with self._errors("search"):
            response = await self.client.search(index=list(indices), **params)
        return _body(response)

    async def aggregate(
        self, indices: Sequence[str], aggregations: Mapping[str, Any]
    ) -> Dict[str, Any]:
        with self._errors("aggregation"):
            response = await self.client.search(
                index=list(indices), size=0, aggregations=dict(aggregations)
            )
        return dict(_body(response).get("aggregations") or {})

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (ApiError, TransportError) as exc:
            self.logger.warning("Elasticsearch ping failed: %s", exc)
            return False

    async def drop(self, index: str) -> None:
        with self._errors("delete"):
            await self.client.indices.delete(index=index, ignore_unavailable=True)

    async def close(self) -> None:
        await self.client.close()


__all__ = ["DocumentStore", "ElasticsearchStore", "build_elasticsearch_client"]
