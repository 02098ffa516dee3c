"""Message search: query building, document store access and the index facade."""

from .query_builder import build_search_query
from .store import DocumentStore, ElasticsearchStore, build_elasticsearch_client
from .message_index import MessageIndex

__all__ = [
    "build_search_query",
    "DocumentStore",
    "ElasticsearchStore",
    "build_elasticsearch_client",
    "MessageIndex",
]
