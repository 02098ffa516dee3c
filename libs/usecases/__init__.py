"""Application use cases composing resolution and search."""

from .search import SearchMessages, SearchPage
from .import_messages import ImportMessages, load_message_files, write_ndjson

__all__ = [
    "SearchMessages",
    "SearchPage",
    "ImportMessages",
    "load_message_files",
    "write_ndjson",
]
