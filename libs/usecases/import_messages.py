from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional

from pydantic import ValidationError as PydanticValidationError

from libs.core.exceptions import ConnectivityError, ValidationError
from libs.core.models import IngestReport, MessageDocument
from libs.search import MessageIndex
from libs.search.message_index import to_index_document

MESSAGE_SUFFIXES = {".json", ".ndjson", ".jsonl"}

logger = logging.getLogger("import")


@dataclass
class LoadedMessages:
    messages: List[MessageDocument] = field(default_factory=list)
    skipped: int = 0
    files: int = 0


def _expand(paths: Iterable[Path]) -> Iterator[Path]:
    for path in paths:
        if path.is_dir():
            yield from sorted(p for p in path.iterdir() if p.suffix in MESSAGE_SUFFIXES)
        else:
            yield path


def _read_records(path: Path) -> List[Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        data = json.loads(text)
        return data if isinstance(data, list) else [data]
    records = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        record = json.loads(line)
        # Bulk-format files interleave action lines with documents.
        if isinstance(record, dict) and set(record) <= {"index", "create"}:
            continue
        records.append(record)
    return records


def load_message_files(paths: Iterable[Path]) -> LoadedMessages:
    """Read messages from ``.json`` arrays and ``.ndjson``/``.jsonl`` files.

    Records missing a required field are counted in ``skipped``. Files that
    cannot be read or parsed are logged and skipped.
    """
    loaded = LoadedMessages()
    for path in _expand(paths):
        try:
            records = _read_records(path)
        except (OSError, ValueError) as exc:
            logger.error("Error loading %s: %s", path, exc)
            continue
        loaded.files += 1
        valid = 0
        for record in records:
            try:
                loaded.messages.append(MessageDocument.model_validate(record))
                valid += 1
            except PydanticValidationError:
                loaded.skipped += 1
        logger.info("Loaded %d valid messages from %s", valid, path.name)
    return loaded


def parse_timestamp(value: str) -> Optional[datetime]:
    """ISO 8601 (``Z`` suffix allowed) or epoch milliseconds; naive means UTC."""
    value = value.strip()
    if value.isdigit():
        return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=int(value))
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def iso_timestamp(value: str) -> str:
    """Normalise to ``YYYY-MM-DDTHH:MM:SS.mmmZ``; unparseable values pass through."""
    dt = parse_timestamp(value)
    if dt is None:
        return value
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def _sort_key(doc: MessageDocument) -> float:
    dt = parse_timestamp(doc.timestamp)
    return dt.timestamp() if dt is not None else 0.0


def newest_first(messages: List[MessageDocument]) -> List[MessageDocument]:
    return sorted(messages, key=_sort_key, reverse=True)


def write_ndjson(messages: Iterable[MessageDocument], output: Path, index_name: str) -> int:
    """Write an Elasticsearch bulk file (action line + document line per message)."""
    count = 0
    with output.open("w", encoding="utf-8") as fh:
        for doc in messages:
            action = {"index": {"_index": index_name, "_id": doc.message_id}}
            fh.write(json.dumps(action) + "\n")
            body = to_index_document(doc)
            body["timestamp"] = iso_timestamp(doc.timestamp)
            fh.write(json.dumps(body, ensure_ascii=False) + "\n")
            count += 1
    return count


class ImportMessages:
    """Backfill message exports into the search index."""

    def __init__(self, index: MessageIndex) -> None:
        self.index = index

    async def __call__(self, paths: Iterable[Path], batch_size: Optional[int] = None) -> IngestReport:
        health = await self.index.check_health()
        if not health.healthy:
            raise ConnectivityError(f"Cannot connect to the search backend: {health.detail}")
        await self.index.ensure_index()

        loaded = load_message_files(paths)
        if not loaded.messages:
            raise ValidationError("No valid messages found to import")
        if loaded.skipped:
            logger.warning("Skipped %d invalid messages", loaded.skipped)

        messages = newest_first(loaded.messages)
        logger.info(
            "Importing %d messages from %d files", len(messages), loaded.files
        )
        report = await self.index.bulk_ingest(messages, batch_size)
        logger.info("Import completed", extra={"imported": report.imported, "batches": report.batches})
        return report


__all__ = [
    "ImportMessages",
    "LoadedMessages",
    "load_message_files",
    "newest_first",
    "iso_timestamp",
    "parse_timestamp",
    "write_ndjson",
]
