"""Batch import of Discord message exports into the search index.

Usage:
    python -m apps.importer.main data/                  # import every export in data/
    python -m apps.importer.main a.json b.ndjson --batch-size 500
    python -m apps.importer.main data/ --ndjson-out out.ndjson   # convert only
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from libs.core.exceptions import ConfigurationError, DomainError
from libs.core.settings import get_settings
from libs.logging import setup_logging
from libs.search import ElasticsearchStore, MessageIndex
from libs.usecases import ImportMessages, load_message_files, write_ndjson
from libs.usecases.import_messages import newest_first

logger = logging.getLogger("importer")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import Discord message exports into Elasticsearch")
    parser.add_argument("paths", nargs="+", type=Path, help="JSON/NDJSON files or directories")
    parser.add_argument("--batch-size", type=int, default=None, help="documents per bulk request")
    parser.add_argument(
        "--ndjson-out",
        type=Path,
        default=None,
        help="write an Elasticsearch bulk NDJSON file instead of importing",
    )
    parser.add_argument("--index", default=None, help="override ELASTICSEARCH_INDEX")
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(argv)


def convert(args: argparse.Namespace) -> int:
    settings = get_settings()
    loaded = load_message_files(args.paths)
    if not loaded.messages:
        logger.error("No valid messages found to convert")
        return 1
    count = write_ndjson(newest_first(loaded.messages), args.ndjson_out, args.index or settings.elasticsearch_index)
    logger.info("Wrote %d messages to %s (skipped %d)", count, args.ndjson_out, loaded.skipped)
    return 0


async def run_import(args: argparse.Namespace) -> int:
    settings = get_settings()
    index = MessageIndex(
        ElasticsearchStore.from_settings(settings),
        args.index or settings.elasticsearch_index,
        settings.search_indices if args.index is None else [args.index],
        batch_size=settings.ingest_batch_size,
        max_page_size=settings.max_page_size,
        max_result_window=settings.max_result_window,
    )
    try:
        report = await ImportMessages(index)(args.paths, args.batch_size)
        stats = await index.stats()
    finally:
        await index.close()
    logger.info(
        "Imported %d messages in %d batches",
        report.imported,
        report.batches,
        extra=stats.model_dump(),
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    if args.ndjson_out is not None:
        return convert(args)
    try:
        return asyncio.run(run_import(args))
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    except DomainError as exc:
        logger.error("Import failed: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
