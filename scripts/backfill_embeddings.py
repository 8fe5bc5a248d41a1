#!/usr/bin/env python3
"""Embed stored rows that never received an embedding.

Rows can miss their embedding when the provider was down or no API key was
configured at insert time. This walks each table and feeds the rows
through the same indexer the bot uses.

Usage examples:
    # Everything
    uv run python scripts/backfill_embeddings.py

    # Preview only
    uv run python scripts/backfill_embeddings.py --dry-run

    # Just summaries, at most 50 rows
    uv run python scripts/backfill_embeddings.py --table conversation_summaries --limit 50
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config import settings
from src.memory.embeddings import OpenAIEmbeddingProvider
from src.memory.errors import MemoryCoreError
from src.memory.indexer import EmbeddingIndexer, IndexOutcome
from src.memory.store import CONTENT_COLUMNS, MemoryStore

logger = logging.getLogger("backfill_embeddings")


async def backfill(tables: list[str], limit: int, dry_run: bool) -> int:
    """Embed up to *limit* rows per table. Returns the number embedded."""
    store = MemoryStore.get()
    indexer = EmbeddingIndexer(OpenAIEmbeddingProvider(), store=store)
    embedded = 0

    for table in tables:
        events = await store.rows_missing_embedding(table, limit=limit)
        print(f"{table}: {len(events)} row(s) without embedding")
        if dry_run:
            for event in events:
                print(f"  [DRY RUN] Would embed {event.record_id}: {event.content[:60]!r}")
            continue

        for event in events:
            try:
                outcome = await indexer.on_row_inserted(event)
            except MemoryCoreError as exc:
                print(f"  FAILED {event.record_id}: {exc}", file=sys.stderr)
                continue
            if outcome is IndexOutcome.EMBEDDED:
                embedded += 1

    return embedded


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill missing embeddings")
    parser.add_argument(
        "--table",
        choices=sorted(CONTENT_COLUMNS),
        action="append",
        help="Table to backfill (repeatable; default: all)",
    )
    parser.add_argument("--limit", type=int, default=500, help="Max rows per table")
    parser.add_argument("--dry-run", action="store_true", help="List rows without embedding them")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.log_level))

    if not args.dry_run and not settings.openai_api_key:
        print("Error: OPENAI_API_KEY must be set.", file=sys.stderr)
        sys.exit(1)

    tables = args.table or sorted(CONTENT_COLUMNS)
    count = asyncio.run(backfill(tables, args.limit, args.dry_run))
    if not args.dry_run:
        print(f"Embedded {count} row(s).")


if __name__ == "__main__":
    main()
