"""Pair streams feeding the ratings aggregator."""

from __future__ import annotations

import csv
import logging
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

from graperank.exceptions import MalformedShardError
from graperank.models import DeltaOperation, RelationshipKind
from graperank.storage.base import RelationshipSource
from graperank.storage.deltas import read_deltas

logger = logging.getLogger(__name__)

CSV_HEADER = ("pk_rater", "pk_ratee")


def read_pairs_csv(path: Path | str) -> Iterator[tuple[str, str]]:
    """Read ``pk_rater,pk_ratee`` rows from a graph export.

    The header row is skipped. Quoting is optional. Rows with fewer than two
    non-empty columns are skipped.
    """
    with open(path, newline="", encoding="utf-8") as f:
        for row_no, row in enumerate(csv.reader(f), start=1):
            if row_no == 1 and tuple(c.strip() for c in row[:2]) == CSV_HEADER:
                continue
            if len(row) < 2 or not row[0].strip() or not row[1].strip():
                if any(cell.strip() for cell in row):
                    logger.warning("Skipping incomplete row %d in %s", row_no, path)
                continue
            yield row[0].strip(), row[1].strip()


async def pairs_from_snapshot(source: RelationshipSource) -> AsyncIterator[tuple[str, str]]:
    """Stream pairs from a snapshot, one shard at a time.

    Report shards are flattened across report types, yielding each ratee once.
    Malformed shards are logged and skipped.
    """
    for rater in source.raters():
        try:
            shard = await source.read_shard(rater)
        except MalformedShardError as e:
            logger.warning(
                "Skipping malformed %s shard for %s: %s", source.kind.value, rater, e.reason
            )
            continue
        if not shard:
            continue
        if source.kind.is_nested:
            seen: set[str] = set()
            for ratees in shard.values():
                for ratee in ratees:  # type: ignore[union-attr]
                    if ratee not in seen:
                        seen.add(ratee)
                        yield rater, ratee
        else:
            for ratee in shard:
                yield rater, ratee


def pairs_from_deltas(
    path: Path | str,
    kind: RelationshipKind,
    operation: DeltaOperation = DeltaOperation.ADD,
) -> Iterator[tuple[str, str]]:
    """Stream pairs of one operation from a delta file.

    Lines without an ``operation`` field are taken to be ``operation``.
    """
    for delta in read_deltas(path, kind, operation):
        if delta.operation is operation:
            yield delta.rater, delta.ratee
