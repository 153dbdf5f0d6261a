"""Relationship shards on disk and in memory.

A shard file is named ``<rater>.json`` and holds ``{"<rater>": {...}}``.
Follow and mute shards map ``ratee -> observedAt``; report shards map
``reportType -> ratee -> observedAt``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, TypeAlias

from graperank.exceptions import MalformedShardError, SinkIOError
from graperank.models import ObservedAt, RelationshipKind, Shard
from graperank.storage.base import RelationshipSource

logger = logging.getLogger(__name__)

SUMMARY_FILE = "_summary.json"
SHARD_SUFFIX = ".json"

# Comparison key: ratee for follows/mutes, (reportType, ratee) for reports.
ShardKey: TypeAlias = str | tuple[str, str]


def _check_leaf(rater: str, value: Any, where: str) -> ObservedAt:
    # bool is an int subclass; only the legacy ``true`` marker is allowed
    if value is True:
        return True
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    raise MalformedShardError(rater, f"{where} has invalid timestamp {value!r}")


def validate_shard(rater: str, document: Any, kind: RelationshipKind) -> Shard:
    """Check the structure of a decoded shard document and unwrap it.

    Raises:
        MalformedShardError: If the document does not match the shard layout.
    """
    if not isinstance(document, dict) or rater not in document:
        raise MalformedShardError(rater, "top level must be an object keyed by the rater")
    body = document[rater]
    if not isinstance(body, dict):
        raise MalformedShardError(rater, "shard body must be an object")

    if not kind.is_nested:
        return {ratee: _check_leaf(rater, ts, ratee) for ratee, ts in body.items()}

    reports: dict[str, dict[str, ObservedAt]] = {}
    for report_type, ratees in body.items():
        if not isinstance(ratees, dict):
            raise MalformedShardError(rater, f"report type {report_type!r} must map ratees")
        reports[report_type] = {
            ratee: _check_leaf(rater, ts, f"{report_type}/{ratee}") for ratee, ts in ratees.items()
        }
    return reports


def parse_shard(rater: str, raw: str | bytes, kind: RelationshipKind) -> Shard:
    """Decode and validate one shard file.

    Raises:
        MalformedShardError: If the text is not JSON or not a valid shard.
    """
    try:
        document = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedShardError(rater, f"invalid JSON: {e}") from e
    return validate_shard(rater, document, kind)


def shard_keys(shard: Shard, kind: RelationshipKind) -> dict[ShardKey, ObservedAt]:
    """Flatten a shard to its comparison keys."""
    if not kind.is_nested:
        return dict(shard)  # type: ignore[arg-type]
    keys: dict[ShardKey, ObservedAt] = {}
    for report_type, ratees in shard.items():
        for ratee, ts in ratees.items():  # type: ignore[union-attr]
            keys[(report_type, ratee)] = ts
    return keys


def encode_shard(rater: str, shard: Shard) -> str:
    """Serialize a shard to the on-disk document."""
    return json.dumps({rater: shard}, separators=(",", ":"))


class ShardDirectory(RelationshipSource):
    """A snapshot stored as one JSON file per rater.

    Attributes:
        path: Directory holding the shard files.
    """

    def __init__(self, path: Path | str, kind: RelationshipKind) -> None:
        self.path = Path(path)
        self._kind = kind

    def __repr__(self) -> str:
        return f"ShardDirectory({str(self.path)!r}, {self._kind.value})"

    @property
    def kind(self) -> RelationshipKind:
        return self._kind

    def _shard_path(self, rater: str) -> Path:
        return self.path / f"{rater}{SHARD_SUFFIX}"

    def raters(self) -> Iterator[str]:
        if not self.path.is_dir():
            logger.debug("Snapshot directory %s does not exist; treating as empty", self.path)
            return
        with os.scandir(self.path) as entries:
            for entry in entries:
                name = entry.name
                if name == SUMMARY_FILE or not name.endswith(SHARD_SUFFIX):
                    continue
                if entry.is_file():
                    yield name[: -len(SHARD_SUFFIX)]

    def contains(self, rater: str) -> bool:
        return self._shard_path(rater).is_file()

    async def read_shard(self, rater: str) -> Shard | None:
        path = self._shard_path(rater)
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise MalformedShardError(rater, f"unreadable: {e}") from e
        return parse_shard(rater, raw, self._kind)

    def write_shard(self, rater: str, shard: Shard) -> None:
        """Write or replace the shard of one rater.

        Raises:
            SinkIOError: If the file cannot be written.
        """
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            self._shard_path(rater).write_text(encode_shard(rater, shard), encoding="utf-8")
        except OSError as e:
            raise SinkIOError(f"Cannot write shard for {rater} in {self.path}: {e}") from e

    def write_summary(self, rater_count: int) -> None:
        """Write ``_summary.json`` describing the snapshot.

        Raises:
            SinkIOError: If the file cannot be written.
        """
        summary = {
            "extractedAt": int(time.time()),
            "raterCount": rater_count,
            "type": self._kind.plural,
        }
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            (self.path / SUMMARY_FILE).write_text(json.dumps(summary, indent=2), encoding="utf-8")
        except OSError as e:
            raise SinkIOError(f"Cannot write snapshot summary in {self.path}: {e}") from e


class InMemorySnapshot(RelationshipSource):
    """Snapshot backed by a dict, for tests and small rebuilds.

    Values may be shards or raw JSON text; text is parsed on read so
    malformed shards behave as they would on disk.
    """

    def __init__(
        self,
        kind: RelationshipKind,
        shards: Mapping[str, Shard | str] | None = None,
    ) -> None:
        self._kind = kind
        self._shards: dict[str, Shard | str] = dict(shards or {})
        self.reads = 0

    @property
    def kind(self) -> RelationshipKind:
        return self._kind

    def raters(self) -> Iterator[str]:
        return iter(list(self._shards))

    def contains(self, rater: str) -> bool:
        return rater in self._shards

    async def read_shard(self, rater: str) -> Shard | None:
        self.reads += 1
        shard = self._shards.get(rater)
        if shard is None:
            return None
        if isinstance(shard, str):
            return parse_shard(rater, shard, self._kind)
        return validate_shard(rater, {rater: shard}, self._kind)

    def put(self, rater: str, shard: Shard | str) -> None:
        self._shards[rater] = shard
