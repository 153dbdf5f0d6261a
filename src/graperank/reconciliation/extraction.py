"""Build primary snapshots from a dump of relay events.

The dump is JSON-Lines, one event per line
(``{"pubkey", "kind", "created_at", "tags", ...}``). Follow lists (kind 3)
and mute lists (kind 10000) are replaceable, so only the newest event of
each author counts. Reports (kind 1984) accumulate across events.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from graperank.models import Relationship, RelationshipKind
from graperank.storage.shards import ShardDirectory

logger = logging.getLogger(__name__)

DEFAULT_REPORT_TYPE = "other"
EMPTY_REPORT_TYPE = "unspecified"


def _report_type(tag: list[Any]) -> str:
    if len(tag) < 3 or tag[2] is None:
        return DEFAULT_REPORT_TYPE
    value = str(tag[2]).strip()
    return value or EMPTY_REPORT_TYPE


def relationships_from_event(event: dict[str, Any]) -> list[Relationship]:
    """Extract the edges carried by one relay event.

    Args:
        event: Decoded event.

    Returns:
        One relationship per ``p`` tag; empty for unrelated kinds.

    Raises:
        ValueError: If the event is missing ``pubkey``, ``kind``,
            ``created_at`` or ``tags``.
    """
    try:
        author = event["pubkey"]
        event_kind = event["kind"]
        created_at = event["created_at"]
        tags = event["tags"]
    except (KeyError, TypeError) as e:
        raise ValueError(f"event is missing required field {e}") from e
    if not isinstance(author, str) or not author:
        raise ValueError("event pubkey must be a non-empty string")
    if not isinstance(created_at, int) or isinstance(created_at, bool) or created_at < 0:
        raise ValueError(f"event created_at must be a non-negative integer, got {created_at!r}")
    if not isinstance(tags, list):
        raise ValueError("event tags must be a list")

    kind = RelationshipKind.from_event_kind(event_kind)
    if kind is None:
        return []

    relationships = []
    for tag in tags:
        if not isinstance(tag, list) or len(tag) < 2 or tag[0] != "p":
            continue
        ratee = tag[1]
        if not isinstance(ratee, str) or not ratee:
            continue
        relationships.append(
            Relationship(
                rater=author,
                ratee=ratee,
                kind=kind,
                report_type=_report_type(tag) if kind is RelationshipKind.REPORT else None,
                observed_at=created_at,
            )
        )
    return relationships


def read_events(path: Path | str) -> Iterator[dict[str, Any]]:
    """Stream events from a JSON-Lines dump, skipping lines that are not JSON objects."""
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping unparsable event at %s:%d: %s", path, line_no, e)
                continue
            if not isinstance(event, dict):
                logger.warning("Skipping non-object event at %s:%d", path, line_no)
                continue
            yield event


class ExtractionResult(BaseModel):
    """Counts from one extraction run."""

    model_config = ConfigDict(extra="forbid")

    events: int = Field(default=0, ge=0)
    skipped_events: int = Field(default=0, ge=0)
    superseded_events: int = Field(default=0, ge=0)
    raters: dict[RelationshipKind, int] = Field(default_factory=dict)
    relationships: dict[RelationshipKind, int] = Field(default_factory=dict)


class SnapshotBuilder:
    """Accumulates events into per-rater shards for every relationship kind."""

    def __init__(self) -> None:
        # author -> (created_at, ratee -> created_at)
        self._lists: dict[RelationshipKind, dict[str, tuple[int, dict[str, int]]]] = {
            RelationshipKind.FOLLOW: {},
            RelationshipKind.MUTE: {},
        }
        # author -> reportType -> ratee -> created_at
        self._reports: dict[str, dict[str, dict[str, int]]] = {}
        self.result = ExtractionResult()

    def add_event(self, event: dict[str, Any]) -> None:
        """Fold one event into the snapshots. Invalid events are logged and counted."""
        self.result.events += 1
        try:
            relationships = relationships_from_event(event)
        except ValueError as e:
            self.result.skipped_events += 1
            logger.warning("Skipping invalid event %s: %s", event.get("id", "<no id>"), e)
            return

        kind = RelationshipKind.from_event_kind(event["kind"])
        if kind is None:
            return
        if kind is RelationshipKind.REPORT:
            self._add_reports(relationships)
        else:
            self._replace_list(kind, event["pubkey"], event["created_at"], relationships)

    def _replace_list(
        self,
        kind: RelationshipKind,
        author: str,
        created_at: int,
        relationships: list[Relationship],
    ) -> None:
        lists = self._lists[kind]
        current = lists.get(author)
        if current is not None and current[0] >= created_at:
            self.result.superseded_events += 1
            return
        if current is not None:
            self.result.superseded_events += 1
        lists[author] = (created_at, {r.ratee: r.observed_at for r in relationships})

    def _add_reports(self, relationships: list[Relationship]) -> None:
        for r in relationships:
            report_type = r.report_type or DEFAULT_REPORT_TYPE
            by_type = self._reports.setdefault(r.rater, {}).setdefault(report_type, {})
            if by_type.get(r.ratee, -1) < r.observed_at:
                by_type[r.ratee] = r.observed_at

    def shards(self, kind: RelationshipKind) -> Iterator[tuple[str, dict[str, Any]]]:
        """Yield ``(rater, shard)`` for one kind."""
        if kind is RelationshipKind.REPORT:
            yield from self._reports.items()
        else:
            for author, (_, ratees) in self._lists[kind].items():
                yield author, ratees

    def write(self, output_dir: Path | str) -> ExtractionResult:
        """Write ``follows/``, ``mutes/`` and ``reports/`` shard directories.

        Raises:
            SinkIOError: If a shard cannot be written.
        """
        root = Path(output_dir)
        for kind in RelationshipKind:
            directory = ShardDirectory(root / kind.plural, kind)
            raters = 0
            edges = 0
            for rater, shard in self.shards(kind):
                directory.write_shard(rater, shard)
                raters += 1
                edges += (
                    sum(len(r) for r in shard.values()) if kind.is_nested else len(shard)
                )
            directory.write_summary(raters)
            self.result.raters[kind] = raters
            self.result.relationships[kind] = edges
            logger.info(
                "Wrote %d %s shards (%d edges) to %s", raters, kind.value, edges, directory.path
            )
        return self.result


def build_snapshots(events: Iterable[dict[str, Any]], output_dir: Path | str) -> ExtractionResult:
    """Extract every relationship kind from ``events`` into shard directories."""
    builder = SnapshotBuilder()
    for event in events:
        builder.add_event(event)
    return builder.write(output_dir)
