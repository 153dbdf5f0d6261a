"""Outbound trusted-assertion events.

One kind-30382 event is built per scored pubkey. Signing is done by an
external signer; this module only builds unsigned templates, computes their
IDs and reads or writes finalized events as JSON-Lines.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from graperank.exceptions import SinkIOError
from graperank.models import OutboundEvent, Scorecard
from graperank.models.scorecard import ScorecardValues

logger = logging.getLogger(__name__)

TRUSTED_ASSERTION_KIND = 30382


class EventSigner(Protocol):
    """Turns an unsigned template into a finalized event with ``id`` and ``sig``."""

    def sign(self, event: OutboundEvent) -> OutboundEvent: ...


def compute_event_id(event: OutboundEvent) -> str:
    """SHA-256 of the canonical ``[0, pubkey, created_at, kind, tags, content]`` array."""
    canonical = json.dumps(
        [0, event.pubkey, event.created_at, event.kind, event.tags, event.content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_trusted_assertion(
    scorecard: Scorecard,
    author_pubkey: str,
    created_at: int | None = None,
    hops: int | None = None,
) -> OutboundEvent:
    """Build the unsigned kind-30382 event for one scorecard.

    Args:
        scorecard: Scored subject.
        author_pubkey: Pubkey that will sign the event.
        created_at: Event time; defaults to now.
        hops: Distance from the root, if known.

    Returns:
        Template with ``id`` filled in and ``sig`` empty.
    """
    tags = [
        ["d", scorecard.pubkey],
        ["rank", str(round(scorecard.influence * 100))],
    ]
    if hops is not None:
        tags.append(["hops", str(hops)])
    tags.extend(
        [
            ["personalizedGrapeRank_influence", str(scorecard.influence)],
            ["personalizedGrapeRank_average", str(scorecard.average)],
            ["personalizedGrapeRank_confidence", str(scorecard.confidence)],
            ["personalizedGrapeRank_input", str(scorecard.input)],
        ]
    )
    event = OutboundEvent(
        pubkey=author_pubkey,
        created_at=int(time.time()) if created_at is None else created_at,
        kind=TRUSTED_ASSERTION_KIND,
        tags=tags,
    )
    event.id = compute_event_id(event)
    return event


def build_assertions(
    scorecards: Mapping[str, ScorecardValues],
    author_pubkey: str,
    created_at: int | None = None,
    min_influence: float = 0.0,
    signer: EventSigner | None = None,
) -> Iterator[OutboundEvent]:
    """Yield one event per scorecard with ``influence >= min_influence``.

    All events of one batch share ``created_at``. With a signer, events are
    signed as they are produced.
    """
    stamp = int(time.time()) if created_at is None else created_at
    for pubkey, values in scorecards.items():
        if values[0] < min_influence:
            continue
        event = build_trusted_assertion(Scorecard.from_values(pubkey, values), author_pubkey, stamp)
        yield signer.sign(event) if signer is not None else event


def write_events(path: Path | str, events: Iterable[OutboundEvent]) -> int:
    """Write events as JSON-Lines.

    Raises:
        SinkIOError: If the file cannot be written.
    """
    count = 0
    try:
        with open(path, "w", encoding="utf-8") as f:
            for event in events:
                f.write(event.model_dump_json() + "\n")
                count += 1
    except OSError as e:
        raise SinkIOError(f"Cannot write events to {path}: {e}") from e
    return count


def read_events(path: Path | str) -> Iterator[OutboundEvent]:
    """Stream finalized events from a JSON-Lines file, skipping invalid lines."""
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield OutboundEvent.model_validate_json(line)
            except ValidationError as e:
                logger.warning(
                    "Skipping invalid event at %s:%d (%d errors)", path, line_no, e.error_count()
                )
