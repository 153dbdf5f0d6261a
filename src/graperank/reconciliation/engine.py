"""Relationship reconciliation.

Diffs the relay-derived snapshot (primary) against the graph-derived
snapshot (secondary) of one relationship kind and streams two delta
streams: edges to add to the graph and edges to delete from it.

Work is done rater by rater. At most ``concurrency`` shard comparisons are
in flight, so memory holds a bounded window of shards no matter how large
the snapshots are.

Failure handling:
1. A malformed secondary shard is treated as empty, so every primary edge
   of that rater is re-added.
2. A malformed primary shard is treated as empty, so every secondary edge
   of that rater is deleted.
3. A sink failure cancels in-flight comparisons and is raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from graperank.exceptions import MalformedShardError
from graperank.models import (
    DeltaOperation,
    ObservedAt,
    RelationshipDelta,
    RelationshipKind,
    Shard,
)
from graperank.storage.base import DeltaSink, RelationshipSource
from graperank.storage.deltas import DEFAULT_QUEUE_SIZE, JsonLinesDeltaWriter, delta_file_name
from graperank.storage.shards import ShardDirectory, ShardKey, shard_keys

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10


class ReconciliationResult(BaseModel):
    """Summary of one reconciliation run.

    Attributes:
        kind: Relationship kind reconciled.
        to_add: Add deltas emitted.
        to_delete: Delete deltas emitted.
        raters_compared: Raters with a shard on both sides.
        raters_only_in_primary: Raters whose whole shard was added.
        raters_only_in_secondary: Raters whose whole shard was deleted.
        malformed_shards: Shards that failed to parse on either side.
        cancelled: Whether a shutdown request stopped the run early.
        duration_ms: Wall-clock time of the run.
    """

    model_config = ConfigDict(extra="forbid")

    kind: RelationshipKind
    to_add: int = Field(default=0, ge=0)
    to_delete: int = Field(default=0, ge=0)
    raters_compared: int = Field(default=0, ge=0)
    raters_only_in_primary: int = Field(default=0, ge=0)
    raters_only_in_secondary: int = Field(default=0, ge=0)
    malformed_shards: int = Field(default=0, ge=0)
    cancelled: bool = False
    duration_ms: int = Field(default=0, ge=0)


def shard_difference(
    left: Shard | None,
    right: Shard | None,
    kind: RelationshipKind,
) -> list[tuple[ShardKey, ObservedAt]]:
    """Entries of ``left`` that are absent from ``right``.

    Reports compare on ``(reportType, ratee)``, so a ratee reported for a new
    reason counts as a new edge.

    Returns:
        ``(key, observedAt)`` in the iteration order of ``left``.
    """
    if not left:
        return []
    left_keys = shard_keys(left, kind)
    if not right:
        return list(left_keys.items())
    right_keys = shard_keys(right, kind)
    return [(key, ts) for key, ts in left_keys.items() if key not in right_keys]


class ReconciliationEngine:
    """Streams add/delete deltas between two snapshots of one kind.

    Example:
        ```python
        engine = ReconciliationEngine(relay_follows, graph_follows, adds, deletes)
        result = await engine.run()
        print(result.to_add, result.to_delete)
        ```
    """

    def __init__(
        self,
        primary: RelationshipSource,
        secondary: RelationshipSource,
        to_add: DeltaSink,
        to_delete: DeltaSink,
        concurrency: int = DEFAULT_CONCURRENCY,
        cancel_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the engine.

        Args:
            primary: Source of truth (relay-derived snapshot).
            secondary: Mirror to bring in line (graph-derived snapshot).
            to_add: Sink for edges missing from the mirror.
            to_delete: Sink for edges the mirror should drop.
            concurrency: Shard comparisons in flight at once.
            cancel_event: Stops scheduling new raters when set.
            clock: Time source for edges without a stored timestamp.
        """
        if primary.kind is not secondary.kind:
            raise ValueError(
                f"Cannot reconcile {primary.kind.value} against {secondary.kind.value}"
            )
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._primary = primary
        self._secondary = secondary
        self._to_add = to_add
        self._to_delete = to_delete
        self._concurrency = concurrency
        self._cancel_event = cancel_event or asyncio.Event()
        self._clock = clock
        self._kind = primary.kind
        self._run_time = 0
        self._result = ReconciliationResult(kind=self._kind)

    @property
    def kind(self) -> RelationshipKind:
        return self._kind

    async def run(self) -> ReconciliationResult:
        """Compare both snapshots and emit every delta.

        Returns:
            Counts for the run. ``cancelled`` is set if the shutdown event
            stopped it early.

        Raises:
            SinkIOError: If either sink fails.
        """
        started = time.monotonic()
        self._run_time = int(self._clock())
        self._result = ReconciliationResult(kind=self._kind)

        # Raters in the primary snapshot: both directions of the diff.
        completed = await self._run_window(self._primary.raters(), self._compare_rater)
        # Raters only the mirror knows about: everything is stale.
        if completed:
            completed = await self._run_window(
                self._secondary.raters(), self._delete_orphaned_rater
            )

        self._result.cancelled = not completed
        self._result.to_add = self._to_add.count
        self._result.to_delete = self._to_delete.count
        self._result.duration_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            "Reconciled %s: %d to add, %d to delete, %d malformed shards, cancelled=%s",
            self._kind.plural,
            self._result.to_add,
            self._result.to_delete,
            self._result.malformed_shards,
            self._result.cancelled,
        )
        return self._result

    async def _run_window(
        self,
        raters: Iterator[str],
        handler: Callable[[str], Awaitable[None]],
    ) -> bool:
        """Run ``handler`` for every rater with bounded concurrency.

        Returns:
            False if cancelled before all raters were scheduled.
        """
        semaphore = asyncio.Semaphore(self._concurrency)
        pending: set[asyncio.Task[None]] = set()
        failure: list[BaseException] = []

        def _done(task: asyncio.Task[None]) -> None:
            pending.discard(task)
            semaphore.release()
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None and not failure:
                failure.append(exc)

        completed = True
        for rater in raters:
            if self._cancel_event.is_set():
                completed = False
                break
            await semaphore.acquire()
            if failure:
                semaphore.release()
                break
            if self._cancel_event.is_set():
                semaphore.release()
                completed = False
                break
            task = asyncio.create_task(handler(rater))
            pending.add(task)
            task.add_done_callback(_done)

        if failure:
            for task in pending:
                task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if failure:
            raise failure[0]

        if not completed:
            logger.warning("Reconciliation of %s cancelled at a shard boundary", self._kind.plural)
        return completed

    async def _read(self, source: RelationshipSource, rater: str, side: str) -> Shard | None:
        try:
            return await source.read_shard(rater)
        except MalformedShardError as e:
            self._result.malformed_shards += 1
            logger.warning(
                "Malformed %s %s shard for %s: %s", side, self._kind.value, rater, e.reason
            )
            raise

    async def _compare_rater(self, rater: str) -> None:
        try:
            primary = await self._read(self._primary, rater, "primary")
        except MalformedShardError:
            primary = {}
        if primary is None:
            return

        try:
            secondary = await self._read(self._secondary, rater, "secondary")
        except MalformedShardError:
            secondary = None

        if secondary is None:
            self._result.raters_only_in_primary += 1
        else:
            self._result.raters_compared += 1

        for key, ts in shard_difference(primary, secondary, self._kind):
            await self._to_add.write(self._delta(rater, key, ts, DeltaOperation.ADD))
        for key, ts in shard_difference(secondary, primary, self._kind):
            await self._to_delete.write(self._delta(rater, key, ts, DeltaOperation.DELETE))

    async def _delete_orphaned_rater(self, rater: str) -> None:
        if self._primary.contains(rater):
            return
        try:
            secondary = await self._read(self._secondary, rater, "secondary")
        except MalformedShardError:
            return
        if secondary is None:
            return

        self._result.raters_only_in_secondary += 1
        for key, ts in shard_difference(secondary, None, self._kind):
            await self._to_delete.write(self._delta(rater, key, ts, DeltaOperation.DELETE))

    def _delta(
        self,
        rater: str,
        key: ShardKey,
        observed_at: ObservedAt,
        operation: DeltaOperation,
    ) -> RelationshipDelta:
        if isinstance(key, tuple):
            report_type, ratee = key
        else:
            report_type, ratee = None, key
        # Legacy ``true`` markers carry no time; stamp them with the run time.
        timestamp = self._run_time if observed_at is True else int(observed_at)
        return RelationshipDelta(
            rater=rater,
            ratee=ratee,
            kind=self._kind,
            report_type=report_type,
            timestamp=timestamp,
            operation=operation,
        )


async def reconcile(
    primary: RelationshipSource,
    secondary: RelationshipSource,
    to_add: DeltaSink,
    to_delete: DeltaSink,
    concurrency: int = DEFAULT_CONCURRENCY,
    cancel_event: asyncio.Event | None = None,
) -> ReconciliationResult:
    """Reconcile two snapshots into the given sinks and close them.

    Raises:
        SinkIOError: If either sink fails.
    """
    engine = ReconciliationEngine(
        primary,
        secondary,
        to_add,
        to_delete,
        concurrency=concurrency,
        cancel_event=cancel_event,
    )
    try:
        return await engine.run()
    finally:
        await _close_all(to_add, to_delete)


async def _close_all(*sinks: DeltaSink) -> None:
    errors = []
    for sink in sinks:
        try:
            await sink.close()
        except Exception as e:  # noqa: BLE001
            errors.append(e)
    if errors:
        raise errors[0]


async def reconcile_directories(
    primary_dir: Path | str,
    secondary_dir: Path | str,
    output_dir: Path | str,
    kind: RelationshipKind,
    concurrency: int = DEFAULT_CONCURRENCY,
    queue_size: int = DEFAULT_QUEUE_SIZE,
    cancel_event: asyncio.Event | None = None,
) -> ReconciliationResult:
    """Reconcile two shard directories into ``<kind>_to_add.jsonl`` and
    ``<kind>_to_delete.jsonl`` under ``output_dir``.

    Raises:
        SinkIOError: If an output file cannot be opened or written.
    """
    output = Path(output_dir)
    to_add = JsonLinesDeltaWriter(
        output / delta_file_name(kind, DeltaOperation.ADD), queue_size=queue_size
    )
    to_delete = JsonLinesDeltaWriter(
        output / delta_file_name(kind, DeltaOperation.DELETE), queue_size=queue_size
    )
    await to_add.start()
    try:
        await to_delete.start()
    except BaseException:
        await to_add.close()
        raise
    return await reconcile(
        ShardDirectory(primary_dir, kind),
        ShardDirectory(secondary_dir, kind),
        to_add,
        to_delete,
        concurrency=concurrency,
        cancel_event=cancel_event,
    )
