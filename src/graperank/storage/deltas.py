"""JSON-Lines delta streams.

Every delta stream has exactly one owning writer task. Producers hand
deltas over through a bounded queue, so a slow disk makes producers wait
instead of growing memory.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import IO

from graperank.exceptions import SinkIOError
from graperank.models import DeltaOperation, RelationshipDelta, RelationshipKind
from graperank.storage.base import DeltaSink

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
MAX_BATCH_LINES = 500

_STOP = object()


def delta_file_name(kind: RelationshipKind, operation: DeltaOperation) -> str:
    """Conventional file name for one delta stream, e.g. ``follows_to_add.jsonl``."""
    suffix = "to_add" if operation is DeltaOperation.ADD else "to_delete"
    return f"{kind.plural}_{suffix}.jsonl"


class JsonLinesDeltaWriter(DeltaSink):
    """Append deltas to a JSON-Lines file through a single writer task.

    Example:
        ```python
        async with JsonLinesDeltaWriter(path, queue_size=1000) as sink:
            await sink.write(delta)
        ```

    Attributes:
        path: Output file.
    """

    def __init__(
        self,
        path: Path | str,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        include_operation: bool = False,
        append: bool = False,
    ) -> None:
        """Initialize the writer. Call ``start()`` or use ``async with``.

        Args:
            path: Output file.
            queue_size: Deltas buffered before ``write()`` waits.
            include_operation: Add the ``operation`` field to each line;
                needed when adds and deletes share one file.
            append: Append to an existing file instead of truncating it.
        """
        self.path = Path(path)
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=queue_size)
        self._include_operation = include_operation
        self._mode = "a" if append else "w"
        self._file: IO[str] | None = None
        self._task: asyncio.Task[None] | None = None
        self._error: SinkIOError | None = None
        self._count = 0
        self._written = 0

    @property
    def count(self) -> int:
        return self._count

    @property
    def written(self) -> int:
        """Lines actually flushed to the file."""
        return self._written

    async def start(self) -> None:
        """Open the file and start the writer task.

        Raises:
            SinkIOError: If the file cannot be opened.
        """
        if self._task is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = await asyncio.to_thread(open, self.path, self._mode, encoding="utf-8")
        except OSError as e:
            raise SinkIOError(f"Cannot open delta file {self.path}: {e}") from e
        self._task = asyncio.create_task(self._drain(), name=f"delta-writer:{self.path.name}")

    async def write(self, delta: RelationshipDelta) -> None:
        if self._error is not None:
            raise self._error
        if self._task is None:
            raise SinkIOError(f"Delta writer for {self.path} is not started")
        await self._queue.put(delta)
        self._count += 1

    async def close(self) -> None:
        if self._task is not None:
            await self._queue.put(_STOP)
            await self._task
            self._task = None
        if self._file is not None:
            file, self._file = self._file, None
            try:
                await asyncio.to_thread(file.close)
            except OSError as e:
                self._error = self._error or SinkIOError(f"Cannot close {self.path}: {e}")
        if self._error is not None:
            raise self._error

    async def __aenter__(self) -> JsonLinesDeltaWriter:
        await self.start()
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.close()

    async def _drain(self) -> None:
        while True:
            item = await self._queue.get()
            batch: list[RelationshipDelta] = []
            stop = item is _STOP
            if not stop:
                batch.append(item)  # type: ignore[arg-type]
            while not stop and len(batch) < MAX_BATCH_LINES:
                try:
                    item = self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                if item is _STOP:
                    stop = True
                else:
                    batch.append(item)  # type: ignore[arg-type]

            if batch and self._error is None:
                await self._flush(batch)
            if stop:
                return

    async def _flush(self, batch: list[RelationshipDelta]) -> None:
        file = self._file
        if file is None:
            self._error = SinkIOError(f"Delta writer for {self.path} is not started")
            return
        text = "".join(
            json.dumps(delta.to_record(self._include_operation), separators=(",", ":")) + "\n"
            for delta in batch
        )
        try:
            await asyncio.to_thread(file.write, text)
            await asyncio.to_thread(file.flush)
        except OSError as e:
            # Keep draining so producers blocked on the queue are released.
            logger.error("Delta write to %s failed: %s", self.path, e)
            self._error = SinkIOError(f"Cannot write deltas to {self.path}: {e}")
            return
        self._written += len(batch)


class MemoryDeltaSink(DeltaSink):
    """Collects deltas in a list. Optionally fails after ``fail_after`` writes."""

    def __init__(self, fail_after: int | None = None) -> None:
        self.deltas: list[RelationshipDelta] = []
        self.closed = False
        self._fail_after = fail_after

    @property
    def count(self) -> int:
        return len(self.deltas)

    async def write(self, delta: RelationshipDelta) -> None:
        if self._fail_after is not None and len(self.deltas) >= self._fail_after:
            raise SinkIOError("memory sink is full")
        self.deltas.append(delta)
        # Yield like a real sink would so concurrent producers interleave.
        await asyncio.sleep(0)

    async def close(self) -> None:
        self.closed = True

    def pairs(self) -> set[tuple[str, str]]:
        return {(d.rater, d.ratee) for d in self.deltas}


def read_deltas(
    path: Path | str,
    kind: RelationshipKind,
    operation: DeltaOperation | None = None,
) -> Iterator[RelationshipDelta]:
    """Stream a delta file back, one delta per line.

    Blank lines are skipped; invalid lines are logged and skipped.

    Args:
        path: JSON-Lines file.
        kind: Relationship kind of the stream.
        operation: Operation implied by the file when lines carry none.
    """
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield RelationshipDelta.from_record(json.loads(line), kind, operation)
            except ValueError as e:
                logger.warning("Skipping invalid delta at %s:%d: %s", path, line_no, e)
