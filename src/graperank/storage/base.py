"""Abstract storage interfaces.

The core never spawns processes or talks to the relay or graph database.
It reads and writes through these three narrow interfaces, so every engine
can be driven by the in-memory fakes in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from graperank.models import CalculationRun, RelationshipDelta, RelationshipKind, Shard
    from graperank.models.scorecard import ScorecardValues


class RelationshipSource(ABC):
    """Read access to one sharded relationship snapshot.

    A snapshot holds every edge of one kind as known by one subsystem, split
    into one shard per rater. Implementations must never load the whole
    snapshot at once.

    Example:
        ```python
        source = ShardDirectory(Path("snapshots/relay/follows"), RelationshipKind.FOLLOW)
        for rater in source.raters():
            shard = await source.read_shard(rater)
        ```
    """

    @property
    @abstractmethod
    def kind(self) -> RelationshipKind:
        """Relationship kind held by this snapshot."""
        ...

    @abstractmethod
    def raters(self) -> Iterator[str]:
        """Iterate rater pubkeys lazily, in no particular order."""
        ...

    @abstractmethod
    def contains(self, rater: str) -> bool:
        """Whether a shard exists for ``rater``, without parsing it."""
        ...

    @abstractmethod
    async def read_shard(self, rater: str) -> Shard | None:
        """Read the shard of one rater.

        Args:
            rater: Rater pubkey.

        Returns:
            ``ratee -> observedAt`` (or ``reportType -> ratee -> observedAt``
            for reports), or None when the rater has no shard.

        Raises:
            MalformedShardError: If the shard is unparsable or has the
                wrong structure.
        """
        ...


class DeltaSink(ABC):
    """Append-only destination for reconciliation deltas."""

    @abstractmethod
    async def write(self, delta: RelationshipDelta) -> None:
        """Queue one delta, waiting while the sink is saturated.

        Raises:
            SinkIOError: If the sink can no longer accept output.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Flush pending deltas and release the sink.

        Raises:
            SinkIOError: If any write failed.
        """
        ...

    @property
    @abstractmethod
    def count(self) -> int:
        """Deltas accepted so far."""
        ...


class ScorecardSink(ABC):
    """Persistent scorecard map plus run metadata."""

    @abstractmethod
    async def load(self) -> dict[str, ScorecardValues] | None:
        """Load the previous scorecard map, or None if there is none yet."""
        ...

    @abstractmethod
    async def save(self, scorecards: Mapping[str, ScorecardValues]) -> None:
        """Replace the stored map.

        Raises:
            SinkIOError: If the map cannot be written.
        """
        ...

    @abstractmethod
    async def save_run(self, run: CalculationRun) -> None:
        """Store the metadata of the run that produced the current map.

        Raises:
            SinkIOError: If the metadata cannot be written.
        """
        ...
