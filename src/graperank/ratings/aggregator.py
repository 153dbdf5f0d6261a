"""Turn relationship edges into GrapeRank ratings.

Each ``(rater, ratee)`` pair gets exactly one rating. When a pair has
several relationship kinds, they are applied in a fixed order (follow,
mute, report), each overwriting the previous, so the most severe kind wins.
Self-ratings are always dropped.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, Iterable, Iterator, Mapping

from graperank.config import DEFAULT_CONTEXT, RatingCurves
from graperank.models import (
    PRECEDENCE,
    Rating,
    RatingsIndex,
    RatingValue,
    Relationship,
    RelationshipKind,
)

logger = logging.getLogger(__name__)

Pair = tuple[str, str]


def rating_value(
    kind: RelationshipKind,
    rater: str,
    curves: RatingCurves,
    root_pubkey: str,
) -> RatingValue:
    """The ``(score, confidence)`` a relationship of ``kind`` carries.

    Follows by the root pubkey use the observer confidence instead of the
    regular follow confidence.
    """
    if kind is RelationshipKind.FOLLOW:
        confidence = (
            curves.follow_observer_confidence if rater == root_pubkey else curves.follow.confidence
        )
        return (curves.follow.score, confidence)
    if kind is RelationshipKind.MUTE:
        return (curves.mute.score, curves.mute.confidence)
    return (curves.report.score, curves.report.confidence)


def resolve_rating(
    relationships: Iterable[Relationship],
    curves: RatingCurves,
    root_pubkey: str,
    context: str = DEFAULT_CONTEXT,
) -> Rating | None:
    """Resolve every relationship of one ``(rater, ratee)`` pair to a rating.

    Args:
        relationships: Edges of a single pair, in any order.
        curves: Per-kind rating table.
        root_pubkey: Owner pubkey, for the observer boost.
        context: Rating context name.

    Returns:
        The rating of the highest-precedence kind, or None if there were no
        edges or the pair is a self-rating.

    Raises:
        ValueError: If the edges belong to more than one pair.
    """
    by_kind: dict[RelationshipKind, Relationship] = {}
    pair: Pair | None = None
    for relationship in relationships:
        current = (relationship.rater, relationship.ratee)
        if pair is not None and current != pair:
            raise ValueError(f"resolve_rating got edges of {pair} and {current}")
        pair = current
        by_kind[relationship.kind] = relationship

    if pair is None or pair[0] == pair[1]:
        return None

    kind = max(by_kind, key=PRECEDENCE.index)
    value = rating_value(kind, pair[0], curves, root_pubkey)
    return Rating(
        context=context,
        rater=pair[0],
        ratee=pair[1],
        score=value[0],
        confidence=value[1],
    )


class RatingsAggregator:
    """Builds a ratee-keyed ratings index from per-kind pair streams.

    Kinds must be applied from lowest to highest precedence; ``apply``
    refuses to apply a kind after a more severe one.

    Example:
        ```python
        aggregator = RatingsAggregator(curves, root_pubkey)
        await aggregator.aggregate({
            RelationshipKind.FOLLOW: read_pairs_csv("follows.csv"),
            RelationshipKind.MUTE: read_pairs_csv("mutes.csv"),
        })
        for ratee, raters in aggregator.iter_ratees():
            ...
        ```
    """

    def __init__(
        self,
        curves: RatingCurves,
        root_pubkey: str,
        context: str = DEFAULT_CONTEXT,
    ) -> None:
        self.curves = curves
        self.root_pubkey = root_pubkey
        self.context = context
        self._index: RatingsIndex = {}
        self._applied: list[RelationshipKind] = []
        self.dropped_self_ratings = 0
        self.counts: dict[RelationshipKind, int] = {}

    @property
    def index(self) -> RatingsIndex:
        """``ratee -> rater -> (score, confidence)``."""
        return self._index

    def _begin(self, kind: RelationshipKind) -> None:
        rank = PRECEDENCE.index(kind)
        for applied in self._applied:
            if PRECEDENCE.index(applied) > rank:
                raise ValueError(
                    f"Cannot apply {kind.plural} after {applied.plural}; "
                    "apply follows, then mutes, then reports"
                )
        if kind not in self._applied:
            self._applied.append(kind)

    def _set(self, kind: RelationshipKind, rater: str, ratee: str) -> bool:
        if rater == ratee:
            self.dropped_self_ratings += 1
            return False
        value = rating_value(kind, rater, self.curves, self.root_pubkey)
        self._index.setdefault(ratee, {})[rater] = value
        return True

    def apply(self, kind: RelationshipKind, pairs: Iterable[Pair]) -> int:
        """Apply every ``(rater, ratee)`` pair of one kind.

        Returns:
            Pairs applied (self-ratings excluded).

        Raises:
            ValueError: If a more severe kind was already applied.
        """
        self._begin(kind)
        applied = 0
        for rater, ratee in pairs:
            applied += self._set(kind, rater, ratee)
        self._record(kind, applied)
        return applied

    async def apply_stream(self, kind: RelationshipKind, pairs: AsyncIterable[Pair]) -> int:
        """Like :meth:`apply`, for pairs read asynchronously from a snapshot."""
        self._begin(kind)
        applied = 0
        async for rater, ratee in pairs:
            applied += self._set(kind, rater, ratee)
        self._record(kind, applied)
        return applied

    def _record(self, kind: RelationshipKind, applied: int) -> None:
        self.counts[kind] = self.counts.get(kind, 0) + applied
        logger.info("Applied %d %s ratings", applied, kind.value)

    async def aggregate(
        self,
        sources: Mapping[RelationshipKind, Iterable[Pair] | AsyncIterable[Pair]],
    ) -> RatingsIndex:
        """Apply all given sources in precedence order, whatever the mapping order."""
        for kind in PRECEDENCE:
            source = sources.get(kind)
            if source is None:
                continue
            if isinstance(source, AsyncIterable):
                await self.apply_stream(kind, source)
            else:
                self.apply(kind, source)
        if self.dropped_self_ratings:
            logger.info("Dropped %d self-ratings", self.dropped_self_ratings)
        return self._index

    def iter_ratees(self) -> Iterator[tuple[str, dict[str, RatingValue]]]:
        """Stream ``(ratee, {rater: (score, confidence)})``."""
        yield from self._index.items()

    def ratings(self) -> Iterator[Rating]:
        """Stream every rating as a :class:`Rating`."""
        for ratee, raters in self._index.items():
            for rater, (score, confidence) in raters.items():
                yield Rating(
                    context=self.context,
                    rater=rater,
                    ratee=ratee,
                    score=score,
                    confidence=confidence,
                )

    def __len__(self) -> int:
        return sum(len(raters) for raters in self._index.values())
