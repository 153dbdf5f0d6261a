"""GrapeRank trust propagation.

Computes personalized, confidence-weighted trust scores for every rated
pubkey, seen from one root pubkey.

Per sweep, every ratee except the root is recomputed from the previous
sweep's scorecards only:

    weight     = influence(rater) * confidence(rating)
                 * attenuation_factor   (unless the rater is the root)
    input      = sum(weight)
    average    = sum(score * weight) / input     (0 when input is 0)
    confidence = 1 - exp(-input * -ln(rigor))
    influence  = average * confidence

Design principles:
1. The root is the trust anchor; its scorecard is pinned to (1, 1, 1, 9999)
2. Sweeps are Jacobi-style, so the result does not depend on ratee order
3. Ratees are processed in bounded chunks, yielding to the event loop between chunks
4. Iteration stops on convergence or at a hard cap; non-convergence is not an error
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from itertools import chain
from typing import TYPE_CHECKING

from graperank.config import ROOT_SCORECARD, GrapeRankParams
from graperank.models import NEUTRAL_SCORECARD, CalculationRun, RatingsIndex, RatingValue, Scorecard
from graperank.models.scorecard import ScorecardValues

if TYPE_CHECKING:
    from graperank.storage.base import ScorecardSink

logger = logging.getLogger(__name__)

# Largest float strictly below 1.0
MAX_CONFIDENCE = math.nextafter(1.0, 0.0)


def rigority(rigor: float) -> float:
    """``-ln(rigor)``; positive for rigor in (0, 1)."""
    if not 0.0 < rigor < 1.0:
        raise ValueError(f"rigor must lie strictly between 0 and 1, got {rigor}")
    return -math.log(rigor)


def convert_input_to_confidence(input_: float, rigority_: float) -> float:
    """Map accumulated rating weight to a confidence in [0, 1).

    Args:
        input_: Sum of rating weights, non-negative.
        rigority_: ``-ln(rigor)``.

    Returns:
        ``1 - exp(-input * rigority)``, clamped below 1 once ``exp`` underflows.
    """
    confidence = 1.0 - math.exp(-input_ * rigority_)
    return min(max(confidence, 0.0), MAX_CONFIDENCE)


def calculate_scorecard(
    raters: Mapping[str, RatingValue],
    previous: Mapping[str, ScorecardValues],
    params: GrapeRankParams,
    rigority_: float,
) -> ScorecardValues:
    """Compute one ratee's scorecard from its incoming ratings.

    Args:
        raters: ``rater -> (score, confidence)`` for this ratee.
        previous: Scorecards of the previous sweep; unknown raters have no
            influence.
        params: Propagation parameters.
        rigority_: ``-ln(rigor)``, computed once per run.

    Returns:
        ``(influence, average, confidence, input)``.
    """
    products_sum = 0.0
    weights_sum = 0.0
    root = params.root_pubkey
    for rater, (score, rating_confidence) in raters.items():
        card = previous.get(rater)
        if card is None:
            continue
        weight = card[0] * rating_confidence
        if rater != root:
            weight *= params.attenuation_factor
        products_sum += score * weight
        weights_sum += weight

    if weights_sum == 0.0:
        return NEUTRAL_SCORECARD
    average = products_sum / weights_sum
    confidence = convert_input_to_confidence(weights_sum, rigority_)
    return (average * confidence, average, confidence, weights_sum)


def max_difference(
    current: Mapping[str, ScorecardValues],
    previous: Mapping[str, ScorecardValues],
) -> float:
    """Largest absolute change of any scorecard field between two maps.

    A pubkey missing from one side is compared against the neutral scorecard.
    """
    worst = 0.0
    for pubkey in chain(current, (p for p in previous if p not in current)):
        new = current.get(pubkey, NEUTRAL_SCORECARD)
        old = previous.get(pubkey, NEUTRAL_SCORECARD)
        for a, b in zip(new, old, strict=True):
            diff = abs(a - b)
            if diff > worst:
                worst = diff
    return worst


def initialize_scorecards(ratees: Iterable[str], root_pubkey: str) -> dict[str, ScorecardValues]:
    """Neutral starting map: every ratee at zero, the root pinned."""
    scorecards: dict[str, ScorecardValues] = {pubkey: NEUTRAL_SCORECARD for pubkey in ratees}
    scorecards[root_pubkey] = ROOT_SCORECARD
    return scorecards


def _chunks(items: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass
class PropagationResult:
    """Output of one propagation run.

    Attributes:
        scorecards: Final ``pubkey -> (influence, average, confidence, input)``.
        run: Metadata of the run.
    """

    scorecards: dict[str, ScorecardValues]
    run: CalculationRun

    def scorecard(self, pubkey: str) -> Scorecard:
        return Scorecard.from_values(pubkey, self.scorecards.get(pubkey, NEUTRAL_SCORECARD))


async def propagate(
    ratings: RatingsIndex,
    params: GrapeRankParams,
    scorecards: Mapping[str, ScorecardValues] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> PropagationResult:
    """Run GrapeRank until convergence or the iteration cap.

    Args:
        ratings: ``ratee -> rater -> (score, confidence)``.
        params: Propagation parameters, including the root pubkey.
        scorecards: Previous map used as the seed; neutral when None.
        cancel_event: Checked between sweeps; when set, the run stops and
            returns the last completed sweep.

    Returns:
        PropagationResult with the new map and its CalculationRun.
    """
    started = time.monotonic()
    root = params.root_pubkey
    rigority_ = rigority(params.rigor)

    current: dict[str, ScorecardValues] = dict(scorecards) if scorecards else {}
    ratees = [pubkey for pubkey in dict.fromkeys(chain(ratings, current)) if pubkey != root]
    for pubkey in ratees:
        current.setdefault(pubkey, NEUTRAL_SCORECARD)
    current[root] = ROOT_SCORECARD

    iterations = 0
    converged = False
    cancelled = False
    last_difference: float | None = None
    no_ratings: dict[str, RatingValue] = {}

    while iterations < params.max_iterations:
        if cancel_event is not None and cancel_event.is_set():
            cancelled = True
            logger.warning("GrapeRank cancelled after %d iterations", iterations)
            break

        previous = current
        current = dict(previous)
        for chunk in _chunks(ratees, params.chunk_size):
            updates = {
                pubkey: calculate_scorecard(
                    ratings.get(pubkey, no_ratings), previous, params, rigority_
                )
                for pubkey in chunk
            }
            current.update(updates)
            del updates
            await asyncio.sleep(0)
        current[root] = ROOT_SCORECARD

        iterations += 1
        last_difference = max_difference(current, previous)
        logger.debug("GrapeRank iteration %d: max difference %.6g", iterations, last_difference)
        if last_difference < params.convergence_threshold:
            converged = True
            break

    run = CalculationRun(
        iterations=iterations,
        converged=converged,
        max_difference=last_difference,
        total_scorecards=len(current),
        rigor=params.rigor,
        attenuation_factor=params.attenuation_factor,
        max_iterations=params.max_iterations,
        convergence_threshold=params.convergence_threshold,
        duration_ms=int((time.monotonic() - started) * 1000),
        cancelled=cancelled,
    )

    if converged:
        logger.info(
            "GrapeRank converged: %d iterations, %d scorecards, max difference %.6g",
            iterations,
            len(current),
            last_difference,
        )
    elif not cancelled:
        logger.warning(
            "GrapeRank did not converge within %d iterations (max difference %s)",
            iterations,
            last_difference,
        )

    return PropagationResult(scorecards=current, run=run)


async def run_propagation_cycle(
    ratings: RatingsIndex,
    store: ScorecardSink,
    params: GrapeRankParams,
    cancel_event: asyncio.Event | None = None,
) -> PropagationResult:
    """Load the previous map, propagate, and persist the result.

    Args:
        ratings: ``ratee -> rater -> (score, confidence)``.
        store: Where the previous map is read and the new one written.
        params: Propagation parameters.
        cancel_event: Checked between sweeps.

    Returns:
        PropagationResult of this cycle.

    Raises:
        SinkIOError: If the store cannot be read or written.
    """
    previous = await store.load()
    if previous is None:
        logger.info("No previous scorecards; starting from a neutral map")
        previous = initialize_scorecards(ratings, params.root_pubkey)

    result = await propagate(ratings, params, previous, cancel_event=cancel_event)
    await store.save(result.scorecards)
    await store.save_run(result.run)
    return result
