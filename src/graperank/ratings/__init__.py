"""Ratings aggregation."""

from .aggregator import RatingsAggregator, rating_value, resolve_rating
from .sources import pairs_from_deltas, pairs_from_snapshot, read_pairs_csv

__all__ = [
    "RatingsAggregator",
    "pairs_from_deltas",
    "pairs_from_snapshot",
    "rating_value",
    "read_pairs_csv",
    "resolve_rating",
]
