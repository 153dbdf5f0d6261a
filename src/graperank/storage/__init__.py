"""Storage adapters for snapshots, deltas, ratings and scorecards."""

from .base import DeltaSink, RelationshipSource, ScorecardSink
from .deltas import JsonLinesDeltaWriter, MemoryDeltaSink, delta_file_name, read_deltas
from .ratings_file import read_ratings, write_ratings
from .scorecards import InMemoryScorecardStore, ScorecardFileStore
from .shards import (
    InMemorySnapshot,
    ShardDirectory,
    ShardKey,
    encode_shard,
    parse_shard,
    shard_keys,
)

__all__ = [
    # Interfaces
    "DeltaSink",
    "RelationshipSource",
    "ScorecardSink",
    # Shards
    "InMemorySnapshot",
    "ShardDirectory",
    "ShardKey",
    "encode_shard",
    "parse_shard",
    "shard_keys",
    # Deltas
    "JsonLinesDeltaWriter",
    "MemoryDeltaSink",
    "delta_file_name",
    "read_deltas",
    # Ratings
    "read_ratings",
    "write_ratings",
    # Scorecards
    "InMemoryScorecardStore",
    "ScorecardFileStore",
]
