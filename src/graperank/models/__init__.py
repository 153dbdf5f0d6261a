"""Data models for GrapeRank.

Graph Types:
    - Relationship: A follow, mute or report edge
    - RelationshipDelta: One add/delete line produced by reconciliation
    - Rating: A resolved (score, confidence) of one pubkey by another
    - Scorecard: A pubkey's (influence, average, confidence, input)

Run Records:
    - CalculationRun: Metadata of one propagation run
    - PublicationReport: Per-endpoint outcome counts of one fan-out run
"""

from .publication import (
    AttemptResult,
    DeliveryRecord,
    EndpointStats,
    OutboundEvent,
    PublicationReport,
    PublishOutcome,
)
from .rating import Rating, RatingsIndex, RatingValue
from .relationship import (
    PRECEDENCE,
    DeltaOperation,
    FlatShard,
    ObservedAt,
    Relationship,
    RelationshipDelta,
    RelationshipKind,
    ReportShard,
    Shard,
)
from .scorecard import NEUTRAL_SCORECARD, CalculationRun, Scorecard, ScorecardValues

__all__ = [
    # Relationships
    "PRECEDENCE",
    "DeltaOperation",
    "FlatShard",
    "ObservedAt",
    "Relationship",
    "RelationshipDelta",
    "RelationshipKind",
    "ReportShard",
    "Shard",
    # Ratings
    "Rating",
    "RatingValue",
    "RatingsIndex",
    # Scorecards
    "NEUTRAL_SCORECARD",
    "CalculationRun",
    "Scorecard",
    "ScorecardValues",
    # Publication
    "AttemptResult",
    "DeliveryRecord",
    "EndpointStats",
    "OutboundEvent",
    "PublicationReport",
    "PublishOutcome",
]
