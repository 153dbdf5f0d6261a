"""Relationship edges, shards and reconciliation deltas."""

from __future__ import annotations

from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator

# One rater shard. Follow/Mute: ratee -> observedAt.
# Report: reportType -> ratee -> observedAt. Legacy snapshots store ``true``
# instead of a timestamp.
ObservedAt: TypeAlias = int | bool
FlatShard: TypeAlias = dict[str, ObservedAt]
ReportShard: TypeAlias = dict[str, dict[str, ObservedAt]]
Shard: TypeAlias = FlatShard | ReportShard


class RelationshipKind(str, Enum):
    """Kinds of directed edges between two pubkeys."""

    FOLLOW = "follow"
    MUTE = "mute"
    REPORT = "report"

    @property
    def event_kind(self) -> int:
        """Relay event kind that carries this relationship."""
        return _EVENT_KINDS[self]

    @property
    def plural(self) -> str:
        """Name used for snapshot directories and delta files."""
        return f"{self.value}s"

    @property
    def is_nested(self) -> bool:
        """Whether shards of this kind are keyed by report type first."""
        return self is RelationshipKind.REPORT

    @classmethod
    def from_event_kind(cls, kind: int) -> RelationshipKind | None:
        """Map a relay event kind to a relationship kind, if any."""
        for member, event_kind in _EVENT_KINDS.items():
            if event_kind == kind:
                return member
        return None


_EVENT_KINDS = {
    RelationshipKind.FOLLOW: 3,
    RelationshipKind.MUTE: 10000,
    RelationshipKind.REPORT: 1984,
}

# Lowest to highest severity. Ratings apply kinds in exactly this order.
PRECEDENCE: tuple[RelationshipKind, ...] = (
    RelationshipKind.FOLLOW,
    RelationshipKind.MUTE,
    RelationshipKind.REPORT,
)


class DeltaOperation(str, Enum):
    """Whether a delta adds or removes an edge from the mirror."""

    ADD = "add"
    DELETE = "delete"


class Relationship(BaseModel):
    """An edge as observed by one subsystem."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rater: str = Field(min_length=1)
    ratee: str = Field(min_length=1)
    kind: RelationshipKind
    report_type: str | None = None
    observed_at: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _report_type_only_for_reports(self) -> Relationship:
        if self.report_type is not None and self.kind is not RelationshipKind.REPORT:
            raise ValueError(f"report_type is only valid for reports, not {self.kind.value}")
        return self

    @property
    def is_self_rating(self) -> bool:
        return self.rater == self.ratee


class RelationshipDelta(BaseModel):
    """One line of reconciliation output.

    Attributes:
        rater: Source pubkey of the edge.
        ratee: Target pubkey of the edge.
        kind: Relationship kind.
        report_type: Report category (reports only).
        timestamp: Seconds since epoch attached to the edge.
        operation: Add to or delete from the mirror.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rater: str
    ratee: str
    kind: RelationshipKind
    report_type: str | None = None
    timestamp: int
    operation: DeltaOperation

    def to_record(self, include_operation: bool = False) -> dict[str, Any]:
        """Render the JSON-Lines record used by the graph writer."""
        record: dict[str, Any] = {"pk_rater": self.rater, "pk_ratee": self.ratee}
        if self.report_type is not None:
            record["report_type"] = self.report_type
        record["timestamp"] = self.timestamp
        if include_operation:
            record["operation"] = self.operation.value
        return record

    @classmethod
    def from_record(
        cls,
        record: dict[str, Any],
        kind: RelationshipKind,
        operation: DeltaOperation | None = None,
    ) -> RelationshipDelta:
        """Parse a JSON-Lines record.

        Args:
            record: Decoded line.
            kind: Kind of the stream the line came from.
            operation: Operation implied by the file; required when the
                record has no ``operation`` field.

        Raises:
            ValueError: If the record is not an object or lacks required fields.
        """
        if not isinstance(record, dict):
            raise ValueError(f"delta record must be an object, got {type(record).__name__}")
        op = record.get("operation", operation)
        if op is None:
            raise ValueError("delta record has no operation and none was implied by its stream")
        try:
            return cls(
                rater=record["pk_rater"],
                ratee=record["pk_ratee"],
                kind=kind,
                report_type=record.get("report_type"),
                timestamp=int(record.get("timestamp", 0)),
                operation=DeltaOperation(op),
            )
        except KeyError as e:
            raise ValueError(f"delta record missing field {e.args[0]}") from e
        except (TypeError, OverflowError) as e:
            raise ValueError(f"delta record has a field of the wrong type: {e}") from e

    def as_relationship(self) -> Relationship:
        return Relationship(
            rater=self.rater,
            ratee=self.ratee,
            kind=self.kind,
            report_type=self.report_type,
            observed_at=max(self.timestamp, 0),
        )
