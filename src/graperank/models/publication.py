"""Outbound events and publication bookkeeping."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OutboundEvent(BaseModel):
    """A finalized relay event ready to broadcast.

    Signing happens outside this package, so ``id`` and ``sig`` arrive
    already filled in. Unsigned templates leave them empty.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = ""
    pubkey: str
    created_at: int = Field(ge=0)
    kind: int = Field(ge=0)
    tags: list[list[str]] = Field(default_factory=list)
    content: str = ""
    sig: str = ""

    def to_wire(self) -> dict[str, Any]:
        """Dictionary in the relay wire layout."""
        return self.model_dump()

    def tag_value(self, name: str) -> str | None:
        """First value of the first tag named ``name``."""
        for tag in self.tags:
            if len(tag) >= 2 and tag[0] == name:
                return tag[1]
        return None


class PublishOutcome(str, Enum):
    """Terminal outcome of one publish attempt."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMEOUT = "timeout"


class AttemptResult(BaseModel):
    """What an endpoint said about one event on one attempt."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    outcome: PublishOutcome
    message: str = ""


class DeliveryRecord(BaseModel):
    """Final result for one ``(event, endpoint)`` pair.

    Attributes:
        event_id: Event that was published.
        endpoint: Target URL.
        outcome: ACCEPTED, TIMEOUT (tentative success) or REJECTED.
        attempts: Attempts spent, including the last one.
        error: Last rejection or connection error, if the pair failed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_id: str
    endpoint: str
    outcome: PublishOutcome
    attempts: int = Field(ge=0)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is not PublishOutcome.REJECTED


class EndpointStats(BaseModel):
    """Per-endpoint counters."""

    model_config = ConfigDict(extra="forbid")

    accepted: int = 0
    tentative: int = 0
    failed: int = 0

    @property
    def succeeded(self) -> int:
        return self.accepted + self.tentative


class PublicationReport(BaseModel):
    """Summary of one fan-out run."""

    model_config = ConfigDict(extra="forbid")

    events: int = 0
    endpoints: dict[str, EndpointStats] = Field(default_factory=dict)
    failures: list[DeliveryRecord] = Field(default_factory=list)
    cancelled: bool = False
    duration_ms: int = 0

    def record(self, delivery: DeliveryRecord) -> None:
        stats = self.endpoints.setdefault(delivery.endpoint, EndpointStats())
        if delivery.outcome is PublishOutcome.ACCEPTED:
            stats.accepted += 1
        elif delivery.outcome is PublishOutcome.TIMEOUT:
            stats.tentative += 1
        else:
            stats.failed += 1
            self.failures.append(delivery)

    @property
    def total_failed(self) -> int:
        return sum(stats.failed for stats in self.endpoints.values())
