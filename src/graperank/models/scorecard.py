"""Scorecards and propagation run metadata."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

# (influence, average, confidence, input) as stored in scorecards.json
ScorecardValues: TypeAlias = tuple[float, float, float, float]

NEUTRAL_SCORECARD: ScorecardValues = (0.0, 0.0, 0.0, 0.0)


class Scorecard(BaseModel):
    """A pubkey's GrapeRank state."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pubkey: str
    influence: float = 0.0
    average: float = 0.0
    confidence: float = 0.0
    input: float = 0.0

    @classmethod
    def from_values(cls, pubkey: str, values: ScorecardValues) -> Scorecard:
        influence, average, confidence, input_ = values
        return cls(
            pubkey=pubkey,
            influence=influence,
            average=average,
            confidence=confidence,
            input=input_,
        )

    def as_values(self) -> ScorecardValues:
        return (self.influence, self.average, self.confidence, self.input)


class CalculationRun(BaseModel):
    """Write-once metadata describing one propagation invocation.

    Attributes:
        iterations: Sweeps performed.
        converged: Whether the last sweep moved every field by less than
            the threshold. False means the iteration cap stopped the run.
        max_difference: Largest field change in the last sweep, or None if
            no sweep ran.
        total_scorecards: Entries in the resulting map.
        rigor: Rigor used.
        attenuation_factor: Attenuation factor used.
        max_iterations: Iteration cap used.
        convergence_threshold: Threshold used.
        duration_ms: Wall-clock time spent propagating.
        cancelled: Whether a shutdown request stopped the run early.
        finished_at: When the run ended.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    iterations: int = Field(ge=0)
    converged: bool
    max_difference: float | None = None
    total_scorecards: int = Field(ge=0)
    rigor: float
    attenuation_factor: float
    max_iterations: int
    convergence_threshold: float
    duration_ms: int = Field(default=0, ge=0)
    cancelled: bool = False
    finished_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_metadata(self) -> dict[str, Any]:
        """Render the ``scorecards_metadata.json`` document."""
        return {
            "timestamp": int(self.finished_at.timestamp() * 1000),
            "calculation_time_ms": self.duration_ms,
            "iterations": self.iterations,
            "converged": self.converged,
            "max_difference": self.max_difference,
            "total_scorecards": self.total_scorecards,
            "parameters": {
                "attenuation_factor": self.attenuation_factor,
                "rigor": self.rigor,
                "max_iterations": self.max_iterations,
                "convergence_threshold": self.convergence_threshold,
            },
        }

    @classmethod
    def from_metadata(cls, document: dict[str, Any]) -> CalculationRun:
        """Parse a metadata document written by :meth:`to_metadata`."""
        params = document.get("parameters", {})
        return cls(
            iterations=document["iterations"],
            converged=document["converged"],
            max_difference=document.get("max_difference"),
            total_scorecards=document["total_scorecards"],
            rigor=params["rigor"],
            attenuation_factor=params["attenuation_factor"],
            max_iterations=params["max_iterations"],
            convergence_threshold=params["convergence_threshold"],
            duration_ms=document.get("calculation_time_ms", 0),
            finished_at=datetime.fromtimestamp(document["timestamp"] / 1000, tz=UTC),
        )
