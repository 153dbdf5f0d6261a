"""Rating records consumed by GrapeRank."""

from __future__ import annotations

from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator

# (score, confidence)
RatingValue: TypeAlias = tuple[float, float]

# context-free index used by propagation: ratee -> rater -> (score, confidence)
RatingsIndex: TypeAlias = dict[str, dict[str, RatingValue]]


class Rating(BaseModel):
    """A single resolved rating of one pubkey by another.

    Built from exactly one relationship per ``(rater, ratee)`` pair after
    precedence resolution. Self-ratings cannot be constructed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    context: str
    rater: str = Field(min_length=1)
    ratee: str = Field(min_length=1)
    score: float
    confidence: float = Field(ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _no_self_rating(self) -> Rating:
        if self.rater == self.ratee:
            raise ValueError(f"self-rating is not allowed ({self.rater})")
        return self

    @property
    def value(self) -> RatingValue:
        return (self.score, self.confidence)
