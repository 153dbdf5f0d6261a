"""Configuration management for GrapeRank.

``Settings`` is read from the environment exactly once, at the process edge
(see ``graperank.cli``). Every component receives one of the frozen value
objects below instead of reading the environment itself.
"""

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from graperank.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ROOT_SCORECARD = (1.0, 1.0, 1.0, 9999.0)
"""Pinned ``(influence, average, confidence, input)`` of the root pubkey."""

DEFAULT_CONTEXT = "verifiedUsers"


class RatingCurve(BaseModel):
    """Score and confidence assigned to one relationship kind."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    score: float = Field(description="Rating value carried by the relationship")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence of the rating")


class RatingCurves(BaseModel):
    """Per-kind rating table plus the observer boost.

    Attributes:
        follow: Rating for a follow (default score 1, confidence 0.03).
        mute: Rating for a mute (default score 0, confidence 0.5).
        report: Rating for a report (default score 0, confidence 0.5).
        follow_observer_confidence: Confidence used instead of
            ``follow.confidence`` when the rater is the root pubkey.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    follow: RatingCurve = Field(default_factory=lambda: RatingCurve(score=1.0, confidence=0.03))
    mute: RatingCurve = Field(default_factory=lambda: RatingCurve(score=0.0, confidence=0.5))
    report: RatingCurve = Field(default_factory=lambda: RatingCurve(score=0.0, confidence=0.5))
    follow_observer_confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def _fill_partial_curves(cls, data: Any) -> Any:
        """Merge a partially specified curve over that kind's default.

        ``GRAPERANK_RATING_CURVES__MUTE__CONFIDENCE=0.4`` arrives as
        ``{"mute": {"confidence": "0.4"}}``; the missing score comes from
        the default mute curve.
        """
        if not isinstance(data, dict):
            return data
        merged = dict(data)
        for kind in ("follow", "mute", "report"):
            value = merged.get(kind)
            if isinstance(value, dict):
                default = cls.model_fields[kind].get_default(call_default_factory=True)
                merged[kind] = {**default.model_dump(), **value}
        return merged


class GrapeRankParams(BaseModel):
    """Parameters of one GrapeRank propagation run.

    Attributes:
        root_pubkey: Trust anchor whose scorecard is pinned.
        rigor: Controls how fast input saturates into confidence. Must lie
            strictly inside (0, 1); 0 and 1 make ``-ln(rigor)`` infinite or zero.
        attenuation_factor: Decay applied to ratings from non-root raters.
        max_iterations: Hard cap on the number of sweeps.
        convergence_threshold: Stop once the largest scorecard change is below this.
        chunk_size: Ratees processed per chunk inside one sweep.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    root_pubkey: str = Field(min_length=1)
    rigor: float = Field(default=0.5, gt=0.0, lt=1.0)
    attenuation_factor: float = Field(default=0.85, gt=0.0, le=1.0)
    max_iterations: int = Field(default=20, ge=1)
    convergence_threshold: float = Field(default=1e-4, gt=0.0)
    chunk_size: int = Field(default=1000, ge=1)


class EndpointConfig(BaseModel):
    """One publication target and its connection budget."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(min_length=1)
    max_connections: int = Field(default=2, ge=1, le=100)
    max_attempts: int = Field(default=3, ge=1, le=10)


class PublicationConfig(BaseModel):
    """Settings for the publication fan-out.

    Attributes:
        endpoints: Targets, primary first.
        processing_window_seconds: How long to wait for an OK/rejection after
            sending. Silence for the whole window counts as a tentative success.
        connect_timeout_seconds: Timeout for opening one connection.
        retry_base_delay_seconds: First backoff delay; doubles on each retry.
        max_pending_events: Events in flight at once across all endpoints.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    endpoints: tuple[EndpointConfig, ...] = Field(min_length=1)
    processing_window_seconds: float = Field(default=2.0, gt=0.0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0.0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_pending_events: int = Field(default=100, ge=1)

    @classmethod
    def from_urls(
        cls,
        urls: list[str],
        primary_max_connections: int = 5,
        secondary_max_connections: int = 2,
        max_attempts: int = 3,
        **kwargs: float | int,
    ) -> "PublicationConfig":
        """Build a config where the first URL is the primary endpoint."""
        endpoints = tuple(
            EndpointConfig(
                url=url,
                max_connections=primary_max_connections if i == 0 else secondary_max_connections,
                max_attempts=max_attempts,
            )
            for i, url in enumerate(urls)
        )
        return cls(endpoints=endpoints, **kwargs)


class Settings(BaseSettings):
    """GrapeRank configuration loaded from environment variables.

    All settings can be overridden via environment variables with the
    GRAPERANK_ prefix. For example:
        GRAPERANK_ROOT_PUBKEY=<hex pubkey>
        GRAPERANK_RIGOR=0.25
        GRAPERANK_RATING_CURVES__MUTE__CONFIDENCE=0.4
        GRAPERANK_RELAY_URLS='["wss://relay.example.com"]'
    """

    model_config = SettingsConfigDict(
        env_prefix="GRAPERANK_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        frozen=True,
        extra="ignore",
    )

    # Trust anchor
    root_pubkey: str | None = Field(
        default=None,
        description="Owner pubkey; required for rating and propagation",
    )
    context: str = Field(
        default=DEFAULT_CONTEXT,
        description="Rating context name written into ratings files",
    )

    # Ratings
    rating_curves: RatingCurves = Field(
        default_factory=RatingCurves,
        description="Per-kind (score, confidence) table",
    )

    # Propagation
    rigor: float = Field(default=0.5, gt=0.0, lt=1.0)
    attenuation_factor: float = Field(default=0.85, gt=0.0, le=1.0)
    max_iterations: int = Field(default=20, ge=1)
    convergence_threshold: float = Field(default=1e-4, gt=0.0)
    chunk_size: int = Field(default=1000, ge=1)

    # Reconciliation
    reconciliation_concurrency: int = Field(
        default=10,
        ge=1,
        le=256,
        description="Rater shards compared concurrently",
    )
    delta_queue_size: int = Field(
        default=1000,
        ge=1,
        description="Pending delta lines before producers wait for the writer",
    )

    # Publication
    relay_urls: list[str] = Field(
        default_factory=list,
        description="Publication endpoints, primary first",
    )
    primary_max_connections: int = Field(default=5, ge=1, le=100)
    secondary_max_connections: int = Field(default=2, ge=1, le=100)
    publish_max_attempts: int = Field(default=3, ge=1, le=10)
    processing_window_seconds: float = Field(default=2.0, gt=0.0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0.0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_pending_events: int = Field(default=100, ge=1)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log output format")

    @model_validator(mode="after")
    def _reject_blank_root(self) -> "Settings":
        if self.root_pubkey is not None and not self.root_pubkey.strip():
            raise ValueError("root_pubkey must not be blank")
        return self

    def require_root_pubkey(self) -> str:
        """Return the root pubkey or fail before any work starts."""
        if not self.root_pubkey:
            raise ConfigurationError(
                "GRAPERANK_ROOT_PUBKEY must be set to rate relationships or run GrapeRank"
            )
        return self.root_pubkey

    def graperank_params(self) -> GrapeRankParams:
        """Build the immutable propagation parameters."""
        return GrapeRankParams(
            root_pubkey=self.require_root_pubkey(),
            rigor=self.rigor,
            attenuation_factor=self.attenuation_factor,
            max_iterations=self.max_iterations,
            convergence_threshold=self.convergence_threshold,
            chunk_size=self.chunk_size,
        )

    def publication_config(self, urls: list[str] | None = None) -> PublicationConfig:
        """Build the fan-out config, optionally overriding the endpoint list."""
        targets = urls or self.relay_urls
        if not targets:
            raise ConfigurationError("At least one relay URL is required for publication")
        return PublicationConfig.from_urls(
            targets,
            primary_max_connections=self.primary_max_connections,
            secondary_max_connections=self.secondary_max_connections,
            max_attempts=self.publish_max_attempts,
            processing_window_seconds=self.processing_window_seconds,
            connect_timeout_seconds=self.connect_timeout_seconds,
            retry_base_delay_seconds=self.retry_base_delay_seconds,
            max_pending_events=self.max_pending_events,
        )


def load_settings(**overrides: object) -> Settings:
    """Load settings from the environment, turning validation failures fatal.

    Args:
        **overrides: Values that take precedence over the environment.

    Returns:
        A frozen Settings instance.

    Raises:
        ConfigurationError: If any value is missing or out of range.
    """
    try:
        settings = Settings(**overrides)  # type: ignore[arg-type]
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e
    logger.debug("Loaded settings (root configured=%s)", settings.root_pubkey is not None)
    return settings
