"""GrapeRank: personalized trust scores for a social graph.

Keeps a graph database in sync with the follow, mute and report lists
observed on a relay, turns those relationships into ratings, and propagates
confidence-weighted trust from one root pubkey.

Quick Start:
    from graperank import load_settings
    from graperank.propagation import run_propagation_cycle
    from graperank.storage import ScorecardFileStore, read_ratings

    settings = load_settings()
    _, ratings = read_ratings("data/ratings.json")
    result = await run_propagation_cycle(
        ratings,
        ScorecardFileStore("data"),
        settings.graperank_params(),
    )
    print(result.run.iterations, result.run.converged)

Pipeline:
    - reconciliation: relay snapshot vs graph snapshot -> add/delete deltas
    - ratings: follows, mutes and reports -> (score, confidence) per pair
    - propagation: ratings + previous scorecards -> new scorecards
    - publication: scorecards -> kind-30382 events -> relays
"""

__version__ = "0.1.0"

# Configuration
from .config import (
    EndpointConfig,
    GrapeRankParams,
    PublicationConfig,
    RatingCurve,
    RatingCurves,
    Settings,
    load_settings,
)

# Exceptions
from .exceptions import (
    ConfigurationError,
    GrapeRankError,
    MalformedShardError,
    PublicationConnectionError,
    PublicationError,
    PublicationRejected,
    SinkIOError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    CalculationRun,
    Rating,
    Relationship,
    RelationshipDelta,
    RelationshipKind,
    Scorecard,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "EndpointConfig",
    "GrapeRankParams",
    "PublicationConfig",
    "RatingCurve",
    "RatingCurves",
    "Settings",
    "load_settings",
    # Exceptions
    "ConfigurationError",
    "GrapeRankError",
    "MalformedShardError",
    "PublicationConnectionError",
    "PublicationError",
    "PublicationRejected",
    "SinkIOError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
    # Models
    "CalculationRun",
    "Rating",
    "Relationship",
    "RelationshipDelta",
    "RelationshipKind",
    "Scorecard",
]
