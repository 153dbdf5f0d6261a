"""GrapeRank exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from GrapeRankError for easy catching.

Only resource-level failures are raised as exceptions. Unit-level problems
(one malformed shard, one slow endpoint) are recovered where they happen and
surface as counts in the run summaries instead.
"""

from __future__ import annotations


class GrapeRankError(Exception):
    """Base exception for all GrapeRank errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code.
    """

    code: str = "graperank_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to a serializable dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ConfigurationError(GrapeRankError):
    """Configuration error.

    Raised when required configuration is missing or invalid (missing root
    pubkey, rating curve, or a rigor outside (0, 1)). Always fatal at startup.
    """

    code: str = "configuration_error"


class MalformedShardError(GrapeRankError):
    """A rater shard could not be parsed or has the wrong structure.

    The reconciliation engine recovers from this by treating the shard as
    empty for that rater, on either side of the comparison.

    Attributes:
        rater: Pubkey of the rater whose shard is malformed.
        reason: Why the shard was rejected.
    """

    code: str = "malformed_shard"

    def __init__(self, rater: str, reason: str) -> None:
        self.rater = rater
        self.reason = reason
        super().__init__(f"Malformed shard for {rater}: {reason}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to a serializable dictionary."""
        return {
            "error": {
                "code": self.code,
                "rater": self.rater,
                "message": self.message,
            }
        }


class SinkIOError(GrapeRankError):
    """Writing delta, ratings or scorecard output failed.

    Fatal: the run is aborted.
    """

    code: str = "sink_io_error"


class PublicationError(GrapeRankError):
    """Base class for failed publish attempts."""

    code: str = "publication_error"


class PublicationRejected(PublicationError):
    """An endpoint explicitly rejected an event.

    Attributes:
        endpoint: URL of the rejecting endpoint.
        event_id: ID of the rejected event.
        reason: Rejection message returned by the endpoint.
    """

    code: str = "publication_rejected"

    def __init__(self, endpoint: str, event_id: str, reason: str) -> None:
        self.endpoint = endpoint
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"{endpoint} rejected event {event_id}: {reason}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to a serializable dictionary."""
        return {
            "error": {
                "code": self.code,
                "endpoint": self.endpoint,
                "event_id": self.event_id,
                "message": self.message,
            }
        }


class PublicationConnectionError(PublicationError):
    """A connection to an endpoint could not be opened or broke mid-attempt.

    Attributes:
        endpoint: URL of the unreachable endpoint.
        reason: Underlying error description.
    """

    code: str = "publication_connection_error"

    def __init__(self, endpoint: str, reason: str) -> None:
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Connection to {endpoint} failed: {reason}")
