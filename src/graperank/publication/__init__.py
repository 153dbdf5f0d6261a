"""Publication fan-out of GrapeRank results."""

from .events import (
    TRUSTED_ASSERTION_KIND,
    EventSigner,
    build_assertions,
    build_trusted_assertion,
    compute_event_id,
    read_events,
    write_events,
)
from .fanout import PublicationFanout
from .pool import ConnectionPool, Connector
from .retry import publication_retrying
from .transport import HttpConnection, RelayConnection, WebSocketConnection, open_connection

__all__ = [
    "TRUSTED_ASSERTION_KIND",
    "ConnectionPool",
    "Connector",
    "EventSigner",
    "HttpConnection",
    "PublicationFanout",
    "RelayConnection",
    "WebSocketConnection",
    "build_assertions",
    "build_trusted_assertion",
    "compute_event_id",
    "open_connection",
    "publication_retrying",
    "read_events",
    "write_events",
]
