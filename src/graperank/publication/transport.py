"""Connections to publication endpoints.

Relays speak the WebSocket relay protocol: the client sends
``["EVENT", event]`` and the relay answers ``["OK", id, accepted, message]``.
Many relays never answer, so silence for the whole processing window is
reported as TIMEOUT and treated as a tentative success by the fan-out.
Plain HTTP endpoints receive the event JSON in a POST body.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlparse

import httpx
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from graperank.exceptions import PublicationConnectionError
from graperank.models import AttemptResult, OutboundEvent, PublishOutcome

logger = logging.getLogger(__name__)


class RelayConnection(ABC):
    """One open connection to a publication endpoint.

    Example:
        ```python
        connection = await open_connection("wss://relay.example.com", connect_timeout=10.0)
        result = await connection.publish(event, window=2.0)
        await connection.close()
        ```
    """

    def __init__(self, url: str) -> None:
        self.url = url

    @abstractmethod
    async def publish(self, event: OutboundEvent, window: float) -> AttemptResult:
        """Send one event and wait up to ``window`` seconds for a verdict.

        Args:
            event: Finalized event.
            window: Processing window in seconds.

        Returns:
            ACCEPTED, REJECTED (with the endpoint's message) or TIMEOUT.

        Raises:
            PublicationConnectionError: If the connection broke.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether the connection can no longer be reused."""
        ...


class WebSocketConnection(RelayConnection):
    """Relay connection over WebSocket (websockets library)."""

    def __init__(self, url: str, websocket: ClientConnection) -> None:
        super().__init__(url)
        self._websocket = websocket
        self._broken = False

    @classmethod
    async def open(cls, url: str, connect_timeout: float) -> WebSocketConnection:
        """Open a WebSocket to ``url``.

        Raises:
            PublicationConnectionError: If the handshake fails or times out.
        """
        try:
            websocket = await connect(url, open_timeout=connect_timeout)
        except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as e:
            raise PublicationConnectionError(url, str(e) or type(e).__name__) from e
        logger.debug("Connected to %s", url)
        return cls(url, websocket)

    async def publish(self, event: OutboundEvent, window: float) -> AttemptResult:
        try:
            await self._websocket.send(json.dumps(["EVENT", event.to_wire()]))
            async with asyncio.timeout(window):
                while True:
                    verdict = self._handle(await self._websocket.recv(), event.id)
                    if verdict is not None:
                        return verdict
        except TimeoutError:
            return AttemptResult(outcome=PublishOutcome.TIMEOUT)
        except (ConnectionClosed, OSError) as e:
            self._broken = True
            raise PublicationConnectionError(self.url, str(e) or type(e).__name__) from e

    def _handle(self, raw: str | bytes, event_id: str) -> AttemptResult | None:
        try:
            message: Any = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("Ignoring unparsable message from %s", self.url)
            return None
        if not isinstance(message, list) or not message:
            return None

        if message[0] == "NOTICE":
            logger.info("Notice from %s: %s", self.url, message[1] if len(message) > 1 else "")
            return None
        if message[0] != "OK" or len(message) < 3 or message[1] != event_id:
            return None

        text = str(message[3]) if len(message) > 3 else ""
        if message[2] is True:
            return AttemptResult(outcome=PublishOutcome.ACCEPTED, message=text)
        return AttemptResult(outcome=PublishOutcome.REJECTED, message=text or "rejected")

    async def close(self) -> None:
        self._broken = True
        await self._websocket.close()

    @property
    def closed(self) -> bool:
        return self._broken


class HttpConnection(RelayConnection):
    """Endpoint that accepts events as JSON POST bodies (httpx).

    Only a read timeout, where the body was sent but no response came back
    within the processing window, counts as a tentative success. Connect,
    write and pool timeouts mean the event never arrived and surface as
    ``PublicationConnectionError``.
    """

    def __init__(self, url: str, client: httpx.AsyncClient, connect_timeout: float = 10.0) -> None:
        super().__init__(url)
        self._client = client
        self._connect_timeout = connect_timeout

    @classmethod
    async def open(cls, url: str, connect_timeout: float) -> HttpConnection:
        timeout = httpx.Timeout(connect_timeout, connect=connect_timeout)
        return cls(url, httpx.AsyncClient(timeout=timeout), connect_timeout)

    async def publish(self, event: OutboundEvent, window: float) -> AttemptResult:
        try:
            response = await self._client.post(
                self.url,
                json=event.to_wire(),
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(self._connect_timeout, read=window),
            )
        except httpx.ReadTimeout:
            return AttemptResult(outcome=PublishOutcome.TIMEOUT)
        except httpx.TransportError as e:
            raise PublicationConnectionError(self.url, str(e) or type(e).__name__) from e

        if response.is_success:
            return AttemptResult(outcome=PublishOutcome.ACCEPTED)
        return AttemptResult(
            outcome=PublishOutcome.REJECTED,
            message=f"HTTP {response.status_code}: {response.text[:200]}",
        )

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def closed(self) -> bool:
        return self._client.is_closed


async def open_connection(url: str, connect_timeout: float) -> RelayConnection:
    """Open a connection, choosing the transport by URL scheme.

    Raises:
        PublicationConnectionError: If the scheme is unsupported or the
            connection cannot be opened.
    """
    scheme = urlparse(url).scheme.lower()
    if scheme in ("ws", "wss"):
        return await WebSocketConnection.open(url, connect_timeout)
    if scheme in ("http", "https"):
        return await HttpConnection.open(url, connect_timeout)
    raise PublicationConnectionError(url, f"unsupported scheme {scheme!r}")
