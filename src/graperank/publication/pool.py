"""Per-endpoint connection pool."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from graperank.config import EndpointConfig
from graperank.publication.transport import RelayConnection, open_connection

logger = logging.getLogger(__name__)

Connector = Callable[[str, float], Awaitable[RelayConnection]]


class ConnectionPool:
    """Caps concurrent connections to one endpoint.

    A caller acquires a connection (reusing an idle one, or opening a new one
    while under the cap), publishes, and releases it. Callers over the cap
    wait in FIFO order. A connection that raised is closed, not reused.

    Example:
        ```python
        pool = ConnectionPool(EndpointConfig(url="wss://relay.example.com", max_connections=5))
        async with pool.acquire() as connection:
            result = await connection.publish(event, window=2.0)
        await pool.close_all()
        ```
    """

    def __init__(
        self,
        endpoint: EndpointConfig,
        connector: Connector = open_connection,
        connect_timeout: float = 10.0,
    ) -> None:
        self.endpoint = endpoint
        self._connector = connector
        self._connect_timeout = connect_timeout
        self._semaphore = asyncio.Semaphore(endpoint.max_connections)
        self._idle: list[RelayConnection] = []
        self._active = 0
        self.opened = 0
        self.peak_active = 0

    @property
    def url(self) -> str:
        return self.endpoint.url

    @property
    def active(self) -> int:
        return self._active

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[RelayConnection]:
        """Borrow a connection for one publish attempt.

        Raises:
            PublicationConnectionError: If a new connection cannot be opened.
        """
        async with self._semaphore:
            connection = self._take_idle()
            if connection is None:
                connection = await self._connector(self.url, self._connect_timeout)
                self.opened += 1
            self._active += 1
            self.peak_active = max(self.peak_active, self._active)
            try:
                yield connection
            except BaseException:
                await self._discard(connection)
                raise
            else:
                if connection.closed:
                    await self._discard(connection)
                else:
                    self._idle.append(connection)
            finally:
                self._active -= 1

    def _take_idle(self) -> RelayConnection | None:
        while self._idle:
            connection = self._idle.pop()
            if not connection.closed:
                return connection
        return None

    async def _discard(self, connection: RelayConnection) -> None:
        try:
            await connection.close()
        except Exception as e:  # noqa: BLE001
            logger.debug("Error closing connection to %s: %s", self.url, e)

    async def close_all(self) -> None:
        """Close every idle connection."""
        idle, self._idle = self._idle, []
        for connection in idle:
            await self._discard(connection)
