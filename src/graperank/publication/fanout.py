"""Broadcast finalized events to every configured endpoint.

Each ``(event, endpoint)`` pair is delivered independently:
- Every endpoint has its own connection pool and cap
- A rejection or broken connection is retried with exponential backoff
- Exhausted retries are recorded as a permanent failure for that pair only
- A silent processing window counts as a tentative success and is not retried
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable

from graperank.config import PublicationConfig
from graperank.exceptions import PublicationError, PublicationRejected
from graperank.models import (
    AttemptResult,
    DeliveryRecord,
    EndpointStats,
    OutboundEvent,
    PublicationReport,
    PublishOutcome,
)
from graperank.publication.pool import ConnectionPool, Connector
from graperank.publication.retry import publication_retrying
from graperank.publication.transport import open_connection

logger = logging.getLogger(__name__)


class PublicationFanout:
    """Delivers events to all endpoints with bounded concurrency.

    Example:
        ```python
        async with PublicationFanout(config) as fanout:
            report = await fanout.publish(events)
        for url, stats in report.endpoints.items():
            print(url, stats.succeeded, stats.failed)
        ```
    """

    def __init__(
        self,
        config: PublicationConfig,
        connector: Connector = open_connection,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Initialize the fan-out.

        Args:
            config: Endpoints, windows and retry settings.
            connector: Opens a connection for a URL; replaced in tests.
            cancel_event: Checked between events and between attempts.
        """
        self._config = config
        self._cancel_event = cancel_event or asyncio.Event()
        self._pools = [
            ConnectionPool(endpoint, connector, config.connect_timeout_seconds)
            for endpoint in config.endpoints
        ]

    @property
    def pools(self) -> list[ConnectionPool]:
        return self._pools

    async def __aenter__(self) -> PublicationFanout:
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.close()

    async def close(self) -> None:
        for pool in self._pools:
            await pool.close_all()

    async def publish(self, events: Iterable[OutboundEvent]) -> PublicationReport:
        """Deliver every event to every endpoint.

        At most ``max_pending_events`` events are in flight at once. Setting
        the cancel event stops new events from starting; in-flight ones
        finish.

        Returns:
            Per-endpoint counts and the list of permanent failures.
        """
        started = time.monotonic()
        report = PublicationReport(
            endpoints={pool.url: EndpointStats() for pool in self._pools},
        )
        semaphore = asyncio.Semaphore(self._config.max_pending_events)
        tasks: set[asyncio.Task[None]] = set()

        async def _deliver(event: OutboundEvent) -> None:
            try:
                records = await self.publish_event(event)
            finally:
                semaphore.release()
            for record in records:
                report.record(record)

        for event in events:
            if self._cancel_event.is_set():
                report.cancelled = True
                logger.warning("Publication cancelled after %d events", report.events)
                break
            await semaphore.acquire()
            report.events += 1
            task = asyncio.create_task(_deliver(event))
            tasks.add(task)
            task.add_done_callback(tasks.discard)

        if tasks:
            await asyncio.gather(*tasks)

        report.duration_ms = int((time.monotonic() - started) * 1000)
        for url, stats in report.endpoints.items():
            logger.info(
                "Published to %s: %d accepted, %d tentative, %d failed",
                url,
                stats.accepted,
                stats.tentative,
                stats.failed,
            )
        return report

    async def publish_event(self, event: OutboundEvent) -> list[DeliveryRecord]:
        """Deliver one event to all endpoints concurrently."""
        return list(await asyncio.gather(*(self._deliver(event, pool) for pool in self._pools)))

    async def _deliver(self, event: OutboundEvent, pool: ConnectionPool) -> DeliveryRecord:
        attempts = 0
        try:
            async for attempt in publication_retrying(
                pool.endpoint.max_attempts,
                self._config.retry_base_delay_seconds,
                self._cancel_event,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await self._attempt(event, pool)
        except PublicationError as e:
            logger.warning(
                "Giving up on event %s at %s after %d attempts: %s",
                event.id,
                pool.url,
                attempts,
                e.message,
            )
            return DeliveryRecord(
                event_id=event.id,
                endpoint=pool.url,
                outcome=PublishOutcome.REJECTED,
                attempts=attempts,
                error=e.message,
            )

        if result.outcome is PublishOutcome.TIMEOUT:
            logger.debug("No verdict for event %s from %s; assuming success", event.id, pool.url)
        return DeliveryRecord(
            event_id=event.id,
            endpoint=pool.url,
            outcome=result.outcome,
            attempts=attempts,
        )

    async def _attempt(self, event: OutboundEvent, pool: ConnectionPool) -> AttemptResult:
        async with pool.acquire() as connection:
            result = await connection.publish(event, self._config.processing_window_seconds)
        if result.outcome is PublishOutcome.REJECTED:
            raise PublicationRejected(pool.url, event.id, result.message)
        return result

