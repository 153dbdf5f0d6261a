"""Retry policy for publish attempts.

Only explicit rejections and connection failures are retried. A processing
window that passes in silence is a tentative success and never reaches
this policy.
"""

from __future__ import annotations

import asyncio
import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from graperank.exceptions import PublicationConnectionError, PublicationRejected

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY_SECONDS = 60.0


def _log_retry(retry_state: RetryCallState) -> None:
    """Log a failed attempt before backing off."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "Publish attempt %d failed, retrying in %.1fs: %s",
        retry_state.attempt_number,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
        exc,
    )


def publication_retrying(
    max_attempts: int,
    base_delay: float,
    cancel_event: asyncio.Event | None = None,
) -> AsyncRetrying:
    """Build the retry controller for one ``(event, endpoint)`` pair.

    Backoff is ``base_delay * 2 ** (attempt - 1)``. Setting ``cancel_event``
    stops further attempts; the last error is then re-raised.

    Args:
        max_attempts: Attempts including the first.
        base_delay: Delay before the first retry, in seconds.
        cancel_event: Cooperative shutdown signal.
    """
    stop = stop_after_attempt(max_attempts)
    if cancel_event is not None:
        stop = stop | stop_when_event_set(cancel_event)  # type: ignore[arg-type]
    return AsyncRetrying(
        stop=stop,
        wait=wait_exponential(multiplier=base_delay, min=0, max=MAX_RETRY_DELAY_SECONDS),
        retry=retry_if_exception_type((PublicationRejected, PublicationConnectionError)),
        before_sleep=_log_retry,
        reraise=True,
    )
