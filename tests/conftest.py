"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add tests directory to path so helpers here can be imported by test modules
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from graperank.config import GrapeRankParams, RatingCurve, RatingCurves
from graperank.models import AttemptResult, OutboundEvent, PublishOutcome
from graperank.publication.transport import RelayConnection

ROOT = "root_pubkey"


class FakeConnection(RelayConnection):
    """Scripted relay connection.

    ``outcomes`` is consumed one entry per publish; an exception instance is
    raised instead of returned. When the script runs out, the last entry
    repeats.
    """

    def __init__(self, url: str, outcomes: list[AttemptResult | Exception]) -> None:
        super().__init__(url)
        self._outcomes = outcomes
        self.published: list[str] = []
        self._closed = False

    async def publish(self, event: OutboundEvent, window: float) -> AttemptResult:
        self.published.append(event.id)
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class FakeConnector:
    """Connector returning FakeConnections with per-URL scripts."""

    def __init__(self, scripts: dict[str, list[AttemptResult | Exception]]) -> None:
        self._scripts = scripts
        self.connections: list[FakeConnection] = []

    async def __call__(self, url: str, connect_timeout: float) -> RelayConnection:
        connection = FakeConnection(url, self._scripts[url])
        self.connections.append(connection)
        return connection

    def published(self, url: str) -> list[str]:
        return [eid for c in self.connections if c.url == url for eid in c.published]


ACCEPTED = AttemptResult(outcome=PublishOutcome.ACCEPTED)
TIMEOUT = AttemptResult(outcome=PublishOutcome.TIMEOUT)


def rejected(message: str = "blocked") -> AttemptResult:
    return AttemptResult(outcome=PublishOutcome.REJECTED, message=message)


@pytest.fixture
def root() -> str:
    return ROOT


@pytest.fixture
def curves() -> RatingCurves:
    """Rating table with an observer confidence of 1.0 for simple arithmetic."""
    return RatingCurves(
        follow=RatingCurve(score=1.0, confidence=0.03),
        mute=RatingCurve(score=0.0, confidence=0.5),
        report=RatingCurve(score=0.0, confidence=0.5),
        follow_observer_confidence=1.0,
    )


@pytest.fixture
def params() -> GrapeRankParams:
    return GrapeRankParams(root_pubkey=ROOT, rigor=0.5, attenuation_factor=0.85)


def make_event(event_id: str = "ev1", pubkey: str = "author") -> OutboundEvent:
    return OutboundEvent(id=event_id, pubkey=pubkey, created_at=1_700_000_000, kind=30382)
