"""Tests for trusted-assertion event building and event files."""

import hashlib
import json

import pytest

from graperank.exceptions import SinkIOError
from graperank.models import OutboundEvent, Scorecard
from graperank.publication.events import (
    TRUSTED_ASSERTION_KIND,
    build_assertions,
    build_trusted_assertion,
    compute_event_id,
    read_events,
    write_events,
)


class StubSigner:
    def sign(self, event: OutboundEvent) -> OutboundEvent:
        return event.model_copy(update={"sig": "signed:" + event.id})


class TestComputeEventId:
    def test_matches_canonical_serialization(self):
        event = OutboundEvent(pubkey="ab", created_at=10, kind=1, tags=[["p", "cd"]], content="hi")
        expected = hashlib.sha256(b'[0,"ab",10,1,[["p","cd"]],"hi"]').hexdigest()
        assert compute_event_id(event) == expected

    def test_ignores_id_and_sig(self):
        event = OutboundEvent(pubkey="ab", created_at=10, kind=1)
        signed = event.model_copy(update={"id": "x", "sig": "y"})
        assert compute_event_id(event) == compute_event_id(signed)


class TestBuildTrustedAssertion:
    def test_tags(self):
        card = Scorecard(pubkey="subject", influence=0.456, average=1.0, confidence=0.456, input=1.0)
        event = build_trusted_assertion(card, "author", created_at=1700, hops=2)

        assert event.kind == TRUSTED_ASSERTION_KIND
        assert event.pubkey == "author"
        assert event.created_at == 1700
        assert event.tag_value("d") == "subject"
        assert event.tag_value("rank") == "46"
        assert event.tag_value("hops") == "2"
        assert event.tag_value("personalizedGrapeRank_influence") == "0.456"
        assert event.tag_value("personalizedGrapeRank_input") == "1.0"
        assert event.id == compute_event_id(event)
        assert event.sig == ""

    def test_hops_omitted_when_unknown(self):
        event = build_trusted_assertion(Scorecard(pubkey="s"), "author", created_at=1)
        assert event.tag_value("hops") is None
        assert event.tag_value("rank") == "0"


class TestBuildAssertions:
    def test_min_influence_and_shared_timestamp(self):
        scorecards = {
            "a": (0.5, 1.0, 0.5, 1.0),
            "b": (0.01, 1.0, 0.01, 0.02),
            "c": (0.2, 1.0, 0.2, 0.3),
        }
        events = list(build_assertions(scorecards, "author", created_at=99, min_influence=0.1))
        assert [e.tag_value("d") for e in events] == ["a", "c"]
        assert {e.created_at for e in events} == {99}

    def test_signer(self):
        events = list(
            build_assertions({"a": (0.5, 1.0, 0.5, 1.0)}, "author", 1, signer=StubSigner())
        )
        assert events[0].sig == "signed:" + events[0].id


class TestEventFiles:
    def test_write_and_read_skip_invalid(self, tmp_path):
        path = tmp_path / "events.jsonl"
        events = list(build_assertions({"a": (0.5, 1.0, 0.5, 1.0)}, "author", 1))
        assert write_events(path, events) == 1

        with open(path, "a", encoding="utf-8") as f:
            f.write("not json\n\n")
            f.write(json.dumps({"pubkey": "x"}) + "\n")

        assert list(read_events(path)) == events

    def test_write_failure(self, tmp_path):
        with pytest.raises(SinkIOError):
            write_events(tmp_path / "missing" / "events.jsonl", [])
