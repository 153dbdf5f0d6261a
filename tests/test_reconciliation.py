"""Tests for the relationship reconciliation engine."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from graperank.exceptions import SinkIOError
from graperank.models import DeltaOperation, RelationshipKind
from graperank.reconciliation.engine import (
    ReconciliationEngine,
    reconcile,
    reconcile_directories,
    shard_difference,
)
from graperank.storage.deltas import MemoryDeltaSink
from graperank.storage.shards import InMemorySnapshot, ShardDirectory

FOLLOW = RelationshipKind.FOLLOW
REPORT = RelationshipKind.REPORT


async def run_engine(primary_shards, secondary_shards, kind=FOLLOW, **kwargs):
    adds, deletes = MemoryDeltaSink(), MemoryDeltaSink()
    engine = ReconciliationEngine(
        InMemorySnapshot(kind, primary_shards),
        InMemorySnapshot(kind, secondary_shards),
        adds,
        deletes,
        **kwargs,
    )
    result = await engine.run()
    return result, adds, deletes


class TestShardDifference:
    def test_flat(self):
        assert shard_difference({"B": 1, "C": 2}, {"B": 1}, FOLLOW) == [("C", 2)]

    def test_missing_right_returns_everything(self):
        assert shard_difference({"B": 1}, None, FOLLOW) == [("B", 1)]

    def test_missing_left_is_empty(self):
        assert shard_difference(None, {"B": 1}, FOLLOW) == []

    def test_reports_compare_type_and_ratee(self):
        left = {"spam": {"B": 1}, "impersonation": {"B": 2}}
        right = {"spam": {"B": 9}}
        assert shard_difference(left, right, REPORT) == [(("impersonation", "B"), 2)]


class TestReconciliationEngine:
    @pytest.mark.asyncio
    async def test_missing_ratee_is_added(self):
        """Source {A:{B,C}} against mirror {A:{B}} adds exactly A->C."""
        result, adds, deletes = await run_engine(
            {"A": {"B": 100, "C": 100}},
            {"A": {"B": 100}},
        )
        assert [(d.rater, d.ratee, d.timestamp) for d in adds.deltas] == [("A", "C", 100)]
        assert deletes.deltas == []
        assert result.to_add == 1
        assert result.to_delete == 0
        assert result.raters_compared == 1

    @pytest.mark.asyncio
    async def test_rater_only_in_source_adds_all(self):
        result, adds, deletes = await run_engine({"A": {"B": 1, "C": 2}}, {})
        assert adds.pairs() == {("A", "B"), ("A", "C")}
        assert deletes.deltas == []
        assert result.raters_only_in_primary == 1

    @pytest.mark.asyncio
    async def test_rater_only_in_mirror_deletes_all(self):
        result, adds, deletes = await run_engine({}, {"Z": {"B": 1, "C": 2}})
        assert adds.deltas == []
        assert deletes.pairs() == {("Z", "B"), ("Z", "C")}
        assert all(d.operation is DeltaOperation.DELETE for d in deletes.deltas)
        assert result.raters_only_in_secondary == 1

    @pytest.mark.asyncio
    async def test_stale_ratee_is_deleted(self):
        _, adds, deletes = await run_engine({"A": {"B": 1}}, {"A": {"B": 1, "X": 5}})
        assert adds.deltas == []
        assert [(d.ratee, d.timestamp) for d in deletes.deltas] == [("X", 5)]

    @pytest.mark.asyncio
    async def test_unchanged_snapshots_are_idempotent(self):
        shards = {"A": {"B": 1, "C": 2}, "D": {"A": 3}}
        for _ in range(2):
            result, adds, deletes = await run_engine(shards, dict(shards))
            assert adds.deltas == []
            assert deletes.deltas == []
            assert result.to_add == result.to_delete == 0

    @pytest.mark.asyncio
    async def test_inverse_symmetry(self):
        source = {"A": {"B": 1, "C": 2}, "D": {"E": 3}}
        mirror = {"A": {"B": 1, "X": 4}, "F": {"G": 5}}

        _, adds, _ = await run_engine(source, mirror)
        _, _, swapped_deletes = await run_engine(mirror, source)

        def key(d):
            return (d.rater, d.ratee, d.timestamp)

        assert sorted(map(key, adds.deltas)) == sorted(map(key, swapped_deletes.deltas))

    @pytest.mark.asyncio
    async def test_reports_diff_two_levels(self):
        source = {"A": {"spam": {"B": 10}, "nudity": {"B": 11}}}
        mirror = {"A": {"spam": {"B": 10, "C": 12}}}
        _, adds, deletes = await run_engine(source, mirror, kind=REPORT)
        assert [(d.report_type, d.ratee) for d in adds.deltas] == [("nudity", "B")]
        assert [(d.report_type, d.ratee) for d in deletes.deltas] == [("spam", "C")]

    @pytest.mark.asyncio
    async def test_legacy_markers_use_run_time(self):
        _, adds, _ = await run_engine({"A": {"B": True}}, {}, clock=lambda: 1234.9)
        assert adds.deltas[0].timestamp == 1234

    @pytest.mark.asyncio
    async def test_malformed_mirror_shard_is_treated_as_empty(self, caplog):
        """One broken shard logs a warning; every other rater is still reconciled."""
        with caplog.at_level(logging.WARNING):
            result, adds, deletes = await run_engine(
                {"A": {"B": 1}, "C": {"D": 2}},
                {"A": "{not json", "C": {}},
            )
        assert adds.pairs() == {("A", "B"), ("C", "D")}
        assert deletes.deltas == []
        assert result.malformed_shards == 1
        assert "Malformed secondary follow shard for A" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_source_shard_is_treated_as_empty(self, caplog):
        with caplog.at_level(logging.WARNING):
            result, adds, deletes = await run_engine(
                {"A": "{not json", "C": {"D": 2}},
                {"A": {"B": 1}},
            )
        assert adds.pairs() == {("C", "D")}
        assert deletes.pairs() == {("A", "B")}
        assert deletes.deltas[0].timestamp == 1
        assert result.malformed_shards == 1
        assert "Malformed primary follow shard for A" in caplog.text

    @pytest.mark.asyncio
    async def test_source_shard_keyed_by_another_rater_deletes_mirror_edges(self):
        result, adds, deletes = await run_engine(
            {"A": '{"WRONG": {}}'},
            {"A": {"B": 1, "C": 2}},
        )
        assert adds.deltas == []
        assert deletes.pairs() == {("A", "B"), ("A", "C")}
        assert result.malformed_shards == 1

    @pytest.mark.asyncio
    async def test_sink_failure_is_fatal(self):
        adds = MemoryDeltaSink(fail_after=2)
        engine = ReconciliationEngine(
            InMemorySnapshot(FOLLOW, {f"r{i}": {f"e{j}": j for j in range(5)} for i in range(20)}),
            InMemorySnapshot(FOLLOW, {}),
            adds,
            MemoryDeltaSink(),
            concurrency=3,
        )
        with pytest.raises(SinkIOError):
            await engine.run()

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        in_flight = 0
        peak = 0

        class SlowSnapshot(InMemorySnapshot):
            async def read_shard(self, rater):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.001)
                in_flight -= 1
                return await super().read_shard(rater)

        primary = SlowSnapshot(FOLLOW, {f"r{i}": {"x": 1} for i in range(30)})
        engine = ReconciliationEngine(
            primary, InMemorySnapshot(FOLLOW), MemoryDeltaSink(), MemoryDeltaSink(), concurrency=4
        )
        result = await engine.run()
        assert result.to_add == 30
        assert peak <= 4

    @pytest.mark.asyncio
    async def test_cancel_stops_at_shard_boundary(self):
        cancel = asyncio.Event()
        cancel.set()
        result, adds, _ = await run_engine({"A": {"B": 1}}, {}, cancel_event=cancel)
        assert result.cancelled
        assert adds.deltas == []

    def test_kinds_must_match(self):
        with pytest.raises(ValueError):
            ReconciliationEngine(
                InMemorySnapshot(FOLLOW),
                InMemorySnapshot(REPORT),
                MemoryDeltaSink(),
                MemoryDeltaSink(),
            )


class TestReconcile:
    @pytest.mark.asyncio
    async def test_closes_sinks(self):
        adds, deletes = MemoryDeltaSink(), MemoryDeltaSink()
        await reconcile(InMemorySnapshot(FOLLOW), InMemorySnapshot(FOLLOW), adds, deletes)
        assert adds.closed and deletes.closed

    @pytest.mark.asyncio
    async def test_directories(self, tmp_path):
        relay = ShardDirectory(tmp_path / "relay", FOLLOW)
        graph = ShardDirectory(tmp_path / "graph", FOLLOW)
        relay.write_shard("A", {"B": 100, "C": 100})
        graph.write_shard("A", {"B": 100})
        graph.write_shard("Z", {"Y": 7})
        (tmp_path / "graph" / "Q.json").write_text("not json")

        result = await reconcile_directories(
            tmp_path / "relay", tmp_path / "graph", tmp_path / "out", FOLLOW
        )

        added = [json.loads(x) for x in (tmp_path / "out" / "follows_to_add.jsonl").read_text().splitlines()]
        deleted = [
            json.loads(x)
            for x in (tmp_path / "out" / "follows_to_delete.jsonl").read_text().splitlines()
        ]
        assert added == [{"pk_rater": "A", "pk_ratee": "C", "timestamp": 100}]
        assert deleted == [{"pk_rater": "Z", "pk_ratee": "Y", "timestamp": 7}]
        assert result.malformed_shards == 1
