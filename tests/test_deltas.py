"""Tests for JSON-Lines delta sinks."""

import asyncio
import json

import pytest

from graperank.exceptions import SinkIOError
from graperank.models import DeltaOperation, RelationshipDelta, RelationshipKind
from graperank.storage.deltas import (
    JsonLinesDeltaWriter,
    MemoryDeltaSink,
    delta_file_name,
    read_deltas,
)


class BrokenFile:
    def write(self, text):
        raise OSError("disk full")

    def flush(self):
        pass

    def close(self):
        pass


def delta(ratee: str, op: DeltaOperation = DeltaOperation.ADD) -> RelationshipDelta:
    return RelationshipDelta(
        rater="A", ratee=ratee, kind=RelationshipKind.FOLLOW, timestamp=100, operation=op
    )


class TestDeltaFileName:
    def test_names(self):
        assert delta_file_name(RelationshipKind.FOLLOW, DeltaOperation.ADD) == "follows_to_add.jsonl"
        assert (
            delta_file_name(RelationshipKind.REPORT, DeltaOperation.DELETE)
            == "reports_to_delete.jsonl"
        )


class TestJsonLinesDeltaWriter:
    @pytest.mark.asyncio
    async def test_writes_one_record_per_line(self, tmp_path):
        path = tmp_path / "out" / "follows_to_add.jsonl"
        async with JsonLinesDeltaWriter(path) as sink:
            await sink.write(delta("B"))
            await sink.write(delta("C"))

        lines = path.read_text().splitlines()
        assert [json.loads(line) for line in lines] == [
            {"pk_rater": "A", "pk_ratee": "B", "timestamp": 100},
            {"pk_rater": "A", "pk_ratee": "C", "timestamp": 100},
        ]
        assert sink.count == 2
        assert sink.written == 2

    @pytest.mark.asyncio
    async def test_include_operation(self, tmp_path):
        path = tmp_path / "deltas.jsonl"
        async with JsonLinesDeltaWriter(path, include_operation=True) as sink:
            await sink.write(delta("B", DeltaOperation.DELETE))
        assert json.loads(path.read_text())["operation"] == "delete"

    @pytest.mark.asyncio
    async def test_bounded_queue_applies_backpressure(self, tmp_path):
        """A producer must wait once the queue is full instead of buffering."""
        sink = JsonLinesDeltaWriter(tmp_path / "d.jsonl", queue_size=2)
        # A writer task that never drains the queue.
        sink._task = asyncio.create_task(asyncio.sleep(3600))

        await sink.write(delta("B"))
        await sink.write(delta("C"))
        blocked = asyncio.create_task(sink.write(delta("D")))
        await asyncio.sleep(0.01)

        assert not blocked.done()
        assert sink.count == 2

        blocked.cancel()
        sink._task.cancel()
        await asyncio.gather(blocked, sink._task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_open_failure_is_sink_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(SinkIOError):
            await JsonLinesDeltaWriter(blocker / "sub" / "d.jsonl").start()

    @pytest.mark.asyncio
    async def test_write_before_start(self, tmp_path):
        with pytest.raises(SinkIOError):
            await JsonLinesDeltaWriter(tmp_path / "d.jsonl").write(delta("B"))

    @pytest.mark.asyncio
    async def test_write_error_surfaces_on_close(self, tmp_path):
        sink = JsonLinesDeltaWriter(tmp_path / "d.jsonl")
        await sink.start()

        sink._file.close()
        sink._file = BrokenFile()
        await sink.write(delta("B"))
        with pytest.raises(SinkIOError, match="disk full"):
            await sink.close()
        with pytest.raises(SinkIOError):
            await sink.write(delta("C"))


class TestMemoryDeltaSink:
    @pytest.mark.asyncio
    async def test_collects(self):
        sink = MemoryDeltaSink()
        await sink.write(delta("B"))
        await sink.close()
        assert sink.pairs() == {("A", "B")}
        assert sink.closed

    @pytest.mark.asyncio
    async def test_fail_after(self):
        sink = MemoryDeltaSink(fail_after=1)
        await sink.write(delta("B"))
        with pytest.raises(SinkIOError):
            await sink.write(delta("C"))


class TestReadDeltas:
    def test_reads_and_skips_invalid_lines(self, tmp_path):
        path = tmp_path / "follows_to_add.jsonl"
        path.write_text(
            '{"pk_rater": "A", "pk_ratee": "B", "timestamp": 1}\n'
            "\n"
            "not json\n"
            '{"pk_rater": "A"}\n'
            "5\n"
            '{"pk_rater": "A", "pk_ratee": "D", "timestamp": null}\n'
            '{"pk_rater": "A", "pk_ratee": "E", "timestamp": Infinity}\n'
            '{"pk_rater": "A", "pk_ratee": "C", "timestamp": 2, "operation": "delete"}\n'
        )
        deltas = list(read_deltas(path, RelationshipKind.FOLLOW, DeltaOperation.ADD))
        assert [(d.ratee, d.operation) for d in deltas] == [
            ("B", DeltaOperation.ADD),
            ("C", DeltaOperation.DELETE),
        ]
