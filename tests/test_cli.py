"""End-to-end tests for the command line entry point."""

import json
import os

import pytest

from graperank.cli import build_parser, main

ROOT = "root_pubkey"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("GRAPERANK_"):
            monkeypatch.delenv(key)
    # Keep a stray .env out of the settings.
    monkeypatch.chdir(tmp_path)


def write_jsonl(path, records):
    path.write_text("".join(json.dumps(r) + "\n" for r in records))


def follow_list(pubkey, created_at, *ratees):
    return {
        "id": f"{pubkey}-{created_at}",
        "pubkey": pubkey,
        "kind": 3,
        "created_at": created_at,
        "tags": [["p", r] for r in ratees],
        "content": "",
    }


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_reconcile_defaults_to_all_kinds(self):
        args = build_parser().parse_args(
            ["reconcile", "--primary", "a", "--secondary", "b", "--output", "c"]
        )
        assert args.kind == "all"


class TestPipeline:
    def test_extract_ratings_calculate_events(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GRAPERANK_ROOT_PUBKEY", ROOT)
        monkeypatch.setenv("GRAPERANK_RATING_CURVES__FOLLOW_OBSERVER_CONFIDENCE", "1.0")

        dump = tmp_path / "events.jsonl"
        write_jsonl(
            dump,
            [
                follow_list(ROOT, 100, "X"),
                follow_list("X", 100, "Y", "X"),
                {"pubkey": "Y", "kind": 10000, "created_at": 5, "tags": [["p", "X"]]},
            ],
        )

        status = main(["--log-format", "text", "extract", "--events", str(dump), "--output", "relay"])
        assert status == 0
        assert (tmp_path / "relay" / "follows" / "X.json").is_file()

        assert (
            main(
                [
                    "ratings",
                    "--follows", "relay/follows",
                    "--mutes", "relay/mutes",
                    "--output", "ratings.json",
                ]
            )
            == 0
        )
        ratings = json.loads((tmp_path / "ratings.json").read_text())["verifiedUsers"]
        assert ratings["X"] == {ROOT: [1.0, 1.0], "Y": [0.0, 0.5]}
        assert "X" not in ratings.get("X", {})

        assert main(["calculate", "--ratings", "ratings.json", "--data-dir", "data"]) == 0
        scorecards = json.loads((tmp_path / "data" / "scorecards.json").read_text())
        assert scorecards[ROOT] == [1.0, 1.0, 1.0, 9999.0]
        # Y mutes X, pulling its average slightly below 1.
        assert scorecards["X"][0] == pytest.approx(0.5, abs=0.01)
        assert scorecards["X"][1] < 1.0
        metadata = json.loads((tmp_path / "data" / "scorecards_metadata.json").read_text())
        assert metadata["converged"] is True

        assert (
            main(
                [
                    "events",
                    "--data-dir", "data",
                    "--output", "events.jsonl",
                    "--min-influence", "0.1",
                ]
            )
            == 0
        )
        events = [json.loads(line) for line in (tmp_path / "events.jsonl").read_text().splitlines()]
        subjects = {tag[1] for e in events for tag in e["tags"] if tag[0] == "d"}
        assert "X" in subjects
        assert all(e["pubkey"] == ROOT and e["kind"] == 30382 for e in events)

    def test_reconcile(self, tmp_path):
        (tmp_path / "relay" / "follows").mkdir(parents=True)
        (tmp_path / "relay" / "follows" / "A.json").write_text('{"A": {"B": 100, "C": 100}}')
        (tmp_path / "graph" / "follows").mkdir(parents=True)
        (tmp_path / "graph" / "follows" / "A.json").write_text('{"A": {"B": 100}}')

        status = main(
            [
                "reconcile",
                "--primary", "relay",
                "--secondary", "graph",
                "--output", "deltas",
                "--kind", "follow",
            ]
        )

        assert status == 0
        added = (tmp_path / "deltas" / "follows_to_add.jsonl").read_text().splitlines()
        assert [json.loads(line) for line in added] == [
            {"pk_rater": "A", "pk_ratee": "C", "timestamp": 100}
        ]
        assert (tmp_path / "deltas" / "follows_to_delete.jsonl").read_text() == ""


class TestFailures:
    def test_missing_root_pubkey(self, tmp_path):
        (tmp_path / "follows.csv").write_text("a,b\n")
        status = main(["ratings", "--follows", "follows.csv", "--output", "ratings.json"])
        assert status == 1
        assert not (tmp_path / "ratings.json").exists()

    def test_invalid_setting(self, monkeypatch):
        monkeypatch.setenv("GRAPERANK_RIGOR", "1.5")
        assert main(["calculate", "--ratings", "r.json", "--data-dir", "data"]) == 1

    def test_missing_ratings_file(self, monkeypatch):
        monkeypatch.setenv("GRAPERANK_ROOT_PUBKEY", ROOT)
        assert main(["calculate", "--ratings", "missing.json", "--data-dir", "data"]) == 1

    def test_publish_without_relays(self, tmp_path):
        (tmp_path / "events.jsonl").write_text("")
        assert main(["publish", "--events", "events.jsonl"]) == 1

    def test_events_without_scorecards(self, monkeypatch):
        monkeypatch.setenv("GRAPERANK_ROOT_PUBKEY", ROOT)
        assert main(["events", "--data-dir", "empty", "--output", "events.jsonl"]) == 1
