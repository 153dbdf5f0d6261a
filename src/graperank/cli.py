"""Command line entry point.

Usage:
    graperank extract   --events events.jsonl --output snapshots/relay
    graperank reconcile --primary snapshots/relay --secondary snapshots/graph --output deltas
    graperank ratings   --follows follows.csv --mutes mutes.csv --reports reports.csv --output ratings.json
    graperank calculate --ratings ratings.json --data-dir data
    graperank events    --data-dir data --author <pubkey> --output events.jsonl
    graperank publish   --events signed.jsonl [--relay wss://relay.example.com ...]

Settings come from GRAPERANK_* environment variables (see graperank.config)
and are read once here. Fatal errors exit with status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import uuid
from collections.abc import AsyncIterable, Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any

from graperank.config import Settings, load_settings
from graperank.exceptions import GrapeRankError
from graperank.logging import bind_context, configure_logging, get_logger
from graperank.models import DeltaOperation, RelationshipKind
from graperank.propagation import run_propagation_cycle
from graperank.publication import (
    PublicationFanout,
    build_assertions,
    read_events,
    write_events,
)
from graperank.ratings import (
    RatingsAggregator,
    pairs_from_deltas,
    pairs_from_snapshot,
    read_pairs_csv,
)
from graperank.reconciliation import build_snapshots, reconcile_directories
from graperank.reconciliation import read_events as read_relay_events
from graperank.storage import ScorecardFileStore, ShardDirectory, read_ratings, write_ratings

Command = Callable[[argparse.Namespace, Settings, asyncio.Event], Awaitable[dict[str, Any]]]

KIND_CHOICES = [kind.value for kind in RelationshipKind] + ["all"]


def _kinds(choice: str) -> list[RelationshipKind]:
    return list(RelationshipKind) if choice == "all" else [RelationshipKind(choice)]


async def cmd_extract(
    args: argparse.Namespace, settings: Settings, cancel: asyncio.Event
) -> dict[str, Any]:
    result = await asyncio.to_thread(build_snapshots, read_relay_events(args.events), args.output)
    return {
        "events": result.events,
        "skipped_events": result.skipped_events,
        "raters": {kind.value: n for kind, n in result.raters.items()},
        "relationships": {kind.value: n for kind, n in result.relationships.items()},
    }


async def cmd_reconcile(
    args: argparse.Namespace, settings: Settings, cancel: asyncio.Event
) -> dict[str, Any]:
    summary: dict[str, Any] = {}
    for kind in _kinds(args.kind):
        if cancel.is_set():
            summary["cancelled"] = True
            break
        result = await reconcile_directories(
            Path(args.primary) / kind.plural,
            Path(args.secondary) / kind.plural,
            args.output,
            kind,
            concurrency=settings.reconciliation_concurrency,
            queue_size=settings.delta_queue_size,
            cancel_event=cancel,
        )
        summary[kind.plural] = {
            "to_add": result.to_add,
            "to_delete": result.to_delete,
            "malformed_shards": result.malformed_shards,
            "cancelled": result.cancelled,
        }
    return summary


def _pair_source(
    path: str, kind: RelationshipKind
) -> Iterable[tuple[str, str]] | AsyncIterable[tuple[str, str]]:
    """Pick the reader for a pair input: shard directory, delta file or CSV."""
    p = Path(path)
    if p.is_dir():
        return pairs_from_snapshot(ShardDirectory(p, kind))
    if p.suffix == ".jsonl":
        return pairs_from_deltas(p, kind, DeltaOperation.ADD)
    return read_pairs_csv(p)


async def cmd_ratings(
    args: argparse.Namespace, settings: Settings, cancel: asyncio.Event
) -> dict[str, Any]:
    aggregator = RatingsAggregator(
        settings.rating_curves,
        settings.require_root_pubkey(),
        context=settings.context,
    )
    inputs = {
        RelationshipKind.FOLLOW: args.follows,
        RelationshipKind.MUTE: args.mutes,
        RelationshipKind.REPORT: args.reports,
    }
    await aggregator.aggregate(
        {kind: _pair_source(path, kind) for kind, path in inputs.items() if path}
    )
    written = await asyncio.to_thread(
        write_ratings, args.output, settings.context, aggregator.iter_ratees()
    )
    return {
        "ratings": written,
        "ratees": len(aggregator.index),
        "dropped_self_ratings": aggregator.dropped_self_ratings,
        "by_kind": {kind.value: n for kind, n in aggregator.counts.items()},
    }


async def cmd_calculate(
    args: argparse.Namespace, settings: Settings, cancel: asyncio.Event
) -> dict[str, Any]:
    params = settings.graperank_params()
    _, ratings = await asyncio.to_thread(read_ratings, args.ratings, settings.context)
    result = await run_propagation_cycle(
        ratings, ScorecardFileStore(args.data_dir), params, cancel_event=cancel
    )
    run = result.run
    return {
        "iterations": run.iterations,
        "converged": run.converged,
        "max_difference": run.max_difference,
        "total_scorecards": run.total_scorecards,
        "cancelled": run.cancelled,
        "duration_ms": run.duration_ms,
    }


async def cmd_events(
    args: argparse.Namespace, settings: Settings, cancel: asyncio.Event
) -> dict[str, Any]:
    scorecards = await ScorecardFileStore(args.data_dir).load()
    if scorecards is None:
        raise GrapeRankError(f"No scorecards found in {args.data_dir}")
    author = args.author or settings.require_root_pubkey()
    events = build_assertions(scorecards, author, min_influence=args.min_influence)
    written = await asyncio.to_thread(write_events, args.output, events)
    return {"events": written}


async def cmd_publish(
    args: argparse.Namespace, settings: Settings, cancel: asyncio.Event
) -> dict[str, Any]:
    config = settings.publication_config(args.relay or None)
    async with PublicationFanout(config, cancel_event=cancel) as fanout:
        report = await fanout.publish(read_events(args.events))
    return {
        "events": report.events,
        "cancelled": report.cancelled,
        "endpoints": {
            url: {"accepted": s.accepted, "tentative": s.tentative, "failed": s.failed}
            for url, s in report.endpoints.items()
        },
        "permanent_failures": len(report.failures),
    }


COMMANDS: dict[str, Command] = {
    "extract": cmd_extract,
    "reconcile": cmd_reconcile,
    "ratings": cmd_ratings,
    "calculate": cmd_calculate,
    "events": cmd_events,
    "publish": cmd_publish,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="graperank", description="GrapeRank trust pipeline")
    parser.add_argument(
        "--log-level", default=None, help="Log level (default: GRAPERANK_LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--log-format", choices=["json", "text"], default=None, help="Log output format"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("extract", help="Build relay snapshots from a JSON-Lines event dump")
    p.add_argument("--events", required=True, help="JSON-Lines file of kind 3/10000/1984 events")
    p.add_argument("--output", required=True, help="Directory for follows/, mutes/, reports/")

    p = sub.add_parser("reconcile", help="Diff relay snapshots against graph snapshots")
    p.add_argument("--primary", required=True, help="Relay snapshot root (source of truth)")
    p.add_argument("--secondary", required=True, help="Graph snapshot root (mirror)")
    p.add_argument("--output", required=True, help="Directory for *_to_add/_to_delete.jsonl")
    p.add_argument("--kind", choices=KIND_CHOICES, default="all")

    p = sub.add_parser("ratings", help="Aggregate relationships into ratings.json")
    p.add_argument("--follows", help="CSV, delta .jsonl or shard directory of follows")
    p.add_argument("--mutes", help="CSV, delta .jsonl or shard directory of mutes")
    p.add_argument("--reports", help="CSV, delta .jsonl or shard directory of reports")
    p.add_argument("--output", required=True, help="ratings.json to write")

    p = sub.add_parser("calculate", help="Run GrapeRank")
    p.add_argument("--ratings", required=True, help="ratings.json to read")
    p.add_argument("--data-dir", required=True, help="Directory holding scorecards.json")

    p = sub.add_parser("events", help="Build unsigned kind-30382 events from scorecards")
    p.add_argument("--data-dir", required=True, help="Directory holding scorecards.json")
    p.add_argument("--author", default=None, help="Signing pubkey (default: root pubkey)")
    p.add_argument("--output", required=True, help="JSON-Lines file to write")
    p.add_argument("--min-influence", type=float, default=0.0)

    p = sub.add_parser("publish", help="Broadcast signed events to relays")
    p.add_argument("--events", required=True, help="JSON-Lines file of signed events")
    p.add_argument(
        "--relay",
        action="append",
        default=[],
        help="Endpoint URL; repeat for several, primary first (default: GRAPERANK_RELAY_URLS)",
    )
    return parser


def _install_signal_handlers(cancel: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; Ctrl+C then raises KeyboardInterrupt.
            pass


async def _run(command: Command, args: argparse.Namespace, settings: Settings) -> dict[str, Any]:
    cancel = asyncio.Event()
    _install_signal_handlers(cancel)
    return await command(args, settings, cancel)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run one command and log its summary.

    Returns:
        Process exit status.
    """
    args = build_parser().parse_args(argv)

    overrides: dict[str, Any] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if args.log_format:
        overrides["log_format"] = args.log_format

    try:
        settings = load_settings(**overrides)
    except GrapeRankError as e:
        configure_logging()
        get_logger("graperank.cli").error("startup failed", **e.to_dict()["error"])
        return 1

    configure_logging(level=settings.log_level, format=settings.log_format)
    bind_context(run_id=uuid.uuid4().hex[:12], command=args.command)
    logger = get_logger("graperank.cli")

    try:
        summary = asyncio.run(_run(COMMANDS[args.command], args, settings))
    except GrapeRankError as e:
        logger.error("run failed", **e.to_dict()["error"])
        return 1
    except OSError as e:
        logger.error("run failed", code="io_error", message=str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("run interrupted")
        return 130

    logger.info("run finished", **summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
