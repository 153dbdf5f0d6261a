"""Scorecard persistence."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from graperank.exceptions import SinkIOError
from graperank.models import CalculationRun
from graperank.models.scorecard import ScorecardValues
from graperank.storage.base import ScorecardSink

logger = logging.getLogger(__name__)

SCORECARDS_FILE = "scorecards.json"
INITIAL_SCORECARDS_FILE = "scorecards_init.json"
METADATA_FILE = "scorecards_metadata.json"


def decode_scorecards(document: Any, source: str) -> dict[str, ScorecardValues]:
    """Validate a ``{pubkey: [influence, average, confidence, input]}`` document.

    Raises:
        SinkIOError: If the document has the wrong shape.
    """
    if not isinstance(document, dict):
        raise SinkIOError(f"{source} must contain a JSON object")
    scorecards: dict[str, ScorecardValues] = {}
    for pubkey, values in document.items():
        if not isinstance(values, list) or len(values) != 4:
            raise SinkIOError(f"{source}: scorecard for {pubkey} must be a 4-element list")
        try:
            influence, average, confidence, input_ = (float(v) for v in values)
        except (TypeError, ValueError) as e:
            raise SinkIOError(f"{source}: scorecard for {pubkey} is not numeric") from e
        scorecards[pubkey] = (influence, average, confidence, input_)
    return scorecards


def _atomic_write_json(path: Path, document: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(document, f, separators=(",", ":"))
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class ScorecardFileStore(ScorecardSink):
    """Scorecards kept as JSON files in one directory.

    ``scorecards.json`` holds the latest map and is replaced atomically, so
    a crash never leaves a half-written map behind. On the first run the
    store falls back to ``scorecards_init.json`` if one was provided.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    @property
    def scorecards_path(self) -> Path:
        return self.directory / SCORECARDS_FILE

    @property
    def initial_path(self) -> Path:
        return self.directory / INITIAL_SCORECARDS_FILE

    @property
    def metadata_path(self) -> Path:
        return self.directory / METADATA_FILE

    async def load(self) -> dict[str, ScorecardValues] | None:
        for path in (self.scorecards_path, self.initial_path):
            if not path.is_file():
                continue
            try:
                text = await asyncio.to_thread(path.read_text, encoding="utf-8")
                document = json.loads(text)
            except (OSError, json.JSONDecodeError) as e:
                raise SinkIOError(f"Cannot read scorecards from {path}: {e}") from e
            scorecards = decode_scorecards(document, str(path))
            logger.info("Loaded %d scorecards from %s", len(scorecards), path)
            return scorecards
        return None

    async def save(self, scorecards: Mapping[str, ScorecardValues]) -> None:
        document = {pubkey: list(values) for pubkey, values in scorecards.items()}
        try:
            await asyncio.to_thread(_atomic_write_json, self.scorecards_path, document)
        except OSError as e:
            raise SinkIOError(f"Cannot write scorecards to {self.scorecards_path}: {e}") from e
        logger.info("Saved %d scorecards to %s", len(document), self.scorecards_path)

    async def save_run(self, run: CalculationRun) -> None:
        try:
            await asyncio.to_thread(_atomic_write_json, self.metadata_path, run.to_metadata())
        except OSError as e:
            raise SinkIOError(f"Cannot write run metadata to {self.metadata_path}: {e}") from e

    async def load_run(self) -> CalculationRun | None:
        """Read the metadata of the last run, if any."""
        if not self.metadata_path.is_file():
            return None
        try:
            text = await asyncio.to_thread(self.metadata_path.read_text, encoding="utf-8")
            return CalculationRun.from_metadata(json.loads(text))
        except (OSError, ValueError, KeyError) as e:
            raise SinkIOError(f"Cannot read run metadata from {self.metadata_path}: {e}") from e


class InMemoryScorecardStore(ScorecardSink):
    """Dict-backed store for tests."""

    def __init__(self, scorecards: Mapping[str, ScorecardValues] | None = None) -> None:
        self.scorecards: dict[str, ScorecardValues] | None = (
            dict(scorecards) if scorecards is not None else None
        )
        self.runs: list[CalculationRun] = []

    async def load(self) -> dict[str, ScorecardValues] | None:
        return dict(self.scorecards) if self.scorecards is not None else None

    async def save(self, scorecards: Mapping[str, ScorecardValues]) -> None:
        self.scorecards = dict(scorecards)

    async def save_run(self, run: CalculationRun) -> None:
        self.runs.append(run)
