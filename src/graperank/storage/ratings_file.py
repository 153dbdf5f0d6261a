"""``ratings.json`` codec.

Layout: ``{"<context>": {"<ratee>": {"<rater>": [score, confidence]}}}``.
The writer emits one ratee at a time so the full index never has to be
serialized as a single string.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from graperank.exceptions import SinkIOError
from graperank.models import RatingsIndex, RatingValue

logger = logging.getLogger(__name__)


def write_ratings(
    path: Path | str,
    context: str,
    ratings: Iterable[tuple[str, Mapping[str, RatingValue]]],
) -> int:
    """Stream ratings to ``path`` grouped by ratee.

    Args:
        path: Output file.
        context: Rating context name.
        ratings: ``(ratee, {rater: (score, confidence)})`` pairs.

    Returns:
        Number of individual ratings written.

    Raises:
        SinkIOError: If the file cannot be written.
    """
    path = Path(path)
    written = 0
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("{" + json.dumps(context) + ":{")
            first = True
            for ratee, raters in ratings:
                if not raters:
                    continue
                body = {rater: [score, conf] for rater, (score, conf) in raters.items()}
                f.write(("" if first else ",") + json.dumps(ratee) + ":")
                f.write(json.dumps(body, separators=(",", ":")))
                written += len(body)
                first = False
            f.write("}}\n")
    except OSError as e:
        raise SinkIOError(f"Cannot write ratings to {path}: {e}") from e
    logger.info("Wrote %d ratings to %s", written, path)
    return written


def read_ratings(path: Path | str, context: str | None = None) -> tuple[str, RatingsIndex]:
    """Load a ratings file.

    Self-ratings in a hand-edited file are dropped with a warning.

    Args:
        path: Ratings file.
        context: Context to read; defaults to the only one present.

    Returns:
        ``(context, ratee -> rater -> (score, confidence))``.

    Raises:
        SinkIOError: If the file is missing, unparsable, lacks the context
            or holds a rating that is not a ``[score, confidence]`` pair.
    """
    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SinkIOError(f"Cannot read ratings from {path}: {e}") from e

    if not isinstance(document, dict) or not document:
        raise SinkIOError(f"{path} has no rating contexts")
    if context is None:
        if len(document) != 1:
            raise SinkIOError(f"{path} has several contexts; choose one of {sorted(document)}")
        context = next(iter(document))
    if context not in document:
        raise SinkIOError(f"{path} has no context {context!r}")

    body = document[context]
    if not isinstance(body, dict):
        raise SinkIOError(f"{path} context {context!r} must map ratees to raters")

    index: RatingsIndex = {}
    self_ratings = 0
    for ratee, raters in body.items():
        if not isinstance(raters, dict):
            raise SinkIOError(f"{path} ratee {ratee!r} must map raters to ratings")
        values: dict[str, RatingValue] = {}
        for rater, value in raters.items():
            if rater == ratee:
                self_ratings += 1
                continue
            values[rater] = _rating_value(path, ratee, rater, value)
        if values:
            index[ratee] = values
    if self_ratings:
        logger.warning("Dropped %d self-ratings from %s", self_ratings, path)
    return context, index


def _rating_value(path: Path | str, ratee: str, rater: str, value: object) -> RatingValue:
    if not isinstance(value, list) or len(value) != 2:
        raise SinkIOError(f"{path} rating {rater}->{ratee} must be [score, confidence]")
    try:
        return float(value[0]), float(value[1])
    except (TypeError, ValueError) as e:
        raise SinkIOError(f"{path} rating {rater}->{ratee} is not numeric: {value!r}") from e
