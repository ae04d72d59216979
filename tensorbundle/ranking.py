"""
Reduction of classification maps to ranked, thresholded predictions.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

import numpy as np

from tensorbundle.errors import InvalidArgumentError
from tensorbundle.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RankedEntry:
    label: str
    score: float


Ranking = List[RankedEntry]


@dataclass(frozen=True)
class RankingReport:
    """A ranking plus the labels that were dropped as malformed."""

    entries: Tuple[RankedEntry, ...]
    excluded: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def excluded_count(self) -> int:
        return len(self.excluded)


def _as_score(value):
    """Coerce ``value`` to a finite float, or return None."""
    if isinstance(value, np.ndarray):
        if value.size != 1:
            return None
        value = value.reshape(-1)[0]
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, numbers.Real):
        return None
    score = float(value)
    return score if math.isfinite(score) else None


def check_rank_arguments(n, threshold) -> float:
    """Validate ``rank`` parameters and return the threshold as a float."""
    if isinstance(n, bool) or not isinstance(n, numbers.Integral) or n <= 0:
        raise InvalidArgumentError(f"n must be a positive integer, got {n!r}")
    if isinstance(threshold, bool) or not isinstance(threshold, numbers.Real):
        raise InvalidArgumentError(f"threshold must be a number, got {threshold!r}")
    threshold = float(threshold)
    if not math.isfinite(threshold):
        raise InvalidArgumentError(f"threshold must be finite, got {threshold!r}")
    return threshold


def rank_report(
    scores: Mapping[str, float], n: int, threshold: float = 0.0
) -> RankingReport:
    """
    Rank ``scores`` and report which entries were excluded as malformed.

    Entries whose score is not a finite number, or whose label is not a
    string, are excluded before ranking and listed in ``excluded`` (as
    ``str(label)``, sorted).

    Raises:
        InvalidArgumentError: If ``n`` is not a positive integer or
            ``threshold`` is not finite.
    """
    threshold = check_rank_arguments(n, threshold)

    kept: List[RankedEntry] = []
    excluded: List[str] = []
    for label, value in scores.items():
        score = _as_score(value)
        if not isinstance(label, str) or score is None:
            excluded.append(str(label))
            continue
        if score > threshold:
            kept.append(RankedEntry(label, score))

    kept.sort(key=lambda e: (-e.score, e.label))
    entries = tuple(kept[: int(n)])

    if excluded:
        logger.warning("Excluded %d malformed score(s): %s", len(excluded), sorted(excluded))
    logger.debug(
        "Ranked: candidates=%d ranking_size=%d n=%d threshold=%s",
        len(scores),
        len(entries),
        n,
        threshold,
    )
    return RankingReport(entries=entries, excluded=tuple(sorted(excluded)))


def rank(scores: Mapping[str, float], n: int, threshold: float = 0.0) -> Ranking:
    """
    Top ``n`` labels scoring strictly above ``threshold``.

    Sorted by score descending, ties broken by ascending label. Returns fewer
    than ``n`` entries when fewer pass the threshold.

    Example:
        >>> rank({"cat": 0.8, "dog": 0.8, "bird": 0.05}, 5, 0.1)
        [RankedEntry(label='cat', score=0.8), RankedEntry(label='dog', score=0.8)]
    """
    return list(rank_report(scores, n, threshold).entries)


def smooth_classification(
    previous: Mapping[str, float],
    current: Mapping[str, float],
    decay: float = 0.8,
    threshold: float = 0.1,
) -> Dict[str, float]:
    """
    Exponentially smooth successive classification maps.

    Each label's smoothed score is ``decay * previous + (1 - decay) * current``
    (a label missing from either map counts as 0). Labels whose smoothed
    score falls below ``threshold`` are dropped.
    """
    if not 0.0 <= decay <= 1.0:
        raise InvalidArgumentError(f"decay must be within [0, 1], got {decay!r}")

    smoothed: Dict[str, float] = {}
    for label in set(previous) | set(current):
        value = decay * float(previous.get(label, 0.0)) + (1.0 - decay) * float(
            current.get(label, 0.0)
        )
        if value >= threshold:
            smoothed[label] = value
    return smoothed
