# tests/test_ranking.py
"""
Tests for top-N ranking and classification smoothing.
"""
import math
import random

import numpy as np
import pytest

from tensorbundle.errors import InvalidArgumentError
from tensorbundle.ranking import (
    RankedEntry,
    rank,
    rank_report,
    smooth_classification,
)


def _pairs(ranking):
    return [(e.label, e.score) for e in ranking]


class TestRankScenarios:
    """Concrete rankings with known answers."""

    def test_tie_broken_alphabetically(self):
        scores = {"cat": 0.8, "dog": 0.8, "bird": 0.05}
        assert _pairs(rank(scores, 5, 0.1)) == [("cat", 0.8), ("dog", 0.8)]

    def test_truncated_to_n(self):
        scores = {"a": 0.9, "b": 0.7, "c": 0.5, "d": 0.3, "e": 0.1}
        assert _pairs(rank(scores, 3, 0.2)) == [("a", 0.9), ("b", 0.7), ("c", 0.5)]

    def test_threshold_is_strict(self):
        scores = {"a": 0.5, "b": 0.2}
        assert _pairs(rank(scores, 5, 0.2)) == [("a", 0.5)]

    def test_no_padding_when_few_pass(self):
        assert rank({"a": 0.9}, 10) == [RankedEntry("a", 0.9)]

    def test_empty_scores(self):
        assert rank({}, 3) == []

    def test_default_threshold_drops_zero_and_negative(self):
        scores = {"a": 0.0, "b": -0.5, "c": 0.01}
        assert _pairs(rank(scores, 5)) == [("c", 0.01)]

    def test_numpy_scores_accepted(self):
        scores = {"a": np.float32(0.25), "b": np.array([0.75]), "c": np.float64(0.5)}
        assert [e.label for e in rank(scores, 3)] == ["b", "c", "a"]
        assert all(isinstance(e.score, float) for e in rank(scores, 3))


class TestRankArguments:
    """Invalid ranking parameters."""

    @pytest.mark.parametrize("n", [0, -1, -100])
    def test_non_positive_n(self, n):
        with pytest.raises(InvalidArgumentError):
            rank({"a": 0.9}, n, 0.1)

    @pytest.mark.parametrize("n", [1.5, "3", None, True])
    def test_non_integer_n(self, n):
        with pytest.raises(InvalidArgumentError):
            rank({"a": 0.9}, n)

    @pytest.mark.parametrize("threshold", [math.nan, math.inf, -math.inf, "0.1"])
    def test_bad_threshold(self, threshold):
        with pytest.raises(InvalidArgumentError):
            rank({"a": 0.9}, 1, threshold)

    def test_numpy_integer_n(self):
        assert len(rank({"a": 0.9, "b": 0.8}, np.int64(1))) == 1

    def test_invalid_argument_is_value_error(self):
        with pytest.raises(ValueError):
            rank({}, 0)


class TestMalformedScores:
    """Non-finite scores are excluded and counted."""

    def test_nan_and_inf_excluded(self):
        scores = {"a": 0.9, "b": math.nan, "c": math.inf, "d": 0.4}
        report = rank_report(scores, 5)
        assert _pairs(report.entries) == [("a", 0.9), ("d", 0.4)]
        assert report.excluded == ("b", "c")
        assert report.excluded_count == 2

    def test_non_numeric_and_non_string_labels_excluded(self):
        scores = {"a": 0.9, "b": "high", 3: 0.8, "c": None}
        report = rank_report(scores, 5)
        assert _pairs(report.entries) == [("a", 0.9)]
        assert report.excluded == ("3", "b", "c")

    def test_nan_does_not_disturb_order(self):
        scores = {"x": 0.3, "y": math.nan, "z": 0.6, "w": 0.3}
        assert _pairs(rank(scores, 5)) == [("z", 0.6), ("w", 0.3), ("x", 0.3)]

    def test_exclusions_reported_even_below_threshold(self):
        report = rank_report({"a": -math.inf}, 1, 0.5)
        assert report.entries == ()
        assert report.excluded == ("a",)


class TestRankProperties:
    """Properties that hold for arbitrary score maps."""

    @pytest.fixture
    def score_maps(self):
        rng = random.Random(1234)
        maps = []
        for _ in range(200):
            k = rng.randint(0, 30)
            # coarse values so ties are common
            maps.append(
                {f"label{rng.randint(0, 50)}": rng.choice([0.0, 0.1, 0.25, 0.5, 0.9]) for _ in range(k)}
            )
        return maps

    def test_bounded_and_above_threshold(self, score_maps):
        for scores in score_maps:
            for n in (1, 3, 10):
                for t in (0.0, 0.2):
                    result = rank(scores, n, t)
                    assert len(result) <= n
                    assert all(e.score > t for e in result)

    def test_sorted_with_label_tie_break(self, score_maps):
        for scores in score_maps:
            result = rank(scores, 10, 0.0)
            for a, b in zip(result, result[1:]):
                assert a.score >= b.score
                if a.score == b.score:
                    assert a.label < b.label

    def test_deterministic(self, score_maps):
        for scores in score_maps:
            assert rank(scores, 5, 0.1) == rank(dict(reversed(list(scores.items()))), 5, 0.1)

    def test_is_prefix_of_full_ranking(self, score_maps):
        for scores in score_maps:
            full = rank(scores, max(1, len(scores)), 0.1)
            assert rank(scores, 3, 0.1) == full[:3]


class TestSmoothClassification:
    """Exponential smoothing of successive classification maps."""

    def test_blends_previous_and_current(self):
        smoothed = smooth_classification({"cat": 1.0}, {"cat": 0.0, "dog": 1.0}, decay=0.5, threshold=0.0)
        assert smoothed == pytest.approx({"cat": 0.5, "dog": 0.5})

    def test_drops_values_below_threshold(self):
        smoothed = smooth_classification({"cat": 0.1}, {"dog": 0.9}, decay=0.8, threshold=0.1)
        assert set(smoothed) == {"dog"}
        assert smoothed["dog"] == pytest.approx(0.18)

    def test_first_frame(self):
        assert smooth_classification({}, {"cat": 1.0}, decay=0.0) == {"cat": 1.0}

    def test_invalid_decay(self):
        with pytest.raises(InvalidArgumentError):
            smooth_classification({}, {}, decay=1.5)
