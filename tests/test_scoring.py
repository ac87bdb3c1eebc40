"""
Tests for the ICE scoring engine and task orderings.
"""
import math
from datetime import datetime

import pytest

from pkg.planner.schema import Task
from pkg.planner.scoring import (
    compute_score,
    sort_tasks,
    DEFAULT_EFFORT,
    MIN_EFFORT,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# compute_score
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_reference_score():
    """(3 * 4 * 0.8) / 2 == 4.8"""
    assert compute_score(3, 4, 0.8, 2) == pytest.approx(4.8)


def test_score_is_pure():
    """Identical inputs give identical results"""
    assert compute_score(5, 2, 0.35, 1.7) == compute_score(5, 2, 0.35, 1.7)


@pytest.mark.parametrize("field", ["priority", "impact", "confidence"])
def test_monotonic_in_numerator_fields(field):
    """Raising priority, impact or confidence never lowers the score"""
    base = {"priority": 3, "impact": 3, "confidence": 0.5, "effort": 2.0}
    steps = {
        "priority": [0, 1, 2, 3, 4, 5, 6],
        "impact": [0, 1, 2, 3, 4, 5, 6],
        "confidence": [-0.5, 0.0, 0.25, 0.5, 1.0, 1.5],
    }[field]
    scores = [compute_score(**{**base, field: v}) for v in steps]
    assert scores == sorted(scores)


def test_monotonic_decreasing_in_effort():
    """More effort never raises the score"""
    scores = [compute_score(3, 3, 0.7, e) for e in (0.1, 0.5, 1, 2.5, 10, 100)]
    assert scores == sorted(scores, reverse=True)


def test_zero_confidence_gives_zero():
    assert compute_score(5, 5, 0.0, 1) == 0.0


@pytest.mark.parametrize("effort", [0, -3, MIN_EFFORT / 2])
def test_effort_floor(effort):
    """Non-positive or tiny effort is clamped to MIN_EFFORT instead of dividing by zero"""
    assert compute_score(2, 2, 1.0, effort) == pytest.approx(4 / MIN_EFFORT)


def test_out_of_range_inputs_clamped():
    """Values outside their ranges snap to the nearest bound"""
    assert compute_score(9, 9, 2.0, 1) == compute_score(5, 5, 1.0, 1)
    assert compute_score(-1, 0, -0.5, 1) == 0.0


@pytest.mark.parametrize("args", [
    (None, None, None, None),
    ("x", "y", "z", "w"),
    (float("nan"), 3, 0.5, 1),
    (3, 3, float("nan"), float("nan")),
    (3, 3, 0.5, float("inf")),
])
def test_never_negative_or_nan(args):
    score = compute_score(*args)
    assert not math.isnan(score)
    assert score >= 0


def test_missing_effort_uses_default():
    assert compute_score(5, 5, 1.0, None) == pytest.approx(25 / DEFAULT_EFFORT)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Orderings
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _task(title, priority=3, impact=3, confidence=0.7, effort=2.5, due=None):
    return Task(title=title, priority=priority, impact=impact,
                confidence=confidence, effort=effort, due=due)


def test_sort_by_score_desc():
    low = _task("low", priority=1)
    high = _task("high", priority=5)
    mid = _task("mid", priority=3)
    assert [t.title for t in sort_tasks([low, high, mid])] == ["high", "mid", "low"]


def test_score_ties_broken_by_due_then_creation_order():
    """Equal scores: earliest due first, undated last, then input order"""
    a = _task("a")
    b = _task("b", due=datetime(2024, 1, 5))
    c = _task("c", due=datetime(2024, 1, 3))
    d = _task("d")
    assert [t.title for t in sort_tasks([a, b, c, d], "score")] == ["c", "b", "a", "d"]


def test_sort_by_due():
    a = _task("a", due=datetime(2024, 3, 1))
    b = _task("b")
    c = _task("c", due=datetime(2024, 1, 1))
    assert [t.title for t in sort_tasks([a, b, c], "due")] == ["c", "a", "b"]


def test_sort_by_priority_is_stable():
    a = _task("a", priority=2)
    b = _task("b", priority=4)
    c = _task("c", priority=2)
    assert [t.title for t in sort_tasks([a, b, c], "priority")] == ["b", "a", "c"]


def test_unknown_sort_falls_back_to_score():
    low = _task("low", priority=1)
    high = _task("high", priority=5)
    assert sort_tasks([low, high], "bogus") == sort_tasks([low, high], "score")
