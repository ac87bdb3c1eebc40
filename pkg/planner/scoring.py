# Planner: ICE scoring engine
#
#   score = (priority * impact * confidence) / effort
#
#   priority    1..5   clamped
#   impact      1..5   clamped
#   confidence  0..1   clamped
#   effort      > 0    floored at MIN_EFFORT
#
# Never raises and never returns NaN: a malformed record still sorts.

import math
from datetime import datetime
from typing import Iterable, List, Optional

DEFAULT_PRIORITY = 3
DEFAULT_IMPACT = 3
DEFAULT_CONFIDENCE = 0.7
DEFAULT_EFFORT = 2.5

MIN_EFFORT = 0.1

SORT_ORDERS = ("score", "due", "priority")


def _clamp(value, lo: float, hi: Optional[float], fallback: float) -> float:
    """Coerce to float within [lo, hi]. None/NaN/garbage become `fallback`."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(value):
        return fallback
    if value < lo:
        return lo
    if hi is not None and value > hi:
        return hi
    return value


def compute_score(priority, impact, confidence, effort) -> float:
    """
    ICE-style priority for a task. Higher is more urgent.

    Monotonically non-decreasing in priority, impact and confidence,
    non-increasing in effort.
    """
    p = _clamp(priority, 1, 5, 1)
    i = _clamp(impact, 1, 5, 1)
    c = _clamp(confidence, 0.0, 1.0, 0.0)
    e = _clamp(effort, MIN_EFFORT, None, DEFAULT_EFFORT)
    if math.isinf(e):
        return 0.0
    return (p * i * c) / e


def _due_sort_value(due) -> Optional[float]:
    if due is None:
        return None
    if isinstance(due, datetime):
        return due.timestamp()
    # plain date
    return datetime(due.year, due.month, due.day).timestamp()


def score_sort_key(task):
    """
    Default ordering: score desc, then earliest due (undated last).

    Creation order is the final tie-break; callers pass tasks in creation
    order and rely on sort stability.
    """
    due = _due_sort_value(task.due)
    return (-task.score, due is None, due or 0.0)


def due_sort_key(task):
    due = _due_sort_value(task.due)
    return (due is None, due or 0.0)


def priority_sort_key(task):
    return -task.priority


def sort_tasks(tasks: Iterable, sort_by: str = "score") -> List:
    """Return tasks ordered for a list/kanban view. Unknown orders fall back to score."""
    key = {
        "score": score_sort_key,
        "due": due_sort_key,
        "priority": priority_sort_key,
    }.get(sort_by, score_sort_key)
    return sorted(tasks, key=key)
