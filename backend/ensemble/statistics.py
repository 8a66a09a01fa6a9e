"""
Accuracy & reliability aggregation helpers.

Pure functions over rows already fetched from the Accuracy Recorder and the
Reliability Aggregator. No database access here.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

import numpy as np


def mean_absolute_error(pairs: Iterable[tuple[float, float]]) -> float | None:
    """
    Mean of |predicted - actual| over (predicted, actual) pairs.

    Returns None for an empty set: callers treat that as "insufficient data",
    never as a perfect score.
    """
    values = np.asarray(list(pairs), dtype=float)
    if values.size == 0:
        return None
    return float(np.mean(np.abs(values[:, 0] - values[:, 1])))


def average_reliability(values: Sequence[float | None]) -> float:
    """
    Mean reliability over the snapshots the aggregator returned.

    A snapshot whose value is null counts as 0. Tenants with no snapshot at
    all are not in ``values`` and therefore do not move the denominator.
    An empty input averages to 0.0.
    """
    if not values:
        return 0.0
    return float(sum(v or 0.0 for v in values) / len(values))


def breach_confusion(rows: Iterable[Any]) -> tuple[int, int, int]:
    """Count (true positive, false positive, false negative) breach predictions."""
    tp = fp = fn = 0
    for row in rows:
        predicted = bool(row.predicted_breach)
        actual = bool(row.actual_breach)
        if predicted and actual:
            tp += 1
        elif predicted and not actual:
            fp += 1
        elif actual and not predicted:
            fn += 1
    return tp, fp, fn


def reliability_score(precision: float, recall: float, mae: float) -> float:
    """Weighted reliability heuristic, clamped to [0, 100]."""
    raw = 0.5 * precision + 0.3 * recall + 0.2 * max(0.0, 100.0 - mae)
    return max(0.0, min(100.0, raw))
