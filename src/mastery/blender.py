"""
Quick-Check Blender.

Maps informal marks to pseudo-scores and folds them into the aggregator's
accumulators at reduced weight. A standard with only quick checks still
gets a suggestion.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from enum import Enum

from src.mastery.models import QuickCheck, QuickCheckMark, StandardAccumulator

QUICK_CHECK_SCORES: dict[QuickCheckMark, float] = {
    QuickCheckMark.GOT_IT: 95.0,
    QuickCheckMark.ALMOST: 60.0,
    QuickCheckMark.NOT_YET: 20.0,
}

DEFAULT_QUICK_CHECK_WEIGHT = 0.5


class QuickCheckWeighting(str, Enum):
    """
    How much total weight a standard's quick checks receive.

    PER_MARK: every mark adds `weight` (3 marks -> 1.5).
    PER_BLEND: the average is folded in once at `weight` per recomputation.
    """

    PER_MARK = "per_mark"
    PER_BLEND = "per_blend"


def quick_check_averages(marks: Iterable[QuickCheck]) -> dict[str, tuple[float, int]]:
    """Return standard_code -> (mean mapped score, mark count)."""
    scores: dict[str, list[float]] = defaultdict(list)
    for mark in marks:
        scores[mark.standard_code].append(QUICK_CHECK_SCORES[QuickCheckMark(mark.mark)])
    return {code: (sum(vals) / len(vals), len(vals)) for code, vals in scores.items()}


def blend_quick_checks(
    accumulators: Mapping[str, StandardAccumulator],
    marks: Iterable[QuickCheck],
    weight: float = DEFAULT_QUICK_CHECK_WEIGHT,
    weighting: QuickCheckWeighting = QuickCheckWeighting.PER_MARK,
) -> dict[str, StandardAccumulator]:
    """
    Fold quick-check averages into a copy of the aggregator output.

    new_sum = sum + qc_avg * w, new_count = count + w, where
    w = weight * n_marks (PER_MARK) or weight (PER_BLEND).
    The input accumulators are not modified.
    """
    blended = {
        code: StandardAccumulator(acc.sum_pct, acc.count)
        for code, acc in accumulators.items()
    }
    for code, (avg, n_marks) in quick_check_averages(marks).items():
        total_weight = weight * n_marks if weighting is QuickCheckWeighting.PER_MARK else weight
        blended.setdefault(code, StandardAccumulator()).add(avg, total_weight)
    return blended


def blended_percentages(accumulators: Mapping[str, StandardAccumulator]) -> dict[str, float]:
    """Final per-standard percentage (one decimal); standards without samples are absent."""
    result = {}
    for code, acc in accumulators.items():
        pct = acc.percentage
        if pct is not None:
            result[code] = pct
    return result
