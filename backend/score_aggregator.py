"""
Summary statistics over a batch of validation scores
"""
import math
from typing import Iterable, Optional

from models import AggregateScore, ValidationResult
from score_parser import extract_score

PASS_THRESHOLD = 7.0
TREND_DEAD_BAND = 0.5


def round_half_up(value: float) -> float:
    """One decimal place, halves rounded up"""
    return math.floor(value * 10 + 0.5) / 10


def aggregate_scores(scores: Iterable[Optional[float]]) -> Optional[AggregateScore]:
    """
    Aggregate per-test scores into an AggregateScore.

    Only positive scores count: None and the 0 "no score" sentinel are
    dropped. Returns None when nothing is left.

    Consistency is 10 - 2 * stdev, floored at 0, so a standard deviation of 5
    collapses it entirely. It is a bounded display heuristic, not a
    statistical test.
    """
    valid = [s for s in scores if s is not None and s > 0]
    if not valid:
        return None

    mean = sum(valid) / len(valid)
    variance = sum((s - mean) ** 2 for s in valid) / len(valid)
    consistency = max(0.0, 10 - math.sqrt(variance) * 2)
    passed = len([s for s in valid if s >= PASS_THRESHOLD])

    return AggregateScore(
        average_score=round_half_up(mean),
        min_score=min(valid),
        max_score=max(valid),
        consistency=round_half_up(consistency),
        pass_rate=passed / len(valid) * 100,
        scored_count=len(valid)
    )


def aggregate_results(results: Iterable[ValidationResult]) -> Optional[AggregateScore]:
    """Aggregate ValidationResults, re-parsing scores that were not set"""
    scores = []
    for result in results:
        scores.append(result.score if result.score is not None else extract_score(result.analysis))
    return aggregate_scores(scores)


def score_trend(current: Optional[float], previous: Optional[float]) -> str:
    """'up', 'down' or 'same' between two iteration averages"""
    if current is None or not previous:
        return "same"

    diff = current - previous
    if diff > TREND_DEAD_BAND:
        return "up"
    if diff < -TREND_DEAD_BAND:
        return "down"
    return "same"
