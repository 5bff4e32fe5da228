"""Longitudinal training-behaviour patterns from the adaptation history."""

import logging
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np

from ..config import config
from .data_validation import clean_tss
from .records import (
    AdaptationType,
    CommonAdaptation,
    UserTrainingPatterns,
    WorkoutAdaptation,
)

logger = logging.getLogger(__name__)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

CONFIDENCE_SATURATION = 50
UNDERTRAIN_BELOW_PCT = 85.0
OVERREACH_ABOVE_PCT = 115.0
PROBLEMATIC_BELOW = 0.5
PREFERRED_DAY_COUNT = 3
PROBLEMATIC_DAY_COUNT = 2

AdaptationLike = Union[WorkoutAdaptation, Dict[str, Any]]


def _completed(adaptation: WorkoutAdaptation) -> bool:
    return adaptation.adaptation_type == AdaptationType.COMPLETED_AS_PLANNED


def compliance_by_weekday(history: List[WorkoutAdaptation]) -> Dict[str, float]:
    """Share of adaptations completed as planned, per weekday of detection.

    Weekdays without any adaptation are left out.
    """
    totals = Counter()
    completed = Counter()
    for adaptation in history:
        day = WEEKDAYS[adaptation.detected_at.weekday()]
        totals[day] += 1
        if _completed(adaptation):
            completed[day] += 1

    return {day: completed[day] / totals[day] for day in WEEKDAYS if totals[day]}


def rank_days(compliance: Dict[str, float]) -> List[str]:
    """Weekdays by compliance, best first; ties keep Monday-first order."""
    return sorted(compliance, key=lambda day: (-compliance[day], WEEKDAYS.index(day)))


def common_adaptations(history: List[WorkoutAdaptation]) -> List[CommonAdaptation]:
    total = len(history)
    deltas = defaultdict(list)
    counts = Counter()
    for adaptation in history:
        if _completed(adaptation):
            continue
        counts[adaptation.adaptation_type] += 1
        if adaptation.tss_delta is not None:
            deltas[adaptation.adaptation_type].append(adaptation.tss_delta)

    result = [
        CommonAdaptation(
            type=adaptation_type,
            frequency=count / total,
            avg_delta=round(float(np.mean(deltas[adaptation_type])), 1) if deltas[adaptation_type] else None,
        )
        for adaptation_type, count in counts.items()
    ]
    result.sort(key=lambda c: (-c.frequency, c.type.value))
    return result


def reason_distribution(history: List[WorkoutAdaptation]) -> Dict[str, float]:
    """Reason frequencies normalised over the adaptations that carry a reason."""
    reasons = Counter(a.reason for a in history if a.reason)
    with_reasons = sum(reasons.values())
    if not with_reasons:
        return {}
    return {reason: count / with_reasons for reason, count in reasons.most_common()}


def average_tss_achievement(history: List[WorkoutAdaptation]) -> Optional[float]:
    ratios = [
        clean_tss(a.actual_tss) / a.planned_tss * 100
        for a in history
        if a.planned_tss and a.actual_tss is not None and a.planned_tss > 0
    ]
    if not ratios:
        return None
    return float(np.mean(ratios))


def workout_type_compliance(history: List[WorkoutAdaptation]) -> Dict[str, float]:
    totals = Counter()
    completed = Counter()
    for adaptation in history:
        if not adaptation.planned_workout_type:
            continue
        totals[adaptation.planned_workout_type] += 1
        if _completed(adaptation):
            completed[adaptation.planned_workout_type] += 1
    return {workout_type: completed[workout_type] / count for workout_type, count in sorted(totals.items())}


def recompute_user_patterns(
    history: Iterable[AdaptationLike],
    min_data_for_predictions: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[UserTrainingPatterns]:
    """Rebuild the rider's training-behaviour profile from the full history.

    The result is meant to replace any stored snapshot entirely. Superseded
    adaptations are ignored.

    Args:
        history: Every adaptation recorded for the rider
        min_data_for_predictions: Workouts needed before predictions are trusted
        now: Timestamp recorded as ``last_updated_at``

    Returns:
        UserTrainingPatterns, or None when there is no history to learn from.
        Callers must keep their previous snapshot in that case.
    """
    adaptations = [
        a if isinstance(a, WorkoutAdaptation) else WorkoutAdaptation.from_dict(a)
        for a in history
    ]
    adaptations = [a for a in adaptations if not a.superseded]
    if not adaptations:
        logger.info("No adaptation history, keeping previous training patterns")
        return None

    if min_data_for_predictions is None:
        min_data_for_predictions = config.MIN_DATA_FOR_PREDICTIONS

    total = len(adaptations)
    completed = sum(1 for a in adaptations if _completed(a))

    by_day = compliance_by_weekday(adaptations)
    ranked = rank_days(by_day)
    problematic = [day for day in ranked[-PROBLEMATIC_DAY_COUNT:] if by_day[day] < PROBLEMATIC_BELOW]

    tss_achievement = average_tss_achievement(adaptations)

    patterns = UserTrainingPatterns(
        avg_weekly_compliance=completed / total * 100,
        compliance_by_day=by_day,
        preferred_workout_days=ranked[:PREFERRED_DAY_COUNT],
        problematic_days=problematic,
        common_adaptations=common_adaptations(adaptations),
        adaptation_reasons=reason_distribution(adaptations),
        avg_tss_achievement_pct=tss_achievement,
        tends_to_undertrain=tss_achievement is not None and tss_achievement < UNDERTRAIN_BELOW_PCT,
        tends_to_overreach=tss_achievement is not None and tss_achievement > OVERREACH_ABOVE_PCT,
        total_workouts_tracked=total,
        total_adaptations_tracked=total - completed,
        pattern_confidence=min(1.0, total / CONFIDENCE_SATURATION),
        min_data_for_predictions=min_data_for_predictions,
        has_enough_data=total >= min_data_for_predictions,
        first_tracked_at=min(a.detected_at for a in adaptations),
        last_updated_at=now or datetime.now(timezone.utc),
        workout_type_compliance=workout_type_compliance(adaptations),
    )

    logger.debug(
        f"Recomputed patterns from {total} workouts: compliance {patterns.avg_weekly_compliance:.1f}%, "
        f"confidence {patterns.pattern_confidence:.2f}"
    )
    return patterns
