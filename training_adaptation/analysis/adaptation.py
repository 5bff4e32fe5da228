"""Planned-versus-actual workout adaptation detection.

Compares each planned workout with the activity that fulfilled it and
classifies the outcome (completed, reduced, exceeded, substituted, skipped or
unplanned). Classification and the follow-up assessment are both ordered rule
tables evaluated top to bottom.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

import numpy as np

from ..config import config
from .data_validation import clean_positive, clean_tss
from .records import (
    ActivitySummary,
    AdaptationAssessment,
    AdaptationType,
    PlannedWorkout,
    TrainingContext,
    TrainingPhase,
    WeekAdaptationsSummary,
    WorkoutAdaptation,
    to_date,
    to_datetime,
)

logger = logging.getLogger(__name__)

KEY_SESSION_TYPES = {"threshold", "vo2max", "anaerobic"}
EASY_PHASES = {TrainingPhase.RECOVERY, TrainingPhase.TAPER}
NOT_ADAPTED = {
    AdaptationType.COMPLETED_AS_PLANNED,
    AdaptationType.SKIPPED,
    AdaptationType.UNPLANNED,
}

PlannedLike = Union[PlannedWorkout, Dict[str, Any]]
ActivityLike = Union[ActivitySummary, Dict[str, Any]]
ContextLike = Union[TrainingContext, Dict[str, Any], None]


@dataclass(frozen=True)
class ExecutionMetrics:
    """Numbers the classification rules look at."""

    achievement_pct: Optional[float]
    planned_if: Optional[float]
    actual_if: Optional[float]


def _in_band(pct: Optional[float]) -> bool:
    low, high = config.stimulus_band()
    return pct is not None and low <= pct <= high


def _is_substitution(m: ExecutionMetrics) -> bool:
    if m.planned_if is None or m.actual_if is None:
        return False
    return m.actual_if < m.planned_if * config.SUBSTITUTION_IF_RATIO and _in_band(m.achievement_pct)


# Evaluated top to bottom; the first matching predicate wins.
CLASSIFICATION_RULES: List[Tuple[Callable[[ExecutionMetrics], bool], AdaptationType]] = [
    (_is_substitution, AdaptationType.SUBSTITUTED),
    (lambda m: m.achievement_pct is None, AdaptationType.COMPLETED_AS_PLANNED),
    (lambda m: _in_band(m.achievement_pct), AdaptationType.COMPLETED_AS_PLANNED),
    (lambda m: m.achievement_pct < config.STIMULUS_MATCH_LOW_PCT, AdaptationType.REDUCED),
    (lambda m: m.achievement_pct > config.STIMULUS_MATCH_HIGH_PCT, AdaptationType.EXCEEDED),
]


def classify_execution(metrics: ExecutionMetrics) -> AdaptationType:
    for predicate, adaptation_type in CLASSIFICATION_RULES:
        if predicate(metrics):
            return adaptation_type
    return AdaptationType.COMPLETED_AS_PLANNED


@dataclass(frozen=True)
class AssessmentFacts:
    adaptation_type: AdaptationType
    planned_workout_type: Optional[str]
    stimulus_achieved_pct: Optional[int]
    training_phase: Optional[TrainingPhase]
    tsb: Optional[float]

    @property
    def missed_pct(self) -> int:
        if self.stimulus_achieved_pct is None:
            return 0
        return max(0, 100 - self.stimulus_achieved_pct)


def _is(adaptation_type: AdaptationType) -> Callable[[AssessmentFacts], bool]:
    return lambda f: f.adaptation_type == adaptation_type


def _fatigued(f: AssessmentFacts) -> bool:
    return f.tsb is not None and f.tsb < config.FATIGUED_TSB_THRESHOLD


# (predicate, assessment, explanation template) evaluated top to bottom.
ASSESSMENT_RULES: List[Tuple[Callable[[AssessmentFacts], bool], AdaptationAssessment, str]] = [
    (_is(AdaptationType.COMPLETED_AS_PLANNED), AdaptationAssessment.ACCEPTABLE,
     "Workout completed as planned. Great consistency!"),
    (_is(AdaptationType.SKIPPED), AdaptationAssessment.CONCERNING,
     "Workout skipped. Planned training stimulus not achieved."),
    (_is(AdaptationType.UNPLANNED), AdaptationAssessment.ACCEPTABLE,
     "Unplanned activity completed. Consider how it fits into your training load."),
    (lambda f: f.adaptation_type == AdaptationType.EXCEEDED and f.training_phase in EASY_PHASES,
     AdaptationAssessment.MINOR_CONCERN,
     "Exceeded the plan during a recovery/taper phase. Monitor fatigue levels."),
    (lambda f: f.adaptation_type == AdaptationType.EXCEEDED and _fatigued(f),
     AdaptationAssessment.CONCERNING,
     "Exceeded the plan while fatigued (TSB < {threshold:.0f}). Risk of overtraining."),
    (_is(AdaptationType.EXCEEDED), AdaptationAssessment.BENEFICIAL,
     "Exceeded planned load. Extra training stimulus achieved."),
    (lambda f: f.adaptation_type == AdaptationType.REDUCED and f.missed_pct > 35,
     AdaptationAssessment.CONCERNING,
     "Workout significantly shortened by ~{missed}%. May need to adjust weekly targets."),
    (lambda f: f.adaptation_type == AdaptationType.REDUCED and f.planned_workout_type in KEY_SESSION_TYPES,
     AdaptationAssessment.MINOR_CONCERN,
     "Reduced a high-intensity workout. Key session stimulus missed."),
    (lambda f: f.adaptation_type == AdaptationType.REDUCED and f.missed_pct > 20,
     AdaptationAssessment.MINOR_CONCERN,
     "Workout shortened by ~{missed}%. Consider adding volume later in the week to compensate."),
    (_is(AdaptationType.REDUCED), AdaptationAssessment.ACCEPTABLE,
     "Workout shortened by ~{missed}%. Minor reduction in training stimulus."),
    (lambda f: f.adaptation_type == AdaptationType.SUBSTITUTED and f.planned_workout_type in KEY_SESSION_TYPES,
     AdaptationAssessment.MINOR_CONCERN,
     "Swapped a key session for an easier ride with similar load. Intensity stimulus missed."),
    (_is(AdaptationType.SUBSTITUTED), AdaptationAssessment.ACCEPTABLE,
     "Swapped workout type. Similar training load achieved."),
]


def assess_adaptation(facts: AssessmentFacts) -> Tuple[AdaptationAssessment, str]:
    """Initial rule-based assessment and explanation for an adaptation."""
    for predicate, assessment, template in ASSESSMENT_RULES:
        if predicate(facts):
            return assessment, template.format(
                missed=facts.missed_pct, threshold=config.FATIGUED_TSB_THRESHOLD
            )
    return AdaptationAssessment.ACCEPTABLE, "Workout completed with some variation from plan."


def estimate_intensity_factor(
    tss: Optional[float] = None,
    duration_min: Optional[float] = None,
    normalized_power: Optional[float] = None,
    average_power: Optional[float] = None,
    ftp: Optional[float] = None,
) -> Optional[float]:
    """Estimate IF when it was not reported.

    Uses NP / FTP, then average power / FTP, then inverts
    TSS = hours * IF^2 * 100.
    """
    ftp = clean_positive(ftp)
    power = clean_positive(normalized_power) or clean_positive(average_power)
    if power is not None and ftp is not None:
        return power / ftp

    tss = clean_positive(tss)
    duration_min = clean_positive(duration_min)
    if tss is not None and duration_min is not None:
        return math.sqrt(tss / ((duration_min / 60) * 100))
    return None


def _actual_intensity_factor(activity: ActivitySummary, user_ftp: Optional[float]) -> Optional[float]:
    reported = clean_positive(activity.intensity_factor)
    if reported is not None:
        return reported
    return estimate_intensity_factor(
        tss=activity.tss,
        duration_min=activity.duration_min,
        normalized_power=activity.normalized_power,
        average_power=activity.average_power,
        ftp=user_ftp,
    )


def _planned_intensity_factor(planned: PlannedWorkout) -> Optional[float]:
    reported = clean_positive(planned.target_intensity_factor)
    if reported is not None:
        return reported
    return estimate_intensity_factor(tss=planned.target_tss, duration_min=planned.target_duration_min)


def _delta(actual: Optional[float], planned: Optional[float]) -> Optional[float]:
    if actual is None or planned is None:
        return None
    return actual - planned


def _ratio_pct(actual: Optional[float], planned: Optional[float]) -> Optional[int]:
    planned = clean_positive(planned)
    if planned is None or actual is None or not math.isfinite(actual):
        return None
    return int(round(max(actual, 0.0) / planned * 100))


def _parse(record, record_type):
    """Return ``record`` as ``record_type``; unreadable records become None."""
    if record is None or isinstance(record, record_type):
        return record
    try:
        return record_type.from_dict(record)
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Ignoring unreadable {record_type.__name__} record {record!r}: {e}")
        return None


def _as_planned(record: Optional[PlannedLike]) -> Optional[PlannedWorkout]:
    return _parse(record, PlannedWorkout)


def _as_activity(record: Optional[ActivityLike]) -> Optional[ActivitySummary]:
    activity = _parse(record, ActivitySummary)
    if activity is None or activity.tss is None:
        return activity
    # Negative or non-finite load counts as zero, like everywhere else
    return replace(activity, tss=clean_tss(activity.tss, source=f"activity {activity.id}"))


def _as_context(context: ContextLike) -> TrainingContext:
    if isinstance(context, TrainingContext):
        return context
    return TrainingContext.from_dict(context)


def _finish(adaptation: WorkoutAdaptation, achievement_pct: Optional[int] = None) -> WorkoutAdaptation:
    facts = AssessmentFacts(
        adaptation_type=adaptation.adaptation_type,
        planned_workout_type=adaptation.planned_workout_type,
        stimulus_achieved_pct=achievement_pct if achievement_pct is not None else adaptation.stimulus_achieved_pct,
        training_phase=adaptation.training_phase,
        tsb=adaptation.tsb_at_time,
    )
    assessment, explanation = assess_adaptation(facts)
    return replace(adaptation, assessment=assessment, explanation=explanation)


def _context_fields(context: TrainingContext, planned: Optional[PlannedWorkout]) -> Dict[str, Any]:
    week_number = context.week_number
    if week_number is None and planned is not None:
        week_number = planned.week_number
    return {
        "week_number": week_number,
        "training_phase": context.training_phase,
        "ctl_at_time": context.ctl,
        "atl_at_time": context.atl,
        "tsb_at_time": context.tsb,
    }


def _planned_fields(planned: PlannedWorkout) -> Dict[str, Any]:
    return {
        "planned_workout_id": planned.id,
        "planned_workout_type": planned.workout_type,
        "planned_tss": planned.target_tss,
        "planned_duration_min": planned.target_duration_min,
        "planned_intensity_factor": planned.target_intensity_factor,
    }


def _actual_fields(activity: ActivitySummary, user_ftp: Optional[float]) -> Dict[str, Any]:
    return {
        "activity_id": activity.id,
        "actual_tss": activity.tss,
        "actual_duration_min": activity.duration_min,
        "actual_intensity_factor": _actual_intensity_factor(activity, user_ftp),
        "actual_normalized_power": activity.normalized_power,
    }


def detect_adaptation(
    planned: Optional[PlannedLike],
    activity: Optional[ActivityLike],
    user_ftp: Optional[float] = None,
    context: ContextLike = None,
    today: Optional[date] = None,
    detected_at: Optional[datetime] = None,
) -> Optional[WorkoutAdaptation]:
    """Classify how a planned workout was executed.

    Args:
        planned: The planned workout, or None for an unplanned activity
        activity: The activity linked to the workout, or None
        user_ftp: Rider FTP in watts, used to derive intensity factor
        context: Week number, phase and CTL/ATL/TSB at detection time
        today: Reference day for deciding whether a workout is overdue
        detected_at: Detection timestamp (defaults to now, UTC)

    Returns:
        WorkoutAdaptation, or None when the workout has no activity and is not
        yet due, or when neither record can be read

    Raises:
        ValueError: If neither a planned workout nor an activity is given
    """
    if planned is None and activity is None:
        raise ValueError("detect_adaptation needs a planned workout or an activity")

    planned = _as_planned(planned)
    activity = _as_activity(activity)
    if planned is None and activity is None:
        return None

    ctx = _as_context(context)
    today = to_date(today) if today is not None else date.today()
    detected_at = to_datetime(detected_at) if detected_at is not None else datetime.now(timezone.utc)

    if planned is None:
        return _finish(WorkoutAdaptation(
            adaptation_type=AdaptationType.UNPLANNED,
            detected_at=detected_at,
            planned_workout_id=None,
            **_actual_fields(activity, user_ftp),
            **_context_fields(ctx, None),
        ))

    if activity is None:
        if planned.scheduled_date >= today:
            logger.debug(f"Planned workout {planned.id} on {planned.scheduled_date} is still pending")
            return None
        return _finish(WorkoutAdaptation(
            adaptation_type=AdaptationType.SKIPPED,
            detected_at=detected_at,
            activity_id=None,
            **_planned_fields(planned),
            **_context_fields(ctx, planned),
        ))

    actual = _actual_fields(activity, user_ftp)
    stimulus = _ratio_pct(activity.tss, planned.target_tss)
    if stimulus is None and clean_positive(planned.target_tss) is not None:
        # Planned TSS but the activity has none: fall back to duration
        stimulus = _ratio_pct(activity.duration_min, planned.target_duration_min)

    achievement = stimulus
    if achievement is None:
        achievement = _ratio_pct(activity.duration_min, planned.target_duration_min)

    adaptation_type = classify_execution(ExecutionMetrics(
        achievement_pct=achievement,
        planned_if=_planned_intensity_factor(planned),
        actual_if=actual["actual_intensity_factor"],
    ))

    return _finish(WorkoutAdaptation(
        adaptation_type=adaptation_type,
        detected_at=detected_at,
        tss_delta=_delta(activity.tss, planned.target_tss),
        duration_delta=_delta(activity.duration_min, planned.target_duration_min),
        stimulus_achieved_pct=stimulus,
        **_planned_fields(planned),
        **actual,
        **_context_fields(ctx, planned),
    ), achievement_pct=achievement)


def match_score(planned: PlannedWorkout, activity: ActivitySummary) -> Optional[float]:
    """Score how well ``activity`` fits ``planned``.

    Date proximity is worth up to 40 points, duration and TSS similarity up to
    30 each. Activities too far from the scheduled day score None.
    """
    days_apart = abs((activity.date - planned.scheduled_date).days)
    max_days = max(config.MATCH_MAX_DAYS_APART, 1)
    if days_apart > config.MATCH_MAX_DAYS_APART:
        return None

    score = 40 * (1 - days_apart / max_days)

    for actual, target in (
        (activity.duration_min, planned.target_duration_min),
        (activity.tss, planned.target_tss),
    ):
        actual, target = clean_positive(actual), clean_positive(target)
        if actual is not None and target is not None:
            score += 30 * min(actual, target) / max(actual, target)

    return float(score)


def find_best_matching_activity(
    planned: PlannedWorkout,
    activities: Iterable[ActivitySummary],
    used_ids: Set[str],
) -> Optional[ActivitySummary]:
    best_match = None
    best_score = 0.0
    for activity in activities:
        if activity.id in used_ids:
            continue
        score = match_score(planned, activity)
        if score is not None and score > best_score:
            best_score = score
            best_match = activity

    return best_match if best_score >= config.MATCH_MIN_SCORE else None


def detect_week_adaptations(
    planned_workouts: Iterable[PlannedLike],
    activities: Iterable[ActivityLike],
    user_ftp: Optional[float] = None,
    context: ContextLike = None,
    today: Optional[date] = None,
    detected_at: Optional[datetime] = None,
) -> List[WorkoutAdaptation]:
    """Detect adaptations for a week of planned workouts.

    Workouts are processed in date order and each claims its best unused
    activity. Rest days are skipped, workouts that are not yet due and have no
    activity are left out, and activities nobody claimed come back as
    unplanned.
    """
    workouts = sorted(
        (w for w in map(_as_planned, planned_workouts) if w is not None),
        key=lambda w: w.scheduled_date,
    )
    rides = [a for a in map(_as_activity, activities) if a is not None]
    detected_at = detected_at or datetime.now(timezone.utc)

    adaptations: List[WorkoutAdaptation] = []
    used_ids: Set[str] = set()

    for workout in workouts:
        if workout.is_rest_day:
            continue

        match = find_best_matching_activity(workout, rides, used_ids)
        if match is not None:
            used_ids.add(match.id)

        adaptation = detect_adaptation(workout, match, user_ftp, context, today=today, detected_at=detected_at)
        if adaptation is not None:
            adaptations.append(adaptation)

    for activity in rides:
        if activity.id not in used_ids:
            adaptations.append(
                detect_adaptation(None, activity, user_ftp, context, today=today, detected_at=detected_at)
            )

    logger.info(
        f"Detected {len(adaptations)} adaptations from {len(workouts)} planned workouts "
        f"and {len(rides)} activities"
    )
    return adaptations


def summarize_week(adaptations: Iterable[WorkoutAdaptation]) -> Optional[WeekAdaptationsSummary]:
    """Aggregate one week of adaptations.

    Returns:
        WeekAdaptationsSummary, or None for a week with no adaptations
    """
    week = list(adaptations)
    if not week:
        return None

    stimulus_values = [a.stimulus_achieved_pct for a in week if a.stimulus_achieved_pct is not None]
    tss_planned = sum(a.planned_tss or 0 for a in week)
    tss_actual = sum(a.actual_tss or 0 for a in week)

    return WeekAdaptationsSummary(
        total_planned=sum(1 for a in week if a.planned_workout_id is not None),
        total_completed=sum(1 for a in week if a.activity_id is not None),
        total_adapted=sum(1 for a in week if a.adaptation_type not in NOT_ADAPTED),
        total_skipped=sum(1 for a in week if a.adaptation_type == AdaptationType.SKIPPED),
        avg_stimulus_achieved_pct=float(np.mean(stimulus_values)) if stimulus_values else None,
        tss_planned=float(tss_planned),
        tss_actual=float(tss_actual),
        tss_achievement_pct=int(round(tss_actual / tss_planned * 100)) if tss_planned > 0 else 0,
        adaptation_types=dict(Counter(a.adaptation_type.value for a in week)),
    )
