"""Daily Training Stress Score aggregation across riding and cross-training."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from ..config import config
from .data_validation import clean_tss
from .records import (
    ActivitySummary,
    CrossTrainingSession,
    DailyLoadPoint,
    DateRange,
    to_date,
)

logger = logging.getLogger(__name__)

ActivityLike = Union[ActivitySummary, Dict[str, Any]]
SessionLike = Union[CrossTrainingSession, Dict[str, Any]]


def estimate_cross_training_tss(session: CrossTrainingSession) -> float:
    """Estimate TSS for a cross-training session from duration and RPE.

    Intensity 5 maps to a factor of 1.0 and each point above or below moves the
    factor by the activity type's multiplier, never below 0.3.
    """
    base = session.tss_per_hour_base or config.CROSS_TRAINING_TSS_PER_HOUR
    multiplier = session.tss_intensity_multiplier
    if multiplier is None:
        multiplier = config.CROSS_TRAINING_INTENSITY_MULTIPLIER

    hours = max(session.duration_min or 0.0, 0.0) / 60.0
    intensity_factor = max(
        config.CROSS_TRAINING_MIN_INTENSITY_FACTOR,
        1.0 + (session.intensity - 5) * multiplier,
    )
    return float(round(hours * base * intensity_factor))


def _session_tss(session: CrossTrainingSession) -> float:
    if session.estimated_tss is not None:
        return clean_tss(session.estimated_tss, source=f"cross-training {session.id}")
    return clean_tss(estimate_cross_training_tss(session), source=f"cross-training {session.id}")


def _parse(record, record_type):
    """Return ``record`` as ``record_type``, or None when it cannot be read."""
    if isinstance(record, record_type):
        return record
    try:
        return record_type.from_dict(record)
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Skipping unreadable {record_type.__name__} record {record!r}: {e}")
        return None


def daily_tss_frame(
    activities: Iterable[ActivityLike],
    cross_training_sessions: Optional[Iterable[SessionLike]],
    date_range: DateRange,
) -> pd.DataFrame:
    """Build a dense date-indexed frame of ride, cross-training and total TSS.

    Args:
        activities: Primary-sport activity summaries
        cross_training_sessions: Cross-training sessions (may be None)
        date_range: Inclusive range of days to cover

    Returns:
        DataFrame indexed by day with columns ride_tss, cross_training_tss, tss
    """
    index = pd.date_range(start=date_range.start, end=date_range.end, freq="D")
    ride_loads = pd.Series(index=index, data=0.0)
    cross_loads = pd.Series(index=index, data=0.0)

    skipped = 0
    for record in activities or []:
        activity = _parse(record, ActivitySummary)
        if activity is None:
            continue
        day = pd.Timestamp(to_date(activity.date))
        if day not in ride_loads.index:
            skipped += 1
            continue
        ride_loads[day] += clean_tss(activity.tss, source=f"activity {activity.id}")

    for record in cross_training_sessions or []:
        session = _parse(record, CrossTrainingSession)
        if session is None:
            continue
        day = pd.Timestamp(to_date(session.date))
        if day not in cross_loads.index:
            skipped += 1
            continue
        cross_loads[day] += _session_tss(session)

    if skipped:
        logger.debug(f"Ignored {skipped} records outside {date_range.start}..{date_range.end}")

    return pd.DataFrame({
        "ride_tss": ride_loads,
        "cross_training_tss": cross_loads,
        "tss": ride_loads + cross_loads,
    })


def aggregate_daily_tss(
    activities: Iterable[ActivityLike],
    cross_training_sessions: Optional[Iterable[SessionLike]],
    date_range: DateRange,
) -> List[DailyLoadPoint]:
    """Produce one TSS value per calendar day in ``date_range``.

    Days without activity carry ``tss = 0``; several records on the same day
    are summed. Negative, missing or non-finite TSS counts as zero.
    """
    frame = daily_tss_frame(activities, cross_training_sessions, date_range)
    return [
        DailyLoadPoint(date=day.date(), tss=float(tss))
        for day, tss in frame["tss"].items()
    ]
