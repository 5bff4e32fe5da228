"""Efficiency Factor and aerobic decoupling metrics."""

import logging
import math
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import config
from .data_validation import clean_non_negative, clean_positive
from .records import ActivitySummary, DecouplingClass, DecouplingEstimate, EfficiencySample

logger = logging.getLogger(__name__)


# Evaluated top to bottom; the first matching predicate wins.
DECOUPLING_CLASSES: List[Tuple[Callable[[float], bool], DecouplingClass]] = [
    (lambda d: d < 0, DecouplingClass(
        status="negative",
        color="blue",
        severity=0,
        message="Negative decoupling - you got stronger!",
        description="Heart rate dropped or power increased in the second half. "
                    "Unusual but can happen with good pacing or tailwind.",
    )),
    (lambda d: d < 3, DecouplingClass(
        status="excellent",
        color="green",
        severity=1,
        message="Excellent aerobic fitness",
        description="Minimal cardiac drift indicates strong aerobic base and good pacing.",
    )),
    (lambda d: d < 5, DecouplingClass(
        status="good",
        color="lime",
        severity=2,
        message="Good aerobic fitness",
        description="Low decoupling shows solid aerobic conditioning.",
    )),
    (lambda d: d < 10, DecouplingClass(
        status="moderate",
        color="yellow",
        severity=3,
        message="Moderate decoupling",
        description="Normal for hard efforts. For Z2 rides, indicates room for aerobic improvement.",
    )),
    (lambda d: d < 15, DecouplingClass(
        status="high",
        color="orange",
        severity=4,
        message="High decoupling",
        description="Significant cardiac drift. May indicate overreaching or poor pacing.",
    )),
    (lambda d: True, DecouplingClass(
        status="very_high",
        color="red",
        severity=5,
        message="Very high decoupling",
        description="Excessive cardiac drift. Review pacing, hydration, and heat factors.",
    )),
]

ESTIMATE_MIN_PCT = 0.0
ESTIMATE_MAX_PCT = 20.0


def compute_efficiency_factor(avg_power: Any, avg_heart_rate: Any) -> Optional[float]:
    """Calculate Efficiency Factor (EF) = average power / average heart rate.

    Higher values indicate better aerobic efficiency.

    Returns:
        EF rounded to 2 decimals, or None when either input is zero or absent
    """
    power = clean_positive(avg_power)
    heart_rate = clean_positive(avg_heart_rate)
    if power is None or heart_rate is None:
        return None
    return round(power / heart_rate, 2)


def efficiency_sample(avg_power: Any, avg_heart_rate: Any) -> Optional[EfficiencySample]:
    ef = compute_efficiency_factor(avg_power, avg_heart_rate)
    if ef is None:
        return None
    return EfficiencySample(avg_power=float(avg_power), avg_heart_rate=float(avg_heart_rate), ef=ef)


def compute_decoupling(ef_first: Any, ef_second: Any) -> Optional[float]:
    """Percentage drop in EF from the first half of a ride to the second.

    Returns:
        Decoupling percent rounded to 1 decimal, or None when the first-half EF
        is missing or zero, or the second-half EF is missing or negative
    """
    first = clean_positive(ef_first)
    second = clean_non_negative(ef_second)
    if first is None or second is None:
        return None
    return round(((first - second) / first) * 100, 1)


def interpret_decoupling(decoupling_pct: Optional[float]) -> Optional[DecouplingClass]:
    """Map a decoupling percentage to its fixed classification."""
    if decoupling_pct is None or (isinstance(decoupling_pct, float) and math.isnan(decoupling_pct)):
        return None
    for predicate, classification in DECOUPLING_CLASSES:
        if predicate(decoupling_pct):
            return classification
    return None


def estimate_decoupling(activity: Union[ActivitySummary, Dict[str, Any]]) -> Optional[DecouplingEstimate]:
    """Estimate aerobic decoupling from activity-level averages.

    Without power and heart-rate streams a true split-half comparison is not
    possible, so the estimate combines three ride characteristics:

    - duration: longer rides drift more, contributing 0-3%
    - intensity: average power relative to a 250W reference, scaled x2
    - variability: (max power / average power - 1) x 5

    The sum is clamped to [0, 20] and always flagged ``is_estimate``. It must
    not be stored alongside stream-derived decoupling.

    Args:
        activity: Activity summary (or its dict form) with average power and HR

    Returns:
        DecouplingEstimate, or None when average power or heart rate is missing
    """
    if not isinstance(activity, ActivitySummary):
        activity = ActivitySummary.from_dict(activity)

    avg_power = clean_positive(activity.average_power)
    avg_hr = clean_positive(activity.average_heart_rate)
    if avg_power is None or avg_hr is None:
        return None

    duration = clean_positive(activity.duration_min) or 0.0
    max_power = clean_positive(activity.max_power) or avg_power * config.DECOUPLING_DEFAULT_POWER_VARIABILITY

    duration_factor = min(duration / 120, 1) * 3
    intensity_factor = (avg_power / config.DECOUPLING_REFERENCE_POWER) * 2
    variability_factor = (max_power / avg_power - 1) * 5

    estimated = duration_factor + intensity_factor + variability_factor
    estimated = max(ESTIMATE_MIN_PCT, min(ESTIMATE_MAX_PCT, estimated))
    decoupling_pct = round(estimated, 1)

    return DecouplingEstimate(
        ef=compute_efficiency_factor(avg_power, avg_hr),
        decoupling_pct=decoupling_pct,
        interpretation=interpret_decoupling(decoupling_pct),
        is_estimate=True,
    )


def decoupling_from_streams(
    power: Sequence[float],
    heart_rate: Sequence[float],
) -> Optional[DecouplingEstimate]:
    """Split-half aerobic decoupling from aligned power and heart-rate streams.

    Samples where either channel is missing or non-positive are dropped before
    the ride is split in half.

    Returns:
        DecouplingEstimate with ``is_estimate=False``, or None with too little data
    """
    power_arr = np.asarray(power, dtype=float)
    hr_arr = np.asarray(heart_rate, dtype=float)
    if power_arr.shape != hr_arr.shape:
        logger.warning(
            f"Power and heart-rate streams differ in length ({power_arr.size} vs {hr_arr.size}), truncating"
        )
        n = min(power_arr.size, hr_arr.size)
        power_arr, hr_arr = power_arr[:n], hr_arr[:n]

    valid = np.isfinite(power_arr) & np.isfinite(hr_arr) & (power_arr > 0) & (hr_arr > 0)
    power_arr, hr_arr = power_arr[valid], hr_arr[valid]
    if power_arr.size < 2:
        return None

    half = power_arr.size // 2
    ef_first = np.mean(power_arr[:half]) / np.mean(hr_arr[:half])
    ef_second = np.mean(power_arr[half:]) / np.mean(hr_arr[half:])

    decoupling_pct = compute_decoupling(ef_first, ef_second)
    if decoupling_pct is None:
        return None

    return DecouplingEstimate(
        ef=compute_efficiency_factor(np.mean(power_arr), np.mean(hr_arr)),
        decoupling_pct=decoupling_pct,
        interpretation=interpret_decoupling(decoupling_pct),
        is_estimate=False,
    )
