"""Exponentially weighted training load model (CTL / ATL / TSB)."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..config import config
from .data_validation import clean_tss
from .records import DailyLoadPoint, DateRange, InvalidRangeError, LoadSnapshot, to_date

logger = logging.getLogger(__name__)

TREND_WINDOW_DAYS = 14


@dataclass(frozen=True)
class FormClass:
    """Readiness band for a TSB value."""

    status: str
    color: str
    message: str


FORM_CLASSES: List[Tuple[float, FormClass]] = [
    (25, FormClass("fresh", "#4ade80", "Very fresh - ready for hard training or racing")),
    (5, FormClass("rested", "#60a5fa", "Rested - good for quality sessions")),
    (-10, FormClass("neutral", "#facc15", "Neutral - normal training load")),
    (-30, FormClass("fatigued", "#f97316", "Fatigued - consider easier days soon")),
]
VERY_FATIGUED = FormClass("very_fatigued", "#ef4444", "Very fatigued - recovery recommended")


class LoadModel:
    """Chronic and acute training load from a dense daily TSS series.

    CTL is an exponentially weighted sum over the whole history; ATL uses the
    same weighting restricted to the most recent ``atl_window`` days:

        ctl_i = lc * sum(t_j * exp(-lc * (i - j)) for j <= i)
        atl_i = la * sum(t_j * exp(-la * (i - j)) for i - W < j <= i)

    with ``lc = 1 / ctl_time_constant`` and ``la = 1 / atl_time_constant``.
    """

    def __init__(
        self,
        ctl_time_constant: float = None,
        atl_time_constant: float = None,
        atl_window: int = None,
    ):
        """Initialize the load model.

        Args:
            ctl_time_constant: Fitness time constant (days) - typically 42
            atl_time_constant: Fatigue time constant (days) - typically 7
            atl_window: Number of days contributing to ATL - typically 7
        """
        self.ctl_time_constant = ctl_time_constant or config.CTL_TIME_CONSTANT
        self.atl_time_constant = atl_time_constant or config.ATL_TIME_CONSTANT
        self.atl_window = atl_window or config.ATL_WINDOW_DAYS

        if self.ctl_time_constant <= 0 or self.atl_time_constant <= 0 or self.atl_window <= 0:
            raise ValueError("Load model time constants and window must be positive")

        self.ctl_lambda = 1.0 / self.ctl_time_constant
        self.atl_lambda = 1.0 / self.atl_time_constant

    def impulse_response(self, training_loads: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Calculate CTL, ATL and TSB in a single pass.

        Each day decays the previous value and adds today's impulse. For ATL
        the impulse that just left the window is removed at its decayed weight,
        which keeps the result identical to the windowed sum.

        Args:
            training_loads: Dense array of daily TSS, oldest first

        Returns:
            Tuple of (ctl, atl, tsb) arrays
        """
        loads = np.clip(np.nan_to_num(np.asarray(training_loads, dtype=float), nan=0.0, posinf=0.0), 0, None)
        n_days = len(loads)
        ctl = np.zeros(n_days)
        atl = np.zeros(n_days)
        if n_days == 0:
            return ctl, atl, ctl - atl

        ctl_decay = np.exp(-self.ctl_lambda)
        atl_decay = np.exp(-self.atl_lambda)
        window = self.atl_window
        expired_weight = self.atl_lambda * np.exp(-self.atl_lambda * window)

        ctl[0] = self.ctl_lambda * loads[0]
        atl[0] = self.atl_lambda * loads[0]

        for i in range(1, n_days):
            ctl[i] = ctl[i - 1] * ctl_decay + self.ctl_lambda * loads[i]
            atl[i] = atl[i - 1] * atl_decay + self.atl_lambda * loads[i]
            if i >= window:
                atl[i] -= expired_weight * loads[i - window]
                # Rounding residue once the window empties
                if atl[i] < 0:
                    atl[i] = 0.0

        return ctl, atl, ctl - atl

    def resummed_response(self, training_loads: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Reference evaluation that re-sums the weighted history for every day.

        Quadratic in the series length. Used to check :meth:`impulse_response`.
        """
        loads = np.clip(np.nan_to_num(np.asarray(training_loads, dtype=float), nan=0.0, posinf=0.0), 0, None)
        n_days = len(loads)
        ctl = np.zeros(n_days)
        atl = np.zeros(n_days)

        for i in range(n_days):
            lags = i - np.arange(i + 1)
            ctl[i] = self.ctl_lambda * np.sum(loads[: i + 1] * np.exp(-self.ctl_lambda * lags))

            start = max(0, i - self.atl_window + 1)
            window_lags = i - np.arange(start, i + 1)
            atl[i] = self.atl_lambda * np.sum(loads[start: i + 1] * np.exp(-self.atl_lambda * window_lags))

        return ctl, atl, ctl - atl

    def daily_series(self, points: Iterable[DailyLoadPoint], end: Optional[date] = None) -> pd.Series:
        """Sort ``points`` into a dense daily TSS series, filling gaps with zero."""
        frame = pd.DataFrame(
            [(pd.Timestamp(to_date(p.date)), clean_tss(p.tss, source=f"day {p.date}")) for p in points],
            columns=["date", "tss"],
        )
        if frame.empty:
            return pd.Series(dtype=float)

        daily = frame.groupby("date")["tss"].sum().sort_index()
        last = pd.Timestamp(end) if end is not None else daily.index.max()
        index = pd.date_range(start=daily.index.min(), end=max(last, daily.index.min()), freq="D")
        return daily.reindex(index, fill_value=0.0)

    def snapshots(self, series: pd.Series, resum: bool = False) -> List[LoadSnapshot]:
        loads = series.to_numpy(dtype=float)
        respond = self.resummed_response if resum else self.impulse_response
        ctl, atl, tsb = respond(loads)
        return [
            LoadSnapshot(
                date=day.date(),
                tss=float(loads[i]),
                ctl=float(ctl[i]),
                atl=float(atl[i]),
                tsb=float(tsb[i]),
            )
            for i, day in enumerate(series.index)
        ]


def compute_load_series(points: Iterable[DailyLoadPoint], model: LoadModel = None) -> List[LoadSnapshot]:
    """Compute fitness, fatigue and form for every day from the first point on.

    Points may arrive unsorted or with gaps; missing days count as rest and
    several points on the same day are summed.

    Returns:
        One LoadSnapshot per calendar day, oldest first, values unrounded
    """
    model = model or LoadModel()
    series = model.daily_series(points)
    snapshots = model.snapshots(series)
    logger.debug(f"Computed load series for {len(snapshots)} days")
    return snapshots


def compute_load_series_resum(points: Iterable[DailyLoadPoint], model: LoadModel = None) -> List[LoadSnapshot]:
    """Same as :func:`compute_load_series` using the quadratic re-sum."""
    model = model or LoadModel()
    return model.snapshots(model.daily_series(points), resum=True)


def compute_load_series_for_range(
    points: Iterable[DailyLoadPoint],
    date_range: DateRange,
    model: LoadModel = None,
) -> List[LoadSnapshot]:
    """Load values for each day of ``date_range``.

    History before the range still contributes to CTL and ATL; points after
    the range end are ignored.

    Raises:
        InvalidRangeError: If ``date_range`` is not a DateRange
    """
    if not isinstance(date_range, DateRange):
        raise InvalidRangeError(f"Expected a DateRange, got {type(date_range).__name__}")

    model = model or LoadModel()
    history = [p for p in points if to_date(p.date) <= date_range.end]
    history.append(DailyLoadPoint(date=date_range.start, tss=0.0))
    series = model.daily_series(history, end=date_range.end)
    return [s for s in model.snapshots(series) if s.date in date_range]


def interpret_tsb(tsb: float) -> FormClass:
    """Map a TSB value to its readiness band."""
    for lower_bound, form in FORM_CLASSES:
        if tsb > lower_bound:
            return form
    return VERY_FATIGUED


def load_trend(daily_tss: Sequence[float]) -> str:
    """Classify the recent load direction.

    Compares the total of the last 14 days with the 14 days before them.

    Returns:
        One of building, maintaining, recovering or declining
    """
    values = [clean_tss(v) for v in daily_tss]
    if len(values) < TREND_WINDOW_DAYS * 2:
        return "building"

    recent = sum(values[-TREND_WINDOW_DAYS:])
    previous = sum(values[-TREND_WINDOW_DAYS * 2: -TREND_WINDOW_DAYS])
    if previous == 0:
        return "building"

    change = (recent - previous) / previous
    if change > 0.15:
        return "building"
    if change < -0.30:
        return "declining"
    if change < -0.15:
        return "recovering"
    return "maintaining"
