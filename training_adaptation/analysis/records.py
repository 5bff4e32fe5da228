"""Typed records shared by the load, adaptation and pattern modules.

Upstream stores hand us loosely shaped dictionaries (camelCase from the web
client, snake_case from the database). Each inbound record exposes a
``from_dict`` constructor that resolves those key variants and applies the
documented defaults in one place.
"""

import math
from dataclasses import dataclass, field, asdict, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import pandas as pd


class InvalidRangeError(ValueError):
    """Raised when a caller asks for a reversed or malformed date range."""


class AdaptationType(Enum):
    """How a planned workout was actually executed."""

    COMPLETED_AS_PLANNED = "completed_as_planned"
    REDUCED = "reduced"
    EXCEEDED = "exceeded"
    SUBSTITUTED = "substituted"
    SKIPPED = "skipped"
    UNPLANNED = "unplanned"


class TrainingPhase(Enum):
    """Periodization phase of the plan at detection time."""

    BASE = "base"
    BUILD = "build"
    PEAK = "peak"
    TAPER = "taper"
    RECOVERY = "recovery"


class AdaptationReason(Enum):
    """Feedback codes a rider can attach to an adaptation."""

    TIME_CONSTRAINT = "time_constraint"
    FELT_TIRED = "felt_tired"
    FELT_GOOD = "felt_good"
    WEATHER = "weather"
    EQUIPMENT = "equipment"
    COACH_ADJUSTMENT = "coach_adjustment"
    OTHER = "other"


class AdaptationAssessment(Enum):
    """Rule-based judgement of an adaptation's impact."""

    BENEFICIAL = "beneficial"
    ACCEPTABLE = "acceptable"
    MINOR_CONCERN = "minor_concern"
    CONCERNING = "concerning"


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first non-None value among ``keys``."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def to_date(value: Any) -> date:
    """Coerce a date, datetime, timestamp or ISO string to a calendar date."""
    if value is None:
        raise TypeError("date value is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    stamp = pd.Timestamp(value)
    if pd.isna(stamp):
        raise ValueError(f"Unparseable date {value!r}")
    return stamp.date()


def to_datetime(value: Any) -> datetime:
    """Coerce a value to a timezone-aware datetime (naive values assumed UTC)."""
    if value is None:
        raise TypeError("datetime value is required")
    if isinstance(value, datetime):
        stamp = value
    elif isinstance(value, date):
        stamp = datetime.combine(value, datetime.min.time())
    else:
        stamp = pd.Timestamp(value).to_pydatetime()
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar days."""

    start: date
    end: date

    def __post_init__(self):
        if self.start is None or self.end is None:
            raise InvalidRangeError("Date range requires both start and end")
        if self.end < self.start:
            raise InvalidRangeError(
                f"Date range end {self.end.isoformat()} is before start {self.start.isoformat()}"
            )

    @classmethod
    def of(cls, start: Any, end: Any) -> "DateRange":
        try:
            return cls(to_date(start), to_date(end))
        except (TypeError, ValueError) as e:
            if isinstance(e, InvalidRangeError):
                raise
            raise InvalidRangeError(f"Unparseable date range {start!r}..{end!r}: {e}") from e

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end

    def __iter__(self) -> Iterator[date]:
        for offset in range(self.days):
            yield self.start + timedelta(days=offset)


@dataclass(frozen=True)
class DailyLoadPoint:
    date: date
    tss: float = 0.0


@dataclass(frozen=True)
class LoadSnapshot:
    """Fitness (CTL), fatigue (ATL) and form (TSB) for one day."""

    date: date
    tss: float
    ctl: float
    atl: float
    tsb: float

    def rounded(self) -> Dict[str, Any]:
        """Integer-rounded values for display."""
        return {
            "date": self.date.isoformat(),
            "tss": int(round(self.tss)),
            "ctl": int(round(self.ctl)),
            "atl": int(round(self.atl)),
            "tsb": int(round(self.tsb)),
        }


@dataclass(frozen=True)
class EfficiencySample:
    avg_power: float
    avg_heart_rate: float
    ef: float


@dataclass(frozen=True)
class DecouplingClass:
    """One row of the fixed decoupling interpretation table."""

    status: str
    color: str
    severity: int
    message: str
    description: str


@dataclass(frozen=True)
class DecouplingEstimate:
    ef: Optional[float]
    decoupling_pct: float
    interpretation: DecouplingClass
    is_estimate: bool = True


@dataclass
class PlannedWorkout:
    """A workout scheduled by the training plan."""

    id: str
    scheduled_date: date
    workout_type: str = "endurance"
    target_tss: Optional[float] = None
    target_duration_min: Optional[float] = None
    target_intensity_factor: Optional[float] = None
    week_number: Optional[int] = None

    def __post_init__(self):
        self.scheduled_date = to_date(self.scheduled_date)

    @property
    def is_rest_day(self) -> bool:
        return self.workout_type == "rest"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlannedWorkout":
        week = _pick(data, "week_number", "weekNumber")
        return cls(
            id=str(_pick(data, "id", "planned_workout_id")),
            scheduled_date=to_date(_pick(data, "scheduled_date", "scheduledDate", "date")),
            workout_type=_pick(data, "workout_type", "workoutType", default="endurance"),
            target_tss=_to_float(_pick(data, "target_tss", "targetTSS", "targetTss")),
            target_duration_min=_to_float(
                _pick(data, "target_duration_min", "targetDurationMin", "target_duration")
            ),
            target_intensity_factor=_to_float(
                _pick(data, "target_intensity_factor", "targetIntensityFactor")
            ),
            week_number=int(week) if week is not None else None,
        )


@dataclass
class ActivitySummary:
    """A completed activity as summarised by the activity store."""

    id: str
    date: date
    tss: Optional[float] = None
    duration_min: Optional[float] = None
    intensity_factor: Optional[float] = None
    normalized_power: Optional[float] = None
    average_power: Optional[float] = None
    max_power: Optional[float] = None
    average_heart_rate: Optional[float] = None
    max_heart_rate: Optional[float] = None
    sport_type: str = "ride"

    def __post_init__(self):
        self.date = to_date(self.date)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivitySummary":
        duration = _to_float(_pick(data, "duration_min", "durationMin", "duration"))
        if duration is None:
            moving_time = _to_float(_pick(data, "moving_time", "movingTime"))
            duration = moving_time / 60 if moving_time is not None else None
        return cls(
            id=str(_pick(data, "id", "activity_id")),
            date=to_date(_pick(data, "date", "start_date", "startDate")),
            tss=_to_float(_pick(data, "tss", "training_load")),
            duration_min=duration,
            intensity_factor=_to_float(_pick(data, "intensity_factor", "intensityFactor")),
            normalized_power=_to_float(_pick(data, "normalized_power", "normalizedPower")),
            average_power=_to_float(_pick(data, "average_power", "averagePower", "average_watts")),
            max_power=_to_float(_pick(data, "max_power", "maxPower", "max_watts")),
            average_heart_rate=_to_float(
                _pick(data, "average_heart_rate", "averageHeartRate", "average_heartrate")
            ),
            max_heart_rate=_to_float(_pick(data, "max_heart_rate", "maxHeartRate", "max_heartrate")),
            sport_type=str(_pick(data, "sport_type", "type", default="ride")).lower(),
        )


@dataclass
class CrossTrainingSession:
    """A non-cycling session (strength, yoga, running...) logged by the rider."""

    id: str
    date: date
    duration_min: float
    intensity: float = 5
    estimated_tss: Optional[float] = None
    tss_per_hour_base: Optional[float] = None
    tss_intensity_multiplier: Optional[float] = None

    def __post_init__(self):
        self.date = to_date(self.date)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrossTrainingSession":
        intensity = _to_float(data.get("intensity"))
        return cls(
            id=str(_pick(data, "id")),
            date=to_date(_pick(data, "date", "activity_date", "activityDate")),
            duration_min=_to_float(_pick(data, "duration_min", "duration_minutes", "durationMinutes")) or 0.0,
            intensity=intensity if intensity is not None else 5,
            estimated_tss=_to_float(_pick(data, "estimated_tss", "estimatedTss", "tss")),
            tss_per_hour_base=_to_float(_pick(data, "tss_per_hour_base")),
            tss_intensity_multiplier=_to_float(_pick(data, "tss_intensity_multiplier")),
        )


@dataclass(frozen=True)
class TrainingContext:
    """Load and plan state at the moment an adaptation is detected."""

    week_number: Optional[int] = None
    training_phase: Optional[TrainingPhase] = None
    ctl: Optional[float] = None
    atl: Optional[float] = None
    tsb: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TrainingContext":
        if not data:
            return cls()
        phase = _pick(data, "training_phase", "trainingPhase")
        week = _pick(data, "week_number", "weekNumber")
        return cls(
            week_number=int(week) if week is not None else None,
            training_phase=TrainingPhase(phase) if phase else None,
            ctl=_to_float(data.get("ctl")),
            atl=_to_float(data.get("atl")),
            tsb=_to_float(data.get("tsb")),
        )

    @classmethod
    def from_snapshot(cls, snapshot: LoadSnapshot, week_number: Optional[int] = None,
                      training_phase: Optional[TrainingPhase] = None) -> "TrainingContext":
        return cls(
            week_number=week_number,
            training_phase=training_phase,
            ctl=snapshot.ctl,
            atl=snapshot.atl,
            tsb=snapshot.tsb,
        )


@dataclass(frozen=True)
class WorkoutAdaptation:
    """Classified outcome of one planned-vs-actual pairing.

    Immutable once detected. The rider's ``reason`` and ``notes`` are the only
    attributes that change afterwards, through :meth:`with_feedback`.
    """

    planned_workout_id: Optional[str]
    activity_id: Optional[str]
    adaptation_type: AdaptationType
    detected_at: datetime
    planned_workout_type: Optional[str] = None
    planned_tss: Optional[float] = None
    planned_duration_min: Optional[float] = None
    planned_intensity_factor: Optional[float] = None
    actual_tss: Optional[float] = None
    actual_duration_min: Optional[float] = None
    actual_intensity_factor: Optional[float] = None
    actual_normalized_power: Optional[float] = None
    tss_delta: Optional[float] = None
    duration_delta: Optional[float] = None
    stimulus_achieved_pct: Optional[int] = None
    week_number: Optional[int] = None
    training_phase: Optional[TrainingPhase] = None
    ctl_at_time: Optional[float] = None
    atl_at_time: Optional[float] = None
    tsb_at_time: Optional[float] = None
    assessment: Optional[AdaptationAssessment] = None
    explanation: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    superseded: bool = False

    def with_feedback(self, reason: Optional[str] = None, notes: Optional[str] = None) -> "WorkoutAdaptation":
        """Return a copy carrying the rider's feedback; other fields are untouched."""
        if isinstance(reason, AdaptationReason):
            reason = reason.value
        return replace(
            self,
            reason=reason if reason is not None else self.reason,
            notes=notes if notes is not None else self.notes,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["adaptation_type"] = self.adaptation_type.value
        data["training_phase"] = self.training_phase.value if self.training_phase else None
        data["assessment"] = self.assessment.value if self.assessment else None
        data["detected_at"] = self.detected_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkoutAdaptation":
        phase = _pick(data, "training_phase", "trainingPhase")
        assessment = _pick(data, "assessment", "ai_assessment")
        stimulus = _to_float(_pick(data, "stimulus_achieved_pct", "stimulusAchievedPct"))
        week = _pick(data, "week_number", "weekNumber")
        planned_id = _pick(data, "planned_workout_id", "plannedWorkoutId")
        activity_id = _pick(data, "activity_id", "activityId")
        return cls(
            planned_workout_id=str(planned_id) if planned_id is not None else None,
            activity_id=str(activity_id) if activity_id is not None else None,
            adaptation_type=AdaptationType(_pick(data, "adaptation_type", "adaptationType")),
            detected_at=to_datetime(_pick(data, "detected_at", "detectedAt")),
            planned_workout_type=_pick(data, "planned_workout_type", "plannedWorkoutType"),
            planned_tss=_to_float(_pick(data, "planned_tss", "plannedTss")),
            planned_duration_min=_to_float(_pick(data, "planned_duration_min", "planned_duration")),
            planned_intensity_factor=_to_float(_pick(data, "planned_intensity_factor")),
            actual_tss=_to_float(_pick(data, "actual_tss", "actualTss")),
            actual_duration_min=_to_float(_pick(data, "actual_duration_min", "actual_duration")),
            actual_intensity_factor=_to_float(_pick(data, "actual_intensity_factor")),
            actual_normalized_power=_to_float(_pick(data, "actual_normalized_power")),
            tss_delta=_to_float(_pick(data, "tss_delta", "tssDelta")),
            duration_delta=_to_float(_pick(data, "duration_delta", "durationDelta")),
            stimulus_achieved_pct=int(round(stimulus)) if stimulus is not None else None,
            week_number=int(week) if week is not None else None,
            training_phase=TrainingPhase(phase) if phase else None,
            ctl_at_time=_to_float(_pick(data, "ctl_at_time", "ctlAtTime")),
            atl_at_time=_to_float(_pick(data, "atl_at_time", "atlAtTime")),
            tsb_at_time=_to_float(_pick(data, "tsb_at_time", "tsbAtTime")),
            assessment=AdaptationAssessment(assessment) if assessment else None,
            explanation=_pick(data, "explanation", "ai_explanation"),
            reason=_pick(data, "reason", "user_reason"),
            notes=_pick(data, "notes", "user_notes"),
            superseded=bool(data.get("superseded")),
        )


@dataclass(frozen=True)
class WeekAdaptationsSummary:
    total_planned: int
    total_completed: int
    total_adapted: int
    total_skipped: int
    avg_stimulus_achieved_pct: Optional[float]
    tss_planned: float
    tss_actual: float
    tss_achievement_pct: int
    adaptation_types: Dict[str, int] = field(default_factory=dict)


@dataclass
class CommonAdaptation:
    type: AdaptationType
    frequency: float
    avg_delta: Optional[float] = None


@dataclass
class UserTrainingPatterns:
    """Longitudinal behaviour profile, recomputed from the whole history."""

    avg_weekly_compliance: float
    compliance_by_day: Dict[str, float]
    preferred_workout_days: List[str]
    problematic_days: List[str]
    common_adaptations: List[CommonAdaptation]
    adaptation_reasons: Dict[str, float]
    avg_tss_achievement_pct: Optional[float]
    tends_to_undertrain: bool
    tends_to_overreach: bool
    total_workouts_tracked: int
    total_adaptations_tracked: int
    pattern_confidence: float
    min_data_for_predictions: int
    has_enough_data: bool
    first_tracked_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None
    workout_type_compliance: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["common_adaptations"] = [
            {"type": c.type.value, "frequency": c.frequency, "avg_delta": c.avg_delta}
            for c in self.common_adaptations
        ]
        for key in ("first_tracked_at", "last_updated_at"):
            value = getattr(self, key)
            data[key] = value.isoformat() if value else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserTrainingPatterns":
        first = data.get("first_tracked_at")
        last = data.get("last_updated_at")
        return cls(
            avg_weekly_compliance=data["avg_weekly_compliance"],
            compliance_by_day=dict(data.get("compliance_by_day") or {}),
            preferred_workout_days=list(data.get("preferred_workout_days") or []),
            problematic_days=list(data.get("problematic_days") or []),
            common_adaptations=[
                CommonAdaptation(AdaptationType(c["type"]), c["frequency"], c.get("avg_delta"))
                for c in data.get("common_adaptations") or []
            ],
            adaptation_reasons=dict(data.get("adaptation_reasons") or {}),
            avg_tss_achievement_pct=data.get("avg_tss_achievement_pct"),
            tends_to_undertrain=bool(data.get("tends_to_undertrain")),
            tends_to_overreach=bool(data.get("tends_to_overreach")),
            total_workouts_tracked=int(data.get("total_workouts_tracked") or 0),
            total_adaptations_tracked=int(data.get("total_adaptations_tracked") or 0),
            pattern_confidence=float(data.get("pattern_confidence") or 0.0),
            min_data_for_predictions=int(data.get("min_data_for_predictions") or 0),
            has_enough_data=bool(data.get("has_enough_data")),
            first_tracked_at=to_datetime(first) if first else None,
            last_updated_at=to_datetime(last) if last else None,
            workout_type_compliance=dict(data.get("workout_type_compliance") or {}),
        )
