"""Database models for detected adaptations and training patterns."""

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

from ..analysis.records import UserTrainingPatterns, WorkoutAdaptation

Base = declarative_base()


def _utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo, so timestamps are stored as naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WorkoutAdaptationRecord(Base):
    """One detected adaptation. Only reason, notes and superseded change after insert."""

    __tablename__ = "workout_adaptations"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(50), nullable=False, index=True)
    planned_workout_id = Column(String(64), index=True)
    activity_id = Column(String(64), index=True)
    adaptation_type = Column(String(32), nullable=False)

    planned_workout_type = Column(String(32))
    planned_tss = Column(Float)
    planned_duration_min = Column(Float)
    planned_intensity_factor = Column(Float)

    actual_tss = Column(Float)
    actual_duration_min = Column(Float)
    actual_intensity_factor = Column(Float)
    actual_normalized_power = Column(Float)

    tss_delta = Column(Float)
    duration_delta = Column(Float)
    stimulus_achieved_pct = Column(Integer)

    # Context at detection time, never recomputed
    week_number = Column(Integer)
    training_phase = Column(String(20))
    ctl_at_time = Column(Float)
    atl_at_time = Column(Float)
    tsb_at_time = Column(Float)

    assessment = Column(String(20))
    explanation = Column(Text)
    reason = Column(String(50))
    notes = Column(Text)

    superseded = Column(Boolean, default=False, nullable=False)
    detected_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    @classmethod
    def from_adaptation(cls, user_id: str, adaptation: WorkoutAdaptation) -> "WorkoutAdaptationRecord":
        data = adaptation.to_dict()
        data["detected_at"] = _utc_naive(adaptation.detected_at)
        return cls(user_id=user_id, **data)

    def to_adaptation(self) -> WorkoutAdaptation:
        data = {column.name: getattr(self, column.name) for column in self.__table__.columns}
        return WorkoutAdaptation.from_dict(data)

    def __repr__(self):
        return (
            f"<WorkoutAdaptationRecord(planned={self.planned_workout_id}, "
            f"activity={self.activity_id}, type={self.adaptation_type})>"
        )


class UserTrainingPatternsRecord(Base):
    """The single upserted patterns snapshot per user.

    ``version`` increases on every write and guards against lost updates.
    """

    __tablename__ = "user_training_patterns"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_training_patterns_user"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String(50), nullable=False)
    version = Column(Integer, nullable=False, default=0)

    avg_weekly_compliance = Column(Float, nullable=False)
    avg_tss_achievement_pct = Column(Float)
    tends_to_undertrain = Column(Boolean, default=False)
    tends_to_overreach = Column(Boolean, default=False)
    total_workouts_tracked = Column(Integer, default=0)
    total_adaptations_tracked = Column(Integer, default=0)
    pattern_confidence = Column(Float, default=0.0)
    min_data_for_predictions = Column(Integer)
    has_enough_data = Column(Boolean, default=False)

    # JSON strings
    compliance_by_day = Column(Text)
    preferred_workout_days = Column(Text)
    problematic_days = Column(Text)
    common_adaptations = Column(Text)
    adaptation_reasons = Column(Text)
    workout_type_compliance = Column(Text)

    first_tracked_at = Column(DateTime)
    last_updated_at = Column(DateTime)

    JSON_FIELDS = (
        "compliance_by_day",
        "preferred_workout_days",
        "problematic_days",
        "common_adaptations",
        "adaptation_reasons",
        "workout_type_compliance",
    )

    @classmethod
    def columns_for(cls, patterns: UserTrainingPatterns) -> dict:
        """Column values for ``patterns``; structured fields become JSON."""
        data = patterns.to_dict()
        for key in cls.JSON_FIELDS:
            data[key] = json.dumps(data[key])
        data["first_tracked_at"] = _utc_naive(patterns.first_tracked_at)
        data["last_updated_at"] = _utc_naive(patterns.last_updated_at)
        return data

    def to_patterns(self) -> UserTrainingPatterns:
        data = {column.name: getattr(self, column.name) for column in self.__table__.columns}
        for key in self.JSON_FIELDS:
            data[key] = json.loads(data[key]) if data[key] else None
        return UserTrainingPatterns.from_dict(data)

    def __repr__(self):
        return (
            f"<UserTrainingPatternsRecord(user_id={self.user_id}, version={self.version}, "
            f"compliance={self.avg_weekly_compliance:.1f})>"
        )
