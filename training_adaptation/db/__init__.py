"""Database module for stored adaptations and training patterns."""

from .database import Database, get_db, close_db
from .models import UserTrainingPatternsRecord, WorkoutAdaptationRecord
from .store import AdaptationStore, PatternStore, StaleSnapshotError

__all__ = [
    "Database",
    "get_db",
    "close_db",
    "WorkoutAdaptationRecord",
    "UserTrainingPatternsRecord",
    "AdaptationStore",
    "PatternStore",
    "StaleSnapshotError",
]
