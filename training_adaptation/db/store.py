"""Persistence for adaptations and the per-user patterns snapshot."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from ..analysis.patterns import recompute_user_patterns
from ..analysis.records import AdaptationReason, UserTrainingPatterns, WorkoutAdaptation
from .database import Database, get_db
from .models import UserTrainingPatternsRecord, WorkoutAdaptationRecord

logger = logging.getLogger(__name__)


class StaleSnapshotError(Exception):
    """Raised when the patterns snapshot changed since the caller read it."""


class AdaptationStore:
    """Stores detected adaptations for a user."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def save_adaptation(self, user_id: str, adaptation: WorkoutAdaptation) -> int:
        """Insert one adaptation and return its row id."""
        with self.db.get_session() as session:
            record = WorkoutAdaptationRecord.from_adaptation(user_id, adaptation)
            session.add(record)
            session.flush()
            return record.id

    def save_week(self, user_id: str, adaptations: Iterable[WorkoutAdaptation]) -> List[int]:
        """Store a re-detected week, superseding earlier results for the same workouts.

        Earlier rows keep their user feedback; they are only flagged so that
        pattern recomputation ignores them.
        """
        adaptations = list(adaptations)
        planned_ids = {a.planned_workout_id for a in adaptations if a.planned_workout_id}
        activity_ids = {a.activity_id for a in adaptations if a.activity_id and not a.planned_workout_id}

        with self.db.get_session() as session:
            superseded = self._supersede(session, user_id, planned_ids, activity_ids)
            records = [WorkoutAdaptationRecord.from_adaptation(user_id, a) for a in adaptations]
            session.add_all(records)
            session.flush()
            ids = [r.id for r in records]

        logger.info(f"Stored {len(ids)} adaptations for {user_id}, superseded {superseded}")
        return ids

    def supersede(self, user_id: str, planned_workout_ids: Iterable[str]) -> int:
        """Flag current adaptations of the given planned workouts as superseded."""
        with self.db.get_session() as session:
            return self._supersede(session, user_id, set(planned_workout_ids), set())

    @staticmethod
    def _supersede(session, user_id: str, planned_ids: set, activity_ids: set) -> int:
        count = 0
        query = session.query(WorkoutAdaptationRecord).filter_by(user_id=user_id, superseded=False)
        if planned_ids:
            count += query.filter(WorkoutAdaptationRecord.planned_workout_id.in_(planned_ids)).update(
                {"superseded": True}, synchronize_session=False
            )
        if activity_ids:
            count += query.filter(
                WorkoutAdaptationRecord.planned_workout_id.is_(None),
                WorkoutAdaptationRecord.activity_id.in_(activity_ids),
            ).update({"superseded": True}, synchronize_session=False)
        return count

    def update_feedback(
        self,
        record_id: int,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> WorkoutAdaptation:
        """Attach the rider's reason and notes; nothing else is modified.

        Raises:
            KeyError: If no adaptation has ``record_id``
        """
        if reason is not None:
            reason = AdaptationReason(reason).value

        with self.db.get_session() as session:
            record = session.get(WorkoutAdaptationRecord, record_id)
            if record is None:
                raise KeyError(f"No adaptation with id {record_id}")
            updated = record.to_adaptation().with_feedback(reason=reason, notes=notes)
            record.reason = updated.reason
            record.notes = updated.notes
            return updated

    def history(self, user_id: str, include_superseded: bool = False) -> List[WorkoutAdaptation]:
        with self.db.get_session() as session:
            query = session.query(WorkoutAdaptationRecord).filter_by(user_id=user_id)
            if not include_superseded:
                query = query.filter_by(superseded=False)
            return [r.to_adaptation() for r in query.order_by(WorkoutAdaptationRecord.detected_at).all()]


class PatternStore:
    """Stores the single patterns snapshot per user with optimistic versioning."""

    def __init__(self, db: Optional[Database] = None, adaptations: Optional[AdaptationStore] = None):
        self.db = db or get_db()
        self.adaptations = adaptations or AdaptationStore(self.db)

    def _current(self, session, user_id: str) -> Optional[UserTrainingPatternsRecord]:
        return session.query(UserTrainingPatternsRecord).filter_by(user_id=user_id).first()

    def get_patterns(self, user_id: str) -> Optional[UserTrainingPatterns]:
        with self.db.get_session() as session:
            record = self._current(session, user_id)
            return record.to_patterns() if record else None

    def version(self, user_id: str) -> int:
        """Current snapshot version, 0 when the user has none yet."""
        with self.db.get_session() as session:
            record = self._current(session, user_id)
            return record.version if record else 0

    def upsert_patterns(
        self,
        user_id: str,
        patterns: UserTrainingPatterns,
        expected_version: Optional[int] = None,
    ) -> int:
        """Replace the user's snapshot entirely.

        Args:
            user_id: Owner of the snapshot
            patterns: New snapshot
            expected_version: Version the caller based its computation on, or
                None for last-writer-wins

        Returns:
            The new version number

        Raises:
            StaleSnapshotError: If the stored version differs from ``expected_version``
        """
        values = UserTrainingPatternsRecord.columns_for(patterns)

        with self.db.get_session() as session:
            record = self._current(session, user_id)
            current = record.version if record else 0
            if expected_version is not None and expected_version != current:
                raise StaleSnapshotError(
                    f"Patterns for {user_id} are at version {current}, expected {expected_version}"
                )

            if record is None:
                session.add(UserTrainingPatternsRecord(user_id=user_id, version=1, **values))
                try:
                    session.flush()
                except IntegrityError as e:
                    # Another writer stored the first snapshot after our read
                    raise StaleSnapshotError(f"Patterns for {user_id} were created concurrently") from e
                return 1

            # Compare-and-set so a concurrent writer between read and write is caught
            updated = (
                session.query(UserTrainingPatternsRecord)
                .filter_by(user_id=user_id, version=current)
                .update({**values, "version": current + 1}, synchronize_session=False)
            )
            if updated == 0:
                raise StaleSnapshotError(f"Patterns for {user_id} changed during update")
            return current + 1

    def recompute(
        self,
        user_id: str,
        min_data_for_predictions: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[UserTrainingPatterns]:
        """Recompute and store the user's patterns from their full history.

        With no history nothing is written and the prior snapshot is kept.
        """
        base_version = self.version(user_id)
        patterns = recompute_user_patterns(
            self.adaptations.history(user_id),
            min_data_for_predictions=min_data_for_predictions,
            now=now,
        )
        if patterns is None:
            return None

        version = self.upsert_patterns(user_id, patterns, expected_version=base_version)
        logger.info(f"Stored training patterns for {user_id} (version {version})")
        return patterns
