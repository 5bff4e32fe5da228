"""Tests for training pattern aggregation."""

from datetime import datetime, timedelta, timezone

import pytest

from training_adaptation.analysis.patterns import rank_days, recompute_user_patterns
from training_adaptation.analysis.records import AdaptationType, WorkoutAdaptation

MONDAY = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def adaptation(kind=AdaptationType.COMPLETED_AS_PLANNED, day_offset=0, **kwargs):
    return WorkoutAdaptation(
        planned_workout_id=kwargs.pop("planned_workout_id", "p"),
        activity_id=kwargs.pop("activity_id", "a"),
        adaptation_type=kind,
        detected_at=MONDAY + timedelta(days=day_offset),
        **kwargs,
    )


class TestRecomputeUserPatterns:
    """Test the patterns profile."""

    def test_sixty_adaptations_fifty_completed(self):
        history = [adaptation(day_offset=i) for i in range(50)]
        history += [adaptation(AdaptationType.REDUCED, day_offset=i, tss_delta=-20) for i in range(10)]

        patterns = recompute_user_patterns(history, now=NOW)

        assert patterns.avg_weekly_compliance == pytest.approx(83.3, abs=0.05)
        assert patterns.pattern_confidence == 1.0
        assert patterns.total_workouts_tracked == 60
        assert patterns.total_adaptations_tracked == 10
        assert patterns.has_enough_data is True
        assert patterns.last_updated_at == NOW
        assert patterns.first_tracked_at == MONDAY

    def test_empty_history_is_noop(self):
        assert recompute_user_patterns([]) is None

    def test_superseded_ignored(self):
        history = [adaptation(superseded=True)]
        assert recompute_user_patterns(history) is None

    def test_confidence_grows_with_history(self):
        confidences = [
            recompute_user_patterns([adaptation(day_offset=i) for i in range(n)]).pattern_confidence
            for n in (1, 10, 25, 50, 80)
        ]

        assert confidences == sorted(confidences)
        assert confidences[2] == pytest.approx(0.5)
        assert confidences[-1] == 1.0

    def test_has_enough_data_threshold(self):
        history = [adaptation(day_offset=i) for i in range(5)]

        assert recompute_user_patterns(history, min_data_for_predictions=5).has_enough_data is True
        assert recompute_user_patterns(history, min_data_for_predictions=6).has_enough_data is False
        assert recompute_user_patterns(history).min_data_for_predictions == 20

    def test_compliance_by_day(self):
        history = [
            adaptation(day_offset=0),
            adaptation(AdaptationType.SKIPPED, day_offset=7),
            adaptation(day_offset=1),
            adaptation(AdaptationType.SKIPPED, day_offset=2),
            adaptation(AdaptationType.REDUCED, day_offset=3),
            adaptation(day_offset=4),
        ]

        patterns = recompute_user_patterns(history)

        assert patterns.compliance_by_day == {
            "monday": 0.5, "tuesday": 1.0, "wednesday": 0.0, "thursday": 0.0, "friday": 1.0,
        }
        assert patterns.preferred_workout_days == ["tuesday", "friday", "monday"]
        assert patterns.problematic_days == ["wednesday", "thursday"]

    def test_problematic_days_need_low_compliance(self):
        history = [adaptation(day_offset=i) for i in range(7)]

        patterns = recompute_user_patterns(history)

        assert patterns.problematic_days == []
        assert patterns.preferred_workout_days == ["monday", "tuesday", "wednesday"]

    def test_rank_days_ties_monday_first(self):
        assert rank_days({"sunday": 0.5, "monday": 0.5, "friday": 0.9}) == ["friday", "monday", "sunday"]

    def test_common_adaptations(self):
        history = [adaptation(day_offset=i) for i in range(5)]
        history += [adaptation(AdaptationType.REDUCED, tss_delta=-30), adaptation(AdaptationType.REDUCED, tss_delta=-10)]
        history += [adaptation(AdaptationType.SKIPPED, activity_id=None)]
        history += [adaptation(AdaptationType.EXCEEDED, tss_delta=25)] * 2

        patterns = recompute_user_patterns(history)
        common = {c.type: c for c in patterns.common_adaptations}

        assert [c.type for c in patterns.common_adaptations][-1] == AdaptationType.SKIPPED
        assert common[AdaptationType.REDUCED].frequency == pytest.approx(0.2)
        assert common[AdaptationType.REDUCED].avg_delta == -20
        assert common[AdaptationType.SKIPPED].avg_delta is None
        assert AdaptationType.COMPLETED_AS_PLANNED not in common

    def test_reasons_normalised_over_subset(self):
        history = [adaptation(AdaptationType.REDUCED, reason="time_constraint")] * 3
        history += [adaptation(AdaptationType.SKIPPED, reason="felt_tired")]
        history += [adaptation() for _ in range(6)]

        patterns = recompute_user_patterns(history)

        assert patterns.adaptation_reasons == {"time_constraint": 0.75, "felt_tired": 0.25}
        assert sum(patterns.adaptation_reasons.values()) == pytest.approx(1.0)

    @pytest.mark.parametrize("actual,undertrain,overreach", [
        (80, True, False),
        (100, False, False),
        (120, False, True),
    ])
    def test_tendencies(self, actual, undertrain, overreach):
        history = [adaptation(planned_tss=100, actual_tss=actual) for _ in range(3)]

        patterns = recompute_user_patterns(history)

        assert patterns.avg_tss_achievement_pct == pytest.approx(actual)
        assert patterns.tends_to_undertrain is undertrain
        assert patterns.tends_to_overreach is overreach

    def test_negative_actual_tss_counts_as_zero(self):
        history = [adaptation(planned_tss=100, actual_tss=-40), adaptation(planned_tss=100, actual_tss=100)]

        patterns = recompute_user_patterns(history)

        assert patterns.avg_tss_achievement_pct == pytest.approx(50)

    def test_no_tss_pairs(self):
        patterns = recompute_user_patterns([adaptation(planned_tss=None, actual_tss=50)])

        assert patterns.avg_tss_achievement_pct is None
        assert not patterns.tends_to_undertrain and not patterns.tends_to_overreach

    def test_workout_type_compliance(self):
        history = [
            adaptation(planned_workout_type="endurance"),
            adaptation(AdaptationType.REDUCED, planned_workout_type="threshold"),
            adaptation(planned_workout_type="threshold"),
            adaptation(AdaptationType.UNPLANNED, planned_workout_id=None),
        ]

        patterns = recompute_user_patterns(history)

        assert patterns.workout_type_compliance == {"endurance": 1.0, "threshold": 0.5}

    def test_accepts_dicts_and_round_trips(self):
        history = [adaptation(day_offset=i).to_dict() for i in range(3)]

        patterns = recompute_user_patterns(history, now=NOW)
        restored = type(patterns).from_dict(patterns.to_dict())

        assert restored == patterns
