"""Tests for planned-versus-actual adaptation detection."""

from datetime import date, datetime, timezone

import pytest

from training_adaptation.analysis.adaptation import (
    ExecutionMetrics,
    classify_execution,
    detect_adaptation,
    detect_week_adaptations,
    estimate_intensity_factor,
    match_score,
    summarize_week,
)
from training_adaptation.analysis.records import (
    ActivitySummary,
    AdaptationAssessment,
    AdaptationType,
    PlannedWorkout,
    TrainingContext,
    TrainingPhase,
)

TODAY = date(2024, 6, 10)
DETECTED = datetime(2024, 6, 10, 8, 0, tzinfo=timezone.utc)


def planned(workout_id="p1", day=date(2024, 6, 5), **kwargs):
    kwargs.setdefault("target_tss", 100)
    kwargs.setdefault("target_duration_min", 90)
    return PlannedWorkout(id=workout_id, scheduled_date=day, **kwargs)


def ride(activity_id="a1", day=date(2024, 6, 5), **kwargs):
    kwargs.setdefault("tss", 100)
    kwargs.setdefault("duration_min", 90)
    return ActivitySummary(id=activity_id, date=day, **kwargs)


def detect(p, a, **kwargs):
    kwargs.setdefault("today", TODAY)
    kwargs.setdefault("detected_at", DETECTED)
    return detect_adaptation(p, a, **kwargs)


class TestDetectAdaptation:
    """Test single-workout classification."""

    def test_exact_match_completed(self):
        result = detect(
            planned(target_intensity_factor=0.8),
            ride(intensity_factor=0.81),
        )

        assert result.adaptation_type == AdaptationType.COMPLETED_AS_PLANNED
        assert result.stimulus_achieved_pct == 100
        assert result.tss_delta == 0
        assert result.duration_delta == 0
        assert result.assessment == AdaptationAssessment.ACCEPTABLE

    def test_reduced(self):
        result = detect(planned(), ride(tss=70))

        assert result.stimulus_achieved_pct == 70
        assert result.adaptation_type == AdaptationType.REDUCED
        assert result.tss_delta == -30

    def test_exceeded(self):
        result = detect(planned(), ride(tss=125, duration_min=120))

        assert result.adaptation_type == AdaptationType.EXCEEDED
        assert result.duration_delta == 30
        assert result.assessment == AdaptationAssessment.BENEFICIAL

    @pytest.mark.parametrize("tss,expected", [
        (89, AdaptationType.REDUCED),
        (90, AdaptationType.COMPLETED_AS_PLANNED),
        (110, AdaptationType.COMPLETED_AS_PLANNED),
        (111, AdaptationType.EXCEEDED),
    ])
    def test_band_edges(self, tss, expected):
        assert detect(planned(), ride(tss=tss)).adaptation_type == expected

    def test_substituted_when_intensity_drops(self):
        result = detect(
            planned(workout_type="vo2max", target_intensity_factor=1.0),
            ride(tss=100, intensity_factor=0.7),
        )

        assert result.adaptation_type == AdaptationType.SUBSTITUTED
        assert result.assessment == AdaptationAssessment.MINOR_CONCERN

    def test_intensity_drop_with_low_stimulus_is_reduced(self):
        result = detect(
            planned(target_intensity_factor=1.0),
            ride(tss=60, intensity_factor=0.7),
        )
        assert result.adaptation_type == AdaptationType.REDUCED

    def test_actual_if_derived_from_normalized_power(self):
        result = detect(
            planned(target_intensity_factor=0.95),
            ride(tss=100, normalized_power=180),
            user_ftp=300,
        )

        assert result.actual_intensity_factor == pytest.approx(0.6)
        assert result.adaptation_type == AdaptationType.SUBSTITUTED

    def test_skipped_past_workout(self):
        result = detect(planned(day=date(2024, 6, 5)), None)

        assert result.adaptation_type == AdaptationType.SKIPPED
        assert result.activity_id is None
        assert result.tss_delta is None
        assert result.duration_delta is None
        assert result.stimulus_achieved_pct is None
        assert result.assessment == AdaptationAssessment.CONCERNING

    def test_pending_workout_returns_none(self):
        assert detect(planned(day=TODAY), None) is None
        assert detect(planned(day=date(2024, 6, 12)), None) is None

    def test_unplanned(self):
        result = detect(None, ride())

        assert result.adaptation_type == AdaptationType.UNPLANNED
        assert result.planned_workout_id is None
        assert result.tss_delta is None
        assert result.stimulus_achieved_pct is None

    def test_needs_workout_or_activity(self):
        with pytest.raises(ValueError):
            detect(None, None)

    def test_missing_planned_tss_uses_duration(self):
        result = detect(planned(target_tss=None, target_duration_min=100), ride(tss=None, duration_min=60))

        assert result.stimulus_achieved_pct is None
        assert result.adaptation_type == AdaptationType.REDUCED

    def test_no_targets_is_completed(self):
        result = detect(planned(target_tss=None, target_duration_min=None), ride())

        assert result.adaptation_type == AdaptationType.COMPLETED_AS_PLANNED
        assert result.stimulus_achieved_pct is None

    def test_context_copied(self):
        context = TrainingContext(week_number=3, training_phase=TrainingPhase.BUILD, ctl=55.2, atl=70.1, tsb=-14.9)

        result = detect(planned(), ride(), context=context)

        assert result.week_number == 3
        assert result.training_phase == TrainingPhase.BUILD
        assert (result.ctl_at_time, result.atl_at_time, result.tsb_at_time) == (55.2, 70.1, -14.9)

    def test_context_from_dict(self):
        result = detect(planned(), ride(), context={"weekNumber": 2, "trainingPhase": "taper", "tsb": 5})

        assert result.week_number == 2
        assert result.training_phase == TrainingPhase.TAPER

    def test_negative_activity_tss_counts_as_zero(self):
        result = detect(planned(), ride(tss=-40))

        assert result.actual_tss == 0
        assert result.tss_delta == -100
        assert result.stimulus_achieved_pct == 0
        assert result.adaptation_type == AdaptationType.REDUCED

    def test_datetime_dates(self):
        workout = planned(day=datetime(2024, 6, 5, 18, 0))

        assert detect(workout, None, today=datetime(2024, 6, 10, 7, 0)).adaptation_type == AdaptationType.SKIPPED
        assert detect(workout, None, today=datetime(2024, 6, 5, 7, 0)) is None

    def test_unreadable_record_ignored(self):
        assert detect({"id": "p9", "scheduledDate": "someday"}, None) is None

        result = detect({"id": "p9"}, ride())
        assert result.adaptation_type == AdaptationType.UNPLANNED

    def test_dict_inputs(self):
        result = detect(
            {"id": "p9", "scheduledDate": "2024-06-05", "targetTSS": 80, "workoutType": "tempo"},
            {"id": "a9", "date": "2024-06-05", "tss": 80, "moving_time": 3600},
        )

        assert result.planned_workout_type == "tempo"
        assert result.actual_duration_min == 60
        assert result.adaptation_type == AdaptationType.COMPLETED_AS_PLANNED


class TestAssessments:
    """Test rule-based assessments."""

    def test_exceeded_in_taper(self):
        result = detect(planned(), ride(tss=150), context=TrainingContext(training_phase=TrainingPhase.TAPER))
        assert result.assessment == AdaptationAssessment.MINOR_CONCERN

    def test_exceeded_while_fatigued(self):
        result = detect(planned(), ride(tss=150), context=TrainingContext(tsb=-25))

        assert result.assessment == AdaptationAssessment.CONCERNING
        assert "TSB < -20" in result.explanation

    def test_reduced_key_session(self):
        result = detect(planned(workout_type="threshold"), ride(tss=85))
        assert result.assessment == AdaptationAssessment.MINOR_CONCERN

    def test_reduced_slightly(self):
        result = detect(planned(), ride(tss=85))

        assert result.assessment == AdaptationAssessment.ACCEPTABLE
        assert "~15%" in result.explanation

    def test_reduced_heavily(self):
        result = detect(planned(), ride(tss=50))
        assert result.assessment == AdaptationAssessment.CONCERNING

    def test_unplanned_acceptable(self):
        assert detect(None, ride()).assessment == AdaptationAssessment.ACCEPTABLE


class TestClassificationRules:
    def test_unknown_achievement_completed(self):
        metrics = ExecutionMetrics(achievement_pct=None, planned_if=0.9, actual_if=0.5)
        assert classify_execution(metrics) == AdaptationType.COMPLETED_AS_PLANNED

    @pytest.mark.parametrize("pct,expected", [
        (70, AdaptationType.REDUCED),
        (100, AdaptationType.COMPLETED_AS_PLANNED),
        (130, AdaptationType.EXCEEDED),
    ])
    def test_achievement_bands(self, pct, expected):
        metrics = ExecutionMetrics(achievement_pct=pct, planned_if=0.8, actual_if=0.8)
        assert classify_execution(metrics) == expected

    def test_estimate_intensity_factor(self):
        assert estimate_intensity_factor(normalized_power=250, ftp=250) == pytest.approx(1.0)
        assert estimate_intensity_factor(average_power=200, ftp=250) == pytest.approx(0.8)
        assert estimate_intensity_factor(tss=100, duration_min=60) == pytest.approx(1.0)
        assert estimate_intensity_factor() is None


class TestWeekDetection:
    """Test batch detection and matching."""

    def test_match_score(self):
        assert match_score(planned(), ride()) == pytest.approx(100)
        assert match_score(planned(), ride(day=date(2024, 6, 6))) == pytest.approx(60)
        assert match_score(planned(), ride(day=date(2024, 6, 7))) is None

    def test_week(self):
        workouts = [
            planned("p2", date(2024, 6, 6), target_tss=60, target_duration_min=60),
            planned("p1", date(2024, 6, 4)),
            planned("rest", date(2024, 6, 5), workout_type="rest"),
            planned("p3", date(2024, 6, 8)),
            planned("future", date(2024, 6, 12)),
        ]
        activities = [
            ride("a1", date(2024, 6, 4), tss=95),
            ride("a2", date(2024, 6, 7), tss=58, duration_min=62),
            ride("extra", date(2024, 6, 9), tss=30, duration_min=40),
        ]

        adaptations = detect_week_adaptations(
            workouts, activities, context={"week_number": 23}, today=TODAY, detected_at=DETECTED,
        )
        by_workout = {a.planned_workout_id: a for a in adaptations}

        assert [a.planned_workout_id for a in adaptations] == ["p1", "p2", "p3", None]
        assert by_workout["p1"].activity_id == "a1"
        assert by_workout["p2"].activity_id == "a2"
        assert by_workout["p3"].adaptation_type == AdaptationType.SKIPPED
        assert adaptations[-1].activity_id == "extra"
        assert adaptations[-1].adaptation_type == AdaptationType.UNPLANNED
        assert all(a.week_number == 23 for a in adaptations)

    def test_activity_claimed_once(self):
        workouts = [planned("p1"), planned("p2")]
        activities = [ride("a1")]

        adaptations = detect_week_adaptations(workouts, activities, today=TODAY, detected_at=DETECTED)

        assert [a.activity_id for a in adaptations] == ["a1", None]
        assert adaptations[1].adaptation_type == AdaptationType.SKIPPED

    def test_datetime_dates_match(self):
        workouts = [planned("p1", datetime(2024, 6, 5, 18, 0))]
        activities = [ride("a1", datetime(2024, 6, 6, 7, 15, tzinfo=timezone.utc))]

        adaptations = detect_week_adaptations(workouts, activities, today=TODAY, detected_at=DETECTED)

        assert [a.activity_id for a in adaptations] == ["a1"]

    def test_unreadable_records_skipped(self):
        workouts = [{"id": "dateless", "target_tss": 80}, planned("p1")]
        activities = [{"id": "broken", "date": "not-a-date", "tss": 50}, ride("a1")]

        adaptations = detect_week_adaptations(workouts, activities, today=TODAY, detected_at=DETECTED)

        assert [(a.planned_workout_id, a.activity_id) for a in adaptations] == [("p1", "a1")]

    def test_weak_match_rejected(self):
        workouts = [planned("p1", target_tss=300, target_duration_min=300)]
        activities = [ride("a1", day=date(2024, 6, 6), tss=10, duration_min=10)]

        adaptations = detect_week_adaptations(workouts, activities, today=TODAY, detected_at=DETECTED)

        assert [a.adaptation_type for a in adaptations] == [AdaptationType.SKIPPED, AdaptationType.UNPLANNED]


class TestSummarizeWeek:
    """Test week summaries."""

    def test_summary(self):
        adaptations = [
            detect(planned("p1"), ride("a1")),
            detect(planned("p2"), ride("a2", tss=70)),
            detect(planned("p3"), None),
            detect(None, ride("a4", tss=40)),
        ]

        summary = summarize_week(adaptations)

        assert summary.total_planned == 3
        assert summary.total_completed == 3
        assert summary.total_adapted == 1
        assert summary.total_skipped == 1
        assert summary.avg_stimulus_achieved_pct == pytest.approx(85)
        assert summary.tss_planned == 300
        assert summary.tss_actual == 210
        assert summary.tss_achievement_pct == 70
        assert summary.adaptation_types == {
            "completed_as_planned": 1, "reduced": 1, "skipped": 1, "unplanned": 1,
        }

    def test_no_planned_tss(self):
        summary = summarize_week([detect(None, ride())])

        assert summary.tss_achievement_pct == 0
        assert summary.avg_stimulus_achieved_pct is None

    def test_empty_week(self):
        assert summarize_week([]) is None
