"""Tests for the command-line interface."""

import json
from datetime import datetime, timezone

import pytest
from click.testing import CliRunner

from training_adaptation.analysis.records import AdaptationType, WorkoutAdaptation
from training_adaptation.cli import cli
from training_adaptation.db import AdaptationStore, Database
from training_adaptation.db import database as database_module


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def activity_csv(tmp_path):
    path = tmp_path / "activities.csv"
    path.write_text(
        "id,date,tss\n"
        "a1,2024-05-01,50\n"
        "a2,2024-05-03,80\n"
        "a3,2024-05-05,60\n"
        "a4,2024-05-07,100\n"
    )
    return path


@pytest.fixture
def memory_db(monkeypatch):
    db = Database("sqlite:///:memory:")
    db.create_tables()
    monkeypatch.setattr(database_module, "_db", db)
    yield db
    db.close()


class TestLoadCommand:
    def test_load_table(self, runner, activity_csv):
        result = runner.invoke(cli, ["load", str(activity_csv)])

        assert result.exit_code == 0
        assert "Daily Training Load" in result.output
        assert "2024-05-07" in result.output

    def test_reversed_range_exits_with_error(self, runner, activity_csv):
        result = runner.invoke(cli, ["load", str(activity_csv), "--start", "2024-05-06", "--end", "2024-05-02"])

        assert result.exit_code == 1
        assert "before start" in result.output

    def test_cross_training(self, runner, activity_csv, tmp_path):
        sessions = tmp_path / "sessions.csv"
        sessions.write_text("id,date,duration_min,intensity\ns1,2024-05-02,60,5\n")

        result = runner.invoke(cli, ["load", str(activity_csv), "--cross-training", str(sessions)])

        assert result.exit_code == 0


class TestDecouplingCommand:
    def test_estimate(self, runner):
        result = runner.invoke(cli, ["decoupling", "--power", "250", "--hr", "150", "--duration", "120",
                                     "--max-power", "300"])

        assert result.exit_code == 0
        assert "6.0%" in result.output
        assert "Moderate decoupling" in result.output

    def test_zero_heart_rate(self, runner):
        result = runner.invoke(cli, ["decoupling", "--power", "250", "--hr", "0", "--duration", "60"])
        assert result.exit_code == 1


class TestDetectAndPatterns:
    def _write(self, path, data):
        path.write_text(json.dumps(data))
        return path

    def test_detect_week(self, runner, tmp_path):
        planned = self._write(tmp_path / "planned.json", [
            {"id": "p1", "scheduled_date": "2024-05-06", "target_tss": 100, "target_duration_min": 90},
            {"id": "p2", "scheduled_date": "2024-05-08", "target_tss": 60},
        ])
        activities = self._write(tmp_path / "activities.json", [
            {"id": "a1", "date": "2024-05-06", "tss": 70, "duration_min": 70},
        ])

        result = runner.invoke(cli, ["detect", str(planned), str(activities), "--today", "2024-05-12"])

        assert result.exit_code == 0
        assert "reduced" in result.output
        assert "skipped" in result.output
        assert "Week Summary" in result.output

    def test_detect_takes_context_from_load(self, runner, tmp_path, activity_csv, memory_db):
        planned = self._write(tmp_path / "planned.json", [
            {"id": "p1", "scheduled_date": "2024-05-08", "target_tss": 100},
        ])
        activities = self._write(tmp_path / "activities.json", [
            {"id": "a9", "date": "2024-05-08", "tss": 150},
        ])

        result = runner.invoke(cli, ["detect", str(planned), str(activities), "--today", "2024-05-12",
                                     "--load-csv", str(activity_csv), "--save", "rider"])

        assert result.exit_code == 0
        [stored] = AdaptationStore(memory_db).history("rider")
        assert stored.ctl_at_time > 0
        assert stored.tsb_at_time == pytest.approx(stored.ctl_at_time - stored.atl_at_time)

    def test_detect_and_save(self, runner, tmp_path, memory_db):
        planned = self._write(tmp_path / "planned.json", [
            {"id": "p1", "scheduled_date": "2024-05-06", "target_tss": 100},
        ])
        activities = self._write(tmp_path / "activities.json", [
            {"id": "a1", "date": "2024-05-06", "tss": 100},
        ])

        result = runner.invoke(cli, ["detect", str(planned), str(activities), "--today", "2024-05-12",
                                     "--save", "rider"])
        assert result.exit_code == 0

        result = runner.invoke(cli, ["patterns", "--user", "rider"])
        assert result.exit_code == 0
        assert "100.0%" in result.output

    def test_patterns_from_file(self, runner, tmp_path):
        history = self._write(tmp_path / "history.json", [
            {"adaptation_type": "completed_as_planned", "detected_at": "2024-05-06T08:00:00Z"},
            {"adaptation_type": "reduced", "detected_at": "2024-05-07T08:00:00Z", "planned_tss": 100,
             "actual_tss": 70, "reason": "felt_tired"},
        ])

        result = runner.invoke(cli, ["patterns", str(history)])

        assert result.exit_code == 0
        assert "50.0%" in result.output
        assert "Not enough data" in result.output

    def test_patterns_empty_history(self, runner, tmp_path):
        history = self._write(tmp_path / "history.json", [])

        result = runner.invoke(cli, ["patterns", str(history)])

        assert result.exit_code == 0
        assert "patterns unchanged" in result.output


class TestFeedbackCommand:
    def test_feedback_updates_stored_adaptation(self, runner, memory_db):
        store = AdaptationStore(memory_db)
        record_id = store.save_adaptation("rider", WorkoutAdaptation(
            planned_workout_id="p1",
            activity_id=None,
            adaptation_type=AdaptationType.SKIPPED,
            detected_at=datetime(2024, 5, 7, tzinfo=timezone.utc),
        ))

        result = runner.invoke(cli, ["feedback", str(record_id), "--reason", "weather", "--notes", "Storm"])

        assert result.exit_code == 0
        assert "skipped" in result.output
        assert store.history("rider")[0].reason == "weather"

    def test_missing_record(self, runner, memory_db):
        result = runner.invoke(cli, ["feedback", "42", "--notes", "x"])
        assert result.exit_code == 1
