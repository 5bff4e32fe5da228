"""Command-line interface for the training adaptation tool."""

import json
import logging
import sys
from datetime import date

import click
import pandas as pd
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from .config import config
from .analysis import (
    aggregate_daily_tss,
    compute_load_series,
    compute_load_series_for_range,
    detect_week_adaptations,
    estimate_decoupling,
    interpret_tsb,
    load_trend,
    recompute_user_patterns,
    summarize_week,
)
from .analysis.records import DateRange, InvalidRangeError, TrainingContext, to_date
from .db import AdaptationStore, PatternStore

console = Console()

ASSESSMENT_STYLES = {
    "beneficial": "green",
    "acceptable": "blue",
    "minor_concern": "yellow",
    "concerning": "red",
}


def _fail(message: str):
    console.print(f"[red]❌ {message}[/red]")
    sys.exit(1)


def _read_json_list(path: str) -> list:
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        # Accept {"items": [...]} style exports
        data = next((v for v in data.values() if isinstance(v, list)), [])
    return data


def _context_from_load(csv_path: str, context: TrainingContext, day: date) -> TrainingContext:
    """Fill CTL/ATL/TSB in ``context`` from the load series up to ``day``."""
    activities = pd.read_csv(csv_path)
    dates = pd.to_datetime(activities["date"], errors="coerce").dropna()
    if dates.empty or dates.min().date() > day:
        return context

    history = DateRange.of(dates.min(), day)
    snapshots = compute_load_series(aggregate_daily_tss(activities.to_dict("records"), [], history))
    return TrainingContext.from_snapshot(
        snapshots[-1], week_number=context.week_number, training_phase=context.training_phase,
    )


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL from the environment")
def cli(log_level):
    """Training load and plan adaptation analysis."""
    logging.basicConfig(
        level=(log_level or config.LOG_LEVEL).upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    try:
        config.validate()
    except ValueError as e:
        _fail(f"Configuration Error: {e}")


@cli.command()
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--cross-training", "cross_training_path", type=click.Path(exists=True, dir_okay=False),
              help="CSV of cross-training sessions (date, duration_min, intensity)")
@click.option("--start", default=None, help="First day to show (YYYY-MM-DD)")
@click.option("--end", default=None, help="Last day to show (YYYY-MM-DD)")
@click.option("--days", default=30, help="Number of most recent days to display")
def load(csv_path, cross_training_path, start, end, days):
    """Show fitness (CTL), fatigue (ATL) and form (TSB) from a CSV of activities."""
    console.print(Panel.fit("📈 Training Load", style="bold blue"))

    activities = pd.read_csv(csv_path)
    if activities.empty or "date" not in activities.columns:
        _fail("Activity CSV needs at least a 'date' and a 'tss' column")

    sessions = pd.read_csv(cross_training_path).to_dict("records") if cross_training_path else []
    dates = pd.to_datetime(activities["date"], errors="coerce").dropna()
    if dates.empty:
        _fail("Activity CSV has no readable dates")

    try:
        history = DateRange.of(dates.min(), end or dates.max())
        points = aggregate_daily_tss(activities.to_dict("records"), sessions, history)
        if start or end:
            snapshots = compute_load_series_for_range(points, DateRange.of(start or history.start, history.end))
        else:
            snapshots = compute_load_series(points)
    except InvalidRangeError as e:
        _fail(str(e))

    if not snapshots:
        console.print("[yellow]No training days in the selected range.[/yellow]")
        return

    table = Table(title="Daily Training Load", box=box.ROUNDED)
    table.add_column("Date", style="black")
    table.add_column("Load", style="magenta")
    table.add_column("Fitness", style="blue")
    table.add_column("Fatigue", style="red")
    table.add_column("Form", style="green")

    for snapshot in snapshots[-days:]:
        row = snapshot.rounded()
        table.add_row(row["date"], str(row["tss"]), str(row["ctl"]), str(row["atl"]), f"{row['tsb']:+d}")
    console.print(table)

    latest = snapshots[-1]
    form = interpret_tsb(latest.tsb)
    trend = load_trend([p.tss for p in points if p.date <= latest.date])
    console.print(Panel(
        f"[bold]Fitness:[/bold] {latest.ctl:.1f}\n"
        f"[bold]Fatigue:[/bold] {latest.atl:.1f}\n"
        f"[bold]Form:[/bold] [{form.color}]{latest.tsb:+.1f} ({form.status})[/{form.color}]\n"
        f"[bold]Trend:[/bold] {trend}\n\n"
        f"{form.message}",
        title=f"📊 {latest.date.isoformat()}",
        box=box.ROUNDED,
    ))


@cli.command()
@click.option("--power", type=float, required=True, help="Average power (W)")
@click.option("--hr", type=float, required=True, help="Average heart rate (bpm)")
@click.option("--duration", type=float, required=True, help="Duration in minutes")
@click.option("--max-power", type=float, default=None, help="Maximum power (W)")
def decoupling(power, hr, duration, max_power):
    """Estimate aerobic decoupling from ride averages."""
    estimate = estimate_decoupling({
        "id": "cli",
        "date": date.today(),
        "duration_min": duration,
        "average_power": power,
        "average_heart_rate": hr,
        "max_power": max_power,
    })
    if estimate is None:
        _fail("Average power and heart rate must both be positive")

    interpretation = estimate.interpretation
    console.print(Panel(
        f"[bold]Efficiency Factor:[/bold] {estimate.ef:.2f}\n"
        f"[bold]Decoupling:[/bold] [{interpretation.color}]{estimate.decoupling_pct:.1f}%[/{interpretation.color}]"
        f" (estimated)\n\n"
        f"[bold]{interpretation.message}[/bold]\n{interpretation.description}",
        title="❤️ Aerobic Decoupling",
        box=box.ROUNDED,
    ))


@cli.command()
@click.argument("planned_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("activities_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--ftp", type=float, default=None, help="Functional threshold power (W)")
@click.option("--today", "today_str", default=None, help="Reference day for overdue workouts (YYYY-MM-DD)")
@click.option("--context", "context_path", type=click.Path(exists=True, dir_okay=False),
              help="JSON with week_number, training_phase, ctl, atl, tsb")
@click.option("--load-csv", "load_csv_path", type=click.Path(exists=True, dir_okay=False),
              help="Activity CSV (date, tss) used to take CTL/ATL/TSB at detection time")
@click.option("--save", "user_id", default=None, help="Store the results for this user")
def detect(planned_path, activities_path, ftp, today_str, context_path, load_csv_path, user_id):
    """Compare a week of planned workouts with completed activities."""
    console.print(Panel.fit("🗓️ Plan Adaptations", style="bold blue"))

    try:
        planned = _read_json_list(planned_path)
        activities = _read_json_list(activities_path)
        context = TrainingContext()
        if context_path:
            with open(context_path) as f:
                context = TrainingContext.from_dict(json.load(f))
        today = to_date(today_str) if today_str else None
        if load_csv_path:
            context = _context_from_load(load_csv_path, context, today or date.today())
        adaptations = detect_week_adaptations(planned, activities, ftp, context, today=today)
    except (ValueError, TypeError, KeyError) as e:
        _fail(f"Could not read workouts: {e}")

    if not adaptations:
        console.print("[yellow]Nothing to classify yet.[/yellow]")
        return

    table = Table(title="Adaptations", box=box.ROUNDED)
    table.add_column("Workout", style="black")
    table.add_column("Activity")
    table.add_column("Type", style="yellow")
    table.add_column("TSS", style="magenta")
    table.add_column("Stimulus", style="green")
    table.add_column("Assessment")

    for a in adaptations:
        planned_tss = f"{a.planned_tss:.0f}" if a.planned_tss is not None else "-"
        actual_tss = f"{a.actual_tss:.0f}" if a.actual_tss is not None else "-"
        assessment = a.assessment.value if a.assessment else "-"
        style = ASSESSMENT_STYLES.get(assessment, "black")
        table.add_row(
            a.planned_workout_id or "-",
            a.activity_id or "-",
            a.adaptation_type.value.replace("_", " "),
            f"{actual_tss}/{planned_tss}",
            f"{a.stimulus_achieved_pct}%" if a.stimulus_achieved_pct is not None else "-",
            f"[{style}]{assessment}[/{style}]",
        )
    console.print(table)

    summary = summarize_week(adaptations)
    avg_stimulus = (
        f"{summary.avg_stimulus_achieved_pct:.0f}%" if summary.avg_stimulus_achieved_pct is not None else "n/a"
    )
    console.print(Panel(
        f"[bold]Planned:[/bold] {summary.total_planned}   "
        f"[bold]Completed:[/bold] {summary.total_completed}   "
        f"[bold]Adapted:[/bold] {summary.total_adapted}   "
        f"[bold]Skipped:[/bold] {summary.total_skipped}\n"
        f"[bold]TSS:[/bold] {summary.tss_actual:.0f} / {summary.tss_planned:.0f} "
        f"({summary.tss_achievement_pct}%)\n"
        f"[bold]Average stimulus:[/bold] {avg_stimulus}",
        title="📊 Week Summary",
        box=box.ROUNDED,
    ))

    if user_id:
        ids = AdaptationStore().save_week(user_id, adaptations)
        console.print(f"[green]✅ Stored {len(ids)} adaptations for {user_id}[/green]")


@cli.command()
@click.argument("history_path", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option("--user", "user_id", default=None, help="Recompute from stored history for this user")
@click.option("--min-data", type=int, default=None, help="Workouts required before predictions")
def patterns(history_path, user_id, min_data):
    """Show training-behaviour patterns from the adaptation history."""
    console.print(Panel.fit("🔍 Training Patterns", style="bold blue"))

    if not history_path and not user_id:
        _fail("Pass a history JSON file or --user")

    try:
        if user_id:
            result = PatternStore().recompute(user_id, min_data_for_predictions=min_data)
        else:
            result = recompute_user_patterns(_read_json_list(history_path), min_data_for_predictions=min_data)
    except (ValueError, TypeError, KeyError) as e:
        _fail(f"Could not read adaptation history: {e}")

    if result is None:
        console.print("[yellow]No adaptation history yet - patterns unchanged.[/yellow]")
        return

    table = Table(title="Compliance by Day", box=box.ROUNDED)
    table.add_column("Day", style="black")
    table.add_column("Compliance", style="green")
    for day, compliance in result.compliance_by_day.items():
        table.add_row(day.title(), f"{compliance * 100:.0f}%")
    console.print(table)

    common = ", ".join(f"{c.type.value} ({c.frequency * 100:.0f}%)" for c in result.common_adaptations) or "none"
    achievement = (
        f"{result.avg_tss_achievement_pct:.0f}%" if result.avg_tss_achievement_pct is not None else "n/a"
    )
    tendency = "undertrains" if result.tends_to_undertrain else "overreaches" if result.tends_to_overreach else "on target"
    data_note = "" if result.has_enough_data else "\n[yellow]Not enough data for predictions yet.[/yellow]"

    console.print(Panel(
        f"[bold]Compliance:[/bold] {result.avg_weekly_compliance:.1f}%\n"
        f"[bold]Preferred days:[/bold] {', '.join(d.title() for d in result.preferred_workout_days) or '-'}\n"
        f"[bold]Problematic days:[/bold] {', '.join(d.title() for d in result.problematic_days) or '-'}\n"
        f"[bold]Common adaptations:[/bold] {common}\n"
        f"[bold]TSS achievement:[/bold] {achievement} ({tendency})\n"
        f"[bold]Confidence:[/bold] {result.pattern_confidence:.2f} "
        f"from {result.total_workouts_tracked} workouts{data_note}",
        title="📊 Profile",
        box=box.ROUNDED,
    ))


@cli.command()
@click.argument("record_id", type=int)
@click.option("--reason", type=click.Choice([
    "time_constraint", "felt_tired", "felt_good", "weather", "equipment", "coach_adjustment", "other",
]), default=None)
@click.option("--notes", default=None)
def feedback(record_id, reason, notes):
    """Attach a reason and notes to a stored adaptation."""
    try:
        updated = AdaptationStore().update_feedback(record_id, reason=reason, notes=notes)
    except KeyError as e:
        _fail(str(e))
    console.print(f"[green]✅ Updated {updated.adaptation_type.value} adaptation {record_id}[/green]")


def main():
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[orange]Operation cancelled by user.[/orange]")


if __name__ == "__main__":
    main()
