"""
Typer CLI for the mastery-hub engine.

Commands:
    mastery-hub init-db                      - Create database tables
    mastery-hub load-curriculum FILE         - Load units/skills from YAML or JSON
    mastery-hub onboard LEARNER              - Create exam profile and seed priors
    mastery-hub plan LEARNER                 - Show today's plan (--refresh to rebuild)
    mastery-hub item ACTION ITEM_ID          - start / complete / skip a plan item
    mastery-hub review LEARNER CONTENT Q     - Review a spaced-repetition card (0-5)
    mastery-hub attempt LEARNER ITEM         - Record an attempt with a known score
    mastery-hub remediate LEARNER [SKILL]    - Diagnose remediation needs
    mastery-hub gates LEARNER SKILL          - Gate and verification status
    mastery-hub pacing                       - Evaluate a pacing state
    mastery-hub rankings                     - This week's leaderboard
    mastery-hub info                         - Show configuration

Usage:
    mastery-hub --help
    mastery-hub load-curriculum curriculum.yaml
    mastery-hub onboard alice --exam-date 2027-03-01 --weak CIV
    mastery-hub attempt alice q-17 --skill civ-jurisdiction --score 0.8 --mode timed
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from mastery_hub.core.errors import (
    CollaboratorError,
    InvalidInputError,
    InvalidTransitionError,
    NeedsOnboardingError,
    NotFoundError,
    SkillGraphError,
)
from mastery_hub.core.logging import configure_logging
from mastery_hub.core.models import ActivityType, AttemptFormat, AttemptMode, Severity

app = typer.Typer(
    help="mastery-hub: adaptive mastery and session orchestration engine",
    no_args_is_help=True,
)

console = Console()

SEVERITY_STYLE = {
    Severity.SEVERE: "bold red",
    Severity.MODERATE: "yellow",
    Severity.MILD: "green",
}


class ItemAction(str, Enum):
    START = "start"
    COMPLETE = "complete"
    SKIP = "skip"


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


# ========================================
# Helpers
# ========================================


@contextmanager
def _cli_errors() -> Iterator[None]:
    """Render engine errors as messages with distinct exit codes."""
    try:
        yield
    except NeedsOnboardingError as e:
        rprint(f"[yellow]![/yellow] {e}")
        rprint("  Run: [cyan]mastery-hub onboard <learner> --exam-date YYYY-MM-DD[/cyan]")
        raise typer.Exit(code=2)
    except (InvalidInputError, InvalidTransitionError, NotFoundError, SkillGraphError) as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    except CollaboratorError as e:
        rprint(f"[red]✗[/red] {e} (safe to retry)")
        raise typer.Exit(code=1)


def _engine():
    from mastery_hub.study.engine import MasteryEngine

    return MasteryEngine.from_settings()


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        raise InvalidInputError(f"Expected a date as YYYY-MM-DD, got {value!r}") from e


def _parse_scores(value: str) -> list[float]:
    try:
        return [float(s) for s in value.split(",") if s.strip()]
    except ValueError as e:
        raise InvalidInputError(f"Scores must be comma-separated numbers, got {value!r}") from e


# ========================================
# Setup
# ========================================


@app.command("init-db")
def init_db_command() -> None:
    """Create all tables. Safe to run multiple times."""
    from mastery_hub.db.database import init_db

    init_db()
    rprint("[green]✓[/green] Database initialized!")


@app.command("load-curriculum")
def load_curriculum(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Curriculum YAML or JSON"),
) -> None:
    """Validate a curriculum file and upsert it into the database."""
    from mastery_hub.db.database import session_scope
    from mastery_hub.db.queries import save_curriculum
    from mastery_hub.graph.loader import load_curriculum_file

    with _cli_errors():
        graph = load_curriculum_file(path)
        with session_scope() as s:
            save_curriculum(s, graph)

    rprint(f"[green]✓[/green] Loaded {len(graph.units)} units and {len(graph)} skills")


@app.command("onboard")
def onboard(
    learner: str = typer.Argument(..., help="Learner id"),
    exam_date: str | None = typer.Option(None, "--exam-date", help="Written exam date (YYYY-MM-DD)"),
    strong: list[str] = typer.Option([], "--strong", help="Strong unit (id or code), repeatable"),
    weak: list[str] = typer.Option([], "--weak", help="Weak unit (id or code), repeatable"),
    daily_minutes: int | None = typer.Option(None, "--daily-minutes", help="Daily study budget"),
) -> None:
    """Create the exam profile and seed mastery priors."""
    with _cli_errors():
        engine = _engine()
        result = engine.onboarding.onboard(
            learner,
            written_exam_date=_parse_date(exam_date),
            strong_units=strong,
            weak_units=weak,
            daily_minutes=daily_minutes,
        )

    verb = "Created" if result.created_profile else "Updated"
    rprint(f"[green]✓[/green] {verb} exam profile for [bold]{learner}[/bold]")
    if result.days_until_exam is not None:
        phase = engine.orchestrator.get_exam_phase(result.days_until_exam)
        rprint(f"  Exam in {result.days_until_exam} days ({phase.value} phase)")
    rprint(f"  Seeded {result.priors_created} mastery priors")


# ========================================
# Planning
# ========================================


@app.command("plan")
def plan(
    learner: str = typer.Argument(..., help="Learner id"),
    refresh: bool = typer.Option(False, "--refresh", help="Rebuild the queued part of today's plan"),
) -> None:
    """Show today's study plan."""
    with _cli_errors():
        engine = _engine()
        if refresh:
            daily = engine.orchestrator.regenerate_plan(learner)
        else:
            daily = engine.orchestrator.get_daily_plan(learner)

    table = Table(title=f"{daily.plan_date} - {daily.phase.value} phase ({daily.daily_target_minutes} min target)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Skill", style="cyan")
    table.add_column("Mode")
    table.add_column("Min", justify="right")
    table.add_column("Status")
    table.add_column("Why", style="dim")
    table.add_column("Item id", style="dim")

    for item in daily.items:
        table.add_row(
            str(item.priority),
            item.skill_name or item.skill_id,
            item.modality.value,
            str(item.estimated_minutes),
            item.status.value,
            item.rationale,
            item.id[:8],
        )
    console.print(table)
    rprint(f"  Total: {daily.total_minutes} min")

    if daily.degraded_inputs:
        rprint(f"[yellow]![/yellow] Built without: {', '.join(daily.degraded_inputs)}")


@app.command("item")
def plan_item(
    action: ItemAction = typer.Argument(..., help="start, complete or skip"),
    item_id: str = typer.Argument(..., help="Full plan item id"),
) -> None:
    """Move a plan item through queued -> in_progress -> completed|skipped."""
    with _cli_errors():
        engine = _engine()
        handler = {
            ItemAction.START: engine.orchestrator.start_item,
            ItemAction.COMPLETE: engine.orchestrator.complete_item,
            ItemAction.SKIP: engine.orchestrator.skip_item,
        }[action]
        item = handler(item_id)

    rprint(f"[green]✓[/green] {item.skill_name or item.skill_id}: {item.status.value}")


# ========================================
# Practice
# ========================================


@app.command("review")
def review(
    learner: str = typer.Argument(..., help="Learner id"),
    content_id: str = typer.Argument(..., help="Card content id"),
    quality: int = typer.Argument(..., help="Recall quality 0-5"),
) -> None:
    """Review a spaced-repetition card."""
    with _cli_errors():
        card = _engine().review_card(learner, content_id, quality)

    rprint(f"[green]✓[/green] Next review {card.next_review_date} (interval {card.interval}d)")
    rprint(f"  EF {card.easiness_factor:.2f}, repetitions {card.repetitions}")


@app.command("attempt")
def attempt(
    learner: str = typer.Argument(..., help="Learner id"),
    item_id: str = typer.Argument(..., help="Item id"),
    skill: list[str] = typer.Option(..., "--skill", "-s", help="Skill id, repeatable"),
    score: float = typer.Option(..., "--score", help="Normalized score 0-1"),
    format: AttemptFormat = typer.Option(AttemptFormat.MCQ, "--format"),
    mode: AttemptMode = typer.Option(AttemptMode.PRACTICE, "--mode"),
    activity: ActivityType | None = typer.Option(None, "--activity"),
    error_tag: list[str] = typer.Option([], "--error-tag", help="Error tag, repeatable"),
) -> None:
    """Record an attempt whose score is already known."""
    with _cli_errors():
        engine = _engine()
        result = engine.attempts.record_graded(
            learner_id=learner,
            item_id=item_id,
            skill_ids=skill,
            format=format,
            mode=mode,
            score_norm=score,
            error_tags=error_tag,
            activity_type=activity,
        )
        # Short-lived process: drain follow-up tasks inline
        engine.tasks.run_pending()

    for update in result.mastery_updates:
        colour = "green" if update.delta >= 0 else "red"
        rprint(
            f"  {update.skill_id}: {update.old_p_mastery:.0%} -> {update.new_p_mastery:.0%} "
            f"[{colour}]({update.delta:+.3f})[/{colour}]"
        )
    rprint(f"  Card due {result.card.next_review_date}")
    for verification in result.verifications:
        if verification.is_verified:
            rprint(f"[bold green]✓ {verification.skill_id} verified[/bold green]")
        else:
            rprint(f"[dim]  {verification.skill_id} not verified: {'; '.join(verification.failure_reasons)}[/dim]")


# ========================================
# Diagnostics
# ========================================


@app.command("remediate")
def remediate(
    learner: str = typer.Argument(..., help="Learner id"),
    skill: str | None = typer.Argument(None, help="Skill id (omit for all skills)"),
    unit: str | None = typer.Option(None, "--unit", help="Restrict to one unit id"),
) -> None:
    """Diagnose remediation for one skill or every struggling skill."""
    with _cli_errors():
        engine = _engine()
        if skill:
            found = engine.remediation.diagnose_and_prescribe(learner, skill)
            prescriptions = [found] if found else []
        else:
            prescriptions = engine.remediation.remediation_needs(learner, unit)

    if not prescriptions:
        rprint("[green]✓[/green] No remediation needed")
        return

    for p in prescriptions:
        style = SEVERITY_STYLE[p.severity]
        rprint(f"\n[{style}]{p.severity.value.upper()}[/{style}] {p.skill_name} (~{p.estimated_minutes} min)")
        for reason in p.reasons:
            rprint(f"  - {reason}")
        table = Table(show_header=True, box=None)
        table.add_column("Activity")
        table.add_column("Count", justify="right")
        table.add_column("Difficulty")
        for activity in p.prescribed_activities:
            table.add_row(activity.activity_type.value, str(activity.count), activity.difficulty.value)
        console.print(table)
        if p.focus_areas:
            rprint(f"  Focus: {', '.join(p.focus_areas)}")


@app.command("gates")
def gates(
    learner: str = typer.Argument(..., help="Learner id"),
    skill: str = typer.Argument(..., help="Skill id"),
) -> None:
    """Show gate and verification status for a skill."""
    with _cli_errors():
        engine = _engine()
        status = engine.gates.evaluate(learner, skill)
        verification = engine.gates.verify_skill(learner, skill)

    table = Table(title=f"Gates for {skill}")
    table.add_column("Gate", style="cyan")
    table.add_column("Passing")
    for label, passing in (
        ("Memory check", status.memory_check_passing),
        ("Quiz", status.quiz_passing),
        ("Rule drill", status.drill_passing),
        ("Issue spotter (timed, optional)", status.issue_spotter_passing),
        ("Overall", status.overall_passing),
    ):
        table.add_row(label, "[green]yes[/green]" if passing else "[red]no[/red]")
    console.print(table)

    for reason in status.failure_reasons:
        rprint(f"  [red]-[/red] {reason}")
    rprint(f"\nVerified: {'[green]yes[/green]' if verification.is_verified else '[yellow]no[/yellow]'}")
    for reason in verification.failure_reasons:
        rprint(f"  - {reason}")


@app.command("pacing")
def pacing(
    minutes_studied: float = typer.Option(0.0, "--minutes-studied"),
    since_break: float = typer.Option(0.0, "--since-break", help="Minutes since last break"),
    scores: str = typer.Option("", "--scores", help="Recent scores, oldest first (comma-separated)"),
    consecutive_wrong: int = typer.Option(0, "--consecutive-wrong"),
    skill: str | None = typer.Option(None, "--skill", help="Current skill id"),
    wrong_on_skill: int = typer.Option(0, "--wrong-on-skill", help="Consecutive wrong on the current skill"),
) -> None:
    """Evaluate a pacing state and print any break or switch suggestion."""
    from mastery_hub.core.engine_config import EngineConfig
    from mastery_hub.delivery.pacing import PacingMonitor, PacingState

    with _cli_errors():
        state = PacingState(
            minutes_studied=minutes_studied,
            minutes_since_break=since_break,
            recent_scores=_parse_scores(scores),
            consecutive_wrong=consecutive_wrong,
            current_skill_id=skill,
            consecutive_wrong_on_skill=wrong_on_skill,
        )
    monitor = PacingMonitor(EngineConfig.from_settings(get_settings()).pacing)

    suggestion = monitor.analyze(state)
    if suggestion:
        rprint(
            f"[yellow]Break[/yellow] ({suggestion.urgency.value}, {suggestion.duration_minutes} min): "
            f"{suggestion.message}"
        )
    else:
        rprint("[green]✓[/green] Keep going")

    switch = monitor.suggest_switch(state)
    if switch:
        rprint(f"[cyan]Switch[/cyan]: {switch.message}")


@app.command("rankings")
def rankings(limit: int = typer.Option(10, "--limit")) -> None:
    """Show this week's leaderboard."""
    entries = _engine().rankings.leaderboard(limit=limit)

    table = Table(title="Weekly rankings")
    table.add_column("Rank", justify="right")
    table.add_column("Learner", style="cyan")
    table.add_column("Points", justify="right")
    table.add_column("Attempts", justify="right")
    for entry in entries:
        table.add_row(str(entry.rank), entry.learner_id, str(entry.total_points), str(entry.attempts_completed))
    console.print(table)


@app.command("info")
def show_info() -> None:
    """Show configuration."""
    settings = get_settings()

    table = Table(title="mastery-hub Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Database URL", settings.database_url)
    table.add_row("Grader URL", settings.grader_url or "Not set")
    table.add_row("Content provider URL", settings.content_provider_url or "Not set")
    table.add_row("Log Level", settings.log_level)
    table.add_row("Gate thresholds", f"{settings.gate_memory_check}/{settings.gate_quiz}/{settings.gate_rule_drill}")
    table.add_row("Regenerate plan every", f"{settings.plan_regenerate_every_n_attempts} attempts")

    console.print(table)
    logger.debug("Settings: {}", settings.model_dump(exclude={"database_url"}))


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
