"""
Integration tests for the supporting services: weekly rankings, content
preloading, remediation over stored attempts and the pacing event log.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from mastery_hub.core.models import AttemptFormat, Difficulty, Severity
from mastery_hub.db.database import session_scope
from mastery_hub.db.models import SessionEventRow
from mastery_hub.delivery.pacing import BreakReason, BreakSuggestion, BreakUrgency, PacingState
from mastery_hub.integrations.protocols import Item
from mastery_hub.study.attempt_service import PRELOAD_CONTENT
from mastery_hub.study.engine import MasteryEngine
from mastery_hub.study.rankings import WeeklyRankings, week_start


class FakeContentProvider:
    def __init__(self):
        self.requests = []

    def generate_or_fetch_items(self, skill_id, format, difficulty, count):
        self.requests.append((skill_id, difficulty, count))
        return [Item(id=f"{skill_id}-{n}", skill_ids=(skill_id,), format=format, difficulty=difficulty) for n in range(count)]


class TestWeeklyRankings:
    def test_week_starts_on_monday(self):
        assert week_start(date(2026, 3, 5)) == date(2026, 3, 2)
        assert week_start(date(2026, 3, 2)) == date(2026, 3, 2)

    def test_ranked_by_points(self, session_factory, clock):
        rankings = WeeklyRankings(session_factory, clock)

        rankings.record("ana", 0.5)
        rankings.record("ben", 1.0)
        entry = rankings.record("ana", 1.0)

        assert (entry.total_points, entry.attempts_completed, entry.rank) == (15, 2, 1)
        assert [(e.learner_id, e.rank) for e in rankings.leaderboard()] == [("ana", 1), ("ben", 2)]

    def test_new_week_starts_empty(self, session_factory, clock):
        rankings = WeeklyRankings(session_factory, clock)
        rankings.record("ana", 1.0)

        clock.advance(days=7)

        assert rankings.leaderboard() == []
        assert len(rankings.leaderboard(week=clock.today() - timedelta(days=7))) == 1


class TestPreload:
    @pytest.fixture
    def provider(self):
        return FakeContentProvider()

    @pytest.fixture
    def engine(self, graph, session_factory, engine_config, clock, provider):
        return MasteryEngine(graph, session_factory=session_factory, config=engine_config, clock=clock, content_provider=provider)

    def test_attempt_preloads_next_items(self, engine, provider):
        result = engine.attempts.record_graded("l1", "i1", ["crim-actus"], "mcq", "practice", 1.0)
        engine.tasks.run_pending()

        assert PRELOAD_CONTENT in result.queued_tasks
        # Mastery 0.20 after the attempt -> easy items
        assert provider.requests == [("crim-actus", Difficulty.EASY, 5)]
        batch = engine.preloader.take("l1", "crim-actus", AttemptFormat.MCQ, Difficulty.EASY)
        assert len(batch) == 5
        assert engine.preloader.take("l1", "crim-actus", AttemptFormat.MCQ, Difficulty.EASY) is None

    def test_warm_cache_not_refetched(self, engine, provider, clock):
        assert engine.preloader.preload("l1", "crim-actus") == 5
        assert engine.preloader.preload("l1", "crim-actus") == 0

        clock.advance(hours=25)

        assert engine.preloader.preload("l1", "crim-actus") == 5
        assert len(provider.requests) == 2

    def test_expired_batches_are_dropped(self, engine, clock):
        engine.preloader.preload("l1", "crim-actus")
        engine.preloader.preload("l1", "crim-mens")
        assert engine.preloader.pending() == 2

        clock.advance(hours=25)
        engine.preloader.preload("l1", "civ-juris")

        assert engine.preloader.pending() == 1
        assert engine.preloader.take("l1", "civ-juris") is not None


class TestRemediationFromHistory:
    def test_consecutive_failures_severe_despite_high_mastery(self, engine, set_mastery):
        set_mastery("l1", "civ-juris", 0.95)
        assert engine.remediation.diagnose_and_prescribe("l1", "civ-juris") is None

        for n in range(3):
            engine.attempts.record_graded("l1", f"i{n}", ["civ-juris"], "mcq", "practice", 0.5)

        assert engine.store.get_state("l1", "civ-juris").p_mastery >= 0.7
        prescription = engine.remediation.diagnose_and_prescribe("l1", "civ-juris")
        assert prescription.severity == Severity.SEVERE
        assert "3 consecutive failed attempts" in prescription.reasons

    def test_prescription_not_reused_on_a_later_day(self, engine, set_mastery, clock):
        set_mastery("l1", "civ-juris", 0.95)
        for n in range(3):
            engine.attempts.record_graded("l1", f"i{n}", ["civ-juris"], "mcq", "practice", 0.5)
        assert engine.remediation.diagnose_and_prescribe("l1", "civ-juris").severity == Severity.SEVERE

        # The failures fall outside the lookback window
        clock.advance(days=31)

        assert engine.remediation.diagnose_and_prescribe("l1", "civ-juris") is None

    def test_needs_sorted_by_severity(self, engine, set_mastery):
        set_mastery("l1", "civ-juris", 0.5)
        set_mastery("l1", "crim-actus", 0.2)
        set_mastery("l1", "crim-mens", 0.9)

        needs = engine.remediation.remediation_needs("l1")

        assert [(p.skill_id, p.severity) for p in needs] == [
            ("crim-actus", Severity.SEVERE),
            ("civ-juris", Severity.MODERATE),
        ]
        assert [p.skill_id for p in engine.remediation.remediation_needs("l1", unit_id="civ")] == ["civ-juris"]


class TestPacingLog:
    def test_cumulative_study(self, engine, onboarded, clock):
        item = engine.orchestrator.get_daily_plan(onboarded).items[0]
        engine.orchestrator.start_item(item.id)
        clock.advance(minutes=20)
        engine.orchestrator.complete_item(item.id)
        engine.pacing_log.record_break_taken(onboarded, 5, user_initiated=True)
        engine.pacing_log.record_pacing_suggestion(
            onboarded, BreakSuggestion(BreakReason.TIME_THRESHOLD, BreakUrgency.LOW, 5, "Pomodoro")
        )

        study = engine.pacing_log.today_cumulative_study(onboarded)

        assert study.total_minutes == 20
        assert study.sessions_completed == 1
        assert study.breaks_taken == 1
        assert study.average_session_minutes == 20

    def test_switch_events_leave_mastery_alone(self, engine, onboarded, session_factory):
        before = engine.store.get_state(onboarded, "civ-juris")
        suggestion = engine.pacing.suggest_switch(
            PacingState(
                minutes_studied=15,
                minutes_since_break=15,
                current_skill_id="civ-juris",
                consecutive_wrong_on_skill=3,
            ),
            engine.orchestrator.get_daily_plan(onboarded),
        )

        engine.pacing_log.record_switch_suggestion(onboarded, suggestion, session_id="s1")
        engine.pacing_log.record_switch_response(
            onboarded, accepted=True, current_skill_id="civ-juris", new_skill_id=suggestion.suggested_skill_id
        )

        with session_scope(session_factory) as s:
            events = s.scalars(select(SessionEventRow).order_by(SessionEventRow.id)).all()
            logged = [(e.event_type, e.skill_id) for e in events]
        assert logged == [("SWITCH_SUGGESTED", "civ-juris"), ("SWITCH_ACCEPTED", "civ-juris")]
        assert suggestion.suggested_skill_id not in (None, "civ-juris")
        assert engine.store.get_state(onboarded, "civ-juris") == before
