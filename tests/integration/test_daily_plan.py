"""
Integration tests for daily plans: persistence, idempotence, regeneration,
coverage debt, item transitions and degraded inputs.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from mastery_hub.core.errors import InvalidTransitionError, NeedsOnboardingError, NotFoundError
from mastery_hub.core.models import ExamPhase, Modality, PlanItemStatus
from mastery_hub.db.database import session_scope
from mastery_hub.db.models import DailyPlanRow
from mastery_hub.study.engine import MasteryEngine
from mastery_hub.study.orchestrator import REVIEW_RATIONALE


class TestGetDailyPlan:
    def test_requires_onboarding(self, engine):
        with pytest.raises(NeedsOnboardingError):
            engine.orchestrator.get_daily_plan("stranger")

    def test_intensive_plan(self, engine, onboarded):
        plan = engine.orchestrator.get_daily_plan(onboarded)

        assert plan.phase == ExamPhase.INTENSIVE
        assert plan.daily_target_minutes == 180
        assert [(i.skill_id, i.modality) for i in plan.items] == [
            ("civ-juris", Modality.READ),
            ("civ-venue", Modality.READ),
            ("civ-juris", Modality.QUIZ),
            ("civ-venue", Modality.QUIZ),
        ]

    def test_same_day_is_idempotent(self, engine, onboarded, graph, session_factory, engine_config, clock):
        first = engine.orchestrator.get_daily_plan(onboarded)
        second = engine.orchestrator.get_daily_plan(onboarded)
        # A fresh engine has an empty cache and must read the stored plan
        fresh = MasteryEngine(graph, session_factory=session_factory, config=engine_config, clock=clock)
        third = fresh.orchestrator.get_daily_plan(onboarded)

        assert first.id == second.id == third.id
        assert [i.id for i in first.items] == [i.id for i in third.items]
        with session_scope(session_factory) as s:
            assert s.scalar(select(func.count()).select_from(DailyPlanRow)) == 1

    def test_new_day_new_plan(self, engine, onboarded, clock):
        first = engine.orchestrator.get_daily_plan(onboarded)
        clock.advance(days=1)

        second = engine.orchestrator.get_daily_plan(onboarded)

        assert second.id != first.id
        assert second.plan_date == first.plan_date + timedelta(days=1)

    def test_profile_daily_minutes(self, engine, clock):
        engine.onboarding.onboard("l2", written_exam_date=clock.today() + timedelta(days=100), daily_minutes=60)

        plan = engine.orchestrator.get_daily_plan("l2")

        assert plan.daily_target_minutes == 60

    def test_due_cards_become_reviews(self, engine, onboarded, clock):
        engine.attempts.record_graded(onboarded, "card-1", ["crim-mens"], "mcq", "practice", 1.0)
        # First successful review schedules the card for tomorrow
        clock.advance(days=1)

        plan = engine.orchestrator.get_daily_plan(onboarded)

        assert (plan.items[0].skill_id, plan.items[0].modality) == ("crim-mens", Modality.REVIEW)
        assert plan.items[0].rationale == REVIEW_RATIONALE

    def test_due_reviews_unavailable(self, engine, onboarded, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(engine.orchestrator, "get_urgent_reviews", broken)

        plan = engine.orchestrator.get_daily_plan(onboarded)

        assert plan.degraded_inputs == ["due_reviews"]
        assert plan.items
        assert all("reduced confidence: due_reviews unavailable" in i.rationale for i in plan.items)


class TestCoverageDebt:
    def test_untouched_units_are_fully_indebted(self, engine, onboarded):
        assert engine.orchestrator.calculate_coverage_debt(onboarded) == {"civ": 1.0, "crim": 1.0}

    def test_completed_items_pay_down_debt(self, engine, onboarded):
        plan = engine.orchestrator.get_daily_plan(onboarded)
        for item in plan.items[:2]:
            engine.orchestrator.start_item(item.id)
            engine.orchestrator.complete_item(item.id)

        debt = engine.orchestrator.calculate_coverage_debt(onboarded)

        assert debt["civ"] == pytest.approx(1 / 3)
        assert debt["crim"] == 1.0

    def test_skipped_items_do_not_count(self, engine, onboarded):
        plan = engine.orchestrator.get_daily_plan(onboarded)
        engine.orchestrator.skip_item(plan.items[0].id)

        assert engine.orchestrator.calculate_coverage_debt(onboarded)["civ"] == 1.0


class TestTransitions:
    def test_lifecycle(self, engine, onboarded):
        item = engine.orchestrator.get_daily_plan(onboarded).items[0]

        assert engine.orchestrator.start_item(item.id).status == PlanItemStatus.IN_PROGRESS
        assert engine.orchestrator.complete_item(item.id).status == PlanItemStatus.COMPLETED
        # The cached plan reflects the change
        reread = engine.orchestrator.get_daily_plan(onboarded)
        assert reread.items[0].status == PlanItemStatus.COMPLETED

    def test_cannot_complete_queued_item(self, engine, onboarded):
        item = engine.orchestrator.get_daily_plan(onboarded).items[0]

        with pytest.raises(InvalidTransitionError):
            engine.orchestrator.complete_item(item.id)

    def test_terminal_states_are_final(self, engine, onboarded):
        item = engine.orchestrator.get_daily_plan(onboarded).items[0]
        engine.orchestrator.skip_item(item.id)

        with pytest.raises(InvalidTransitionError):
            engine.orchestrator.start_item(item.id)

    def test_unknown_item(self, engine):
        with pytest.raises(NotFoundError):
            engine.orchestrator.start_item("missing")


class TestRegenerate:
    def test_keeps_touched_items_and_plan_id(self, engine, onboarded):
        plan = engine.orchestrator.get_daily_plan(onboarded)
        done = plan.items[0]
        engine.orchestrator.start_item(done.id)
        engine.orchestrator.complete_item(done.id)

        regenerated = engine.orchestrator.regenerate_plan(onboarded)

        assert regenerated.id == plan.id
        assert regenerated.items[0].id == done.id
        assert regenerated.items[0].status == PlanItemStatus.COMPLETED
        queued = [i for i in regenerated.items if i.status == PlanItemStatus.QUEUED]
        # Criminal Law now carries the larger coverage gap
        assert queued[0].skill_id == "crim-actus"
        assert [i.priority for i in regenerated.items] == list(range(1, len(regenerated.items) + 1))

    def test_creates_missing_plan(self, engine, onboarded):
        plan = engine.orchestrator.regenerate_plan(onboarded)

        assert plan.id == engine.orchestrator.get_daily_plan(onboarded).id
