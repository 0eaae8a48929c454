"""
Session Orchestrator.

Decides what a learner studies today from:
1. Exam phase (days until the written exam)
2. Spaced-repetition reviews that are due
3. Per-unit coverage debt (share of a unit's skills never studied)

Plan construction, in strict order within the phase's time budget:
- Urgent reviews (REVIEW, 15 min each)
- New learning from the most uncovered units (READ, 25 min each)
- Practice on what was just queued, or on the most indebted units when
  nothing was (QUIZ, 20 min each)

The list is capped at the phase's sessions_per_day. One plan exists per
learner per calendar day; it is cached in-process, persisted, and only
rebuilt on explicit regeneration.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping, Sequence
from contextlib import nullcontext
from dataclasses import replace
from datetime import date

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.engine_config import OrchestratorConfig, PhaseConfig
from mastery_hub.core.errors import InvalidTransitionError, NeedsOnboardingError, NotFoundError
from mastery_hub.core.models import (
    ExamPhase,
    Modality,
    PlanItem,
    PlanItemStatus,
    SessionPlan,
    Unit,
)
from mastery_hub.db.database import session_scope
from mastery_hub.db.models import DailyPlanRow, PlanItemRow
from mastery_hub.db.queries import (
    completed_skill_ids,
    get_exam_profile,
    get_plan_row,
    learner_cards,
    plan_from_row,
    plan_item_from_row,
    plan_item_to_row,
)
from mastery_hub.delivery.scheduler import SpacedRepetitionScheduler, round_half_up
from mastery_hub.graph.skill_graph import SkillGraph
from mastery_hub.integrations.exam_calendar import DatabaseExamCalendar
from mastery_hub.integrations.protocols import ExamCalendar

REVIEW_RATIONALE = "Spaced repetition review due - prevents forgetting"
PRACTICE_RATIONALE = "Practice reinforces learning"
PRACTICE_FALLBACK_RATIONALE = "Practice on the largest coverage gap (nothing else queued today)"

COVERAGE_INPUT = "coverage_debt"
DUE_CARDS_INPUT = "due_reviews"

ALLOWED_TRANSITIONS: dict[PlanItemStatus, frozenset[PlanItemStatus]] = {
    PlanItemStatus.QUEUED: frozenset({PlanItemStatus.IN_PROGRESS, PlanItemStatus.SKIPPED}),
    PlanItemStatus.IN_PROGRESS: frozenset({PlanItemStatus.COMPLETED, PlanItemStatus.SKIPPED}),
    PlanItemStatus.COMPLETED: frozenset(),
    PlanItemStatus.SKIPPED: frozenset(),
}


def get_exam_phase(days_to_written: int, config: OrchestratorConfig | None = None) -> ExamPhase:
    """Bucket the days left before the written exam into a phase."""
    cfg = config or OrchestratorConfig()
    if days_to_written > cfg.foundation_after_days:
        return ExamPhase.FOUNDATION
    if days_to_written > cfg.intensive_after_days:
        return ExamPhase.INTENSIVE
    if days_to_written > cfg.revision_after_days:
        return ExamPhase.REVISION
    return ExamPhase.FINAL


class SessionOrchestrator:
    """
    Builds and tracks daily study plans.

    build_plan() is pure; get_daily_plan() gathers its inputs from storage,
    tolerating failures of the coverage and due-review reads (degraded
    mode), and persists the result.
    """

    def __init__(
        self,
        graph: SkillGraph,
        scheduler: SpacedRepetitionScheduler | None = None,
        session_factory: sessionmaker[Session] | None = None,
        config: OrchestratorConfig | None = None,
        calendar: ExamCalendar | None = None,
        clock: Clock | None = None,
    ):
        self.graph = graph
        self.clock = clock or SystemClock()
        self.scheduler = scheduler or SpacedRepetitionScheduler(clock=self.clock)
        self._session_factory = session_factory
        self.config = config or OrchestratorConfig()
        self.calendar = calendar or DatabaseExamCalendar(session_factory, self.clock)
        self._cache: dict[tuple[str, date], SessionPlan] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # Inputs
    # =========================================================================

    def get_exam_phase(self, days_to_written: int) -> ExamPhase:
        return get_exam_phase(days_to_written, self.config)

    def phase_config(self, phase: ExamPhase) -> PhaseConfig:
        return self.config.phases[phase]

    def calculate_coverage_debt(self, learner_id: str, session: Session | None = None) -> dict[str, float]:
        """
        Exposure debt per unit: 1 - practised / total active skills.

        A skill counts as practised once any completed plan item targeted
        it, whatever the score. Units without skills carry no debt.
        """
        with self._get_session(session) as s:
            practiced = completed_skill_ids(s, learner_id)
        return self._debt_from_practiced(practiced)

    def get_urgent_reviews(self, learner_id: str, session: Session | None = None) -> list[str]:
        """Skill ids of due cards, most urgent first, without duplicates."""
        with self._get_session(session) as s:
            cards = learner_cards(s, learner_id, due_by=self.clock.today())

        due = self.scheduler.get_due_cards(cards, limit=self.config.max_urgent_reviews)
        skill_ids: dict[str, None] = {}
        for card in due:
            skill_id = card.skill_id or (card.content_id if card.content_id in self.graph else None)
            if skill_id is not None:
                skill_ids[skill_id] = None
        return list(skill_ids)

    # =========================================================================
    # Plan construction
    # =========================================================================

    def build_plan(
        self,
        learner_id: str,
        days_to_written: int,
        coverage_debt: Mapping[str, float] | None,
        urgent_reviews: Sequence[str] | None,
        practiced: Iterable[str] = (),
        daily_target: int | None = None,
        plan_date: date | None = None,
    ) -> SessionPlan:
        """
        Allocate today's items from already-gathered inputs.

        Args:
            learner_id: Learner the plan is for
            days_to_written: Days until the written exam
            coverage_debt: Debt per unit id, or None if it could not be computed
            urgent_reviews: Skill ids due for review, or None if unavailable
            practiced: Skill ids already studied (new learning prefers others)
            daily_target: Override for the phase's daily minutes
            plan_date: Calendar day of the plan (defaults to today)
        """
        cfg = self.config
        phase = self.get_exam_phase(days_to_written)
        pc = self.phase_config(phase)
        target = daily_target or pc.daily_minutes_target
        practiced_ids = set(practiced)

        review_minutes = round_half_up(target * pc.review_ratio)
        new_minutes = round_half_up(target * pc.new_learning_ratio)
        practice_minutes = round_half_up(target * pc.practice_ratio)

        degraded = []
        if coverage_debt is None:
            degraded.append(COVERAGE_INPUT)
        if urgent_reviews is None:
            degraded.append(DUE_CARDS_INPUT)

        items: list[PlanItem] = []
        queued: set[str] = set()

        def add(skill_id: str, modality: Modality, minutes: int, rationale: str) -> None:
            skill = self.graph.skill(skill_id)
            items.append(
                PlanItem(
                    skill_id=skill_id,
                    skill_name=skill.display_name,
                    modality=modality,
                    estimated_minutes=minutes,
                    priority=len(items) + 1,
                    rationale=rationale,
                )
            )
            queued.add(skill_id)

        # 1. Urgent reviews
        review_count = review_minutes // cfg.review_item_minutes
        for skill_id in urgent_reviews or ():
            if review_count <= 0:
                break
            skill = self.graph.get(skill_id)
            if skill is None or not skill.is_active or skill_id in queued:
                continue
            add(skill_id, Modality.REVIEW, cfg.review_item_minutes, REVIEW_RATIONALE)
            review_count -= 1

        # 2. New learning by coverage debt
        new_count = new_minutes // cfg.new_item_minutes
        for unit, debt in self._units_by_debt(coverage_debt):
            if new_count <= 0:
                break
            for skill in self._learning_order(unit.id, practiced_ids):
                if new_count <= 0:
                    break
                if skill.id in queued:
                    continue
                if debt is None:
                    rationale = f"{unit.name} by exam weight (coverage data unavailable)"
                else:
                    rationale = f"{unit.name} coverage gap: {round_half_up(debt * 100)}%"
                add(skill.id, Modality.READ, cfg.new_item_minutes, rationale)
                new_count -= 1

        # 3. Practice on what was just queued, else on the most indebted units
        practice_count = practice_minutes // cfg.practice_item_minutes
        sources = [i.skill_id for i in items if i.modality in (Modality.READ, Modality.REVIEW)]
        rationale = PRACTICE_RATIONALE
        if not sources:
            sources = self._fallback_practice_skills(coverage_debt, practiced_ids)
            rationale = PRACTICE_FALLBACK_RATIONALE
        sources = sources[: cfg.practice_source_window]
        if sources:
            for index in range(practice_count):
                if len(items) >= pc.sessions_per_day:
                    break
                add(sources[index % len(sources)], Modality.QUIZ, cfg.practice_item_minutes, rationale)

        items = items[: pc.sessions_per_day]
        if degraded:
            note = f" (reduced confidence: {', '.join(degraded)} unavailable)"
            items = [replace(item, rationale=item.rationale + note) for item in items]

        return SessionPlan(
            learner_id=learner_id,
            plan_date=plan_date or self.clock.today(),
            phase=phase,
            daily_target_minutes=target,
            items=items,
            coverage_debt=dict(coverage_debt or {}),
            degraded_inputs=degraded,
        )

    # =========================================================================
    # Daily plan
    # =========================================================================

    def get_daily_plan(self, learner_id: str, custom_minutes: int | None = None) -> SessionPlan:
        """
        Today's plan, generated on first request and reused afterwards.

        Raises:
            NeedsOnboardingError: The learner has no exam profile
        """
        today = self.clock.today()
        key = (learner_id, today)

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            with session_scope(self._session_factory) as s:
                row = get_plan_row(s, learner_id, today)
                if row is not None:
                    plan = plan_from_row(row)
                    self._cache[key] = plan
                    return plan

            plan = self._generate(learner_id, today, custom_minutes)
            try:
                with session_scope(self._session_factory) as s:
                    s.add(self._plan_to_row(plan))
            except IntegrityError:
                # Another process stored today's plan first
                with session_scope(self._session_factory) as s:
                    plan = plan_from_row(get_plan_row(s, learner_id, today))

            self._cache[key] = plan

        logger.info(
            "Plan for {} on {}: {} items, {} min, phase {}",
            learner_id,
            today,
            len(plan.items),
            plan.total_minutes,
            plan.phase.value,
        )
        return plan

    def regenerate_plan(self, learner_id: str) -> SessionPlan:
        """
        Rebuild the queued tail of today's plan.

        Started, completed and skipped items are kept as they are; the plan
        keeps its id. Creates the plan if none exists yet.
        """
        today = self.clock.today()
        key = (learner_id, today)

        with self._lock:
            with session_scope(self._session_factory) as s:
                row = get_plan_row(s, learner_id, today)
                if row is None:
                    self._cache.pop(key, None)
                    return self.get_daily_plan(learner_id)

                kept = [plan_item_from_row(i) for i in row.items if i.status != PlanItemStatus.QUEUED.value]
                fresh = self._generate(learner_id, today, row.daily_target_minutes)

                kept_keys = {(i.skill_id, i.modality) for i in kept}
                cap = self.phase_config(fresh.phase).sessions_per_day
                tail = [i for i in fresh.items if (i.skill_id, i.modality) not in kept_keys]
                tail = tail[: max(0, cap - len(kept))]
                next_priority = max((i.priority for i in kept), default=0) + 1
                tail = [replace(item, priority=next_priority + n) for n, item in enumerate(tail)]

                for item_row in [i for i in row.items if i.status == PlanItemStatus.QUEUED.value]:
                    row.items.remove(item_row)
                s.flush()
                row.items.extend(plan_item_to_row(item) for item in tail)
                row.phase = fresh.phase.value
                row.coverage_debt = fresh.coverage_debt
                row.degraded_inputs = fresh.degraded_inputs
                row.updated_at = self.clock.now()
                s.flush()
                plan = plan_from_row(row)

            self._cache[key] = plan

        logger.info("Regenerated plan for {}: {} kept, {} queued", learner_id, len(kept), len(tail))
        return plan

    def invalidate(self, learner_id: str, plan_date: date | None = None) -> None:
        """Drop a cached plan so the next read goes back to storage."""
        with self._lock:
            self._cache.pop((learner_id, plan_date or self.clock.today()), None)

    # =========================================================================
    # Item lifecycle
    # =========================================================================

    def start_item(self, item_id: str) -> PlanItem:
        return self._transition(item_id, PlanItemStatus.IN_PROGRESS)

    def complete_item(self, item_id: str) -> PlanItem:
        """Mark an item completed; its skill stops counting as coverage debt."""
        return self._transition(item_id, PlanItemStatus.COMPLETED)

    def skip_item(self, item_id: str) -> PlanItem:
        return self._transition(item_id, PlanItemStatus.SKIPPED)

    def _transition(self, item_id: str, target: PlanItemStatus) -> PlanItem:
        with session_scope(self._session_factory) as s:
            row = s.get(PlanItemRow, item_id)
            if row is None:
                raise NotFoundError(f"Plan item {item_id} not found")

            current = PlanItemStatus(row.status)
            if target not in ALLOWED_TRANSITIONS[current]:
                raise InvalidTransitionError(f"Cannot move plan item from {current.value} to {target.value}")

            now = self.clock.now()
            row.status = target.value
            if target == PlanItemStatus.IN_PROGRESS:
                row.started_at = now
            else:
                row.finished_at = now
            item = plan_item_from_row(row)
            learner_id, plan_date = row.plan.learner_id, row.plan.plan_date

        self.invalidate(learner_id, plan_date)
        logger.debug("Plan item {} -> {}", item_id, target.value)
        return item

    # =========================================================================
    # Helpers
    # =========================================================================

    def _generate(self, learner_id: str, today: date, custom_minutes: int | None) -> SessionPlan:
        days = self.calendar.days_until_written_exam(learner_id)
        if days is None:
            raise NeedsOnboardingError(learner_id)

        daily_target = custom_minutes
        practiced: set[str] = set()
        coverage: dict[str, float] | None = None
        reviews: list[str] | None = None

        with session_scope(self._session_factory) as s:
            if daily_target is None:
                profile = get_exam_profile(s, learner_id)
                daily_target = profile.daily_minutes if profile else None

            try:
                practiced = completed_skill_ids(s, learner_id)
                coverage = self._debt_from_practiced(practiced)
            except SQLAlchemyError:
                logger.warning("Coverage debt unavailable for {}, planning without it", learner_id)
                s.rollback()

            try:
                reviews = self.get_urgent_reviews(learner_id, session=s)
            except SQLAlchemyError:
                logger.warning("Due reviews unavailable for {}, planning without them", learner_id)
                s.rollback()

        return self.build_plan(
            learner_id,
            days,
            coverage,
            reviews,
            practiced=practiced,
            daily_target=daily_target,
            plan_date=today,
        )

    def _debt_from_practiced(self, practiced: set[str]) -> dict[str, float]:
        by_unit = self.graph.skills_by_unit()
        debt = {}
        for unit in self.graph.units:
            skills = by_unit.get(unit.id, [])
            if not skills:
                debt[unit.id] = 0.0
                continue
            done = sum(1 for skill in skills if skill.id in practiced)
            debt[unit.id] = 1.0 - done / len(skills)
        return debt

    def _units_by_debt(self, coverage_debt: Mapping[str, float] | None) -> list[tuple[Unit, float | None]]:
        units = self.graph.units
        if coverage_debt is None:
            return [(u, None) for u in sorted(units, key=lambda u: (-u.exam_weight, u.code))]

        indebted = [u for u in units if coverage_debt.get(u.id, 0.0) > self.config.min_unit_debt]
        indebted.sort(key=lambda u: (-coverage_debt[u.id], -u.exam_weight, u.code))
        return [(u, coverage_debt[u.id]) for u in indebted]

    def _fallback_practice_skills(
        self, coverage_debt: Mapping[str, float] | None, practiced: set[str]
    ) -> list[str]:
        """
        Practice targets when no review or new-learning item was queued.

        Takes one skill per indebted unit in turn (most indebted first),
        preferring studied skills, then skills whose prerequisites are met.
        """
        per_unit = [
            [
                sk.id
                for sk in sorted(self._learning_order(unit.id, practiced), key=lambda sk: sk.id not in practiced)
                if self.graph.prerequisites_satisfied(sk.id, practiced)
            ]
            for unit, _ in self._units_by_debt(coverage_debt)
        ]
        ordered = []
        for rank in range(max((len(ids) for ids in per_unit), default=0)):
            ordered.extend(ids[rank] for ids in per_unit if rank < len(ids))
        return ordered

    def _learning_order(self, unit_id: str, practiced: set[str]):
        """Unstudied skills first, then those whose prerequisites are met, heaviest first."""
        return sorted(
            self.graph.skills_in_unit(unit_id),
            key=lambda sk: (
                sk.id in practiced,
                not self.graph.prerequisites_satisfied(sk.id, practiced),
                -sk.exam_weight,
                sk.code,
            ),
        )

    def _plan_to_row(self, plan: SessionPlan) -> DailyPlanRow:
        now = self.clock.now()
        return DailyPlanRow(
            id=plan.id,
            learner_id=plan.learner_id,
            plan_date=plan.plan_date,
            phase=plan.phase.value,
            daily_target_minutes=plan.daily_target_minutes,
            coverage_debt=plan.coverage_debt,
            degraded_inputs=plan.degraded_inputs,
            created_at=now,
            updated_at=now,
            items=[plan_item_to_row(item) for item in plan.items],
        )

    def _get_session(self, session: Session | None):
        if session is not None:
            return nullcontext(session)
        return session_scope(self._session_factory)
