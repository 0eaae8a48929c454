"""
Centralized Queries and Row Mappers.

Reusable reads used across multiple services, plus the mapping between
ORM rows and the engine's domain dataclasses. Services never hand ORM rows
to callers; they go through these mappers.

Usage:
    from mastery_hub.db.queries import attempts_since, load_skill_graph

    graph = load_skill_graph(session)
"""

from __future__ import annotations

from datetime import UTC, date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mastery_hub.core.models import (
    ActivityType,
    Attempt,
    AttemptFormat,
    AttemptMode,
    DifficultyTier,
    ExamPhase,
    MasteryState,
    Modality,
    PlanItem,
    PlanItemStatus,
    SessionPlan,
    Skill,
    SpacedRepetitionCard,
    Unit,
)
from mastery_hub.db.models import (
    AttemptRow,
    DailyPlanRow,
    ExamProfileRow,
    MasteryStateRow,
    PlanItemRow,
    SkillPrerequisiteRow,
    SkillRow,
    SpacedRepetitionCardRow,
    UnitRow,
)
from mastery_hub.graph.skill_graph import SkillGraph


def aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# =============================================================================
# CURRICULUM
# =============================================================================


def load_skill_graph(session: Session) -> SkillGraph:
    """Build the SkillGraph from the curriculum tables."""
    units = [
        Unit(id=row.id, code=row.code, name=row.name, exam_weight=row.exam_weight)
        for row in session.scalars(select(UnitRow).order_by(UnitRow.code))
    ]

    prereqs: dict[str, set[str]] = {}
    for edge in session.scalars(select(SkillPrerequisiteRow)):
        prereqs.setdefault(edge.skill_id, set()).add(edge.prerequisite_id)

    skills = [
        Skill(
            id=row.id,
            code=row.code,
            unit_id=row.unit_id,
            exam_weight=row.exam_weight,
            difficulty_tier=DifficultyTier(row.difficulty_tier),
            prerequisite_skill_ids=frozenset(prereqs.get(row.id, ())),
            name=row.name,
            is_active=row.is_active,
        )
        for row in session.scalars(select(SkillRow).order_by(SkillRow.code))
    ]
    return SkillGraph(units, skills)


def save_curriculum(session: Session, graph: SkillGraph) -> None:
    """Upsert a validated SkillGraph into the curriculum tables."""
    for unit in graph.units:
        session.merge(
            UnitRow(id=unit.id, code=unit.code, name=unit.name, exam_weight=unit.exam_weight)
        )
    session.flush()

    for skill in graph.skills(include_inactive=True):
        session.merge(
            SkillRow(
                id=skill.id,
                code=skill.code,
                unit_id=skill.unit_id,
                name=skill.name,
                exam_weight=skill.exam_weight,
                difficulty_tier=skill.difficulty_tier.value,
                is_active=skill.is_active,
            )
        )
    session.flush()

    for skill in graph.skills(include_inactive=True):
        for prereq in skill.prerequisite_skill_ids:
            session.merge(SkillPrerequisiteRow(skill_id=skill.id, prerequisite_id=prereq))


# =============================================================================
# MASTERY STATE
# =============================================================================


def mastery_from_row(row: MasteryStateRow) -> MasteryState:
    return MasteryState(
        learner_id=row.learner_id,
        skill_id=row.skill_id,
        p_mastery=row.p_mastery,
        stability=row.stability,
        attempt_count=row.attempt_count,
        correct_count=row.correct_count,
        last_practiced_at=aware(row.last_practiced_at),
        next_review_date=row.next_review_date,
        is_verified=row.is_verified,
        version=row.version,
    )


def get_mastery_row(session: Session, learner_id: str, skill_id: str) -> MasteryStateRow | None:
    # Version-guarded UPDATEs bypass the identity map; always reload
    return session.scalar(
        select(MasteryStateRow)
        .where(
            MasteryStateRow.learner_id == learner_id,
            MasteryStateRow.skill_id == skill_id,
        )
        .execution_options(populate_existing=True)
    )


def learner_mastery(session: Session, learner_id: str) -> dict[str, MasteryState]:
    """All mastery states of a learner keyed by skill id."""
    rows = session.scalars(
        select(MasteryStateRow)
        .where(MasteryStateRow.learner_id == learner_id)
        .execution_options(populate_existing=True)
    )
    return {row.skill_id: mastery_from_row(row) for row in rows}


# =============================================================================
# SPACED REPETITION CARDS
# =============================================================================


def card_from_row(row: SpacedRepetitionCardRow) -> SpacedRepetitionCard:
    return SpacedRepetitionCard(
        id=row.id,
        learner_id=row.learner_id,
        content_id=row.content_id,
        skill_id=row.skill_id,
        unit_id=row.unit_id,
        title=row.title,
        easiness_factor=row.easiness_factor,
        interval=row.interval,
        repetitions=row.repetitions,
        next_review_date=row.next_review_date,
        last_review_date=row.last_review_date,
        last_quality=row.last_quality,
        total_reviews=row.total_reviews,
        correct_reviews=row.correct_reviews,
    )


def apply_card_to_row(card: SpacedRepetitionCard, row: SpacedRepetitionCardRow) -> None:
    """Copy the mutable SM-2 fields of a card onto its row."""
    row.easiness_factor = card.easiness_factor
    row.interval = card.interval
    row.repetitions = card.repetitions
    row.next_review_date = card.next_review_date
    row.last_review_date = card.last_review_date
    row.last_quality = card.last_quality
    row.total_reviews = card.total_reviews
    row.correct_reviews = card.correct_reviews


def card_to_row(card: SpacedRepetitionCard) -> SpacedRepetitionCardRow:
    row = SpacedRepetitionCardRow(
        id=card.id,
        learner_id=card.learner_id,
        content_id=card.content_id,
        skill_id=card.skill_id,
        unit_id=card.unit_id,
        title=card.title,
    )
    apply_card_to_row(card, row)
    return row


def get_card_row(session: Session, learner_id: str, content_id: str) -> SpacedRepetitionCardRow | None:
    return session.scalar(
        select(SpacedRepetitionCardRow).where(
            SpacedRepetitionCardRow.learner_id == learner_id,
            SpacedRepetitionCardRow.content_id == content_id,
        )
    )


def learner_cards(session: Session, learner_id: str, due_by: date | None = None) -> list[SpacedRepetitionCard]:
    """Active cards of a learner, optionally only those due on or before a date."""
    stmt = select(SpacedRepetitionCardRow).where(
        SpacedRepetitionCardRow.learner_id == learner_id,
        SpacedRepetitionCardRow.is_active.is_(True),
    )
    if due_by is not None:
        stmt = stmt.where(SpacedRepetitionCardRow.next_review_date <= due_by)
    stmt = stmt.order_by(SpacedRepetitionCardRow.next_review_date, SpacedRepetitionCardRow.id)
    return [card_from_row(row) for row in session.scalars(stmt)]


# =============================================================================
# ATTEMPTS
# =============================================================================


def attempt_from_row(row: AttemptRow) -> Attempt:
    return Attempt(
        id=row.id,
        learner_id=row.learner_id,
        item_id=row.item_id,
        skill_ids=tuple(row.skill_ids),
        format=AttemptFormat(row.format),
        mode=AttemptMode(row.mode),
        activity_type=ActivityType(row.activity_type) if row.activity_type else None,
        score_norm=row.score_norm,
        error_tags=frozenset(row.error_tags or ()),
        timestamp=aware(row.timestamp),
    )


def attempt_to_row(attempt: Attempt, feedback: str | None = None) -> AttemptRow:
    return AttemptRow(
        id=attempt.id,
        learner_id=attempt.learner_id,
        item_id=attempt.item_id,
        skill_ids=list(attempt.skill_ids),
        format=attempt.format.value,
        mode=attempt.mode.value,
        activity_type=attempt.activity_type.value if attempt.activity_type else None,
        score_norm=attempt.score_norm,
        error_tags=sorted(attempt.error_tags),
        feedback=feedback,
        timestamp=attempt.timestamp,
    )


def attempts_since(
    session: Session,
    learner_id: str,
    since: datetime | None = None,
    skill_id: str | None = None,
) -> list[Attempt]:
    """A learner's attempts in chronological order, optionally for one skill."""
    stmt = select(AttemptRow).where(AttemptRow.learner_id == learner_id)
    if since is not None:
        stmt = stmt.where(AttemptRow.timestamp >= since)
    stmt = stmt.order_by(AttemptRow.timestamp, AttemptRow.id)

    attempts = [attempt_from_row(row) for row in session.scalars(stmt)]
    if skill_id is not None:
        # skill_ids is a JSON list; filter portably in Python
        attempts = [a for a in attempts if skill_id in a.skill_ids]
    return attempts


def count_attempts(session: Session, learner_id: str) -> int:
    return session.scalar(
        select(func.count()).select_from(AttemptRow).where(AttemptRow.learner_id == learner_id)
    ) or 0


# =============================================================================
# EXAM PROFILES & PLANS
# =============================================================================


def get_exam_profile(session: Session, learner_id: str) -> ExamProfileRow | None:
    return session.get(ExamProfileRow, learner_id)


def plan_from_row(row: DailyPlanRow) -> SessionPlan:
    return SessionPlan(
        id=row.id,
        learner_id=row.learner_id,
        plan_date=row.plan_date,
        phase=ExamPhase(row.phase),
        daily_target_minutes=row.daily_target_minutes,
        coverage_debt=dict(row.coverage_debt or {}),
        degraded_inputs=list(row.degraded_inputs or []),
        items=[plan_item_from_row(item) for item in sorted(row.items, key=lambda i: i.priority)],
    )


def plan_item_from_row(row: PlanItemRow) -> PlanItem:
    return PlanItem(
        id=row.id,
        skill_id=row.skill_id,
        skill_name=row.skill_name,
        modality=Modality(row.modality),
        estimated_minutes=row.estimated_minutes,
        priority=row.priority,
        rationale=row.rationale,
        status=PlanItemStatus(row.status),
    )


def plan_item_to_row(item: PlanItem) -> PlanItemRow:
    return PlanItemRow(
        id=item.id,
        skill_id=item.skill_id,
        skill_name=item.skill_name,
        modality=item.modality.value,
        estimated_minutes=item.estimated_minutes,
        priority=item.priority,
        rationale=item.rationale,
        status=item.status.value,
    )


def get_plan_row(session: Session, learner_id: str, plan_date: date) -> DailyPlanRow | None:
    return session.scalar(
        select(DailyPlanRow).where(
            DailyPlanRow.learner_id == learner_id,
            DailyPlanRow.plan_date == plan_date,
        )
    )


def completed_skill_ids(session: Session, learner_id: str) -> set[str]:
    """Skills targeted by any completed plan item of a learner."""
    stmt = (
        select(PlanItemRow.skill_id)
        .join(DailyPlanRow, PlanItemRow.plan_id == DailyPlanRow.id)
        .where(
            DailyPlanRow.learner_id == learner_id,
            PlanItemRow.status == PlanItemStatus.COMPLETED.value,
        )
        .distinct()
    )
    return set(session.scalars(stmt))
