"""
Learner State Models.

Per-learner records:
- Exam profile (onboarding input, written exam date)
- Mastery state per skill (compare-and-swap versioned)
- Spaced repetition cards per content item
- Append-only attempt log
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ExamProfileRow(Base):
    """Onboarding record; its absence means the learner needs onboarding."""

    __tablename__ = "exam_profiles"

    learner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    written_exam_date: Mapped[date | None] = mapped_column(Date)
    strong_units: Mapped[list] = mapped_column(JSON, default=list)
    weak_units: Mapped[list] = mapped_column(JSON, default=list)
    daily_minutes: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class MasteryStateRow(Base):
    """
    Mastery estimate per learner per skill.

    `version` increments on every write; writers update with
    WHERE version = <read version> and retry on a miss.
    """

    __tablename__ = "mastery_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    skill_id: Mapped[str] = mapped_column(ForeignKey("skills.id"), nullable=False)

    p_mastery: Mapped[float] = mapped_column(Float, default=0.0)
    stability: Mapped[float] = mapped_column(Float, default=1.0)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    correct_count: Mapped[int] = mapped_column(Integer, default=0)
    last_practiced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    next_review_date: Mapped[date | None] = mapped_column(Date)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("learner_id", "skill_id", name="uq_mastery_learner_skill"),
        Index("idx_mastery_review", "learner_id", "next_review_date"),
    )

    def __repr__(self) -> str:
        return f"<MasteryStateRow learner={self.learner_id} skill={self.skill_id} p={self.p_mastery:.2f}>"


class SpacedRepetitionCardRow(Base):
    """SM-2 state per learner per content item."""

    __tablename__ = "spaced_repetition_cards"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    learner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    content_id: Mapped[str] = mapped_column(String(128), nullable=False)
    skill_id: Mapped[str | None] = mapped_column(ForeignKey("skills.id"))
    unit_id: Mapped[str | None] = mapped_column(String(64))
    title: Mapped[str] = mapped_column(Text, default="")

    easiness_factor: Mapped[float] = mapped_column(Float, default=2.5)
    interval: Mapped[int] = mapped_column(Integer, default=1)
    repetitions: Mapped[int] = mapped_column(Integer, default=0)
    next_review_date: Mapped[date | None] = mapped_column(Date)
    last_review_date: Mapped[date | None] = mapped_column(Date)
    last_quality: Mapped[int | None] = mapped_column(Integer)
    total_reviews: Mapped[int] = mapped_column(Integer, default=0)
    correct_reviews: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("learner_id", "content_id", name="uq_card_learner_content"),
        Index("idx_card_due", "learner_id", "next_review_date"),
    )


class AttemptRow(Base):
    """Append-only graded attempt."""

    __tablename__ = "attempts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    learner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    item_id: Mapped[str] = mapped_column(String(128), nullable=False)
    skill_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    format: Mapped[str] = mapped_column(String(16), nullable=False)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    activity_type: Mapped[str | None] = mapped_column(String(32))
    score_norm: Mapped[float] = mapped_column(Float, nullable=False)
    error_tags: Mapped[list] = mapped_column(JSON, default=list)
    feedback: Mapped[str | None] = mapped_column(Text)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_attempts_learner_time", "learner_id", "timestamp"),)


class WeeklyRankingRow(Base):
    """Points a learner earned in one week, with their rank among peers."""

    __tablename__ = "weekly_rankings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempts_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rank: Mapped[int | None] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (UniqueConstraint("learner_id", "week_start", name="uq_ranking_learner_week"),)
