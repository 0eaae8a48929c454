"""
Planning Models.

Daily plans, their items and live-session events (pacing suggestions,
breaks, switch responses).
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class DailyPlanRow(Base):
    """One plan per learner per calendar day."""

    __tablename__ = "daily_plans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    learner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_date: Mapped[date] = mapped_column(Date, nullable=False)
    phase: Mapped[str] = mapped_column(String(16), nullable=False)
    daily_target_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    coverage_debt: Mapped[dict] = mapped_column(JSON, default=dict)
    degraded_inputs: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    items: Mapped[list[PlanItemRow]] = relationship(
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlanItemRow.priority",
    )

    __table_args__ = (UniqueConstraint("learner_id", "plan_date", name="uq_plan_learner_date"),)

    def __repr__(self) -> str:
        return f"<DailyPlanRow learner={self.learner_id} date={self.plan_date} items={len(self.items)}>"


class PlanItemRow(Base):
    """A queued activity; moves queued -> in_progress -> completed|skipped."""

    __tablename__ = "plan_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    plan_id: Mapped[str] = mapped_column(
        ForeignKey("daily_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    skill_id: Mapped[str] = mapped_column(String(64), nullable=False)
    skill_name: Mapped[str] = mapped_column(Text, default="")
    modality: Mapped[str] = mapped_column(String(16), nullable=False)
    estimated_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    rationale: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="queued", nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    plan: Mapped[DailyPlanRow] = relationship(back_populates="items")


class SessionEventRow(Base):
    """Advisory pacing events; never read back into mastery state."""

    __tablename__ = "session_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(64), index=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    skill_id: Mapped[str | None] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_events_learner_time", "learner_id", "occurred_at"),)
