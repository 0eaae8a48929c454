"""
Curriculum Models.

Units, skills and prerequisite edges. Written when a curriculum is
loaded; read by every engine component through the SkillGraph.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class UnitRow(Base):
    """An exam unit grouping skills."""

    __tablename__ = "units"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    exam_weight: Mapped[float] = mapped_column(Float, default=1.0)

    skills: Mapped[list[SkillRow]] = relationship(back_populates="unit")

    def __repr__(self) -> str:
        return f"<UnitRow {self.code}>"


class SkillRow(Base):
    """A micro-skill with exam weight and difficulty tier."""

    __tablename__ = "skills"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    unit_id: Mapped[str] = mapped_column(ForeignKey("units.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, default="")
    exam_weight: Mapped[float] = mapped_column(Float, default=0.0)
    difficulty_tier: Mapped[str] = mapped_column(String(16), default="core")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    unit: Mapped[UnitRow] = relationship(back_populates="skills")
    prerequisites: Mapped[list[SkillPrerequisiteRow]] = relationship(
        foreign_keys="SkillPrerequisiteRow.skill_id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<SkillRow {self.code} unit={self.unit_id}>"


class SkillPrerequisiteRow(Base):
    """Directed edge: skill requires prerequisite."""

    __tablename__ = "skill_prerequisites"

    skill_id: Mapped[str] = mapped_column(
        ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True
    )
    prerequisite_id: Mapped[str] = mapped_column(
        ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True
    )
