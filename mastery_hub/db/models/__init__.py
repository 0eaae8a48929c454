# SQLAlchemy models
from .base import Base
from .curriculum import SkillPrerequisiteRow, SkillRow, UnitRow
from .learner import (
    AttemptRow,
    ExamProfileRow,
    MasteryStateRow,
    SpacedRepetitionCardRow,
    WeeklyRankingRow,
)
from .planning import DailyPlanRow, PlanItemRow, SessionEventRow

__all__ = [
    # Base
    "Base",
    # Curriculum
    "UnitRow",
    "SkillRow",
    "SkillPrerequisiteRow",
    # Learner state
    "ExamProfileRow",
    "MasteryStateRow",
    "SpacedRepetitionCardRow",
    "AttemptRow",
    "WeeklyRankingRow",
    # Planning
    "DailyPlanRow",
    "PlanItemRow",
    "SessionEventRow",
]
