"""
Domain models for the mastery engine.

Plain dataclasses and string enums shared by every component. Persistence
lives in mastery_hub.db; these types carry no database state.

Design:
- Immutable facts (Attempt, ActivityMixItem) are frozen dataclasses
- Mutable per-learner state (MasteryState, SpacedRepetitionCard) is updated
  by returning new instances via dataclasses.replace, never in place
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import uuid4


def new_id() -> str:
    """Generate a string identifier for new records."""
    return uuid4().hex


# =============================================================================
# Enums
# =============================================================================


class DifficultyTier(str, Enum):
    """Curriculum tier of a skill."""

    FOUNDATION = "foundation"
    CORE = "core"
    ADVANCED = "advanced"


class AttemptFormat(str, Enum):
    """How an item was answered."""

    MCQ = "mcq"
    WRITTEN = "written"
    ORAL = "oral"
    DRAFTING = "drafting"
    FLASHCARD = "flashcard"


class AttemptMode(str, Enum):
    """Conditions an item was answered under."""

    PRACTICE = "practice"
    TIMED = "timed"
    EXAM_SIM = "exam_sim"

    @property
    def is_timed(self) -> bool:
        return self in {AttemptMode.TIMED, AttemptMode.EXAM_SIM}


class ActivityType(str, Enum):
    """Study activities a session blueprint can contain."""

    READING_NOTES = "READING_NOTES"
    MEMORY_CHECK = "MEMORY_CHECK"
    FLASHCARDS = "FLASHCARDS"
    WRITTEN_QUIZ = "WRITTEN_QUIZ"
    ISSUE_SPOTTER = "ISSUE_SPOTTER"
    RULE_ELEMENTS_DRILL = "RULE_ELEMENTS_DRILL"
    ESSAY_OUTLINE = "ESSAY_OUTLINE"
    FULL_ESSAY = "FULL_ESSAY"
    PAST_PAPER_STYLE = "PAST_PAPER_STYLE"
    ERROR_CORRECTION = "ERROR_CORRECTION"
    MIXED_REVIEW = "MIXED_REVIEW"


class Difficulty(str, Enum):
    """Requested item difficulty."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class GateCategory(str, Enum):
    """Attempt categories that carry a pass threshold."""

    MEMORY_CHECK = "memory_check"
    QUIZ = "quiz"
    ISSUE_SPOTTER = "issue_spotter"
    RULE_DRILL = "rule_drill"


class Severity(str, Enum):
    """Remediation severity, ordered mild < moderate < severe."""

    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def highest(cls, severities: list[Severity]) -> Severity:
        """Return the most severe entry (mild for an empty list)."""
        return max(severities, key=lambda s: s.rank, default=cls.MILD)


_SEVERITY_RANK = {Severity.MILD: 0, Severity.MODERATE: 1, Severity.SEVERE: 2}


class ExamPhase(str, Enum):
    """Coarse time-to-exam bucket driving the daily time budget."""

    FOUNDATION = "foundation"
    INTENSIVE = "intensive"
    REVISION = "revision"
    FINAL = "final"


class Modality(str, Enum):
    """What a plan item asks the learner to do."""

    READ = "READ"
    QUIZ = "QUIZ"
    DRAFT = "DRAFT"
    ORAL = "ORAL"
    REVIEW = "REVIEW"


class PlanItemStatus(str, Enum):
    """Lifecycle of a plan item."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class CardMaturity(str, Enum):
    """Spaced-repetition card maturity bucket."""

    NEW = "new"
    LEARNING = "learning"
    YOUNG = "young"
    MATURE = "mature"


class MasteryLevel(str, Enum):
    """Reporting bucket for a pMastery value."""

    NOT_STARTED = "not_started"  # 0%
    NOVICE = "novice"  # 1-39%
    DEVELOPING = "developing"  # 40-69%
    PROFICIENT = "proficient"  # 70-89%
    MASTERED = "mastered"  # 90-100%

    @classmethod
    def from_score(cls, score: float) -> MasteryLevel:
        if score <= 0:
            return cls.NOT_STARTED
        elif score < 0.4:
            return cls.NOVICE
        elif score < 0.7:
            return cls.DEVELOPING
        elif score < 0.9:
            return cls.PROFICIENT
        return cls.MASTERED

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


# =============================================================================
# Curriculum
# =============================================================================


@dataclass(frozen=True)
class Unit:
    """An exam unit (course) grouping skills."""

    id: str
    code: str
    name: str
    exam_weight: float = 1.0  # Declared weight of the unit in the exam


@dataclass(frozen=True)
class Skill:
    """A micro-skill in the curriculum graph."""

    id: str
    code: str
    unit_id: str
    exam_weight: float  # 0-1, sums to ~1 per unit
    difficulty_tier: DifficultyTier = DifficultyTier.CORE
    prerequisite_skill_ids: frozenset[str] = frozenset()
    name: str = ""
    is_active: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.code


# =============================================================================
# Learner State
# =============================================================================


@dataclass
class MasteryState:
    """Mastery estimate for one (learner, skill)."""

    learner_id: str
    skill_id: str
    p_mastery: float = 0.0
    stability: float = 1.0  # Days, coarse confidence measure
    attempt_count: int = 0
    correct_count: int = 0
    last_practiced_at: datetime | None = None
    next_review_date: date | None = None
    is_verified: bool = False
    version: int = 0  # Compare-and-swap token

    @property
    def level(self) -> MasteryLevel:
        return MasteryLevel.from_score(self.p_mastery)


@dataclass
class SpacedRepetitionCard:
    """SM-2 memory state for one (learner, content)."""

    learner_id: str
    content_id: str
    easiness_factor: float = 2.5
    interval: int = 1  # Days until next review
    repetitions: int = 0  # Consecutive successful reviews
    next_review_date: date | None = None
    total_reviews: int = 0
    correct_reviews: int = 0
    last_review_date: date | None = None
    last_quality: int | None = None
    skill_id: str | None = None
    unit_id: str | None = None
    title: str = ""
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class Attempt:
    """An immutable graded attempt."""

    learner_id: str
    item_id: str
    skill_ids: tuple[str, ...]
    format: AttemptFormat
    mode: AttemptMode
    score_norm: float
    timestamp: datetime
    error_tags: frozenset[str] = frozenset()
    activity_type: ActivityType | None = None
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class MasteryUpdate:
    """Before/after view of one mastery update."""

    skill_id: str
    old_p_mastery: float
    new_p_mastery: float
    delta: float
    old_stability: float
    new_stability: float
    was_success: bool


# =============================================================================
# Gates & Remediation
# =============================================================================


@dataclass
class GateStatus:
    """Per-skill gate evaluation over the lookback window."""

    skill_id: str
    memory_check_passing: bool
    quiz_passing: bool
    issue_spotter_passing: bool
    drill_passing: bool
    overall_passing: bool
    failure_reasons: list[str] = field(default_factory=list)
    category_means: dict[GateCategory, float] = field(default_factory=dict)


@dataclass
class VerificationResult:
    """Outcome of the timed-proof verification gate."""

    skill_id: str
    is_verified: bool
    p_mastery: float
    timed_pass_count: int
    hours_between_passes: float
    error_tags_cleared: bool
    failure_reasons: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ActivityMixItem:
    """A count of one activity type at a difficulty."""

    activity_type: ActivityType
    count: int
    difficulty: Difficulty = Difficulty.MEDIUM


@dataclass(frozen=True)
class ErrorPattern:
    """An error tag that recurred for a skill."""

    error_tag: str
    count_30d: int


@dataclass
class RemediationPrescription:
    """Derived remediation for one skill; recomputed on demand."""

    skill_id: str
    skill_name: str
    severity: Severity
    reasons: list[str]
    prescribed_activities: list[ActivityMixItem]
    estimated_minutes: int
    focus_areas: list[str] = field(default_factory=list)
    error_patterns: list[ErrorPattern] = field(default_factory=list)


# =============================================================================
# Session Plans
# =============================================================================


@dataclass
class PlanItem:
    """One queued activity in a daily plan."""

    skill_id: str
    modality: Modality
    estimated_minutes: int
    priority: int  # Lower = sooner
    rationale: str
    skill_name: str = ""
    status: PlanItemStatus = PlanItemStatus.QUEUED
    id: str = field(default_factory=new_id)


@dataclass
class SessionPlan:
    """A learner's plan for one calendar day."""

    learner_id: str
    plan_date: date
    phase: ExamPhase
    daily_target_minutes: int
    items: list[PlanItem] = field(default_factory=list)
    coverage_debt: dict[str, float] = field(default_factory=dict)
    degraded_inputs: list[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)

    @property
    def total_minutes(self) -> int:
        return sum(item.estimated_minutes for item in self.items)

    def minutes_for(self, modality: Modality) -> int:
        return sum(i.estimated_minutes for i in self.items if i.modality == modality)
