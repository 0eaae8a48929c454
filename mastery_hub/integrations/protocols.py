"""
Collaborator contracts.

The engine never generates items, grades free text or knows exam dates
itself; it talks to these interfaces. Implementations live alongside
(HTTP clients, database-backed calendar) and tests supply fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from mastery_hub.core.models import AttemptFormat, Difficulty


@dataclass(frozen=True)
class Item:
    """A gradable item produced by the content provider."""

    id: str
    skill_ids: tuple[str, ...]
    format: AttemptFormat
    difficulty: Difficulty = Difficulty.MEDIUM
    prompt: str = ""
    correct_answer: str | None = None  # Set for MCQ/flashcard items
    rubric: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GradeResult:
    """Grader verdict for one response."""

    score_norm: float
    feedback: str = ""
    error_tags: frozenset[str] = frozenset()


class ContentProvider(Protocol):
    def generate_or_fetch_items(
        self,
        skill_id: str,
        format: AttemptFormat,
        difficulty: Difficulty,
        count: int,
    ) -> list[Item]: ...


class Grader(Protocol):
    def grade(self, item: Item, response: str) -> GradeResult: ...


class ExamCalendar(Protocol):
    def days_until_written_exam(self, learner_id: str) -> int | None:
        """Days until the written exam, or None if the learner has no profile."""
        ...
