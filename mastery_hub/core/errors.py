"""
Error taxonomy for the mastery engine.

- InvalidInputError: rejected before any state mutation
- NeedsOnboardingError: the learner has no exam profile yet
- CollaboratorError: grader/content provider unavailable; safe to retry
- SkillGraphError: curriculum graph invariants violated

Background task failures never surface as exceptions to callers.
"""

from __future__ import annotations


class MasteryHubError(Exception):
    """Base class for all engine errors."""


class InvalidInputError(MasteryHubError, ValueError):
    """Malformed input (quality rating, score, enum value)."""


class NeedsOnboardingError(MasteryHubError):
    """Orchestration requested before an exam profile exists."""

    def __init__(self, learner_id: str):
        super().__init__(
            f"Learner {learner_id} has no exam profile. Please complete onboarding."
        )
        self.learner_id = learner_id


class CollaboratorError(MasteryHubError):
    """An external collaborator (grader, content provider) failed."""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator} unavailable: {message}")
        self.collaborator = collaborator


class SkillGraphError(MasteryHubError):
    """Cycle, dangling prerequisite, or unknown skill in the curriculum graph."""


class NotFoundError(MasteryHubError, LookupError):
    """A referenced record does not exist."""


class InvalidTransitionError(MasteryHubError):
    """A plan item was moved to a status its current status does not allow."""


class ConcurrentUpdateError(MasteryHubError):
    """A compare-and-swap write kept losing to concurrent writers."""


def validate_score(score_norm: float) -> float:
    """Reject normalized scores outside [0, 1]."""
    if score_norm is None or not 0.0 <= float(score_norm) <= 1.0:
        raise InvalidInputError(f"scoreNorm must be within [0, 1], got {score_norm!r}")
    return float(score_norm)


def validate_quality(quality: int) -> int:
    """Reject SM-2 quality ratings outside 0..5."""
    if isinstance(quality, bool) or not isinstance(quality, int) or not 0 <= quality <= 5:
        raise InvalidInputError(f"quality must be an integer 0-5, got {quality!r}")
    return quality
