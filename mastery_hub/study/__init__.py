"""Daily planning, attempt submission and onboarding."""

from .attempt_service import AttemptResult, AttemptService
from .engine import MasteryEngine
from .onboarding import OnboardingResult, OnboardingService
from .orchestrator import SessionOrchestrator, get_exam_phase
from .preload import ContentPreloader
from .rankings import WeeklyRankings

__all__ = [
    "AttemptResult",
    "AttemptService",
    "ContentPreloader",
    "MasteryEngine",
    "OnboardingResult",
    "OnboardingService",
    "SessionOrchestrator",
    "WeeklyRankings",
    "get_exam_phase",
]
