"""
Delivery: what the learner does next, and when to stop.

- SpacedRepetitionScheduler: SM-2 card reviews and due-card selection
- PacingMonitor / SessionTelemetry: live-session break and switch advice
"""

from mastery_hub.delivery.pacing import (
    BreakReason,
    BreakSuggestion,
    BreakUrgency,
    CumulativeStudy,
    PacingEventLog,
    PacingMonitor,
    PacingState,
    SessionTelemetry,
    SwitchSuggestion,
)
from mastery_hub.delivery.scheduler import (
    ExamReviewPlan,
    ReviewSessionSummary,
    SpacedRepetitionScheduler,
    StudyStats,
)

__all__ = [
    "BreakReason",
    "BreakSuggestion",
    "BreakUrgency",
    "CumulativeStudy",
    "ExamReviewPlan",
    "PacingEventLog",
    "PacingMonitor",
    "PacingState",
    "ReviewSessionSummary",
    "SessionTelemetry",
    "SpacedRepetitionScheduler",
    "StudyStats",
    "SwitchSuggestion",
]
