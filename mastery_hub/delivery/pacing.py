"""
Session Pacing and Fatigue Detection.

Watches a live study session and emits advisory signals:
- Break suggestions (time on task, wrong-answer streaks, accuracy drops)
- Skill switch suggestions (repeated failure on the same skill)

Signals are advisory only. Nothing here touches mastery state or the
daily plan; callers decide whether to act, and responses are logged as
session events.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import Enum
from statistics import fmean

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.engine_config import PacingConfig
from mastery_hub.core.errors import validate_score
from mastery_hub.core.models import PlanItemStatus, SessionPlan
from mastery_hub.db.database import session_scope
from mastery_hub.db.models import DailyPlanRow, PlanItemRow, SessionEventRow
from mastery_hub.db.queries import aware

# =============================================================================
# Signals
# =============================================================================


class BreakUrgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class BreakReason(str, Enum):
    EXTENDED_SESSION = "extended_session"
    CONSECUTIVE_WRONG = "consecutive_wrong"
    PERFORMANCE_DROP = "performance_drop"
    TIME_THRESHOLD = "time_threshold"


class SessionEventType(str, Enum):
    PACING_SUGGESTION = "PACING_SUGGESTION"
    BREAK_TAKEN = "BREAK_TAKEN"
    SWITCH_SUGGESTED = "SWITCH_SUGGESTED"
    SWITCH_ACCEPTED = "SWITCH_ACCEPTED"
    SWITCH_DECLINED = "SWITCH_DECLINED"


@dataclass(frozen=True)
class BreakSuggestion:
    """A suggested break."""

    reason: BreakReason
    urgency: BreakUrgency
    duration_minutes: int
    message: str


@dataclass(frozen=True)
class SwitchSuggestion:
    """A suggested change of skill, drawn from the queued plan."""

    current_skill_id: str
    consecutive_wrong: int
    message: str
    suggested_skill_id: str | None = None
    suggested_skill_name: str = ""


@dataclass
class PacingState:
    """Rolling view of a live session."""

    minutes_studied: float
    minutes_since_break: float
    recent_scores: list[float] = field(default_factory=list)  # Oldest first
    consecutive_wrong: int = 0
    current_skill_id: str | None = None
    consecutive_wrong_on_skill: int = 0


# =============================================================================
# Pacing Monitor
# =============================================================================


class PacingMonitor:
    """
    Evaluates pacing state against break and switch thresholds.

    Checks run in priority order and the first match wins:
    1. Extended session (high urgency)
    2. Wrong-answer streak (medium)
    3. Rolling accuracy drop (medium)
    4. Long session (low)
    5. Pomodoro interval (low)
    """

    def __init__(self, config: PacingConfig | None = None):
        self.config = config or PacingConfig()

    def analyze(self, state: PacingState) -> BreakSuggestion | None:
        """
        Check for a break signal.

        Args:
            state: Current pacing state

        Returns:
            BreakSuggestion if a break is advised, None otherwise
        """
        for check in (
            self._check_extended_session,
            self._check_consecutive_wrong,
            self._check_performance_drop,
            self._check_long_session,
            self._check_pomodoro,
        ):
            suggestion = check(state)
            if suggestion:
                logger.debug("Pacing signal: {} ({})", suggestion.reason.value, suggestion.urgency.value)
                return suggestion
        return None

    def suggest_switch(
        self,
        state: PacingState,
        plan: SessionPlan | None = None,
    ) -> SwitchSuggestion | None:
        """
        Suggest moving to the next queued skill after repeated failure.

        The suggested skill is the first queued plan item on a different
        skill; without a plan the suggestion carries no target.
        """
        cfg = self.config
        if state.current_skill_id is None:
            return None
        if state.consecutive_wrong_on_skill < cfg.consecutive_wrong_for_switch:
            return None

        target = None
        if plan is not None:
            target = next(
                (
                    item
                    for item in sorted(plan.items, key=lambda i: i.priority)
                    if item.status == PlanItemStatus.QUEUED and item.skill_id != state.current_skill_id
                ),
                None,
            )

        return SwitchSuggestion(
            current_skill_id=state.current_skill_id,
            consecutive_wrong=state.consecutive_wrong_on_skill,
            suggested_skill_id=target.skill_id if target else None,
            suggested_skill_name=target.skill_name if target else "",
            message=(
                f"{state.consecutive_wrong_on_skill} consecutive challenging questions. "
                "Switching topics can help reset your focus."
            ),
        )

    # =========================================================================
    # Checks
    # =========================================================================

    def _check_extended_session(self, state: PacingState) -> BreakSuggestion | None:
        minutes = state.minutes_since_break
        if minutes >= self.config.max_continuous_study:
            return BreakSuggestion(
                reason=BreakReason.EXTENDED_SESSION,
                urgency=BreakUrgency.HIGH,
                duration_minutes=self.config.extended_break_duration,
                message=f"You've been studying for {minutes:.0f} minutes! "
                "Your brain needs a longer rest to consolidate what you've learned.",
            )
        return None

    def _check_consecutive_wrong(self, state: PacingState) -> BreakSuggestion | None:
        if state.consecutive_wrong >= self.config.consecutive_wrong_trigger:
            return BreakSuggestion(
                reason=BreakReason.CONSECUTIVE_WRONG,
                urgency=BreakUrgency.MEDIUM,
                duration_minutes=self.config.short_break_duration,
                message="Let's take a quick break. A fresh mind will help you tackle these questions better.",
            )
        return None

    def _check_performance_drop(self, state: PacingState) -> BreakSuggestion | None:
        """Compare the mean of the last few scores with the ones before them."""
        cfg = self.config
        scores = state.recent_scores
        if len(scores) < cfg.min_scores_for_drop:
            return None

        recent = fmean(scores[-cfg.drop_window :])
        previous = fmean(scores[: -cfg.drop_window])
        # Small epsilon so a drop of exactly the threshold still fires
        if previous - recent >= cfg.performance_drop_threshold - 1e-9:
            return BreakSuggestion(
                reason=BreakReason.PERFORMANCE_DROP,
                urgency=BreakUrgency.MEDIUM,
                duration_minutes=cfg.short_break_duration,
                message="Your accuracy has dipped. A short break can help you refocus.",
            )
        return None

    def _check_long_session(self, state: PacingState) -> BreakSuggestion | None:
        minutes = state.minutes_since_break
        if minutes >= self.config.long_break_after:
            return BreakSuggestion(
                reason=BreakReason.TIME_THRESHOLD,
                urgency=BreakUrgency.LOW,
                duration_minutes=self.config.long_break_duration,
                message=f"Great progress! After {minutes:.0f} minutes, "
                f"a {self.config.long_break_duration}-minute break will help you retain more.",
            )
        return None

    def _check_pomodoro(self, state: PacingState) -> BreakSuggestion | None:
        if state.minutes_since_break >= self.config.short_break_after:
            return BreakSuggestion(
                reason=BreakReason.TIME_THRESHOLD,
                urgency=BreakUrgency.LOW,
                duration_minutes=self.config.short_break_duration,
                message=f"One Pomodoro complete! Take a quick {self.config.short_break_duration}-minute break.",
            )
        return None


# =============================================================================
# Session Telemetry
# =============================================================================


@dataclass
class AnswerEvent:
    """A single graded answer in the session."""

    skill_id: str
    score_norm: float
    is_correct: bool
    timestamp: datetime


class SessionTelemetry:
    """
    Tracks a single live study session.

    Provides the rolling statistics PacingMonitor needs:
    - Time on task and time since the last break
    - Recent scores (bounded window)
    - Overall and per-skill wrong-answer streaks
    """

    def __init__(
        self,
        config: PacingConfig | None = None,
        clock: Clock | None = None,
        success_threshold: float = 0.6,
    ):
        self.config = config or PacingConfig()
        self.clock = clock or SystemClock()
        self.success_threshold = success_threshold

        self.started_at = self.clock.now()
        self.last_break_at: datetime | None = None
        self.breaks_taken = 0
        self.events: list[AnswerEvent] = []
        self._recent: deque[float] = deque(maxlen=self.config.recent_window)
        self._consecutive_wrong = 0
        self._skill_streak: tuple[str | None, int] = (None, 0)

    def record(self, skill_id: str, score_norm: float) -> AnswerEvent:
        """
        Record a graded answer.

        Args:
            skill_id: Skill the answer exercised
            score_norm: Normalized score 0-1
        """
        score_norm = validate_score(score_norm)
        is_correct = score_norm >= self.success_threshold
        event = AnswerEvent(
            skill_id=skill_id,
            score_norm=score_norm,
            is_correct=is_correct,
            timestamp=self.clock.now(),
        )
        self.events.append(event)
        self._recent.append(score_norm)

        if is_correct:
            self._consecutive_wrong = 0
            self._skill_streak = (skill_id, 0)
        else:
            self._consecutive_wrong += 1
            current_skill, streak = self._skill_streak
            self._skill_streak = (skill_id, streak + 1 if current_skill == skill_id else 1)
        return event

    def record_break(self) -> None:
        """Mark a break; time-based checks restart from here."""
        self.last_break_at = self.clock.now()
        self.breaks_taken += 1
        self._consecutive_wrong = 0

    @property
    def minutes_studied(self) -> float:
        return (self.clock.now() - self.started_at).total_seconds() / 60

    @property
    def minutes_since_break(self) -> float:
        anchor = self.last_break_at or self.started_at
        return (self.clock.now() - anchor).total_seconds() / 60

    @property
    def consecutive_wrong(self) -> int:
        return self._consecutive_wrong

    def state(self) -> PacingState:
        """Snapshot of the session for PacingMonitor."""
        current_skill, streak = self._skill_streak
        return PacingState(
            minutes_studied=self.minutes_studied,
            minutes_since_break=self.minutes_since_break,
            recent_scores=list(self._recent),
            consecutive_wrong=self._consecutive_wrong,
            current_skill_id=current_skill,
            consecutive_wrong_on_skill=streak,
        )

    def get_stats(self) -> dict:
        """Get session statistics."""
        correct = sum(1 for e in self.events if e.is_correct)
        return {
            "duration_minutes": round(self.minutes_studied, 1),
            "total_answers": len(self.events),
            "correct_count": correct,
            "accuracy_percent": round(correct / len(self.events) * 100, 1) if self.events else 0.0,
            "breaks_taken": self.breaks_taken,
            "current_wrong_streak": self._consecutive_wrong,
        }


# =============================================================================
# Event Log
# =============================================================================


@dataclass
class CumulativeStudy:
    """Today's study totals across sessions."""

    total_minutes: int = 0
    sessions_completed: int = 0
    breaks_taken: int = 0

    @property
    def average_session_minutes(self) -> int:
        if not self.sessions_completed:
            return 0
        return round(self.total_minutes / self.sessions_completed)


class PacingEventLog:
    """Persists advisory pacing events to session_events."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None, clock: Clock | None = None):
        self._session_factory = session_factory
        self.clock = clock or SystemClock()

    def record_pacing_suggestion(
        self, learner_id: str, suggestion: BreakSuggestion, session_id: str | None = None
    ) -> None:
        self._record(
            learner_id,
            SessionEventType.PACING_SUGGESTION,
            session_id=session_id,
            payload={
                "reason": suggestion.reason.value,
                "urgency": suggestion.urgency.value,
                "suggested_duration": suggestion.duration_minutes,
                "message": suggestion.message,
            },
        )

    def record_break_taken(
        self,
        learner_id: str,
        duration_minutes: int,
        user_initiated: bool,
        session_id: str | None = None,
    ) -> None:
        self._record(
            learner_id,
            SessionEventType.BREAK_TAKEN,
            session_id=session_id,
            payload={"duration": duration_minutes, "user_initiated": user_initiated},
        )

    def record_switch_suggestion(
        self, learner_id: str, suggestion: SwitchSuggestion, session_id: str | None = None
    ) -> None:
        self._record(
            learner_id,
            SessionEventType.SWITCH_SUGGESTED,
            skill_id=suggestion.current_skill_id,
            session_id=session_id,
            payload={
                "suggested_skill_id": suggestion.suggested_skill_id,
                "consecutive_wrong": suggestion.consecutive_wrong,
                "message": suggestion.message,
            },
        )

    def record_switch_response(
        self,
        learner_id: str,
        accepted: bool,
        current_skill_id: str,
        new_skill_id: str | None = None,
        session_id: str | None = None,
    ) -> None:
        """Log whether a switch was taken. Mastery state is left untouched."""
        self._record(
            learner_id,
            SessionEventType.SWITCH_ACCEPTED if accepted else SessionEventType.SWITCH_DECLINED,
            skill_id=current_skill_id,
            session_id=session_id,
            payload={"accepted": accepted, "new_skill_id": new_skill_id},
        )

    def today_cumulative_study(self, learner_id: str) -> CumulativeStudy:
        """Minutes studied, plan items completed and breaks taken today."""
        today = self.clock.today()
        start = datetime.combine(today, time.min, tzinfo=self.clock.now().tzinfo)
        end = start + timedelta(days=1)

        with session_scope(self._session_factory) as session:
            items = session.scalars(
                select(PlanItemRow)
                .join(DailyPlanRow, PlanItemRow.plan_id == DailyPlanRow.id)
                .where(
                    DailyPlanRow.learner_id == learner_id,
                    PlanItemRow.status == PlanItemStatus.COMPLETED.value,
                    PlanItemRow.finished_at >= start,
                    PlanItemRow.finished_at < end,
                )
            ).all()

            total = 0.0
            for item in items:
                started, finished = aware(item.started_at), aware(item.finished_at)
                if started and finished:
                    total += (finished - started).total_seconds() / 60
                else:
                    total += item.estimated_minutes

            breaks = session.scalars(
                select(SessionEventRow).where(
                    SessionEventRow.learner_id == learner_id,
                    SessionEventRow.event_type == SessionEventType.BREAK_TAKEN.value,
                    SessionEventRow.occurred_at >= start,
                    SessionEventRow.occurred_at < end,
                )
            ).all()

        return CumulativeStudy(
            total_minutes=round(total),
            sessions_completed=len(items),
            breaks_taken=len(breaks),
        )

    def _record(
        self,
        learner_id: str,
        event_type: SessionEventType,
        payload: dict,
        skill_id: str | None = None,
        session_id: str | None = None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            session.add(
                SessionEventRow(
                    learner_id=learner_id,
                    session_id=session_id,
                    event_type=event_type.value,
                    skill_id=skill_id,
                    payload=payload,
                    occurred_at=self.clock.now(),
                )
            )
        logger.info("Session event {} for learner {}", event_type.value, learner_id)
