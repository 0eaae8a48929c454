"""
Engine wiring.

Builds every component from one EngineConfig, shares the clock and
session factory between them, and registers the background handlers the
attempt service triggers.

Usage:
    engine = MasteryEngine.from_settings()
    engine.start()
    plan = engine.orchestrator.get_daily_plan("learner-1")
    engine.stop()
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from mastery_hub.adaptive.gates import GateEvaluator
from mastery_hub.adaptive.mastery_store import MasteryStateStore
from mastery_hub.adaptive.remediation import RemediationEngine
from mastery_hub.background.task_queue import BackgroundTaskQueue
from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.engine_config import EngineConfig
from mastery_hub.core.errors import NeedsOnboardingError, NotFoundError, validate_quality
from mastery_hub.core.models import SpacedRepetitionCard
from mastery_hub.db.database import get_session_factory, session_scope
from mastery_hub.db.queries import apply_card_to_row, card_from_row, get_card_row, load_skill_graph
from mastery_hub.delivery.pacing import PacingEventLog, PacingMonitor
from mastery_hub.delivery.scheduler import SpacedRepetitionScheduler
from mastery_hub.graph.skill_graph import SkillGraph
from mastery_hub.integrations.http_clients import HttpContentProvider, HttpGrader
from mastery_hub.integrations.protocols import ContentProvider, ExamCalendar, Grader
from mastery_hub.study.attempt_service import (
    PRELOAD_CONTENT,
    REGENERATE_PLAN,
    UPDATE_RANKINGS,
    AttemptService,
)
from mastery_hub.study.onboarding import OnboardingService
from mastery_hub.study.orchestrator import SessionOrchestrator
from mastery_hub.study.preload import ContentPreloader, difficulty_for
from mastery_hub.study.rankings import WeeklyRankings


class MasteryEngine:
    """All engine components over one database and clock."""

    def __init__(
        self,
        graph: SkillGraph,
        session_factory: sessionmaker[Session] | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        grader: Grader | None = None,
        content_provider: ContentProvider | None = None,
        calendar: ExamCalendar | None = None,
        tasks: BackgroundTaskQueue | None = None,
    ):
        self.graph = graph
        self.session_factory = session_factory
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()
        cfg = self.config

        self.scheduler = SpacedRepetitionScheduler(cfg.sm2, self.clock)
        self.store = MasteryStateStore(session_factory, cfg.mastery, self.clock)
        self.gates = GateEvaluator(session_factory, cfg.gates, self.clock)
        self.remediation = RemediationEngine(
            graph, self.store, self.gates, session_factory, cfg.remediation, self.clock
        )
        self.orchestrator = SessionOrchestrator(
            graph, self.scheduler, session_factory, cfg.orchestrator, calendar, self.clock
        )
        self.onboarding = OnboardingService(graph, self.store, session_factory, self.clock)
        self.pacing = PacingMonitor(cfg.pacing)
        self.pacing_log = PacingEventLog(session_factory, self.clock)
        self.rankings = WeeklyRankings(session_factory, self.clock)
        self.preloader = ContentPreloader(content_provider, self.clock) if content_provider else None

        self.tasks = tasks or BackgroundTaskQueue(clock=self.clock)
        self.attempts = AttemptService(
            graph,
            self.store,
            self.scheduler,
            self.gates,
            remediation=self.remediation,
            grader=grader,
            tasks=self.tasks,
            session_factory=session_factory,
            config=cfg.orchestrator,
            clock=self.clock,
        )
        self._register_handlers()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        session_factory: sessionmaker[Session] | None = None,
    ) -> MasteryEngine:
        """Load the curriculum from the database and wire HTTP collaborators from settings."""
        settings = settings or get_settings()
        session_factory = session_factory or get_session_factory()

        with session_scope(session_factory) as s:
            graph = load_skill_graph(s)

        grader = content = None
        if settings.grader_url:
            grader = HttpGrader(
                settings.grader_url,
                timeout_ms=settings.collaborator_timeout_ms,
                retry_attempts=settings.collaborator_retry_attempts,
            )
        if settings.content_provider_url:
            content = HttpContentProvider(
                settings.content_provider_url,
                timeout_ms=settings.collaborator_timeout_ms,
                retry_attempts=settings.collaborator_retry_attempts,
            )

        tasks = BackgroundTaskQueue(maxsize=settings.background_queue_size, workers=settings.background_workers)
        return cls(
            graph,
            session_factory=session_factory,
            config=EngineConfig.from_settings(settings),
            grader=grader,
            content_provider=content,
            tasks=tasks,
        )

    def review_card(self, learner_id: str, content_id: str, quality: int) -> SpacedRepetitionCard:
        """Apply a self-rated review to a stored card."""
        validate_quality(quality)
        with session_scope(self.session_factory) as s:
            row = get_card_row(s, learner_id, content_id)
            if row is None:
                raise NotFoundError(f"No card {content_id} for learner {learner_id}")
            card = self.scheduler.review_card(card_from_row(row), quality)
            apply_card_to_row(card, row)
        return card

    def start(self) -> None:
        self.tasks.start()

    def stop(self) -> None:
        self.tasks.stop()

    # =========================================================================
    # Background handlers
    # =========================================================================

    def _register_handlers(self) -> None:
        self.tasks.register(UPDATE_RANKINGS, self._update_rankings)
        self.tasks.register(REGENERATE_PLAN, self._regenerate_plan)
        if self.preloader is not None:
            self.tasks.register(PRELOAD_CONTENT, self._preload_content)

    def _update_rankings(self, learner_id: str, score_norm: float) -> None:
        self.rankings.record(learner_id, score_norm)

    def _preload_content(self, learner_id: str, skill_ids: Sequence[str]) -> None:
        for skill_id in skill_ids:
            state = self.store.get_state(learner_id, skill_id)
            self.preloader.preload(learner_id, skill_id, difficulty=difficulty_for(state.p_mastery))

    def _regenerate_plan(self, learner_id: str) -> None:
        try:
            self.orchestrator.regenerate_plan(learner_id)
        except NeedsOnboardingError:
            logger.debug("Skipping plan regeneration for {}: not onboarded", learner_id)
