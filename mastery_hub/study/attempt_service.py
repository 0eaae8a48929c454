"""
Attempt Service.

Entry point for graded practice. One submission:

1. Validates the input (nothing is written if this fails)
2. Grades the response: MCQ by answer equality, everything else through
   the Grader collaborator. A grader failure aborts before the
   transaction opens, so the submission is safe to retry.
3. In one transaction, under the per-skill write locks:
   - appends the Attempt
   - updates MasteryState for every mapped skill
   - reviews the item's spaced-repetition card (creating it if absent)
   - runs the verification gate for timed attempts
4. After commit, queues fire-and-forget work (rankings, content preload,
   and plan regeneration every Nth attempt). Queueing never fails the
   submission.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from mastery_hub.adaptive.gates import GateEvaluator
from mastery_hub.adaptive.mastery_store import MasteryStateStore
from mastery_hub.adaptive.remediation import RemediationEngine
from mastery_hub.background.task_queue import BackgroundTaskQueue
from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.engine_config import OrchestratorConfig
from mastery_hub.core.errors import CollaboratorError, InvalidInputError, validate_score
from mastery_hub.core.models import (
    ActivityType,
    Attempt,
    AttemptFormat,
    AttemptMode,
    MasteryUpdate,
    SpacedRepetitionCard,
    VerificationResult,
)
from mastery_hub.db.database import session_scope
from mastery_hub.db.queries import (
    apply_card_to_row,
    attempt_to_row,
    card_from_row,
    card_to_row,
    count_attempts,
    get_card_row,
)
from mastery_hub.delivery.scheduler import SpacedRepetitionScheduler
from mastery_hub.graph.skill_graph import SkillGraph
from mastery_hub.integrations.protocols import GradeResult, Grader, Item

UPDATE_RANKINGS = "update_rankings"
PRELOAD_CONTENT = "preload_content"
REGENERATE_PLAN = "regenerate_plan"


@dataclass
class AttemptResult:
    """What a submission changed."""

    attempt: Attempt
    feedback: str
    mastery_updates: list[MasteryUpdate]
    card: SpacedRepetitionCard
    verifications: list[VerificationResult] = field(default_factory=list)
    queued_tasks: list[str] = field(default_factory=list)


def grade_inline(item: Item, response: str) -> GradeResult:
    """Multiple-choice grading by normalized answer equality."""
    correct = (item.correct_answer or "").strip().casefold()
    given = (response or "").strip().casefold()
    if given == correct:
        return GradeResult(score_norm=1.0, feedback="Correct")
    return GradeResult(score_norm=0.0, feedback=f"Incorrect. Answer: {item.correct_answer}")


class AttemptService:
    def __init__(
        self,
        graph: SkillGraph,
        store: MasteryStateStore,
        scheduler: SpacedRepetitionScheduler,
        gates: GateEvaluator,
        remediation: RemediationEngine | None = None,
        grader: Grader | None = None,
        tasks: BackgroundTaskQueue | None = None,
        session_factory: sessionmaker[Session] | None = None,
        config: OrchestratorConfig | None = None,
        clock: Clock | None = None,
    ):
        self.graph = graph
        self.store = store
        self.scheduler = scheduler
        self.gates = gates
        self.remediation = remediation
        self.grader = grader
        self.tasks = tasks
        self._session_factory = session_factory
        self.config = config or OrchestratorConfig()
        self.clock = clock or SystemClock()

    # =========================================================================
    # Grading
    # =========================================================================

    def grade(self, item: Item, response: str) -> GradeResult:
        """
        Grade one response.

        Raises:
            CollaboratorError: Free-text item and the grader failed or is missing
        """
        if item.format == AttemptFormat.MCQ and item.correct_answer is not None:
            return grade_inline(item, response)
        if self.grader is None:
            raise CollaboratorError("grader", "no grader configured")
        return self.grader.grade(item, response)

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(
        self,
        learner_id: str,
        item: Item,
        response: str,
        mode: AttemptMode = AttemptMode.PRACTICE,
        activity_type: ActivityType | None = None,
    ) -> AttemptResult:
        """Grade a learner's response and record it."""
        self._validate(learner_id, item.skill_ids)
        result = self.grade(item, response)

        return self.record_graded(
            learner_id=learner_id,
            item_id=item.id,
            skill_ids=item.skill_ids,
            format=item.format,
            mode=mode,
            score_norm=result.score_norm,
            error_tags=result.error_tags,
            activity_type=activity_type,
            feedback=result.feedback,
            title=item.prompt[:120],
        )

    def record_graded(
        self,
        learner_id: str,
        item_id: str,
        skill_ids: Iterable[str],
        format: AttemptFormat,
        mode: AttemptMode,
        score_norm: float,
        error_tags: Iterable[str] = (),
        activity_type: ActivityType | None = None,
        feedback: str = "",
        title: str = "",
    ) -> AttemptResult:
        """Record an attempt whose score is already known."""
        skill_ids = tuple(dict.fromkeys(skill_ids))
        self._validate(learner_id, skill_ids)
        if not item_id:
            raise InvalidInputError("item_id is required")

        try:
            format, mode = AttemptFormat(format), AttemptMode(mode)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

        attempt = Attempt(
            learner_id=learner_id,
            item_id=item_id,
            skill_ids=skill_ids,
            format=format,
            mode=mode,
            score_norm=validate_score(score_norm),
            timestamp=self.clock.now(),
            error_tags=frozenset(error_tags),
            activity_type=activity_type,
        )

        with self.store.serialize(learner_id, skill_ids):
            with session_scope(self._session_factory) as s:
                s.add(attempt_to_row(attempt, feedback))
                s.flush()
                total_attempts = count_attempts(s, learner_id)

                updates = self.store.apply_attempt(attempt, session=s)
                card = self._review_card(s, attempt, title)

                verifications = []
                if attempt.mode.is_timed:
                    for skill_id in skill_ids:
                        verification = self.gates.verify_skill(learner_id, skill_id, session=s)
                        if verification.is_verified:
                            self.store.set_verified(learner_id, skill_id, True, session=s)
                        verifications.append(verification)

        logger.info(
            "Attempt {} by {}: score {:.2f} on {} skill(s)",
            attempt.item_id,
            learner_id,
            attempt.score_norm,
            len(skill_ids),
        )

        if self.remediation is not None:
            self.remediation.invalidate(learner_id)

        return AttemptResult(
            attempt=attempt,
            feedback=feedback,
            mastery_updates=updates,
            card=card,
            verifications=verifications,
            queued_tasks=self._enqueue_follow_ups(attempt, total_attempts),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate(self, learner_id: str, skill_ids: Iterable[str]) -> None:
        if not learner_id:
            raise InvalidInputError("learner_id is required")
        skill_ids = list(skill_ids)
        if not skill_ids:
            raise InvalidInputError("An attempt must map to at least one skill")
        unknown = [sid for sid in skill_ids if sid not in self.graph]
        if unknown:
            raise InvalidInputError(f"Unknown skill id(s): {unknown}")

    def _review_card(self, session: Session, attempt: Attempt, title: str) -> SpacedRepetitionCard:
        quality = self.scheduler.grade_from_score(attempt.score_norm)
        row = get_card_row(session, attempt.learner_id, attempt.item_id)

        if row is None:
            primary = self.graph.skill(attempt.skill_ids[0])
            card = self.scheduler.create_card(
                attempt.learner_id,
                attempt.item_id,
                title=title,
                skill_id=primary.id,
                unit_id=primary.unit_id,
            )
            reviewed = self.scheduler.review_card(card, quality)
            session.add(card_to_row(reviewed))
        else:
            reviewed = self.scheduler.review_card(card_from_row(row), quality)
            apply_card_to_row(reviewed, row)
        return reviewed

    def _enqueue_follow_ups(self, attempt: Attempt, total_attempts: int) -> list[str]:
        if self.tasks is None:
            return []

        queued = []
        skill_ids = list(attempt.skill_ids)
        if self._submit(UPDATE_RANKINGS, learner_id=attempt.learner_id, score_norm=attempt.score_norm):
            queued.append(UPDATE_RANKINGS)
        if self._submit(PRELOAD_CONTENT, learner_id=attempt.learner_id, skill_ids=skill_ids):
            queued.append(PRELOAD_CONTENT)

        every = self.config.regenerate_every_n_attempts
        if every > 0 and total_attempts % every == 0:
            if self._submit(REGENERATE_PLAN, learner_id=attempt.learner_id):
                queued.append(REGENERATE_PLAN)
        return queued

    def _submit(self, name: str, **payload) -> bool:
        if not self.tasks.handles(name):
            return False
        return self.tasks.submit(name, **payload)
