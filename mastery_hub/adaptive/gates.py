"""
Gate Evaluator.

Per-skill pass/fail against per-category score thresholds over a
lookback window, plus the timed-proof verification gate.

Category gates:
- memory-check 0.70, quiz 0.60, rule-drill 0.60: all required for
  overall passing
- issue-spotter 0.50: timed/exam-sim attempts only and NOT part of the
  overall gate (kept as a stretch bar pending a product decision)

A category with no attempts in the window passes trivially.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence
from contextlib import nullcontext
from datetime import timedelta
from statistics import fmean

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.engine_config import GateConfig
from mastery_hub.core.models import (
    ActivityType,
    Attempt,
    AttemptFormat,
    GateCategory,
    GateStatus,
    VerificationResult,
)
from mastery_hub.db.database import session_scope
from mastery_hub.db.queries import attempts_since, get_mastery_row

VERIFICATION_LOOKBACK_DAYS = 90
# Means are float sums; a mean landing on its threshold must pass
THRESHOLD_TOLERANCE = 1e-9

ACTIVITY_CATEGORIES: dict[ActivityType, GateCategory] = {
    ActivityType.MEMORY_CHECK: GateCategory.MEMORY_CHECK,
    ActivityType.FLASHCARDS: GateCategory.MEMORY_CHECK,
    ActivityType.WRITTEN_QUIZ: GateCategory.QUIZ,
    ActivityType.ISSUE_SPOTTER: GateCategory.ISSUE_SPOTTER,
    ActivityType.RULE_ELEMENTS_DRILL: GateCategory.RULE_DRILL,
    ActivityType.ERROR_CORRECTION: GateCategory.RULE_DRILL,
}

CATEGORY_LABELS = {
    GateCategory.MEMORY_CHECK: "Memory check",
    GateCategory.QUIZ: "Quiz",
    GateCategory.ISSUE_SPOTTER: "Issue spotter",
    GateCategory.RULE_DRILL: "Rule drill",
}


def categorize(attempt: Attempt) -> GateCategory | None:
    """
    Gate category of an attempt.

    The recorded activity type wins; otherwise the answer format decides.
    Activities without a gate (reading, essays, past papers) return None.
    """
    if attempt.activity_type is not None:
        return ACTIVITY_CATEGORIES.get(attempt.activity_type)

    match attempt.format:
        case AttemptFormat.FLASHCARD:
            return GateCategory.MEMORY_CHECK
        case AttemptFormat.MCQ:
            return GateCategory.QUIZ
        case AttemptFormat.WRITTEN:
            return GateCategory.ISSUE_SPOTTER if attempt.mode.is_timed else GateCategory.QUIZ
        case AttemptFormat.ORAL | AttemptFormat.DRAFTING:
            return GateCategory.RULE_DRILL
    return None


class GateEvaluator:
    """
    Evaluate category gates and the verification gate for a skill.

    The pure methods (evaluate_attempts, verify) take attempts directly;
    evaluate/verify_skill load them from storage first.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        config: GateConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self.config = config or GateConfig()
        self.clock = clock or SystemClock()

    def threshold(self, category: GateCategory) -> float:
        return {
            GateCategory.MEMORY_CHECK: self.config.memory_check,
            GateCategory.QUIZ: self.config.quiz,
            GateCategory.ISSUE_SPOTTER: self.config.issue_spotter,
            GateCategory.RULE_DRILL: self.config.rule_drill,
        }[category]

    # =========================================================================
    # Category gates
    # =========================================================================

    def evaluate_attempts(self, skill_id: str, attempts: Sequence[Attempt]) -> GateStatus:
        """
        Evaluate category gates over already-windowed attempts.

        Args:
            skill_id: Skill being evaluated
            attempts: Attempts for this skill inside the lookback window
        """
        scores: dict[GateCategory, list[float]] = defaultdict(list)
        for attempt in attempts:
            category = categorize(attempt)
            if category is None:
                continue
            if category == GateCategory.ISSUE_SPOTTER and not attempt.mode.is_timed:
                continue
            scores[category].append(attempt.score_norm)

        means = {category: fmean(values) for category, values in scores.items()}
        passing: dict[GateCategory, bool] = {}
        reasons: list[str] = []

        for category in GateCategory:
            threshold = self.threshold(category)
            mean = means.get(category)
            passing[category] = mean is None or mean >= threshold - THRESHOLD_TOLERANCE
            if not passing[category]:
                reasons.append(
                    f"{CATEGORY_LABELS[category]} avg {mean:.0%} below {threshold:.0%}"
                )

        return GateStatus(
            skill_id=skill_id,
            memory_check_passing=passing[GateCategory.MEMORY_CHECK],
            quiz_passing=passing[GateCategory.QUIZ],
            issue_spotter_passing=passing[GateCategory.ISSUE_SPOTTER],
            drill_passing=passing[GateCategory.RULE_DRILL],
            overall_passing=(
                passing[GateCategory.MEMORY_CHECK]
                and passing[GateCategory.QUIZ]
                and passing[GateCategory.RULE_DRILL]
            ),
            failure_reasons=reasons,
            category_means=means,
        )

    def evaluate(self, learner_id: str, skill_id: str, session: Session | None = None) -> GateStatus:
        """Evaluate category gates from the learner's recent attempts."""
        since = self.clock.now() - timedelta(days=self.config.lookback_days)
        with self._get_session(session) as s:
            attempts = attempts_since(s, learner_id, since=since, skill_id=skill_id)

        status = self.evaluate_attempts(skill_id, attempts)
        logger.debug(
            "Gates for {}/{}: overall={} ({} attempts)",
            learner_id,
            skill_id,
            status.overall_passing,
            len(attempts),
        )
        return status

    # =========================================================================
    # Verification gate
    # =========================================================================

    def verify(
        self,
        skill_id: str,
        p_mastery: float,
        timed_attempts: Sequence[Attempt],
        top_error_tags: Sequence[str],
    ) -> VerificationResult:
        """
        Check the timed-proof criteria.

        - pMastery at or above verify_min_p_mastery
        - At least verify_required_timed_passes passing timed attempts
        - First two passes at least verify_min_hours_between_passes apart
        - None of the top error tags repeated in the second pass
        """
        cfg = self.config
        reasons: list[str] = []

        meets_mastery = p_mastery >= cfg.verify_min_p_mastery
        if not meets_mastery:
            reasons.append(f"p_mastery {p_mastery:.1%} below required {cfg.verify_min_p_mastery:.0%}")

        passes = sorted(
            (a for a in timed_attempts if a.mode.is_timed and a.score_norm >= 0.6),
            key=lambda a: a.timestamp,
        )
        meets_passes = len(passes) >= cfg.verify_required_timed_passes
        if not meets_passes:
            reasons.append(f"Only {len(passes)}/{cfg.verify_required_timed_passes} timed passes")

        hours_between = 0.0
        meets_gap = False
        tags_cleared = False
        if len(passes) >= 2:
            hours_between = (passes[1].timestamp - passes[0].timestamp).total_seconds() / 3600
            meets_gap = hours_between >= cfg.verify_min_hours_between_passes
            if not meets_gap:
                reasons.append(
                    f"Only {hours_between:.1f} hours between passes "
                    f"(need {cfg.verify_min_hours_between_passes:g})"
                )

            repeated = set(top_error_tags) & passes[1].error_tags
            tags_cleared = not repeated
            if not tags_cleared:
                reasons.append(f"Top error tags repeated in second pass: {len(repeated)}")

        return VerificationResult(
            skill_id=skill_id,
            is_verified=meets_mastery and meets_passes and meets_gap and tags_cleared,
            p_mastery=p_mastery,
            timed_pass_count=len(passes),
            hours_between_passes=hours_between,
            error_tags_cleared=tags_cleared,
            failure_reasons=reasons,
        )

    def verify_skill(self, learner_id: str, skill_id: str, session: Session | None = None) -> VerificationResult:
        """Run the verification gate against stored mastery and attempts."""
        since = self.clock.now() - timedelta(days=VERIFICATION_LOOKBACK_DAYS)
        with self._get_session(session) as s:
            row = get_mastery_row(s, learner_id, skill_id)
            p_mastery = row.p_mastery if row else 0.0
            history = attempts_since(s, learner_id, since=since, skill_id=skill_id)

        timed = [a for a in history if a.mode.is_timed]
        result = self.verify(skill_id, p_mastery, timed, self.top_error_tags(history))
        logger.debug("Verification for {}/{}: {}", learner_id, skill_id, result.is_verified)
        return result

    def top_error_tags(self, attempts: Sequence[Attempt]) -> list[str]:
        """Most frequent error tags, ties broken alphabetically."""
        counts = Counter(tag for a in attempts for tag in a.error_tags)
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return [tag for tag, _ in ranked[: self.config.verify_top_error_tags]]

    def _get_session(self, session: Session | None):
        if session is not None:
            return nullcontext(session)
        return session_scope(self._session_factory)
