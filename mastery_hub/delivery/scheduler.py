"""
SM-2 Spaced Repetition Scheduler.

Implements:
- SM-2 algorithm for review intervals (pure over card + quality)
- Due-card ordering and exam-aware prioritisation
- Card maturity, retention strength and study statistics

SM-2 Grade Scale:
0 - Complete blackout, wrong response
1 - Incorrect, but upon seeing answer remembered
2 - Incorrect, but answer seemed easy to recall
3 - Correct, but with significant difficulty
4 - Correct, with some hesitation
5 - Correct, with perfect recall
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, timedelta

from loguru import logger

from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.engine_config import SM2Config
from mastery_hub.core.errors import InvalidInputError, validate_quality, validate_score
from mastery_hub.core.models import CardMaturity, SpacedRepetitionCard

MAX_INITIAL_EASINESS = 3.0
EASINESS_SPAN = 2.2  # Distance from the EF floor to a "very easy" card


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up."""
    return int(math.floor(value + 0.5))


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class ExamReviewPlan:
    """Exam-aware review selection for one day."""

    today_reviews: list[SpacedRepetitionCard] = field(default_factory=list)
    priority_cards: list[SpacedRepetitionCard] = field(default_factory=list)
    recommended_new_cards: int = 0


@dataclass
class StudyStats:
    """Aggregate statistics over a learner's cards."""

    total_cards: int = 0
    due_today: int = 0
    overdue: int = 0
    new_cards: int = 0
    learning_cards: int = 0
    mature_cards: int = 0
    average_retention: int = 0
    streak_days: int = 0


@dataclass
class ReviewSessionSummary:
    """Summary of one batch of card reviews."""

    cards_reviewed: int
    correct_count: int
    accuracy: int  # Percent
    average_quality: float
    needs_restudy: list[SpacedRepetitionCard] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


# =============================================================================
# Scheduler
# =============================================================================


class SpacedRepetitionScheduler:
    """
    Implements the SM-2 spaced repetition algorithm.

    Each card has:
    - Easiness Factor (EF): How easy the item is (2.5 default, min 1.3)
    - Interval: Days until next review (1..365)
    - Repetitions: Consecutive correct recalls
    """

    def __init__(self, config: SM2Config | None = None, clock: Clock | None = None):
        """
        Initialize SM-2 scheduler.

        Args:
            config: Custom configuration (uses defaults if None)
            clock: Source of "today" (system clock if None)
        """
        self.config = config or SM2Config()
        self.clock = clock or SystemClock()

    # =========================================================================
    # Core Algorithm
    # =========================================================================

    def review_card(self, card: SpacedRepetitionCard, quality: int) -> SpacedRepetitionCard:
        """
        Calculate the card state after a review.

        Args:
            card: Current card state (not modified)
            quality: Recall rating 0-5

        Returns:
            New card with updated EF, interval, repetitions and due date

        Raises:
            InvalidInputError: quality is not an integer in 0..5
        """
        quality = validate_quality(quality)
        cfg = self.config

        # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
        ef_delta = 0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)
        new_ef = max(cfg.minimum_easiness, card.easiness_factor + ef_delta)

        if quality < 3:
            # Failed - reset to beginning
            new_repetitions = 0
            new_interval = cfg.first_interval
        else:
            new_repetitions = card.repetitions + 1
            if new_repetitions == 1:
                new_interval = cfg.first_interval
            elif new_repetitions == 2:
                new_interval = cfg.second_interval
            else:
                new_interval = round_half_up(card.interval * new_ef)

        new_interval = min(new_interval, cfg.max_interval)
        today = self.clock.today()

        logger.debug(
            "Card {} reviewed q={}: ef {:.2f}->{:.2f}, interval {}->{}",
            card.content_id,
            quality,
            card.easiness_factor,
            new_ef,
            card.interval,
            new_interval,
        )

        return replace(
            card,
            easiness_factor=new_ef,
            interval=new_interval,
            repetitions=new_repetitions,
            next_review_date=today + timedelta(days=new_interval),
            last_review_date=today,
            last_quality=quality,
            total_reviews=card.total_reviews + 1,
            correct_reviews=card.correct_reviews + (1 if quality >= 3 else 0),
        )

    @staticmethod
    def grade_from_score(score_norm: float) -> int:
        """Map a normalized 0-1 score onto an SM-2 quality rating."""
        return round_half_up(validate_score(score_norm) * 5)

    def create_card(
        self,
        learner_id: str,
        content_id: str,
        title: str = "",
        skill_id: str | None = None,
        unit_id: str | None = None,
        initial_ef: float | None = None,
    ) -> SpacedRepetitionCard:
        """Create a new card, due immediately for its first review."""
        return SpacedRepetitionCard(
            learner_id=learner_id,
            content_id=content_id,
            title=title,
            skill_id=skill_id,
            unit_id=unit_id,
            easiness_factor=initial_ef or self.config.initial_easiness,
            interval=self.config.first_interval,
            repetitions=0,
            next_review_date=self.clock.today(),
        )

    def suggest_initial_ef(
        self,
        accuracy_rate: float | None = None,
        topic_difficulty: str | None = None,
    ) -> float:
        """
        Suggest a starting easiness factor from the learner's track record.

        Args:
            accuracy_rate: Learner's overall accuracy (0-1), if known
            topic_difficulty: "easy", "medium" or "hard", if known
        """
        ef = self.config.initial_easiness

        if accuracy_rate is not None:
            if accuracy_rate > 0.8:
                ef += 0.2
            elif accuracy_rate < 0.5:
                ef -= 0.3

        if topic_difficulty == "easy":
            ef += 0.2
        elif topic_difficulty == "hard":
            ef -= 0.3
        elif topic_difficulty not in (None, "medium"):
            raise InvalidInputError(f"Unknown topic difficulty: {topic_difficulty!r}")

        return max(self.config.minimum_easiness, min(MAX_INITIAL_EASINESS, ef))

    # =========================================================================
    # Selection
    # =========================================================================

    def get_due_cards(
        self,
        cards: Iterable[SpacedRepetitionCard],
        limit: int | None = None,
    ) -> list[SpacedRepetitionCard]:
        """
        Get cards due today or earlier.

        Ordered by:
        1. Oldest due date first (most overdue)
        2. Lower easiness factor (harder cards)
        3. More repetitions (established cards need consolidation)
        """
        today = self.clock.today()
        due = [c for c in cards if self._due_date(c) <= today]
        due.sort(key=lambda c: (self._due_date(c), c.easiness_factor, -c.repetitions))
        return due[:limit] if limit is not None else due

    def optimize_for_exam(
        self,
        cards: Sequence[SpacedRepetitionCard],
        days_until_exam: int,
        weak_units: Iterable[str] = (),
        daily_target: int = 20,
    ) -> ExamReviewPlan:
        """
        Prioritise reviews by exam proximity, weak units and retention.

        Args:
            cards: All of the learner's cards
            days_until_exam: Days until the written exam
            weak_units: Unit ids the learner is weak in
            daily_target: Maximum reviews to schedule today

        Returns:
            ExamReviewPlan with today's reviews, top priority cards and
            how many new cards to introduce
        """
        today = self.clock.today()
        weak = set(weak_units)

        scored: list[tuple[float, SpacedRepetitionCard]] = []
        for card in cards:
            score = 0.0
            due = self._due_date(card)

            # Overdue penalties
            if due < today:
                score += 100 + (today - due).days * 10
            elif due == today:
                score += 80

            # Weak area boost
            if card.unit_id and card.unit_id in weak:
                score += 50

            # Low retention boost
            retention = self.retention_strength(card)
            if retention < 50:
                score += 50 - retention

            # Exam proximity
            if days_until_exam < 30:
                if self.card_maturity(card) == CardMaturity.MATURE:
                    score += 30
            elif days_until_exam < 60:
                score += 20

            scored.append((score, card))

        # Stable sort keeps input order for equal scores
        scored.sort(key=lambda pair: pair[0], reverse=True)

        today_reviews = [c for _, c in scored if self._due_date(c) <= today][:daily_target]
        priority_cards = [c for _, c in scored[:10]]

        plan = ExamReviewPlan(
            today_reviews=today_reviews,
            priority_cards=priority_cards,
            recommended_new_cards=self.recommended_new_cards(days_until_exam),
        )
        logger.debug(
            "Exam optimisation: {} reviews, {} new cards ({} days to exam)",
            len(plan.today_reviews),
            plan.recommended_new_cards,
            days_until_exam,
        )
        return plan

    @staticmethod
    def recommended_new_cards(days_until_exam: int) -> int:
        """New cards to introduce per day; none in the final fortnight."""
        if days_until_exam < 14:
            return 0
        elif days_until_exam < 30:
            return 3
        elif days_until_exam < 60:
            return 5
        return 10

    # =========================================================================
    # Card Metrics
    # =========================================================================

    @staticmethod
    def card_maturity(card: SpacedRepetitionCard) -> CardMaturity:
        if card.repetitions == 0:
            return CardMaturity.NEW
        if card.repetitions < 3:
            return CardMaturity.LEARNING
        if card.interval < 21:
            return CardMaturity.YOUNG
        return CardMaturity.MATURE

    def retention_strength(self, card: SpacedRepetitionCard) -> int:
        """Retention strength 0-100 from accuracy, interval and EF."""
        if card.total_reviews == 0:
            return 0

        accuracy = card.correct_reviews / card.total_reviews
        maturity_bonus = min(card.interval / 30, 1.0) * 0.2
        ef_bonus = min((card.easiness_factor - self.config.minimum_easiness) / EASINESS_SPAN, 1.0) * 0.1
        return round_half_up((accuracy * 0.7 + maturity_bonus + ef_bonus) * 100)

    def study_stats(self, cards: Sequence[SpacedRepetitionCard]) -> StudyStats:
        """Calculate study statistics for a learner's cards."""
        today = self.clock.today()
        stats = StudyStats(total_cards=len(cards))
        total_retention = 0

        for card in cards:
            due = self._due_date(card)
            if due < today:
                stats.overdue += 1
            elif due == today:
                stats.due_today += 1

            maturity = self.card_maturity(card)
            if maturity == CardMaturity.NEW:
                stats.new_cards += 1
            elif maturity in (CardMaturity.LEARNING, CardMaturity.YOUNG):
                stats.learning_cards += 1
            else:
                stats.mature_cards += 1

            total_retention += self.retention_strength(card)

        if cards:
            stats.average_retention = round_half_up(total_retention / len(cards))
        stats.streak_days = self._streak_days(cards, today)
        return stats

    @staticmethod
    def session_summary(reviews: Sequence[tuple[SpacedRepetitionCard, int]]) -> ReviewSessionSummary:
        """Summarise a batch of (card, quality) reviews."""
        correct = sum(1 for _, quality in reviews if quality >= 3)
        needs_restudy = [card for card, quality in reviews if quality < 3]
        accuracy = correct / len(reviews) if reviews else 0.0

        recommendations = []
        if accuracy < 0.6:
            recommendations.append("Consider reviewing the source material before your next session.")
        if len(needs_restudy) > 3:
            recommendations.append(
                "You have several cards that need attention. Break them into smaller concepts."
            )
        if accuracy > 0.8 and len(reviews) > 10:
            recommendations.append("Excellent session! Consider adding new material to continue growing.")

        return ReviewSessionSummary(
            cards_reviewed=len(reviews),
            correct_count=correct,
            accuracy=round_half_up(accuracy * 100),
            average_quality=(sum(q for _, q in reviews) / len(reviews)) if reviews else 0.0,
            needs_restudy=needs_restudy,
            recommendations=recommendations,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _due_date(self, card: SpacedRepetitionCard) -> date:
        # Cards never scheduled are due immediately
        return card.next_review_date or self.clock.today()

    @staticmethod
    def _streak_days(cards: Sequence[SpacedRepetitionCard], today: date) -> int:
        """Consecutive review days ending today (or yesterday)."""
        review_days = {c.last_review_date for c in cards if c.last_review_date}
        if not review_days:
            return 0

        check = today if today in review_days else today - timedelta(days=1)
        streak = 0
        while check in review_days and streak < 365:
            streak += 1
            check -= timedelta(days=1)
        return streak
