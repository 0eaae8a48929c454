"""
Mastery State Store.

Single writer of per-(learner, skill) mastery state.

Update rule, applied once per skill for every graded attempt:
    delta   = clamp((score - p) * learning_rate, max_negative, max_positive)
    p'      = clamp(p + delta, 0, 1)
    stab'   = min(max_stability, stab * stability_growth)
    review  = now + ceil(stab') days

Rises are capped tighter (+0.10) than drops (-0.12) so a single lucky
attempt cannot inflate mastery.

Writers for the same (learner, skill) are serialized by an in-process
keyed lock, and every write is a compare-and-swap on the row version.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager, nullcontext
from dataclasses import replace
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.engine_config import MasteryConfig
from mastery_hub.core.errors import ConcurrentUpdateError, InvalidInputError, validate_score
from mastery_hub.core.models import Attempt, MasteryLevel, MasteryState, MasteryUpdate
from mastery_hub.db.database import session_scope
from mastery_hub.db.models import MasteryStateRow
from mastery_hub.db.queries import get_mastery_row, learner_mastery, mastery_from_row
from mastery_hub.graph.skill_graph import SkillGraph


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def update_mastery(
    state: MasteryState,
    score_norm: float,
    now: datetime,
    config: MasteryConfig | None = None,
) -> tuple[MasteryState, MasteryUpdate]:
    """
    Apply the bounded-delta update rule to one mastery state.

    Pure: returns the new state and a before/after summary without
    touching storage. The version is left for the writer to bump.
    """
    cfg = config or MasteryConfig()
    score_norm = validate_score(score_norm)

    old_p = clamp(state.p_mastery, 0.0, 1.0)
    delta = clamp((score_norm - old_p) * cfg.learning_rate, cfg.max_delta_negative, cfg.max_delta_positive)
    new_p = clamp(old_p + delta, 0.0, 1.0)

    old_stability = max(cfg.min_stability, state.stability)
    new_stability = min(cfg.max_stability, old_stability * cfg.stability_growth)
    was_success = score_norm >= cfg.success_threshold

    new_state = replace(
        state,
        p_mastery=new_p,
        stability=new_stability,
        attempt_count=state.attempt_count + 1,
        correct_count=state.correct_count + (1 if was_success else 0),
        last_practiced_at=now,
        next_review_date=(now + timedelta(days=math.ceil(new_stability))).date(),
    )
    summary = MasteryUpdate(
        skill_id=state.skill_id,
        old_p_mastery=old_p,
        new_p_mastery=new_p,
        delta=new_p - old_p,
        old_stability=old_stability,
        new_stability=new_stability,
        was_success=was_success,
    )
    return new_state, summary


class _KeyedLocks:
    """One re-entrant lock per key, created on demand."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.RLock] = {}

    def get(self, key: tuple[str, str]) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock


class MasteryStateStore:
    """
    Reads and writes mastery state.

    Lazily creates a state at the default prior on a learner's first
    attempt at a skill; onboarding seeds explicit priors beforehand via
    seed_priors().
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        config: MasteryConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self.config = config or MasteryConfig()
        self.clock = clock or SystemClock()
        self._locks = _KeyedLocks()

    # =========================================================================
    # Writes
    # =========================================================================

    @contextmanager
    def serialize(self, learner_id: str, skill_ids: Iterable[str]) -> Iterator[None]:
        """
        Hold the write locks for a learner's skills.

        Locks are taken in sorted order so overlapping skill sets cannot
        deadlock. Wrap a whole transaction in this to keep other writers
        out until commit.
        """
        locks = [self._locks.get((learner_id, sid)) for sid in sorted(set(skill_ids))]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()

    def apply_attempt(self, attempt: Attempt, session: Session | None = None) -> list[MasteryUpdate]:
        """
        Update mastery for every skill an attempt maps to.

        Args:
            attempt: The graded attempt
            session: Join an existing transaction instead of opening one

        Returns:
            One MasteryUpdate per skill
        """
        if not attempt.skill_ids:
            raise InvalidInputError("Attempt must map to at least one skill")
        validate_score(attempt.score_norm)

        with self.serialize(attempt.learner_id, attempt.skill_ids):
            with self._get_session(session) as s:
                updates = [
                    self._apply_one(s, attempt.learner_id, skill_id, attempt.score_norm, attempt.timestamp)
                    for skill_id in dict.fromkeys(attempt.skill_ids)
                ]

        for u in updates:
            logger.debug(
                "Mastery {} for {}: {:.3f} -> {:.3f} (delta {:+.3f})",
                u.skill_id,
                attempt.learner_id,
                u.old_p_mastery,
                u.new_p_mastery,
                u.delta,
            )
        return updates

    def compare_and_swap(self, session: Session, expected: MasteryState, updated: MasteryState) -> bool:
        """
        Write `updated` only if the stored version still equals `expected.version`.

        Returns:
            True if the row was written (version bumped), False on a lost race
        """
        result = session.execute(
            update(MasteryStateRow)
            .where(
                MasteryStateRow.learner_id == expected.learner_id,
                MasteryStateRow.skill_id == expected.skill_id,
                MasteryStateRow.version == expected.version,
            )
            .values(
                p_mastery=updated.p_mastery,
                stability=updated.stability,
                attempt_count=updated.attempt_count,
                correct_count=updated.correct_count,
                last_practiced_at=updated.last_practiced_at,
                next_review_date=updated.next_review_date,
                is_verified=updated.is_verified,
                version=expected.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def set_verified(
        self,
        learner_id: str,
        skill_id: str,
        verified: bool = True,
        session: Session | None = None,
    ) -> None:
        """Persist the verification flag (set by the timed-proof gate)."""
        with self.serialize(learner_id, [skill_id]):
            with self._get_session(session) as s:
                for _ in range(self.config.cas_retries):
                    current = self._read_or_create(s, learner_id, skill_id)
                    if current.is_verified == verified:
                        return
                    if self.compare_and_swap(s, current, replace(current, is_verified=verified)):
                        logger.info("Skill {} verified={} for {}", skill_id, verified, learner_id)
                        return
        raise ConcurrentUpdateError(f"Could not update verification for {learner_id}/{skill_id}")

    def seed_priors(
        self,
        learner_id: str,
        graph: SkillGraph,
        strong_units: Iterable[str] = (),
        weak_units: Iterable[str] = (),
        session: Session | None = None,
    ) -> int:
        """
        Create onboarding priors for every active skill without a state.

        Strong-area skills start at strong_prior, weak-area skills at
        weak_prior and everything else at neutral_prior. Existing states
        are never overwritten.

        Returns:
            Number of states created
        """
        strong, weak = set(strong_units), set(weak_units)
        overlap = strong & weak
        if overlap:
            raise InvalidInputError(f"Units cannot be both strong and weak: {sorted(overlap)}")

        created = 0
        with self._get_session(session) as s:
            existing = learner_mastery(s, learner_id)
            for skill in graph.skills():
                if skill.id in existing:
                    continue
                if skill.unit_id in strong:
                    prior = self.config.strong_prior
                elif skill.unit_id in weak:
                    prior = self.config.weak_prior
                else:
                    prior = self.config.neutral_prior
                s.add(
                    MasteryStateRow(
                        learner_id=learner_id,
                        skill_id=skill.id,
                        p_mastery=prior,
                        stability=self.config.min_stability,
                        version=0,
                    )
                )
                created += 1

        logger.info("Seeded {} mastery priors for {}", created, learner_id)
        return created

    # =========================================================================
    # Reads
    # =========================================================================

    def get_state(self, learner_id: str, skill_id: str, session: Session | None = None) -> MasteryState:
        """Stored state, or an unsaved one at the default prior."""
        with self._get_session(session) as s:
            row = get_mastery_row(s, learner_id, skill_id)
            if row is None:
                return self._default_state(learner_id, skill_id)
            return mastery_from_row(row)

    def get_states(self, learner_id: str, session: Session | None = None) -> dict[str, MasteryState]:
        with self._get_session(session) as s:
            return learner_mastery(s, learner_id)

    def weak_skills(self, learner_id: str, threshold: float = 0.4) -> list[MasteryState]:
        """States below threshold, weakest first."""
        states = self.get_states(learner_id).values()
        return sorted((s for s in states if s.p_mastery < threshold), key=lambda s: s.p_mastery)

    def strong_skills(self, learner_id: str, threshold: float = 0.8) -> list[MasteryState]:
        """States above threshold, strongest first."""
        states = self.get_states(learner_id).values()
        return sorted((s for s in states if s.p_mastery > threshold), key=lambda s: -s.p_mastery)

    def skills_due_for_review(self, learner_id: str) -> list[MasteryState]:
        """States whose review date is today or earlier, oldest first."""
        today = self.clock.today()
        due = [
            s
            for s in self.get_states(learner_id).values()
            if s.next_review_date is not None and s.next_review_date <= today
        ]
        return sorted(due, key=lambda s: (s.next_review_date, s.p_mastery))

    @staticmethod
    def mastery_level(p_mastery: float) -> MasteryLevel:
        return MasteryLevel.from_score(p_mastery)

    # =========================================================================
    # Internals
    # =========================================================================

    def _apply_one(
        self,
        session: Session,
        learner_id: str,
        skill_id: str,
        score_norm: float,
        now: datetime,
    ) -> MasteryUpdate:
        for attempt_no in range(1, self.config.cas_retries + 1):
            current = self._read_or_create(session, learner_id, skill_id)
            new_state, summary = update_mastery(current, score_norm, now, self.config)
            if self.compare_and_swap(session, current, new_state):
                return summary
            logger.warning(
                "Lost mastery CAS race for {}/{} (try {}), re-reading",
                learner_id,
                skill_id,
                attempt_no,
            )
        raise ConcurrentUpdateError(f"Mastery update for {learner_id}/{skill_id} kept conflicting")

    def _read_or_create(self, session: Session, learner_id: str, skill_id: str) -> MasteryState:
        row = session.scalar(
            select(MasteryStateRow)
            .where(
                MasteryStateRow.learner_id == learner_id,
                MasteryStateRow.skill_id == skill_id,
            )
            .execution_options(populate_existing=True)
        )
        if row is None:
            state = self._default_state(learner_id, skill_id)
            session.add(
                MasteryStateRow(
                    learner_id=learner_id,
                    skill_id=skill_id,
                    p_mastery=state.p_mastery,
                    stability=state.stability,
                    version=state.version,
                )
            )
            session.flush()
            return state
        return mastery_from_row(row)

    def _default_state(self, learner_id: str, skill_id: str) -> MasteryState:
        return MasteryState(
            learner_id=learner_id,
            skill_id=skill_id,
            p_mastery=self.config.default_prior,
            stability=self.config.min_stability,
        )

    def _get_session(self, session: Session | None):
        """Join the caller's session, or open a transactional scope."""
        if session is not None:
            return nullcontext(session)
        return session_scope(self._session_factory)
