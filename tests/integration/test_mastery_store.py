"""
Integration tests for MasteryStateStore writes: compare-and-swap,
concurrent writers and onboarding priors.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import pytest

from mastery_hub.adaptive.mastery_store import MasteryStateStore
from mastery_hub.core.engine_config import MasteryConfig
from mastery_hub.core.errors import ConcurrentUpdateError, InvalidInputError
from mastery_hub.core.models import Attempt, AttemptFormat, AttemptMode, MasteryLevel
from mastery_hub.db.database import session_scope


@pytest.fixture
def store(session_factory, clock):
    return MasteryStateStore(session_factory, MasteryConfig(), clock)


def attempt(clock, score=1.0, skills=("crim-actus",)):
    return Attempt(
        learner_id="l1",
        item_id="i1",
        skill_ids=skills,
        format=AttemptFormat.MCQ,
        mode=AttemptMode.PRACTICE,
        score_norm=score,
        timestamp=clock.now(),
    )


class TestCompareAndSwap:
    def test_stale_version_rejected(self, store, set_mastery):
        set_mastery("l1", "crim-actus", 0.5)
        current = store.get_state("l1", "crim-actus")

        with session_scope(store._session_factory) as s:
            assert store.compare_and_swap(s, current, replace(current, p_mastery=0.6))
            assert not store.compare_and_swap(s, current, replace(current, p_mastery=0.7))

        stored = store.get_state("l1", "crim-actus")
        assert stored.p_mastery == pytest.approx(0.6)
        assert stored.version == 1

    def test_persistent_conflict_raises(self, store, set_mastery, monkeypatch):
        set_mastery("l1", "crim-actus", 0.5)
        monkeypatch.setattr(store, "compare_and_swap", lambda *args: False)

        with pytest.raises(ConcurrentUpdateError):
            store.apply_attempt(attempt(store.clock))


class TestConcurrentWriters:
    def test_no_lost_updates(self, store, set_mastery, clock):
        set_mastery("l1", "crim-actus", 0.0)

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda _: store.apply_attempt(attempt(clock, 1.0)), range(8)))

        state = store.get_state("l1", "crim-actus")
        assert state.attempt_count == 8
        assert state.version == 8
        assert state.p_mastery == pytest.approx(0.6868, abs=1e-3)

    def test_multi_skill_attempt(self, store, clock):
        updates = store.apply_attempt(attempt(clock, 1.0, skills=("crim-actus", "crim-mens", "crim-actus")))

        assert [u.skill_id for u in updates] == ["crim-actus", "crim-mens"]

    def test_empty_skills_rejected(self, store, clock):
        with pytest.raises(InvalidInputError):
            store.apply_attempt(attempt(clock, skills=()))


class TestVerifiedFlag:
    def test_set_and_idempotent(self, store, set_mastery):
        set_mastery("l1", "crim-actus", 0.9)

        store.set_verified("l1", "crim-actus", True)
        store.set_verified("l1", "crim-actus", True)

        state = store.get_state("l1", "crim-actus")
        assert state.is_verified
        assert state.version == 1


class TestReads:
    def test_unknown_state_defaults_to_prior(self, store):
        state = store.get_state("nobody", "crim-actus")

        assert state.p_mastery == pytest.approx(0.10)
        assert state.version == 0

    def test_weak_and_strong(self, store, set_mastery):
        set_mastery("l1", "crim-actus", 0.2)
        set_mastery("l1", "crim-mens", 0.9)
        set_mastery("l1", "civ-juris", 0.5)

        assert [s.skill_id for s in store.weak_skills("l1")] == ["crim-actus"]
        assert [s.skill_id for s in store.strong_skills("l1")] == ["crim-mens"]

    def test_due_for_review_after_stability_lapses(self, store, clock):
        store.apply_attempt(attempt(clock, 1.0, skills=("crim-actus",)))
        store.apply_attempt(attempt(clock, 1.0, skills=("crim-mens",)))

        assert store.skills_due_for_review("l1") == []

        clock.advance(days=5)

        assert {s.skill_id for s in store.skills_due_for_review("l1")} == {"crim-actus", "crim-mens"}

    @pytest.mark.parametrize(
        "p,level",
        [
            (0.0, MasteryLevel.NOT_STARTED),
            (0.25, MasteryLevel.NOVICE),
            (0.5, MasteryLevel.DEVELOPING),
            (0.75, MasteryLevel.PROFICIENT),
            (0.95, MasteryLevel.MASTERED),
        ],
    )
    def test_mastery_level(self, p, level):
        assert MasteryStateStore.mastery_level(p) == level
