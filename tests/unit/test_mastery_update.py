"""
Unit tests for the bounded-delta mastery update.

Tests:
- Learning-rate step toward the observed score
- Positive and negative delta clamps
- Stability growth and cap
- Success counting
"""

from datetime import timedelta

import pytest

from mastery_hub.adaptive.mastery_store import update_mastery
from mastery_hub.core.engine_config import MasteryConfig
from mastery_hub.core.errors import InvalidInputError
from mastery_hub.core.models import MasteryState


def state(p: float, stability: float = 1.0, **kwargs) -> MasteryState:
    return MasteryState(learner_id="l1", skill_id="s1", p_mastery=p, stability=stability, **kwargs)


class TestBoundedDelta:
    def test_step_toward_score(self, clock):
        new, update = update_mastery(state(0.5), 0.9, clock.now())

        assert update.delta == pytest.approx(0.06)
        assert new.p_mastery == pytest.approx(0.56)
        assert update.was_success

    def test_positive_delta_clamped(self, clock):
        # (1.0 - 0.0) * 0.15 = 0.15, capped at 0.10
        new, update = update_mastery(state(0.0), 1.0, clock.now())

        assert update.delta == pytest.approx(0.10)
        assert new.p_mastery == pytest.approx(0.10)

    def test_negative_delta_clamped(self, clock):
        # (0.0 - 0.95) * 0.15 = -0.1425, capped at -0.12
        new, update = update_mastery(state(0.95), 0.0, clock.now())

        assert update.delta == pytest.approx(-0.12)
        assert new.p_mastery == pytest.approx(0.83)
        assert not update.was_success

    def test_result_stays_in_unit_interval(self, clock):
        new, _ = update_mastery(state(0.98), 1.0, clock.now())

        assert new.p_mastery <= 1.0

    def test_invalid_score(self, clock):
        with pytest.raises(InvalidInputError):
            update_mastery(state(0.5), -0.1, clock.now())


class TestStability:
    def test_grows_by_factor(self, clock):
        new, update = update_mastery(state(0.5, stability=2.0), 0.7, clock.now())

        assert new.stability == pytest.approx(2.6)
        assert update.old_stability == pytest.approx(2.0)

    def test_capped(self, clock):
        new, _ = update_mastery(state(0.5, stability=29.0), 0.7, clock.now())

        assert new.stability == pytest.approx(30.0)

    def test_next_review_follows_stability(self, clock):
        new, _ = update_mastery(state(0.5, stability=2.0), 0.7, clock.now())

        # ceil(2.6) days
        assert new.next_review_date == (clock.now() + timedelta(days=3)).date()


class TestCounters:
    def test_counts(self, clock):
        new, _ = update_mastery(state(0.5, attempt_count=3, correct_count=1), 0.6, clock.now())

        assert new.attempt_count == 4
        assert new.correct_count == 2
        assert new.last_practiced_at == clock.now()

    def test_custom_config(self, clock):
        config = MasteryConfig(learning_rate=0.5, max_delta_positive=0.5)

        new, _ = update_mastery(state(0.2), 1.0, clock.now(), config)

        assert new.p_mastery == pytest.approx(0.6)
