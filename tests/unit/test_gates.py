"""
Unit tests for gate evaluation and the verification gate.

Attempts are passed in directly; nothing touches the database.
"""

from datetime import timedelta

import pytest

from mastery_hub.adaptive.gates import GateEvaluator, categorize
from mastery_hub.core.models import ActivityType, Attempt, AttemptFormat, AttemptMode, GateCategory


@pytest.fixture
def gates(clock):
    return GateEvaluator(clock=clock)


def attempt(clock, score, fmt=AttemptFormat.MCQ, mode=AttemptMode.PRACTICE, activity=None, tags=(), hours_ago=0):
    return Attempt(
        learner_id="l1",
        item_id="i1",
        skill_ids=("s1",),
        format=fmt,
        mode=mode,
        score_norm=score,
        timestamp=clock.now() - timedelta(hours=hours_ago),
        error_tags=frozenset(tags),
        activity_type=activity,
    )


class TestCategorize:
    def test_activity_type_wins(self, clock):
        a = attempt(clock, 0.5, fmt=AttemptFormat.MCQ, activity=ActivityType.RULE_ELEMENTS_DRILL)
        assert categorize(a) == GateCategory.RULE_DRILL

    def test_format_fallback(self, clock):
        assert categorize(attempt(clock, 0.5, fmt=AttemptFormat.FLASHCARD)) == GateCategory.MEMORY_CHECK
        assert categorize(attempt(clock, 0.5, fmt=AttemptFormat.MCQ)) == GateCategory.QUIZ
        timed_written = attempt(clock, 0.5, fmt=AttemptFormat.WRITTEN, mode=AttemptMode.TIMED)
        assert categorize(timed_written) == GateCategory.ISSUE_SPOTTER

    def test_ungated_activity(self, clock):
        assert categorize(attempt(clock, 0.5, activity=ActivityType.READING_NOTES)) is None


class TestCategoryGates:
    def test_no_attempts_passes(self, gates):
        status = gates.evaluate_attempts("s1", [])

        assert status.overall_passing
        assert status.failure_reasons == []

    def test_quiz_below_threshold_fails_overall(self, gates, clock):
        status = gates.evaluate_attempts("s1", [attempt(clock, 0.5), attempt(clock, 0.6)])

        assert not status.quiz_passing
        assert not status.overall_passing
        assert status.category_means[GateCategory.QUIZ] == pytest.approx(0.55)

    def test_issue_spotter_excluded_from_overall(self, gates, clock):
        timed = attempt(clock, 0.2, activity=ActivityType.ISSUE_SPOTTER, mode=AttemptMode.TIMED)

        status = gates.evaluate_attempts("s1", [timed])

        assert not status.issue_spotter_passing
        assert status.overall_passing

    def test_issue_spotter_counts_timed_only(self, gates, clock):
        practice = attempt(clock, 0.1, activity=ActivityType.ISSUE_SPOTTER, mode=AttemptMode.PRACTICE)

        assert gates.evaluate_attempts("s1", [practice]).issue_spotter_passing

    def test_raising_scores_never_breaks_a_passing_gate(self, gates, clock):
        passing = [attempt(clock, 0.6), attempt(clock, 0.7)]
        raised = [attempt(clock, 0.9), attempt(clock, 0.7)]

        assert gates.evaluate_attempts("s1", passing).quiz_passing
        assert gates.evaluate_attempts("s1", raised).quiz_passing

    @pytest.mark.parametrize("count", [2, 3, 7, 10])
    @pytest.mark.parametrize(
        "fmt,score,field",
        [
            (AttemptFormat.FLASHCARD, 0.7, "memory_check_passing"),
            (AttemptFormat.MCQ, 0.6, "quiz_passing"),
            (AttemptFormat.ORAL, 0.6, "drill_passing"),
        ],
    )
    def test_mean_exactly_at_threshold_passes(self, gates, clock, count, fmt, score, field):
        status = gates.evaluate_attempts("s1", [attempt(clock, score, fmt=fmt) for _ in range(count)])

        assert getattr(status, field)
        assert status.overall_passing
        assert status.failure_reasons == []


class TestVerification:
    def timed(self, clock, hours_ago, tags=()):
        return attempt(clock, 0.8, mode=AttemptMode.TIMED, tags=tags, hours_ago=hours_ago)

    def test_verified(self, gates, clock):
        passes = [self.timed(clock, 30), self.timed(clock, 0)]

        result = gates.verify("s1", 0.9, passes, ["hearsay"])

        assert result.is_verified
        assert result.timed_pass_count == 2
        assert result.hours_between_passes == pytest.approx(30.0)

    def test_low_mastery(self, gates, clock):
        result = gates.verify("s1", 0.8, [self.timed(clock, 30), self.timed(clock, 0)], [])

        assert not result.is_verified
        assert any("p_mastery" in r for r in result.failure_reasons)

    def test_passes_too_close(self, gates, clock):
        result = gates.verify("s1", 0.9, [self.timed(clock, 10), self.timed(clock, 0)], [])

        assert not result.is_verified
        assert result.hours_between_passes == pytest.approx(10.0)

    def test_single_pass(self, gates, clock):
        result = gates.verify("s1", 0.95, [self.timed(clock, 0)], [])

        assert not result.is_verified
        assert result.timed_pass_count == 1

    def test_repeated_error_tag_blocks(self, gates, clock):
        passes = [self.timed(clock, 48), self.timed(clock, 0, tags=["hearsay"])]

        result = gates.verify("s1", 0.9, passes, ["hearsay", "standing"])

        assert not result.is_verified
        assert not result.error_tags_cleared

    def test_practice_attempts_ignored(self, gates, clock):
        practice = attempt(clock, 1.0, hours_ago=48)

        result = gates.verify("s1", 0.9, [practice, self.timed(clock, 0)], [])

        assert result.timed_pass_count == 1

    def test_top_error_tags(self, gates, clock):
        history = [
            attempt(clock, 0.3, tags=["a", "b"]),
            attempt(clock, 0.3, tags=["b", "c"]),
            attempt(clock, 0.3, tags=["b", "d", "a"]),
        ]

        assert gates.top_error_tags(history) == ["b", "a", "c"]
