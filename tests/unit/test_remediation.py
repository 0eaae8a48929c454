"""
Unit tests for remediation diagnosis and mix blending.

Severity is a reduction over rules, so each rule is exercised with a
DiagnosisInput built by hand.
"""

import pytest

from mastery_hub.adaptive.activity_mix import (
    REMEDIATION_MIXES,
    adjust_for_duration,
    apply_remediation_to_mix,
    default_mix,
    estimate_minutes,
    mix_for_skill,
    remediation_mix,
)
from mastery_hub.adaptive.remediation import (
    DiagnosisInput,
    RemediationEngine,
    build_severity_rules,
    count_consecutive_failures,
    diagnose,
    recurring_error_patterns,
)
from mastery_hub.core.engine_config import RemediationConfig
from mastery_hub.core.models import (
    ActivityMixItem,
    ActivityType,
    Attempt,
    AttemptFormat,
    AttemptMode,
    Difficulty,
    ErrorPattern,
    GateStatus,
    RemediationPrescription,
    Severity,
)

RULES = build_severity_rules(RemediationConfig())


def gates(passing: bool = True) -> GateStatus:
    return GateStatus(
        skill_id="s1",
        memory_check_passing=passing,
        quiz_passing=passing,
        issue_spotter_passing=True,
        drill_passing=passing,
        overall_passing=passing,
    )


def inputs(p=0.8, gate_status=None, patterns=0, failures=0) -> DiagnosisInput:
    return DiagnosisInput(
        p_mastery=p,
        gate_status=gate_status or gates(),
        error_patterns=tuple(ErrorPattern(f"tag{i}", 2) for i in range(patterns)),
        consecutive_failures=failures,
    )


class TestDiagnose:
    def test_healthy_skill_needs_nothing(self):
        assert diagnose(RULES, inputs()) is None

    def test_low_mastery_is_severe(self):
        severity, reasons = diagnose(RULES, inputs(p=0.2))

        assert severity == Severity.SEVERE
        assert reasons == ["Low mastery (20%)"]

    def test_developing_mastery_is_moderate(self):
        severity, _ = diagnose(RULES, inputs(p=0.5))

        assert severity == Severity.MODERATE

    def test_consecutive_failures_severe_despite_high_mastery(self):
        severity, reasons = diagnose(RULES, inputs(p=0.75, failures=3))

        assert severity == Severity.SEVERE
        assert "3 consecutive failed attempts" in reasons

    def test_failing_gates_collect_reasons(self):
        severity, reasons = diagnose(RULES, inputs(gate_status=gates(passing=False)))

        assert severity == Severity.MODERATE
        assert len(reasons) == 3

    @pytest.mark.parametrize(("patterns", "expected"), [(1, Severity.MODERATE), (3, Severity.SEVERE)])
    def test_error_patterns(self, patterns, expected):
        severity, _ = diagnose(RULES, inputs(patterns=patterns))

        assert severity == expected

    def test_highest_floor_wins(self):
        severity, reasons = diagnose(RULES, inputs(p=0.5, patterns=3))

        assert severity == Severity.SEVERE
        assert len(reasons) == 2


class TestHistoryHelpers:
    def make(self, clock, score, minutes_ago, tags=()):
        from datetime import timedelta

        return Attempt(
            learner_id="l1",
            item_id="i",
            skill_ids=("s1",),
            format=AttemptFormat.MCQ,
            mode=AttemptMode.PRACTICE,
            score_norm=score,
            timestamp=clock.now() - timedelta(minutes=minutes_ago),
            error_tags=frozenset(tags),
        )

    def test_consecutive_failures_counts_from_latest(self, clock):
        attempts = [
            self.make(clock, 0.2, 40),
            self.make(clock, 0.9, 30),
            self.make(clock, 0.5, 20),
            self.make(clock, 0.1, 10),
        ]

        assert count_consecutive_failures(attempts, 0.6) == 2

    def test_recurring_patterns(self, clock):
        attempts = [
            self.make(clock, 0.2, 3, ["hearsay", "venue"]),
            self.make(clock, 0.2, 2, ["hearsay"]),
            self.make(clock, 0.2, 1, ["standing"]),
        ]

        patterns = recurring_error_patterns(attempts, 2)

        assert patterns == [ErrorPattern("hearsay", 2)]


def prescription(severity: Severity) -> RemediationPrescription:
    activities = remediation_mix(severity)
    return RemediationPrescription(
        skill_id="s1",
        skill_name="Skill",
        severity=severity,
        reasons=[],
        prescribed_activities=activities,
        estimated_minutes=estimate_minutes(activities),
    )


PLANNED = [
    ActivityMixItem(ActivityType.READING_NOTES, 1, Difficulty.MEDIUM),
    ActivityMixItem(ActivityType.WRITTEN_QUIZ, 5, Difficulty.MEDIUM),
    ActivityMixItem(ActivityType.ISSUE_SPOTTER, 2, Difficulty.HARD),
]


class TestBlending:
    def test_severe_replaces_plan(self):
        blended = apply_remediation_to_mix(PLANNED, prescription(Severity.SEVERE))

        assert blended == list(REMEDIATION_MIXES[Severity.SEVERE])

    def test_moderate_halves_and_merges(self):
        blended = {item.activity_type: item for item in apply_remediation_to_mix(PLANNED, prescription(Severity.MODERATE))}

        # Planned quiz 5 -> 3 (ceil), plus half of prescribed 3 -> 2
        assert blended[ActivityType.WRITTEN_QUIZ].count == 5
        assert blended[ActivityType.ISSUE_SPOTTER].count == 1
        assert blended[ActivityType.ISSUE_SPOTTER].difficulty == Difficulty.EASY
        assert blended[ActivityType.FLASHCARDS].count == 3

    def test_mild_adds_flashcards(self):
        blended = apply_remediation_to_mix(PLANNED, prescription(Severity.MILD))

        assert blended[:3] == PLANNED
        assert blended[-1] == ActivityMixItem(ActivityType.FLASHCARDS, 4, Difficulty.EASY)

    def test_mild_bumps_existing_recall_work(self):
        planned = [ActivityMixItem(ActivityType.FLASHCARDS, 4, Difficulty.MEDIUM)]

        blended = apply_remediation_to_mix(planned, prescription(Severity.MILD))

        assert blended == [ActivityMixItem(ActivityType.FLASHCARDS, 6, Difficulty.EASY)]

    def test_engine_blends_with_configured_increment(self, graph):
        engine = RemediationEngine(graph, store=None, gates=None, config=RemediationConfig(mild_reinforcement_increment=3))
        planned = [ActivityMixItem(ActivityType.MEMORY_CHECK, 2, Difficulty.MEDIUM)]

        blended = engine.apply_to_mix(planned, prescription(Severity.MILD))

        assert blended == [
            ActivityMixItem(ActivityType.MEMORY_CHECK, 5, Difficulty.EASY),
            ActivityMixItem(ActivityType.FLASHCARDS, 4, Difficulty.EASY),
        ]


class TestMixCatalog:
    def test_severe_mix_has_no_issue_spotting(self):
        types = {item.activity_type for item in remediation_mix(Severity.SEVERE)}

        assert ActivityType.ISSUE_SPOTTER not in types
        assert ActivityType.ESSAY_OUTLINE not in types

    def test_weak_skill_gets_foundational_mix(self):
        mix = mix_for_skill(45, p_mastery=0.2)

        assert all(item.difficulty != Difficulty.HARD for item in mix)

    def test_strong_skill_gets_application_mix(self):
        types = {item.activity_type for item in mix_for_skill(45, p_mastery=0.9)}

        assert ActivityType.PAST_PAPER_STYLE in types

    @pytest.mark.parametrize("minutes,expected", [(30, 5), (45, 6), (60, 7)])
    def test_default_mix_by_length(self, minutes, expected):
        assert len(default_mix(minutes)) == expected

    def test_scaling_keeps_every_activity(self):
        scaled = adjust_for_duration(default_mix(45), 15)

        assert len(scaled) == 6
        assert min(item.count for item in scaled) == 1
        assert scaled[1].count == 2
