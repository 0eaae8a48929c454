"""
Remediation Engine.

Diagnoses a struggling skill and prescribes an activity mix.

Severity is a pure reduction over an ordered list of (condition, floor)
rules: every rule that fires contributes a reason, and the diagnosis is
the highest floor among them. No rule fired means no remediation.

Rules:
1. pMastery < weak threshold              -> severe
2. weak <= pMastery < stable threshold    -> moderate
3. memory-check / quiz / drill gate fails -> moderate (one rule each)
4. >= 3 recurring error patterns          -> severe
5. 1-2 recurring error patterns           -> moderate
6. >= 3 consecutive failed attempts       -> severe
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import date, timedelta

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from mastery_hub.adaptive.activity_mix import (
    apply_remediation_to_mix,
    estimate_minutes,
    remediation_mix,
)
from mastery_hub.adaptive.gates import GateEvaluator
from mastery_hub.adaptive.mastery_store import MasteryStateStore
from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.engine_config import RemediationConfig
from mastery_hub.core.models import (
    ActivityMixItem,
    Attempt,
    ErrorPattern,
    GateStatus,
    RemediationPrescription,
    Severity,
)
from mastery_hub.db.database import session_scope
from mastery_hub.db.queries import attempts_since
from mastery_hub.graph.skill_graph import SkillGraph


@dataclass(frozen=True)
class DiagnosisInput:
    """Everything a diagnosis looks at, gathered up front."""

    p_mastery: float
    gate_status: GateStatus
    error_patterns: tuple[ErrorPattern, ...]  # Recurring patterns only
    consecutive_failures: int


@dataclass(frozen=True)
class SeverityRule:
    """A condition that, when it holds, raises severity to at least `floor`."""

    name: str
    floor: Severity
    applies: Callable[[DiagnosisInput], bool]
    reason: Callable[[DiagnosisInput], str]


def build_severity_rules(config: RemediationConfig) -> tuple[SeverityRule, ...]:
    weak, stable = config.weak_skill_threshold, config.stable_skill_threshold
    severe_patterns = config.severe_pattern_count

    return (
        SeverityRule(
            "low_mastery",
            Severity.SEVERE,
            lambda x: x.p_mastery < weak,
            lambda x: f"Low mastery ({x.p_mastery:.0%})",
        ),
        SeverityRule(
            "developing_mastery",
            Severity.MODERATE,
            lambda x: weak <= x.p_mastery < stable,
            lambda x: f"Developing mastery ({x.p_mastery:.0%})",
        ),
        SeverityRule(
            "memory_check_gate",
            Severity.MODERATE,
            lambda x: not x.gate_status.memory_check_passing,
            lambda x: "Memory check below threshold",
        ),
        SeverityRule(
            "quiz_gate",
            Severity.MODERATE,
            lambda x: not x.gate_status.quiz_passing,
            lambda x: "Quiz score below threshold",
        ),
        SeverityRule(
            "drill_gate",
            Severity.MODERATE,
            lambda x: not x.gate_status.drill_passing,
            lambda x: "Rule drill score below threshold",
        ),
        SeverityRule(
            "many_error_patterns",
            Severity.SEVERE,
            lambda x: len(x.error_patterns) >= severe_patterns,
            lambda x: f"{len(x.error_patterns)} recurring error pattern(s)",
        ),
        SeverityRule(
            "some_error_patterns",
            Severity.MODERATE,
            lambda x: 0 < len(x.error_patterns) < severe_patterns,
            lambda x: f"{len(x.error_patterns)} recurring error pattern(s)",
        ),
        SeverityRule(
            "consecutive_failures",
            Severity.SEVERE,
            lambda x: x.consecutive_failures >= config.max_consecutive_failures,
            lambda x: f"{x.consecutive_failures} consecutive failed attempts",
        ),
    )


def diagnose(rules: Sequence[SeverityRule], inputs: DiagnosisInput) -> tuple[Severity, list[str]] | None:
    """Reduce the rules to (max severity, reasons), or None if none fired."""
    fired = [rule for rule in rules if rule.applies(inputs)]
    if not fired:
        return None
    return Severity.highest([r.floor for r in fired]), [r.reason(inputs) for r in fired]


def recurring_error_patterns(attempts: Sequence[Attempt], min_count: int) -> list[ErrorPattern]:
    """Error tags seen at least min_count times, most frequent first."""
    counts = Counter(tag for a in attempts for tag in a.error_tags)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [ErrorPattern(error_tag=tag, count_30d=n) for tag, n in ranked if n >= min_count]


def count_consecutive_failures(attempts: Sequence[Attempt], failure_score: float) -> int:
    """Failed attempts in a row, counting back from the most recent."""
    count = 0
    for attempt in sorted(attempts, key=lambda a: a.timestamp, reverse=True):
        if attempt.score_norm >= failure_score:
            break
        count += 1
    return count


def focus_areas(gate_status: GateStatus, patterns: Sequence[ErrorPattern]) -> list[str]:
    areas = []
    if not gate_status.memory_check_passing:
        areas.append("Memorization and recall")
    if not gate_status.quiz_passing:
        areas.append("Written comprehension")
    if not gate_status.drill_passing:
        areas.append("Rule element identification")
    if patterns:
        areas.append(f"Common error: {patterns[0].error_tag}")
    return areas


class RemediationEngine:
    """
    Prescribe remediation when a learner fails gates or struggles.

    Prescriptions are derived data: recomputed from attempt history on
    demand and cached for the calendar day, or until invalidate() is called
    for the learner.
    """

    def __init__(
        self,
        graph: SkillGraph,
        store: MasteryStateStore,
        gates: GateEvaluator,
        session_factory: sessionmaker[Session] | None = None,
        config: RemediationConfig | None = None,
        clock: Clock | None = None,
    ):
        self.graph = graph
        self.store = store
        self.gates = gates
        self._session_factory = session_factory
        self.config = config or RemediationConfig()
        self.clock = clock or SystemClock()
        self.rules = build_severity_rules(self.config)
        self._cache: dict[tuple[str, str, date], RemediationPrescription | None] = {}

    def diagnose_and_prescribe(
        self,
        learner_id: str,
        skill_id: str,
        session: Session | None = None,
    ) -> RemediationPrescription | None:
        """
        Diagnose one skill.

        Returns:
            RemediationPrescription, or None if nothing warrants remediation
        """
        today = self.clock.today()
        key = (learner_id, skill_id, today)
        if key in self._cache:
            return self._cache[key]
        # Entries from earlier days may rest on attempts now outside the lookback
        for stale in [k for k in self._cache if k[2] != today]:
            del self._cache[stale]

        skill = self.graph.skill(skill_id)
        since = self.clock.now() - timedelta(days=self.config.lookback_days)

        with self._get_session(session) as s:
            state = self.store.get_state(learner_id, skill_id, session=s)
            attempts = attempts_since(s, learner_id, since=since, skill_id=skill_id)

        gate_status = self.gates.evaluate_attempts(skill_id, attempts)
        patterns = recurring_error_patterns(attempts, self.config.repeated_error_count)
        inputs = DiagnosisInput(
            p_mastery=state.p_mastery,
            gate_status=gate_status,
            error_patterns=tuple(patterns),
            consecutive_failures=count_consecutive_failures(attempts, self.config.failure_score),
        )

        result = diagnose(self.rules, inputs)
        if result is None:
            self._cache[key] = None
            return None

        severity, reasons = result
        activities = remediation_mix(severity)
        prescription = RemediationPrescription(
            skill_id=skill_id,
            skill_name=skill.display_name,
            severity=severity,
            reasons=reasons,
            prescribed_activities=activities,
            estimated_minutes=estimate_minutes(activities),
            focus_areas=focus_areas(gate_status, patterns),
            error_patterns=patterns,
        )
        self._cache[key] = prescription
        logger.info(
            "Remediation for {}/{}: {} ({})",
            learner_id,
            skill.code,
            severity.value,
            "; ".join(reasons),
        )
        return prescription

    def remediation_needs(self, learner_id: str, unit_id: str | None = None) -> list[RemediationPrescription]:
        """
        Diagnose every practised skill below the stable threshold.

        Returns:
            Prescriptions sorted severe -> moderate -> mild
        """
        prescriptions = []
        for state in self.store.get_states(learner_id).values():
            if state.p_mastery >= self.config.stable_skill_threshold:
                continue
            skill = self.graph.get(state.skill_id)
            if skill is None or not skill.is_active:
                continue
            if unit_id is not None and skill.unit_id != unit_id:
                continue
            prescription = self.diagnose_and_prescribe(learner_id, state.skill_id)
            if prescription:
                prescriptions.append(prescription)

        return sorted(prescriptions, key=lambda p: -p.severity.rank)

    def apply_to_mix(
        self,
        original_mix: Sequence[ActivityMixItem],
        prescription: RemediationPrescription,
    ) -> list[ActivityMixItem]:
        return apply_remediation_to_mix(
            original_mix,
            prescription,
            mild_increment=self.config.mild_reinforcement_increment,
            mild_flashcard_default=self.config.mild_flashcard_default,
        )

    def invalidate(self, learner_id: str, skill_id: str | None = None) -> None:
        """Drop cached prescriptions after new attempts arrive."""
        for key in [k for k in self._cache if k[0] == learner_id and skill_id in (None, k[1])]:
            del self._cache[key]

    def _get_session(self, session: Session | None):
        if session is not None:
            return nullcontext(session)
        return session_scope(self._session_factory)
