"""
Explicit engine configuration.

Every tunable constant (thresholds, ratios, costs) lives in one of these
frozen dataclasses and is passed to components at construction time, so
tests can inject thresholds without touching module globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mastery_hub.core.models import ExamPhase

if TYPE_CHECKING:
    from config import Settings


@dataclass(frozen=True)
class SM2Config:
    """Configuration for the SM-2 algorithm."""

    initial_easiness: float = 2.5
    minimum_easiness: float = 1.3
    first_interval: int = 1  # Days for first review
    second_interval: int = 6  # Days for second review
    max_interval: int = 365


@dataclass(frozen=True)
class MasteryConfig:
    """Bounded-delta update rule and onboarding priors."""

    learning_rate: float = 0.15
    max_delta_positive: float = 0.10
    max_delta_negative: float = -0.12
    stability_growth: float = 1.3
    min_stability: float = 1.0
    max_stability: float = 30.0
    success_threshold: float = 0.6
    default_prior: float = 0.10
    strong_prior: float = 0.25
    neutral_prior: float = 0.10
    weak_prior: float = 0.05
    cas_retries: int = 5


@dataclass(frozen=True)
class GateConfig:
    """Per-category pass marks and the verification gate."""

    memory_check: float = 0.70
    quiz: float = 0.60
    issue_spotter: float = 0.50
    rule_drill: float = 0.60
    lookback_days: int = 30
    # Verification (timed proof) gate
    verify_min_p_mastery: float = 0.85
    verify_required_timed_passes: int = 2
    verify_min_hours_between_passes: float = 24.0
    verify_top_error_tags: int = 3


@dataclass(frozen=True)
class RemediationConfig:
    """Severity rules and blending knobs."""

    weak_skill_threshold: float = 0.4
    stable_skill_threshold: float = 0.7
    max_consecutive_failures: int = 3
    repeated_error_count: int = 2
    severe_pattern_count: int = 3
    failure_score: float = 0.6  # Attempts below this count as failed
    lookback_days: int = 30
    mild_reinforcement_increment: int = 2
    mild_flashcard_default: int = 4


@dataclass(frozen=True)
class PhaseConfig:
    """Time budget for one exam phase."""

    new_learning_ratio: float
    review_ratio: float
    practice_ratio: float
    daily_minutes_target: int
    sessions_per_day: int


DEFAULT_PHASES: dict[ExamPhase, PhaseConfig] = {
    ExamPhase.FOUNDATION: PhaseConfig(0.60, 0.20, 0.20, 120, 4),
    ExamPhase.INTENSIVE: PhaseConfig(0.40, 0.30, 0.30, 180, 6),
    ExamPhase.REVISION: PhaseConfig(0.20, 0.40, 0.40, 240, 8),
    ExamPhase.FINAL: PhaseConfig(0.10, 0.50, 0.40, 180, 6),
}


@dataclass(frozen=True)
class OrchestratorConfig:
    """Daily plan construction."""

    phases: dict[ExamPhase, PhaseConfig] = field(default_factory=lambda: dict(DEFAULT_PHASES))
    review_item_minutes: int = 15
    new_item_minutes: int = 25
    practice_item_minutes: int = 20
    min_unit_debt: float = 0.1
    max_urgent_reviews: int = 20
    practice_source_window: int = 3  # Practice draws from the first N queued skills
    regenerate_every_n_attempts: int = 5
    foundation_after_days: int = 180
    intensive_after_days: int = 60
    revision_after_days: int = 14


@dataclass(frozen=True)
class PacingConfig:
    """Break and switch thresholds (minutes unless noted)."""

    short_break_after: int = 25
    long_break_after: int = 90
    max_continuous_study: int = 120
    consecutive_wrong_trigger: int = 2
    performance_drop_threshold: float = 0.30
    consecutive_wrong_for_switch: int = 3
    recent_window: int = 10
    drop_window: int = 3
    min_scores_for_drop: int = 5
    short_break_duration: int = 5
    long_break_duration: int = 15
    extended_break_duration: int = 30


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""

    sm2: SM2Config = field(default_factory=SM2Config)
    mastery: MasteryConfig = field(default_factory=MasteryConfig)
    gates: GateConfig = field(default_factory=GateConfig)
    remediation: RemediationConfig = field(default_factory=RemediationConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    pacing: PacingConfig = field(default_factory=PacingConfig)

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineConfig:
        """Build the engine configuration from environment settings."""
        return cls(
            sm2=SM2Config(
                initial_easiness=settings.sm2_initial_easiness,
                minimum_easiness=settings.sm2_minimum_easiness,
                first_interval=settings.sm2_first_interval,
                second_interval=settings.sm2_second_interval,
                max_interval=settings.sm2_max_interval,
            ),
            mastery=MasteryConfig(
                learning_rate=settings.mastery_learning_rate,
                max_delta_positive=settings.mastery_max_delta_positive,
                max_delta_negative=settings.mastery_max_delta_negative,
                stability_growth=settings.mastery_stability_growth,
                max_stability=settings.mastery_max_stability,
                success_threshold=settings.mastery_success_threshold,
                default_prior=settings.mastery_default_prior,
            ),
            gates=GateConfig(
                memory_check=settings.gate_memory_check,
                quiz=settings.gate_quiz,
                issue_spotter=settings.gate_issue_spotter,
                rule_drill=settings.gate_rule_drill,
                lookback_days=settings.gate_lookback_days,
            ),
            remediation=RemediationConfig(
                weak_skill_threshold=settings.remediation_weak_threshold,
                stable_skill_threshold=settings.remediation_stable_threshold,
                max_consecutive_failures=settings.remediation_max_consecutive_failures,
                repeated_error_count=settings.remediation_repeated_error_count,
                lookback_days=settings.gate_lookback_days,
            ),
            orchestrator=OrchestratorConfig(
                review_item_minutes=settings.plan_review_item_minutes,
                new_item_minutes=settings.plan_new_item_minutes,
                practice_item_minutes=settings.plan_practice_item_minutes,
                min_unit_debt=settings.plan_min_unit_debt,
                regenerate_every_n_attempts=settings.plan_regenerate_every_n_attempts,
            ),
            pacing=PacingConfig(
                short_break_after=settings.pacing_short_break_after,
                long_break_after=settings.pacing_long_break_after,
                max_continuous_study=settings.pacing_max_continuous_study,
                consecutive_wrong_trigger=settings.pacing_consecutive_wrong_trigger,
                performance_drop_threshold=settings.pacing_performance_drop_threshold,
                consecutive_wrong_for_switch=settings.pacing_consecutive_wrong_for_switch,
            ),
        )
