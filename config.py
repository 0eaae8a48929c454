"""
Configuration settings for the mastery-hub engine.

Uses Pydantic Settings for environment variable management with .env file support.
Engine components never read these values directly; they receive an
EngineConfig built from them (see mastery_hub.core.engine_config).
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///mastery_hub.db",
        description="SQLAlchemy connection string (PostgreSQL in production)",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Collaborators
    # ========================================
    grader_url: str | None = Field(
        default=None,
        description="Base URL of the free-text grading service",
    )
    content_provider_url: str | None = Field(
        default=None,
        description="Base URL of the item/content generation service",
    )
    collaborator_timeout_ms: int = Field(
        default=30000,
        description="HTTP timeout for grader/content provider calls",
    )
    collaborator_retry_attempts: int = Field(
        default=3,
        description="Retry attempts for collaborator calls",
    )

    # ========================================
    # Spaced Repetition (SM-2)
    # ========================================
    sm2_initial_easiness: float = Field(default=2.5, description="Starting easiness factor")
    sm2_minimum_easiness: float = Field(default=1.3, description="Easiness factor floor")
    sm2_first_interval: int = Field(default=1, description="Days after the first success")
    sm2_second_interval: int = Field(default=6, description="Days after the second success")
    sm2_max_interval: int = Field(default=365, description="Interval cap in days")

    # ========================================
    # Mastery Update Rule
    # ========================================
    mastery_learning_rate: float = Field(
        default=0.15,
        description="Fraction of the score/mastery gap applied per attempt",
    )
    mastery_max_delta_positive: float = Field(
        default=0.10,
        description="Largest mastery gain from a single attempt",
    )
    mastery_max_delta_negative: float = Field(
        default=-0.12,
        description="Largest mastery loss from a single attempt",
    )
    mastery_stability_growth: float = Field(
        default=1.3,
        description="Stability multiplier applied on every attempt",
    )
    mastery_max_stability: float = Field(default=30.0, description="Stability cap in days")
    mastery_success_threshold: float = Field(
        default=0.6,
        description="Normalized score counted as a correct attempt",
    )
    mastery_default_prior: float = Field(
        default=0.10,
        description="pMastery for states created lazily without onboarding",
    )

    # ========================================
    # Gates
    # ========================================
    gate_memory_check: float = Field(default=0.70, description="Memory-check pass mark")
    gate_quiz: float = Field(default=0.60, description="Quiz pass mark")
    gate_issue_spotter: float = Field(default=0.50, description="Issue-spotter pass mark")
    gate_rule_drill: float = Field(default=0.60, description="Rule-drill pass mark")
    gate_lookback_days: int = Field(default=30, description="Attempt window for gate means")

    # ========================================
    # Remediation
    # ========================================
    remediation_weak_threshold: float = Field(default=0.4, description="Severe below this pMastery")
    remediation_stable_threshold: float = Field(
        default=0.7,
        description="Moderate below this pMastery",
    )
    remediation_max_consecutive_failures: int = Field(
        default=3,
        description="Consecutive failed attempts that force severe remediation",
    )
    remediation_repeated_error_count: int = Field(
        default=2,
        description="Occurrences of an error tag that make it a recurring pattern",
    )

    # ========================================
    # Orchestration
    # ========================================
    plan_review_item_minutes: int = Field(default=15, description="Cost of a review item")
    plan_new_item_minutes: int = Field(default=25, description="Cost of a new-learning item")
    plan_practice_item_minutes: int = Field(default=20, description="Cost of a practice item")
    plan_min_unit_debt: float = Field(
        default=0.1,
        description="Units at or below this coverage debt get no new-learning items",
    )
    plan_regenerate_every_n_attempts: int = Field(
        default=5,
        description="Regenerate today's plan after every Nth attempt (0 disables)",
    )

    # ========================================
    # Pacing
    # ========================================
    pacing_short_break_after: int = Field(default=25, description="Pomodoro interval (minutes)")
    pacing_long_break_after: int = Field(default=90, description="Long break threshold (minutes)")
    pacing_max_continuous_study: int = Field(
        default=120,
        description="Extended-session threshold (minutes)",
    )
    pacing_consecutive_wrong_trigger: int = Field(default=2, description="Wrong answers before a break")
    pacing_performance_drop_threshold: float = Field(
        default=0.30,
        description="Rolling-average drop that signals fatigue",
    )
    pacing_consecutive_wrong_for_switch: int = Field(
        default=3,
        description="Wrong answers on one skill before suggesting a switch",
    )

    # ========================================
    # Background Tasks
    # ========================================
    background_queue_size: int = Field(default=256, description="Pending task capacity")
    background_workers: int = Field(default=2, description="Worker threads draining the queue")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
