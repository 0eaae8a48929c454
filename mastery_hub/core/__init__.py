"""
Core engine primitives.

- Clock: injectable time source
- EngineConfig: explicit configuration for every component
- Domain models and enums
- Error taxonomy
"""

from mastery_hub.core.clock import Clock, FixedClock, SystemClock
from mastery_hub.core.engine_config import (
    EngineConfig,
    GateConfig,
    MasteryConfig,
    OrchestratorConfig,
    PacingConfig,
    PhaseConfig,
    RemediationConfig,
    SM2Config,
)
from mastery_hub.core.errors import (
    CollaboratorError,
    ConcurrentUpdateError,
    InvalidInputError,
    InvalidTransitionError,
    MasteryHubError,
    NeedsOnboardingError,
    NotFoundError,
    SkillGraphError,
)

__all__ = [
    # Clocks
    "Clock",
    "FixedClock",
    "SystemClock",
    # Configuration
    "EngineConfig",
    "GateConfig",
    "MasteryConfig",
    "OrchestratorConfig",
    "PacingConfig",
    "PhaseConfig",
    "RemediationConfig",
    "SM2Config",
    # Errors
    "CollaboratorError",
    "ConcurrentUpdateError",
    "InvalidInputError",
    "InvalidTransitionError",
    "MasteryHubError",
    "NeedsOnboardingError",
    "NotFoundError",
    "SkillGraphError",
]
