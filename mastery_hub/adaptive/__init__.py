"""
Adaptive Learning Engine.

Components:
- MasteryStateStore: bounded-delta mastery updates (single writer)
- GateEvaluator: per-category pass marks and the verification gate
- RemediationEngine: severity diagnosis and activity prescriptions
- activity_mix: session blueprints and remediation blending
"""

from mastery_hub.adaptive.activity_mix import apply_remediation_to_mix, estimate_minutes
from mastery_hub.adaptive.gates import GateEvaluator, categorize
from mastery_hub.adaptive.mastery_store import MasteryStateStore, update_mastery
from mastery_hub.adaptive.remediation import RemediationEngine, SeverityRule, diagnose

__all__ = [
    # Mastery
    "MasteryStateStore",
    "update_mastery",
    # Gates
    "GateEvaluator",
    "categorize",
    # Remediation
    "RemediationEngine",
    "SeverityRule",
    "diagnose",
    "apply_remediation_to_mix",
    "estimate_minutes",
]
