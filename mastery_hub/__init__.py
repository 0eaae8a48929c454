"""
mastery-hub: adaptive mastery and session orchestration for exam preparation.

Tracks per-skill mastery, schedules spaced-repetition reviews, evaluates
readiness gates, prescribes remediation and builds daily study plans.
"""

__version__ = "0.1.0"
