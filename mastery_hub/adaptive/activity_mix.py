"""
Activity Mix Catalog.

Default session blueprints by length, weak/strong skill variants, the
remediation mixes per severity, and the blending of a remediation
prescription into a planned mix.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import replace

from mastery_hub.core.models import (
    ActivityMixItem,
    ActivityType,
    Difficulty,
    RemediationPrescription,
    Severity,
)

A = ActivityType
E, M, H = Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD

# =============================================================================
# Session blueprints
# =============================================================================

DEFAULT_MIX_30_MINUTES: tuple[ActivityMixItem, ...] = (
    ActivityMixItem(A.READING_NOTES, 1, M),
    ActivityMixItem(A.MEMORY_CHECK, 4, M),
    ActivityMixItem(A.FLASHCARDS, 4, E),
    ActivityMixItem(A.WRITTEN_QUIZ, 4, M),
    ActivityMixItem(A.RULE_ELEMENTS_DRILL, 3, M),
)

DEFAULT_MIX_45_MINUTES: tuple[ActivityMixItem, ...] = (
    ActivityMixItem(A.READING_NOTES, 1, M),
    ActivityMixItem(A.MEMORY_CHECK, 6, M),
    ActivityMixItem(A.FLASHCARDS, 6, E),
    ActivityMixItem(A.WRITTEN_QUIZ, 6, M),
    ActivityMixItem(A.ISSUE_SPOTTER, 1, H),
    ActivityMixItem(A.RULE_ELEMENTS_DRILL, 4, M),
)

DEFAULT_MIX_60_MINUTES: tuple[ActivityMixItem, ...] = (
    ActivityMixItem(A.READING_NOTES, 1, M),
    ActivityMixItem(A.MEMORY_CHECK, 8, M),
    ActivityMixItem(A.FLASHCARDS, 8, E),
    ActivityMixItem(A.WRITTEN_QUIZ, 8, M),
    ActivityMixItem(A.ISSUE_SPOTTER, 2, H),
    ActivityMixItem(A.RULE_ELEMENTS_DRILL, 5, M),
    ActivityMixItem(A.ESSAY_OUTLINE, 1, H),
)

WEAK_SKILL_MIX: tuple[ActivityMixItem, ...] = (
    ActivityMixItem(A.READING_NOTES, 1, E),
    ActivityMixItem(A.MEMORY_CHECK, 4, E),
    ActivityMixItem(A.FLASHCARDS, 8, E),
    ActivityMixItem(A.RULE_ELEMENTS_DRILL, 6, E),
    ActivityMixItem(A.ERROR_CORRECTION, 3, M),
    ActivityMixItem(A.WRITTEN_QUIZ, 3, E),
)

STRONG_SKILL_MIX: tuple[ActivityMixItem, ...] = (
    ActivityMixItem(A.READING_NOTES, 1, H),
    ActivityMixItem(A.MEMORY_CHECK, 4, H),
    ActivityMixItem(A.ISSUE_SPOTTER, 2, H),
    ActivityMixItem(A.WRITTEN_QUIZ, 6, H),
    ActivityMixItem(A.ESSAY_OUTLINE, 1, H),
    ActivityMixItem(A.PAST_PAPER_STYLE, 1, H),
)

# =============================================================================
# Remediation mixes
# =============================================================================

REMEDIATION_MIXES: dict[Severity, tuple[ActivityMixItem, ...]] = {
    Severity.MILD: (
        ActivityMixItem(A.READING_NOTES, 1, M),
        ActivityMixItem(A.FLASHCARDS, 4, E),
        ActivityMixItem(A.MEMORY_CHECK, 4, E),
        ActivityMixItem(A.WRITTEN_QUIZ, 3, E),
    ),
    Severity.MODERATE: (
        ActivityMixItem(A.READING_NOTES, 1, E),
        ActivityMixItem(A.FLASHCARDS, 6, E),
        ActivityMixItem(A.MEMORY_CHECK, 6, E),
        ActivityMixItem(A.RULE_ELEMENTS_DRILL, 4, E),
        ActivityMixItem(A.ERROR_CORRECTION, 3, M),
        ActivityMixItem(A.WRITTEN_QUIZ, 3, E),
    ),
    # No issue spotter or essay work until fundamentals stabilise
    Severity.SEVERE: (
        ActivityMixItem(A.READING_NOTES, 2, E),
        ActivityMixItem(A.FLASHCARDS, 8, E),
        ActivityMixItem(A.MEMORY_CHECK, 8, E),
        ActivityMixItem(A.RULE_ELEMENTS_DRILL, 6, E),
        ActivityMixItem(A.ERROR_CORRECTION, 5, E),
        ActivityMixItem(A.WRITTEN_QUIZ, 4, E),
    ),
}

ACTIVITY_MINUTES: dict[ActivityType, int] = {
    A.READING_NOTES: 10,
    A.ESSAY_OUTLINE: 15,
    A.ISSUE_SPOTTER: 10,
}
DEFAULT_ACTIVITY_MINUTES = 3

BASELINE_SESSION_MINUTES = 45


def activity_minutes(activity_type: ActivityType) -> int:
    """Per-item minutes for an activity type."""
    return ACTIVITY_MINUTES.get(activity_type, DEFAULT_ACTIVITY_MINUTES)


def estimate_minutes(mix: Sequence[ActivityMixItem]) -> int:
    return sum(item.count * activity_minutes(item.activity_type) for item in mix)


def remediation_mix(severity: Severity) -> list[ActivityMixItem]:
    return list(REMEDIATION_MIXES[severity])


def default_mix(minutes: int) -> list[ActivityMixItem]:
    """Blueprint for a session of the given length."""
    if minutes <= 35:
        return list(DEFAULT_MIX_30_MINUTES)
    if minutes <= 50:
        return list(DEFAULT_MIX_45_MINUTES)
    return list(DEFAULT_MIX_60_MINUTES)


def adjust_for_duration(mix: Sequence[ActivityMixItem], minutes: int) -> list[ActivityMixItem]:
    """Scale counts from the 45-minute baseline; every activity keeps at least one item."""
    factor = minutes / BASELINE_SESSION_MINUTES
    return [replace(item, count=max(1, math.floor(item.count * factor + 0.5))) for item in mix]


def mix_for_skill(minutes: int, p_mastery: float, consecutive_wrong: int = 0) -> list[ActivityMixItem]:
    """
    Pick a blueprint for one skill.

    Weak skills (pMastery < 0.4 or 3+ wrong in a row) get the foundational
    mix, strong skills (pMastery > 0.8) the application mix, everything
    else the default mix for the session length.
    """
    if p_mastery < 0.4 or consecutive_wrong >= 3:
        return adjust_for_duration(WEAK_SKILL_MIX, minutes)
    if p_mastery > 0.8:
        return adjust_for_duration(STRONG_SKILL_MIX, minutes)
    return default_mix(minutes)


def apply_remediation_to_mix(
    original_mix: Sequence[ActivityMixItem],
    prescription: RemediationPrescription,
    mild_increment: int = 2,
    mild_flashcard_default: int = 4,
) -> list[ActivityMixItem]:
    """
    Blend a remediation prescription into a planned activity mix.

    - severe: the prescription replaces the plan outright
    - moderate: every planned activity is halved (rounded up) and forced
      to easy, then half of each prescribed activity is added on top,
      merging counts where activity types coincide
    - mild: the plan stays, flashcards and memory checks get a small bump
    """
    if prescription.severity == Severity.SEVERE:
        return list(prescription.prescribed_activities)

    if prescription.severity == Severity.MODERATE:
        blended: dict[ActivityType, ActivityMixItem] = {}
        for item in original_mix:
            blended[item.activity_type] = replace(
                item, count=math.ceil(item.count * 0.5), difficulty=Difficulty.EASY
            )
        for item in prescription.prescribed_activities:
            half = math.ceil(item.count * 0.5)
            existing = blended.get(item.activity_type)
            if existing is not None:
                blended[item.activity_type] = replace(existing, count=existing.count + half)
            else:
                blended[item.activity_type] = replace(item, count=half)
        return list(blended.values())

    result = list(original_mix)
    has_flashcards = False
    for index, item in enumerate(result):
        if item.activity_type in (A.FLASHCARDS, A.MEMORY_CHECK):
            result[index] = replace(item, count=item.count + mild_increment, difficulty=Difficulty.EASY)
            has_flashcards = has_flashcards or item.activity_type == A.FLASHCARDS
    if not has_flashcards:
        result.append(ActivityMixItem(A.FLASHCARDS, mild_flashcard_default, Difficulty.EASY))
    return result
