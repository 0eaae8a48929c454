"""
Skill Graph.

Static catalog of units and skills with prerequisite edges and exam weights.
Every other component reads it; nothing mutates it at runtime except
deactivating a skill.

Invariants:
- Prerequisite edges form a DAG (a cycle raises SkillGraphError)
- Every prerequisite id refers to a skill in the graph
- Every skill belongs to a declared unit
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable
from dataclasses import replace

from loguru import logger

from mastery_hub.core.errors import SkillGraphError
from mastery_hub.core.models import Skill, Unit


class SkillGraph:
    """Curriculum DAG keyed by skill id."""

    def __init__(self, units: Iterable[Unit], skills: Iterable[Skill]):
        self._units: dict[str, Unit] = {u.id: u for u in units}
        self._skills: dict[str, Skill] = {}

        for skill in skills:
            if skill.id in self._skills:
                raise SkillGraphError(f"Duplicate skill id: {skill.id}")
            if skill.unit_id not in self._units:
                raise SkillGraphError(f"Skill {skill.id} references unknown unit {skill.unit_id}")
            self._skills[skill.id] = skill

        for skill in self._skills.values():
            missing = skill.prerequisite_skill_ids - self._skills.keys()
            if missing:
                raise SkillGraphError(
                    f"Skill {skill.id} has unknown prerequisites: {sorted(missing)}"
                )

        self._order = self._topological_order()
        logger.debug(
            "SkillGraph loaded: {} units, {} skills", len(self._units), len(self._skills)
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._skills

    def __len__(self) -> int:
        return len(self._skills)

    def skill(self, skill_id: str) -> Skill:
        """Get a skill by id, raising SkillGraphError if unknown."""
        try:
            return self._skills[skill_id]
        except KeyError:
            raise SkillGraphError(f"Unknown skill: {skill_id}") from None

    def get(self, skill_id: str) -> Skill | None:
        return self._skills.get(skill_id)

    def unit(self, unit_id: str) -> Unit:
        try:
            return self._units[unit_id]
        except KeyError:
            raise SkillGraphError(f"Unknown unit: {unit_id}") from None

    @property
    def units(self) -> list[Unit]:
        return list(self._units.values())

    def skills(self, include_inactive: bool = False) -> list[Skill]:
        """All skills in topological order (prerequisites first)."""
        return [
            self._skills[sid]
            for sid in self._order
            if include_inactive or self._skills[sid].is_active
        ]

    def skills_in_unit(self, unit_id: str, include_inactive: bool = False) -> list[Skill]:
        """Skills of one unit in topological order."""
        return [s for s in self.skills(include_inactive) if s.unit_id == unit_id]

    def skills_by_unit(self) -> dict[str, list[Skill]]:
        """Active skills grouped by unit id (units without skills map to [])."""
        grouped: dict[str, list[Skill]] = {unit_id: [] for unit_id in self._units}
        for skill in self.skills():
            grouped[skill.unit_id].append(skill)
        return grouped

    # =========================================================================
    # Prerequisites
    # =========================================================================

    def prerequisites(self, skill_id: str, transitive: bool = False) -> set[str]:
        """Direct (or all transitive) prerequisite ids of a skill."""
        direct = set(self.skill(skill_id).prerequisite_skill_ids)
        if not transitive:
            return direct

        seen: set[str] = set()
        stack = list(direct)
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._skills[current].prerequisite_skill_ids)
        return seen

    def prerequisites_satisfied(self, skill_id: str, satisfied: set[str]) -> bool:
        """True if every active direct prerequisite is in the satisfied set."""
        return all(
            prereq in satisfied
            for prereq in self.skill(skill_id).prerequisite_skill_ids
            if self._skills[prereq].is_active
        )

    def apply_prerequisite_gating(self, skill_ids: list[str], satisfied: set[str]) -> list[str]:
        """Keep only skills whose prerequisites are satisfied, preserving order."""
        return [sid for sid in skill_ids if self.prerequisites_satisfied(sid, satisfied)]

    # =========================================================================
    # Mutation
    # =========================================================================

    def deactivate(self, skill_id: str) -> Skill:
        """Mark a skill inactive; the only runtime change a skill allows."""
        skill = replace(self.skill(skill_id), is_active=False)
        self._skills[skill_id] = skill
        logger.info("Skill {} deactivated", skill_id)
        return skill

    # =========================================================================
    # Internals
    # =========================================================================

    def _topological_order(self) -> list[str]:
        """Kahn's algorithm; raises on cycles. Ties break by (unit, code)."""
        indegree = {sid: len(s.prerequisite_skill_ids) for sid, s in self._skills.items()}
        dependents: dict[str, list[str]] = defaultdict(list)
        for sid, skill in self._skills.items():
            for prereq in skill.prerequisite_skill_ids:
                dependents[prereq].append(sid)

        def sort_key(sid: str) -> tuple[str, str]:
            s = self._skills[sid]
            return (s.unit_id, s.code)

        ready = deque(sorted((sid for sid, d in indegree.items() if d == 0), key=sort_key))
        order: list[str] = []
        while ready:
            current = ready.popleft()
            order.append(current)
            for dependent in sorted(dependents[current], key=sort_key):
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    ready.append(dependent)

        if len(order) != len(self._skills):
            cyclic = sorted(sid for sid, d in indegree.items() if d > 0)
            raise SkillGraphError(f"Prerequisite cycle detected among skills: {cyclic}")
        return order
