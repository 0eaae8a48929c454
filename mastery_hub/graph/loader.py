"""
Curriculum file loader.

Reads units and skills from YAML (or JSON) into a validated SkillGraph.
Skills may reference their unit and prerequisites by id or by code.

Expected format:
    ```yaml
    units:
      - id: civ-pro
        code: CIV
        name: Civil Procedure
        exam_weight: 0.2
    skills:
      - id: civ-jurisdiction
        code: CIV-01
        unit: CIV
        name: Jurisdiction
        exam_weight: 0.3
        difficulty_tier: foundation
        prerequisites: []
    ```
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from mastery_hub.core.errors import SkillGraphError
from mastery_hub.core.models import DifficultyTier, Skill, Unit
from mastery_hub.graph.skill_graph import SkillGraph


def load_curriculum_file(path: str | Path) -> SkillGraph:
    file_path = Path(path)
    with file_path.open(encoding="utf-8") as f:
        if file_path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    return parse_curriculum(data or {})


def parse_curriculum(data: dict[str, Any]) -> SkillGraph:
    """Build a SkillGraph from already-parsed curriculum data."""
    try:
        units = [
            Unit(
                id=str(raw["id"]),
                code=str(raw.get("code", raw["id"])),
                name=raw.get("name", ""),
                exam_weight=float(raw.get("exam_weight", 1.0)),
            )
            for raw in data.get("units", [])
        ]
        unit_ids = {u.code: u.id for u in units} | {u.id: u.id for u in units}

        raw_skills = data.get("skills", [])
        skill_ids = {str(r.get("code", r["id"])): str(r["id"]) for r in raw_skills}
        skill_ids |= {str(r["id"]): str(r["id"]) for r in raw_skills}

        skills = [
            Skill(
                id=str(raw["id"]),
                code=str(raw.get("code", raw["id"])),
                unit_id=unit_ids.get(str(raw["unit"]), str(raw["unit"])),
                exam_weight=float(raw.get("exam_weight", 0.0)),
                difficulty_tier=DifficultyTier(raw.get("difficulty_tier", DifficultyTier.CORE.value)),
                prerequisite_skill_ids=frozenset(
                    skill_ids.get(str(ref), str(ref)) for ref in raw.get("prerequisites") or ()
                ),
                name=raw.get("name", ""),
                is_active=bool(raw.get("is_active", True)),
            )
            for raw in raw_skills
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise SkillGraphError(f"Malformed curriculum: {e}") from e

    return SkillGraph(units, skills)
