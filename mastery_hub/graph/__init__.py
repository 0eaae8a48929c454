"""Curriculum graph: units, skills and prerequisite edges."""

from mastery_hub.graph.loader import load_curriculum_file, parse_curriculum
from mastery_hub.graph.skill_graph import SkillGraph

__all__ = ["SkillGraph", "load_curriculum_file", "parse_curriculum"]
