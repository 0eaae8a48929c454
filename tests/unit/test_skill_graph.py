"""
Unit tests for SkillGraph and the curriculum loader.
"""

import pytest

from mastery_hub.core.errors import SkillGraphError
from mastery_hub.core.models import Skill, Unit
from mastery_hub.graph.loader import load_curriculum_file, parse_curriculum
from mastery_hub.graph.skill_graph import SkillGraph

UNITS = [Unit(id="u1", code="U1", name="Unit one")]


class TestSkillGraph:
    def test_topological_order(self, graph):
        order = [s.id for s in graph.skills()]

        assert order.index("civ-juris") < order.index("civ-venue") < order.index("civ-pleading")

    def test_cycle_rejected(self):
        skills = [
            Skill("a", "A", "u1", 0.5, prerequisite_skill_ids=frozenset({"b"})),
            Skill("b", "B", "u1", 0.5, prerequisite_skill_ids=frozenset({"a"})),
        ]

        with pytest.raises(SkillGraphError, match="cycle"):
            SkillGraph(UNITS, skills)

    def test_dangling_prerequisite_rejected(self):
        skills = [Skill("a", "A", "u1", 1.0, prerequisite_skill_ids=frozenset({"ghost"}))]

        with pytest.raises(SkillGraphError):
            SkillGraph(UNITS, skills)

    def test_unknown_unit_rejected(self):
        with pytest.raises(SkillGraphError):
            SkillGraph(UNITS, [Skill("a", "A", "nowhere", 1.0)])

    def test_transitive_prerequisites(self, graph):
        assert graph.prerequisites("civ-pleading", transitive=True) == {"civ-venue", "civ-juris"}
        assert graph.prerequisites("civ-pleading") == {"civ-venue"}

    def test_prerequisite_gating(self, graph):
        ids = ["civ-juris", "civ-venue", "civ-pleading"]

        assert graph.apply_prerequisite_gating(ids, {"civ-juris"}) == ["civ-juris", "civ-venue"]

    def test_deactivated_skill_hidden(self, graph):
        graph.deactivate("crim-mens")

        assert "crim-mens" not in {s.id for s in graph.skills()}
        assert "crim-mens" in graph
        assert [s.id for s in graph.skills_in_unit("crim")] == ["crim-actus"]


class TestLoader:
    def test_parse_by_codes(self):
        graph = parse_curriculum(
            {
                "units": [{"id": "civ", "code": "CIV", "name": "Civil", "exam_weight": 0.5}],
                "skills": [
                    {"id": "s1", "code": "CIV-01", "unit": "CIV", "exam_weight": 0.6},
                    {"id": "s2", "code": "CIV-02", "unit": "civ", "prerequisites": ["CIV-01"]},
                ],
            }
        )

        assert graph.skill("s2").prerequisite_skill_ids == frozenset({"s1"})
        assert graph.skill("s1").unit_id == "civ"

    def test_missing_field(self):
        with pytest.raises(SkillGraphError, match="Malformed"):
            parse_curriculum({"units": [{"code": "X"}]})

    def test_bad_tier(self):
        with pytest.raises(SkillGraphError):
            parse_curriculum(
                {
                    "units": [{"id": "u"}],
                    "skills": [{"id": "s", "unit": "u", "difficulty_tier": "legendary"}],
                }
            )

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "curriculum.yaml"
        path.write_text(
            "units:\n"
            "  - {id: crim, code: CRIM, name: Criminal Law}\n"
            "skills:\n"
            "  - {id: actus, code: CRIM-01, unit: CRIM, exam_weight: 1.0, difficulty_tier: foundation}\n",
            encoding="utf-8",
        )

        graph = load_curriculum_file(path)

        assert len(graph) == 1
        assert graph.skill("actus").name == ""
