"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
a frozen clock, a file-backed SQLite database per test, and a small
two-unit curriculum saved into it.
"""
from datetime import UTC, datetime

import pytest

from mastery_hub.core.clock import FixedClock
from mastery_hub.core.engine_config import EngineConfig
from mastery_hub.core.models import DifficultyTier, Skill, Unit
from mastery_hub.db.database import init_db, make_engine, make_session_factory, session_scope
from mastery_hub.db.queries import save_curriculum
from mastery_hub.graph.skill_graph import SkillGraph

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
        elif "smoke" in path:
            item.add_marker(pytest.mark.smoke)


@pytest.fixture
def clock():
    """A clock frozen at NOW."""
    return FixedClock(NOW)


@pytest.fixture
def engine_config():
    return EngineConfig()


@pytest.fixture
def graph():
    """
    Two units, five skills.

    CIV: civ-juris -> civ-venue -> civ-pleading (chain), weights .5/.3/.2
    CRIM: crim-actus, crim-mens, weights .6/.4
    """
    units = [
        Unit(id="civ", code="CIV", name="Civil Procedure", exam_weight=0.6),
        Unit(id="crim", code="CRIM", name="Criminal Law", exam_weight=0.4),
    ]
    skills = [
        Skill("civ-juris", "CIV-01", "civ", 0.5, DifficultyTier.FOUNDATION, name="Jurisdiction"),
        Skill(
            "civ-venue",
            "CIV-02",
            "civ",
            0.3,
            DifficultyTier.CORE,
            frozenset({"civ-juris"}),
            name="Venue",
        ),
        Skill(
            "civ-pleading",
            "CIV-03",
            "civ",
            0.2,
            DifficultyTier.ADVANCED,
            frozenset({"civ-venue"}),
            name="Pleadings",
        ),
        Skill("crim-actus", "CRIM-01", "crim", 0.6, DifficultyTier.FOUNDATION, name="Actus reus"),
        Skill("crim-mens", "CRIM-02", "crim", 0.4, DifficultyTier.CORE, name="Mens rea"),
    ]
    return SkillGraph(units, skills)


@pytest.fixture
def db_engine(tmp_path):
    """A fresh file-backed SQLite database with all tables created."""
    engine = make_engine(f"sqlite:///{tmp_path / 'mastery.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine, graph):
    """Session factory over the test database, curriculum already loaded."""
    factory = make_session_factory(db_engine)
    with session_scope(factory) as s:
        save_curriculum(s, graph)
    return factory
