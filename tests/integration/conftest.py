"""Fixtures for database-backed tests."""

from datetime import timedelta

import pytest

from mastery_hub.core.errors import CollaboratorError
from mastery_hub.db.database import session_scope
from mastery_hub.db.models import MasteryStateRow
from mastery_hub.integrations.protocols import GradeResult
from mastery_hub.study.engine import MasteryEngine


class FakeGrader:
    """Returns canned grades, or fails like an unreachable service."""

    def __init__(self, score=0.8, error_tags=(), fail=False):
        self.score = score
        self.error_tags = frozenset(error_tags)
        self.fail = fail
        self.calls = []

    def grade(self, item, response):
        self.calls.append((item.id, response))
        if self.fail:
            raise CollaboratorError("grader", "connection refused")
        return GradeResult(score_norm=self.score, feedback="graded", error_tags=self.error_tags)


@pytest.fixture
def grader():
    return FakeGrader()


@pytest.fixture
def engine(graph, session_factory, engine_config, clock, grader):
    return MasteryEngine(graph, session_factory=session_factory, config=engine_config, clock=clock, grader=grader)


@pytest.fixture
def onboarded(engine, clock):
    """Learner l1 with a written exam 100 days out (intensive phase)."""
    engine.onboarding.onboard("l1", written_exam_date=clock.today() + timedelta(days=100))
    return "l1"


@pytest.fixture
def set_mastery(session_factory):
    """Write a mastery row directly."""

    def _set(learner_id, skill_id, p_mastery, stability=1.0):
        with session_scope(session_factory) as s:
            s.add(MasteryStateRow(learner_id=learner_id, skill_id=skill_id, p_mastery=p_mastery, stability=stability))

    return _set
