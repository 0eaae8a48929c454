"""Exam calendar backed by the learner's exam profile."""

from __future__ import annotations

from contextlib import nullcontext

from sqlalchemy.orm import Session, sessionmaker

from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.db.database import session_scope
from mastery_hub.db.queries import get_exam_profile


class DatabaseExamCalendar:
    """
    Reads the written exam date from exam_profiles.

    Returns None when the learner has no profile, and a very large horizon
    when the profile exists but no exam date was given.
    """

    NO_DATE_HORIZON_DAYS = 365

    def __init__(self, session_factory: sessionmaker[Session] | None = None, clock: Clock | None = None):
        self._session_factory = session_factory
        self.clock = clock or SystemClock()

    def days_until_written_exam(self, learner_id: str, session: Session | None = None) -> int | None:
        ctx = nullcontext(session) if session is not None else session_scope(self._session_factory)
        with ctx as s:
            profile = get_exam_profile(s, learner_id)
            if profile is None:
                return None
            if profile.written_exam_date is None:
                return self.NO_DATE_HORIZON_DAYS
            return (profile.written_exam_date - self.clock.today()).days
