"""
Onboarding.

Creates (or updates) a learner's exam profile and seeds mastery priors
from self-reported strong and weak units. Orchestration refuses to plan
for a learner until this has run.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from mastery_hub.adaptive.mastery_store import MasteryStateStore
from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.errors import InvalidInputError
from mastery_hub.db.database import session_scope
from mastery_hub.db.models import ExamProfileRow
from mastery_hub.db.queries import get_exam_profile
from mastery_hub.graph.skill_graph import SkillGraph


@dataclass(frozen=True)
class OnboardingResult:
    learner_id: str
    written_exam_date: date | None
    days_until_exam: int | None
    priors_created: int
    created_profile: bool


class OnboardingService:
    def __init__(
        self,
        graph: SkillGraph,
        store: MasteryStateStore,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
    ):
        self.graph = graph
        self.store = store
        self._session_factory = session_factory
        self.clock = clock or SystemClock()

    def onboard(
        self,
        learner_id: str,
        written_exam_date: date | None = None,
        strong_units: Iterable[str] = (),
        weak_units: Iterable[str] = (),
        daily_minutes: int | None = None,
    ) -> OnboardingResult:
        """
        Store the exam profile and seed priors in one transaction.

        Unit arguments accept unit ids or unit codes. Re-running onboarding
        updates the profile but never overwrites existing mastery.
        """
        if not learner_id:
            raise InvalidInputError("learner_id is required")
        if daily_minutes is not None and daily_minutes <= 0:
            raise InvalidInputError(f"daily_minutes must be positive, got {daily_minutes}")

        strong = self._resolve_units(strong_units)
        weak = self._resolve_units(weak_units)

        with session_scope(self._session_factory) as s:
            profile = get_exam_profile(s, learner_id)
            created = profile is None
            if created:
                profile = ExamProfileRow(learner_id=learner_id, created_at=self.clock.now())
                s.add(profile)

            profile.written_exam_date = written_exam_date
            profile.strong_units = sorted(strong)
            profile.weak_units = sorted(weak)
            profile.daily_minutes = daily_minutes
            s.flush()

            seeded = self.store.seed_priors(learner_id, self.graph, strong, weak, session=s)

        days = (written_exam_date - self.clock.today()).days if written_exam_date else None
        logger.info(
            "Onboarded {} (exam in {} days, {} priors seeded)",
            learner_id,
            days if days is not None else "?",
            seeded,
        )
        return OnboardingResult(learner_id, written_exam_date, days, seeded, created)

    def _resolve_units(self, refs: Iterable[str]) -> set[str]:
        by_code = {unit.code: unit.id for unit in self.graph.units}
        known = {unit.id for unit in self.graph.units}
        resolved = set()
        for ref in refs:
            if ref in known:
                resolved.add(ref)
            elif ref in by_code:
                resolved.add(by_code[ref])
            else:
                raise InvalidInputError(f"Unknown unit: {ref}")
        return resolved
