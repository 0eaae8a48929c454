"""
Weekly Rankings.

Every graded attempt earns points (score x 10, rounded); points accrue per
learner per ISO week and all learners of that week are re-ranked after each
update. Runs as a background task after attempt submission.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.errors import validate_score
from mastery_hub.db.database import session_scope
from mastery_hub.db.models import WeeklyRankingRow
from mastery_hub.delivery.scheduler import round_half_up

POINTS_PER_ATTEMPT = 10


def week_start(day: date) -> date:
    """Monday of the week containing `day`."""
    return day - timedelta(days=day.weekday())


def points_for_score(score_norm: float) -> int:
    return round_half_up(validate_score(score_norm) * POINTS_PER_ATTEMPT)


@dataclass(frozen=True)
class RankingEntry:
    learner_id: str
    total_points: int
    attempts_completed: int
    rank: int


class WeeklyRankings:
    def __init__(self, session_factory: sessionmaker[Session] | None = None, clock: Clock | None = None):
        self._session_factory = session_factory
        self.clock = clock or SystemClock()

    def record(self, learner_id: str, score_norm: float) -> RankingEntry:
        """Add an attempt's points to this week's entry and re-rank the week."""
        points = points_for_score(score_norm)
        week = week_start(self.clock.today())
        now = self.clock.now()

        with session_scope(self._session_factory) as s:
            row = s.scalar(
                select(WeeklyRankingRow).where(
                    WeeklyRankingRow.learner_id == learner_id,
                    WeeklyRankingRow.week_start == week,
                )
            )
            if row is None:
                row = WeeklyRankingRow(
                    learner_id=learner_id,
                    week_start=week,
                    total_points=0,
                    attempts_completed=0,
                    updated_at=now,
                )
                s.add(row)

            row.total_points += points
            row.attempts_completed += 1
            row.updated_at = now
            s.flush()

            self._rerank(s, week)
            entry = RankingEntry(learner_id, row.total_points, row.attempts_completed, row.rank or 0)

        logger.debug("Ranking for {}: {} pts, rank {}", learner_id, entry.total_points, entry.rank)
        return entry

    def leaderboard(self, week: date | None = None, limit: int = 10) -> list[RankingEntry]:
        week = week_start(week or self.clock.today())
        with session_scope(self._session_factory) as s:
            rows = s.scalars(
                select(WeeklyRankingRow)
                .where(WeeklyRankingRow.week_start == week)
                .order_by(WeeklyRankingRow.rank, WeeklyRankingRow.learner_id)
                .limit(limit)
            )
            return [
                RankingEntry(r.learner_id, r.total_points, r.attempts_completed, r.rank or 0)
                for r in rows
            ]

    @staticmethod
    def _rerank(session: Session, week: date) -> None:
        rows = session.scalars(
            select(WeeklyRankingRow)
            .where(WeeklyRankingRow.week_start == week)
            .order_by(WeeklyRankingRow.total_points.desc(), WeeklyRankingRow.learner_id)
        )
        for position, row in enumerate(rows, start=1):
            row.rank = position
