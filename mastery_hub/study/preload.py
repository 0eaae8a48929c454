"""
Content preloading.

After an attempt, fetch the next batch of items for the practised skills
at a difficulty matched to current mastery, so the following question is
ready without a round trip. Batches expire after a day and are handed out
at most once.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.models import AttemptFormat, Difficulty
from mastery_hub.integrations.protocols import ContentProvider, Item

PRELOAD_BATCH_SIZE = 5
CACHE_DURATION_HOURS = 24


def difficulty_for(p_mastery: float) -> Difficulty:
    if p_mastery < 0.4:
        return Difficulty.EASY
    if p_mastery > 0.8:
        return Difficulty.HARD
    return Difficulty.MEDIUM


@dataclass
class _Batch:
    items: list[Item]
    expires_at: datetime


class ContentPreloader:
    """In-process cache of preloaded item batches keyed by learner and request."""

    def __init__(
        self,
        provider: ContentProvider,
        clock: Clock | None = None,
        batch_size: int = PRELOAD_BATCH_SIZE,
        ttl_hours: int = CACHE_DURATION_HOURS,
    ):
        self.provider = provider
        self.clock = clock or SystemClock()
        self.batch_size = batch_size
        self.ttl = timedelta(hours=ttl_hours)
        self._batches: dict[tuple[str, str, AttemptFormat, Difficulty], _Batch] = {}
        self._lock = threading.Lock()

    def preload(
        self,
        learner_id: str,
        skill_id: str,
        format: AttemptFormat = AttemptFormat.MCQ,
        difficulty: Difficulty = Difficulty.MEDIUM,
    ) -> int:
        """
        Fetch a batch unless an unexpired one is already waiting.

        Returns:
            Number of items fetched (0 when the cache was warm)
        """
        key = (learner_id, skill_id, format, difficulty)
        now = self.clock.now()
        with self._lock:
            self._prune(now)
            batch = self._batches.get(key)
            if batch is not None and batch.expires_at > now:
                return 0

        items = self.provider.generate_or_fetch_items(skill_id, format, difficulty, self.batch_size)
        with self._lock:
            self._batches[key] = _Batch(items=items, expires_at=now + self.ttl)

        logger.debug("Preloaded {} {} item(s) for {}/{}", len(items), difficulty.value, learner_id, skill_id)
        return len(items)

    def take(
        self,
        learner_id: str,
        skill_id: str,
        format: AttemptFormat = AttemptFormat.MCQ,
        difficulty: Difficulty = Difficulty.MEDIUM,
    ) -> list[Item] | None:
        """Hand out a preloaded batch once; None if nothing fresh is cached."""
        with self._lock:
            batch = self._batches.pop((learner_id, skill_id, format, difficulty), None)
        if batch is None or batch.expires_at <= self.clock.now():
            return None
        return batch.items

    def pending(self) -> int:
        """Number of batches currently held."""
        with self._lock:
            return len(self._batches)

    def _prune(self, now: datetime) -> None:
        # Caller holds the lock
        for key in [k for k, b in self._batches.items() if b.expires_at <= now]:
            del self._batches[key]
