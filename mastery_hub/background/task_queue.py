"""
Background task queue.

Fire-and-forget work triggered by attempt submission (ranking refresh,
content preload, plan regeneration) is handed to named handlers through a
bounded queue drained by daemon worker threads.

- submit() never blocks: a full queue drops the task with a warning
- A failing handler is logged with its traceback and counted; the caller
  never sees the exception and nothing is retried

Usage:
    tasks = BackgroundTaskQueue(maxsize=100, workers=2)
    tasks.register("update_rankings", refresh_rankings)
    tasks.start()
    tasks.submit("update_rankings", learner_id="l1")
    ...
    tasks.stop()
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from mastery_hub.core.clock import Clock, SystemClock
from mastery_hub.core.errors import InvalidInputError

TaskHandler = Callable[..., Any]

_STOP = object()


@dataclass(frozen=True)
class Task:
    name: str
    payload: dict[str, Any]
    submitted_at: datetime


@dataclass
class QueueStatus:
    """Counters exposed for monitoring."""

    is_running: bool = False
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    dropped: int = 0
    last_error: str | None = None
    failures_by_task: dict[str, int] = field(default_factory=dict)


class BackgroundTaskQueue:
    """Bounded queue plus worker threads for named background tasks."""

    def __init__(self, maxsize: int = 100, workers: int = 1, clock: Clock | None = None):
        if maxsize < 1 or workers < 1:
            raise InvalidInputError("maxsize and workers must be positive")
        self.maxsize = maxsize
        self.worker_count = workers
        self.clock = clock or SystemClock()
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._handlers: dict[str, TaskHandler] = {}
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._status = QueueStatus()

    @property
    def status(self) -> QueueStatus:
        return self._status

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def register(self, name: str, handler: TaskHandler) -> None:
        self._handlers[name] = handler

    def handles(self, name: str) -> bool:
        return name in self._handlers

    def submit(self, name: str, **payload: Any) -> bool:
        """
        Enqueue a task without blocking.

        Returns:
            True if queued, False if the queue was full and the task dropped
        """
        if name not in self._handlers:
            raise InvalidInputError(f"No handler registered for task '{name}'")

        task = Task(name=name, payload=payload, submitted_at=self.clock.now())
        try:
            self._queue.put_nowait(task)
        except queue.Full:
            with self._lock:
                self._status.dropped += 1
            logger.warning("Background queue full ({}), dropping task {}", self.maxsize, name)
            return False

        with self._lock:
            self._status.submitted += 1
        return True

    def start(self) -> None:
        if self._status.is_running:
            logger.warning("Background queue already running")
            return

        self._status.is_running = True
        for index in range(self.worker_count):
            thread = threading.Thread(
                target=self._worker_loop,
                name=f"mastery-hub-worker-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.info("Background queue started ({} worker(s))", self.worker_count)

    def join(self) -> None:
        """Block until every queued task has been processed."""
        self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        """Drain outstanding tasks, then stop the workers."""
        if not self._status.is_running:
            return

        for _ in self._threads:
            self._queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout=timeout)

        self._threads.clear()
        self._status.is_running = False
        logger.info("Background queue stopped")

    def run_pending(self) -> int:
        """Process queued tasks on the calling thread (used when no workers run)."""
        processed = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return processed
            try:
                if task is not _STOP:
                    self._execute(task)
                    processed += 1
            finally:
                self._queue.task_done()

    def _worker_loop(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is _STOP:
                    return
                self._execute(task)
            finally:
                self._queue.task_done()

    def _execute(self, task: Task) -> None:
        handler = self._handlers[task.name]
        try:
            handler(**task.payload)
        except Exception as exc:  # Handler failures stay inside the queue
            logger.exception("Background task {} failed", task.name)
            with self._lock:
                self._status.failed += 1
                self._status.last_error = f"{task.name}: {exc}"
                self._status.failures_by_task[task.name] = self._status.failures_by_task.get(task.name, 0) + 1
            return

        with self._lock:
            self._status.completed += 1
        logger.debug("Background task {} completed", task.name)
