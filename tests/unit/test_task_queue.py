"""
Unit tests for BackgroundTaskQueue.

Tests:
- Handlers run with their payloads
- Failures are counted, logged, and do not stop other tasks
- A full queue drops instead of blocking
"""

import threading

import pytest

from mastery_hub.background.task_queue import BackgroundTaskQueue
from mastery_hub.core.errors import InvalidInputError


class TestSubmit:
    def test_unregistered_task_rejected(self):
        with pytest.raises(InvalidInputError):
            BackgroundTaskQueue().submit("nope")

    def test_full_queue_drops(self):
        tasks = BackgroundTaskQueue(maxsize=2)
        tasks.register("noop", lambda: None)

        results = [tasks.submit("noop") for _ in range(3)]

        assert results == [True, True, False]
        assert tasks.status.dropped == 1
        assert tasks.pending == 2

    def test_invalid_sizes(self):
        with pytest.raises(InvalidInputError):
            BackgroundTaskQueue(maxsize=0)


class TestExecution:
    def test_run_pending(self):
        seen = []
        tasks = BackgroundTaskQueue()
        tasks.register("record", lambda value: seen.append(value))
        tasks.submit("record", value=1)
        tasks.submit("record", value=2)

        assert tasks.run_pending() == 2
        assert seen == [1, 2]
        assert tasks.status.completed == 2

    def test_failure_isolated(self):
        seen = []

        def boom(**_):
            raise RuntimeError("ranking store down")

        tasks = BackgroundTaskQueue()
        tasks.register("boom", boom)
        tasks.register("record", lambda value: seen.append(value))
        tasks.submit("boom", learner_id="l1")
        tasks.submit("record", value="after")

        tasks.run_pending()

        assert seen == ["after"]
        assert tasks.status.failed == 1
        assert tasks.status.failures_by_task == {"boom": 1}
        assert "ranking store down" in tasks.status.last_error

    def test_workers_drain_queue(self):
        done = threading.Event()
        counter = []
        tasks = BackgroundTaskQueue(workers=2)

        def work(n):
            counter.append(n)
            if len(counter) == 5:
                done.set()

        tasks.register("work", work)
        tasks.start()
        try:
            for n in range(5):
                tasks.submit("work", n=n)
            tasks.join()
        finally:
            tasks.stop()

        assert done.is_set()
        assert sorted(counter) == [0, 1, 2, 3, 4]
        assert not tasks.status.is_running
