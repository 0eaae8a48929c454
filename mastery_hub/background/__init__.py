"""Fire-and-forget background work."""

from .task_queue import BackgroundTaskQueue, QueueStatus, Task

__all__ = ["BackgroundTaskQueue", "QueueStatus", "Task"]
