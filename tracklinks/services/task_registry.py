"""Resolution task records and the registry that holds them."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Protocol


class ResolutionTaskStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    STOPPING = "stopping"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def active(self) -> bool:
        return self in {ResolutionTaskStatus.QUEUED, ResolutionTaskStatus.PROCESSING}

    @property
    def terminal(self) -> bool:
        return self in {
            ResolutionTaskStatus.STOPPED,
            ResolutionTaskStatus.COMPLETED,
            ResolutionTaskStatus.FAILED,
        }


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(slots=True)
class ResolutionTask:
    id: str
    status: ResolutionTaskStatus = ResolutionTaskStatus.QUEUED
    total: int = 0
    processed: int = 0
    failed: int = 0
    message: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_updated: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls) -> "ResolutionTask":
        return cls(id=f"resolution_{uuid.uuid4().hex}")

    def snapshot(self) -> "ResolutionTask":
        return replace(self)


class TaskRegistry(Protocol):
    """Storage for task records.

    Implementations return copies; callers never mutate stored records
    directly.
    """

    def add(self, task: ResolutionTask) -> None: ...

    def get(self, task_id: str) -> ResolutionTask | None: ...

    def save(self, task: ResolutionTask) -> None: ...

    def active(self) -> ResolutionTask | None: ...

    def all(self) -> list[ResolutionTask]: ...


class InMemoryTaskRegistry:
    """Process-local registry; records disappear when the process exits."""

    def __init__(self) -> None:
        self._tasks: dict[str, ResolutionTask] = {}
        self._lock = threading.Lock()

    def add(self, task: ResolutionTask) -> None:
        with self._lock:
            if task.id in self._tasks:
                raise KeyError(f"Task {task.id} already registered")
            self._tasks[task.id] = task.snapshot()

    def get(self, task_id: str) -> ResolutionTask | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.snapshot() if task is not None else None

    def save(self, task: ResolutionTask) -> None:
        with self._lock:
            if task.id not in self._tasks:
                raise KeyError(f"Task {task.id} is not registered")
            self._tasks[task.id] = task.snapshot()

    def active(self) -> ResolutionTask | None:
        """The task still owning the worker, including one that is stopping."""

        with self._lock:
            for task in self._tasks.values():
                if not task.status.terminal:
                    return task.snapshot()
        return None

    def all(self) -> list[ResolutionTask]:
        with self._lock:
            tasks = [task.snapshot() for task in self._tasks.values()]
        return sorted(tasks, key=lambda task: task.created_at, reverse=True)


__all__ = [
    "InMemoryTaskRegistry",
    "ResolutionTask",
    "ResolutionTaskStatus",
    "TaskRegistry",
]
