"""
In-process registry of background batch jobs and their progress events.

Every mutation happens on the event loop thread, so there is no locking.
Tasks are not persisted: a restart loses them.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, AsyncIterator, Callable

from .config import get_settings
from .models import EventKind, TaskStatus

logger = logging.getLogger(__name__)

Subscriber = Callable[[EventKind, dict[str, Any]], None]

DEFAULT_RETENTION_SECONDS = 3600.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0
DEFAULT_KEEPALIVE_SECONDS = 15.0


@dataclass
class Task:
    id: str
    created_at: float
    status: TaskStatus = TaskStatus.RUNNING
    events: list[dict[str, Any]] = field(default_factory=list)
    result: dict[str, Any] | None = None
    error: str | None = None
    subscribers: list[Subscriber] = field(default_factory=list)
    owner_id: str | None = None

    def terminal_event(self) -> tuple[EventKind, dict[str, Any]] | None:
        if self.status == TaskStatus.COMPLETED:
            return EventKind.COMPLETE, self.result or {}
        if self.status == TaskStatus.ERROR:
            return EventKind.ERROR, {"message": self.error}
        return None


class TaskTracker:
    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._tasks: dict[str, Task] = {}

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def create_task(self, task_id: str | None = None, owner_id: str | None = None) -> Task:
        task = Task(id=task_id or str(uuid.uuid4()), created_at=self._clock(), owner_id=owner_id)
        self._tasks[task.id] = task
        return task

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def elapsed(self, task: Task) -> int:
        return int(round(self._clock() - task.created_at))

    def publish(self, task_id: str, kind: EventKind, payload: dict[str, Any]) -> None:
        """Record progress events and fan the event out to live subscribers.

        Events for unknown (or already swept) tasks are dropped.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return
        if kind == EventKind.PROGRESS:
            task.events.append(payload)
        for send in list(task.subscribers):
            try:
                send(kind, payload)
            except Exception:
                logger.exception(f"Task {task_id}: subscriber failed, detaching it")
                self.unsubscribe(task_id, send)

    def complete(self, task_id: str, result: dict[str, Any]) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return
        # Elapsed is frozen here so every later replay is identical.
        task.result = {**result, "elapsed": self.elapsed(task)}
        task.status = TaskStatus.COMPLETED
        self.publish(task_id, EventKind.COMPLETE, task.result)
        task.subscribers.clear()

    def fail(self, task_id: str, message: str) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return
        task.error = message
        task.status = TaskStatus.ERROR
        self.publish(task_id, EventKind.ERROR, {"message": message})
        task.subscribers.clear()

    def subscribe(self, task_id: str, send: Subscriber) -> bool:
        """Attach `send` to a task.

        A finished task gets its single terminal event and nothing else. A
        running task first replays its progress backlog in order, then `send`
        is registered for live events.

        Returns:
            True when `send` stays attached for live events.

        Raises:
            KeyError: unknown task id.
        """
        task = self._tasks.get(task_id)
        if task is None:
            raise KeyError(task_id)

        terminal = task.terminal_event()
        if terminal is not None:
            send(*terminal)
            return False

        for payload in list(task.events):
            send(EventKind.PROGRESS, payload)
        task.subscribers.append(send)
        return True

    def unsubscribe(self, task_id: str, send: Subscriber) -> None:
        task = self._tasks.get(task_id)
        if task is not None and send in task.subscribers:
            task.subscribers.remove(send)

    def sweep(self, now: float | None = None) -> int:
        """Drop tasks older than the retention window, finished or not."""
        now = self._clock() if now is None else now
        cutoff = now - self.retention_seconds
        expired = [task_id for task_id, task in self._tasks.items() if task.created_at < cutoff]
        for task_id in expired:
            del self._tasks[task_id]
        if expired:
            logger.info(f"Swept {len(expired)} expired task(s)")
        return len(expired)

    async def run_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()


async def stream_task_events(
    tracker: TaskTracker,
    task_id: str,
    keepalive_interval: float = DEFAULT_KEEPALIVE_SECONDS,
) -> AsyncIterator[tuple[EventKind, dict[str, Any]]]:
    """Yield a task's events for one viewer, ending after the terminal event.

    Keepalives are generated per viewer and never recorded on the task.
    Closing the generator detaches the viewer and stops its keepalive timer.
    The stream also ends if the task is swept while the viewer is attached.

    Raises:
        KeyError: unknown task id.
    """
    queue: asyncio.Queue[tuple[EventKind, dict[str, Any]] | None] = asyncio.Queue()

    def send(kind: EventKind, payload: dict[str, Any]) -> None:
        queue.put_nowait((kind, payload))

    live = tracker.subscribe(task_id, send)
    keepalive: asyncio.Task | None = None

    async def beat() -> None:
        while True:
            await asyncio.sleep(keepalive_interval)
            task = tracker.get(task_id)
            if task is None:
                queue.put_nowait(None)
                return
            send(EventKind.KEEPALIVE, {"elapsed": tracker.elapsed(task)})

    if live:
        keepalive = asyncio.create_task(beat())
    try:
        while True:
            if not live and queue.empty():
                return
            item = await queue.get()
            if item is None:
                return
            kind, payload = item
            yield kind, payload
            if kind in (EventKind.COMPLETE, EventKind.ERROR):
                return
    finally:
        if keepalive is not None:
            keepalive.cancel()
        tracker.unsubscribe(task_id, send)


@lru_cache(maxsize=1)
def get_task_tracker() -> TaskTracker:
    return TaskTracker(retention_seconds=get_settings().task_retention_seconds)
