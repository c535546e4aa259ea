"""
atelier.engine.task_queue — Pull / Transform / Push Task Queue
===============================================================

A small thread-safe work queue used by the search-index processors.

Each unit of work moves through three stages::

    pull  ──►  transform  ──►  push  ──►  done

A stage handler returns ``"done"``, ``"error"`` or the follow-up
:class:`Task`; follow-ups go back on the queue and are picked up by any
worker.  Pull tasks may run in several *steps*, each step receiving the
data gathered by the previous one in ``current_data``.

Workers are plain threads that drain the queue; :func:`run_workers` starts
*count* of them and joins them all.  A bounded queue keeps pulled data from
piling up faster than it is pushed.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

logger = logging.getLogger(__name__)

TaskType = Literal["pull", "transform", "push", "onComplete"]
PullMode = Literal["range", "targeted"]


@dataclass
class Task:
    """One queued unit of work."""

    type: TaskType
    mode: PullMode | None = None

    # range pulls
    start_id: int | None = None
    end_id: int | None = None
    # targeted pulls
    ids: list[int] = field(default_factory=list)

    # multi-step pulls
    steps: int | None = None
    current_step: int = 0
    current_data: Any = None

    # transform / push payload
    data: Any = None

    # bookkeeping for log lines
    index: int | None = None
    total: int | None = None
    start: float | None = None

    def describe(self) -> str:
        parts = []
        if self.index is not None and self.total:
            parts.append(f"{self.index + 1} of {self.total}")
        if self.steps:
            parts.append(f"step {self.current_step + 1} of {self.steps}")
        return " - ".join(parts)


def _carries_data(task: Task) -> bool:
    return task.type in ("transform", "push") or (
        task.type == "pull" and task.current_data is not None
    )


class TaskQueue:
    """FIFO of :class:`Task` objects shared between worker threads.

    With *max_queue_size* set, at most that many tasks holding pulled data
    wait in the queue: once the backlog is full, workers take the oldest
    data-carrying task ahead of any fresh pull.
    """

    def __init__(self, max_queue_size: int | None = None) -> None:
        self._tasks: deque[Task] = deque()
        self._lock = threading.Lock()
        self._staged = 0
        self.max_queue_size = max_queue_size

    def add_task(self, task: Task) -> None:
        with self._lock:
            self._tasks.append(task)
            if _carries_data(task):
                self._staged += 1

    def next_task(self) -> Task | None:
        with self._lock:
            if not self._tasks:
                return None
            if self.max_queue_size is not None and self._staged >= self.max_queue_size:
                for i, task in enumerate(self._tasks):
                    if _carries_data(task):
                        del self._tasks[i]
                        self._staged -= 1
                        return task
            task = self._tasks.popleft()
            if _carries_data(task):
                self._staged -= 1
            return task

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._tasks)

    @property
    def staged(self) -> int:
        """Queued tasks that hold pulled data."""
        with self._lock:
            return self._staged

    def is_empty(self) -> bool:
        return self.size == 0


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------
def _worker(
    queue: TaskQueue,
    handler: Callable[[Task], Task | str],
    counters: dict[str, int],
    counters_lock: threading.Lock,
) -> None:
    while True:
        task = queue.next_task()
        if task is None:
            return

        try:
            result = handler(task)
        except Exception:
            logger.exception("Task handler raised on %s task", task.type)
            result = "error"

        if isinstance(result, Task):
            queue.add_task(result)
            continue

        with counters_lock:
            counters[result] = counters.get(result, 0) + 1
        if result == "error":
            logger.warning("Task failed and was dropped: %s %s", task.type, task.describe())


def run_workers(
    queue: TaskQueue,
    handler: Callable[[Task], Task | str],
    count: int,
    name: str = "task-worker",
) -> dict[str, int]:
    """Drain *queue* with *count* worker threads.

    Returns a ``{"done": n, "error": m}`` tally of terminal results.
    """
    counters: dict[str, int] = {"done": 0, "error": 0}
    counters_lock = threading.Lock()
    started = time.monotonic()

    threads = [
        threading.Thread(
            target=_worker,
            args=(queue, handler, counters, counters_lock),
            daemon=True,
            name=f"{name}-{i}",
        )
        for i in range(max(1, count))
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    logger.debug(
        "%s: %d done, %d error in %.2fs",
        name, counters["done"], counters["error"], time.monotonic() - started,
    )
    return counters
