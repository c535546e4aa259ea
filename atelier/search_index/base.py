"""
atelier.search_index.base — Generic Search-Index Processor
===========================================================

A :class:`SearchIndexProcessor` describes one Meilisearch index with a few
hooks and provides every maintenance operation on top of them:

* ``setup(client, index_name)`` — create the index and sync its settings.
* ``prepare_batches(ctx, last_updated_at)`` — id range to (re)index plus
  ids changed since the last run.
* ``pull_data(ctx, batch, step, prev_data)`` — read rows for a batch.
* ``transform_data(ctx, data)`` — rows → documents.
* ``push_data(ctx, documents)`` — write documents to the index.

Operations:

* :meth:`update` — incremental run (new id range + changed ids + queued
  updates/deletes), throttled by ``update_interval``.
* :meth:`reset` — full rebuild into ``<index>_NEW`` then swap.
* :meth:`update_sync` — process a handful of items immediately.
* :meth:`queue_update` / :meth:`process_queues` — deferred work via Redis.
* :meth:`get_data` — pull + transform without pushing.

Work is fanned out over :mod:`atelier.engine.task_queue` worker threads;
a failing batch is logged and dropped without stopping the rest.  When
the job is canceled, remaining batches are skipped and the run raises
:class:`~atelier.jobs.job.JobCanceledError` before committing its queue
snapshots or run date.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import Engine

from atelier.engine.task_queue import Task, TaskQueue, run_workers
from atelier.jobs.job import JobCanceledError, JobContext, get_job_date
from atelier.search_index.meili import delete_documents, get_or_create_index, swap_index
from atelier.search_index.queue import (
    QueueSnapshot,
    SearchIndexUpdate,
    SearchIndexUpdateQueueAction,
    empty_snapshot,
)

if TYPE_CHECKING:
    import meilisearch
    import redis

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL = 30
DEFAULT_WORKER_COUNT = 10
MAX_TARGETED_BATCH = 10_000
SYNC_CHUNK_SIZE = 500
SYNC_WORKER_COUNT = 5


@dataclass
class PullBatch:
    """Either a new-id range (``type="new"``) or explicit ids (``type="update"``)."""

    type: Literal["new", "update"]
    start_id: int | None = None
    end_id: int | None = None
    ids: list[int] | None = None


@dataclass
class BatchPlan:
    batch_size: int
    start_id: int | None
    end_id: int | None
    update_ids: list[int] | None = None


@dataclass
class SearchIndexContext:
    engine: Engine
    index_name: str
    client: meilisearch.Client | None = None
    redis: redis.Redis | None = None
    job_context: JobContext | None = None
    last_updated_at: datetime | None = None

    # Items to re-queue once the run has committed its queue snapshots
    _requeue: list[tuple[str, dict[str, Any]]] = field(default_factory=list, repr=False)
    _requeue_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def queue(self) -> SearchIndexUpdate | None:
        return SearchIndexUpdate(self.redis) if self.redis is not None else None

    def requeue(self, index_name: str, items: Sequence[dict[str, Any]]) -> None:
        with self._requeue_lock:
            self._requeue.extend((index_name, item) for item in items)

    def flush_requeue(self) -> int:
        """Write deferred items to their queues; returns how many were written."""
        with self._requeue_lock:
            pending, self._requeue = self._requeue, []
        if not pending or self.queue is None:
            return 0
        grouped: dict[str, list[dict[str, Any]]] = {}
        for index_name, item in pending:
            grouped.setdefault(index_name, []).append(item)
        for index_name, items in grouped.items():
            self.queue.queue_update(index_name, items)
        return len(pending)


def _range_tasks(start_id: int | None, end_id: int | None, batch_size: int, steps: int | None) -> list[Task]:
    if start_id is None or end_id is None:
        return []
    count = math.ceil((end_id - start_id + 1) / batch_size)
    tasks = []
    for i in range(count):
        start = start_id + i * batch_size
        tasks.append(Task(
            type="pull",
            mode="range",
            start_id=start,
            end_id=min(start + batch_size - 1, end_id),
            steps=steps,
            index=i,
            total=count,
        ))
    return tasks


def _targeted_tasks(ids: Sequence[int], chunk_size: int, steps: int | None) -> list[Task]:
    count = math.ceil(len(ids) / chunk_size) if ids else 0
    return [
        Task(
            type="pull",
            mode="targeted",
            ids=list(ids[i * chunk_size:(i + 1) * chunk_size]),
            steps=steps,
            index=i,
            total=count,
        )
        for i in range(count)
    ]


class SearchIndexProcessor:
    """One Meilisearch index and the hooks that feed it."""

    def __init__(
        self,
        *,
        index_name: str,
        setup: Callable[[meilisearch.Client, str], None],
        prepare_batches: Callable[[SearchIndexContext, datetime | None], BatchPlan],
        pull_data: Callable[[SearchIndexContext, PullBatch, int, Any], Any],
        push_data: Callable[[SearchIndexContext, Any], None],
        transform_data: Callable[[SearchIndexContext, Any], Any] | None = None,
        on_complete: Callable[[SearchIndexContext], None] | None = None,
        primary_key: str = "id",
        update_interval: int = DEFAULT_UPDATE_INTERVAL,
        worker_count: int = DEFAULT_WORKER_COUNT,
        pull_steps: int | None = None,
        partial: bool = False,
        queues: Sequence[Literal["update", "delete"]] | None = None,
        job_name: str | None = None,
        max_queue_size: int | None = None,
    ) -> None:
        self.index_name = index_name
        self.setup = setup
        self.prepare_batches = prepare_batches
        self.pull_data = pull_data
        self.push_data = push_data
        self.transform_data = transform_data
        self.on_complete = on_complete
        self.primary_key = primary_key
        self.update_interval = update_interval
        self.worker_count = worker_count
        self.pull_steps = pull_steps
        self.partial = partial
        self.queues = queues
        self.job_name = job_name
        self.max_queue_size = max_queue_size

    @property
    def job_date_key(self) -> str:
        return f"searchIndex:{(self.job_name or self.index_name).lower()}"

    def _context(
        self,
        job: JobContext,
        index_name: str | None = None,
        last_updated_at: datetime | None = None,
    ) -> SearchIndexContext:
        return SearchIndexContext(
            engine=job.engine,
            index_name=index_name or self.index_name,
            client=job.search_client,
            redis=job.redis,
            job_context=job,
            last_updated_at=last_updated_at,
        )

    # -------------------------------------------------------------------
    # Task processing
    # -------------------------------------------------------------------
    def process_task(self, ctx: SearchIndexContext, task: Task) -> Task | str:
        """Advance *task* one stage.  Errors are logged and reported as ``"error"``."""
        details = task.describe()
        try:
            if ctx.job_context is not None:
                ctx.job_context.check_if_canceled()

            if task.type == "pull":
                start = task.start or time.monotonic()
                if task.mode == "targeted":
                    batch = PullBatch(type="update", ids=task.ids)
                else:
                    batch = PullBatch(type="new", start_id=task.start_id, end_id=task.end_id)

                pulled = self.pull_data(ctx, batch, task.current_step, task.current_data)
                if not pulled:
                    logger.debug("%s: nothing pulled (%s)", self.index_name, details)
                    return "done"

                if task.steps and task.current_step + 1 < task.steps:
                    return Task(
                        type="pull",
                        mode=task.mode,
                        start_id=task.start_id,
                        end_id=task.end_id,
                        ids=task.ids,
                        steps=task.steps,
                        current_step=task.current_step + 1,
                        current_data=pulled,
                        index=task.index,
                        total=task.total,
                        start=start,
                    )
                return Task(type="transform", data=pulled, index=task.index, total=task.total, start=start)

            if task.type == "transform":
                data = self.transform_data(ctx, task.data) if self.transform_data else task.data
                return Task(type="push", data=data, index=task.index, total=task.total, start=task.start)

            if task.type == "push":
                self.push_data(ctx, task.data)
                if task.start is not None:
                    logger.debug(
                        "%s: pushed %s in %.2fs",
                        self.index_name, details, time.monotonic() - task.start,
                    )
                return "done"

            if task.type == "onComplete":
                if self.on_complete is not None:
                    self.on_complete(ctx)
                return "done"

            return "error"
        except JobCanceledError:
            return "error"
        except Exception:
            logger.exception(
                "Search index task failed",
                extra={"index": self.index_name, "task": task.type},
            )
            return "error"

    def _run(self, ctx: SearchIndexContext, queue: TaskQueue, workers: int) -> dict[str, int]:
        return run_workers(
            queue,
            lambda task: self.process_task(ctx, task),
            workers,
            name=f"search-{self.index_name}",
        )

    def _snapshot(self, ctx: SearchIndexContext, action: SearchIndexUpdateQueueAction) -> QueueSnapshot:
        wanted = "update" if action == SearchIndexUpdateQueueAction.UPDATE else "delete"
        if ctx.queue is None or (self.queues is not None and wanted not in self.queues):
            return empty_snapshot()
        return ctx.queue.get_queue(self.index_name, action, read_only=self.partial)

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------
    def get_data(self, engine: Engine, ids: list[int]) -> Any:
        """Pull and transform *ids* without writing to the index."""
        ctx = SearchIndexContext(engine=engine, index_name=self.index_name)
        data = self.pull_data(ctx, PullBatch(type="update", ids=ids), 0, None)
        return self.transform_data(ctx, data) if self.transform_data else data

    def update(self, job: JobContext) -> dict[str, Any] | None:
        """Incremental sync.  Returns ``None`` when skipped by the interval."""
        last_updated_at, set_last_update = get_job_date(job.engine, self.job_date_key)
        if last_updated_at + timedelta(seconds=self.update_interval) > datetime.now(UTC):
            logger.info("%s: does not require updating yet", self.index_name)
            return None

        started_at = datetime.now(UTC)
        ctx = self._context(job, last_updated_at=last_updated_at)
        plan = self.prepare_batches(ctx, last_updated_at)
        start_id = plan.start_id if plan.start_id is not None else (0 if plan.end_id is not None else None)
        logger.info(
            "%s: last update %s, range %s-%s, %d changed ids",
            self.index_name, last_updated_at.isoformat(), start_id, plan.end_id,
            len(plan.update_ids or []),
        )

        queued_updates = self._snapshot(ctx, SearchIndexUpdateQueueAction.UPDATE)
        queued_deletes = self._snapshot(ctx, SearchIndexUpdateQueueAction.DELETE)

        queue = TaskQueue(self.max_queue_size)
        for task in _range_tasks(start_id, plan.end_id, plan.batch_size, self.pull_steps):
            queue.add_task(task)

        updated_ids = sorted(set(plan.update_ids or []) | set(queued_updates.content))
        for task in _targeted_tasks(updated_ids, min(plan.batch_size, MAX_TARGETED_BATCH), self.pull_steps):
            queue.add_task(task)

        counters = self._run(ctx, queue, self.worker_count)
        job.check_if_canceled()

        if queued_deletes.content and not self.partial:
            delete_documents(ctx.client, self.index_name, queued_deletes.content)

        queued_updates.commit()
        queued_deletes.commit()
        requeued = ctx.flush_requeue()

        if not self.partial or self.job_name:
            set_last_update(started_at)

        return {
            "updated_ids": len(updated_ids),
            "deleted_ids": len(queued_deletes.content),
            "requeued": requeued,
            **counters,
        }

    def reset(self, job: JobContext) -> dict[str, int]:
        """Rebuild the whole index into a swap index, then swap it in."""
        client = job.search_client
        if client is not None:
            get_or_create_index(client, self.index_name, self.primary_key)

        swap_index_name = f"{self.index_name}_NEW"
        if not self.partial and client is not None:
            self.setup(client, swap_index_name)

        ctx = self._context(job, index_name=self.index_name if self.partial else swap_index_name)
        plan = self.prepare_batches(ctx, None)
        start_id = plan.start_id if plan.start_id is not None else (0 if plan.end_id is not None else None)

        queue = TaskQueue(self.max_queue_size)
        for task in _range_tasks(start_id, plan.end_id, plan.batch_size, self.pull_steps):
            queue.add_task(task)
        counters = self._run(ctx, queue, self.worker_count)
        job.check_if_canceled()

        if not self.partial:
            if client is not None:
                swap_index(client, self.index_name, swap_index_name)
            if ctx.queue is not None:
                ctx.queue.clear_queue(self.index_name)
        ctx.flush_requeue()
        return counters

    def update_sync(self, job: JobContext, items: Sequence[dict[str, Any]]) -> dict[str, int] | None:
        """Index (or remove) *items* right away instead of queueing them."""
        if not items:
            return None
        logger.info("%s: update_sync called with %d items", self.index_name, len(items))

        ctx = self._context(job)
        queue = TaskQueue(self.max_queue_size)
        for start in range(0, len(items), SYNC_CHUNK_SIZE):
            chunk = items[start:start + SYNC_CHUNK_SIZE]
            update_ids = [
                i["id"] for i in chunk
                if not i.get("action") or i["action"] == SearchIndexUpdateQueueAction.UPDATE
            ]
            delete_ids = [
                i["id"] for i in chunk if i.get("action") == SearchIndexUpdateQueueAction.DELETE
            ]
            if delete_ids and not self.partial:
                delete_documents(ctx.client, self.index_name, delete_ids)
            if update_ids:
                queue.add_task(Task(type="pull", mode="targeted", ids=update_ids, steps=self.pull_steps))

        counters = self._run(ctx, queue, SYNC_WORKER_COUNT)
        ctx.flush_requeue()
        return counters

    def queue_update(self, redis_client: redis.Redis, items: Sequence[dict[str, Any]]) -> None:
        SearchIndexUpdate(redis_client).queue_update(self.index_name, items)

    def process_queues(
        self,
        job: JobContext,
        *,
        process_updates: bool = False,
        process_deletes: bool = False,
    ) -> dict[str, int]:
        """Drain the Redis queues without touching the id range.

        Queues left out of ``queues`` are never read or cleared.
        """
        ctx = self._context(job)
        result = {"updated_ids": 0, "deleted_ids": 0}

        if process_updates:
            queued = self._snapshot(ctx, SearchIndexUpdateQueueAction.UPDATE)
            queue = TaskQueue(self.max_queue_size)
            for task in _targeted_tasks(queued.content, MAX_TARGETED_BATCH, self.pull_steps):
                queue.add_task(task)
            self._run(ctx, queue, self.worker_count)
            job.check_if_canceled()
            queued.commit()
            result["updated_ids"] = len(queued.content)

        if process_deletes:
            queued = self._snapshot(ctx, SearchIndexUpdateQueueAction.DELETE)
            if queued.content and not self.partial:
                delete_documents(ctx.client, self.index_name, queued.content)
            queued.commit()
            result["deleted_ids"] = len(queued.content)

        result["requeued"] = ctx.flush_requeue()
        return result
