"""
atelier.jobs.lock — Refreshing Redis Job Lock & Runner
=======================================================

Only one pod may run a given job at a time.  The lock is a Redis key
``job:<name>`` holding ``"true"`` with a *short* expiry (refresh interval
plus a small buffer).  While the job runs, a daemon thread re-sets the
key every refresh interval, so a pod that dies mid-job loses its lock
within seconds instead of holding it for the whole budget.

The lock's overall budget (``lock_expiration``) is decremented on every
refresh; once spent, the refresher releases the lock even if the job is
still running and the next scheduled tick may start another run.

Locks are only enforced in production and can be bypassed per request
(``noCheck``); a disabled lock is a no-op that never reports "locked".
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from atelier.constants import RedisKeys
from atelier.jobs.job import Job, JobContext

if TYPE_CHECKING:
    import redis

logger = logging.getLogger(__name__)

LOCK_REFRESH_INTERVAL = 8
LOCK_BUFFER = 2


class JobLock:
    """Self-refreshing mutual-exclusion flag for one job name."""

    def __init__(
        self,
        client: redis.Redis | None,
        name: str,
        lock_expiration: int,
        *,
        enabled: bool = True,
        refresh_interval: int = LOCK_REFRESH_INTERVAL,
        buffer: int = LOCK_BUFFER,
    ) -> None:
        self._redis = client
        self.name = name
        self.key = RedisKeys.job(name)
        self.lock_expiration = lock_expiration
        self.enabled = enabled and client is not None
        self.refresh_interval = refresh_interval
        self.buffer = buffer

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.remaining = lock_expiration

    def is_locked(self) -> bool:
        if not self.enabled:
            return False
        return self._redis.get(self.key) == "true"

    def _refresh(self) -> None:
        self._redis.set(self.key, "true", ex=self.refresh_interval + self.buffer)

    def _refresh_loop(self) -> None:
        while not self._stop.wait(timeout=self.refresh_interval):
            try:
                self._refresh()
            except Exception:
                logger.exception("Lock refresh failed", extra={"job": self.name})
            self.remaining -= self.refresh_interval
            if self.remaining <= 0:
                logger.warning("Lock budget spent for %s, releasing", self.name)
                self._delete()
                return

    def _delete(self) -> None:
        try:
            self._redis.delete(self.key)
        except Exception:
            logger.exception("Lock delete failed", extra={"job": self.name})

    def acquire(self) -> None:
        if not self.enabled:
            return
        logger.debug("lock %s", self.name)
        self._stop.clear()
        self.remaining = self.lock_expiration
        self._refresh()
        self._thread = threading.Thread(
            target=self._refresh_loop, daemon=True, name=f"job-lock-{self.name}"
        )
        self._thread.start()

    def release(self) -> None:
        if not self.enabled:
            return
        logger.debug("unlock %s", self.name)
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1)
        self._thread = None
        self._delete()


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------
@dataclass
class JobRunResult:
    status: Literal["success", "failed", "locked"]
    result: Any = None
    error: str | None = None
    duration: float = 0.0
    pod: str | None = None


def run_job(
    job: Job,
    ctx: JobContext,
    *,
    no_check: bool = False,
    production: bool = False,
) -> JobRunResult:
    """Run *job* under its lock and report the outcome.

    Exceptions raised by the job are captured in the result, never
    re-raised; the lock is released in every case.
    """
    pod = os.getenv("PODNAME")
    timing = {}
    if ctx.config is not None:
        timing = {
            "refresh_interval": ctx.config.job_lock_refresh_seconds,
            "buffer": ctx.config.job_lock_buffer_seconds,
        }
    lock = JobLock(
        ctx.redis,
        job.name,
        job.lock_expiration,
        enabled=production and not no_check,
        **timing,
    )

    if lock.is_locked():
        logger.info("%s already running", job.name)
        return JobRunResult(status="locked", pod=pod)

    started = time.monotonic()
    try:
        logger.info("%s starting", job.name)
        lock.acquire()
        result = job.run(ctx)
        duration = time.monotonic() - started
        logger.info("%s successful: %.2fs", job.name, duration)
        return JobRunResult(status="success", result=result, duration=duration, pod=pod)
    except Exception as exc:
        duration = time.monotonic() - started
        logger.exception("%s failed: %.2fs", job.name, duration, extra={"job": job.name})
        return JobRunResult(status="failed", error=str(exc), duration=duration, pod=pod)
    finally:
        lock.release()
