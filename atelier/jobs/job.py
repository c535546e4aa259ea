"""
atelier.jobs.job — Job Definitions & Run Context
=================================================

A :class:`Job` is a named callable plus the metadata the webhook runner
needs (cron expression, lock budget).  Jobs receive a :class:`JobContext`
carrying the shared clients and a cooperative cancellation flag::

    def expire(ctx: JobContext) -> dict:
        ctx.check_if_canceled()
        return expire_strikes(ctx.engine, ctx.redis)

    expire_strikes_job = create_job("expire-strikes", "0 * * * *", expire)

The cron string is metadata for the external scheduler that calls the
webhook; nothing in-process interprets it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine

from atelier.constants import as_utc
from atelier.database.engine import get_session
from atelier.database.models import KeyValue

if TYPE_CHECKING:
    import redis
    from meilisearch import Client as MeiliClient

    from atelier.config import AtelierConfig

logger = logging.getLogger(__name__)

DEFAULT_LOCK_EXPIRATION = 30 * 60
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class JobCanceledError(Exception):
    """Raised by :meth:`JobContext.check_if_canceled` once a run is canceled."""


@dataclass
class JobContext:
    """Per-run context: shared clients plus cancellation state."""

    engine: Engine
    redis: redis.Redis | None = None
    search_client: MeiliClient | None = None
    config: AtelierConfig | None = None

    _canceled: threading.Event = field(default_factory=threading.Event, repr=False)
    _callbacks: list[Callable[[], None]] = field(default_factory=list, repr=False)

    @property
    def canceled(self) -> bool:
        return self._canceled.is_set()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def cancel(self) -> None:
        if self._canceled.is_set():
            return
        self._canceled.set()
        for callback in self._callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancel callback failed")

    def check_if_canceled(self) -> None:
        if self._canceled.is_set():
            raise JobCanceledError("Job was canceled")


@dataclass(frozen=True)
class Job:
    name: str
    cron: str
    run: Callable[[JobContext], Any]
    lock_expiration: int = DEFAULT_LOCK_EXPIRATION


def create_job(
    name: str,
    cron: str,
    fn: Callable[[JobContext], Any],
    *,
    lock_expiration: int = DEFAULT_LOCK_EXPIRATION,
) -> Job:
    return Job(name=name, cron=cron, run=fn, lock_expiration=lock_expiration)


# ---------------------------------------------------------------------------
# Job dates: "last successful run" markers kept in key_values
# ---------------------------------------------------------------------------
def _read_job_date(engine: Engine, key: str) -> datetime | None:
    with get_session(engine) as session:
        row = session.get(KeyValue, key)
        if row is None or not row.value:
            return None
        try:
            return as_utc(datetime.fromisoformat(str(row.value)))
        except ValueError:
            logger.warning("Ignoring malformed job date %r for %s", row.value, key)
            return None


def _write_job_date(engine: Engine, key: str, value: datetime) -> None:
    with get_session(engine) as session:
        row = session.get(KeyValue, key)
        if row is None:
            session.add(KeyValue(key=key, value=value.isoformat()))
        else:
            row.value = value.isoformat()


def get_job_date(
    engine: Engine,
    key: str,
    default: datetime | None = None,
) -> tuple[datetime, Callable[[datetime | None], None]]:
    """Return ``(last_run, set_last_run)`` for *key*.

    A key that was never written reads as *default* (the Unix epoch when
    omitted).  ``set_last_run()`` without an argument stores "now".
    """
    last_run = _read_job_date(engine, key) or default or EPOCH

    def set_last_run(value: datetime | None = None) -> None:
        _write_job_date(engine, key, value or datetime.now(UTC))

    return last_run, set_last_run
