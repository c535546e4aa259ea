"""
atelier.jobs.registry — Named Job Table
========================================

Every job the webhook runner can start, looked up by name.  An external
scheduler calls ``/api/webhooks/run-jobs/<name>`` on each job's cron.
"""

from __future__ import annotations

import logging

from atelier.jobs.job import Job, JobContext, create_job
from atelier.search_index.articles import articles_search_index
from atelier.services.crucible_service import finalize_ended_crucibles
from atelier.services.elo_store import EloStore
from atelier.services.strike_service import expire_strikes, process_timed_unmutes

logger = logging.getLogger(__name__)


def _expire_strikes(ctx: JobContext):
    return expire_strikes(ctx.engine, ctx.redis)


def _process_timed_unmutes(ctx: JobContext):
    return process_timed_unmutes(ctx.engine, ctx.redis)


def _finalize_crucibles(ctx: JobContext):
    if ctx.redis is None:
        raise RuntimeError("finalize-crucibles requires Redis")
    return finalize_ended_crucibles(ctx.engine, EloStore(ctx.redis))


def _sync_articles(ctx: JobContext):
    return articles_search_index.update(ctx)


def _process_article_queues(ctx: JobContext):
    return articles_search_index.process_queues(ctx, process_updates=True, process_deletes=True)


JOBS: list[Job] = [
    create_job("expire-strikes", "0 * * * *", _expire_strikes),
    create_job("process-timed-unmutes", "*/5 * * * *", _process_timed_unmutes),
    create_job("finalize-crucibles", "*/5 * * * *", _finalize_crucibles),
    create_job("search-index-sync-articles", "*/1 * * * *", _sync_articles),
    create_job("search-index-articles-queues", "*/5 * * * *", _process_article_queues),
]

_BY_NAME = {job.name: job for job in JOBS}


def get_job(name: str | None) -> Job | None:
    if not name:
        return None
    return _BY_NAME.get(name)
