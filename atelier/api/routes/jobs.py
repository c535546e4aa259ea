"""
atelier.api.routes.jobs — Job runner webhook
=============================================

An external scheduler (Kubernetes CronJob, cron + curl, ...) triggers jobs
by name::

    GET /api/webhooks/run-jobs/expire-strikes?token=<WEBHOOK_TOKEN>

The job runs on a worker thread.  If the caller hangs up before it
finishes, the run's :class:`~atelier.jobs.job.JobContext` is canceled so
cooperative jobs can stop early.
"""

from __future__ import annotations

import asyncio
import logging

import meilisearch
import redis
from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import Engine

from atelier.api.deps import (
    get_config,
    get_engine,
    get_redis,
    get_search_client,
    verify_webhook_token,
)
from atelier.config import AtelierConfig
from atelier.database.engine import run_db
from atelier.jobs.job import JobContext
from atelier.jobs.lock import run_job
from atelier.jobs.registry import JOBS, get_job

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/webhooks",
    tags=["jobs"],
    dependencies=[Depends(verify_webhook_token)],
)

DISCONNECT_POLL_SECONDS = 1.0


async def _cancel_on_disconnect(request: Request, ctx: JobContext, name: str) -> None:
    while not ctx.canceled:
        if await request.is_disconnected():
            logger.info("Client disconnected, canceling %s", name)
            ctx.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.get("/run-jobs")
def list_jobs():
    return {"jobs": [{"name": job.name, "cron": job.cron} for job in JOBS]}


@router.get("/run-jobs/{name}")
async def run_job_webhook(
    name: str,
    request: Request,
    no_check: bool = Query(False, alias="noCheck"),
    engine: Engine = Depends(get_engine),
    client: redis.Redis = Depends(get_redis),
    search_client: meilisearch.Client | None = Depends(get_search_client),
    config: AtelierConfig = Depends(get_config),
):
    job = get_job(name)
    if job is None:
        return JSONResponse({"ok": False, "error": "Job not found"}, status_code=404)

    ctx = JobContext(engine=engine, redis=client, search_client=search_client, config=config)
    watcher = asyncio.create_task(_cancel_on_disconnect(request, ctx, name))
    try:
        outcome = await run_db(
            run_job, job, ctx, no_check=no_check, production=config.is_production
        )
    finally:
        watcher.cancel()

    if outcome.status == "locked":
        return {"ok": True, "error": "Job already running"}
    if outcome.status == "failed":
        return JSONResponse(
            {"ok": False, "pod": outcome.pod, "error": outcome.error},
            status_code=500,
        )
    return {"ok": True, "pod": outcome.pod, "result": jsonable_encoder(outcome.result)}
