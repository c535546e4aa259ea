"""
atelier.__main__ — Command-line entry point for ``python -m atelier``
======================================================================

Runs jobs outside the webhook, e.g. from a one-off pod or a developer
shell::

    python -m atelier list-jobs
    python -m atelier run-job expire-strikes
    python -m atelier reset-index articles
    python -m atelier init-db

Wiring mirrors the API: ``.env`` for secrets, ``config.yaml`` for
settings, then engine, Redis and (optional) Meilisearch clients.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from atelier.config import load_config
from atelier.database.engine import create_db_engine, init_db
from atelier.database.redis_client import create_redis_client
from atelier.jobs.job import JobContext
from atelier.jobs.lock import run_job
from atelier.jobs.registry import JOBS, get_job
from atelier.search_index.articles import articles_search_index
from atelier.search_index.meili import create_search_client

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("atelier")

INDEXES = {articles_search_index.index_name: articles_search_index}


def _build_context() -> JobContext:
    cfg = load_config()
    logger.info("Config loaded — Platform: %s (%s)", cfg.platform_name, cfg.environment)
    return JobContext(
        engine=create_db_engine(),
        redis=create_redis_client(),
        search_client=create_search_client(),
        config=cfg,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="atelier", description="Atelier job and index tooling.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-jobs", help="List registered jobs and their schedules.")

    run_parser = subparsers.add_parser("run-job", help="Run one job by name.")
    run_parser.add_argument("name")
    run_parser.add_argument("--no-check", action="store_true", help="Skip the job lock.")

    reset_parser = subparsers.add_parser("reset-index", help="Rebuild a search index from scratch.")
    reset_parser.add_argument("index", choices=sorted(INDEXES))

    subparsers.add_parser("init-db", help="Create missing tables (development only).")

    args = parser.parse_args(argv)
    load_dotenv()

    if args.command == "list-jobs":
        for job in JOBS:
            print(f"{job.name:<32} {job.cron}")
        return 0

    if args.command == "init-db":
        init_db(create_db_engine())
        return 0

    ctx = _build_context()

    if args.command == "reset-index":
        INDEXES[args.index].reset(ctx)
        return 0

    job = get_job(args.name)
    if job is None:
        logger.error("Job not found: %s", args.name)
        return 1
    outcome = run_job(job, ctx, no_check=args.no_check, production=ctx.config.is_production)
    if outcome.status == "locked":
        logger.warning("%s is already running on another pod", job.name)
        return 0
    if outcome.status == "failed":
        return 1
    json.dump(outcome.result, sys.stdout, indent=2, default=str)
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
