"""
atelier.database.engine — Database Connection & Async Helper
=============================================================

SQLAlchemy + psycopg2 is synchronous.  Services are written as plain sync
functions taking an :class:`Engine`; FastAPI routes that need to stay off
the event loop ship them to a worker thread with :func:`run_db`, and jobs
call them directly.

Usage::

    from atelier.database.engine import create_db_engine, get_session, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env

    with get_session(engine) as session:
        session.add(User(username="ada"))

    summary = await run_db(get_strike_summary, engine, user_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from atelier.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Pool: five persistent connections, up to ten overflow, a 10 s checkout
    timeout and hourly recycling.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`atelier.database.models`.

    Production schema is managed by Alembic (``alembic upgrade head``);
    this is for local development and tests.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back
    on exception."""
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a synchronous database function on a background thread.

    Wraps :func:`asyncio.to_thread` so async route handlers never block the
    event loop on a query::

        result = await run_db(get_strikes_for_user, engine, user_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
