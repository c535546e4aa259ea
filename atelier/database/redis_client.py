"""
atelier.database.redis_client — Redis Connection
=================================================

One synchronous ``redis.Redis`` client per process, built from
``REDIS_URL``.  Responses are decoded to ``str`` so callers compare
against plain strings (``"true"``, entry ids, ...).
"""

from __future__ import annotations

import logging
import os

import redis

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


def create_redis_client(url: str | None = None) -> redis.Redis:
    """Return a :class:`redis.Redis` client for *url* (or ``REDIS_URL``)."""
    url = url or os.getenv("REDIS_URL", DEFAULT_REDIS_URL)
    client = redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
        health_check_interval=30,
    )
    logger.info("Redis client created → %s", client.connection_pool.connection_kwargs.get("host"))
    return client
