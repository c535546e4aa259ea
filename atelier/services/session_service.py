"""
atelier.services.session_service — Session Invalidation Flags
==============================================================

Moderation changes (mutes, unmutes) must reach a user's live session.
Rather than tracking sessions, we drop a flag in Redis that the auth layer
checks on the next request:

* ``session:invalidate:<userId>`` — force a fresh sign-in.
* ``session:refresh:<userId>`` — re-read user state into the session.

Flags expire after 30 days, longer than any session lives.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from atelier.constants import SESSION_FLAG_TTL_SECONDS, RedisKeys

if TYPE_CHECKING:
    import redis

logger = logging.getLogger(__name__)


def invalidate_session(client: redis.Redis | None, user_id: int) -> None:
    if client is None:
        return
    client.set(RedisKeys.session_invalidate(user_id), str(int(time.time() * 1000)), ex=SESSION_FLAG_TTL_SECONDS)
    logger.debug("Session invalidated for user %s", user_id)


def refresh_session(client: redis.Redis | None, user_id: int) -> None:
    if client is None:
        return
    client.set(RedisKeys.session_refresh(user_id), str(int(time.time() * 1000)), ex=SESSION_FLAG_TTL_SECONDS)
    logger.debug("Session refresh requested for user %s", user_id)


def is_session_invalidated(
    client: redis.Redis | None, user_id: int, issued_at: float | None
) -> bool:
    """True when an invalidate flag was set after the token was issued.

    *issued_at* is the JWT ``iat`` claim in seconds; tokens without one are
    treated as issued before any flag.
    """
    if client is None:
        return False
    flagged_at = client.get(RedisKeys.session_invalidate(user_id))
    if not flagged_at:
        return False
    return int(flagged_at) > int((issued_at or 0) * 1000)
