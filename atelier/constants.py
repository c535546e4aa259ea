"""
atelier.constants — Shared Constants & Helpers
===============================================

Single source of truth for moderation thresholds, ELO tuning, Redis key
namespaces and a few small helpers.  Import from here instead of
duplicating values in services, jobs and routes.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Strike escalation
# ---------------------------------------------------------------------------
STRIKE_FLAG_THRESHOLD = 3       # indefinite mute + flagged for review
STRIKE_MUTE_THRESHOLD = 2       # timed mute
STRIKE_MUTE_DAYS = 3
AUTO_STRIKES_PER_DAY = 1        # non-manual strikes per user per UTC day
DEFAULT_STRIKE_EXPIRY_DAYS = 30

# ---------------------------------------------------------------------------
# Crucible judging (ELO)
# ---------------------------------------------------------------------------
CRUCIBLE_DEFAULT_ELO = 1500
K_FACTOR_PROVISIONAL = 64
K_FACTOR_ESTABLISHED = 32
PROVISIONAL_VOTE_THRESHOLD = 10

ELO_DEVIATION_LOW = 50      # 0-50: calibration
ELO_DEVIATION_MED = 150     # 50-150: discovery, >150: optimization

JUDGING_SAMPLE_SIZE = 100
JUDGING_MAX_SAMPLE_ATTEMPTS = 3

CRUCIBLE_REDIS_TTL_SECONDS = 30 * 24 * 60 * 60
CRUCIBLE_FINAL_TTL_SECONDS = 7 * 24 * 60 * 60
CRUCIBLE_CANCEL_TTL_SECONDS = 24 * 60 * 60
CRUCIBLE_ENTRY_LOCK_MS = 5000
CRUCIBLE_MAX_DURATION_HOURS = 30 * 24

CENTRAL_BANK_ACCOUNT_ID = 0

# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
SESSION_FLAG_TTL_SECONDS = 30 * 24 * 60 * 60


# ---------------------------------------------------------------------------
# Redis key namespaces
# ---------------------------------------------------------------------------
class RedisKeys:
    """System Redis key builders.  Every key the platform writes lives here."""

    JOB = "job"
    SEARCH_QUEUE = "search-index:queue"
    SESSION_INVALIDATE = "session:invalidate"
    SESSION_REFRESH = "session:refresh"
    CRUCIBLE_ELO = "crucible:elo"
    CRUCIBLE_VOTES = "crucible:votes"
    CRUCIBLE_VOTED_PAIRS = "crucible:voted-pairs"
    CRUCIBLE_JUDGES = "crucible:judges"
    CRUCIBLE_USER_VOTES = "crucible:user-votes"
    CRUCIBLE_ENTRY_LOCK = "lock:crucible-entry"

    @staticmethod
    def job(name: str) -> str:
        return f"{RedisKeys.JOB}:{name}"

    @staticmethod
    def search_queue(index_name: str, action: str) -> str:
        return f"{RedisKeys.SEARCH_QUEUE}:{index_name}:{action}"

    @staticmethod
    def session_invalidate(user_id: int) -> str:
        return f"{RedisKeys.SESSION_INVALIDATE}:{user_id}"

    @staticmethod
    def session_refresh(user_id: int) -> str:
        return f"{RedisKeys.SESSION_REFRESH}:{user_id}"

    @staticmethod
    def crucible_elo(crucible_id: int) -> str:
        return f"{RedisKeys.CRUCIBLE_ELO}:{crucible_id}"

    @staticmethod
    def crucible_votes(crucible_id: int) -> str:
        return f"{RedisKeys.CRUCIBLE_VOTES}:{crucible_id}"

    @staticmethod
    def crucible_voted_pairs(crucible_id: int, user_id: int) -> str:
        return f"{RedisKeys.CRUCIBLE_VOTED_PAIRS}:{crucible_id}:{user_id}"

    @staticmethod
    def crucible_judges(crucible_id: int) -> str:
        return f"{RedisKeys.CRUCIBLE_JUDGES}:{crucible_id}"

    @staticmethod
    def crucible_entry_lock(crucible_id: int, user_id: int) -> str:
        return f"{RedisKeys.CRUCIBLE_ENTRY_LOCK}:{crucible_id}:{user_id}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def round_half_up(value: float) -> int:
    """Round .5 toward +infinity, unlike Python's banker's rounding."""
    return math.floor(value + 0.5)


def ordinal(position: int) -> str:
    """1 → '1st', 2 → '2nd', 11 → '11th', 23 → '23rd'."""
    remainder = position % 100
    if 11 <= remainder <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(position % 10, "th")
    return f"{position}{suffix}"
