"""
atelier.services.elo_store — Live Crucible Ratings in Redis
============================================================

While a crucible is open, ratings and vote counts live in two Redis
hashes (``crucible:elo:<id>`` and ``crucible:votes:<id>``) instead of
PostgreSQL; finalization copies them back.

:meth:`EloStore.process_vote` runs the whole read-compute-write cycle in a
Lua script, so concurrent votes on the same entry never lose an update.
The script mirrors :func:`atelier.engine.elo.apply_vote`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from atelier.constants import (
    CRUCIBLE_DEFAULT_ELO,
    CRUCIBLE_REDIS_TTL_SECONDS,
    K_FACTOR_ESTABLISHED,
    K_FACTOR_PROVISIONAL,
    PROVISIONAL_VOTE_THRESHOLD,
    RedisKeys,
)

if TYPE_CHECKING:
    import redis

logger = logging.getLogger(__name__)

# KEYS[1] elo hash, KEYS[2] votes hash
# ARGV: winnerId, loserId, default, kProvisional, kEstablished, threshold, ttl
_PROCESS_VOTE_LUA = """
local function rating(id)
  local v = redis.call('HGET', KEYS[1], id)
  if v then return tonumber(v) end
  return tonumber(ARGV[3])
end
local function votes(id)
  local v = redis.call('HGET', KEYS[2], id)
  if v then return tonumber(v) end
  return 0
end
local function kfactor(n)
  if n < tonumber(ARGV[6]) then return tonumber(ARGV[4]) end
  return tonumber(ARGV[5])
end
local function round(x) return math.floor(x + 0.5) end

local w = rating(ARGV[1])
local l = rating(ARGV[2])
local ew = 1 / (1 + 10 ^ ((l - w) / 400))
local el = 1 / (1 + 10 ^ ((w - l) / 400))
local nw = w + round(kfactor(votes(ARGV[1])) * (1 - ew))
local nl = l + round(kfactor(votes(ARGV[2])) * (0 - el))

redis.call('HSET', KEYS[1], ARGV[1], nw, ARGV[2], nl)
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[7]))
return {nw, nl}
"""


class EloStore:
    """Redis-backed ratings and vote counts for crucible entries."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client
        self._process_vote = client.register_script(_PROCESS_VOTE_LUA)

    # -- ratings -------------------------------------------------------------
    def get_elo(self, crucible_id: int, entry_id: int) -> int | None:
        value = self._redis.hget(RedisKeys.crucible_elo(crucible_id), str(entry_id))
        return int(float(value)) if value is not None else None

    def get_all_elos(self, crucible_id: int) -> dict[int, int]:
        raw = self._redis.hgetall(RedisKeys.crucible_elo(crucible_id))
        return {int(k): int(float(v)) for k, v in raw.items()}

    def set_elo(self, crucible_id: int, entry_id: int, elo: int) -> None:
        key = RedisKeys.crucible_elo(crucible_id)
        self._redis.hset(key, str(entry_id), elo)
        self._redis.expire(key, CRUCIBLE_REDIS_TTL_SECONDS)

    def process_vote(
        self,
        crucible_id: int,
        winner_entry_id: int,
        loser_entry_id: int,
    ) -> tuple[int, int]:
        """Atomically apply one vote; returns ``(winner_elo, loser_elo)``."""
        new_winner, new_loser = self._process_vote(
            keys=[
                RedisKeys.crucible_elo(crucible_id),
                RedisKeys.crucible_votes(crucible_id),
            ],
            args=[
                winner_entry_id,
                loser_entry_id,
                CRUCIBLE_DEFAULT_ELO,
                K_FACTOR_PROVISIONAL,
                K_FACTOR_ESTABLISHED,
                PROVISIONAL_VOTE_THRESHOLD,
                CRUCIBLE_REDIS_TTL_SECONDS,
            ],
        )
        return int(new_winner), int(new_loser)

    # -- vote counts ---------------------------------------------------------
    def get_vote_count(self, crucible_id: int, entry_id: int) -> int:
        value = self._redis.hget(RedisKeys.crucible_votes(crucible_id), str(entry_id))
        return int(value) if value is not None else 0

    def get_all_vote_counts(self, crucible_id: int) -> dict[int, int]:
        raw = self._redis.hgetall(RedisKeys.crucible_votes(crucible_id))
        return {int(k): int(v) for k, v in raw.items()}

    def increment_vote_count(self, crucible_id: int, entry_id: int) -> int:
        key = RedisKeys.crucible_votes(crucible_id)
        count = self._redis.hincrby(key, str(entry_id), 1)
        self._redis.expire(key, CRUCIBLE_REDIS_TTL_SECONDS)
        return int(count)

    # -- cleanup -------------------------------------------------------------
    def set_ttl(self, crucible_id: int, seconds: int) -> None:
        self._redis.expire(RedisKeys.crucible_elo(crucible_id), seconds)
        self._redis.expire(RedisKeys.crucible_votes(crucible_id), seconds)
