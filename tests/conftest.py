"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import fnmatch
import os
import time

# ---------------------------------------------------------------------------
# atelier.api.deps validates JWT_SECRET at import time, so a valid one must
# be in place before anything imports it.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)
os.environ.setdefault("WEBHOOK_TOKEN", "test-webhook-token")

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from atelier.config import AtelierConfig  # noqa: E402
from atelier.database.models import Base, User  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Render PG JSONB as TEXT and BigInteger as INTEGER on SQLite (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


# ---------------------------------------------------------------------------
# In-memory Redis double
# ---------------------------------------------------------------------------
class FakeRedis:
    """The subset of ``redis.Redis`` (``decode_responses=True``) Atelier uses.

    Values are stored as strings like the real client returns them; key
    expiry is honoured lazily on access.
    """

    def __init__(self) -> None:
        self.data: dict[str, object] = {}
        self.expiry: dict[str, float] = {}

    # -- housekeeping --------------------------------------------------------
    def _purge(self, key: str) -> None:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    def _get(self, key: str, factory=None):
        self._purge(key)
        if key not in self.data and factory is not None:
            self.data[key] = factory()
        return self.data.get(key)

    def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self.data:
            return -2
        if key not in self.expiry:
            return -1
        return int(round(self.expiry[key] - time.monotonic()))

    def keys(self, pattern: str = "*") -> list[str]:
        for key in list(self.data):
            self._purge(key)
        return [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]

    # -- strings -------------------------------------------------------------
    def get(self, key: str):
        return self._get(key)

    def set(self, key: str, value, ex: int | None = None, px: int | None = None, nx: bool = False):
        self._purge(key)
        if nx and key in self.data:
            return None
        self.data[key] = str(value)
        self.expiry.pop(key, None)
        if ex is not None:
            self.expiry[key] = time.monotonic() + ex
        elif px is not None:
            self.expiry[key] = time.monotonic() + px / 1000
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._purge(key)
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if self._get(key) is not None)

    def expire(self, key: str, seconds: int) -> bool:
        if self._get(key) is None:
            return False
        self.expiry[key] = time.monotonic() + seconds
        return True

    # -- sets ----------------------------------------------------------------
    def sadd(self, key: str, *members) -> int:
        members_set = self._get(key, set)
        before = len(members_set)
        members_set.update(str(m) for m in members)
        return len(members_set) - before

    def srem(self, key: str, *members) -> int:
        members_set = self._get(key) or set()
        removed = 0
        for member in members:
            if str(member) in members_set:
                members_set.discard(str(member))
                removed += 1
        if key in self.data and not members_set:
            self.delete(key)
        return removed

    def smembers(self, key: str) -> set[str]:
        return set(self._get(key) or set())

    def sismember(self, key: str, member) -> bool:
        return str(member) in (self._get(key) or set())

    def scard(self, key: str) -> int:
        return len(self._get(key) or set())

    # -- hashes --------------------------------------------------------------
    def hget(self, key: str, field: str):
        return (self._get(key) or {}).get(str(field))

    def hset(self, key: str, field=None, value=None, mapping: dict | None = None) -> int:
        hash_ = self._get(key, dict)
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        added = 0
        for f, v in items.items():
            if str(f) not in hash_:
                added += 1
            hash_[str(f)] = str(v)
        return added

    def hgetall(self, key: str) -> dict[str, str]:
        return dict(self._get(key) or {})

    def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        hash_ = self._get(key, dict)
        value = int(hash_.get(str(field), 0)) + amount
        hash_[str(field)] = str(value)
        return value

    # -- scripting -----------------------------------------------------------
    def register_script(self, script: str):
        """Stand-in for the ELO vote script: same keys, args and result."""
        from atelier.engine.elo import apply_vote

        def run(keys, args):
            elo_key, votes_key = keys
            winner, loser = str(args[0]), str(args[1])
            ttl = int(args[6])

            def rating(entry):
                value = self.hget(elo_key, entry)
                return int(float(value)) if value is not None else None

            def votes(entry):
                value = self.hget(votes_key, entry)
                return int(value) if value is not None else 0

            outcome = apply_vote(rating(winner), rating(loser), votes(winner), votes(loser))
            self.hset(elo_key, mapping={winner: outcome.winner_elo, loser: outcome.loser_elo})
            self.expire(elo_key, ttl)
            return [outcome.winner_elo, outcome.loser_elo]

        return run


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every Atelier table.

    StaticPool shares one connection across threads; job locks, worker
    pools and ``run_db`` all touch the database off the main thread.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def test_config() -> AtelierConfig:
    return AtelierConfig(platform_name="Atelier Test", api_port=8000)


def make_user(engine: Engine, username: str = "ada", **fields) -> int:
    """Insert a user and return its id."""
    with Session(engine) as session:
        user = User(username=username, email=f"{username}@example.com", **fields)
        session.add(user)
        session.commit()
        return user.id


def make_token(user_id: int, username: str = "ada", *, is_moderator: bool = False) -> str:
    """Signed session JWT; usable from any test module."""
    from atelier.api.deps import create_access_token

    return create_access_token(user_id, username, is_moderator=is_moderator)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db_engine, fake_redis, test_config):
    """TestClient with engine, Redis, config and Meilisearch swapped for fakes."""
    from fastapi.testclient import TestClient

    from atelier.api import deps
    from atelier.api.main import app

    app.dependency_overrides[deps.get_engine] = lambda: db_engine
    app.dependency_overrides[deps.get_redis] = lambda: fake_redis
    app.dependency_overrides[deps.get_config] = lambda: test_config
    app.dependency_overrides[deps.get_search_client] = lambda: None
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
