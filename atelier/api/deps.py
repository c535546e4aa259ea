"""
atelier.api.deps — FastAPI dependency injection
================================================

Process-wide resources (engine, config, Redis, Meilisearch, ELO store) are
built once and cached; tests swap them with ``app.dependency_overrides``.
"""

from __future__ import annotations

import os
import secrets
import time
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Annotated

import jwt
import meilisearch
import redis
from fastapi import Depends, Header, HTTPException, Query, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from atelier.config import AtelierConfig, load_config
from atelier.database.engine import create_db_engine
from atelier.database.redis_client import create_redis_client
from atelier.search_index.meili import create_search_client
from atelier.services.elo_store import EloStore
from atelier.services.session_service import is_session_invalidated

_WEAK_SECRETS = frozenset({
    "atelier-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TTL = timedelta(hours=12)


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, too short
    (< 32 chars) or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


# ---------------------------------------------------------------------------
# Shared resources
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> AtelierConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_redis() -> redis.Redis:
    return create_redis_client()


@lru_cache(maxsize=1)
def get_search_client() -> meilisearch.Client | None:
    return create_search_client()


def get_elo_store(client: Annotated[redis.Redis, Depends(get_redis)]) -> EloStore:
    return EloStore(client)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
def create_access_token(user_id: int, username: str, *, is_moderator: bool = False) -> str:
    """Sign a session token for *user_id*.

    ``iat`` keeps sub-second precision so a token issued right after a
    session invalidation is not mistaken for an older one.
    """
    payload = {
        "sub": str(user_id),
        "username": username,
        "is_moderator": is_moderator,
        "iat": time.time(),
        "exp": datetime.now(UTC) + ACCESS_TOKEN_TTL,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    client: redis.Redis = Depends(get_redis),
) -> dict:
    """Validate the bearer JWT and return its payload. Raises 401 if invalid.

    The payload gains an integer ``id``.  Tokens issued before the user's
    session was invalidated (mute, flag for review) are rejected.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        user_id = int(payload["sub"])
    except (InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")

    if is_session_invalidated(client, user_id, payload.get("iat")):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Session expired")

    return {**payload, "id": user_id}


def get_current_moderator(
    user: dict = Depends(get_current_user),
    config: AtelierConfig = Depends(get_config),
) -> dict:
    """Like :func:`get_current_user`, but 403 unless the user moderates."""
    if not user.get("is_moderator") and user["id"] not in config.moderator_ids:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not a moderator")
    return user


def verify_webhook_token(
    token: str | None = Query(None),
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Accept ``?token=`` or ``Authorization: Bearer`` matching WEBHOOK_TOKEN."""
    expected = os.getenv("WEBHOOK_TOKEN", "")
    provided = token
    if provided is None and authorization and authorization.startswith("Bearer "):
        provided = authorization.split(" ", 1)[1]
    if not expected or not provided or not secrets.compare_digest(provided, expected):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid webhook token")
