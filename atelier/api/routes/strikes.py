"""
atelier.api.routes.strikes — Strike endpoints
==============================================

Users read their own standing; moderators list, issue and void strikes.
"""

from __future__ import annotations

import redis
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from atelier.api.deps import get_current_moderator, get_current_user, get_engine, get_redis
from atelier.database.models import StrikeReason, StrikeStatus
from atelier.services import strike_service

router = APIRouter(tags=["strikes"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class StrikeCreate(BaseModel):
    user_id: int
    reason: StrikeReason
    description: str = Field(min_length=1, max_length=1000)
    points: int = Field(1, ge=1, le=3)
    internal_notes: str | None = None
    entity_type: str | None = None
    entity_id: int | None = None
    report_id: int | None = None
    expires_in_days: int = Field(30, ge=1, le=365)


class StrikeVoid(BaseModel):
    void_reason: str = Field(min_length=1, max_length=1000)


# ---------------------------------------------------------------------------
# Own strikes
# ---------------------------------------------------------------------------
@router.get("/strikes/me/summary")
def my_strike_summary(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return strike_service.get_strike_summary(engine, user["id"])


@router.get("/strikes/me")
def my_strikes(
    include_expired: bool = Query(False, alias="includeExpired"),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    """The caller's strikes, without moderator notes."""
    return strike_service.get_strikes_for_user(
        engine, user["id"], include_expired=include_expired
    )


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------
@router.get("/mod/strikes")
def list_strikes(
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    user_id: int | None = Query(None, alias="userId"),
    username: str | None = Query(None),
    status: StrikeStatus | None = Query(None),
    reason: StrikeReason | None = Query(None),
    mod: dict = Depends(get_current_moderator),
    engine: Engine = Depends(get_engine),
):
    return strike_service.get_strikes_for_mod(
        engine,
        limit=limit,
        page=page,
        user_id=user_id,
        username=username,
        status=status,
        reason=reason,
    )


@router.get("/mod/strikes/user/{user_id}")
def user_strike_history(
    user_id: int,
    mod: dict = Depends(get_current_moderator),
    engine: Engine = Depends(get_engine),
):
    return strike_service.get_strikes_for_user(
        engine, user_id, include_expired=True, include_internal_notes=True
    )


@router.post("/mod/strikes")
def issue_strike(
    body: StrikeCreate,
    mod: dict = Depends(get_current_moderator),
    engine: Engine = Depends(get_engine),
    client: redis.Redis = Depends(get_redis),
):
    """Issue a strike as the calling moderator.

    Automatic reasons are rate limited per user per day; a limited request
    returns ``{"strike": null, "rate_limited": true}``.
    """
    strike = strike_service.create_strike(
        engine,
        client,
        issued_by=mod["id"],
        **body.model_dump(),
    )
    return {"strike": strike, "rate_limited": strike is None}


@router.post("/mod/strikes/{strike_id}/void")
def void_strike(
    strike_id: int,
    body: StrikeVoid,
    mod: dict = Depends(get_current_moderator),
    engine: Engine = Depends(get_engine),
    client: redis.Redis = Depends(get_redis),
):
    return strike_service.void_strike(
        engine,
        client,
        strike_id=strike_id,
        void_reason=body.void_reason,
        voided_by=mod["id"],
    )
