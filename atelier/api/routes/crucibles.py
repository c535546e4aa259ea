"""
atelier.api.routes.crucibles — Crucible endpoints
==================================================

Creating crucibles, entering them, judging pairs and, for moderators,
finalizing or cancelling them.
"""

from __future__ import annotations

import logging

import redis
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from atelier.api.deps import (
    get_current_moderator,
    get_current_user,
    get_elo_store,
    get_engine,
    get_redis,
)
from atelier.constants import CRUCIBLE_MAX_DURATION_HOURS
from atelier.services import crucible_service
from atelier.services.elo_store import EloStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["crucibles"])


class PrizePositionIn(BaseModel):
    position: int = Field(ge=1)
    percentage: float = Field(gt=0, le=100)


class CrucibleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    nsfw_level: int = Field(1, ge=1)
    entry_fee: int = Field(0, ge=0)
    entry_limit: int = Field(1, ge=1, le=10)
    max_total_entries: int | None = Field(None, ge=1)
    prize_positions: list[PrizePositionIn] = Field(default_factory=list, max_length=10)
    duration_hours: int = Field(ge=1, le=CRUCIBLE_MAX_DURATION_HOURS)


class EntrySubmit(BaseModel):
    image_id: int


class VoteSubmit(BaseModel):
    winner_entry_id: int
    loser_entry_id: int


@router.get("/crucibles/judge-stats/me")
def my_judge_stats(
    user: dict = Depends(get_current_user),
    client: redis.Redis = Depends(get_redis),
):
    return crucible_service.get_user_judge_stats(client, user["id"])


@router.get("/crucibles/{crucible_id}/judging-pair")
def judging_pair(
    crucible_id: int,
    exclude: list[int] = Query([], alias="excludeEntryIds"),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    client: redis.Redis = Depends(get_redis),
    elo_store: EloStore = Depends(get_elo_store),
):
    """Next pair to judge; ``{"pair": null}`` once the judge has seen them all."""
    pair = crucible_service.get_judging_pair(
        engine,
        client,
        elo_store,
        crucible_id=crucible_id,
        user_id=user["id"],
        exclude_entry_ids=exclude,
    )
    return {"pair": pair}


@router.post("/crucibles/{crucible_id}/vote")
def submit_vote(
    crucible_id: int,
    body: VoteSubmit,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    client: redis.Redis = Depends(get_redis),
    elo_store: EloStore = Depends(get_elo_store),
):
    return crucible_service.submit_vote(
        engine,
        client,
        elo_store,
        crucible_id=crucible_id,
        winner_entry_id=body.winner_entry_id,
        loser_entry_id=body.loser_entry_id,
        user_id=user["id"],
    )


@router.post("/mod/crucibles/{crucible_id}/finalize")
def finalize(
    crucible_id: int,
    mod: dict = Depends(get_current_moderator),
    engine: Engine = Depends(get_engine),
    elo_store: EloStore = Depends(get_elo_store),
):
    """Finalize a crucible now instead of waiting for the job."""
    logger.info("Moderator %s finalizing crucible %s", mod["id"], crucible_id)
    return crucible_service.finalize_crucible(engine, elo_store, crucible_id)


@router.post("/crucibles")
def create_crucible(
    body: CrucibleCreate,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return crucible_service.create_crucible(
        engine,
        user_id=user["id"],
        **body.model_dump(),
    )


@router.post("/crucibles/{crucible_id}/entries")
def submit_entry(
    crucible_id: int,
    body: EntrySubmit,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    client: redis.Redis = Depends(get_redis),
):
    """Enter one of the caller's images, charging the entry fee."""
    return crucible_service.submit_entry(
        engine,
        client,
        crucible_id=crucible_id,
        image_id=body.image_id,
        user_id=user["id"],
    )


@router.post("/mod/crucibles/{crucible_id}/cancel")
def cancel(
    crucible_id: int,
    mod: dict = Depends(get_current_moderator),
    engine: Engine = Depends(get_engine),
    elo_store: EloStore = Depends(get_elo_store),
):
    logger.info("Moderator %s cancelling crucible %s", mod["id"], crucible_id)
    return crucible_service.cancel_crucible(engine, elo_store, crucible_id)
