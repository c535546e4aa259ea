"""
atelier.api.routes.mod — Moderator diagnostics
===============================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from atelier.api.deps import get_current_moderator
from atelier.services.log_buffer import (
    VALID_LEVELS,
    get_buffer,
    get_capture_level,
    set_capture_level,
)

router = APIRouter(prefix="/mod", tags=["mod"])


class LevelChange(BaseModel):
    level: str


@router.get("/logs")
def get_logs(
    limit: int = Query(200, ge=1, le=2000),
    level: str | None = Query(None),
    since: int = Query(0, ge=0),
    job: str | None = Query(None),
    logger_prefix: str | None = Query(None, alias="logger"),
    mod: dict = Depends(get_current_moderator),
):
    """Recent log records of this process, oldest first."""
    if level is not None and level.upper() not in VALID_LEVELS:
        raise HTTPException(400, f"Invalid level. Must be one of: {', '.join(VALID_LEVELS)}")
    entries = get_buffer().query(
        limit=limit, level=level, since=since, job=job, logger_prefix=logger_prefix
    )
    return {
        "entries": entries,
        "last_seq": entries[-1]["seq"] if entries else since,
        "capture_level": get_capture_level(),
    }


@router.put("/logs/level")
def change_log_level(
    body: LevelChange,
    mod: dict = Depends(get_current_moderator),
):
    try:
        return {"level": set_capture_level(body.level)}
    except ValueError as exc:
        raise HTTPException(400, str(exc))
