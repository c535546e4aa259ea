"""
atelier.services.strike_service — Moderation Strikes & Escalation
==================================================================

Strikes carry points and expire after a fixed number of days.  The sum of
a user's *active* points drives escalation:

* **3+ points** — indefinite mute, flagged for moderator review.
* **2 points**  — 3-day mute (the timer resets on every new strike).
* **< 2 points** — a strike mute is lifted.  Manual mutes (no expiry, no
  review flag) are never touched.

Automatic (non-manual) strikes are limited to one per user per UTC day;
over the limit, :func:`create_strike` returns ``None`` without raising.

All functions take the SQLAlchemy engine plus the Redis client used for
session flags.  Notifications are best-effort (see
:mod:`atelier.services.notification_service`).
"""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import Engine, func, select, update
from sqlalchemy.orm import Session, joinedload

from atelier.constants import (
    AUTO_STRIKES_PER_DAY,
    DEFAULT_STRIKE_EXPIRY_DAYS,
    STRIKE_FLAG_THRESHOLD,
    STRIKE_MUTE_DAYS,
    STRIKE_MUTE_THRESHOLD,
    as_utc,
    utcnow,
)
from atelier.database.models import (
    NotificationCategory,
    StrikeReason,
    StrikeStatus,
    User,
    UserStrike,
)
from atelier.errors import BadRequestError, NotFoundError
from atelier.services.notification_service import create_notification
from atelier.services.session_service import invalidate_session, refresh_session

if TYPE_CHECKING:
    import redis

logger = logging.getLogger(__name__)

EscalationAction = Literal["none", "muted", "muted-and-flagged", "unmuted"]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def _strike_to_dict(strike: UserStrike, *, include_internal_notes: bool = False) -> dict[str, Any]:
    data = {
        "id": strike.id,
        "user_id": strike.user_id,
        "reason": str(strike.reason),
        "status": str(strike.status),
        "points": strike.points,
        "description": strike.description,
        "entity_type": strike.entity_type,
        "entity_id": strike.entity_id,
        "report_id": strike.report_id,
        "created_at": _iso(strike.created_at),
        "expires_at": _iso(strike.expires_at),
        "voided_at": _iso(strike.voided_at),
        "voided_by": strike.voided_by,
        "void_reason": strike.void_reason,
        "issued_by": strike.issued_by,
    }
    if include_internal_notes:
        data["internal_notes"] = strike.internal_notes
    return data


def _user_ref(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": user.id, "username": user.username}


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------
def should_rate_limit_strike(engine: Engine, user_id: int) -> bool:
    """True once the user already received an automatic strike today (UTC)."""
    midnight = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    with Session(engine) as session:
        count = session.scalar(
            select(func.count(UserStrike.id)).where(
                UserStrike.user_id == user_id,
                UserStrike.created_at >= midnight,
                UserStrike.reason != StrikeReason.MANUAL_MOD_ACTION,
            )
        )
    return (count or 0) >= AUTO_STRIKES_PER_DAY


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _active_filter(user_id: int):
    return (
        UserStrike.user_id == user_id,
        UserStrike.status == StrikeStatus.ACTIVE,
        UserStrike.expires_at > utcnow(),
    )


def get_active_strike_points(engine: Engine, user_id: int) -> int:
    with Session(engine) as session:
        total = session.scalar(
            select(func.sum(UserStrike.points)).where(*_active_filter(user_id))
        )
    return int(total or 0)


def get_strike_summary(engine: Engine, user_id: int) -> dict[str, Any]:
    with Session(engine) as session:
        count, total, next_expiry = session.execute(
            select(
                func.count(UserStrike.id),
                func.sum(UserStrike.points),
                func.min(UserStrike.expires_at),
            ).where(*_active_filter(user_id))
        ).one()
    return {
        "active_strikes": int(count or 0),
        "total_active_points": int(total or 0),
        "next_expiry": _iso(next_expiry),
    }


def get_strikes_for_user(
    engine: Engine,
    user_id: int,
    *,
    include_expired: bool = False,
    include_internal_notes: bool = False,
) -> dict[str, Any]:
    """Strikes for one user, newest first.

    Internal notes are for moderators only and are omitted unless asked for.
    """
    stmt = (
        select(UserStrike)
        .options(joinedload(UserStrike.issued_by_user))
        .where(UserStrike.user_id == user_id)
        .order_by(UserStrike.created_at.desc(), UserStrike.id.desc())
    )
    if not include_expired:
        stmt = stmt.where(UserStrike.status == StrikeStatus.ACTIVE)

    now = utcnow()
    with Session(engine) as session:
        strikes = session.scalars(stmt).all()
        items = []
        next_expiry: datetime | None = None
        for strike in strikes:
            data = _strike_to_dict(strike, include_internal_notes=include_internal_notes)
            data["issued_by_user"] = _user_ref(strike.issued_by_user)
            items.append(data)

            expires_at = as_utc(strike.expires_at)
            if strike.status == StrikeStatus.ACTIVE and expires_at > now:
                if next_expiry is None or expires_at < next_expiry:
                    next_expiry = expires_at

    return {
        "strikes": items,
        "total_active_points": get_active_strike_points(engine, user_id),
        "next_expiry": _iso(next_expiry),
    }


def _paging_data(items: list, total_items: int, limit: int | None, page: int | None) -> dict[str, Any]:
    current_page = page or 1
    page_size = limit or total_items
    total_pages = math.ceil(total_items / page_size) if page_size and total_items else 1
    return {
        "items": items,
        "total_items": total_items,
        "current_page": current_page,
        "page_size": page_size,
        "total_pages": total_pages,
    }


def get_strikes_for_mod(
    engine: Engine,
    *,
    limit: int = 20,
    page: int = 1,
    user_id: int | None = None,
    username: str | None = None,
    status: StrikeStatus | None = None,
    reason: StrikeReason | None = None,
) -> dict[str, Any]:
    """Paginated strike list for the moderator dashboard."""
    take = limit if limit > 0 else None
    skip = (page - 1) * take if page and take else 0

    with Session(engine) as session:
        target_user_id = user_id
        if username and not user_id:
            target_user_id = session.scalar(
                select(User.id).where(func.lower(User.username) == username.lower())
            )
            if target_user_id is None:
                return _paging_data([], 0, take, page)

        filters = []
        if target_user_id:
            filters.append(UserStrike.user_id == target_user_id)
        if status:
            filters.append(UserStrike.status == status)
        if reason:
            filters.append(UserStrike.reason == reason)

        stmt = (
            select(UserStrike)
            .options(joinedload(UserStrike.user), joinedload(UserStrike.issued_by_user))
            .where(*filters)
            .order_by(UserStrike.created_at.desc(), UserStrike.id.desc())
            .offset(skip)
        )
        if take:
            stmt = stmt.limit(take)

        rows = session.scalars(stmt).all()
        total = session.scalar(select(func.count(UserStrike.id)).where(*filters)) or 0

        items = []
        for strike in rows:
            data = _strike_to_dict(strike, include_internal_notes=True)
            data["user"] = _user_ref(strike.user)
            data["issued_by_user"] = _user_ref(strike.issued_by_user)
            items.append(data)

    return _paging_data(items, total, take, page)


# ---------------------------------------------------------------------------
# Escalation engine
# ---------------------------------------------------------------------------
def evaluate_strike_escalation(
    engine: Engine,
    redis_client: redis.Redis | None,
    user_id: int,
) -> tuple[int, EscalationAction]:
    """Apply the mute/flag state implied by the user's active points.

    Returns ``(total_points, action)``.
    """
    total_points = get_active_strike_points(engine, user_id)

    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            return total_points, "none"

        meta = dict(user.meta or {})
        flagged = bool(meta.get("strikeFlaggedForReview"))
        notification: tuple[str, dict] | None = None

        if total_points >= STRIKE_FLAG_THRESHOLD:
            already_flagged = user.muted and flagged
            user.muted = True
            user.mute_expires_at = None
            user.meta = {
                **meta,
                "strikeFlaggedForReview": True,
                "strikeFlaggedAt": utcnow().isoformat(),
            }
            session.commit()
            if not already_flagged:
                notification = ("strike-escalation-muted", {"muteDays": "indefinite"})
            action: EscalationAction = "muted-and-flagged"

        elif total_points >= STRIKE_MUTE_THRESHOLD:
            already_timed_muted = user.muted and user.mute_expires_at is not None
            user.muted = True
            user.mute_expires_at = utcnow() + timedelta(days=STRIKE_MUTE_DAYS)
            if flagged:
                user.meta = {**meta, "strikeFlaggedForReview": False}
            session.commit()
            if not already_timed_muted:
                notification = ("strike-escalation-muted", {"muteDays": STRIKE_MUTE_DAYS})
            action = "muted"

        elif user.muted and (user.mute_expires_at is not None or flagged):
            user.muted = False
            user.mute_expires_at = None
            if flagged:
                user.meta = {**meta, "strikeFlaggedForReview": False}
            session.commit()
            notification = ("strike-de-escalation-unmuted", {})
            action = "unmuted"

        else:
            return total_points, "none"

    if notification is not None:
        notification_type, details = notification
        create_notification(
            engine,
            user_id=user_id,
            type=notification_type,
            category=NotificationCategory.SYSTEM,
            key=f"{notification_type}:{user_id}:{_now_ms()}",
            details=details,
        )

    if action == "unmuted":
        refresh_session(redis_client, user_id)
    else:
        invalidate_session(redis_client, user_id)

    logger.info("Strike escalation for user %s: %s (%d points)", user_id, action, total_points)
    return total_points, action


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
def create_strike(
    engine: Engine,
    redis_client: redis.Redis | None,
    *,
    user_id: int,
    reason: StrikeReason,
    description: str,
    points: int = 1,
    internal_notes: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    report_id: int | None = None,
    expires_in_days: int = DEFAULT_STRIKE_EXPIRY_DAYS,
    issued_by: int | None = None,
) -> dict[str, Any] | None:
    """Issue a strike and re-evaluate escalation.

    Raises :class:`NotFoundError` for an unknown user.  Returns ``None``
    when an automatic strike is rate limited.
    """
    with Session(engine) as session:
        if session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")

    if reason != StrikeReason.MANUAL_MOD_ACTION and should_rate_limit_strike(engine, user_id):
        logger.info("Rate limited automatic strike for user %s (%s)", user_id, reason)
        return None

    now = utcnow()
    with Session(engine, expire_on_commit=False) as session:
        strike = UserStrike(
            user_id=user_id,
            reason=reason,
            status=StrikeStatus.ACTIVE,
            points=points,
            description=description,
            internal_notes=internal_notes,
            entity_type=entity_type,
            entity_id=entity_id,
            report_id=report_id,
            created_at=now,
            expires_at=now + timedelta(days=expires_in_days),
            issued_by=issued_by,
        )
        session.add(strike)
        session.commit()
        result = _strike_to_dict(strike, include_internal_notes=True)

    evaluate_strike_escalation(engine, redis_client, user_id)

    create_notification(
        engine,
        user_id=user_id,
        type="strike-issued",
        category=NotificationCategory.SYSTEM,
        key=f"strike-issued:{user_id}:{result['id']}",
        details={"description": description, "points": points},
    )
    return result


def void_strike(
    engine: Engine,
    redis_client: redis.Redis | None,
    *,
    strike_id: int,
    void_reason: str,
    voided_by: int,
) -> dict[str, Any]:
    """Void an active strike.

    The status guard lives in the UPDATE itself, so two moderators voiding
    the same strike cannot both succeed.
    """
    with Session(engine, expire_on_commit=False) as session:
        result = session.execute(
            update(UserStrike)
            .where(UserStrike.id == strike_id, UserStrike.status == StrikeStatus.ACTIVE)
            .values(
                status=StrikeStatus.VOIDED,
                voided_at=utcnow(),
                voided_by=voided_by,
                void_reason=void_reason,
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()

        strike = session.get(UserStrike, strike_id, populate_existing=True)
        if result.rowcount == 0:
            if strike is None:
                raise NotFoundError("Strike not found")
            raise BadRequestError(
                f'Cannot void a strike with status "{strike.status}". '
                "Only active strikes can be voided."
            )
        data = _strike_to_dict(strike, include_internal_notes=True)

    create_notification(
        engine,
        user_id=data["user_id"],
        type="strike-voided",
        category=NotificationCategory.SYSTEM,
        key=f"strike-voided:{data['user_id']}:{strike_id}",
        details={"voidReason": void_reason},
    )

    try:
        evaluate_strike_escalation(engine, redis_client, data["user_id"])
    except Exception:
        logger.exception(
            "Escalation re-evaluation failed after voiding strike %s", strike_id,
            extra={"user_id": data["user_id"]},
        )
    return data


# ---------------------------------------------------------------------------
# Job entry points
# ---------------------------------------------------------------------------
def expire_strikes(engine: Engine, redis_client: redis.Redis | None) -> dict[str, int]:
    """Mark strikes past their expiry as Expired and de-escalate affected users."""
    now = utcnow()
    with Session(engine) as session:
        rows = session.execute(
            select(UserStrike.id, UserStrike.user_id).where(
                UserStrike.status == StrikeStatus.ACTIVE,
                UserStrike.expires_at <= now,
            )
        ).all()
        if not rows:
            return {"expired_count": 0}

        session.execute(
            update(UserStrike)
            .where(UserStrike.id.in_([r.id for r in rows]))
            .values(status=StrikeStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        session.commit()

    user_ids = list(dict.fromkeys(r.user_id for r in rows))
    for user_id in user_ids:
        create_notification(
            engine,
            user_id=user_id,
            type="strike-expired",
            category=NotificationCategory.SYSTEM,
            key=f"strike-expired:{user_id}:{_now_ms()}",
        )
        try:
            evaluate_strike_escalation(engine, redis_client, user_id)
        except Exception:
            logger.exception(
                "Escalation re-evaluation failed after expiry", extra={"user_id": user_id}
            )

    logger.info("Expired %d strikes across %d users", len(rows), len(user_ids))
    return {"expired_count": len(rows)}


def process_timed_unmutes(engine: Engine, redis_client: redis.Redis | None) -> dict[str, int]:
    """Lift timed mutes whose expiry has passed, unless points still warrant one."""
    with Session(engine) as session:
        user_ids = session.scalars(
            select(User.id).where(
                User.muted.is_(True),
                User.mute_expires_at.is_not(None),
                User.mute_expires_at <= utcnow(),
            )
        ).all()

    unmuted = 0
    for user_id in user_ids:
        try:
            _, action = evaluate_strike_escalation(engine, redis_client, user_id)
            if action == "none":
                with Session(engine) as session:
                    user = session.get(User, user_id)
                    user.muted = False
                    user.mute_expires_at = None
                    session.commit()
                refresh_session(redis_client, user_id)
                unmuted += 1
            elif action == "unmuted":
                unmuted += 1
        except Exception:
            logger.exception("Timed unmute failed", extra={"user_id": user_id})

    return {"unmuted_count": unmuted}
