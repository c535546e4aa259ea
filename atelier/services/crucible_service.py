"""
atelier.services.crucible_service — Crucible Lifecycle, Judging & Finalization
===============================================================================

Crucibles are time-boxed image contests judged pairwise by the community:

* :func:`create_crucible` — open a new contest.
* :func:`submit_entry` — enter an image, paying the entry fee.
* :func:`cancel_crucible` — stop a contest and refund its entry fees.
* :func:`get_judging_pair` — next pair for a judge (see
  :mod:`atelier.engine.matchmaking`).
* :func:`submit_vote` — record one pairwise decision and update ratings.
* :func:`finalize_crucible` — freeze ratings into final positions and pay
  out the Buzz prize pool.
* :func:`get_user_judge_stats` — a judge's activity and influence.

Live ratings are kept in Redis by :class:`~atelier.services.elo_store.EloStore`;
judge bookkeeping (voted pairs, judges, per-user vote totals) is plain
Redis sets and hashes.  Buzz moves through
:mod:`atelier.services.buzz_service`.
"""

from __future__ import annotations

import logging
import math
import random
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError
from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from atelier.constants import (
    CENTRAL_BANK_ACCOUNT_ID,
    CRUCIBLE_CANCEL_TTL_SECONDS,
    CRUCIBLE_DEFAULT_ELO,
    CRUCIBLE_ENTRY_LOCK_MS,
    CRUCIBLE_FINAL_TTL_SECONDS,
    CRUCIBLE_REDIS_TTL_SECONDS,
    JUDGING_MAX_SAMPLE_ATTEMPTS,
    JUDGING_SAMPLE_SIZE,
    RedisKeys,
    as_utc,
    ordinal,
    round_half_up,
    utcnow,
)
from atelier.database.models import (
    BuzzTransaction,
    Crucible,
    CrucibleEntry,
    CrucibleStatus,
    Image,
    NotificationCategory,
    User,
)
from atelier.engine.matchmaking import (
    JudgingCandidate,
    pair_key,
    randomize_sides,
    select_pair,
)
from atelier.engine.standings import (
    RankableEntry,
    best_result_per_user,
    parse_prize_positions,
    rank_entries,
)
from atelier.errors import BadRequestError, NotFoundError
from atelier.services import buzz_service
from atelier.services.notification_service import create_notification

if TYPE_CHECKING:
    import redis

    from atelier.services.elo_store import EloStore

logger = logging.getLogger(__name__)

_FETCH_BATCH_SIZE = 500


# ---------------------------------------------------------------------------
# Judge bookkeeping
# ---------------------------------------------------------------------------
def mark_pair_voted(
    redis_client: redis.Redis, crucible_id: int, user_id: int, entry_a: int, entry_b: int
) -> bool:
    """Record the pair for this judge.  ``False`` if it was already recorded."""
    key = RedisKeys.crucible_voted_pairs(crucible_id, user_id)
    added = redis_client.sadd(key, pair_key(entry_a, entry_b))
    redis_client.expire(key, CRUCIBLE_REDIS_TTL_SECONDS)
    return bool(added)


def are_pairs_voted(
    redis_client: redis.Redis, crucible_id: int, user_id: int, keys: list[str]
) -> list[bool]:
    voted_key = RedisKeys.crucible_voted_pairs(crucible_id, user_id)
    return [bool(redis_client.sismember(voted_key, k)) for k in keys]


def add_judge(redis_client: redis.Redis, crucible_id: int, user_id: int) -> None:
    key = RedisKeys.crucible_judges(crucible_id)
    redis_client.sadd(key, str(user_id))
    redis_client.expire(key, CRUCIBLE_REDIS_TTL_SECONDS)


def get_judges_count(redis_client: redis.Redis, crucible_id: int) -> int:
    return int(redis_client.scard(RedisKeys.crucible_judges(crucible_id)))


def increment_user_vote_count(redis_client: redis.Redis, user_id: int) -> int:
    return int(redis_client.hincrby(RedisKeys.CRUCIBLE_USER_VOTES, str(user_id), 1))


def get_all_user_vote_counts(redis_client: redis.Redis) -> list[tuple[int, int]]:
    """``[(user_id, votes), ...]`` sorted by votes, most active first."""
    counts = []
    for user_id, votes in redis_client.hgetall(RedisKeys.CRUCIBLE_USER_VOTES).items():
        try:
            counts.append((int(user_id), int(votes)))
        except ValueError:
            continue
    counts.sort(key=lambda item: item[1], reverse=True)
    return counts


def get_user_judge_stats(redis_client: redis.Redis, user_id: int) -> dict[str, int]:
    """Total pairs rated, ranking percentile and influence score.

    Influence grows with the square root of votes: 100 votes → 100,
    400 votes → 200.
    """
    raw = redis_client.hget(RedisKeys.CRUCIBLE_USER_VOTES, str(user_id))
    votes = int(raw) if raw else 0
    all_counts = get_all_user_vote_counts(redis_client)

    percentile = 0
    if all_counts and votes > 0:
        ranked_ids = [uid for uid, _ in all_counts]
        if user_id in ranked_ids:
            rank = ranked_ids.index(user_id)
            percentile = round_half_up((len(all_counts) - rank) / len(all_counts) * 100)

    return {
        "total_pairs_rated": votes,
        "judge_ranking_percentile": percentile,
        "influence_score": round_half_up(math.sqrt(votes) * 10),
    }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _load_open_crucible(session: Session, crucible_id: int) -> Crucible:
    crucible = session.get(Crucible, crucible_id)
    if crucible is None:
        raise NotFoundError("Crucible not found")
    if crucible.status != CrucibleStatus.ACTIVE:
        raise BadRequestError("This crucible is not currently active for judging")
    end_at = as_utc(crucible.end_at)
    if end_at is not None and utcnow() > end_at:
        raise BadRequestError("This crucible has ended")
    return crucible


def _crucible_dict(crucible: Crucible) -> dict[str, Any]:
    return {
        "id": crucible.id,
        "user_id": crucible.user_id,
        "name": crucible.name,
        "description": crucible.description,
        "status": str(crucible.status),
        "nsfw_level": crucible.nsfw_level,
        "entry_fee": crucible.entry_fee,
        "entry_limit": crucible.entry_limit,
        "max_total_entries": crucible.max_total_entries,
        "prize_positions": crucible.prize_positions or [],
        "start_at": crucible.start_at.isoformat() if crucible.start_at else None,
        "end_at": crucible.end_at.isoformat() if crucible.end_at else None,
    }


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
def create_crucible(
    engine: Engine,
    *,
    user_id: int,
    name: str,
    duration_hours: int,
    description: str | None = None,
    nsfw_level: int = 1,
    entry_fee: int = 0,
    entry_limit: int = 1,
    max_total_entries: int | None = None,
    prize_positions: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Open a crucible that accepts entries and votes for *duration_hours*."""
    positions = parse_prize_positions(prize_positions or [])
    if len(positions) != len(prize_positions or []):
        raise BadRequestError("Prize positions must be {position, percentage} objects")
    if len({p.position for p in positions}) != len(positions):
        raise BadRequestError("Prize positions must be unique")
    if sum(p.percentage for p in positions) > 100:
        raise BadRequestError("Prize percentages cannot add up to more than 100")

    now = utcnow()
    with Session(engine) as session:
        crucible = Crucible(
            user_id=user_id,
            name=name,
            description=description,
            status=CrucibleStatus.ACTIVE,
            nsfw_level=nsfw_level,
            entry_fee=entry_fee,
            entry_limit=entry_limit,
            max_total_entries=max_total_entries,
            prize_positions=[
                {"position": p.position, "percentage": p.percentage} for p in positions
            ],
            start_at=now,
            end_at=now + timedelta(hours=duration_hours),
        )
        session.add(crucible)
        session.commit()
        logger.info("User %s created crucible %s (%r)", user_id, crucible.id, name)
        return _crucible_dict(crucible)


def _acquire_entry_lock(redis_client: redis.Redis, crucible_id: int, user_id: int) -> bool:
    key = RedisKeys.crucible_entry_lock(crucible_id, user_id)
    try:
        return bool(redis_client.set(
            key, f"{utcnow().timestamp()}-{random.random()}", px=CRUCIBLE_ENTRY_LOCK_MS, nx=True
        ))
    except RedisError:
        # Fail open; the unique (crucible, image) constraint still holds
        logger.warning("Entry lock unavailable for crucible %s, user %s", crucible_id, user_id)
        return True


def _release_entry_lock(redis_client: redis.Redis, crucible_id: int, user_id: int) -> None:
    try:
        redis_client.delete(RedisKeys.crucible_entry_lock(crucible_id, user_id))
    except RedisError:
        logger.warning("Failed to release entry lock for crucible %s, user %s", crucible_id, user_id)


def _check_entry_allowed(session: Session, crucible: Crucible, image: Image | None, user_id: int) -> None:
    if crucible.status != CrucibleStatus.ACTIVE:
        raise BadRequestError("This crucible is not accepting entries")
    end_at = as_utc(crucible.end_at)
    if end_at is not None and utcnow() > end_at:
        raise BadRequestError("This crucible has ended")

    if crucible.max_total_entries:
        total = session.scalar(
            select(func.count(CrucibleEntry.id)).where(CrucibleEntry.crucible_id == crucible.id)
        )
        if total >= crucible.max_total_entries:
            raise BadRequestError("This crucible has reached its maximum number of entries")

    own = session.scalar(
        select(func.count(CrucibleEntry.id)).where(
            CrucibleEntry.crucible_id == crucible.id,
            CrucibleEntry.user_id == user_id,
        )
    )
    if own >= crucible.entry_limit:
        noun = "entry" if crucible.entry_limit == 1 else "entries"
        raise BadRequestError(
            f"You have reached the maximum of {crucible.entry_limit} {noun} for this crucible"
        )

    if image is None:
        raise NotFoundError("Image not found")
    if image.user_id != user_id:
        raise BadRequestError("You can only submit your own images")
    if not (image.nsfw_level or 0) & (crucible.nsfw_level or 0):
        raise BadRequestError(
            "This image does not meet the content level requirements for this crucible"
        )

    duplicate = session.scalar(
        select(CrucibleEntry.id).where(
            CrucibleEntry.crucible_id == crucible.id,
            CrucibleEntry.image_id == image.id,
        )
    )
    if duplicate is not None:
        raise BadRequestError("This image has already been submitted to this crucible")


def submit_entry(
    engine: Engine,
    redis_client: redis.Redis,
    *,
    crucible_id: int,
    image_id: int,
    user_id: int,
) -> dict[str, Any]:
    """Enter *image_id* into a crucible on behalf of *user_id*.

    The entry fee is charged in the same database transaction that creates
    the entry, so a failed insert never keeps the user's Buzz.  A short
    Redis lock per (crucible, user) serializes concurrent submissions
    against the entry limit.
    """
    if not _acquire_entry_lock(redis_client, crucible_id, user_id):
        raise BadRequestError("Entry submission in progress. Please wait a moment and try again.")

    try:
        with Session(engine) as session:
            crucible = session.get(Crucible, crucible_id)
            if crucible is None:
                raise NotFoundError("Crucible not found")
            image = session.get(Image, image_id)
            _check_entry_allowed(session, crucible, image, user_id)

            external_id = None
            if crucible.entry_fee > 0:
                external_id = f"crucible-entry-{crucible_id}-{user_id}-{image_id}"
                buzz_service.charge(
                    session,
                    account_id=user_id,
                    amount=crucible.entry_fee,
                    external_id=external_id,
                    description="Crucible entry fee",
                    details={"entityId": crucible_id, "entityType": "Crucible"},
                    purpose="enter this crucible",
                )

            entry = CrucibleEntry(
                crucible_id=crucible_id,
                user_id=user_id,
                image_id=image_id,
                score=CRUCIBLE_DEFAULT_ELO,
                buzz_transaction_id=external_id,
            )
            session.add(entry)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise BadRequestError("This image has already been submitted to this crucible")

            creator_id, crucible_name = crucible.user_id, crucible.name
            username = session.scalar(select(User.username).where(User.id == user_id))
            result = {
                "id": entry.id,
                "crucible_id": crucible_id,
                "user_id": user_id,
                "image_id": image_id,
                "score": entry.score,
                "position": entry.position,
                "buzz_transaction_id": external_id,
            }
    finally:
        _release_entry_lock(redis_client, crucible_id, user_id)

    logger.info("User %s entered image %s into crucible %s", user_id, image_id, crucible_id)
    if creator_id != user_id:
        create_notification(
            engine,
            user_id=creator_id,
            type="crucible-entry-submitted",
            category=NotificationCategory.CRUCIBLE,
            key=f"crucible-entry-submitted:{crucible_id}:{result['id']}",
            details={
                "crucibleId": crucible_id,
                "crucibleName": crucible_name,
                "entrantUsername": username or "Anonymous",
            },
        )
    return result


def cancel_crucible(engine: Engine, elo_store: EloStore, crucible_id: int) -> dict[str, Any]:
    """Cancel a crucible and pay every entry fee back.

    Each refund is committed on its own; one that fails is reported in
    ``failed_refunds`` and the rest still go through.  Refunds are keyed
    by the entry's fee transaction, so repeating a refund pays nothing.
    """
    with Session(engine) as session:
        crucible = session.get(Crucible, crucible_id)
        if crucible is None:
            raise NotFoundError("Crucible not found")
        if crucible.status == CrucibleStatus.COMPLETED:
            raise BadRequestError("Cannot cancel a completed crucible")
        if crucible.status == CrucibleStatus.CANCELLED:
            raise BadRequestError("This crucible has already been cancelled")

        paid_entries = session.execute(
            select(CrucibleEntry.id, CrucibleEntry.user_id, CrucibleEntry.buzz_transaction_id)
            .where(
                CrucibleEntry.crucible_id == crucible_id,
                CrucibleEntry.buzz_transaction_id.is_not(None),
            )
            .order_by(CrucibleEntry.id)
        ).all()

        refunded_entries = 0
        total_refunded = 0
        failed_refunds = []
        for row in paid_entries:
            try:
                amount = buzz_service.refund(
                    session,
                    row.buzz_transaction_id,
                    description="Crucible entry fee refund - crucible cancelled",
                    details={
                        "entityId": crucible_id,
                        "entityType": "Crucible",
                        "reason": "cancellation",
                    },
                )
                session.commit()
            except Exception as exc:
                session.rollback()
                logger.exception(
                    "Failed to refund crucible entry",
                    extra={"crucible_id": crucible_id, "entry_id": row.id},
                )
                failed_refunds.append({"entry_id": row.id, "user_id": row.user_id, "error": str(exc)})
                continue
            if amount:
                refunded_entries += 1
                total_refunded += amount

        crucible = session.get(Crucible, crucible_id)
        crucible.status = CrucibleStatus.CANCELLED
        session.commit()

    elo_store.set_ttl(crucible_id, CRUCIBLE_CANCEL_TTL_SECONDS)
    logger.info(
        "Cancelled crucible %s: %d entries refunded, %d Buzz total, %d failed",
        crucible_id, refunded_entries, total_refunded, len(failed_refunds),
    )
    return {
        "crucible_id": crucible_id,
        "refunded_entries": refunded_entries,
        "total_refunded": total_refunded,
        "failed_refunds": failed_refunds,
    }


# ---------------------------------------------------------------------------
# Judging pairs
# ---------------------------------------------------------------------------
def _fetch_entry_sample(
    session: Session,
    crucible_id: int,
    user_id: int,
    sample_size: int,
    exclude_entry_ids: list[int] | None,
) -> list[JudgingCandidate]:
    stmt = (
        select(CrucibleEntry, Image, User)
        .join(Image, Image.id == CrucibleEntry.image_id)
        .join(User, User.id == CrucibleEntry.user_id)
        .where(
            CrucibleEntry.crucible_id == crucible_id,
            CrucibleEntry.user_id != user_id,
        )
        .order_by(func.random())
        .limit(sample_size)
    )
    if exclude_entry_ids:
        stmt = stmt.where(CrucibleEntry.id.not_in(exclude_entry_ids))

    candidates = []
    for entry, image, user in session.execute(stmt).all():
        candidates.append(JudgingCandidate(
            id=entry.id,
            user_id=entry.user_id,
            image_id=entry.image_id,
            score=entry.score,
            image={
                "id": image.id,
                "url": image.url,
                "width": image.width,
                "height": image.height,
                "nsfw_level": image.nsfw_level,
            },
            user={
                "id": user.id,
                "username": user.username,
                "deleted_at": user.deleted_at.isoformat() if user.deleted_at else None,
                "image": user.image,
            },
        ))
    return candidates


def get_judging_pair(
    engine: Engine,
    redis_client: redis.Redis,
    elo_store: EloStore,
    *,
    crucible_id: int,
    user_id: int,
    exclude_entry_ids: list[int] | None = None,
    rng: random.Random | None = None,
) -> dict[str, Any] | None:
    """Return ``{"left": ..., "right": ...}`` or ``None`` when no pair is left.

    Entries are sampled from the database (up to three attempts) rather
    than loaded in full, and the judge's own entries are never offered.
    """
    rng = rng or random.Random()
    with Session(engine) as session:
        _load_open_crucible(session, crucible_id)
        redis_elos = elo_store.get_all_elos(crucible_id)

        pair = None
        for attempt in range(JUDGING_MAX_SAMPLE_ATTEMPTS):
            sample = _fetch_entry_sample(
                session, crucible_id, user_id, JUDGING_SAMPLE_SIZE, exclude_entry_ids
            )
            if len(sample) < 2:
                return None

            for candidate in sample:
                candidate.score = redis_elos.get(candidate.id, candidate.score)

            pair = select_pair(
                sample,
                lambda keys: are_pairs_voted(redis_client, crucible_id, user_id, keys),
                rng,
            )
            if pair is not None:
                break
            logger.debug(
                "Attempt %d: no unvoted pair in sample of %d for crucible %s",
                attempt + 1, len(sample), crucible_id,
            )

    if pair is None:
        return None
    sides = randomize_sides(*pair, rng=rng)
    return {"left": sides["left"].to_dict(), "right": sides["right"].to_dict()}


# ---------------------------------------------------------------------------
# Voting
# ---------------------------------------------------------------------------
def submit_vote(
    engine: Engine,
    redis_client: redis.Redis,
    elo_store: EloStore,
    *,
    crucible_id: int,
    winner_entry_id: int,
    loser_entry_id: int,
    user_id: int,
) -> dict[str, int]:
    """Record a judge's pick and return the updated ratings."""
    if winner_entry_id == loser_entry_id:
        raise BadRequestError("Winner and loser must be different entries")

    with Session(engine) as session:
        _load_open_crucible(session, crucible_id)
        winner = session.get(CrucibleEntry, winner_entry_id)
        loser = session.get(CrucibleEntry, loser_entry_id)

        if winner is None:
            raise NotFoundError("Winner entry not found")
        if loser is None:
            raise NotFoundError("Loser entry not found")
        if winner.crucible_id != crucible_id:
            raise BadRequestError("Winner entry does not belong to this crucible")
        if loser.crucible_id != crucible_id:
            raise BadRequestError("Loser entry does not belong to this crucible")
        if user_id in (winner.user_id, loser.user_id):
            raise BadRequestError("You cannot vote on your own entries")

    if not mark_pair_voted(redis_client, crucible_id, user_id, winner_entry_id, loser_entry_id):
        raise BadRequestError(
            "You have already voted on this pair. Please wait for the next pair to load."
        )

    winner_elo, loser_elo = elo_store.process_vote(crucible_id, winner_entry_id, loser_entry_id)

    elo_store.increment_vote_count(crucible_id, winner_entry_id)
    elo_store.increment_vote_count(crucible_id, loser_entry_id)
    add_judge(redis_client, crucible_id, user_id)
    increment_user_vote_count(redis_client, user_id)

    return {
        "winner_elo": winner_elo,
        "loser_elo": loser_elo,
        "winner_entry_id": winner_entry_id,
        "loser_entry_id": loser_entry_id,
    }


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------
def _create_prize_transactions(session: Session, crucible_id: int, winners: list) -> int:
    """Insert prize payouts, skipping external ids that already exist."""
    if not winners:
        return 0
    external_ids = [
        f"crucible-prize-{crucible_id}-{w.entry_id}-{w.position}" for w in winners
    ]
    existing = set(session.scalars(
        select(BuzzTransaction.external_transaction_id)
        .where(BuzzTransaction.external_transaction_id.in_(external_ids))
    ).all())

    created = 0
    for winner, external_id in zip(winners, external_ids):
        if external_id in existing:
            continue
        session.add(BuzzTransaction(
            from_account_id=CENTRAL_BANK_ACCOUNT_ID,
            to_account_id=winner.user_id,
            account_type="yellow",
            amount=winner.prize_amount,
            type="Reward",
            description=f"Crucible prize - {ordinal(winner.position)} place",
            details={
                "entityId": crucible_id,
                "entityType": "Crucible",
                "position": winner.position,
            },
            external_transaction_id=external_id,
        ))
        created += 1
    return created


def finalize_crucible(
    engine: Engine,
    elo_store: EloStore,
    crucible_id: int,
) -> dict[str, Any]:
    """Copy live ratings to the database, rank entries and pay prizes."""
    with Session(engine) as session:
        crucible = session.get(Crucible, crucible_id)
        if crucible is None:
            raise NotFoundError("Crucible not found")
        if crucible.status == CrucibleStatus.COMPLETED:
            raise BadRequestError("This crucible has already been finalized")
        if crucible.status == CrucibleStatus.CANCELLED:
            raise BadRequestError("Cannot finalize a cancelled crucible")

        creator_id = crucible.user_id
        name = crucible.name
        entry_count = session.scalar(
            select(func.count(CrucibleEntry.id)).where(CrucibleEntry.crucible_id == crucible_id)
        ) or 0
        total_prize_pool = (crucible.entry_fee or 0) * entry_count
        prize_positions = parse_prize_positions(crucible.prize_positions)

        if entry_count == 0:
            logger.info("Crucible %s has no entries, finalizing without prizes", crucible_id)
            crucible.status = CrucibleStatus.COMPLETED
            session.commit()
            elo_store.set_ttl(crucible_id, CRUCIBLE_FINAL_TTL_SECONDS)
            create_notification(
                engine,
                user_id=creator_id,
                type="crucible-ended",
                category=NotificationCategory.CRUCIBLE,
                key=f"crucible-ended:{crucible_id}",
                details={
                    "crucibleId": crucible_id,
                    "crucibleName": name,
                    "totalEntries": 0,
                    "prizePool": 0,
                },
            )
            return {
                "crucible_id": crucible_id,
                "total_prize_pool": 0,
                "final_entries": [],
                "total_prizes_distributed": 0,
            }

        redis_elos = elo_store.get_all_elos(crucible_id)
        redis_votes = elo_store.get_all_vote_counts(crucible_id)

        rankable: list[RankableEntry] = []
        last_id = 0
        while True:
            batch = session.execute(
                select(
                    CrucibleEntry.id,
                    CrucibleEntry.user_id,
                    CrucibleEntry.score,
                    CrucibleEntry.created_at,
                )
                .where(CrucibleEntry.crucible_id == crucible_id, CrucibleEntry.id > last_id)
                .order_by(CrucibleEntry.id)
                .limit(_FETCH_BATCH_SIZE)
            ).all()
            if not batch:
                break
            for row in batch:
                rankable.append(RankableEntry(
                    entry_id=row.id,
                    user_id=row.user_id,
                    final_score=redis_elos.get(row.id, row.score),
                    vote_count=redis_votes.get(row.id, 0),
                    created_at=as_utc(row.created_at),
                ))
            last_id = batch[-1].id

        finalized = rank_entries(rankable, prize_positions, total_prize_pool)

        for entry in finalized:
            session.execute(
                update(CrucibleEntry)
                .where(CrucibleEntry.id == entry.entry_id)
                .values(
                    score=entry.final_score,
                    position=entry.position,
                    vote_count=entry.vote_count,
                )
                .execution_options(synchronize_session=False)
            )
        crucible.status = CrucibleStatus.COMPLETED
        session.commit()

        winners = [e for e in finalized if e.prize_amount > 0]
        created = _create_prize_transactions(session, crucible_id, winners)
        session.commit()
        if winners:
            logger.info(
                "Distributed prizes for crucible %s: %d winners, %d transactions",
                crucible_id, len(winners), created,
            )

    elo_store.set_ttl(crucible_id, CRUCIBLE_FINAL_TTL_SECONDS)
    total_distributed = sum(e.prize_amount for e in finalized)
    logger.info(
        "Finalized crucible %s: %d entries, %d Buzz in prizes",
        crucible_id, len(finalized), total_distributed,
    )

    create_notification(
        engine,
        user_id=creator_id,
        type="crucible-ended",
        category=NotificationCategory.CRUCIBLE,
        key=f"crucible-ended:{crucible_id}",
        details={
            "crucibleId": crucible_id,
            "crucibleName": name,
            "totalEntries": len(finalized),
            "prizePool": total_prize_pool,
        },
    )
    for participant_id, best in best_result_per_user(finalized).items():
        if participant_id == creator_id:
            continue
        create_notification(
            engine,
            user_id=participant_id,
            type="crucible-won",
            category=NotificationCategory.CRUCIBLE,
            key=f"crucible-won:{crucible_id}:{participant_id}",
            details={
                "crucibleId": crucible_id,
                "crucibleName": name,
                "position": best.position,
                "prizeAmount": best.prize_amount,
            },
        )

    return {
        "crucible_id": crucible_id,
        "total_prize_pool": total_prize_pool,
        "final_entries": [e.to_dict() for e in finalized],
        "total_prizes_distributed": total_distributed,
    }


def get_crucibles_for_finalization(engine: Engine) -> list[int]:
    """Active crucibles whose end time has passed."""
    with Session(engine) as session:
        return list(session.scalars(
            select(Crucible.id).where(
                Crucible.status == CrucibleStatus.ACTIVE,
                Crucible.end_at < utcnow(),
            )
        ).all())


def finalize_ended_crucibles(engine: Engine, elo_store: EloStore) -> dict[str, Any]:
    """Job body: finalize every ended crucible, one failure never stops the rest."""
    finalized, failed = [], []
    for crucible_id in get_crucibles_for_finalization(engine):
        try:
            finalize_crucible(engine, elo_store, crucible_id)
            finalized.append(crucible_id)
        except Exception:
            logger.exception("Failed to finalize crucible", extra={"crucible_id": crucible_id})
            failed.append(crucible_id)
    return {"finalized": finalized, "failed": failed}
