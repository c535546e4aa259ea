"""
atelier.search_index.articles — Articles Search Index
======================================================

Indexes published, searchable articles into the ``articles`` Meilisearch
index.

An article whose cover image has not finished scanning is held back and
re-queued for a later run; one whose cover was blocked is queued for
deletion instead.  Articles without a cover are indexed as-is.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from atelier.constants import as_utc
from atelier.database.models import (
    Article,
    ArticleStatus,
    Availability,
    ImageIngestionStatus,
    TagsOnArticles,
)
from atelier.search_index.base import (
    BatchPlan,
    PullBatch,
    SearchIndexContext,
    SearchIndexProcessor,
)
from atelier.search_index.meili import get_or_create_index, sync_settings, update_docs
from atelier.search_index.queue import SearchIndexUpdateQueueAction

logger = logging.getLogger(__name__)

ARTICLES_SEARCH_INDEX = "articles"
READ_BATCH_SIZE = 1000
MEILISEARCH_DOCUMENT_BATCH_SIZE = 1000

SEARCHABLE_ATTRIBUTES = ["title", "user.username"]
SORTABLE_ATTRIBUTES = [
    "createdAt",
    "stats.viewCount",
    "stats.commentCount",
    "stats.reactionCount",
    "stats.collectedCount",
    "stats.tippedAmount",
]
FILTERABLE_ATTRIBUTES = ["tags.name", "user.username", "nsfwLevel"]
RANKING_RULES = ["sort", "attribute", "words", "proximity", "exactness", "typo"]


def _timestamp_ms(value: datetime | None) -> int | None:
    value = as_utc(value)
    return int(value.timestamp() * 1000) if value else None


def _searchable():
    return (
        Article.status == ArticleStatus.PUBLISHED,
        Article.availability.not_in([Availability.UNSEARCHABLE, Availability.PRIVATE]),
    )


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------
def setup_index(client, index_name: str) -> None:
    index = get_or_create_index(client, index_name, "id")
    sync_settings(
        index,
        searchable=SEARCHABLE_ATTRIBUTES,
        sortable=SORTABLE_ATTRIBUTES,
        filterable=FILTERABLE_ATTRIBUTES,
        ranking_rules=RANKING_RULES,
    )


def prepare_batches(ctx: SearchIndexContext, last_updated_at: datetime | None) -> BatchPlan:
    with Session(ctx.engine) as session:
        stmt = select(func.min(Article.id), func.max(Article.id)).where(*_searchable())
        if last_updated_at is not None:
            stmt = stmt.where(Article.created_at >= last_updated_at)
        start_id, end_id = session.execute(stmt).one()

        update_ids: list[int] = []
        if last_updated_at is not None:
            update_ids = list(session.scalars(
                select(Article.id)
                .where(*_searchable(), Article.updated_at >= last_updated_at)
                .order_by(Article.id)
            ).all())

    return BatchPlan(
        batch_size=READ_BATCH_SIZE,
        start_id=start_id,
        end_id=end_id,
        update_ids=update_ids,
    )


def pull_data(ctx: SearchIndexContext, batch: PullBatch, step: int = 0, prev_data: Any = None) -> list[dict]:
    stmt = (
        select(Article)
        .options(
            selectinload(Article.user),
            selectinload(Article.cover),
            selectinload(Article.stats),
            selectinload(Article.tags).selectinload(TagsOnArticles.tag),
        )
        .where(*_searchable())
        .order_by(Article.id)
    )
    if batch.type == "update":
        stmt = stmt.where(Article.id.in_(batch.ids or []))
    else:
        stmt = stmt.where(Article.id.between(batch.start_id, batch.end_id))

    records = []
    with Session(ctx.engine) as session:
        for article in session.scalars(stmt).all():
            cover = article.cover
            stats = article.stats
            records.append({
                "id": article.id,
                "title": article.title,
                "nsfw_level": article.nsfw_level,
                "created_at": article.created_at,
                "published_at": article.published_at,
                "user": {
                    "id": article.user.id,
                    "username": article.user.username,
                    "image": article.user.image,
                },
                "tags": [{"id": t.tag.id, "name": t.tag.name} for t in article.tags],
                "stats": {
                    "viewCount": stats.view_count if stats else 0,
                    "commentCount": stats.comment_count if stats else 0,
                    "reactionCount": stats.reaction_count if stats else 0,
                    "collectedCount": stats.collected_count if stats else 0,
                    "tippedAmount": stats.tipped_amount if stats else 0,
                },
                "cover": None if cover is None else {
                    "id": cover.id,
                    "url": cover.url,
                    "width": cover.width,
                    "height": cover.height,
                    "hash": cover.hash,
                    "nsfwLevel": cover.nsfw_level,
                    "ingestion": str(cover.ingestion),
                },
            })

    logger.debug("Pulled %d articles (%s)", len(records), batch.type)
    return records


def transform_data(ctx: SearchIndexContext, records: list[dict]) -> list[dict]:
    """Build documents, holding back articles whose cover isn't scanned yet."""
    documents = []
    requeue: list[dict] = []

    for record in records:
        cover = record["cover"]
        if cover is not None and cover["ingestion"] != ImageIngestionStatus.SCANNED:
            action = (
                SearchIndexUpdateQueueAction.DELETE
                if cover["ingestion"] == ImageIngestionStatus.BLOCKED
                else SearchIndexUpdateQueueAction.UPDATE
            )
            requeue.append({"id": record["id"], "action": action})
            continue

        if cover is not None:
            cover = {k: v for k, v in cover.items() if k != "ingestion"}

        documents.append({
            "id": record["id"],
            "title": record["title"],
            "nsfwLevel": record["nsfw_level"],
            "createdAt": _timestamp_ms(record["created_at"]),
            "publishedAt": _timestamp_ms(record["published_at"]),
            "user": record["user"],
            "tags": record["tags"],
            "stats": record["stats"],
            "coverImage": cover,
        })

    if requeue:
        ctx.requeue(ARTICLES_SEARCH_INDEX, requeue)
        logger.info("Held back %d articles with unscanned covers", len(requeue))

    return documents


def push_data(ctx: SearchIndexContext, documents: list[dict]) -> None:
    if ctx.client is None:
        logger.debug("No search client; skipped pushing %d articles", len(documents))
        return
    update_docs(ctx.client, ctx.index_name, documents, MEILISEARCH_DOCUMENT_BATCH_SIZE)


articles_search_index = SearchIndexProcessor(
    index_name=ARTICLES_SEARCH_INDEX,
    setup=setup_index,
    prepare_batches=prepare_batches,
    pull_data=pull_data,
    transform_data=transform_data,
    push_data=push_data,
    worker_count=5,
)
