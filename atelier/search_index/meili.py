"""
atelier.search_index.meili — Meilisearch Helpers
=================================================

Thin wrappers over the official ``meilisearch`` client used by every
index processor: lazy index creation, chunked document pushes, deletes,
zero-downtime index swaps and idempotent settings sync.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from typing import Any

import meilisearch
from meilisearch.errors import MeilisearchApiError
from meilisearch.index import Index

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_BATCH_SIZE = 1000


def create_search_client() -> meilisearch.Client | None:
    """Build a client from ``MEILI_HOST`` / ``MEILI_MASTER_KEY``.

    Returns ``None`` when search is not configured so callers can skip
    indexing in local setups.
    """
    host = os.getenv("MEILI_HOST")
    if not host:
        logger.warning("MEILI_HOST is not set; search indexing disabled")
        return None
    return meilisearch.Client(host, os.getenv("MEILI_MASTER_KEY"), timeout=5)


def get_or_create_index(
    client: meilisearch.Client,
    index_name: str,
    primary_key: str = "id",
) -> Index:
    try:
        return client.get_index(index_name)
    except MeilisearchApiError as exc:
        if getattr(exc, "code", None) != "index_not_found":
            raise
    task = client.create_index(index_name, {"primaryKey": primary_key})
    client.wait_for_task(task.task_uid)
    logger.info("Created search index %s", index_name)
    return client.get_index(index_name)


def update_docs(
    client: meilisearch.Client,
    index_name: str,
    documents: Sequence[dict[str, Any]],
    batch_size: int = DEFAULT_DOCUMENT_BATCH_SIZE,
    primary_key: str = "id",
) -> list[Any]:
    """Push *documents* in chunks; returns the enqueued tasks."""
    if not documents:
        return []
    index = get_or_create_index(client, index_name, primary_key)
    tasks = []
    for start in range(0, len(documents), batch_size):
        chunk = list(documents[start:start + batch_size])
        tasks.append(index.add_documents(chunk, primary_key))
    logger.debug("Pushed %d documents to %s in %d tasks", len(documents), index_name, len(tasks))
    return tasks


def delete_documents(client: meilisearch.Client | None, index_name: str, ids: Sequence[int]) -> Any:
    if client is None or not ids:
        return None
    index = client.index(index_name)
    task = index.delete_documents([str(i) for i in ids])
    logger.info("Removed %d documents from %s", len(ids), index_name)
    return task


def swap_index(client: meilisearch.Client, index_name: str, swap_index_name: str) -> None:
    """Swap *swap_index_name* into *index_name*, then drop the old data."""
    task = client.swap_indexes([{"indexes": [index_name, swap_index_name]}])
    client.wait_for_task(task.task_uid)
    client.delete_index(swap_index_name)
    logger.info("Swapped %s into %s", swap_index_name, index_name)


def sync_settings(
    index: Index,
    *,
    searchable: list[str] | None = None,
    sortable: list[str] | None = None,
    filterable: list[str] | None = None,
    ranking_rules: list[str] | None = None,
) -> list[Any]:
    """Update only the settings that differ from the index's current ones.

    Meilisearch stores sortable and filterable attributes sorted, so those
    are compared sorted; searchable attributes and ranking rules are
    ordered and compared as-is.
    """
    settings = index.get_settings()
    tasks = []

    if searchable is not None and searchable != settings.get("searchableAttributes"):
        tasks.append(index.update_searchable_attributes(searchable))
    if sortable is not None and sorted(sortable) != sorted(settings.get("sortableAttributes") or []):
        tasks.append(index.update_sortable_attributes(sortable))
    if ranking_rules is not None and ranking_rules != settings.get("rankingRules"):
        tasks.append(index.update_ranking_rules(ranking_rules))
    if filterable is not None and sorted(filterable) != sorted(settings.get("filterableAttributes") or []):
        tasks.append(index.update_filterable_attributes(filterable))

    if tasks:
        logger.info("Updated %d settings on %s", len(tasks), index.uid)
    return tasks
