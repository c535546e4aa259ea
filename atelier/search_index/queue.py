"""
atelier.search_index.queue — Pending Search-Index Updates
==========================================================

Writers that change an indexed entity don't talk to Meilisearch; they
drop its id into a Redis set, one set per index and action::

    search-index:queue:<index>:Update
    search-index:queue:<index>:Delete

Index processors read a *snapshot* of a queue, do their work, then
``commit()`` the snapshot, which removes exactly the ids that were read.
Ids queued while the processor was running stay for the next run.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from atelier.constants import RedisKeys

if TYPE_CHECKING:
    import redis

logger = logging.getLogger(__name__)


class SearchIndexUpdateQueueAction(enum.StrEnum):
    UPDATE = "Update"
    DELETE = "Delete"


@dataclass
class QueueSnapshot:
    """Ids read from a queue plus the callback that removes them."""

    content: list[int]
    _commit: Callable[[], None] = field(default=lambda: None, repr=False)

    def commit(self) -> None:
        self._commit()


def empty_snapshot() -> QueueSnapshot:
    return QueueSnapshot(content=[])


class SearchIndexUpdate:
    """Redis-backed update/delete queues for every search index."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    def queue_update(self, index_name: str, items: Iterable[dict[str, Any]]) -> None:
        """Queue ``{"id": ..., "action": ...}`` items; action defaults to Update."""
        grouped: dict[str, list[str]] = {}
        for item in items:
            action = item.get("action") or SearchIndexUpdateQueueAction.UPDATE
            grouped.setdefault(str(action), []).append(str(item["id"]))

        for action, ids in grouped.items():
            if ids:
                self._redis.sadd(RedisKeys.search_queue(index_name, action), *ids)
                logger.debug("Queued %d %s items for %s", len(ids), action, index_name)

    def get_queue(
        self,
        index_name: str,
        action: SearchIndexUpdateQueueAction,
        read_only: bool = False,
    ) -> QueueSnapshot:
        key = RedisKeys.search_queue(index_name, action)
        members = self._redis.smembers(key)
        content = sorted({int(m) for m in members})

        if read_only or not content:
            return QueueSnapshot(content=content)

        def commit() -> None:
            self._redis.srem(key, *[str(i) for i in content])

        return QueueSnapshot(content=content, _commit=commit)

    def clear_queue(self, index_name: str) -> None:
        self._redis.delete(
            *(RedisKeys.search_queue(index_name, a) for a in SearchIndexUpdateQueueAction)
        )
