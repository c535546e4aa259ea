"""
atelier.services.notification_service — In-App Notifications
=============================================================

Notifications are keyed: inserting a key that already exists is a no-op,
so retried jobs never notify twice.  Sending a notification is a side
effect of some other operation and must never fail it, so errors are
logged and reported as ``False``.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from atelier.database.models import Notification, NotificationCategory

logger = logging.getLogger(__name__)


def create_notification(
    engine: Engine,
    *,
    user_id: int,
    type: str,
    key: str,
    category: str = NotificationCategory.SYSTEM,
    details: dict[str, Any] | None = None,
) -> bool:
    """Insert a notification unless one with *key* already exists.

    Returns ``True`` when a row was written.
    """
    try:
        with Session(engine) as session:
            exists = session.scalar(select(Notification.id).where(Notification.key == key))
            if exists is not None:
                return False
            session.add(Notification(
                user_id=user_id,
                type=type,
                category=str(category),
                key=key,
                details=details or {},
            ))
            session.commit()
            return True
    except IntegrityError:
        # Concurrent insert of the same key
        return False
    except Exception:
        logger.exception(
            "Failed to create notification %s for user %s", type, user_id,
            extra={"notification_key": key},
        )
        return False


def get_notifications(engine: Engine, user_id: int, limit: int = 50) -> list[dict[str, Any]]:
    with Session(engine) as session:
        rows = session.scalars(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        ).all()
        return [
            {
                "id": n.id,
                "type": n.type,
                "category": n.category,
                "key": n.key,
                "details": n.details or {},
                "created_at": n.created_at.isoformat() if n.created_at else None,
                "viewed_at": n.viewed_at.isoformat() if n.viewed_at else None,
            }
            for n in rows
        ]
