"""
tests/test_sessions_notifications.py — Session Flags & Notifications
=====================================================================
"""

from __future__ import annotations

import time

from atelier.constants import RedisKeys
from atelier.services.notification_service import create_notification, get_notifications
from atelier.services.session_service import (
    invalidate_session,
    is_session_invalidated,
    refresh_session,
)
from conftest import make_user


class TestSessionFlags:
    def test_invalidate_sets_flag_with_ttl(self, fake_redis):
        invalidate_session(fake_redis, 5)
        assert fake_redis.get(RedisKeys.session_invalidate(5)) is not None
        assert fake_redis.ttl(RedisKeys.session_invalidate(5)) > 29 * 24 * 3600

    def test_refresh_sets_its_own_flag(self, fake_redis):
        refresh_session(fake_redis, 5)
        assert fake_redis.get(RedisKeys.session_refresh(5)) is not None
        assert fake_redis.get(RedisKeys.session_invalidate(5)) is None

    def test_tokens_issued_before_flag_are_invalid(self, fake_redis):
        issued_at = time.time() - 60
        invalidate_session(fake_redis, 5)
        assert is_session_invalidated(fake_redis, 5, issued_at) is True
        assert is_session_invalidated(fake_redis, 5, None) is True

    def test_tokens_issued_after_flag_are_valid(self, fake_redis):
        invalidate_session(fake_redis, 5)
        assert is_session_invalidated(fake_redis, 5, time.time() + 60) is False

    def test_no_flag_or_no_redis(self, fake_redis):
        assert is_session_invalidated(fake_redis, 5, time.time()) is False
        assert is_session_invalidated(None, 5, time.time()) is False
        invalidate_session(None, 5)
        refresh_session(None, 5)


class TestNotifications:
    def test_create_and_list(self, db_engine):
        user_id = make_user(db_engine)
        created = create_notification(
            db_engine, user_id=user_id, type="strike-issued", key="strike-issued:1:1",
            details={"points": 1},
        )
        assert created is True

        [notification] = get_notifications(db_engine, user_id)
        assert notification["type"] == "strike-issued"
        assert notification["category"] == "System"
        assert notification["details"] == {"points": 1}
        assert notification["viewed_at"] is None

    def test_duplicate_key_is_noop(self, db_engine):
        user_id = make_user(db_engine)
        kwargs = dict(user_id=user_id, type="crucible-ended", key="crucible-ended:3")
        assert create_notification(db_engine, **kwargs) is True
        assert create_notification(db_engine, **kwargs) is False
        assert len(get_notifications(db_engine, user_id)) == 1

    def test_failures_are_swallowed(self, db_engine, monkeypatch):
        def broken_session(*args, **kwargs):
            raise RuntimeError("db down")

        monkeypatch.setattr("atelier.services.notification_service.Session", broken_session)
        assert create_notification(db_engine, user_id=1, type="x", key="x:1") is False
