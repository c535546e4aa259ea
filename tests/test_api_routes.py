"""
tests/test_api_routes.py — FastAPI Route Integration Tests
===========================================================
Auth guards, strike and crucible endpoints, the job webhook and the
moderator log viewer, exercised through the FastAPI TestClient against
SQLite and the in-memory Redis double.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import timedelta

import jwt
import pytest
from sqlalchemy.orm import Session

from atelier.config import AtelierConfig
from atelier.constants import RedisKeys, utcnow
from atelier.database.models import BuzzTransaction, Crucible, CrucibleEntry, CrucibleStatus, Image
from atelier.services.log_buffer import get_buffer
from conftest import auth, make_token, make_user


@dataclass
class People:
    mod_id: int
    user_id: int
    mod_token: str
    user_token: str


@pytest.fixture
def people(db_engine) -> People:
    mod_id = make_user(db_engine, "warden")
    user_id = make_user(db_engine, "painter")
    return People(
        mod_id=mod_id,
        user_id=user_id,
        mod_token=make_token(mod_id, "warden", is_moderator=True),
        user_token=make_token(user_id, "painter"),
    )


def _override(dependency, value):
    from atelier.api.main import app

    app.dependency_overrides[dependency] = lambda: value


# ===========================================================================
# Health
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards
# ===========================================================================
MOD_GET_ENDPOINTS = [
    "/api/mod/strikes",
    "/api/mod/strikes/user/1",
    "/api/mod/logs",
]

MOD_POST_ENDPOINTS = [
    "/api/mod/strikes",
    "/api/mod/strikes/1/void",
    "/api/mod/crucibles/1/finalize",
]


class TestModAuthGuards:
    @pytest.mark.parametrize("endpoint", MOD_GET_ENDPOINTS)
    def test_get_rejects_no_auth(self, client, endpoint):
        resp = client.get(endpoint)
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", MOD_POST_ENDPOINTS)
    def test_post_rejects_no_auth(self, client, endpoint):
        resp = client.post(endpoint, json={})
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", MOD_GET_ENDPOINTS)
    def test_get_rejects_invalid_token(self, client, endpoint):
        resp = client.get(endpoint, headers=auth("not-a-jwt"))
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", MOD_GET_ENDPOINTS)
    def test_get_rejects_non_moderator(self, client, people, endpoint):
        resp = client.get(endpoint, headers=auth(people.user_token))
        assert resp.status_code == 403

    def test_token_signed_with_other_secret(self, client):
        token = jwt.encode({"sub": "1", "username": "x"}, "some-other-secret-" + "y" * 32, algorithm="HS256")
        assert client.get("/api/strikes/me", headers=auth(token)).status_code == 401

    def test_configured_moderator_ids(self, client, people):
        from atelier.api import deps

        _override(deps.get_config, AtelierConfig("Atelier Test", 8000, moderator_ids=(people.user_id,)))
        resp = client.get("/api/mod/strikes", headers=auth(people.user_token))
        assert resp.status_code == 200

    def test_invalidated_session_is_rejected(self, client, fake_redis, people):
        flagged_at = int(time.time() * 1000) + 1000
        fake_redis.set(RedisKeys.session_invalidate(people.user_id), str(flagged_at))
        resp = client.get("/api/strikes/me", headers=auth(people.user_token))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Session expired"


# ===========================================================================
# Strikes
# ===========================================================================
def _issue(client, people, **overrides):
    body = {
        "user_id": people.user_id,
        "reason": "ManualModAction",
        "description": "Spam in comments",
        "internal_notes": "third report this week",
    }
    body.update(overrides)
    return client.post("/api/mod/strikes", json=body, headers=auth(people.mod_token))


class TestStrikeRoutes:
    def test_issue_and_read_back(self, client, people):
        resp = _issue(client, people)
        assert resp.status_code == 200
        data = resp.json()
        assert data["rate_limited"] is False
        assert data["strike"]["issued_by"] == people.mod_id

        mine = client.get("/api/strikes/me", headers=auth(people.user_token)).json()
        assert len(mine["strikes"]) == 1
        assert "internal_notes" not in mine["strikes"][0]
        assert mine["strikes"][0]["issued_by_user"]["username"] == "warden"

        summary = client.get("/api/strikes/me/summary", headers=auth(people.user_token)).json()
        assert summary["active_strikes"] == 1
        assert summary["total_active_points"] == 1

        history = client.get(
            f"/api/mod/strikes/user/{people.user_id}", headers=auth(people.mod_token)
        ).json()
        assert history["strikes"][0]["internal_notes"] == "third report this week"

    def test_mod_listing(self, client, people):
        _issue(client, people)
        resp = client.get("/api/mod/strikes?status=Active&limit=10", headers=auth(people.mod_token))
        assert resp.status_code == 200
        page = resp.json()
        assert page["total_items"] == 1
        assert page["items"][0]["user"]["username"] == "painter"

    def test_automatic_strike_rate_limited(self, client, people):
        first = _issue(client, people, reason="BlockedContent")
        second = _issue(client, people, reason="BlockedContent")
        assert first.json()["rate_limited"] is False
        assert second.json() == {"strike": None, "rate_limited": True}

    def test_unknown_user_is_404(self, client, people):
        resp = _issue(client, people, user_id=9999)
        assert resp.status_code == 404
        assert resp.json() == {"detail": "User 9999 not found"}

    @pytest.mark.parametrize("overrides", [
        {"points": 5},
        {"points": 0},
        {"reason": "Jaywalking"},
        {"description": ""},
        {"expires_in_days": 400},
    ])
    def test_validation(self, client, people, overrides):
        assert _issue(client, people, **overrides).status_code == 422

    def test_void(self, client, people):
        strike_id = _issue(client, people).json()["strike"]["id"]
        url = f"/api/mod/strikes/{strike_id}/void"

        resp = client.post(url, json={"void_reason": "appeal upheld"}, headers=auth(people.mod_token))
        assert resp.status_code == 200
        assert resp.json()["status"] == "Voided"

        again = client.post(url, json={"void_reason": "twice"}, headers=auth(people.mod_token))
        assert again.status_code == 400
        assert "Only active strikes can be voided" in again.json()["detail"]

    def test_void_unknown_strike(self, client, people):
        resp = client.post(
            "/api/mod/strikes/777/void", json={"void_reason": "x"}, headers=auth(people.mod_token)
        )
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Strike not found"}


# ===========================================================================
# Crucibles
# ===========================================================================
@pytest.fixture
def crucible(db_engine, people) -> tuple[int, list[int]]:
    """An open crucible with two entries by other artists."""
    artists = [make_user(db_engine, "ink"), make_user(db_engine, "oil")]
    with Session(db_engine) as session:
        row = Crucible(
            user_id=people.mod_id,
            name="Monochrome",
            status=CrucibleStatus.ACTIVE,
            entry_fee=50,
            prize_positions=[{"position": 1, "percentage": 100}],
            end_at=utcnow() + timedelta(hours=6),
        )
        session.add(row)
        session.flush()
        entry_ids = []
        for artist in artists:
            image = Image(user_id=artist, url=f"{artist}.webp", width=512, height=512)
            session.add(image)
            session.flush()
            entry = CrucibleEntry(crucible_id=row.id, user_id=artist, image_id=image.id)
            session.add(entry)
            session.flush()
            entry_ids.append(entry.id)
        session.commit()
        return row.id, entry_ids


class TestCrucibleRoutes:
    def test_judging_pair(self, client, people, crucible):
        crucible_id, entry_ids = crucible
        resp = client.get(
            f"/api/crucibles/{crucible_id}/judging-pair", headers=auth(people.user_token)
        )
        assert resp.status_code == 200
        pair = resp.json()["pair"]
        assert {pair["left"]["id"], pair["right"]["id"]} == set(entry_ids)

    def test_judging_pair_with_exclusions(self, client, people, crucible):
        crucible_id, entry_ids = crucible
        resp = client.get(
            f"/api/crucibles/{crucible_id}/judging-pair",
            params={"excludeEntryIds": [entry_ids[0]]},
            headers=auth(people.user_token),
        )
        assert resp.json() == {"pair": None}

    def test_unknown_crucible_is_404(self, client, people):
        resp = client.get("/api/crucibles/404/judging-pair", headers=auth(people.user_token))
        assert resp.status_code == 404

    def test_vote_then_stats(self, client, people, crucible):
        crucible_id, (first, second) = crucible
        body = {"winner_entry_id": first, "loser_entry_id": second}

        resp = client.post(f"/api/crucibles/{crucible_id}/vote", json=body, headers=auth(people.user_token))
        assert resp.status_code == 200
        assert resp.json()["winner_elo"] == 1532

        dup = client.post(f"/api/crucibles/{crucible_id}/vote", json=body, headers=auth(people.user_token))
        assert dup.status_code == 400
        assert "already voted" in dup.json()["detail"]

        stats = client.get("/api/crucibles/judge-stats/me", headers=auth(people.user_token)).json()
        assert stats == {
            "total_pairs_rated": 1,
            "judge_ranking_percentile": 100,
            "influence_score": 10,
        }

        after = client.get(
            f"/api/crucibles/{crucible_id}/judging-pair", headers=auth(people.user_token)
        )
        assert after.json() == {"pair": None}

    def test_vote_requires_auth(self, client, crucible):
        crucible_id, (first, second) = crucible
        resp = client.post(
            f"/api/crucibles/{crucible_id}/vote",
            json={"winner_entry_id": first, "loser_entry_id": second},
        )
        assert resp.status_code == 401

    def test_finalize(self, client, people, crucible):
        crucible_id, _ = crucible
        resp = client.post(f"/api/mod/crucibles/{crucible_id}/finalize", headers=auth(people.mod_token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_prize_pool"] == 100
        assert data["final_entries"][0]["prize_amount"] == 100

        again = client.post(f"/api/mod/crucibles/{crucible_id}/finalize", headers=auth(people.mod_token))
        assert again.status_code == 400

    def test_finalize_requires_moderator(self, client, people, crucible):
        crucible_id, _ = crucible
        resp = client.post(f"/api/mod/crucibles/{crucible_id}/finalize", headers=auth(people.user_token))
        assert resp.status_code == 403

    def test_vote_for_the_same_entry_twice_over(self, client, people, crucible):
        crucible_id, (first, _) = crucible
        resp = client.post(
            f"/api/crucibles/{crucible_id}/vote",
            json={"winner_entry_id": first, "loser_entry_id": first},
            headers=auth(people.user_token),
        )
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Winner and loser must be different entries"}

    def test_create_enter_and_cancel(self, client, db_engine, people):
        created = client.post(
            "/api/crucibles",
            json={
                "name": "Night Markets",
                "entry_fee": 25,
                "prize_positions": [{"position": 1, "percentage": 100}],
                "duration_hours": 48,
            },
            headers=auth(people.mod_token),
        )
        assert created.status_code == 200
        crucible_id = created.json()["id"]
        assert created.json()["status"] == "Active"

        with Session(db_engine) as session:
            session.add(BuzzTransaction(
                from_account_id=0, to_account_id=people.user_id, amount=100,
                type="Purchase", external_transaction_id="purchase-painter-1",
            ))
            image = Image(user_id=people.user_id, url="stall.webp", nsfw_level=1)
            session.add(image)
            session.commit()
            image_id = image.id

        entered = client.post(
            f"/api/crucibles/{crucible_id}/entries",
            json={"image_id": image_id},
            headers=auth(people.user_token),
        )
        assert entered.status_code == 200
        assert entered.json()["buzz_transaction_id"] == (
            f"crucible-entry-{crucible_id}-{people.user_id}-{image_id}"
        )

        denied = client.post(f"/api/mod/crucibles/{crucible_id}/cancel", headers=auth(people.user_token))
        assert denied.status_code == 403

        cancelled = client.post(f"/api/mod/crucibles/{crucible_id}/cancel", headers=auth(people.mod_token))
        assert cancelled.status_code == 200
        assert cancelled.json() == {
            "crucible_id": crucible_id,
            "refunded_entries": 1,
            "total_refunded": 25,
            "failed_refunds": [],
        }

    def test_create_validation(self, client, people):
        resp = client.post(
            "/api/crucibles",
            json={"name": "No Duration"},
            headers=auth(people.user_token),
        )
        assert resp.status_code == 422

    def test_entry_without_funds(self, client, db_engine, people, crucible):
        crucible_id, _ = crucible
        with Session(db_engine) as session:
            image = Image(user_id=people.user_id, url="sketch.webp", nsfw_level=1)
            session.add(image)
            session.commit()
            image_id = image.id

        resp = client.post(
            f"/api/crucibles/{crucible_id}/entries",
            json={"image_id": image_id},
            headers=auth(people.user_token),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("You need 50 Buzz to enter this crucible")


# ===========================================================================
# Job webhook
# ===========================================================================
@pytest.fixture
def webhook_token() -> str:
    return os.environ["WEBHOOK_TOKEN"]


class TestJobWebhook:
    def test_rejects_missing_token(self, client):
        assert client.get("/api/webhooks/run-jobs").status_code == 401

    def test_rejects_wrong_token(self, client):
        resp = client.get("/api/webhooks/run-jobs", params={"token": "guess"})
        assert resp.status_code == 401

    def test_lists_jobs(self, client, webhook_token):
        resp = client.get("/api/webhooks/run-jobs", params={"token": webhook_token})
        assert resp.status_code == 200
        names = [job["name"] for job in resp.json()["jobs"]]
        assert "expire-strikes" in names

    def test_bearer_token_accepted(self, client, webhook_token):
        resp = client.get("/api/webhooks/run-jobs", headers=auth(webhook_token))
        assert resp.status_code == 200

    def test_unknown_job(self, client, webhook_token):
        resp = client.get("/api/webhooks/run-jobs/nope", params={"token": webhook_token})
        assert resp.status_code == 404
        assert resp.json() == {"ok": False, "error": "Job not found"}

    def test_runs_job(self, client, webhook_token, monkeypatch):
        monkeypatch.setenv("PODNAME", "api-0")
        resp = client.get("/api/webhooks/run-jobs/expire-strikes", params={"token": webhook_token})
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "pod": "api-0", "result": {"expired_count": 0}}

    def test_locked_job_in_production(self, client, fake_redis, webhook_token):
        from atelier.api import deps

        _override(deps.get_config, AtelierConfig("Atelier", 8000, environment="production"))
        fake_redis.set("job:expire-strikes", "true")

        resp = client.get("/api/webhooks/run-jobs/expire-strikes", params={"token": webhook_token})
        assert resp.json() == {"ok": True, "error": "Job already running"}

        forced = client.get(
            "/api/webhooks/run-jobs/expire-strikes",
            params={"token": webhook_token, "noCheck": "true"},
        )
        assert forced.json()["result"] == {"expired_count": 0}

    def test_failed_job_is_500(self, client, webhook_token):
        from atelier.api import deps

        _override(deps.get_redis, None)
        resp = client.get("/api/webhooks/run-jobs/finalize-crucibles", params={"token": webhook_token})
        assert resp.status_code == 500
        body = resp.json()
        assert body["ok"] is False
        assert "requires Redis" in body["error"]

    def test_client_disconnect_cancels_the_run(self, client, webhook_token, monkeypatch):
        from starlette.requests import Request

        from atelier.api.routes import jobs as jobs_routes
        from atelier.jobs.job import create_job

        def wait_for_cancel(ctx):
            deadline = time.monotonic() + 5
            while not ctx.canceled and time.monotonic() < deadline:
                time.sleep(0.01)
            ctx.check_if_canceled()
            return {"finished": True}

        async def hung_up(self):
            return True

        monkeypatch.setattr(Request, "is_disconnected", hung_up)
        monkeypatch.setattr(
            jobs_routes, "get_job", lambda name: create_job(name, "0 * * * *", wait_for_cancel)
        )

        resp = client.get("/api/webhooks/run-jobs/slow-job", params={"token": webhook_token})
        assert resp.status_code == 500
        body = resp.json()
        assert body["ok"] is False
        assert body["error"] == "Job was canceled"


# ===========================================================================
# Moderator logs
# ===========================================================================
def _log(message: str, *, level: int = logging.INFO, job: str | None = None) -> int:
    record = logging.LogRecord("atelier.jobs.lock", level, __file__, 1, message, None, None)
    if job is not None:
        record.job = job
    return get_buffer().add(record, message).seq


class TestModLogs:
    def test_filters_by_job_and_since(self, client, people):
        start = _log("before")
        _log("expire run finished", job="expire-strikes")
        _log("other job", job="finalize-crucibles")

        resp = client.get(
            "/api/mod/logs",
            params={"since": start, "job": "expire-strikes"},
            headers=auth(people.mod_token),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert [e["message"] for e in data["entries"]] == ["expire run finished"]
        assert data["last_seq"] == data["entries"][-1]["seq"]

    def test_level_filter(self, client, people):
        start = _log("noise", level=logging.DEBUG)
        _log("lock refresh failed", level=logging.ERROR)
        resp = client.get(
            "/api/mod/logs",
            params={"since": start - 1, "level": "error"},
            headers=auth(people.mod_token),
        )
        assert [e["level"] for e in resp.json()["entries"]] == ["ERROR"]

    def test_invalid_level(self, client, people):
        resp = client.get("/api/mod/logs", params={"level": "LOUD"}, headers=auth(people.mod_token))
        assert resp.status_code == 400

    def test_change_capture_level(self, client, people):
        resp = client.put("/api/mod/logs/level", json={"level": "debug"}, headers=auth(people.mod_token))
        assert resp.status_code == 200
        assert resp.json() == {"level": "DEBUG"}
        try:
            logs = client.get("/api/mod/logs", headers=auth(people.mod_token)).json()
            assert logs["capture_level"] == "DEBUG"
        finally:
            client.put("/api/mod/logs/level", json={"level": "INFO"}, headers=auth(people.mod_token))

    def test_change_capture_level_rejects_unknown(self, client, people):
        resp = client.put("/api/mod/logs/level", json={"level": "LOUD"}, headers=auth(people.mod_token))
        assert resp.status_code == 400
