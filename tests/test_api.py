"""Tests for API endpoints using FastAPI TestClient."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import make_query
from pricewatch.config import settings
from pricewatch.database import get_db
from pricewatch.main import app, app_state
from pricewatch.marketplace import IdentityError
from pricewatch.marketplace.identity import Credential
from pricewatch.monitor.price_monitor import PriceMonitorStats
from pricewatch.models import Owner, PriceSample, TrackedItem, TrackedQuery
from pricewatch.store import CatalogUnavailableError


@pytest.fixture()
def test_db(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def mock_scheduler():
    scheduler = MagicMock()
    scheduler.running = True
    scheduler.status.return_value = {
        "running": False,
        "enabled": True,
        "interval_seconds": 300,
        "last_run_at": None,
        "last_duration_ms": 0,
        "next_run_at": None,
        "last_stats": None,
        "last_error": None,
    }
    app_state["scheduler"] = scheduler
    yield scheduler
    app_state.clear()


@pytest.fixture()
def client(test_db, mock_scheduler):
    return TestClient(app, raise_server_exceptions=False)


def _item(db, owner_id, remote="v1|1|0", **kwargs):
    item = TrackedItem(owner_id=owner_id, remote_item_id=remote, title="Camera", current_price=100.0, **kwargs)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


class TestQueriesAPI:
    def test_create_and_list(self, client, owner):
        resp = client.post("/api/queries", json={
            "owner_id": owner.id, "name": "switch", "keywords": "nintendo switch",
            "min_price": 100, "max_price": 300, "condition": "used",
        })
        assert resp.status_code == 201
        data = resp.json()
        assert data["is_active"] is True
        assert data["marketplace_id"] == "EBAY_US"

        listing = client.get("/api/queries", params={"owner_id": owner.id}).json()
        assert listing["total"] == 1
        assert listing["queries"][0]["name"] == "switch"

    def test_duplicate_name_rejected(self, client, owner):
        body = {"owner_id": owner.id, "name": "switch", "keywords": "nintendo switch"}
        assert client.post("/api/queries", json=body).status_code == 201
        assert client.post("/api/queries", json=body).status_code == 409

    def test_blank_keywords_rejected(self, client, owner):
        resp = client.post("/api/queries", json={"owner_id": owner.id, "name": "x", "keywords": "   "})
        assert resp.status_code == 400

    def test_unknown_owner(self, client):
        resp = client.post("/api/queries", json={"owner_id": 999, "name": "x", "keywords": "y"})
        assert resp.status_code == 404

    def test_invalid_condition_rejected(self, client, owner):
        resp = client.post("/api/queries", json={
            "owner_id": owner.id, "name": "x", "keywords": "y", "condition": "mint",
        })
        assert resp.status_code == 422

    def test_inverted_price_range_rejected(self, client, owner):
        resp = client.post("/api/queries", json={
            "owner_id": owner.id, "name": "x", "keywords": "y", "min_price": 50, "max_price": 10,
        })
        assert resp.status_code == 422

    def test_update(self, client, owner, db):
        q = make_query(db, owner.id)
        resp = client.patch(f"/api/queries/{q.id}", json={"max_price": 250, "free_shipping": True})
        assert resp.status_code == 200
        assert resp.json()["max_price"] == 250
        assert resp.json()["free_shipping"] is True

    def test_update_missing(self, client):
        assert client.patch("/api/queries/999", json={"keywords": "x"}).status_code == 404

    def test_delete_is_soft(self, client, owner, db):
        q = make_query(db, owner.id)
        assert client.delete(f"/api/queries/{q.id}").status_code == 204
        db.expire_all()
        assert db.get(TrackedQuery, q.id).is_active is False
        active = client.get("/api/queries", params={"active": True}).json()
        assert active["total"] == 0


class TestItemsAPI:
    def test_list_filters(self, client, owner, db):
        q = make_query(db, owner.id)
        _item(db, owner.id, "a", query_id=q.id)
        _item(db, owner.id, "b", is_active=False)

        assert client.get("/api/items").json()["total"] == 2
        assert client.get("/api/items", params={"active": True}).json()["total"] == 1
        by_query = client.get("/api/items", params={"query_id": q.id}).json()
        assert [i["remote_item_id"] for i in by_query["items"]] == ["a"]

    def test_history_newest_first(self, client, owner, db):
        item = _item(db, owner.id)
        base = datetime(2026, 5, 1, 12, 0)
        for n, price in enumerate([100.0, 95.0, 90.0]):
            db.add(PriceSample(
                item_id=item.id, owner_id=owner.id, price=price,
                price_dropped=n > 0, recorded_at=base + timedelta(hours=n),
            ))
        db.commit()

        history = client.get(f"/api/items/{item.id}/history").json()
        assert [h["price"] for h in history] == [90.0, 95.0, 100.0]
        assert client.get(f"/api/items/{item.id}/history", params={"limit": 1}).json()[0]["price"] == 90.0

    def test_history_missing_item(self, client):
        assert client.get("/api/items/999/history").status_code == 404

    def test_set_and_clear_target(self, client, owner, db):
        item = _item(db, owner.id)
        resp = client.patch(f"/api/items/{item.id}/target", json={"target_price": 80})
        assert resp.status_code == 200
        assert resp.json()["target_price"] == 80

        resp = client.patch(f"/api/items/{item.id}/target", json={"target_price": None})
        assert resp.json()["target_price"] is None
        db.expire_all()
        assert db.get(TrackedItem, item.id).target_price is None

    def test_negative_target_rejected(self, client, owner, db):
        item = _item(db, owner.id)
        assert client.patch(f"/api/items/{item.id}/target", json={"target_price": -1}).status_code == 422

    def test_target_missing_item(self, client):
        assert client.patch("/api/items/999/target", json={"target_price": 10}).status_code == 404


class TestOwnersAPI:
    def test_create_and_get(self, client):
        resp = client.post("/api/owners", json={"name": "carol", "email": "carol@example.com"})
        assert resp.status_code == 201
        owner_id = resp.json()["id"]
        data = client.get(f"/api/owners/{owner_id}").json()
        assert data["linked"] is False
        assert data["needs_reauth"] is False

    def test_duplicate_email(self, client, owner):
        resp = client.post("/api/owners", json={"name": "alice2", "email": owner.email})
        assert resp.status_code == 409

    def test_preferences_round_trip(self, client, owner):
        assert client.get(f"/api/owners/{owner.id}/preferences").status_code == 404

        body = {
            "drop_threshold_pct": 10,
            "quiet_hours_enabled": True,
            "quiet_start_hour": 22,
            "quiet_end_hour": 6,
            "timezone": "Europe/London",
            "channels": [{"type": "discord", "config": {"url": "https://discord.test/hook"}}],
        }
        resp = client.put(f"/api/owners/{owner.id}/preferences", json=body)
        assert resp.status_code == 200

        data = client.get(f"/api/owners/{owner.id}/preferences").json()
        assert data["drop_threshold_pct"] == 10
        assert data["channels"][0]["type"] == "discord"
        assert data["channels"][0]["enabled"] is True

    def test_preferences_validation(self, client, owner):
        resp = client.put(f"/api/owners/{owner.id}/preferences", json={"quiet_start_hour": 24})
        assert resp.status_code == 422

    def test_unlink_deactivates_tracking(self, client, owner, db):
        make_query(db, owner.id)
        _item(db, owner.id)

        resp = client.delete(f"/api/owners/{owner.id}/credential")
        assert resp.status_code == 200
        assert resp.json() == {"status": "unlinked", "queries_deactivated": 1, "items_deactivated": 1}

        db.expire_all()
        row = db.get(Owner, owner.id)
        assert row.access_token is None
        assert row.refresh_token is None

    def test_link_without_oauth(self, client, owner):
        resp = client.post(f"/api/owners/{owner.id}/credential", json={"code": "abc"})
        assert resp.status_code == 503

    def test_link_credential(self, client, owner, db):
        db.query(Owner).filter(Owner.id == owner.id).update({Owner.needs_reauth: True})
        db.commit()
        identity = MagicMock()
        identity.exchange_auth_code = AsyncMock(return_value=Credential("linked-access", "linked-refresh"))
        app_state["identity"] = identity

        resp = client.post(f"/api/owners/{owner.id}/credential", json={"code": "abc"})

        assert resp.status_code == 200
        assert resp.json()["linked"] is True
        assert resp.json()["needs_reauth"] is False
        identity.exchange_auth_code.assert_awaited_once_with("abc")

    def test_link_rejected_code(self, client, owner):
        identity = MagicMock()
        identity.exchange_auth_code = AsyncMock(side_effect=IdentityError("invalid_grant"))
        app_state["identity"] = identity
        assert client.post(f"/api/owners/{owner.id}/credential", json={"code": "bad"}).status_code == 400

    def test_price_summary(self, client, owner, db):
        cheap = _item(db, owner.id, "a", target_price=120.0)
        other = _item(db, owner.id, "b")
        other.current_price = 60.0
        _item(db, owner.id, "c", is_active=False)
        db.add_all([
            PriceSample(item_id=cheap.id, owner_id=owner.id, price=100.0, price_dropped=True, drop_amount=20.0),
            PriceSample(item_id=other.id, owner_id=owner.id, price=60.0, price_dropped=True, drop_amount=5.5),
            PriceSample(item_id=other.id, owner_id=owner.id, price=65.5, price_dropped=False),
        ])
        db.commit()

        data = client.get(f"/api/owners/{owner.id}/price-summary").json()

        assert data["total_items"] == 3
        assert data["active_items"] == 2
        assert data["items_below_target"] == 1
        assert data["average_price"] == 80.0
        assert data["lowest_price"] == 60.0
        assert data["highest_price"] == 100.0
        assert data["price_drops"] == 2
        assert data["total_savings"] == 25.5

    def test_price_summary_empty(self, client, owner):
        data = client.get(f"/api/owners/{owner.id}/price-summary").json()
        assert data["total_items"] == 0
        assert data["average_price"] == 0.0
        assert data["total_savings"] == 0.0

    def test_price_summary_missing_owner(self, client):
        assert client.get("/api/owners/999/price-summary").status_code == 404


class TestPricesAPI:
    @pytest.fixture()
    def monitor(self, mock_scheduler):
        monitor = MagicMock()
        stats = PriceMonitorStats(items_checked=3, prices_updated=1, price_drops_detected=1, alerts_triggered=1)
        monitor.run_pass = AsyncMock(return_value=stats)
        monitor.check_items = AsyncMock(return_value=stats)
        app_state["monitor"] = monitor
        return monitor

    def test_check_all(self, client, monitor):
        resp = client.post("/api/prices/check")
        assert resp.status_code == 200
        assert resp.json()["items_checked"] == 3
        assert resp.json()["owner_id"] is None
        monitor.run_pass.assert_awaited_once_with()

    def test_check_owner(self, client, monitor, owner):
        resp = client.post(f"/api/prices/check/{owner.id}")
        assert resp.status_code == 200
        assert resp.json()["owner_id"] == owner.id
        assert resp.json()["alerts_triggered"] == 1
        monitor.run_pass.assert_awaited_once_with(owner.id)

    def test_check_unknown_owner(self, client, monitor):
        assert client.post("/api/prices/check/999").status_code == 404
        monitor.run_pass.assert_not_awaited()

    def test_check_owner_needing_reauth(self, client, monitor, owner, db):
        db.query(Owner).filter(Owner.id == owner.id).update({Owner.needs_reauth: True})
        db.commit()
        assert client.post(f"/api/prices/check/{owner.id}").status_code == 409
        monitor.run_pass.assert_not_awaited()

    def test_check_items(self, client, monitor):
        resp = client.post("/api/prices/items/check", json={"item_ids": [4, 7]})
        assert resp.status_code == 200
        monitor.check_items.assert_awaited_once_with([4, 7])

    def test_check_items_requires_ids(self, client, monitor):
        assert client.post("/api/prices/items/check", json={"item_ids": []}).status_code == 422

    def test_catalog_outage(self, client, monitor):
        monitor.run_pass.side_effect = CatalogUnavailableError("database is locked")
        assert client.post("/api/prices/check").status_code == 503

    def test_no_monitor(self, client):
        assert client.post("/api/prices/check").status_code == 503


class TestWorkersAPI:
    def test_trigger(self, client, mock_scheduler):
        mock_scheduler.trigger_in_background.return_value = True
        resp = client.post("/api/workers/trigger")
        assert resp.json() == {"triggered": True, "message": "Search cycle started"}

    def test_trigger_while_running(self, client, mock_scheduler):
        mock_scheduler.trigger_in_background.return_value = False
        assert client.post("/api/workers/trigger").json()["triggered"] is False

    def test_status(self, client):
        data = client.get("/api/workers/status").json()
        assert data["interval_seconds"] == 300
        assert data["enabled"] is True

    def test_schedule_rejected(self, client, mock_scheduler):
        mock_scheduler.reschedule.side_effect = ValueError("interval must be at least 30s (got 5)")
        assert client.patch("/api/workers/schedule", json={"interval_seconds": 5}).status_code == 422

    def test_schedule_updated(self, client, mock_scheduler):
        assert client.patch("/api/workers/schedule", json={"interval_seconds": 60}).status_code == 200
        mock_scheduler.reschedule.assert_called_once_with(60)

    def test_pause_resume(self, client, mock_scheduler):
        assert client.post("/api/workers/pause").json() == {"status": "paused"}
        assert client.post("/api/workers/resume").json() == {"status": "resumed"}
        mock_scheduler.pause.assert_called_once()
        mock_scheduler.resume.assert_called_once()

    def test_no_scheduler(self, test_db):
        app_state.clear()
        client = TestClient(app, raise_server_exceptions=False)
        assert client.get("/api/workers/status").status_code == 503


class TestHealth:
    def test_health(self, client, owner, db):
        make_query(db, owner.id)
        data = client.get("/api/health").json()
        assert data["status"] == "ok"
        assert data["scheduler_running"] is True
        assert data["active_queries"] == 1
        services = {s["name"]: s["status"] for s in data["services"]}
        assert services["database"] == "ok"
        assert services["oauth"] == "unavailable"

    def test_health_degraded_without_scheduler(self, client):
        app_state["scheduler"] = None
        data = client.get("/api/health").json()
        assert data["status"] == "degraded"


class TestApiKey:
    @pytest.fixture()
    def secured(self, monkeypatch):
        from pricewatch.auth import ApiKeyMiddleware

        monkeypatch.setattr(settings, "api_key", "s3cret")
        secured = FastAPI()
        secured.add_middleware(ApiKeyMiddleware)

        @secured.get("/api/health")
        def health():
            return {"status": "ok"}

        @secured.get("/api/items")
        def items():
            return {"items": []}

        return TestClient(secured)

    def test_missing_key(self, secured):
        assert secured.get("/api/items").status_code == 401

    def test_header_key(self, secured):
        assert secured.get("/api/items", headers={"X-API-Key": "s3cret"}).status_code == 200

    def test_query_param_key(self, secured):
        assert secured.get("/api/items", params={"api_key": "s3cret"}).status_code == 200

    def test_health_is_open(self, secured):
        assert secured.get("/api/health").status_code == 200
