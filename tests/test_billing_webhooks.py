import json
import time
from sqlalchemy import select, func
from paidaccess.extensions import db
from paidaccess.models import Subscription, BillingEventLog
from paidaccess.billing import EntitlementService, StorageUnavailable
from conftest import iso_days_from_now, make_user, login, polar_signed_headers


def _post(client, event, headers=None):
    return client.post(
        "/webhooks/polar",
        data=json.dumps(event),
        headers=headers or {},
        content_type="application/json",
    )


def _created_event(end):
    return {
        "type": "subscription.created",
        "data": {
            "subscription": {"id": "sub_1", "status": "active", "current_period_end": end},
            "customer": {"email": "a@b.com"},
        },
    }


def _entitled(app, email="a@b.com"):
    with app.app_context():
        return EntitlementService(db.session).is_entitled(email).active


def _sub(app, sub_id="sub_1"):
    with app.app_context():
        rows = db.session.execute(select(Subscription).filter_by(subscription_id=sub_id)).scalars().all()
        return [r.to_dict() for r in rows]


def test_created_event_grants_entitlement(app, client):
    resp = _post(client, _created_event(iso_days_from_now(1)))
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True}
    assert _entitled(app) is True


def test_duplicate_delivery_keeps_one_unchanged_record(app, client):
    event = _created_event(iso_days_from_now(1))
    _post(client, event)
    first = _sub(app)
    resp = _post(client, event)
    assert resp.status_code == 200
    second = _sub(app)
    assert len(second) == 1
    for field in ("subscriptionId", "customerEmail", "status", "planType", "currentPeriodEnd", "createdAt"):
        assert second[0][field] == first[0][field]


def test_cancel_revokes_entitlement(app, client):
    _post(client, _created_event(iso_days_from_now(1)))
    resp = _post(client, {"type": "subscription.canceled", "data": {"subscription": {"id": "sub_1"}}})
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True}
    assert _entitled(app) is False
    (row,) = _sub(app)
    assert row["status"] == "canceled"
    assert row["canceledAt"] is not None


def test_update_with_past_period_end_expires_access(app, client):
    _post(client, _created_event(iso_days_from_now(1)))
    resp = _post(client, {
        "type": "subscription.updated",
        "data": {"subscription": {"id": "sub_1", "status": "active", "current_period_end": iso_days_from_now(-1)}},
    })
    assert resp.status_code == 200
    assert _entitled(app) is False
    (row,) = _sub(app)
    assert row["status"] == "active"


def test_cancel_for_unseen_subscription_is_acknowledged_noop(app, client):
    resp = _post(client, {"type": "subscription.canceled", "data": {"subscription": {"id": "sub_ghost"}}})
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True}
    with app.app_context():
        assert db.session.execute(select(func.count()).select_from(Subscription)).scalar_one() == 0


def test_unknown_type_is_acknowledged(app, client):
    resp = _post(client, {"type": "order.created", "data": {"id": "ord_1"}})
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True}


def test_malformed_event_is_not_retried_and_not_applied(app, client):
    resp = _post(client, {
        "type": "subscription.created",
        "data": {"subscription": {"id": "sub_1", "status": "active"}},
    })
    assert resp.status_code == 200
    assert resp.get_json() == {"success": False, "error": "malformed_event"}
    assert _sub(app) == []
    with app.app_context():
        log = db.session.execute(select(BillingEventLog)).scalars().one()
        assert log.outcome == "malformed"


def test_overlong_subscription_id_is_dropped_not_retried(app, client):
    event = _created_event(iso_days_from_now(3))
    event["data"]["subscription"]["id"] = "sub_" + "9" * 120
    resp = _post(client, event)
    assert resp.status_code == 200
    assert resp.get_json() == {"success": False, "error": "malformed_event"}
    with app.app_context():
        assert db.session.execute(select(func.count()).select_from(Subscription)).scalar_one() == 0


def test_non_json_body_is_rejected(client):
    resp = client.post("/webhooks/polar", data=b"not json", content_type="application/json")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_json"


def test_storage_failure_asks_provider_to_retry(app, client, monkeypatch):
    from paidaccess.blueprints.webhooks import routes as webhook_routes

    class _DownReconciler:
        def __init__(self, session): pass
        def apply(self, event):
            raise StorageUnavailable("connection refused")

    monkeypatch.setattr(webhook_routes, "Reconciler", _DownReconciler)
    resp = _post(client, _created_event(iso_days_from_now(1)))
    assert resp.status_code == 503
    assert resp.get_json() == {"success": False, "error": "storage_unavailable"}


def test_delivery_is_audited(app, client):
    _post(client, _created_event(iso_days_from_now(1)), headers={"webhook-id": "msg_abc"})
    with app.app_context():
        log = db.session.execute(select(BillingEventLog)).scalars().one()
        assert log.delivery_id == "msg_abc"
        assert log.type == "subscription.created"
        assert log.subscription_id == "sub_1"
        assert log.outcome == "upserted"
        assert log.signature_valid is False


def test_signature_required_when_secret_configured(app, client, monkeypatch):
    monkeypatch.setitem(app.config, "POLAR_WEBHOOK_SECRET", "polar_whs_test")
    body = json.dumps(_created_event(iso_days_from_now(1))).encode("utf-8")
    ts = str(int(time.time()))

    resp = client.post("/webhooks/polar", data=body, content_type="application/json")
    assert resp.status_code == 401

    bad = {"webhook-id": "msg_1", "webhook-timestamp": ts, "webhook-signature": "v1,AAAA"}
    resp = client.post("/webhooks/polar", data=body, headers=bad, content_type="application/json")
    assert resp.status_code == 401
    assert _sub(app) == []

    good = polar_signed_headers("polar_whs_test", body)
    resp = client.post("/webhooks/polar", data=body, headers=good, content_type="application/json")
    assert resp.status_code == 200
    assert _entitled(app) is True
    with app.app_context():
        log = db.session.execute(select(BillingEventLog)).scalars().one()
        assert log.signature_valid is True


def test_signed_event_of_unmodelled_type_is_acknowledged(app, client, monkeypatch):
    secret = "whsec_MDEyMzQ1Njc4OWFiY2RlZg=="
    monkeypatch.setitem(app.config, "POLAR_WEBHOOK_SECRET", secret)
    body = json.dumps({"type": "benefit_grant.created", "data": {"id": "bg_1"}}).encode("utf-8")
    resp = client.post("/webhooks/polar", data=body, headers=polar_signed_headers(secret, body),
                       content_type="application/json")
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True}


def test_webhook_drives_status_endpoint(app, client):
    uid = make_user(app, email="a@b.com")
    login(client, uid)
    assert client.get("/billing/subscription").get_json() == {"hasActiveSubscription": False}

    _post(client, _created_event(iso_days_from_now(3)))
    data = client.get("/billing/subscription").get_json()
    assert data["hasActiveSubscription"] is True
    assert data["status"] == "active"


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}
