import os
from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure required settings exist before app import.
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_API_TOKEN", "admin-test-token")
os.environ["SKIP_MIGRATIONS"] = "1"

import affiliate_engine.notifications.senders.http as http_module  # noqa: E402
from affiliate_engine.main import app  # noqa: E402
from affiliate_engine.api.dependencies import get_payout_provider, get_postback_sender  # noqa: E402
from affiliate_engine.core.config import settings  # noqa: E402
from affiliate_engine.core.db import Base, get_db  # noqa: E402
from affiliate_engine.core.time import utcnow  # noqa: E402
from affiliate_engine.integrations.payouts.base import PayoutBatch, PayoutProvider  # noqa: E402
from affiliate_engine.notifications.senders.base import DeliveryResult, PostbackSender  # noqa: E402
from affiliate_engine.notifications.senders.http import TemplatePostbackSender  # noqa: E402
from tests.factories import SHOP_ID, make_affiliate, make_commission, make_offer  # noqa: E402


class RecordingSender(PostbackSender):
    calls: list = []

    def fire_postback(self, commission_id, event, scope):
        self.calls.append((commission_id, event, scope))
        return DeliveryResult(commission_id=commission_id, event=event, ok=True, sent=1)


class FakeProvider(PayoutProvider):
    def submit_payout(self, items, *, sender_batch_id):
        return PayoutBatch(batch_id="BATCH-API", status="PENDING")

    def get_payout_status(self, batch_id):
        return "SUCCESS"


class _Response:
    def __init__(self, status_code: int, text: str = "error"):
        self.status_code = status_code
        self.text = text


@pytest.fixture(autouse=True)
def session_factory():
    db_url = f"sqlite:///./admin_api_{uuid4().hex}.db"
    test_engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        future=True,
    )
    TestSessionLocal = sessionmaker(bind=test_engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=test_engine)

    def fake_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    RecordingSender.calls = []
    app.dependency_overrides[get_db] = fake_db
    app.dependency_overrides[get_postback_sender] = lambda: RecordingSender()
    app.dependency_overrides[get_payout_provider] = lambda: FakeProvider()
    yield TestSessionLocal
    app.dependency_overrides.clear()


def _headers(shop_id: str = SHOP_ID) -> dict:
    return {"X-Admin-Token": settings.ADMIN_API_TOKEN, settings.SHOP_HEADER_NAME: shop_id}


def test_admin_routes_require_token_and_shop_header():
    client = TestClient(app)

    assert client.get("/admin/commissions", headers={settings.SHOP_HEADER_NAME: SHOP_ID}).status_code == 401
    wrong = {"X-Admin-Token": "nope", settings.SHOP_HEADER_NAME: SHOP_ID}
    assert client.get("/admin/commissions", headers=wrong).status_code == 401
    assert client.get("/admin/commissions", headers={"X-Admin-Token": settings.ADMIN_API_TOKEN}).status_code == 400
    assert client.get("/health").json() == {"status": "ok"}


def test_offer_and_affiliate_setup_then_coupon_order_flow():
    client = TestClient(app)

    resp = client.post(
        "/admin/offers",
        headers=_headers(),
        json={"name": "Launch", "commission_type": "percentage", "amount": "15", "attribution_window_days": 60},
    )
    assert resp.status_code == 201
    offer_id = resp.json()["id"]

    resp = client.post(
        "/admin/affiliates",
        headers=_headers(),
        json={"name": "Creator", "email": "creator@example.com", "status": "active", "offer_id": offer_id},
    )
    assert resp.status_code == 201
    affiliate = resp.json()
    assert affiliate["affiliate_number"] == 30483

    resp = client.post(
        f"/admin/affiliates/{affiliate['id']}/links",
        headers=_headers(),
        json={"destination_url": "https://shop.example.com/", "coupon_code": "creator15"},
    )
    assert resp.status_code == 201
    assert resp.json()["coupon_code"] == "CREATOR15"

    resp = client.post(
        "/webhooks/orders",
        headers={settings.SHOP_HEADER_NAME: SHOP_ID},
        json={"order_id": "api-order-1", "subtotal": "199.99", "attribution_signals": {"coupon": "CREATOR15"}},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["outcome"] == "commission_created"
    assert RecordingSender.calls == [(body["commission_id"], "conversion", SHOP_ID)]

    resp = client.get(f"/admin/commissions/{body['commission_id']}", headers=_headers())
    assert resp.status_code == 200
    assert resp.json()["amount"] == "30.00"
    assert resp.json()["status"] == "pending"

    summary = client.get(f"/admin/affiliates/{affiliate['id']}/summary", headers=_headers()).json()
    assert summary["conversions"] == 1
    assert summary["commission_pending"] == "30.00"


def test_offer_validation_errors_carry_error_code():
    client = TestClient(app)

    resp = client.post(
        "/admin/offers",
        headers=_headers(),
        json={"name": "Subs", "commission_type": "flat_rate", "amount": "5", "selling_subscriptions": "credit_first_only"},
    )

    assert resp.status_code == 422
    assert resp.headers["X-Error-Code"] == "validation_failed"


def test_duplicate_affiliate_email_is_rejected():
    client = TestClient(app)
    payload = {"name": "Dup", "email": "dup@example.com"}

    assert client.post("/admin/affiliates", headers=_headers(), json=payload).status_code == 201
    resp = client.post("/admin/affiliates", headers=_headers(), json=payload)

    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_failed"


def test_bulk_transitions_and_fraud_gate_over_http(session_factory):
    with session_factory() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        flagged = make_commission(db, affiliate=affiliate).id
        clean = make_commission(db, affiliate=affiliate).id
    client = TestClient(app)

    resp = client.post("/admin/fraud", headers=_headers(), json={"commission_id": flagged, "reason": "manual review"})
    assert resp.status_code == 201
    flag_id = resp.json()["id"]

    resp = client.post("/admin/commissions/validate", headers=_headers(), json={"commission_ids": [flagged, clean]})
    assert resp.status_code == 409
    assert resp.headers["X-Error-Code"] == "fraud_blocked"
    assert resp.json()["fraud_commission_ids"] == [flagged]

    resp = client.post(f"/admin/fraud/{flag_id}/resolve", headers=_headers(), json={"note": "ok"})
    assert resp.status_code == 200
    assert resp.json()["resolved"] is True

    resp = client.post("/admin/commissions/validate", headers=_headers(), json={"commission_ids": [flagged, clean]})
    assert resp.json()["transitioned"] == 2

    resp = client.post("/admin/commissions/approve", headers=_headers(), json={"commission_ids": [flagged]})
    body = resp.json()
    assert body["transitioned_ids"] == [flagged]
    assert body["deliveries"][0]["event"] == "approval"

    listed = client.get("/admin/commissions", headers=_headers(), params={"status": "approved"}).json()
    assert [row["id"] for row in listed] == [flagged]


def test_rejecting_a_paid_commission_reports_clawback(session_factory):
    with session_factory() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        paid = make_commission(db, affiliate=affiliate, status="paid").id
    client = TestClient(app)

    resp = client.post("/admin/commissions/reject", headers=_headers(), json={"commission_ids": [paid]})

    assert resp.status_code == 200
    assert resp.json()["transitioned_ids"] == []
    assert resp.json()["clawback_ids"] == [paid]


def test_payout_run_lifecycle_over_http(session_factory):
    with session_factory() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        ids = [make_commission(db, affiliate=affiliate, status="eligible").id for _ in range(2)]
    client = TestClient(app)
    now = utcnow()

    resp = client.post(
        "/admin/payout-runs",
        headers=_headers(),
        json={
            "commission_ids": ids,
            "period_start": (now - timedelta(days=30)).isoformat(),
            "period_end": now.isoformat(),
        },
    )
    assert resp.status_code == 201
    run = resp.json()
    assert run["status"] == "draft"
    assert run["commission_count"] == 2

    resp = client.post(f"/admin/payout-runs/{run['id']}/approve", headers=_headers(), json={"payout_reference": "wire-7"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["run"]["status"] == "paid"
    assert body["requested_count"] == 2
    assert body["paid_count"] == 2
    assert body["detached_ids"] == []
    assert body["total_amount"] == "20.00"

    runs = client.get("/admin/payout-runs", headers=_headers()).json()
    assert [(row["id"], row["status"]) for row in runs] == [(run["id"], "paid")]

    resp = client.delete(f"/admin/payout-runs/{run['id']}", headers=_headers())
    assert resp.status_code == 409


def test_cancelling_a_draft_payout_run_over_http(session_factory):
    with session_factory() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        commission_id = make_commission(db, affiliate=affiliate, status="eligible").id
    client = TestClient(app)
    now = utcnow()
    payload = {
        "commission_ids": [commission_id],
        "period_start": (now - timedelta(days=30)).isoformat(),
        "period_end": now.isoformat(),
    }

    run = client.post("/admin/payout-runs", headers=_headers(), json=payload).json()
    assert client.post("/admin/payout-runs", headers=_headers(), json=payload).status_code == 422

    resp = client.delete(f"/admin/payout-runs/{run['id']}", headers=_headers())
    assert resp.status_code == 204
    assert client.get("/admin/payout-runs", headers=_headers()).json() == []
    assert client.post("/admin/payout-runs", headers=_headers(), json=payload).status_code == 201
    assert client.delete("/admin/payout-runs/999999", headers=_headers()).status_code == 404


def test_pay_now_over_http(session_factory):
    with session_factory() as db:
        affiliate = make_affiliate(db, offer=make_offer(db), payout_identifier="payee@paypal.test")
        affiliate_id = affiliate.id
        commission_id = make_commission(db, affiliate=affiliate, status="approved").id
    client = TestClient(app)

    resp = client.post(
        "/admin/payouts/pay",
        headers=_headers(),
        json={"affiliate_id": affiliate_id, "commission_ids": [commission_id]},
    )

    assert resp.status_code == 201
    assert resp.json()["run"]["payout_reference"] == "BATCH-API"

    refreshed = client.post(f"/admin/payout-runs/{resp.json()['run']['id']}/refresh", headers=_headers())
    assert refreshed.json()["provider_status"] == "SUCCESS"


def test_upcoming_payouts_and_eligible_before_filter_over_http(session_factory):
    with session_factory() as db:
        affiliate = make_affiliate(db, offer=make_offer(db), payout_identifier="payee@paypal.test")
        ready_id = make_commission(db, affiliate=affiliate, status="approved", amount="7.50").id
        later_id = make_commission(
            db, affiliate=affiliate, status="eligible", eligible_date=utcnow() + timedelta(days=10)
        ).id
    client = TestClient(app)

    body = client.get("/admin/payouts/upcoming", headers=_headers()).json()
    assert body["total_affiliates"] == 1
    assert body["total_commissions"] == 1
    assert body["total_amount"] == "7.50"
    assert body["payouts"][0]["payout_identifier"] == "payee@paypal.test"
    assert [row["id"] for row in body["payouts"][0]["commissions"]] == [ready_id]

    ahead = (utcnow() + timedelta(days=11)).isoformat()
    body = client.get("/admin/payouts/upcoming", headers=_headers(), params={"as_of": ahead}).json()
    assert body["total_commissions"] == 2

    listed = client.get("/admin/commissions", headers=_headers(), params={"eligible_before": utcnow().isoformat()}).json()
    assert [row["id"] for row in listed] == [ready_id]
    listed = client.get("/admin/commissions", headers=_headers(), params={"eligible_before": ahead}).json()
    assert {row["id"] for row in listed} == {ready_id, later_id}


def test_click_tracking_endpoint(session_factory):
    with session_factory() as db:
        offer = make_offer(db)
        active_id = make_affiliate(db, offer=offer).id
        pending_id = make_affiliate(db, offer=offer, status="pending").id
    client = TestClient(app)
    shop_headers = {settings.SHOP_HEADER_NAME: SHOP_ID}

    resp = client.post(
        "/clicks",
        headers=shop_headers,
        json={"affiliate_id": active_id, "ip": "198.51.100.4", "user_agent": "UA", "params": {"sub3": "net-123"}},
    )
    assert resp.status_code == 201
    assert resp.json() == {"recorded": True, "click_id": "net-123"}

    resp = client.post("/clicks", headers=shop_headers, json={"affiliate_id": pending_id, "ip": "198.51.100.4"})
    assert resp.json() == {"recorded": False, "click_id": None}

    resp = client.post("/clicks", headers={settings.SHOP_HEADER_NAME: "shop-b"}, json={"affiliate_id": active_id, "ip": "1.1.1.1"})
    assert resp.status_code == 404


def test_refund_and_cancel_webhooks(session_factory):
    with session_factory() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        commission_id = make_commission(db, affiliate=affiliate, status="eligible", order_id="refund-api").id
    client = TestClient(app)
    shop_headers = {settings.SHOP_HEADER_NAME: SHOP_ID}

    resp = client.post("/webhooks/refunds", headers=shop_headers, json={"order_id": "refund-api"})
    assert resp.status_code == 200
    assert resp.json()["reversed_ids"] == [commission_id]

    resp = client.post("/webhooks/subscriptions/cancel", headers=shop_headers, json={"original_order_id": "unknown"})
    assert resp.json()["found"] is False


def test_postback_templates_and_logs_over_http(session_factory, monkeypatch):
    client = TestClient(app)

    resp = client.post(
        "/admin/postbacks/templates",
        headers=_headers(),
        json={
            "name": "Network",
            "trigger_event": "conversion",
            "base_url": "https://partner.example/pb",
            "param_mappings": {"order_id": "txn"},
        },
    )
    assert resp.status_code == 201
    assert [row["name"] for row in client.get("/admin/postbacks/templates", headers=_headers()).json()] == ["Network"]

    monkeypatch.setattr(http_module.requests, "get", lambda url, headers=None, timeout=None: _Response(500))
    with session_factory() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        commission_id = make_commission(db, affiliate=affiliate).id
        TemplatePostbackSender(db).fire_postback(commission_id, "conversion", SHOP_ID)

    logs = client.get("/admin/postbacks/logs", headers=_headers(), params={"status": "failed"}).json()
    assert [(row["commission_id"], row["response_code"]) for row in logs] == [(commission_id, 500)]
    assert client.get("/admin/postbacks/logs", headers=_headers("shop-b")).json() == []
