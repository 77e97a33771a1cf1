import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import BUYER
from coursestore.api import dependencies
from coursestore.data.database import get_db
from coursestore.domain.schemas import InvoiceOut
from coursestore.main import create_app
from coursestore.services.fulfillment_service import FulfillmentService

HEADERS = {"X-Buyer-Id": BUYER}


def soon(days: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


@pytest.fixture()
def client(session_factory, content, payments, locks, queue):
    app = create_app(with_lifespan=False)

    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[dependencies.get_content_client] = lambda: content
    app.dependency_overrides[dependencies.get_payment_client] = lambda: payments
    app.dependency_overrides[dependencies.get_lock_service] = lambda: locks
    app.dependency_overrides[dependencies.get_fulfillment_queue] = lambda: queue

    return TestClient(app)


def add(client, kind, item_id, **extra):
    return client.post("/cart/items", json={"kind": kind, "item_id": item_id, **extra}, headers=HEADERS)


def test_health(client):
    body = client.get("/health").json()
    assert body["success"] is True
    assert body["data"] == {"status": "ok"}


def test_missing_identity_is_unauthorized(client):
    resp = client.get("/cart")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Unauthorized", "message": "Missing buyer identity"}

    assert client.get("/cart", headers={"X-Buyer-Id": "  "}).status_code == 401


def test_cart_round_trip(client):
    resp = add(client, "course", "c1")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["lines"][0]["item_id"] == "c1"
    assert body["data"]["summary"]["total"] == "100.00"

    cart = client.get("/cart", headers=HEADERS).json()["data"]
    assert cart["version"] == 1

    removed = client.delete("/cart/items/course/c1", headers=HEADERS).json()["data"]
    assert removed["lines"] == []


def test_error_statuses(client):
    add(client, "course", "c1")

    duplicate = add(client, "course", "c1")
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "DuplicateItem"

    missing = add(client, "course", "nope")
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFound"

    invalid = client.post("/cart/items", json={"kind": "course"}, headers=HEADERS)
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "ValidationError"

    bad_kind = client.delete("/cart/items/ebook/c1", headers=HEADERS)
    assert bad_kind.status_code == 400


def test_already_owned_carries_access_details(client, grant):
    grant(BUYER, "course", "c1", soon(10))

    resp = add(client, "course", "c1")
    assert resp.status_code == 409
    body = resp.json()
    assert body["error"] == "AlreadyOwned"
    assert body["details"]["type"] == "direct"
    assert "traceback" not in json.dumps(body).lower()


def test_replace_merge_validate_and_clear(client):
    lines = [
        {"kind": "course", "item_id": f"c{i}", "title": f"Course {i}", "unit_original_price": "100.00"}
        for i in range(1, 5)
    ]
    replaced = client.put("/cart", json={"lines": lines}, headers=HEADERS).json()["data"]
    assert replaced["summary"]["tier"] == "none"

    merged = client.post(
        "/cart/merge",
        json={"lines": [{"kind": "course", "item_id": "c5", "title": "Course 5", "unit_original_price": "100.00"}]},
        headers=HEADERS,
    ).json()["data"]
    assert merged["summary"]["tier"] == "5+"
    assert merged["summary"]["total"] == "435.00"

    validation = client.post("/cart/validate", headers=HEADERS).json()["data"]
    assert validation["valid"] is True
    assert validation["course_count"] == 5

    cleared = client.delete("/cart", headers=HEADERS).json()["data"]
    assert cleared["lines"] == []


def test_checkout_and_webhook(client, payments, queue):
    empty = client.post(
        "/checkout/session",
        json={"success_url": "https://s.test", "cancel_url": "https://c.test"},
        headers=HEADERS,
    )
    assert empty.status_code == 400
    assert empty.json()["error"] == "EmptyCart"

    add(client, "course", "c1")
    session = client.post(
        "/checkout/session",
        json={"success_url": "https://s.test", "cancel_url": "https://c.test"},
        headers=HEADERS,
    ).json()["data"]
    assert session["redirect_url"].startswith("https://checkout.stripe.test/")

    event = {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": session["session_id"]}},
    }

    unsigned = client.post("/webhooks/stripe", content=json.dumps(event))
    assert unsigned.status_code == 400

    unpaid = client.post("/webhooks/stripe", content=json.dumps(event), headers={"stripe-signature": "valid"})
    assert unpaid.status_code == 400
    assert unpaid.json()["error"] == "PaymentNotCompleted"

    payments.mark_paid(session["session_id"])
    for _ in range(2):
        resp = client.post("/webhooks/stripe", content=json.dumps(event), headers={"stripe-signature": "valid"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["data"] == {"received": True, "purchase_id": session["purchase_id"]}

    assert queue.enqueued == [session["purchase_id"]]

    purchase = client.get(f"/purchases/{session['purchase_id']}", headers=HEADERS).json()["data"]
    assert purchase["paid_at"] is not None
    assert client.get("/cart", headers=HEADERS).json()["data"]["lines"] == []


def test_unhandled_webhook_events_are_acknowledged(client):
    event = {"id": "evt_2", "type": "payment_intent.payment_failed", "data": {"object": {"id": "pi_1"}}}
    resp = client.post("/webhooks/stripe", content=json.dumps(event), headers={"stripe-signature": "valid"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["data"] == {"received": True}


def test_access_endpoints(client, grant):
    grant(BUYER, "bundle", "b1", soon(30), course_ids=["c7", "c8"])
    grant(BUYER, "course", "c1", soon(5))

    single = client.post("/access/check", json={"course_id": "c7"}, headers=HEADERS).json()["data"]
    assert single["has_access"] is True
    assert single["type"] == "bundle"

    batch = client.post("/access/check", json={"course_ids": ["c1", "c2"]}, headers=HEADERS).json()["data"]
    assert batch["c1"]["type"] == "direct"
    assert batch["c2"]["has_access"] is False

    assert client.post("/access/check", json={}, headers=HEADERS).status_code == 400

    owned = client.get("/access/owned-courses", headers=HEADERS).json()["data"]
    assert sorted(owned) == ["c1", "c7", "c8"]

    expiring = client.get("/entitlements/expiring?days=10", headers=HEADERS).json()["data"]
    assert [e["target_id"] for e in expiring] == ["c1"]

    assert len(client.get("/entitlements", headers=HEADERS).json()["data"]) == 2
    assert len(client.get("/entitlements/with-purchase", headers=HEADERS).json()["data"]) == 2


def test_purchase_endpoints(client, grant):
    entitlement = grant(BUYER, "course", "c1", soon(10))

    purchases = client.get("/purchases", headers=HEADERS).json()["data"]
    assert [p["id"] for p in purchases] == [entitlement.purchase_id]

    stats = client.get("/purchases/stats", headers=HEADERS).json()["data"]
    assert stats["total_purchases"] == 1
    assert stats["active_entitlements"] == 1

    assert client.get("/purchases?status=bogus", headers=HEADERS).status_code == 400
    assert client.get("/purchases/missing", headers=HEADERS).status_code == 404
    other = client.get(f"/purchases/{entitlement.purchase_id}", headers={"X-Buyer-Id": "other"})
    assert other.status_code == 404


def test_purchase_invoice(client, payments, session_factory):
    add(client, "course", "c1")
    session = client.post(
        "/checkout/session",
        json={"success_url": "https://s.test", "cancel_url": "https://c.test"},
        headers=HEADERS,
    ).json()["data"]
    url = f"/purchases/{session['purchase_id']}/invoice"

    pending = client.get(url, headers=HEADERS)
    assert pending.status_code == 400
    assert pending.json()["error"] == "ValidationError"

    payments.invoices[session["session_id"]] = InvoiceOut(
        type="invoice",
        url="https://invoice.stripe.test/i/1",
        pdf_url="https://invoice.stripe.test/i/1.pdf",
        number="INV-0001",
    )
    payments.mark_paid(session["session_id"])
    event = {"id": "evt_3", "type": "checkout.session.completed", "data": {"object": {"id": session["session_id"]}}}
    client.post("/webhooks/stripe", content=json.dumps(event), headers={"stripe-signature": "valid"})
    db = session_factory()
    try:
        FulfillmentService(db).fulfill(session["purchase_id"])
    finally:
        db.close()

    invoice = client.get(url, headers=HEADERS)
    assert invoice.status_code == 200
    body = invoice.json()
    assert body["success"] is True
    assert body["data"]["type"] == "invoice"
    assert body["data"]["pdf_url"] == "https://invoice.stripe.test/i/1.pdf"

    assert client.get(url, headers={"X-Buyer-Id": "other"}).status_code == 404
