from datetime import datetime, timedelta, timezone

from conftest import BUYER
from coursestore.celery_worker import celery_app
from coursestore.repos.entitlement_repo import EntitlementRepo
from coursestore.services.fulfillment_queue import FulfillmentQueue
from coursestore.tasks import expire, fulfillment


def test_beat_schedule_registers_both_sweeps():
    tasks = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
    assert tasks == {
        "coursestore.tasks.fulfillment.fulfill_pending_purchases_task",
        "coursestore.tasks.expire.expire_entitlements_task",
    }


def test_expire_task_deactivates_lapsed_entitlements(db, session_factory, grant, monkeypatch):
    now = datetime.now(timezone.utc)
    lapsed = grant(BUYER, "course", "c1", now - timedelta(minutes=1))
    grant(BUYER, "course", "c2", now + timedelta(days=1))
    monkeypatch.setattr(expire, "SessionLocal", session_factory)

    assert expire.expire_entitlements_task() == 1

    db.expire_all()
    assert EntitlementRepo(db).get_entitlement(lapsed.id).deactivation_reason == "expired"


def test_fulfillment_sweep_task_with_nothing_pending(session_factory, monkeypatch):
    monkeypatch.setattr(fulfillment, "SessionLocal", session_factory)
    assert fulfillment.fulfill_pending_purchases_task() == 0


def test_queue_hands_purchase_to_celery(monkeypatch):
    sent = []
    monkeypatch.setattr(fulfillment.fulfill_purchase_task, "delay", sent.append)

    FulfillmentQueue.enqueue("purchase-1")

    assert sent == ["purchase-1"]
