import json
import os
from datetime import datetime, timezone
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coursestore.data.database import Base
from coursestore.data.models import EntitlementModel, PurchaseModel
from coursestore.domain.errors import NotFound, ValidationError
from coursestore.domain.schemas import (
    BundleLine,
    BundleRecord,
    CourseLine,
    CourseRecord,
    GrantTokens,
    InvoiceOut,
    ItemKind,
    PaymentSession,
)
from coursestore.services.access_service import AccessService
from coursestore.services.cart_service import CartService
from coursestore.services.checkout_service import CheckoutService

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
BUYER = "buyer-1"


def course(item_id: str, price: str = "100.00", title: str | None = None) -> CourseLine:
    return CourseLine(item_id=item_id, title=title or f"Course {item_id}", unit_original_price=Decimal(price))


def bundle(item_id: str, price: str = "200.00", validity: int = 12) -> BundleLine:
    return BundleLine(
        item_id=item_id,
        title=f"Bundle {item_id}",
        unit_original_price=Decimal(price),
        unit_price=Decimal(price),
        validity_months=validity,
    )


# =====================================================
# FAKE COLLABORATORS
# =====================================================
class FakeContentClient:
    def __init__(self):
        self.courses = {
            f"c{i}": CourseRecord(
                id=f"c{i}",
                title=f"Course c{i}",
                price=Decimal("100.00"),
                grant_tokens=GrantTokens(
                    three_month=f"c{i}-3m", six_month=f"c{i}-6m", nine_month=f"c{i}-9m"
                ),
            )
            for i in range(1, 13)
        }
        self.bundles = {
            "b1": BundleRecord(
                id="b1",
                title="Bundle b1",
                price=Decimal("200.00"),
                validity_months=12,
                grant_token="b1-12m",
                course_ids=["c7", "c8"],
            ),
        }

    def fetch_item(self, kind, item_id):
        source = self.courses if ItemKind(kind) == ItemKind.COURSE else self.bundles
        if item_id not in source:
            raise NotFound(f"{ItemKind(kind).value.capitalize()} not found")
        return source[item_id]


class FakePaymentClient:
    def __init__(self):
        self.created = []
        self.sessions = {}
        self.return_url = True
        self.invoices = {}

    def create_session(self, line_items, metadata, success_url, cancel_url, customer_email=None, expires_at=None):
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append(dict(
            line_items=line_items, metadata=metadata, success_url=success_url,
            cancel_url=cancel_url, customer_email=customer_email, expires_at=expires_at,
        ))
        session = PaymentSession(
            id=session_id,
            url=f"https://checkout.stripe.test/{session_id}" if self.return_url else None,
            payment_status="unpaid",
            mode="payment",
            metadata=metadata,
        )
        self.sessions[session_id] = session
        return session

    def mark_paid(self, session_id: str, **changes):
        self.sessions[session_id] = self.sessions[session_id].model_copy(update={
            "payment_status": "paid",
            "payment_intent_id": f"pi_{session_id}",
            "customer_id": "cus_1",
            **changes,
        })

    def retrieve_session(self, session_id: str):
        if session_id not in self.sessions:
            raise ValidationError("Unknown payment session")
        return self.sessions[session_id]

    def retrieve_invoice(self, session_id: str):
        if session_id in self.invoices:
            return self.invoices[session_id]
        session = self.sessions.get(session_id)
        if not session or not session.payment_intent_id:
            raise NotFound("No receipt or invoice available")
        return InvoiceOut(
            type="receipt",
            url=f"https://pay.stripe.test/receipts/{session_id}",
            payment_intent_id=session.payment_intent_id,
            charge_id=f"ch_{session_id}",
            status="succeeded",
        )

    def construct_event(self, payload: bytes, signature):
        if signature != "valid":
            raise ValidationError("Invalid webhook signature")
        return json.loads(payload)


class FakeLockService:
    def __init__(self):
        self.locks = {}
        self.acquired = 0

    def acquire_checkout_lock(self, session_id, owner, ttl):
        if session_id in self.locks:
            return False
        self.locks[session_id] = owner
        self.acquired += 1
        return True

    def release_checkout_lock(self, session_id, owner):
        if self.locks.get(session_id) == owner:
            del self.locks[session_id]
            return True
        return False


class FakeFulfillmentQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue(self, purchase_id):
        self.enqueued.append(purchase_id)


# =====================================================
# FIXTURES
# =====================================================
@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return lambda: NOW


@pytest.fixture()
def content():
    return FakeContentClient()


@pytest.fixture()
def payments():
    return FakePaymentClient()


@pytest.fixture()
def locks():
    return FakeLockService()


@pytest.fixture()
def queue():
    return FakeFulfillmentQueue()


@pytest.fixture()
def access(db, clock):
    return AccessService(db, clock=clock)


@pytest.fixture()
def carts(db, content, access):
    return CartService(db, content_client=content, access_service=access)


@pytest.fixture()
def checkout(db, content, payments, locks, queue, carts, clock):
    return CheckoutService(
        db=db,
        content_client=content,
        payment_client=payments,
        lock_service=locks,
        fulfillment_queue=queue,
        cart_service=carts,
        clock=clock,
    )


@pytest.fixture()
def grant(db):
    """Insert a paid purchase with one entitlement on it."""

    def _grant(buyer_id, grant_type, target_id, expires_at, course_ids=None, is_active=True):
        purchase = PurchaseModel(
            buyer_id=buyer_id,
            purchase_type=grant_type,
            status="completed",
            amount_paid=Decimal("100.00"),
            currency="usd",
            items_snapshot={},
            paid_at=NOW,
        )
        db.add(purchase)
        db.flush()

        entitlement = EntitlementModel(
            buyer_id=buyer_id,
            purchase_id=purchase.id,
            grant_type=grant_type,
            target_id=target_id,
            target_title=f"{grant_type} {target_id}",
            validity_months=3,
            expires_at=expires_at,
            is_active=is_active,
            bundle_course_ids=course_ids,
            granted_at=NOW,
        )
        db.add(entitlement)
        db.commit()
        return entitlement

    return _grant
