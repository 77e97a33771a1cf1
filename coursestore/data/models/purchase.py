# coursestore/data/models/purchase.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Numeric, JSON
from sqlalchemy.orm import relationship

from coursestore.data.database import Base
from coursestore.data.types import UtcDateTime


def _now():
    return datetime.now(timezone.utc)


class PurchaseModel(Base):
    __tablename__ = "purchases"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    buyer_id = Column(String, nullable=False, index=True)

    purchase_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, processing, completed, partial, failed
    amount_paid = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    items_snapshot = Column(JSON, nullable=False)

    payment_session_id = Column(String, unique=True, nullable=True, index=True)
    payment_intent_id = Column(String, nullable=True)
    customer_id = Column(String, nullable=True)
    fulfillment_metadata = Column(JSON, nullable=True)

    created_at = Column(UtcDateTime(), nullable=False, default=_now)
    updated_at = Column(UtcDateTime(), nullable=False, default=_now)
    paid_at = Column(UtcDateTime(), nullable=True)
    processing_started_at = Column(UtcDateTime(), nullable=True)
    processing_completed_at = Column(UtcDateTime(), nullable=True)

    entitlements = relationship("EntitlementModel", back_populates="purchase")
