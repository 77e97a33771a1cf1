# coursestore/data/models/entitlement.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship

from coursestore.data.database import Base
from coursestore.data.types import UtcDateTime


class EntitlementModel(Base):
    __tablename__ = "entitlements"
    __table_args__ = (
        # one grant per item and purchase
        UniqueConstraint("purchase_id", "grant_type", "target_id", name="uq_entitlement_purchase_target"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    buyer_id = Column(String, nullable=False, index=True)
    purchase_id = Column(String(36), ForeignKey("purchases.id"), nullable=False, index=True)

    grant_type = Column(String(10), nullable=False)  # course, bundle
    target_id = Column(String, nullable=False)
    target_title = Column(String, nullable=True)
    grant_token = Column(String, nullable=True)
    validity_months = Column(Integer, nullable=False)

    expires_at = Column(UtcDateTime(), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # course ids covered at grant time, not a live join on the bundle
    bundle_course_ids = Column(JSON, nullable=True)

    granted_at = Column(UtcDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc))
    deactivated_at = Column(UtcDateTime(), nullable=True)
    deactivation_reason = Column(String, nullable=True)

    purchase = relationship("PurchaseModel", back_populates="entitlements")
