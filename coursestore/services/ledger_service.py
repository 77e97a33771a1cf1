# coursestore/services/ledger_service.py
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from coursestore.data.models.entitlement import EntitlementModel
from coursestore.domain.errors import ConcurrentModification, NotFound, ValidationError
from coursestore.domain.purchase_status import PurchaseStatus, assert_transition
from coursestore.domain.schemas import (
    EntitlementOut,
    EntitlementWithPurchaseOut,
    InvoiceOut,
    ItemKind,
    PurchaseOut,
    PurchaseStats,
)
from coursestore.repos.entitlement_repo import EntitlementRepo
from coursestore.repos.purchase_repo import PurchaseRepo
from coursestore.services.access_service import utcnow
from coursestore.services.payment_client import PaymentClient
from coursestore.utils.settings import EXPIRING_SOON_DAYS
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)


def calculate_expiry(validity_months: int, start: datetime) -> datetime:
    """Calendar months ahead, clamped to the end of shorter months."""
    return start + relativedelta(months=validity_months)


class LedgerService:
    """
    Purchases (what was paid) and entitlements (what access that grants).

    Purchases move forward through the status state machine only.
    Entitlements are append-only and get deactivated, never deleted.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        payment_client: PaymentClient | None = None,
    ):
        self.db = db
        self.purchases = PurchaseRepo(db)
        self.entitlements = EntitlementRepo(db)
        self.clock = clock
        self.payment_client = payment_client

    # =====================================================
    # PURCHASES
    # =====================================================
    def list_purchases(self, buyer_id: str, status: str | None = None) -> List[PurchaseOut]:
        if status is not None:
            try:
                status = PurchaseStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown purchase status: {status}")

        return [
            PurchaseOut.model_validate(p)
            for p in self.purchases.list_by_buyer(buyer_id, status)
        ]

    def get_purchase(self, buyer_id: str, purchase_id: str) -> PurchaseOut:
        purchase = self.purchases.get_buyer_purchase(buyer_id, purchase_id)
        if not purchase:
            raise NotFound("Purchase not found")
        return PurchaseOut.model_validate(purchase)

    def invoice(self, buyer_id: str, purchase_id: str) -> InvoiceOut:
        purchase = self.purchases.get_buyer_purchase(buyer_id, purchase_id)
        if not purchase:
            raise NotFound("Purchase not found")

        if purchase.status != PurchaseStatus.COMPLETED.value:
            raise ValidationError("Invoice is only available for completed purchases")

        if not purchase.payment_session_id:
            raise NotFound("No payment session recorded for this purchase")

        return self.payment_client.retrieve_invoice(purchase.payment_session_id)

    def pending_purchases(self, paid_only: bool = True) -> List[PurchaseOut]:
        return [PurchaseOut.model_validate(p) for p in self.purchases.list_pending(paid_only)]

    def update_status(
        self,
        purchase_id: str,
        status: PurchaseStatus | str,
        metadata: dict | None = None,
    ) -> PurchaseOut:
        purchase = self.purchases.get_purchase(purchase_id)
        if not purchase:
            raise NotFound("Purchase not found")
        # the identity map copy may be older than the row
        self.purchases.refresh(purchase)

        current = purchase.status
        target = PurchaseStatus(status)
        if not assert_transition(current, target):
            logger.info(f"Purchase {purchase_id} already {target.value}, nothing to do")
            return PurchaseOut.model_validate(purchase)

        now = self.clock()
        new_data = {"status": target.value, "updated_at": now}
        if metadata is not None:
            new_data["fulfillment_metadata"] = metadata
        if target == PurchaseStatus.PROCESSING:
            new_data["processing_started_at"] = now
        else:
            new_data["processing_completed_at"] = now

        # UPDATE purchases SET ... WHERE id = :id AND status = :current
        rowcount = self.purchases.update_status_if(purchase_id, current, new_data)
        if rowcount == 0:
            self.purchases.rollback()
            raise ConcurrentModification(
                f"Purchase {purchase_id} left '{current}' before it could move to '{target.value}'"
            )

        self.purchases.commit()
        self.purchases.refresh(purchase)
        logger.info(f"Purchase {purchase_id} moved to {target.value}")
        return PurchaseOut.model_validate(purchase)

    def stats(self, buyer_id: str) -> PurchaseStats:
        now = self.clock()
        purchases = self.purchases.list_by_buyer(buyer_id)
        entitlements = self.entitlements.list_by_buyer(buyer_id)

        active = [e for e in entitlements if e.is_active and e.expires_at > now]

        return PurchaseStats(
            total_purchases=len(purchases),
            # unpaid checkout attempts are not money spent
            total_spent=sum(
                (Decimal(p.amount_paid) for p in purchases if p.paid_at is not None),
                Decimal("0.00"),
            ),
            active_entitlements=len(active),
            expired_entitlements=len(entitlements) - len(active),
            processing_purchases=sum(1 for p in purchases if p.status == PurchaseStatus.PROCESSING.value),
        )

    # =====================================================
    # ENTITLEMENTS
    # =====================================================
    def list_entitlements(self, buyer_id: str, active_only: bool = True) -> List[EntitlementOut]:
        if active_only:
            rows = self.entitlements.list_active(buyer_id, self.clock())
        else:
            rows = self.entitlements.list_by_buyer(buyer_id)
        return [EntitlementOut.model_validate(e) for e in rows]

    def expiring_soon(self, buyer_id: str, days: int = EXPIRING_SOON_DAYS) -> List[EntitlementOut]:
        if days < 0:
            raise ValidationError("days must not be negative")

        now = self.clock()
        rows = self.entitlements.list_expiring(buyer_id, now, now + timedelta(days=days))
        return [EntitlementOut.model_validate(e) for e in rows]

    def entitlements_with_purchase(self, buyer_id: str) -> List[EntitlementWithPurchaseOut]:
        result = []
        for e in self.entitlements.list_active(buyer_id, self.clock()):
            data = EntitlementOut.model_validate(e).model_dump()
            result.append(
                EntitlementWithPurchaseOut(
                    **data,
                    purchase_paid_at=e.purchase.paid_at,
                    purchase_amount_paid=e.purchase.amount_paid,
                    purchase_session_id=e.purchase.payment_session_id,
                )
            )
        return result

    def create_entitlement(
        self,
        buyer_id: str,
        purchase_id: str,
        grant_type: ItemKind | str,
        target_id: str,
        validity_months: int,
        expires_at: datetime | None = None,
        target_title: str | None = None,
        grant_token: str | None = None,
        bundle_course_ids: list[str] | None = None,
    ) -> EntitlementOut:
        grant_type = ItemKind(grant_type)

        purchase = self.purchases.get_purchase(purchase_id)
        if not purchase or purchase.buyer_id != buyer_id:
            raise NotFound("Purchase not found")

        if validity_months <= 0:
            raise ValidationError("validity_months must be positive")

        if grant_type == ItemKind.COURSE and bundle_course_ids:
            raise ValidationError("Course entitlements do not carry bundle course ids")

        now = self.clock()
        entitlement = EntitlementModel(
            buyer_id=buyer_id,
            purchase_id=purchase_id,
            grant_type=grant_type.value,
            target_id=target_id,
            target_title=target_title,
            grant_token=grant_token,
            validity_months=validity_months,
            expires_at=expires_at or calculate_expiry(validity_months, purchase.paid_at or now),
            is_active=True,
            bundle_course_ids=list(bundle_course_ids or []) if grant_type == ItemKind.BUNDLE else None,
            granted_at=now,
        )

        created = self.entitlements.create_entitlement(entitlement)
        logger.info(
            f"Entitlement {created.id} granted: {grant_type.value} {target_id} "
            f"for buyer {buyer_id} until {created.expires_at.isoformat()}"
        )
        return EntitlementOut.model_validate(created)

    def deactivate(self, entitlement_id: str, reason: str) -> EntitlementOut:
        if not reason or not reason.strip():
            raise ValidationError("A deactivation reason is required")

        entitlement = self.entitlements.get_entitlement(entitlement_id)
        if not entitlement:
            raise NotFound("Entitlement not found")

        if not entitlement.is_active:
            return EntitlementOut.model_validate(entitlement)

        updated = self.entitlements.update_entitlement(
            entitlement,
            {
                "is_active": False,
                "deactivated_at": self.clock(),
                "deactivation_reason": reason.strip(),
            },
        )
        logger.info(f"Entitlement {entitlement_id} deactivated: {reason}")
        return EntitlementOut.model_validate(updated)

    def deactivate_lapsed(self) -> int:
        """Deactivate every active entitlement whose expiry has passed."""
        lapsed = self.entitlements.list_lapsed(self.clock())
        for entitlement in lapsed:
            self.deactivate(entitlement.id, "expired")
        return len(lapsed)
