# coursestore/services/fulfillment_service.py
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursestore.domain.errors import ConcurrentModification, InvalidTransition, NotFound, PaymentNotCompleted
from coursestore.domain.purchase_status import PurchaseStatus, is_terminal
from coursestore.domain.schemas import ItemKind, ItemsSnapshot, PurchaseOut
from coursestore.repos.entitlement_repo import EntitlementRepo
from coursestore.repos.purchase_repo import PurchaseRepo
from coursestore.services.access_service import utcnow
from coursestore.services.ledger_service import LedgerService, calculate_expiry
from coursestore.utils.settings import FULFILLMENT_STALL_MINUTES
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)


class FulfillmentService:
    """
    Turns the items snapshot of a paid purchase into entitlements.

    pending -> processing -> completed | partial | failed
    Items that already have an entitlement for this purchase are skipped, so a
    worker that died half way through can simply run again.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        stall_minutes: int = FULFILLMENT_STALL_MINUTES,
    ):
        self.db = db
        self.purchases = PurchaseRepo(db)
        self.entitlements = EntitlementRepo(db)
        self.ledger = LedgerService(db, clock=clock)
        self.clock = clock
        self.stall_after = timedelta(minutes=stall_minutes)

    def fulfill(self, purchase_id: str, resume: bool = False) -> PurchaseOut:
        """
        Grant entitlements for a paid purchase.

        Only the worker that moves the purchase from pending to processing
        does the work, everyone else backs off. resume=True picks up a
        purchase left in processing by a worker that died.
        """
        purchase = self.purchases.get_purchase(purchase_id)
        if not purchase:
            raise NotFound(f"Purchase {purchase_id} not found")
        self.purchases.refresh(purchase)

        if is_terminal(purchase.status):
            logger.info(f"Purchase {purchase_id} already fulfilled ({purchase.status})")
            return PurchaseOut.model_validate(purchase)

        if purchase.paid_at is None:
            raise PaymentNotCompleted(f"Purchase {purchase_id} has not been paid")

        if purchase.status == PurchaseStatus.PENDING.value:
            try:
                self.ledger.update_status(purchase_id, PurchaseStatus.PROCESSING)
            except (ConcurrentModification, InvalidTransition):
                logger.info(f"Purchase {purchase_id} was claimed by another worker, backing off")
                return PurchaseOut.model_validate(self.purchases.refresh(purchase))
        elif not resume:
            logger.info(f"Purchase {purchase_id} is already being processed, backing off")
            return PurchaseOut.model_validate(purchase)

        snapshot = ItemsSnapshot.model_validate(purchase.items_snapshot)
        starts_at = purchase.paid_at

        already = {(e.grant_type, e.target_id) for e in self.entitlements.list_by_purchase(purchase_id)}

        grants = [
            dict(
                grant_type=ItemKind.COURSE,
                target_id=course.course_id,
                target_title=course.title,
                grant_token=course.grant_token,
                validity_months=course.validity_months,
            )
            for course in snapshot.courses
        ] + [
            dict(
                grant_type=ItemKind.BUNDLE,
                target_id=bundle.bundle_id,
                target_title=bundle.title,
                grant_token=bundle.grant_token,
                validity_months=bundle.validity_months,
                bundle_course_ids=bundle.course_ids,
            )
            for bundle in snapshot.bundles
        ]

        granted, errors = 0, []
        for grant in grants:
            if (grant["grant_type"].value, grant["target_id"]) in already:
                granted += 1
                continue
            try:
                self.ledger.create_entitlement(
                    buyer_id=purchase.buyer_id,
                    purchase_id=purchase_id,
                    expires_at=calculate_expiry(grant["validity_months"], starts_at),
                    **grant,
                )
                granted += 1
            except IntegrityError:
                # granted by another worker in the meantime
                self.db.rollback()
                logger.info(
                    f"{grant['grant_type'].value} {grant['target_id']} already granted for purchase {purchase_id}"
                )
                granted += 1
            except Exception as e:
                self.db.rollback()
                logger.error(
                    f"Failed to grant {grant['grant_type'].value} {grant['target_id']} "
                    f"for purchase {purchase_id}: {e}"
                )
                errors.append(f"{grant['grant_type'].value}:{grant['target_id']}: {e}")

        if not errors:
            outcome = PurchaseStatus.COMPLETED
        elif granted:
            outcome = PurchaseStatus.PARTIAL
        else:
            outcome = PurchaseStatus.FAILED

        metadata = dict(purchase.fulfillment_metadata or {})
        metadata.update({"granted": granted, "failed": len(errors), "errors": errors})

        result = self.ledger.update_status(purchase_id, outcome, metadata)
        logger.info(f"Purchase {purchase_id} fulfilled: {outcome.value} ({granted}/{len(grants)} granted)")
        return result

    def fulfill_pending(self) -> int:
        """
        Sweep paid purchases still waiting, plus processing ones whose worker
        went quiet. Returns how many were handled.
        """
        waiting = [(p.id, False) for p in self.purchases.list_pending(paid_only=True)]
        stalled = [(p.id, True) for p in self.purchases.list_stalled(self.clock() - self.stall_after)]
        if stalled:
            logger.warning(f"Resuming {len(stalled)} stalled purchases")

        handled = 0
        for purchase_id, resume in waiting + stalled:
            try:
                self.fulfill(purchase_id, resume=resume)
                handled += 1
            except Exception as e:
                self.db.rollback()
                logger.warning(f"Fulfillment sweep skipped purchase {purchase_id}: {e}")
        return handled
