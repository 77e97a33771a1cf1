# coursestore/services/checkout_service.py
import uuid
from datetime import datetime, timedelta
from typing import Callable

from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from coursestore.data.models.purchase import PurchaseModel
from coursestore.domain.errors import (
    ConfirmationInProgress,
    Conflict,
    EmptyCart,
    MetadataMissing,
    PaymentNotCompleted,
    SessionCreationFailed,
    UpstreamFailure,
    ValidationError,
)
from coursestore.domain.pricing import TIER_TABLE, DEFAULT_VALIDITY_MONTHS, price_cart, split_lines
from coursestore.domain.purchase_status import PurchaseStatus
from coursestore.domain.schemas import (
    ByobApplied,
    ByobTier,
    CheckoutMode,
    CheckoutSessionOut,
    ItemIn,
    ItemsSnapshot,
    PaymentConfirmation,
    PurchasedBundle,
    PurchasedCourse,
)
from coursestore.repos.purchase_repo import PurchaseRepo
from coursestore.services.access_service import utcnow
from coursestore.services.cart_service import CartService, line_from_record
from coursestore.services.content_client import ContentClient
from coursestore.services.fulfillment_queue import FulfillmentQueue
from coursestore.services.lock_service import LockService
from coursestore.services.payment_client import PaymentClient, to_minor_units
from coursestore.utils.settings import CHECKOUT_LOCK_TTL_SECONDS, CHECKOUT_SESSION_TTL_SECONDS, CURRENCY
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)


def purchase_type_for(course_count: int, bundle_count: int) -> str:
    if course_count and bundle_count:
        return "mixed"
    if bundle_count:
        return "bundle" if bundle_count == 1 else "bundles"
    if course_count >= 5:
        return "byob"
    return "course" if course_count == 1 else "courses"


def _with_query(url: str, params: str) -> str:
    return f"{url}{'&' if '?' in url else '?'}{params}"


class CheckoutService:
    """
    Turns a cart (or a single "buy now" item) into a Stripe checkout session
    and records the payment confirmation once Stripe calls back.

    The purchase row is created before the session, so the webhook can find
    everything from the purchase id in the session metadata.
    """

    def __init__(
        self,
        db: Session,
        content_client: ContentClient,
        payment_client: PaymentClient,
        lock_service: LockService,
        fulfillment_queue: FulfillmentQueue,
        cart_service: CartService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.repo = PurchaseRepo(db)
        self.content_client = content_client
        self.payment_client = payment_client
        self.lock_service = lock_service
        self.fulfillment_queue = fulfillment_queue
        self.cart_service = cart_service or CartService(db, content_client)
        self.clock = clock

    # =====================================================
    # CHECKOUT SESSION
    # =====================================================
    def create_checkout_session(
        self,
        buyer_id: str,
        success_url: str,
        cancel_url: str,
        mode: CheckoutMode | str = CheckoutMode.CART,
        single_item: ItemIn | None = None,
        email: str | None = None,
    ) -> CheckoutSessionOut:
        """
        1. cart lines or a synthesized one-line cart
        2. EmptyCart when there is nothing to buy
        3. catalog re-read + pricing engine (client prices are never trusted)
        4. grant tokens per item from the catalog record
        5. pending purchase with a frozen items snapshot
        6. Stripe session with minimal metadata
        7. session id stored on the purchase
        """
        mode = CheckoutMode(mode)

        if mode == CheckoutMode.BUY_NOW:
            if single_item is None:
                raise ValidationError("single_item is required for buy now checkout")
            item_refs = [(single_item.kind.value, single_item.item_id)]
        else:
            lines = self.cart_service.get_cart(buyer_id).lines
            if lines:
                validation = self.cart_service.validate(buyer_id, lines)
                if not validation.valid:
                    raise Conflict("Cart validation failed: " + "; ".join(validation.errors))
            item_refs = [line.key for line in lines]

        if not item_refs:
            raise EmptyCart("Cart is empty")

        records = {key: self.content_client.fetch_item(*key) for key in item_refs}
        priced = price_cart([line_from_record(records[key]) for key in item_refs])
        snapshot = self._build_snapshot(priced, records)

        course_lines, bundle_lines = split_lines(priced.lines)
        purchase_type = purchase_type_for(len(course_lines), len(bundle_lines))

        purchase = self.repo.create_purchase(
            PurchaseModel(
                buyer_id=buyer_id,
                purchase_type=purchase_type,
                status=PurchaseStatus.PENDING.value,
                amount_paid=priced.summary.total,
                currency=CURRENCY,
                items_snapshot=snapshot.model_dump(mode="json"),
                fulfillment_metadata={
                    "created_from": "checkout_session",
                    "checkout_type": mode.value,
                    "cart_item_count": len(priced.lines),
                },
            )
        )
        logger.info(
            f"Pending purchase {purchase.id} created for buyer {buyer_id}: "
            f"{purchase_type}, total {priced.summary.total}"
        )

        # processor metadata is limited (50 keys, 500 chars each), keep only a digest
        metadata = {
            "buyer_id": buyer_id,
            "purchase_id": purchase.id,
            "item_count": str(len(priced.lines)),
            "total_amount": str(priced.summary.total),
            "byob_tier": priced.summary.tier.value,
            "purchase_type": purchase_type,
        }
        line_items = [
            {
                "name": line.title,
                "unit_amount_minor_units": to_minor_units(line.unit_price),
                "quantity": 1,
            }
            for line in priced.lines
        ]

        # on failure the pending purchase stays behind as an orphan, nothing depends on it
        session = self.payment_client.create_session(
            line_items=line_items,
            metadata=metadata,
            success_url=_with_query(success_url, f"session_id={{CHECKOUT_SESSION_ID}}&purchase_id={purchase.id}"),
            cancel_url=cancel_url,
            customer_email=email,
            expires_at=int((self.clock() + timedelta(seconds=CHECKOUT_SESSION_TTL_SECONDS)).timestamp()),
        )

        if not session.url:
            logger.error(f"Stripe session {session.id} for purchase {purchase.id} has no redirect url")
            raise SessionCreationFailed("Failed to create checkout session URL")

        self.repo.update_purchase(
            purchase,
            {"payment_session_id": session.id, "updated_at": self.clock()},
        )

        return CheckoutSessionOut(
            session_id=session.id,
            redirect_url=session.url,
            purchase_id=purchase.id,
        )

    def _build_snapshot(self, priced, records) -> ItemsSnapshot:
        courses, bundles = [], []

        for line in priced.lines:
            record = records[line.key]
            if line.kind == "course":
                courses.append(
                    PurchasedCourse(
                        course_id=line.item_id,
                        title=line.title,
                        original_price=line.unit_original_price,
                        price_paid=line.unit_price,
                        grant_token=record.grant_tokens.for_validity(line.validity_months),
                        validity_months=line.validity_months,
                    )
                )
            else:
                bundles.append(
                    PurchasedBundle(
                        bundle_id=line.item_id,
                        title=line.title,
                        price_paid=line.unit_price,
                        grant_token=record.grant_token,
                        validity_months=line.validity_months,
                        course_ids=list(record.course_ids),
                    )
                )

        tier = priced.summary.tier
        byob_applied = None
        if tier != ByobTier.NONE:
            terms = TIER_TABLE[tier]
            byob_applied = ByobApplied(
                tier=tier,
                discount_rate=terms.discount_rate,
                original_validity=DEFAULT_VALIDITY_MONTHS,
                upgraded_validity=terms.validity_months,
            )

        return ItemsSnapshot(
            courses=courses,
            bundles=bundles,
            byob_applied=byob_applied,
            discount_details=priced.summary,
        )

    # =====================================================
    # PAYMENT CONFIRMATION (webhook)
    # =====================================================
    def handle_payment_confirmed(self, session_id: str) -> PaymentConfirmation:
        """
        Record a paid Stripe session on its purchase.

        Safe to call any number of times for the same session: concurrent
        deliveries are serialized by a redis lock, and once the payment is
        recorded later calls return the stored state without side effects.
        """
        session = self.payment_client.retrieve_session(session_id)

        if session.payment_status != "paid":
            raise PaymentNotCompleted(f"Payment for session {session_id} is {session.payment_status}")

        purchase_id = session.metadata.get("purchase_id")
        if not purchase_id:
            raise MetadataMissing("Purchase id not found in session metadata")

        purchase = self.repo.get_purchase(purchase_id)
        if not purchase:
            raise MetadataMissing(f"Session {session_id} references an unknown purchase")

        if purchase.payment_session_id and purchase.payment_session_id != session.id:
            raise ValidationError(f"Session {session_id} does not belong to purchase {purchase_id}")

        owner = str(uuid.uuid4())
        try:
            locked = self.lock_service.acquire_checkout_lock(session.id, owner, CHECKOUT_LOCK_TTL_SECONDS)
        except RedisError as e:
            logger.exception(f"Could not lock checkout session {session_id}")
            raise UpstreamFailure("Lock store unavailable") from e

        if not locked:
            raise ConfirmationInProgress(f"Session {session_id} is already being confirmed")

        try:
            self.db.refresh(purchase)

            if purchase.paid_at is not None:
                logger.info(f"Session {session_id} already confirmed for purchase {purchase.id}")
                return PaymentConfirmation(
                    purchase_id=purchase.id,
                    status=purchase.status,
                    already_confirmed=True,
                )

            now = self.clock()
            metadata = dict(purchase.fulfillment_metadata or {})
            metadata.update({
                "payment_completed_at": now.isoformat(),
                "session_mode": session.mode,
                "payment_status": session.payment_status,
            })

            # status stays pending, the purchase is now ready for fulfillment
            purchase = self.repo.update_purchase(
                purchase,
                {
                    "payment_session_id": session.id,
                    "payment_intent_id": session.payment_intent_id,
                    "customer_id": session.customer_id,
                    "paid_at": now,
                    "updated_at": now,
                    "fulfillment_metadata": metadata,
                },
            )
        finally:
            self._release_lock(session.id, owner)

        logger.info(f"Payment recorded for purchase {purchase.id} (session {session_id})")

        self._clear_cart_quietly(purchase.buyer_id)
        self._signal_fulfillment(purchase.id)

        return PaymentConfirmation(
            purchase_id=purchase.id,
            status=purchase.status,
            already_confirmed=False,
        )

    def _release_lock(self, session_id: str, owner: str):
        try:
            self.lock_service.release_checkout_lock(session_id, owner)
        except RedisError as e:
            # expires on its own after the ttl
            logger.warning(f"Failed to release checkout lock for session {session_id}: {e}")

    def _clear_cart_quietly(self, buyer_id: str):
        try:
            self.cart_service.clear(buyer_id)
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Failed to clear cart of buyer {buyer_id} after payment: {e}")

    def _signal_fulfillment(self, purchase_id: str):
        try:
            self.fulfillment_queue.enqueue(purchase_id)
        except Exception as e:
            # the periodic sweep picks up paid pending purchases
            logger.warning(f"Failed to queue fulfillment for purchase {purchase_id}: {e}")
