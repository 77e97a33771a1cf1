# coursestore/services/payment_client.py
from decimal import Decimal, ROUND_HALF_UP

import stripe

from coursestore.domain.errors import NotFound, UpstreamFailure, ValidationError
from coursestore.domain.schemas import InvoiceOut, PaymentSession
from coursestore.utils.retry import stripe_retry
from coursestore.utils.settings import (
    CHECKOUT_SESSION_TTL_SECONDS,
    CURRENCY,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
)
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _stripe_id(value) -> str | None:
    # expanded objects come back as StripeObject, collapsed ones as plain ids
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def to_payment_session(session) -> PaymentSession:
    return PaymentSession(
        id=session["id"],
        url=session.get("url"),
        payment_status=session.get("payment_status"),
        payment_intent_id=_stripe_id(session.get("payment_intent")),
        customer_id=_stripe_id(session.get("customer")),
        mode=session.get("mode"),
        metadata={k: str(v) for k, v in (session.get("metadata") or {}).items()},
    )


class PaymentClient:
    """
    Thin wrapper over Stripe Checkout.
    Line items come in as {name, unit_amount_minor_units, quantity}.
    """

    def __init__(
        self,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        currency: str = CURRENCY,
        session_ttl: int = CHECKOUT_SESSION_TTL_SECONDS,
    ):
        self.api_key = api_key or STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or STRIPE_WEBHOOK_SECRET
        self.currency = currency
        self.session_ttl = session_ttl

    @stripe_retry()
    def _create(self, params: dict):
        return stripe.checkout.Session.create(api_key=self.api_key, **params)

    @stripe_retry()
    def _retrieve(self, session_id: str):
        return stripe.checkout.Session.retrieve(
            session_id,
            api_key=self.api_key,
            expand=["payment_intent"],
        )

    def create_session(
        self,
        line_items: list[dict],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
        expires_at: int | None = None,
    ) -> PaymentSession:
        params = dict(
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": item["name"]},
                        "unit_amount": item["unit_amount_minor_units"],
                    },
                    "quantity": item.get("quantity", 1),
                }
                for item in line_items
            ],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
        )
        if customer_email:
            params["customer_email"] = customer_email
        if expires_at:
            params["expires_at"] = expires_at

        try:
            session = self._create(params)
        except stripe.StripeError as e:
            logger.exception("Stripe checkout session creation failed")
            raise UpstreamFailure("Payment provider rejected the checkout session") from e

        logger.info(f"Stripe session {session['id']} created ({len(line_items)} items)")
        return to_payment_session(session)

    def retrieve_session(self, session_id: str) -> PaymentSession:
        try:
            session = self._retrieve(session_id)
        except stripe.InvalidRequestError as e:
            logger.warning(f"Stripe session {session_id} could not be retrieved: {e}")
            raise ValidationError("Unknown payment session") from e
        except stripe.StripeError as e:
            logger.exception(f"Stripe session {session_id} retrieval failed")
            raise UpstreamFailure("Could not reach the payment provider") from e
        return to_payment_session(session)

    # =====================================================
    # INVOICES
    # =====================================================
    @stripe_retry()
    def _retrieve_with_invoice(self, session_id: str):
        return stripe.checkout.Session.retrieve(
            session_id,
            api_key=self.api_key,
            expand=["payment_intent", "invoice"],
        )

    @stripe_retry()
    def _retrieve_invoice_object(self, invoice_id: str):
        return stripe.Invoice.retrieve(invoice_id, api_key=self.api_key)

    @stripe_retry()
    def _latest_charge(self, payment_intent_id: str):
        charges = stripe.Charge.list(payment_intent=payment_intent_id, limit=1, api_key=self.api_key)
        data = charges.get("data") or []
        return data[0] if data else None

    def retrieve_invoice(self, session_id: str) -> InvoiceOut:
        """
        Hosted invoice for the session when Stripe issued one (rare for one-time
        payments), otherwise the card receipt of the payment intent.
        """
        try:
            session = self._retrieve_with_invoice(session_id)

            invoice = session.get("invoice")
            if invoice is not None:
                if isinstance(invoice, str):
                    invoice = self._retrieve_invoice_object(invoice)
                return InvoiceOut(
                    type="invoice",
                    url=invoice.get("hosted_invoice_url"),
                    pdf_url=invoice.get("invoice_pdf"),
                    number=invoice.get("number"),
                    status=invoice.get("status"),
                    amount_paid=invoice.get("amount_paid"),
                    created=invoice.get("created"),
                )

            intent = session.get("payment_intent")
            if not intent:
                raise NotFound("Payment intent not found for this purchase")

            intent_id = _stripe_id(intent)
            charge = self._latest_charge(intent_id)
        except stripe.StripeError as e:
            logger.exception(f"Invoice lookup failed for Stripe session {session_id}")
            raise NotFound("Unable to retrieve invoice or receipt from payment processor") from e

        if not charge or not charge.get("receipt_url"):
            raise NotFound("No receipt or invoice available")

        expanded = not isinstance(intent, str)
        return InvoiceOut(
            type="receipt",
            url=charge["receipt_url"],
            payment_intent_id=intent_id,
            charge_id=charge.get("id"),
            amount_paid=(intent.get("amount_received") or intent.get("amount")) if expanded else charge.get("amount"),
            created=intent.get("created") if expanded else charge.get("created"),
            status=intent.get("status") if expanded else charge.get("status"),
        )

    def construct_event(self, payload: bytes, signature: str | None):
        """Verify the webhook signature and parse the event."""
        if not signature:
            raise ValidationError("Missing webhook signature")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise ValidationError("Invalid webhook payload") from e
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise ValidationError("Invalid webhook signature") from e
