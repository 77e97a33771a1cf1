# coursestore/api/routers/webhooks.py
from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from coursestore.api.dependencies import get_checkout_service, get_payment_client
from coursestore.domain.schemas import ApiResponse
from coursestore.services.checkout_service import CheckoutService
from coursestore.services.payment_client import PaymentClient
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", response_model=ApiResponse[dict])
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
    payment_client: PaymentClient = Depends(get_payment_client),
    svc: CheckoutService = Depends(get_checkout_service),
):
    # signature is computed over the raw bytes, do not parse before verifying
    payload = await request.body()
    event = payment_client.construct_event(payload, stripe_signature)

    event_type = event["type"]
    logger.info(f"Webhook event {event['id']} received: {event_type}")

    if event_type == "checkout.session.completed":
        session_id = event["data"]["object"]["id"]
        confirmation = await run_in_threadpool(svc.handle_payment_confirmed, session_id)
        return ApiResponse(data={"received": True, "purchase_id": confirmation.purchase_id})

    if event_type == "payment_intent.payment_failed":
        intent = event["data"]["object"]
        logger.warning(f"Payment failed for payment intent {intent['id']}")
    else:
        logger.info(f"Unhandled webhook event type {event_type}")

    return ApiResponse(data={"received": True})
