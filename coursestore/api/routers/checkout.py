# coursestore/api/routers/checkout.py
from fastapi import APIRouter, Depends

from coursestore.api.dependencies import get_buyer_id, get_checkout_service
from coursestore.domain.schemas import ApiResponse, CheckoutSessionIn, CheckoutSessionOut
from coursestore.services.checkout_service import CheckoutService

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/session", response_model=ApiResponse[CheckoutSessionOut])
def create_checkout_session(
    payload: CheckoutSessionIn,
    buyer_id: str = Depends(get_buyer_id),
    svc: CheckoutService = Depends(get_checkout_service),
):
    session = svc.create_checkout_session(
        buyer_id=buyer_id,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        mode=payload.mode,
        single_item=payload.single_item,
        email=payload.email,
    )
    return ApiResponse(data=session, message="Checkout session created")
