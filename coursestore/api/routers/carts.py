# coursestore/api/routers/carts.py
from fastapi import APIRouter, Depends

from coursestore.api.dependencies import get_buyer_id, get_cart_service
from coursestore.domain.schemas import (
    ApiResponse,
    CartOut,
    CartValidation,
    ItemIn,
    ItemKind,
    ReplaceCartIn,
    ValidateCartIn,
)
from coursestore.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=ApiResponse[CartOut])
def get_cart(
    buyer_id: str = Depends(get_buyer_id),
    svc: CartService = Depends(get_cart_service),
):
    return ApiResponse(data=svc.get_cart(buyer_id))


@router.put("", response_model=ApiResponse[CartOut])
def replace_cart(
    payload: ReplaceCartIn,
    buyer_id: str = Depends(get_buyer_id),
    svc: CartService = Depends(get_cart_service),
):
    cart = svc.replace(buyer_id, [line.to_line() for line in payload.lines])
    return ApiResponse(data=cart, message="Cart updated")


@router.delete("", response_model=ApiResponse[CartOut])
def clear_cart(
    buyer_id: str = Depends(get_buyer_id),
    svc: CartService = Depends(get_cart_service),
):
    return ApiResponse(data=svc.clear(buyer_id), message="Cart cleared")


@router.post("/items", response_model=ApiResponse[CartOut])
def add_item(
    payload: ItemIn,
    buyer_id: str = Depends(get_buyer_id),
    svc: CartService = Depends(get_cart_service),
):
    cart = svc.add_item(
        buyer_id=buyer_id,
        kind=payload.kind,
        item_id=payload.item_id,
        skip_ownership_check=payload.skip_ownership_check,
    )
    return ApiResponse(data=cart, message="Item added to cart")


@router.delete("/items/{kind}/{item_id}", response_model=ApiResponse[CartOut])
def remove_item(
    kind: ItemKind,
    item_id: str,
    buyer_id: str = Depends(get_buyer_id),
    svc: CartService = Depends(get_cart_service),
):
    return ApiResponse(data=svc.remove_line(buyer_id, kind, item_id), message="Item removed from cart")


@router.post("/merge", response_model=ApiResponse[CartOut])
def merge_cart(
    payload: ReplaceCartIn,
    buyer_id: str = Depends(get_buyer_id),
    svc: CartService = Depends(get_cart_service),
):
    cart = svc.merge(buyer_id, [line.to_line() for line in payload.lines])
    return ApiResponse(data=cart, message="Carts merged")


@router.post("/validate", response_model=ApiResponse[CartValidation])
def validate_cart(
    payload: ValidateCartIn | None = None,
    buyer_id: str = Depends(get_buyer_id),
    svc: CartService = Depends(get_cart_service),
):
    lines = None
    if payload is not None and payload.lines is not None:
        lines = [line.to_line() for line in payload.lines]
    return ApiResponse(data=svc.validate(buyer_id, lines))
