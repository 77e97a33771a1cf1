# coursestore/api/routers/purchases.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from coursestore.api.dependencies import get_buyer_id, get_ledger_service
from coursestore.domain.schemas import ApiResponse, InvoiceOut, PurchaseOut, PurchaseStats
from coursestore.services.ledger_service import LedgerService

router = APIRouter(prefix="/purchases", tags=["purchases"])


@router.get("", response_model=ApiResponse[List[PurchaseOut]])
def list_purchases(
    status: Optional[str] = Query(None),
    buyer_id: str = Depends(get_buyer_id),
    svc: LedgerService = Depends(get_ledger_service),
):
    return ApiResponse(data=svc.list_purchases(buyer_id, status))


# declared before /{purchase_id} so "stats" is not read as an id
@router.get("/stats", response_model=ApiResponse[PurchaseStats])
def purchase_stats(
    buyer_id: str = Depends(get_buyer_id),
    svc: LedgerService = Depends(get_ledger_service),
):
    return ApiResponse(data=svc.stats(buyer_id))


@router.get("/{purchase_id}/invoice", response_model=ApiResponse[InvoiceOut])
def purchase_invoice(
    purchase_id: str,
    buyer_id: str = Depends(get_buyer_id),
    svc: LedgerService = Depends(get_ledger_service),
):
    return ApiResponse(data=svc.invoice(buyer_id, purchase_id))


@router.get("/{purchase_id}", response_model=ApiResponse[PurchaseOut])
def get_purchase(
    purchase_id: str,
    buyer_id: str = Depends(get_buyer_id),
    svc: LedgerService = Depends(get_ledger_service),
):
    return ApiResponse(data=svc.get_purchase(buyer_id, purchase_id))
