# coursestore/api/routers/access.py
from typing import Dict, List, Union

from fastapi import APIRouter, Depends, Query

from coursestore.api.dependencies import get_access_service, get_buyer_id, get_ledger_service
from coursestore.domain.errors import ValidationError
from coursestore.domain.schemas import (
    AccessCheckIn,
    AccessInfo,
    ApiResponse,
    EntitlementOut,
    EntitlementWithPurchaseOut,
)
from coursestore.services.access_service import AccessService
from coursestore.services.ledger_service import LedgerService
from coursestore.utils.settings import EXPIRING_SOON_DAYS

router = APIRouter(tags=["access"])


@router.post("/access/check", response_model=ApiResponse[Union[AccessInfo, Dict[str, AccessInfo]]])
def check_access(
    payload: AccessCheckIn,
    buyer_id: str = Depends(get_buyer_id),
    svc: AccessService = Depends(get_access_service),
):
    if payload.course_ids:
        return ApiResponse(data=svc.check_multiple_access(buyer_id, payload.course_ids))
    if payload.course_id:
        return ApiResponse(data=svc.check_access(buyer_id, payload.course_id))
    raise ValidationError("course_id or course_ids is required")


@router.get("/access/owned-courses", response_model=ApiResponse[List[str]])
def owned_courses(
    buyer_id: str = Depends(get_buyer_id),
    svc: AccessService = Depends(get_access_service),
):
    return ApiResponse(data=svc.owned_course_ids(buyer_id))


@router.get("/entitlements", response_model=ApiResponse[List[EntitlementOut]])
def list_entitlements(
    active_only: bool = Query(True),
    buyer_id: str = Depends(get_buyer_id),
    svc: LedgerService = Depends(get_ledger_service),
):
    return ApiResponse(data=svc.list_entitlements(buyer_id, active_only=active_only))


@router.get("/entitlements/expiring", response_model=ApiResponse[List[EntitlementOut]])
def expiring_entitlements(
    days: int = Query(EXPIRING_SOON_DAYS),
    buyer_id: str = Depends(get_buyer_id),
    svc: LedgerService = Depends(get_ledger_service),
):
    return ApiResponse(data=svc.expiring_soon(buyer_id, days))


@router.get("/entitlements/with-purchase", response_model=ApiResponse[List[EntitlementWithPurchaseOut]])
def entitlements_with_purchase(
    buyer_id: str = Depends(get_buyer_id),
    svc: LedgerService = Depends(get_ledger_service),
):
    return ApiResponse(data=svc.entitlements_with_purchase(buyer_id))
