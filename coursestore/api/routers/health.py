# coursestore/api/routers/health.py
from fastapi import APIRouter

from coursestore.domain.schemas import ApiResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=ApiResponse[dict])
def health():
    return ApiResponse(data={"status": "ok"})
