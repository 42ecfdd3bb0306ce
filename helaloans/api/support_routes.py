from fastapi import APIRouter, HTTPException, Depends
from fastapi import status
from typing import Dict
import logging

from helaloans.core.auth_dependencies import get_current_user
from helaloans.schemas.support_schema import SupportRequestCreate, SupportRequestList, SupportRequestResponse
from helaloans.services.support_service import SupportService, support_service
from helaloans.services.audit_service import audit_service

logger = logging.getLogger(__name__)


def get_support_service() -> SupportService:
    if support_service is None:
        logger.error("Support service is not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Support service is not initialized. Please contact system administrator."
        )
    return support_service

router = APIRouter(prefix="/support", tags=["Support"])


@router.post("/requests", response_model=SupportRequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_support_request(
    request_data: SupportRequestCreate,
    current_user: Dict = Depends(get_current_user),
    service: SupportService = Depends(get_support_service)
):
    request = await service.submit_request(current_user, request_data.message)
    await audit_service.record("submit_support_request", current_user["email"], acted=request.request_id)
    return SupportRequestResponse.from_data(request)

# The caller's own requests, newest first, with any staff replies
@router.get("/requests", response_model=SupportRequestList)
async def list_my_support_requests(
    current_user: Dict = Depends(get_current_user),
    service: SupportService = Depends(get_support_service)
):
    requests = await service.list_user_requests(current_user)
    return SupportRequestList(data=[SupportRequestResponse.from_data(r) for r in requests], total=len(requests))
