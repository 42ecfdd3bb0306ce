from fastapi import APIRouter, Depends, Query
from typing import Dict, Optional
import logging

from helaloans.core.auth_dependencies import get_admin_user
from helaloans.schemas.loan_schema import (
    ApplicationList,
    ApplicationStatusEnum,
    LoanApplicationResponse,
    StatusSummary,
)
from helaloans.schemas.payment_schema import (
    ManualVerificationRequest,
    PaymentList,
    PaymentPurposeEnum,
    PaymentRecordResponse,
    PaymentStateEnum,
)
from helaloans.schemas.support_schema import (
    SupportReplyRequest,
    SupportRequestList,
    SupportRequestResponse,
    SupportStatusEnum,
)
from helaloans.api.loan_routes import get_loan_application_service
from helaloans.api.payment_routes import get_reconciliation_service
from helaloans.api.support_routes import get_support_service
from helaloans.services.loan_service import LoanApplicationService
from helaloans.services.reconciliation_service import ReconciliationService
from helaloans.services.support_service import SupportService
from helaloans.services.audit_service import audit_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Administration"])


@router.get("/summary", response_model=StatusSummary)
async def get_summary(
    admin: Dict = Depends(get_admin_user),
    service: LoanApplicationService = Depends(get_loan_application_service),
    support: SupportService = Depends(get_support_service)
):
    summary = await service.status_summary()
    summary.pending_support = await support.count_pending()
    return summary

@router.get("/applications", response_model=ApplicationList)
async def list_applications(
    status: Optional[ApplicationStatusEnum] = Query(None, description="Filter by application status"),
    admin: Dict = Depends(get_admin_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    applications = await service.list_applications(status)
    return ApplicationList(
        data=[LoanApplicationResponse.from_data(a) for a in applications],
        total=len(applications)
    )

@router.post("/applications/{application_id}/approve", response_model=LoanApplicationResponse)
async def approve_application(
    application_id: str,
    admin: Dict = Depends(get_admin_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    application = await service.review_application(application_id, approve=True)
    await audit_service.record("approve_application", admin["email"], acted=application_id)
    return LoanApplicationResponse.from_data(application)

@router.post("/applications/{application_id}/reject", response_model=LoanApplicationResponse)
async def reject_application(
    application_id: str,
    admin: Dict = Depends(get_admin_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    application = await service.review_application(application_id, approve=False)
    await audit_service.record("reject_application", admin["email"], acted=application_id)
    return LoanApplicationResponse.from_data(application)

@router.get("/payments", response_model=PaymentList)
async def list_payments(
    state: Optional[PaymentStateEnum] = Query(None, description="pending, verified or failed"),
    purpose: Optional[PaymentPurposeEnum] = Query(None),
    admin: Dict = Depends(get_admin_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    records = await service.list_payments(state=state, purpose=purpose)
    return PaymentList(data=[PaymentRecordResponse.from_data(r) for r in records], total=len(records))

# Manual deposit verification for payments the gateway never reported
@router.post("/payments/{reference}/verify", response_model=PaymentRecordResponse)
async def verify_payment(
    reference: str,
    request_data: ManualVerificationRequest,
    admin: Dict = Depends(get_admin_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    result = await service.verify_manually(reference, request_data.verified, request_data.narrative)
    logger.info(f"Admin {admin['email']} verification of {reference}: {result.action.value}")
    await audit_service.record("verify_payment", admin["email"], acted=reference)
    return PaymentRecordResponse.from_data(result.record)

@router.post("/payments/{reference}/disburse", response_model=PaymentRecordResponse)
async def disburse_loan(
    reference: str,
    admin: Dict = Depends(get_admin_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    record = await service.mark_disbursed(reference)
    await audit_service.record("disburse_loan", admin["email"], acted=reference)
    return PaymentRecordResponse.from_data(record)

@router.get("/support", response_model=SupportRequestList)
async def list_support_requests(
    status: Optional[SupportStatusEnum] = Query(None, description="pending or resolved"),
    admin: Dict = Depends(get_admin_user),
    service: SupportService = Depends(get_support_service)
):
    requests = await service.list_requests(status)
    return SupportRequestList(data=[SupportRequestResponse.from_data(r) for r in requests], total=len(requests))

# Replying resolves the request
@router.post("/support/{request_id}/reply", response_model=SupportRequestResponse)
async def reply_to_support_request(
    request_id: str,
    request_data: SupportReplyRequest,
    admin: Dict = Depends(get_admin_user),
    service: SupportService = Depends(get_support_service)
):
    request = await service.reply(request_id, request_data.reply, admin)
    await audit_service.record("reply_support_request", admin["email"], acted=request_id)
    return SupportRequestResponse.from_data(request)
