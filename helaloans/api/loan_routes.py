from fastapi import APIRouter, HTTPException, Depends, Query
from fastapi import status
from typing import Dict, Any
import logging

from helaloans.services.loan_service import LoanApplicationService, loan_application_service
from helaloans.services.eligibility_service import quote_fee
from helaloans.schemas.loan_schema import (
    LoanApplicationRequest,
    LoanApplicationResponse,
    LoanSelectionRequest,
    ApplicationList,
    FeeQuote,
)
from helaloans.core.auth_dependencies import get_current_user, get_terms_accepted_user
from helaloans.services.audit_service import audit_service

logger = logging.getLogger(__name__)

# Returns the loan application service instance or raises an error if unavailable
def get_loan_application_service() -> LoanApplicationService:
    if loan_application_service is None:
        logger.error("Loan application service is not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Loan application service is not initialized. Please contact system administrator."
        )
    return loan_application_service

router = APIRouter(prefix="/loans", tags=["Loan Applications"])

# Submits an application and returns the computed loan limit
@router.post("/applications", response_model=LoanApplicationResponse, status_code=status.HTTP_201_CREATED)
async def create_loan_application(
    request_data: LoanApplicationRequest,
    current_user: Dict = Depends(get_terms_accepted_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    application = await service.submit_application(current_user, request_data.profile)
    await audit_service.record("create_application", current_user["email"], acted=application.application_id)
    return LoanApplicationResponse.from_data(application)

# Lists the authenticated user's applications, newest first
@router.get("/applications", response_model=ApplicationList)
async def list_my_applications(
    current_user: Dict = Depends(get_current_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    applications = await service.list_user_applications(current_user["id"])
    return ApplicationList(
        data=[LoanApplicationResponse.from_data(a) for a in applications],
        total=len(applications)
    )

@router.get("/applications/{application_id}", response_model=LoanApplicationResponse)
async def get_loan_application(
    application_id: str,
    current_user: Dict = Depends(get_current_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    application = await service.get_application(current_user, application_id)
    return LoanApplicationResponse.from_data(application)

# Saves the amount to borrow and the activation fee that goes with it
@router.post("/applications/{application_id}/selection", response_model=LoanApplicationResponse)
async def select_loan_amount(
    application_id: str,
    selection: LoanSelectionRequest,
    current_user: Dict = Depends(get_current_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    application = await service.select_amount(current_user, application_id, selection.amount)
    return LoanApplicationResponse.from_data(application)

# Previews the activation fee for an amount without saving anything
@router.get("/fee-quote", response_model=FeeQuote)
async def get_fee_quote(
    amount: int = Query(..., ge=0, description="Amount the applicant wants to borrow"),
    loan_limit: int = Query(..., ge=0, description="Applicant's loan limit"),
    current_user: Dict = Depends(get_current_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    return quote_fee(amount, loan_limit, service.policy)

@router.get("/dashboard", response_model=Dict[str, Any])
async def get_dashboard(
    current_user: Dict = Depends(get_current_user),
    service: LoanApplicationService = Depends(get_loan_application_service)
):
    return await service.get_dashboard(current_user)
