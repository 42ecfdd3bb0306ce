from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi import status
from fastapi.responses import JSONResponse
from typing import Dict
import json
import logging

from helaloans.core.auth_dependencies import get_current_user
from helaloans.core.config import settings
from helaloans.core.errors import InvalidCallbackError, NotFoundError, TransientStoreError
from helaloans.schemas.payment_schema import (
    CallbackAck,
    LoanFeePaymentRequest,
    SavingsDepositRequest,
    StkPushResponse,
    PaymentRecordResponse,
)
from helaloans.services.payment_service import PaymentService, payment_service
from helaloans.services.reconciliation_service import ReconciliationService, reconciliation_service
from helaloans.services.audit_service import audit_service

logger = logging.getLogger(__name__)


def get_payment_service() -> PaymentService:
    if payment_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment service is not initialized. Please contact system administrator."
        )
    return payment_service

def get_reconciliation_service() -> ReconciliationService:
    if reconciliation_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reconciliation service is not initialized."
        )
    return reconciliation_service


router = APIRouter(prefix="/payments", tags=["Payments"])


def _ack(status_code: int, success: bool, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=CallbackAck(success=success, message=message).model_dump())


# Sends an STK push for the activation fee of the caller's application
@router.post("/stk-push/loan-fee", response_model=StkPushResponse)
async def pay_loan_fee(
    request_data: LoanFeePaymentRequest,
    current_user: Dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    result = await service.initiate_loan_fee_payment(
        current_user, request_data.application_id, request_data.phone_number
    )
    await audit_service.record("initiate_loan_fee", current_user["email"], acted=result.reference)
    return result

# Sends an STK push that funds the caller's savings balance
@router.post("/stk-push/deposit", response_model=StkPushResponse)
async def deposit_savings(
    request_data: SavingsDepositRequest,
    current_user: Dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    result = await service.initiate_savings_deposit(current_user, request_data.amount, request_data.phone_number)
    await audit_service.record("initiate_deposit", current_user["email"], acted=result.reference)
    return result

# Webhook for PayHero and Daraja payment results. Business-level misses are acknowledged
# with 200 so the gateway does not keep retrying them.
@router.post("/callback", response_model=CallbackAck)
async def payment_callback(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Gateway callback with unparseable body rejected")
        return _ack(status.HTTP_400_BAD_REQUEST, False, "Callback body must be valid JSON")

    logger.info(f"Gateway callback received: {json.dumps(payload, default=str)}")

    try:
        result = await service.handle_gateway_callback(payload)
    except InvalidCallbackError as e:
        logger.warning(f"Invalid callback rejected: {e.message} {e.details}")
        return _ack(status.HTTP_400_BAD_REQUEST, False, e.message)
    except NotFoundError as e:
        logger.warning(f"Callback for unknown reference acknowledged: {e.message}")
        return _ack(status.HTTP_200_OK, True, "Callback acknowledged; unknown reference")
    except TransientStoreError as e:
        logger.error(f"Callback could not be applied, store unavailable: {e.message}")
        return _ack(status.HTTP_503_SERVICE_UNAVAILABLE, False, e.message)
    except Exception as e:
        logger.exception(f"Error processing gateway callback: {e}")
        return _ack(status.HTTP_500_INTERNAL_SERVER_ERROR, False, "Internal error processing callback")

    await audit_service.record(f"payment_{result.action.value}", settings.PAYMENT_GATEWAY, acted=result.record.reference)
    return _ack(status.HTTP_200_OK, True, result.message)

# Polling endpoint reflecting the same record the webhook settles
@router.get("/{reference}", response_model=PaymentRecordResponse)
async def get_payment_status(
    reference: str,
    current_user: Dict = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    record = await service.get_payment_status(current_user, reference)
    return PaymentRecordResponse.from_data(record)
