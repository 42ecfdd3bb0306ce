import logging
from typing import Dict, Any, Optional, Protocol

from helaloans.core.config import settings
from helaloans.core.errors import ConflictError, ExternalGatewayError, NotFoundError, ValidationError
from helaloans.schemas.loan_schema import ApplicationStatusEnum
from helaloans.schemas.payment_schema import (
    PaymentOutcome,
    PaymentPurposeEnum,
    PaymentRecordData,
    StkPushResult,
    StkPushResponse,
)
from helaloans.services.daraja_client import DarajaClient
from helaloans.services.payhero_client import PayHeroClient, normalize_phone, generate_reference
from helaloans.services.reconciliation_service import ReconciliationService, reconciliation_service
from helaloans.services.stores import ApplicationStore, MongoApplicationStore

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    async def initiate_push(self, phone_number: str, amount: int,
                            reference: Optional[str] = None) -> StkPushResult: ...


def build_gateway(name: Optional[str] = None) -> PaymentGateway:
    """Pick the STK push gateway named by PAYMENT_GATEWAY."""
    name = (name or settings.PAYMENT_GATEWAY).strip().lower()
    if name == "payhero":
        return PayHeroClient()
    if name == "daraja":
        return DarajaClient()
    raise ValueError(f"Unknown payment gateway: {name}")


class PaymentService:
    """Starts STK push payments and reports their state back to the payer."""

    def __init__(self,
                 reconciliation: ReconciliationService,
                 applications: ApplicationStore,
                 gateway: PaymentGateway):
        self.reconciliation = reconciliation
        self.applications = applications
        self.gateway = gateway

    async def _push(self, user: Dict[str, Any], amount: int, phone: str,
                    purpose: PaymentPurposeEnum, application_id: str = None) -> StkPushResponse:
        formatted_phone = normalize_phone(phone)
        reference = generate_reference()

        # The record must exist before the prompt reaches the phone, or a fast
        # callback would find nothing to settle.
        await self.reconciliation.record_payment_attempt(
            user["id"],
            amount,
            reference,
            purpose=purpose,
            application_id=application_id,
            phone=formatted_phone,
        )

        try:
            result = await self.gateway.initiate_push(formatted_phone, amount, reference=reference)
        except ExternalGatewayError as e:
            logger.error(f"STK push {reference} rejected: {e.message}")
            await self.reconciliation.apply_callback(reference, PaymentOutcome.failure, narrative=e.message)
            raise

        # Daraja callbacks are matched on this id, so it is kept with the record
        if result.provider_reference:
            await self.reconciliation.records.attach_provider_reference(reference, result.provider_reference)

        return StkPushResponse(
            message="STK Push sent successfully. Check your phone for the M-Pesa prompt.",
            reference=result.reference,
            provider_reference=result.provider_reference,
            amount=amount,
        )

    async def initiate_loan_fee_payment(self, user: Dict[str, Any], application_id: str, phone: str) -> StkPushResponse:
        application = await self.applications.get(application_id)
        if application is None or application.user_id != user["id"]:
            raise NotFoundError("Loan application not found")
        if application.status != ApplicationStatusEnum.pending:
            raise ConflictError(f"Application is already {application.status.value}")
        if not application.selected_amount or not application.processing_fee:
            raise ValidationError("Select a loan amount before paying the activation fee")

        paid = await self.reconciliation.records.list_records(
            application_id=application_id, purpose=PaymentPurposeEnum.loan_fee, verified=True
        )
        if paid:
            raise ConflictError("The activation fee for this application has already been paid")

        logger.info(f"Initiating activation fee of KES {application.processing_fee} for application {application_id}")
        return await self._push(
            user, application.processing_fee, phone, PaymentPurposeEnum.loan_fee, application_id=application_id
        )

    async def initiate_savings_deposit(self, user: Dict[str, Any], amount: int, phone: str) -> StkPushResponse:
        if amount <= 0:
            raise ValidationError("Deposit amount must be greater than zero")
        logger.info(f"Initiating savings deposit of KES {amount} for user {user['id']}")
        return await self._push(user, amount, phone, PaymentPurposeEnum.savings_deposit)

    async def get_payment_status(self, user: Dict[str, Any], reference: str) -> PaymentRecordData:
        record = await self.reconciliation.records.get_by_reference(reference)
        if record is None or (record.user_id != user["id"] and user.get("role") != "admin"):
            raise NotFoundError("Payment not found")
        return record


payment_service = PaymentService(reconciliation_service, MongoApplicationStore(), build_gateway())
