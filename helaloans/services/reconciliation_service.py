import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from helaloans.core.errors import ValidationError, ConflictError, NotFoundError, InvalidCallbackError
from helaloans.schemas.loan_schema import ApplicationStatusEnum
from helaloans.schemas.payment_schema import (
    PaymentCallback,
    PaymentOutcome,
    PaymentPurposeEnum,
    PaymentRecordData,
    FlatCallbackPayload,
    EnvelopeCallbackPayload,
    DarajaCallbackPayload,
)
from helaloans.services.stores import (
    PaymentRecordStore,
    BalanceStore,
    ApplicationStore,
    MongoPaymentRecordStore,
    MongoBalanceStore,
    MongoApplicationStore,
)

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"success", "successful"})
FAILURE_STATUSES = frozenset({"failed", "cancelled"})
# Daraja ResultCode for a prompt the payer dismissed
DARAJA_CANCELLED_RESULT_CODE = 1032


class ReconciliationAction(str, Enum):
    verified = "verified"
    failed = "failed"
    already_settled = "already_settled"
    still_pending = "still_pending"


@dataclass
class ReconciliationResult:
    action: ReconciliationAction
    record: PaymentRecordData
    balance: Optional[int] = None

    @property
    def message(self) -> str:
        if self.action == ReconciliationAction.verified:
            return "Payment verified"
        if self.action == ReconciliationAction.failed:
            return "Payment marked as failed"
        if self.action == ReconciliationAction.already_settled:
            return "Payment already settled; no changes applied"
        return "Payment still pending; no changes applied"


def classify_status(status: Any) -> PaymentOutcome:
    """Map a gateway status string onto success, failure or (anything else) pending."""
    if status is None:
        return PaymentOutcome.pending
    normalized = str(status).strip().lower()
    if normalized in SUCCESS_STATUSES:
        return PaymentOutcome.success
    if normalized in FAILURE_STATUSES:
        return PaymentOutcome.failure
    return PaymentOutcome.pending


def _describe_errors(exc: PydanticValidationError) -> list:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]


def _daraja_status(result_code: int) -> str:
    if result_code == 0:
        return "Success"
    if result_code == DARAJA_CANCELLED_RESULT_CODE:
        return "Cancelled"
    return "Failed"


def _parse_daraja(payload: dict) -> PaymentCallback:
    stk = DarajaCallbackPayload.model_validate(payload).Body.stkCallback
    metadata = stk.metadata()
    status = _daraja_status(stk.ResultCode)
    narrative = stk.ResultDesc
    receipt = metadata.get("MpesaReceiptNumber")
    if receipt:
        narrative = f"{narrative or 'Payment confirmed by M-Pesa'} (receipt {receipt})"
    # CheckoutRequestID stays the provider reference so repeat deliveries still match
    return PaymentCallback(
        status=status,
        outcome=classify_status(status),
        amount=metadata.get("Amount"),
        provider_reference=stk.CheckoutRequestID.strip(),
        narrative=narrative,
    )


def parse_callback(payload: Any) -> PaymentCallback:
    """
    Validate a raw webhook body and normalise it to a PaymentCallback.

    Three shapes are accepted: the flat body
    ``{status, external_reference, amount, provider_reference, result_desc}``,
    PayHero's envelope ``{status: bool, response: {Status,
    ExternalReference, Amount, MpesaReceiptNumber, ResultDesc}}`` and
    Daraja's ``{Body: {stkCallback: {CheckoutRequestID, ResultCode,
    ResultDesc, CallbackMetadata}}}``. Daraja callbacks come back without
    our reference and are matched on CheckoutRequestID instead.
    Anything else raises InvalidCallbackError.
    """
    if not isinstance(payload, dict):
        raise InvalidCallbackError("Callback body must be a JSON object")

    try:
        if isinstance(payload.get("Body"), dict):
            callback = _parse_daraja(payload)
            if not callback.provider_reference:
                raise InvalidCallbackError("Callback is missing the CheckoutRequestID")
            return callback
        if isinstance(payload.get("response"), dict):
            body = EnvelopeCallbackPayload.model_validate(payload).response
            reference = body.ExternalReference
            status = body.Status
            amount = body.Amount
            provider_reference = body.MpesaReceiptNumber
            narrative = body.ResultDesc
        else:
            flat = FlatCallbackPayload.model_validate(payload)
            reference = flat.external_reference
            status = flat.status
            amount = flat.amount
            provider_reference = flat.provider_reference
            narrative = flat.result_desc
    except PydanticValidationError as e:
        raise InvalidCallbackError(
            "Unrecognised callback payload",
            details={"errors": _describe_errors(e)},
        ) from e

    reference = reference.strip()
    if not reference:
        raise InvalidCallbackError("Callback is missing the external reference")

    return PaymentCallback(
        reference=reference,
        status=status,
        outcome=classify_status(status),
        amount=amount,
        provider_reference=provider_reference or None,
        narrative=narrative,
    )


class ReconciliationService:
    """
    Applies gateway outcomes to payment records.

    A record moves PENDING -> VERIFIED or PENDING -> FAILED exactly once.
    Only the request whose conditional update wins that transition applies
    side effects (balance increment or application approval), so duplicate
    and out-of-order callbacks are harmless.
    """

    def __init__(self,
                 records: PaymentRecordStore,
                 balances: BalanceStore,
                 applications: ApplicationStore):
        self.records = records
        self.balances = balances
        self.applications = applications
        logger.info("ReconciliationService initialized")

    # Creates a pending payment record before the gateway is asked to charge the payer
    async def record_payment_attempt(
        self,
        owner_id: str,
        amount: int,
        reference: str,
        purpose: PaymentPurposeEnum = PaymentPurposeEnum.savings_deposit,
        application_id: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> PaymentRecordData:
        if not owner_id:
            raise ValidationError("Payment owner is required")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be a positive whole number", details={"amount": amount})
        if not reference or not reference.strip():
            raise ValidationError("Transaction reference is required")
        if purpose == PaymentPurposeEnum.loan_fee and not application_id:
            raise ValidationError("A loan fee payment must reference an application")

        reference = reference.strip()
        if await self.records.get_by_reference(reference):
            raise ConflictError(f"Transaction reference already exists: {reference}")

        record = PaymentRecordData(
            record_id=str(uuid4()),
            purpose=purpose,
            user_id=owner_id,
            application_id=application_id,
            amount=amount,
            phone=phone,
            reference=reference,
        )
        created = await self.records.create(record)
        logger.info(f"Recorded pending {purpose.value} payment {reference} of KES {amount} for {owner_id}")
        return created

    async def apply_callback(
        self,
        reference: str,
        outcome: Union[PaymentOutcome, str],
        provider_reference: Optional[str] = None,
        narrative: Optional[str] = None,
        reported_amount: Optional[float] = None,
    ) -> ReconciliationResult:
        if not reference or not reference.strip():
            raise InvalidCallbackError("Callback is missing the external reference")
        reference = reference.strip()
        if not isinstance(outcome, PaymentOutcome):
            outcome = classify_status(outcome)

        record = await self.records.get_by_reference(reference)
        if record is None:
            raise NotFoundError(f"No payment record for reference {reference}")

        if reported_amount is not None and not math.isfinite(reported_amount):
            raise InvalidCallbackError("Callback amount must be a finite number",
                                       details={"amount": str(reported_amount)})
        if reported_amount is not None and int(reported_amount) != record.amount:
            logger.warning(
                f"Callback amount {reported_amount} differs from recorded amount {record.amount} for {reference}"
            )

        if record.is_terminal:
            logger.info(f"Payment {reference} already {record.state.value}; ignoring {outcome.value} callback")
            return ReconciliationResult(ReconciliationAction.already_settled, record)

        if outcome == PaymentOutcome.pending:
            logger.info(f"Payment {reference} reported as still pending")
            return ReconciliationResult(ReconciliationAction.still_pending, record)

        success = outcome == PaymentOutcome.success
        default_narrative = "Payment confirmed by gateway" if success else "Payment failed or was cancelled"
        settled = await self.records.settle(
            reference,
            verified=success,
            narrative=narrative or default_narrative,
            provider_reference=provider_reference,
        )
        if settled is None:
            # A concurrent delivery settled the record first and owns the side effects
            current = await self.records.get_by_reference(reference) or record
            logger.info(f"Payment {reference} settled concurrently as {current.state.value}")
            return ReconciliationResult(ReconciliationAction.already_settled, current)

        if not success:
            logger.info(f"Payment {reference} marked failed: {settled.narrative}")
            return ReconciliationResult(ReconciliationAction.failed, settled)

        balance = await self._apply_success_effects(settled)
        return ReconciliationResult(ReconciliationAction.verified, settled, balance=balance)

    async def _apply_success_effects(self, record: PaymentRecordData) -> Optional[int]:
        if record.purpose == PaymentPurposeEnum.loan_fee:
            approved = await self.applications.transition_status(
                record.application_id,
                ApplicationStatusEnum.pending,
                ApplicationStatusEnum.approved,
            )
            if approved:
                logger.info(f"Loan application approved for: {record.application_id}")
            else:
                logger.warning(
                    f"Fee {record.reference} verified but application {record.application_id} was not pending"
                )
            return None

        balance = await self.balances.increment(record.user_id, record.amount)
        logger.info(f"Savings deposit {record.reference} verified for user {record.user_id}; balance now {balance}")
        return balance

    async def handle_gateway_callback(self, payload: Any) -> ReconciliationResult:
        callback = parse_callback(payload)
        reference = callback.reference
        if reference is None:
            record = await self.records.get_by_provider_reference(callback.provider_reference)
            if record is None:
                raise NotFoundError(f"No payment record for checkout request {callback.provider_reference}")
            reference = record.reference
        logger.info(f"Applying {callback.outcome.value} callback ({callback.status}) for {reference}")
        return await self.apply_callback(
            reference,
            callback.outcome,
            provider_reference=callback.provider_reference,
            narrative=callback.narrative,
            reported_amount=callback.amount,
        )

    # Staff confirmation of a deposit follows the same one-shot transition as the webhook
    async def verify_manually(self, reference: str, verified: bool = True,
                              narrative: Optional[str] = None) -> ReconciliationResult:
        outcome = PaymentOutcome.success if verified else PaymentOutcome.failure
        note = narrative or ("Verified by administrator" if verified else "Rejected by administrator")
        return await self.apply_callback(reference, outcome, narrative=note)


reconciliation_service = ReconciliationService(
    MongoPaymentRecordStore(),
    MongoBalanceStore(),
    MongoApplicationStore(),
)
