"""
Store contracts consumed by the loan, reconciliation and support services, and
their MongoDB implementations.

Services only ever see the pydantic `*Data` models; Beanie documents stay
inside this module. Every state change that must happen at most once is a
single conditional `update` filtered on the current state, so overlapping
webhook deliveries are settled by MongoDB's per-document atomicity rather
than by in-process locks.
"""

import functools
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from beanie import UpdateResponse
from beanie.operators import Set, Inc
from pymongo.errors import ConnectionFailure, DuplicateKeyError, ExecutionTimeout, WTimeoutError

from helaloans.core.errors import ConflictError, TransientStoreError
from helaloans.database.models import LoanApplication, PaymentRecord, SavingsBalance, SupportRequest
from helaloans.schemas.loan_schema import LoanApplicationData, ApplicationStatusEnum
from helaloans.schemas.payment_schema import PaymentRecordData, PaymentPurposeEnum
from helaloans.schemas.support_schema import SupportRequestData, SupportStatusEnum

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (ConnectionFailure, ExecutionTimeout, WTimeoutError)

# Sentinel for "no filter" where None is itself a meaningful filter value
ANY = object()


def _translate_store_errors(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except _TRANSIENT_ERRORS as e:
            logger.error(f"Store unavailable during {func.__qualname__}: {e}")
            raise TransientStoreError("Data store temporarily unavailable; retry later") from e
    return wrapper


def _to_payment(doc: PaymentRecord) -> PaymentRecordData:
    return PaymentRecordData(**doc.model_dump(exclude={"id", "revision_id"}))

def _to_support(doc: SupportRequest) -> SupportRequestData:
    return SupportRequestData(**doc.model_dump(exclude={"id", "revision_id"}))

def _to_application(doc: LoanApplication) -> LoanApplicationData:
    return LoanApplicationData(**doc.model_dump(exclude={"id", "revision_id"}))


class PaymentRecordStore(Protocol):
    async def create(self, record: PaymentRecordData) -> PaymentRecordData: ...
    async def get_by_reference(self, reference: str) -> Optional[PaymentRecordData]: ...
    async def get_by_provider_reference(self, provider_reference: str) -> Optional[PaymentRecordData]: ...
    async def attach_provider_reference(self, reference: str, provider_reference: str) -> Optional[PaymentRecordData]: ...
    async def settle(self, reference: str, verified: bool, narrative: Optional[str] = None,
                     provider_reference: Optional[str] = None) -> Optional[PaymentRecordData]: ...
    async def list_records(self, user_id: Optional[str] = None, application_id: Optional[str] = None,
                           purpose: Optional[PaymentPurposeEnum] = None, verified=ANY) -> List[PaymentRecordData]: ...
    async def mark_disbursed(self, reference: str) -> Optional[PaymentRecordData]: ...


class BalanceStore(Protocol):
    async def get_balance(self, user_id: str) -> int: ...
    async def increment(self, user_id: str, amount: int) -> int: ...


class ApplicationStore(Protocol):
    async def create(self, application: LoanApplicationData) -> LoanApplicationData: ...
    async def get(self, application_id: str) -> Optional[LoanApplicationData]: ...
    async def list_applications(self, user_id: Optional[str] = None,
                                status: Optional[ApplicationStatusEnum] = None) -> List[LoanApplicationData]: ...
    async def update_selection(self, application_id: str, selected_amount: int,
                               processing_fee: int) -> Optional[LoanApplicationData]: ...
    async def transition_status(self, application_id: str, from_status: ApplicationStatusEnum,
                                to_status: ApplicationStatusEnum) -> Optional[LoanApplicationData]: ...
    async def count_by_status(self) -> Dict[str, int]: ...


class SupportStore(Protocol):
    async def create(self, request: SupportRequestData) -> SupportRequestData: ...
    async def get(self, request_id: str) -> Optional[SupportRequestData]: ...
    async def list_requests(self, user_id: Optional[str] = None,
                            status: Optional[SupportStatusEnum] = None) -> List[SupportRequestData]: ...
    async def resolve(self, request_id: str, reply: str, replied_by: str) -> Optional[SupportRequestData]: ...
    async def count_pending(self) -> int: ...


class MongoPaymentRecordStore:

    @_translate_store_errors
    async def create(self, record: PaymentRecordData) -> PaymentRecordData:
        doc = PaymentRecord(**record.model_dump())
        try:
            await doc.insert()
        except DuplicateKeyError as e:
            raise ConflictError(f"Transaction reference already exists: {record.reference}") from e
        return _to_payment(doc)

    @_translate_store_errors
    async def get_by_reference(self, reference: str) -> Optional[PaymentRecordData]:
        doc = await PaymentRecord.find_one(PaymentRecord.reference == reference)
        return _to_payment(doc) if doc else None

    @_translate_store_errors
    async def get_by_provider_reference(self, provider_reference: str) -> Optional[PaymentRecordData]:
        doc = await PaymentRecord.find_one(PaymentRecord.provider_reference == provider_reference)
        return _to_payment(doc) if doc else None

    @_translate_store_errors
    async def attach_provider_reference(self, reference: str, provider_reference: str) -> Optional[PaymentRecordData]:
        """Store the gateway's request id on a record that is still pending."""
        doc = await PaymentRecord.find_one(
            PaymentRecord.reference == reference,
            PaymentRecord.verified == None,  # noqa: E711
        ).update(
            Set({PaymentRecord.provider_reference: provider_reference,
                 PaymentRecord.updated_at: datetime.now(timezone.utc)}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return _to_payment(doc) if doc else None

    @_translate_store_errors
    async def settle(self, reference: str, verified: bool, narrative: Optional[str] = None,
                     provider_reference: Optional[str] = None) -> Optional[PaymentRecordData]:
        """Move a pending record to a terminal state. Returns None if it was not pending."""
        changes = {
            PaymentRecord.verified: verified,
            PaymentRecord.narrative: narrative,
            PaymentRecord.updated_at: datetime.now(timezone.utc),
        }
        if provider_reference:
            changes[PaymentRecord.provider_reference] = provider_reference

        doc = await PaymentRecord.find_one(
            PaymentRecord.reference == reference,
            PaymentRecord.verified == None,  # noqa: E711 (builds a Mongo null filter)
        ).update(Set(changes), response_type=UpdateResponse.NEW_DOCUMENT)
        return _to_payment(doc) if doc else None

    @_translate_store_errors
    async def list_records(self, user_id: Optional[str] = None, application_id: Optional[str] = None,
                           purpose: Optional[PaymentPurposeEnum] = None, verified=ANY) -> List[PaymentRecordData]:
        query = {}
        if user_id:
            query["user_id"] = user_id
        if application_id:
            query["application_id"] = application_id
        if purpose:
            query["purpose"] = purpose.value
        if verified is not ANY:
            query["verified"] = verified
        docs = await PaymentRecord.find(query).sort("-created_at").to_list()
        return [_to_payment(d) for d in docs]

    @_translate_store_errors
    async def mark_disbursed(self, reference: str) -> Optional[PaymentRecordData]:
        now = datetime.now(timezone.utc)
        doc = await PaymentRecord.find_one(
            PaymentRecord.reference == reference,
            PaymentRecord.verified == True,  # noqa: E712
            PaymentRecord.disbursed == False,  # noqa: E712
        ).update(
            Set({PaymentRecord.disbursed: True, PaymentRecord.disbursed_at: now, PaymentRecord.updated_at: now}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return _to_payment(doc) if doc else None


class MongoBalanceStore:

    @_translate_store_errors
    async def get_balance(self, user_id: str) -> int:
        doc = await SavingsBalance.find_one(SavingsBalance.user_id == user_id)
        return doc.balance if doc else 0

    @_translate_store_errors
    async def increment(self, user_id: str, amount: int) -> int:
        now = datetime.now(timezone.utc)
        query = SavingsBalance.find_one(SavingsBalance.user_id == user_id)
        try:
            await query.upsert(
                Inc({SavingsBalance.balance: amount}),
                Set({SavingsBalance.updated_at: now}),
                on_insert=SavingsBalance(user_id=user_id, balance=amount, updated_at=now),
            )
        except DuplicateKeyError:
            # Another request created the row between our update and insert
            logger.info(f"Savings row for {user_id} created concurrently; retrying increment")
            await SavingsBalance.find_one(SavingsBalance.user_id == user_id).update(
                Inc({SavingsBalance.balance: amount}), Set({SavingsBalance.updated_at: now})
            )
        return await self.get_balance(user_id)


class MongoApplicationStore:

    @_translate_store_errors
    async def create(self, application: LoanApplicationData) -> LoanApplicationData:
        doc = LoanApplication(**application.model_dump())
        await doc.insert()
        return _to_application(doc)

    @_translate_store_errors
    async def get(self, application_id: str) -> Optional[LoanApplicationData]:
        doc = await LoanApplication.find_one(LoanApplication.application_id == application_id)
        return _to_application(doc) if doc else None

    @_translate_store_errors
    async def list_applications(self, user_id: Optional[str] = None,
                                status: Optional[ApplicationStatusEnum] = None) -> List[LoanApplicationData]:
        query = {}
        if user_id:
            query["user_id"] = user_id
        if status:
            query["status"] = status.value
        docs = await LoanApplication.find(query).sort("-created_at").to_list()
        return [_to_application(d) for d in docs]

    @_translate_store_errors
    async def update_selection(self, application_id: str, selected_amount: int,
                               processing_fee: int) -> Optional[LoanApplicationData]:
        doc = await LoanApplication.find_one(
            LoanApplication.application_id == application_id,
            LoanApplication.status == ApplicationStatusEnum.pending,
        ).update(
            Set({
                LoanApplication.selected_amount: selected_amount,
                LoanApplication.processing_fee: processing_fee,
                LoanApplication.updated_at: datetime.now(timezone.utc),
            }),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return _to_application(doc) if doc else None

    @_translate_store_errors
    async def transition_status(self, application_id: str, from_status: ApplicationStatusEnum,
                                to_status: ApplicationStatusEnum) -> Optional[LoanApplicationData]:
        doc = await LoanApplication.find_one(
            LoanApplication.application_id == application_id,
            LoanApplication.status == from_status,
        ).update(
            Set({LoanApplication.status: to_status, LoanApplication.updated_at: datetime.now(timezone.utc)}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return _to_application(doc) if doc else None

    @_translate_store_errors
    async def count_by_status(self) -> Dict[str, int]:
        counts = {}
        for status in ApplicationStatusEnum:
            counts[status.value] = await LoanApplication.find(LoanApplication.status == status).count()
        return counts


class MongoSupportStore:

    @_translate_store_errors
    async def create(self, request: SupportRequestData) -> SupportRequestData:
        doc = SupportRequest(**request.model_dump())
        await doc.insert()
        return _to_support(doc)

    @_translate_store_errors
    async def get(self, request_id: str) -> Optional[SupportRequestData]:
        doc = await SupportRequest.find_one(SupportRequest.request_id == request_id)
        return _to_support(doc) if doc else None

    @_translate_store_errors
    async def list_requests(self, user_id: Optional[str] = None,
                            status: Optional[SupportStatusEnum] = None) -> List[SupportRequestData]:
        query = {}
        if user_id:
            query["user_id"] = user_id
        if status:
            query["status"] = status.value
        docs = await SupportRequest.find(query).sort("-created_at").to_list()
        return [_to_support(d) for d in docs]

    @_translate_store_errors
    async def resolve(self, request_id: str, reply: str, replied_by: str) -> Optional[SupportRequestData]:
        """Record the staff reply on a pending request. Returns None if it was already resolved."""
        doc = await SupportRequest.find_one(
            SupportRequest.request_id == request_id,
            SupportRequest.status == SupportStatusEnum.pending,
        ).update(
            Set({
                SupportRequest.admin_reply: reply,
                SupportRequest.replied_by: replied_by,
                SupportRequest.replied_at: datetime.now(timezone.utc),
                SupportRequest.status: SupportStatusEnum.resolved,
            }),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return _to_support(doc) if doc else None

    @_translate_store_errors
    async def count_pending(self) -> int:
        return await SupportRequest.find(SupportRequest.status == SupportStatusEnum.pending).count()
