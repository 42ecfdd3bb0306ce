import pytest
import pytest_asyncio
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient

from helaloans.core.errors import ConflictError, NotFoundError
from helaloans.database.connection import DOCUMENT_MODELS
from helaloans.database.models import User
from helaloans.schemas import ProfileUpdate
from helaloans.schemas.loan_schema import ApplicationStatusEnum, LoanApplicationData
from helaloans.schemas.payment_schema import PaymentOutcome, PaymentPurposeEnum, PaymentRecordData
from helaloans.schemas.support_schema import SupportRequestData, SupportStatusEnum
from helaloans.services.auth_service import auth_service
from helaloans.services.reconciliation_service import ReconciliationAction, ReconciliationService
from helaloans.services.stores import (
    ANY,
    MongoApplicationStore,
    MongoBalanceStore,
    MongoPaymentRecordStore,
    MongoSupportStore,
)


@pytest_asyncio.fixture
async def mongo():
    client = AsyncMongoMockClient()
    await init_beanie(database=client["helaloans_test"], document_models=DOCUMENT_MODELS)
    return client


def _payment(reference="REF1", amount=500, purpose=PaymentPurposeEnum.savings_deposit, application_id=None):
    return PaymentRecordData(
        record_id=f"rec-{reference}", purpose=purpose, user_id="user-1",
        application_id=application_id, amount=amount, reference=reference,
    )


@pytest.mark.asyncio
async def test_settle_applies_only_the_first_outcome(mongo):
    store = MongoPaymentRecordStore()
    await store.create(_payment())

    first = await store.settle("REF1", verified=True, narrative="confirmed", provider_reference="QK12ABC")
    assert first is not None
    assert first.verified is True
    assert first.provider_reference == "QK12ABC"

    assert await store.settle("REF1", verified=True) is None
    assert await store.settle("REF1", verified=False, narrative="late failure") is None

    current = await store.get_by_reference("REF1")
    assert current.verified is True
    assert current.narrative == "confirmed"


@pytest.mark.asyncio
async def test_failed_record_cannot_be_verified_later(mongo):
    store = MongoPaymentRecordStore()
    await store.create(_payment())

    assert (await store.settle("REF1", verified=False)).verified is False
    assert await store.settle("REF1", verified=True) is None
    assert (await store.get_by_reference("REF1")).verified is False


@pytest.mark.asyncio
async def test_duplicate_reference_is_a_conflict(mongo):
    store = MongoPaymentRecordStore()
    await store.create(_payment())
    with pytest.raises(ConflictError):
        await store.create(_payment())


@pytest.mark.asyncio
async def test_mark_disbursed_requires_verified_and_happens_once(mongo):
    store = MongoPaymentRecordStore()
    await store.create(_payment("FEE1", 899, PaymentPurposeEnum.loan_fee, "app-1"))

    assert await store.mark_disbursed("FEE1") is None

    await store.settle("FEE1", verified=True)
    disbursed = await store.mark_disbursed("FEE1")
    assert disbursed.disbursed is True
    assert disbursed.disbursed_at is not None

    assert await store.mark_disbursed("FEE1") is None


@pytest.mark.asyncio
async def test_provider_reference_is_attached_only_while_pending(mongo):
    store = MongoPaymentRecordStore()
    await store.create(_payment())

    attached = await store.attach_provider_reference("REF1", "ws_CO_1")
    assert attached.provider_reference == "ws_CO_1"
    assert (await store.get_by_provider_reference("ws_CO_1")).reference == "REF1"
    assert await store.get_by_provider_reference("ws_CO_2") is None

    await store.settle("REF1", verified=False)
    assert await store.attach_provider_reference("REF1", "ws_CO_2") is None


@pytest.mark.asyncio
async def test_list_records_filters_on_verification_state(mongo):
    store = MongoPaymentRecordStore()
    await store.create(_payment("REF1"))
    await store.create(_payment("REF2"))
    await store.settle("REF2", verified=True)

    pending = await store.list_records(verified=None)
    assert [r.reference for r in pending] == ["REF1"]
    assert [r.reference for r in await store.list_records(verified=True)] == ["REF2"]
    assert len(await store.list_records(verified=ANY)) == 2


@pytest.mark.asyncio
async def test_balance_increment_creates_then_adds(mongo):
    store = MongoBalanceStore()
    assert await store.get_balance("user-1") == 0

    assert await store.increment("user-1", 500) == 500
    assert await store.increment("user-1", 300) == 800
    assert await store.get_balance("user-2") == 0


@pytest.mark.asyncio
async def test_application_transitions_are_conditional(mongo, profile):
    store = MongoApplicationStore()
    await store.create(LoanApplicationData(application_id="app-1", user_id="user-1", profile=profile, loan_limit=8400))

    selected = await store.update_selection("app-1", 4200, 899)
    assert (selected.selected_amount, selected.processing_fee) == (4200, 899)

    approved = await store.transition_status("app-1", ApplicationStatusEnum.pending, ApplicationStatusEnum.approved)
    assert approved.status == ApplicationStatusEnum.approved
    assert await store.transition_status(
        "app-1", ApplicationStatusEnum.pending, ApplicationStatusEnum.rejected
    ) is None
    assert await store.update_selection("app-1", 5000, 999) is None

    counts = await store.count_by_status()
    assert counts == {"pending": 0, "approved": 1, "rejected": 0}


@pytest.mark.asyncio
async def test_duplicate_callbacks_credit_the_balance_once(mongo):
    reconciliation = ReconciliationService(MongoPaymentRecordStore(), MongoBalanceStore(), MongoApplicationStore())
    await reconciliation.record_payment_attempt("user-1", 500, "REF1")
    payload = {"status": "Success", "external_reference": "REF1", "amount": 500}

    first = await reconciliation.handle_gateway_callback(payload)
    second = await reconciliation.handle_gateway_callback(payload)
    late_failure = await reconciliation.apply_callback("REF1", PaymentOutcome.failure)

    assert first.action == ReconciliationAction.verified
    assert second.action == ReconciliationAction.already_settled
    assert late_failure.action == ReconciliationAction.already_settled
    assert await reconciliation.balances.get_balance("user-1") == 500


@pytest.mark.asyncio
async def test_support_request_resolves_once(mongo):
    store = MongoSupportStore()
    await store.create(SupportRequestData(
        request_id="sup-1", user_id="user-1", user_name="Jane Wanjiku",
        user_email="borrower@example.com", message="Where is my loan?",
    ))
    assert await store.count_pending() == 1

    resolved = await store.resolve("sup-1", "Disbursed this morning.", "admin@example.com")
    assert resolved.status == SupportStatusEnum.resolved
    assert resolved.replied_at is not None

    assert await store.resolve("sup-1", "Second reply", "admin@example.com") is None
    assert (await store.get("sup-1")).admin_reply == "Disbursed this morning."
    assert await store.count_pending() == 0
    assert [r.request_id for r in await store.list_requests(user_id="user-1")] == ["sup-1"]


@pytest.mark.asyncio
async def test_update_profile_normalises_phone(mongo):
    await User(email="borrower@example.com", full_name="Jane", hashed_password="x").insert()

    updated = await auth_service.update_profile(
        "Borrower@Example.com",
        ProfileUpdate(full_name=" Jane Wanjiku ", id_number="12345678", phone="0712 345 678"),
    )

    assert updated["full_name"] == "Jane Wanjiku"
    assert updated["id_number"] == "12345678"
    assert updated["phone"] == "254712345678"
    stored = await User.find_one(User.email == "borrower@example.com")
    assert stored.phone == "254712345678"


@pytest.mark.asyncio
async def test_update_profile_for_unknown_user_is_not_found(mongo):
    with pytest.raises(NotFoundError):
        await auth_service.update_profile("ghost@example.com", ProfileUpdate(full_name="Ghost"))
