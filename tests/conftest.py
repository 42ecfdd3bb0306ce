import os

# Settings are read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from fastapi.testclient import TestClient

from helaloans.core.errors import ConflictError
from helaloans.schemas.loan_schema import ApplicantProfile, ApplicationStatusEnum
from helaloans.schemas.payment_schema import StkPushResult
from helaloans.schemas.support_schema import SupportStatusEnum
from helaloans.services.eligibility_service import LoanPolicy
from helaloans.services.loan_service import LoanApplicationService
from helaloans.services.payment_service import PaymentService
from helaloans.services.reconciliation_service import ReconciliationService
from helaloans.services.support_service import SupportService
from helaloans.services.stores import ANY


class FakePaymentRecordStore:
    def __init__(self):
        self.rows = {}

    async def create(self, record):
        if record.reference in self.rows:
            raise ConflictError(f"Transaction reference already exists: {record.reference}")
        self.rows[record.reference] = record.model_copy()
        return record.model_copy()

    async def get_by_reference(self, reference):
        row = self.rows.get(reference)
        return row.model_copy() if row else None

    async def get_by_provider_reference(self, provider_reference):
        for row in self.rows.values():
            if row.provider_reference == provider_reference:
                return row.model_copy()
        return None

    async def attach_provider_reference(self, reference, provider_reference):
        row = self.rows.get(reference)
        if row is None or row.verified is not None:
            return None
        self.rows[reference] = row.model_copy(update={"provider_reference": provider_reference})
        return self.rows[reference].model_copy()

    async def settle(self, reference, verified, narrative=None, provider_reference=None):
        row = self.rows.get(reference)
        if row is None or row.verified is not None:
            return None
        changes = {"verified": verified, "narrative": narrative, "updated_at": datetime.now(timezone.utc)}
        if provider_reference:
            changes["provider_reference"] = provider_reference
        self.rows[reference] = row.model_copy(update=changes)
        return self.rows[reference].model_copy()

    async def list_records(self, user_id=None, application_id=None, purpose=None, verified=ANY):
        rows = list(self.rows.values())
        if user_id:
            rows = [r for r in rows if r.user_id == user_id]
        if application_id:
            rows = [r for r in rows if r.application_id == application_id]
        if purpose:
            rows = [r for r in rows if r.purpose == purpose]
        if verified is not ANY:
            rows = [r for r in rows if r.verified is verified]
        return [r.model_copy() for r in sorted(rows, key=lambda r: r.created_at, reverse=True)]

    async def mark_disbursed(self, reference):
        row = self.rows.get(reference)
        if row is None or row.verified is not True or row.disbursed:
            return None
        self.rows[reference] = row.model_copy(update={"disbursed": True, "disbursed_at": datetime.now(timezone.utc)})
        return self.rows[reference].model_copy()


class FakeBalanceStore:
    def __init__(self):
        self.balances = {}
        self.increments = []

    async def get_balance(self, user_id):
        return self.balances.get(user_id, 0)

    async def increment(self, user_id, amount):
        self.increments.append((user_id, amount))
        self.balances[user_id] = self.balances.get(user_id, 0) + amount
        return self.balances[user_id]


class FakeApplicationStore:
    def __init__(self):
        self.rows = {}

    async def create(self, application):
        self.rows[application.application_id] = application.model_copy()
        return application.model_copy()

    async def get(self, application_id):
        row = self.rows.get(application_id)
        return row.model_copy() if row else None

    async def list_applications(self, user_id=None, status=None):
        rows = list(self.rows.values())
        if user_id:
            rows = [r for r in rows if r.user_id == user_id]
        if status:
            rows = [r for r in rows if r.status == status]
        return [r.model_copy() for r in sorted(rows, key=lambda r: r.created_at, reverse=True)]

    async def update_selection(self, application_id, selected_amount, processing_fee):
        row = self.rows.get(application_id)
        if row is None or row.status != ApplicationStatusEnum.pending:
            return None
        self.rows[application_id] = row.model_copy(
            update={"selected_amount": selected_amount, "processing_fee": processing_fee}
        )
        return self.rows[application_id].model_copy()

    async def transition_status(self, application_id, from_status, to_status):
        row = self.rows.get(application_id)
        if row is None or row.status != from_status:
            return None
        self.rows[application_id] = row.model_copy(update={"status": to_status})
        return self.rows[application_id].model_copy()

    async def count_by_status(self):
        counts = {s.value: 0 for s in ApplicationStatusEnum}
        for row in self.rows.values():
            counts[row.status.value] += 1
        return counts


class FakeSupportStore:
    def __init__(self):
        self.rows = {}

    async def create(self, request):
        self.rows[request.request_id] = request.model_copy()
        return request.model_copy()

    async def get(self, request_id):
        row = self.rows.get(request_id)
        return row.model_copy() if row else None

    async def list_requests(self, user_id=None, status=None):
        rows = list(self.rows.values())
        if user_id:
            rows = [r for r in rows if r.user_id == user_id]
        if status:
            rows = [r for r in rows if r.status == status]
        return [r.model_copy() for r in sorted(rows, key=lambda r: r.created_at, reverse=True)]

    async def resolve(self, request_id, reply, replied_by):
        row = self.rows.get(request_id)
        if row is None or row.status != SupportStatusEnum.pending:
            return None
        self.rows[request_id] = row.model_copy(update={
            "admin_reply": reply,
            "replied_by": replied_by,
            "replied_at": datetime.now(timezone.utc),
            "status": SupportStatusEnum.resolved,
        })
        return self.rows[request_id].model_copy()

    async def count_pending(self):
        return sum(1 for r in self.rows.values() if r.status == SupportStatusEnum.pending)


class FakeGateway:
    def __init__(self):
        self.calls = []
        self.error = None

    async def initiate_push(self, phone_number, amount, reference=None):
        self.calls.append({"phone_number": phone_number, "amount": amount, "reference": reference})
        if self.error:
            raise self.error
        return StkPushResult(reference=reference, provider_reference=f"PH-{len(self.calls)}")


@pytest.fixture
def policy():
    return LoanPolicy(
        tier_table={"below-20k": 3450, "20k-50k": 7000, "50k-100k": 11000, "above-100k": 14600},
        employment_multipliers={
            "employed": Decimal("1.20"),
            "self-employed": Decimal("1.10"),
            "student": Decimal("0.70"),
            "unemployed": Decimal("0.50"),
        },
        min_fee=399,
        max_fee=1399,
        min_loan_amount=1000,
        min_savings_balance=0,
    )


@pytest.fixture
def records():
    return FakePaymentRecordStore()

@pytest.fixture
def balances():
    return FakeBalanceStore()

@pytest.fixture
def applications():
    return FakeApplicationStore()

@pytest.fixture
def gateway():
    return FakeGateway()

@pytest.fixture
def reconciliation(records, balances, applications):
    return ReconciliationService(records, balances, applications)

@pytest.fixture
def loan_service(applications, records, balances, policy):
    return LoanApplicationService(applications, records, balances, policy=policy)

@pytest.fixture
def payments(reconciliation, applications, gateway):
    return PaymentService(reconciliation, applications, gateway)

@pytest.fixture
def support_store():
    return FakeSupportStore()

@pytest.fixture
def support(support_store):
    return SupportService(support_store)


@pytest.fixture
def borrower():
    return {
        "id": "user-1",
        "email": "borrower@example.com",
        "full_name": "Jane Wanjiku",
        "phone": "0712345678",
        "role": "user",
        "terms_accepted": True,
    }

@pytest.fixture
def admin():
    return {
        "id": "admin-1",
        "email": "admin@example.com",
        "full_name": "Staff Admin",
        "phone": None,
        "role": "admin",
        "terms_accepted": True,
    }


@pytest.fixture
def profile():
    return ApplicantProfile(
        full_name="Jane Wanjiku",
        id_number="12345678",
        whatsapp_number="0712345678",
        next_of_kin_name="John Kamau",
        next_of_kin_contact="0723456789",
        contact_person_name="Mary Achieng",
        contact_person_phone="254734567890",
        occupation="Nurse",
        loan_reason="School fees",
        income_tier="20k-50k",
        employment_status="employed",
    )


@pytest.fixture
def audit_calls(monkeypatch):
    import helaloans.services.audit_service as audit_module

    calls = []

    async def fake_record(action, actor, acted=None, status="successful"):
        calls.append({"action": action, "actor": actor, "acted": acted, "status": status})

    monkeypatch.setattr(audit_module.audit_service, "record", fake_record)
    return calls


@pytest.fixture
def client(loan_service, reconciliation, payments, support, borrower, audit_calls):
    from main import app
    from helaloans.core.auth_dependencies import get_current_user
    from helaloans.api.loan_routes import get_loan_application_service
    from helaloans.api.payment_routes import get_payment_service, get_reconciliation_service
    from helaloans.api.support_routes import get_support_service

    app.dependency_overrides[get_current_user] = lambda: borrower
    app.dependency_overrides[get_loan_application_service] = lambda: loan_service
    app.dependency_overrides[get_reconciliation_service] = lambda: reconciliation
    app.dependency_overrides[get_payment_service] = lambda: payments
    app.dependency_overrides[get_support_service] = lambda: support

    yield TestClient(app)

    app.dependency_overrides = {}
