import logging
from typing import Optional, List, Dict, Any
from uuid import uuid4

from helaloans.core.errors import ConflictError, NotFoundError, ValidationError
from helaloans.schemas.loan_schema import (
    ApplicantProfile,
    ApplicationStatusEnum,
    LoanApplicationData,
    LoanApplicationResponse,
    StatusSummary,
)
from helaloans.schemas.payment_schema import (
    PaymentPurposeEnum,
    PaymentRecordData,
    PaymentRecordResponse,
    PaymentStateEnum,
)
from helaloans.services.eligibility_service import (
    LoanPolicy,
    get_loan_policy,
    compute_loan_limit,
    compute_processing_fee,
    validate_selection,
    default_selection,
)
from helaloans.services.stores import (
    ApplicationStore,
    PaymentRecordStore,
    BalanceStore,
    MongoApplicationStore,
    MongoPaymentRecordStore,
    MongoBalanceStore,
)

logger = logging.getLogger(__name__)


class LoanApplicationService:

    def __init__(self,
                 applications: ApplicationStore,
                 records: PaymentRecordStore,
                 balances: BalanceStore,
                 policy: Optional[LoanPolicy] = None):
        self.applications = applications
        self.records = records
        self.balances = balances
        self._policy = policy
        logger.info("LoanApplicationService initialized")

    @property
    def policy(self) -> LoanPolicy:
        return self._policy or get_loan_policy()

    # Computes the loan limit and stores a new pending application
    async def submit_application(self, user: Dict[str, Any], profile: ApplicantProfile) -> LoanApplicationData:
        existing = await self.applications.list_applications(
            user_id=user["id"], status=ApplicationStatusEnum.pending
        )
        if existing:
            raise ConflictError(
                "You already have a pending loan application",
                details={"application_id": existing[0].application_id},
            )

        loan_limit = compute_loan_limit(profile.income_tier, profile.employment_status, self.policy)
        logger.info(
            f"Loan limit for {user['id']}: {loan_limit} "
            f"(income={profile.income_tier.value}, employment={profile.employment_status.value})"
        )

        application = LoanApplicationData(
            application_id=str(uuid4()),
            user_id=user["id"],
            profile=profile,
            loan_limit=loan_limit,
        )
        created = await self.applications.create(application)
        logger.info(f"Loan application created successfully with ID: {created.application_id}")
        return created

    async def get_application(self, user: Dict[str, Any], application_id: str) -> LoanApplicationData:
        application = await self.applications.get(application_id)
        # Other users' applications are reported as missing, not forbidden
        if application is None or (application.user_id != user["id"] and user.get("role") != "admin"):
            raise NotFoundError("Loan application not found")
        return application

    async def list_user_applications(self, user_id: str) -> List[LoanApplicationData]:
        return await self.applications.list_applications(user_id=user_id)

    # Stores the borrower's chosen amount together with its activation fee
    async def select_amount(self, user: Dict[str, Any], application_id: str, amount: int) -> LoanApplicationData:
        application = await self.get_application(user, application_id)
        if application.status != ApplicationStatusEnum.pending:
            raise ConflictError(f"Application is already {application.status.value}")

        policy = self.policy
        validate_selection(amount, application.loan_limit, policy.min_loan_amount)
        fee = compute_processing_fee(
            amount, application.loan_limit, policy.min_fee, policy.max_fee, policy.min_loan_amount
        )

        updated = await self.applications.update_selection(application_id, amount, fee)
        if updated is None:
            raise ConflictError("Application is no longer pending")
        logger.info(f"Application {application_id}: selected KES {amount}, processing fee KES {fee}")
        return updated

    async def check_disbursement_eligibility(self, user_id: str) -> Dict[str, Any]:
        balance = await self.balances.get_balance(user_id)
        minimum = self.policy.min_savings_balance
        return {
            "savings_balance": balance,
            "min_savings_balance": minimum,
            "eligible": balance >= minimum,
        }

    async def get_dashboard(self, user: Dict[str, Any]) -> Dict[str, Any]:
        applications = await self.applications.list_applications(user_id=user["id"])
        payments = await self.records.list_records(user_id=user["id"])
        eligibility = await self.check_disbursement_eligibility(user["id"])

        latest = applications[0] if applications else None
        return {
            "applications": [LoanApplicationResponse.from_data(a).model_dump(mode="json") for a in applications],
            "payments": [PaymentRecordResponse.from_data(p).model_dump(mode="json") for p in payments],
            "suggested_amount": default_selection(latest.loan_limit) if latest else None,
            "savings_balance": eligibility["savings_balance"],
            "min_savings_balance": eligibility["min_savings_balance"],
            "disbursement_eligible": eligibility["eligible"],
        }

    # --- administrative console -------------------------------------------

    async def list_applications(self, status: Optional[ApplicationStatusEnum] = None) -> List[LoanApplicationData]:
        return await self.applications.list_applications(status=status)

    async def status_summary(self) -> StatusSummary:
        counts = await self.applications.count_by_status()
        return StatusSummary(total=sum(counts.values()), by_status=counts)

    async def review_application(self, application_id: str, approve: bool) -> LoanApplicationData:
        target = ApplicationStatusEnum.approved if approve else ApplicationStatusEnum.rejected
        updated = await self.applications.transition_status(
            application_id, ApplicationStatusEnum.pending, target
        )
        if updated is not None:
            logger.info(f"Application {application_id} {target.value} by administrator")
            return updated

        current = await self.applications.get(application_id)
        if current is None:
            raise NotFoundError("Loan application not found")
        raise ConflictError(f"Application is already {current.status.value}")

    async def list_payments(self, state: Optional[PaymentStateEnum] = None,
                            purpose: Optional[PaymentPurposeEnum] = None) -> List[PaymentRecordData]:
        if state is None:
            return await self.records.list_records(purpose=purpose)
        verified = {
            PaymentStateEnum.pending: None,
            PaymentStateEnum.verified: True,
            PaymentStateEnum.failed: False,
        }[state]
        return await self.records.list_records(purpose=purpose, verified=verified)

    async def mark_disbursed(self, reference: str) -> PaymentRecordData:
        record = await self.records.get_by_reference(reference)
        if record is None:
            raise NotFoundError(f"No payment record for reference {reference}")
        if record.purpose != PaymentPurposeEnum.loan_fee:
            raise ValidationError("Only loan fee payments can be disbursed")
        if record.disbursed:
            raise ConflictError("Loan has already been disbursed")
        if record.verified is not True:
            raise ConflictError("The activation fee for this loan has not been verified")

        application = await self.applications.get(record.application_id)
        if application is None:
            raise NotFoundError("Loan application not found")
        if application.status != ApplicationStatusEnum.approved:
            raise ConflictError(f"Application is {application.status.value}, not approved")

        eligibility = await self.check_disbursement_eligibility(record.user_id)
        if not eligibility["eligible"]:
            raise ConflictError(
                f"Savings balance KES {eligibility['savings_balance']:,} is below the required "
                f"KES {eligibility['min_savings_balance']:,}",
                details=eligibility,
            )

        updated = await self.records.mark_disbursed(reference)
        if updated is None:
            raise ConflictError("Loan has already been disbursed")
        logger.info(f"Loan {application.application_id} disbursed (fee reference {reference})")
        return updated


loan_application_service = LoanApplicationService(
    MongoApplicationStore(),
    MongoPaymentRecordStore(),
    MongoBalanceStore(),
)
