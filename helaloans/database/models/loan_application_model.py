from beanie import Document, Indexed
from pydantic import Field
from typing import Optional
from datetime import datetime, timezone
from uuid import uuid4

from helaloans.schemas.loan_schema import ApplicantProfile, ApplicationStatusEnum


class LoanApplication(Document):
    application_id: Indexed(str, unique=True) = Field(default_factory=lambda: str(uuid4()), description="Unique identifier of the loan application")
    user_id: Indexed(str) = Field(..., description="ID of the user who submitted the application")
    profile: ApplicantProfile = Field(..., description="Applicant profile as submitted; never edited afterwards")
    loan_limit: int = Field(..., ge=0, description="Computed loan limit")
    selected_amount: Optional[int] = Field(None, description="Amount the applicant chose to borrow")
    processing_fee: Optional[int] = Field(None, description="Activation fee for the selected amount")
    status: ApplicationStatusEnum = Field(default=ApplicationStatusEnum.pending, description="Current status of the loan application")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Timestamp when the loan application was created")
    updated_at: Optional[datetime] = Field(None, description="Timestamp of the last status or selection change")

    class Settings:
        name = "loan_applications"
