from pydantic import BaseModel, Field, field_validator
from enum import Enum
from typing import Optional, List, Dict
from datetime import datetime, timezone
import re

KENYAN_PHONE_RE = re.compile(r"^(254|0)[17]\d{8}$")


class IncomeTierEnum(str, Enum):
    below_20k = "below-20k"
    between_20k_50k = "20k-50k"
    between_50k_100k = "50k-100k"
    above_100k = "above-100k"

class EmploymentStatusEnum(str, Enum):
    employed = "employed"
    self_employed = "self-employed"
    student = "student"
    unemployed = "unemployed"

class ApplicationStatusEnum(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ApplicantProfile(BaseModel):
    full_name: str = Field(..., min_length=1, description="Full name of the applicant")
    id_number: str = Field(..., description="National ID number (6-10 digits)")
    whatsapp_number: str = Field(..., description="Applicant's WhatsApp phone number")
    next_of_kin_name: str = Field(..., min_length=1, description="Next of kin full name")
    next_of_kin_contact: str = Field(..., description="Next of kin phone number")
    contact_person_name: str = Field(..., min_length=1, description="Alternative contact person")
    contact_person_phone: str = Field(..., description="Alternative contact person's phone number")
    occupation: str = Field(..., min_length=1, description="Applicant's occupation")
    loan_reason: Optional[str] = Field(None, description="Free-text reason for the loan")
    income_tier: IncomeTierEnum = Field(..., description="Declared monthly income range")
    employment_status: EmploymentStatusEnum = Field(..., description="Declared employment status")

    model_config = {"frozen": True}

    @field_validator("id_number")
    @classmethod
    def _check_id_number(cls, v: str) -> str:
        v = v.strip()
        if not v.isdigit() or not 6 <= len(v) <= 10:
            raise ValueError("ID Number must be 6-10 digits")
        return v

    @field_validator("whatsapp_number", "next_of_kin_contact", "contact_person_phone")
    @classmethod
    def _check_phone(cls, v: str) -> str:
        v = v.strip()
        if not KENYAN_PHONE_RE.match(v):
            raise ValueError("Please enter a valid Kenyan phone number")
        return v


class LoanApplicationRequest(BaseModel):
    profile: ApplicantProfile


class LoanSelectionRequest(BaseModel):
    amount: int = Field(..., description="Amount the applicant wants disbursed")


class LoanApplicationData(BaseModel):
    application_id: str
    user_id: str
    profile: ApplicantProfile
    loan_limit: int = Field(..., ge=0)
    selected_amount: Optional[int] = None
    processing_fee: Optional[int] = None
    status: ApplicationStatusEnum = ApplicationStatusEnum.pending
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None


class FeeQuote(BaseModel):
    loan_limit: int
    selected_amount: int
    processing_fee: int
    min_fee: int
    max_fee: int


class LoanApplicationResponse(BaseModel):
    application_id: str
    status: ApplicationStatusEnum
    loan_limit: int
    selected_amount: Optional[int] = None
    processing_fee: Optional[int] = None
    income_tier: IncomeTierEnum
    employment_status: EmploymentStatusEnum
    created_at: datetime

    @classmethod
    def from_data(cls, data: LoanApplicationData) -> "LoanApplicationResponse":
        return cls(
            application_id=data.application_id,
            status=data.status,
            loan_limit=data.loan_limit,
            selected_amount=data.selected_amount,
            processing_fee=data.processing_fee,
            income_tier=data.profile.income_tier,
            employment_status=data.profile.employment_status,
            created_at=data.created_at,
        )


class StatusSummary(BaseModel):
    total: int
    by_status: Dict[str, int]
    pending_support: int = 0


class ApplicationList(BaseModel):
    data: List[LoanApplicationResponse]
    total: int
