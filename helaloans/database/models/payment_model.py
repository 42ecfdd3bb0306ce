from beanie import Document, Indexed
from pydantic import Field
from typing import Optional
from datetime import datetime, timezone
from uuid import uuid4

from helaloans.schemas.payment_schema import PaymentPurposeEnum


class PaymentRecord(Document):
    """One STK push attempt: either a loan activation fee or a savings deposit."""

    record_id: str = Field(default_factory=lambda: str(uuid4()))
    purpose: PaymentPurposeEnum = Field(..., description="loan_fee or savings_deposit")
    user_id: Indexed(str) = Field(..., description="Owner of the payment")
    application_id: Optional[str] = Field(None, description="Loan application this fee activates")
    amount: int = Field(..., gt=0, description="Amount charged, in KES")
    phone: Optional[str] = Field(None, description="Normalised payer phone number")
    reference: Indexed(str, unique=True) = Field(..., description="External transaction reference")
    provider_reference: Optional[str] = Field(None, description="Gateway receipt, or the Daraja CheckoutRequestID callbacks are matched on")
    verified: Optional[bool] = Field(None, description="None while pending, then True or False exactly once")
    narrative: Optional[str] = Field(None, description="Gateway result description or admin note")
    disbursed: bool = Field(default=False, description="Loan amount paid out to the borrower")
    disbursed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    class Settings:
        name = "payment_records"
        indexes = ["provider_reference"]
