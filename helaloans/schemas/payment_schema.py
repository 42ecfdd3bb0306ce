from pydantic import BaseModel, Field
from enum import Enum
from typing import Any, Dict, Optional, List
from datetime import datetime, timezone


class PaymentPurposeEnum(str, Enum):
    loan_fee = "loan_fee"
    savings_deposit = "savings_deposit"

class PaymentOutcome(str, Enum):
    success = "success"
    failure = "failure"
    pending = "pending"

class PaymentStateEnum(str, Enum):
    pending = "pending"
    verified = "verified"
    failed = "failed"


class PaymentRecordData(BaseModel):
    record_id: str
    purpose: PaymentPurposeEnum
    user_id: str
    application_id: Optional[str] = None
    amount: int = Field(..., gt=0)
    phone: Optional[str] = None
    reference: str = Field(..., min_length=1)
    provider_reference: Optional[str] = None
    # None while the gateway has not reported back
    verified: Optional[bool] = None
    narrative: Optional[str] = None
    disbursed: bool = False
    disbursed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    @property
    def state(self) -> PaymentStateEnum:
        if self.verified is None:
            return PaymentStateEnum.pending
        return PaymentStateEnum.verified if self.verified else PaymentStateEnum.failed

    @property
    def is_terminal(self) -> bool:
        return self.verified is not None


class PaymentRecordResponse(BaseModel):
    reference: str
    purpose: PaymentPurposeEnum
    state: PaymentStateEnum
    amount: int
    application_id: Optional[str] = None
    provider_reference: Optional[str] = None
    narrative: Optional[str] = None
    disbursed: bool = False
    created_at: datetime

    @classmethod
    def from_data(cls, data: PaymentRecordData) -> "PaymentRecordResponse":
        return cls(
            reference=data.reference,
            purpose=data.purpose,
            state=data.state,
            amount=data.amount,
            application_id=data.application_id,
            provider_reference=data.provider_reference,
            narrative=data.narrative,
            disbursed=data.disbursed,
            created_at=data.created_at,
        )


class LoanFeePaymentRequest(BaseModel):
    application_id: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1, description="M-Pesa registered phone number")

class SavingsDepositRequest(BaseModel):
    amount: int = Field(..., gt=0)
    phone_number: str = Field(..., min_length=1, description="M-Pesa registered phone number")

class ManualVerificationRequest(BaseModel):
    verified: bool = True
    narrative: Optional[str] = Field(None, description="Note recorded against the deposit")


class StkPushResult(BaseModel):
    reference: str = Field(..., description="Our external reference, echoed back in the callback")
    provider_reference: Optional[str] = Field(None, description="Gateway-side request identifier")

class StkPushResponse(BaseModel):
    success: bool = True
    message: str
    reference: str
    provider_reference: Optional[str] = None
    amount: int


# Gateway callback shapes. All are parsed at the webhook boundary and
# normalised into PaymentCallback before any state is touched.

class FlatCallbackPayload(BaseModel):
    status: str = Field(..., min_length=1)
    external_reference: str = Field(..., min_length=1)
    amount: Optional[float] = Field(None, allow_inf_nan=False)
    provider_reference: Optional[str] = None
    result_desc: Optional[str] = None
    phone_number: Optional[str] = None

class PayHeroCallbackBody(BaseModel):
    Status: str = Field(..., min_length=1)
    ExternalReference: str = Field(..., min_length=1)
    Amount: Optional[float] = Field(None, allow_inf_nan=False)
    MpesaReceiptNumber: Optional[str] = None
    ResultDesc: Optional[str] = None
    Phone: Optional[str] = None

class EnvelopeCallbackPayload(BaseModel):
    status: Optional[bool] = None
    response: PayHeroCallbackBody

class DarajaMetadataItem(BaseModel):
    Name: str
    Value: Any = None

class DarajaCallbackMetadata(BaseModel):
    Item: List[DarajaMetadataItem] = Field(default_factory=list)

class DarajaStkCallback(BaseModel):
    MerchantRequestID: Optional[str] = None
    CheckoutRequestID: str = Field(..., min_length=1)
    ResultCode: int
    ResultDesc: Optional[str] = None
    CallbackMetadata: Optional[DarajaCallbackMetadata] = None

    def metadata(self) -> Dict[str, Any]:
        if self.CallbackMetadata is None:
            return {}
        return {item.Name: item.Value for item in self.CallbackMetadata.Item}

class DarajaCallbackBody(BaseModel):
    stkCallback: DarajaStkCallback

class DarajaCallbackPayload(BaseModel):
    Body: DarajaCallbackBody


class PaymentCallback(BaseModel):
    # Daraja callbacks carry no reference of ours; they are matched on provider_reference
    reference: Optional[str] = None
    status: str
    outcome: PaymentOutcome
    amount: Optional[float] = Field(None, allow_inf_nan=False)
    provider_reference: Optional[str] = None
    narrative: Optional[str] = None


class CallbackAck(BaseModel):
    success: bool
    message: Optional[str] = None


class PaymentList(BaseModel):
    data: List[PaymentRecordResponse]
    total: int
