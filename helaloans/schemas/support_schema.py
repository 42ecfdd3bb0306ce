from pydantic import BaseModel, Field, field_validator
from enum import Enum
from typing import Optional, List
from datetime import datetime, timezone


class SupportStatusEnum(str, Enum):
    pending = "pending"
    resolved = "resolved"


class SupportRequestCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000, description="What the borrower needs help with")

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message cannot be blank")
        return v.strip()

class SupportReplyRequest(BaseModel):
    reply: str = Field(..., min_length=1, max_length=2000)

    @field_validator("reply")
    @classmethod
    def reply_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Reply cannot be blank")
        return v.strip()


class SupportRequestData(BaseModel):
    request_id: str
    user_id: str
    user_name: str
    user_email: str
    message: str
    status: SupportStatusEnum = SupportStatusEnum.pending
    admin_reply: Optional[str] = None
    replied_by: Optional[str] = None
    replied_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SupportRequestResponse(BaseModel):
    request_id: str
    user_name: str
    user_email: str
    message: str
    status: SupportStatusEnum
    admin_reply: Optional[str] = None
    replied_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_data(cls, data: SupportRequestData) -> "SupportRequestResponse":
        return cls(**data.model_dump(exclude={"user_id", "replied_by"}))


class SupportRequestList(BaseModel):
    data: List[SupportRequestResponse]
    total: int
