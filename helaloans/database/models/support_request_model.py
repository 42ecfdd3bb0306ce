from beanie import Document, Indexed
from pydantic import Field
from typing import Optional
from datetime import datetime, timezone
from uuid import uuid4

from helaloans.schemas.support_schema import SupportStatusEnum


class SupportRequest(Document):
    """A borrower's help request and the staff reply that resolves it."""

    request_id: Indexed(str, unique=True) = Field(default_factory=lambda: str(uuid4()))
    user_id: Indexed(str) = Field(..., description="Borrower who raised the request")
    user_name: str = Field(..., description="Borrower's name when the request was raised")
    user_email: str = Field(..., description="Borrower's email when the request was raised")
    message: str = Field(..., description="Request text")
    status: SupportStatusEnum = Field(default=SupportStatusEnum.pending)
    admin_reply: Optional[str] = None
    replied_by: Optional[str] = Field(None, description="Email of the staff member who replied")
    replied_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "support_requests"
