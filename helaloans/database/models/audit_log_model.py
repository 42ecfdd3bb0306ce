from beanie import Document
from pydantic import Field
from datetime import datetime, timezone
from typing import Optional


class AuditLog(Document):
    action: str = Field(..., description="Action performed (e.g. 'login', 'approve_application', 'disburse_loan')")
    actor: Optional[str] = Field(None, description="Email of the user or the gateway that performed the action")
    acted: Optional[str] = Field(None, description="Application id or transaction reference acted upon")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="When the action occurred")
    status: str = Field(..., description="Result status: 'successful' or 'failed'")

    class Settings:
        name = "audit_logs"
