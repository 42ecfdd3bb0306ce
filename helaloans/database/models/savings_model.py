from beanie import Document, Indexed
from pydantic import Field
from datetime import datetime, timezone
from typing import Optional


class SavingsBalance(Document):
    user_id: Indexed(str, unique=True) = Field(..., description="Owner of the savings balance")
    balance: int = Field(default=0, ge=0, description="Sum of verified deposits, in KES")
    updated_at: Optional[datetime] = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "savings_balances"
