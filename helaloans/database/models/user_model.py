from beanie import Document, Indexed
from pydantic import EmailStr, Field
from datetime import datetime, timezone
from typing import Optional

class User(Document):
    email: Indexed(EmailStr, unique=True) = Field(..., description="Email address of the user")
    full_name: str = Field(..., description="Full name of the user")
    phone: Optional[str] = Field(None, description="M-Pesa registered phone number")
    id_number: Optional[str] = Field(None, description="National ID number")
    hashed_password: str = Field(..., description="Hashed password for the user account")
    role: str = Field(default="user", description="Either 'user' or 'admin'")
    is_active: bool = Field(default=True, description="Indicates if the user account is active")
    terms_accepted_at: Optional[datetime] = Field(None, description="When the user accepted the loan terms")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Timestamp when the user was created")
    updated_at: Optional[datetime] = Field(None, description="Timestamp when the user was last updated")

    class Settings:
        name = "users"  # Collection name in MongoDB
