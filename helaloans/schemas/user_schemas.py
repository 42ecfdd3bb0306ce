from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Literal, Optional


class UserCreate(BaseModel):
    email: EmailStr = Field(..., description="Login email; staff addresses come from ADMIN_EMAILS")
    full_name: str = Field(..., min_length=1, max_length=120, description="Borrower's full name")
    phone: Optional[str] = Field(None, description="M-Pesa registered phone number, e.g. 0712345678")
    password: str = Field(..., min_length=8, description="At least 8 characters")


# Only the fields sent are changed
class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=120)
    id_number: Optional[str] = Field(None, pattern=r"^\d{6,10}$", description="National ID number (6-10 digits)")
    phone: Optional[str] = Field(None, description="M-Pesa registered phone number")

    @model_validator(mode="after")
    def at_least_one_field(self):
        if self.full_name is None and self.id_number is None and self.phone is None:
            raise ValueError("Provide at least one of full_name, id_number or phone")
        return self


class UserResponse(BaseModel):
    id: str
    email: EmailStr
    full_name: str
    phone: Optional[str] = None
    id_number: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    terms_accepted: bool = False
    message: Optional[str] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
