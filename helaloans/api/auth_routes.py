from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from typing import Dict

from helaloans.services.auth_service import auth_service
from helaloans.schemas import UserCreate, ProfileUpdate, UserResponse, Token
from helaloans.core.auth_dependencies import get_current_user
from helaloans.core.errors import HelaError
from helaloans.services.audit_service import audit_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)


@router.post("/signup", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def signup_user(user_data: UserCreate) -> UserResponse:
    try:
        created_user = await auth_service.register_user(user_data)
    except (HTTPException, HelaError):
        await audit_service.record("signup", user_data.email, status="failed")
        raise
    await audit_service.record("signup", created_user["email"], acted=created_user["id"])
    return UserResponse(**created_user)

# OAuth2 password flow: the email goes in the form's username field
@router.post("/login", response_model=Token, status_code=status.HTTP_200_OK)
async def login_user(form_data: OAuth2PasswordRequestForm = Depends()) -> Token:
    try:
        token_data = await auth_service.login_user(form_data.username, form_data.password)
    except HTTPException:
        await audit_service.record("login", form_data.username, status="failed")
        raise
    await audit_service.record("login", form_data.username)
    return Token(access_token=token_data["access_token"], token_type=token_data["token_type"])

@router.get("/me", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def get_current_user_info(current_user: Dict = Depends(get_current_user)) -> UserResponse:
    return UserResponse(**current_user)

# Borrowers must accept the loan terms before they can apply
@router.post("/terms", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def accept_terms(current_user: Dict = Depends(get_current_user)) -> UserResponse:
    updated = await auth_service.accept_terms(current_user["email"])
    await audit_service.record("accept_terms", current_user["email"], acted=current_user["id"])
    return UserResponse(**updated)

@router.post("/refresh", response_model=Token, status_code=status.HTTP_200_OK)
async def refresh_token(current_user: Dict = Depends(get_current_user)) -> Token:
    token_data = await auth_service.refresh_user_token(current_user["email"])
    return Token(**token_data)

# Borrowers correct their name, ID number or M-Pesa phone from the dashboard
@router.patch("/profile", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def update_profile(
    profile: ProfileUpdate,
    current_user: Dict = Depends(get_current_user)
) -> UserResponse:
    updated = await auth_service.update_profile(current_user["email"], profile)
    await audit_service.record("update_profile", current_user["email"], acted=current_user["id"])
    return UserResponse(**updated)
