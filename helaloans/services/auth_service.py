from fastapi import HTTPException, status
from helaloans.database.models import User
from helaloans.schemas import UserCreate, ProfileUpdate
from helaloans.core import settings, hash_password, verify_password, create_access_token, is_valid_password
from helaloans.core.errors import ConflictError, NotFoundError, ValidationError
from helaloans.services.payhero_client import normalize_phone
from typing import Dict, Optional
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


def _user_payload(user: User) -> Dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "full_name": user.full_name,
        "phone": user.phone,
        "id_number": user.id_number,
        "role": user.role,
        "terms_accepted": user.terms_accepted_at is not None,
    }


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid email or password",
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthService:
    """Borrower and staff accounts, sessions and terms acceptance."""

    @staticmethod
    async def _find(email: str) -> Optional[User]:
        return await User.find_one(User.email == email.strip().lower())

    @staticmethod
    def _issue_token(user: User) -> Dict:
        try:
            access_token = create_access_token(data={"sub": user.email, "role": user.role})
        except ValueError as e:
            logger.error("Token creation failed for %s: %s", user.email, e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Could not create access token"
            )
        return {"access_token": access_token, "token_type": "bearer"}

    # Staff accounts are the addresses listed in ADMIN_EMAILS; everyone else borrows
    @staticmethod
    async def register_user(user_data: UserCreate) -> Dict:
        email = user_data.email.strip().lower()
        if await AuthService._find(email):
            raise ConflictError("Email already registered")

        if not is_valid_password(user_data.password):
            raise ValidationError("Password must be at least 8 characters long")

        # Stored in the same form the STK push sends to the gateway
        phone = normalize_phone(user_data.phone) if user_data.phone else None

        try:
            hashed_password = hash_password(user_data.password)
        except ValueError as e:
            raise ValidationError("Invalid password format") from e

        role = "admin" if email in settings.ADMIN_EMAILS else "user"
        new_user = User(
            email=email,
            full_name=user_data.full_name.strip(),
            phone=phone,
            hashed_password=hashed_password,
            role=role,
        )

        try:
            await new_user.insert()
        except Exception as e:
            logger.error("User save failed for %s: %s", email, e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="User registration failed"
            )

        logger.info("Registered %s account %s", role, new_user.id)
        return {**_user_payload(new_user), "message": "User registered successfully"}

    @staticmethod
    async def login_user(email: str, password: str) -> Dict:
        user = await AuthService._find(email)
        if not user or not user.is_active:
            logger.warning("Login refused for unknown or inactive account: %s", email)
            raise _invalid_credentials()
        if not verify_password(password, user.hashed_password):
            logger.warning("Login refused for %s: wrong password", user.email)
            raise _invalid_credentials()

        return {**AuthService._issue_token(user), "user": _user_payload(user)}

    @staticmethod
    async def get_user_by_email(email: str) -> Optional[Dict]:
        user = await AuthService._find(email)
        if not user or not user.is_active:
            return None
        return _user_payload(user)

    # Repeated acceptance keeps the first timestamp
    @staticmethod
    async def accept_terms(email: str) -> Dict:
        user = await AuthService._find(email)
        if not user:
            raise NotFoundError("User not found")
        if user.terms_accepted_at is None:
            user.terms_accepted_at = datetime.now(timezone.utc)
            user.updated_at = user.terms_accepted_at
            await user.save()
            logger.info("Terms accepted by %s", user.email)
        return _user_payload(user)

    @staticmethod
    async def update_profile(email: str, update: ProfileUpdate) -> Dict:
        user = await AuthService._find(email)
        if not user or not user.is_active:
            raise NotFoundError("User not found")

        if update.full_name is not None:
            if not update.full_name.strip():
                raise ValidationError("Full name cannot be blank")
            user.full_name = update.full_name.strip()
        if update.id_number is not None:
            user.id_number = update.id_number
        if update.phone is not None:
            user.phone = normalize_phone(update.phone)

        user.updated_at = datetime.now(timezone.utc)
        await user.save()
        logger.info("Profile updated for %s", user.email)
        return _user_payload(user)

    @staticmethod
    async def refresh_user_token(email: str) -> Dict:
        user = await AuthService._find(email)
        if not user or not user.is_active:
            raise NotFoundError("User not found")
        return AuthService._issue_token(user)


auth_service = AuthService()
