from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from helaloans.core.security import decode_token
from helaloans.services.auth_service import auth_service
from typing import Dict
import logging

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def _unauthorized(reason: str) -> HTTPException:
    logger.debug("Rejecting bearer token: %s", reason)
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


# Resolves the bearer token to an active account. Role and terms flags are read
# from the stored user, not from the token
async def get_current_user(token: str = Depends(oauth2_scheme)) -> Dict:
    payload = decode_token(token)
    if payload is None:
        raise _unauthorized("invalid or expired token")

    email = payload.get("sub")
    if not email:
        raise _unauthorized("missing subject")

    user = await auth_service.get_user_by_email(email)
    if user is None:
        raise _unauthorized(f"no active account for {email}")
    return user


async def get_terms_accepted_user(current_user: Dict = Depends(get_current_user)) -> Dict:
    if not current_user.get("terms_accepted"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You must accept the terms and conditions before applying"
        )
    return current_user


async def get_admin_user(current_user: Dict = Depends(get_current_user)) -> Dict:
    if current_user.get("role") != "admin":
        logger.warning("Admin access denied for %s", current_user.get("email"))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Admin privileges required."
        )
    return current_user
