import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from gymmaster.config import (
    SECRET_KEY,
    ALGORITHM,
    ACCESS_TOKEN_EXPIRE_MINUTES,
    REFRESH_TOKEN_EXPIRE_DAYS,
)
from gymmaster.db import get_db
from gymmaster.enums import Role
from gymmaster.errors import AuthenticationFailed
from gymmaster.models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _unauthorized(error_code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error_code": error_code, "message": message},
    )


def create_access_token(user: User, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """
    Create JWT access token with minimal user data.
    The role is re-read from the database on every request.
    """
    role = user.role.value if isinstance(user.role, Role) else user.role
    to_encode = {
        "user_id": user.id,
        "email": user.email,
        "role": role,
        "token_version": user.token_version,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
        "type": "access",
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_refresh_token(user: User, expires_days: int = REFRESH_TOKEN_EXPIRE_DAYS) -> tuple[str, datetime]:
    """
    Create JWT refresh token. The caller stores it so it can be revoked.

    Returns:
        (token, naive local expiry used for the database row)
    """
    to_encode = {
        "user_id": user.id,
        "jti": uuid.uuid4().hex,
        "exp": datetime.now(timezone.utc) + timedelta(days=expires_days),
        "type": "refresh",
    }
    token = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return token, datetime.now() + timedelta(days=expires_days)


def decode_refresh_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationFailed("Refresh token has expired. Please log in again.", "REFRESH_TOKEN_EXPIRED")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid refresh token: {e}")
        raise AuthenticationFailed("Invalid refresh token", "INVALID_REFRESH_TOKEN")

    if payload.get("type") != "refresh":
        raise AuthenticationFailed("Invalid refresh token", "INVALID_REFRESH_TOKEN")
    return payload


def _authenticate(token: str, db: Session) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("TOKEN_EXPIRED", "Your session has expired. Please log in again.")
    except jwt.InvalidTokenError as e:
        logger.error(f"Invalid token: {e}")
        raise _unauthorized("INVALID_TOKEN", "Invalid token")

    if payload.get("type") != "access":
        raise _unauthorized("INVALID_TOKEN_TYPE", "Invalid token")

    user = db.get(User, payload.get("user_id"))

    if not user:
        raise _unauthorized("USER_NOT_FOUND", "User not found")

    if not user.is_active:
        raise _unauthorized("USER_INACTIVE", "Your account is inactive. Contact an administrator.")

    # logout-all bumps token_version
    if user.token_version != payload.get("token_version"):
        raise _unauthorized("TOKEN_REVOKED", "Your session has ended. Please log in again.")

    return {
        "user_id": user.id,
        "email": user.email,
        "role": user.role.value,
        "branch_id": user.branch_id,
        "token_version": user.token_version,
    }


def verify_bearer_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> dict:
    """
    Verify JWT Bearer token from Authorization header.
    The role is taken from the database, not from the token.

    Returns user context dict with: user_id, email, role, branch_id, token_version
    """
    if not credentials:
        raise _unauthorized("TOKEN_REQUIRED", "Access token required")

    auth = _authenticate(credentials.credentials, db)
    request.state.user_id = auth["user_id"]
    return auth


def optional_bearer_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[dict]:
    """Like verify_bearer_token, but anonymous callers get None instead of 401"""
    if not credentials:
        return None
    try:
        auth = _authenticate(credentials.credentials, db)
    except HTTPException:
        return None
    request.state.user_id = auth["user_id"]
    return auth


def require_roles(*roles: Role):
    """
    Dependency to check the caller has one of the given roles.
    ADMIN is always allowed.

    Usage:
        @router.get("/")
        def list_items(auth: dict = Depends(require_roles(Role.EMPLOYEE))):
    """
    def role_checker(auth: dict = Depends(verify_bearer_token)) -> dict:
        check_role(auth, *roles)
        return auth

    return role_checker


def check_role(auth: dict, *roles: Role) -> None:
    """
    Raise 403 unless the caller has one of the roles. ADMIN bypasses the check.
    """
    role = auth.get("role", "")
    if role == Role.ADMIN.value:
        return None

    if role in {r.value for r in roles}:
        return None

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "error_code": "PERMISSION_DENIED",
            "message": "You do not have access to this operation",
        },
    )


def is_staff(auth: dict) -> bool:
    return auth.get("role") in (Role.ADMIN.value, Role.EMPLOYEE.value)
