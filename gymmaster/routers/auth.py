import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.enums import AuditAction, Role
from gymmaster.middleware import optional_bearer_token, require_roles, verify_bearer_token
from gymmaster.services import auth_service
from gymmaster.utils.audit import AuditRoute, audit_action, audit_entity

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("User"))],
)


# ============== Request Models ==============

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    role: Role = Role.MEMBER
    branch_id: Optional[int] = None
    date_of_birth: Optional[date] = None
    emergency_contact: Optional[str] = Field(None, max_length=100)
    emergency_phone: Optional[str] = Field(None, max_length=20)
    medical_notes: Optional[str] = None
    specialties: Optional[str] = Field(None, max_length=255)
    hourly_rate: Optional[int] = Field(None, ge=0)
    bio: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=100)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp_code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")
    new_password: str = Field(..., min_length=8, max_length=100)


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp_code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class ResendOtpRequest(BaseModel):
    email: EmailStr


class TwoFactorAdminRequest(BaseModel):
    user_id: int


# ============== Endpoints ==============

@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit_action(AuditAction.REGISTER, fields=("email", "role")))],
)
def register(
    request: RegisterRequest,
    auth: Optional[dict] = Depends(optional_bearer_token),
    db: Session = Depends(get_db),
):
    """
    Register a new account.
    Anyone can register as MEMBER; other roles need an ADMIN token.
    """
    allow_privileged = bool(auth and auth["role"] == Role.ADMIN.value)
    result = auth_service.register(db, request.model_dump(), allow_privileged=allow_privileged)

    return {
        "success": True,
        "message": f"Welcome {result['user']['first_name']}! Your account has been created.",
        "data": result,
    }


@router.post("/login", dependencies=[Depends(audit_action(AuditAction.LOGIN, fields=("email",)))])
def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Password login. With two-factor authentication enabled the response has
    requires_2fa = true and no tokens; finish with POST /auth/verify-otp.
    """
    result = auth_service.login(db, request.email, request.password)
    requires_2fa = result.pop("requires_2fa")
    if requires_2fa:
        return {
            "success": True,
            "requires_2fa": True,
            "message": "A verification code has been sent to your email",
            "data": result,
        }
    return {"success": True, "requires_2fa": False, "message": "Login successful", "data": result}


@router.post("/verify-otp", dependencies=[Depends(audit_action(AuditAction.LOGIN, fields=("email",)))])
def verify_otp(request: VerifyOtpRequest, db: Session = Depends(get_db)):
    result = auth_service.verify_login_otp(db, request.email, request.otp_code)
    return {"success": True, "message": "Login successful", "data": result}


@router.post("/resend-otp", dependencies=[Depends(audit_action(skip=True))])
def resend_otp(request: ResendOtpRequest, db: Session = Depends(get_db)):
    result = auth_service.resend_login_otp(db, request.email)
    return {"success": True, "message": "A new verification code has been sent", "data": result}


@router.post("/enable-2fa", dependencies=[Depends(audit_action(AuditAction.UPDATE))])
def enable_2fa(auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    user = auth_service.set_two_factor(db, auth["user_id"], True)
    return {"success": True, "message": "Two-factor authentication enabled", "data": user}


@router.post("/disable-2fa", dependencies=[Depends(audit_action(AuditAction.UPDATE))])
def disable_2fa(auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    user = auth_service.set_two_factor(db, auth["user_id"], False)
    return {"success": True, "message": "Two-factor authentication disabled", "data": user}


@router.post("/enable-2fa-admin", dependencies=[Depends(audit_action(AuditAction.UPDATE, fields=("user_id",)))])
def enable_2fa_admin(
    request: TwoFactorAdminRequest,
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    """Turn two-factor authentication on for any user (ADMIN only)"""
    user = auth_service.set_two_factor(db, request.user_id, True, strict=True)
    return {"success": True, "message": f"Two-factor authentication enabled for {user['full_name']}", "data": user}


@router.post("/disable-2fa-admin", dependencies=[Depends(audit_action(AuditAction.UPDATE, fields=("user_id",)))])
def disable_2fa_admin(
    request: TwoFactorAdminRequest,
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    """Turn two-factor authentication off for any user (ADMIN only)"""
    user = auth_service.set_two_factor(db, request.user_id, False, strict=True)
    return {"success": True, "message": f"Two-factor authentication disabled for {user['full_name']}", "data": user}


@router.post("/refresh")
def refresh_token(request: RefreshRequest, db: Session = Depends(get_db)):
    """Exchange a refresh token for a new access token"""
    result = auth_service.refresh(db, request.refresh_token)
    return {"success": True, "data": result}


@router.post("/logout", dependencies=[Depends(audit_action(AuditAction.LOGOUT))])
def logout(
    request: LogoutRequest,
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    auth_service.logout(db, auth["user_id"], request.refresh_token)
    return {"success": True, "message": "Logged out successfully"}


@router.post("/logout-all", dependencies=[Depends(audit_action(AuditAction.LOGOUT))])
def logout_all(auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    """
    Revoke every refresh token and invalidate all access tokens (token_version + 1).
    """
    auth_service.logout_all(db, auth["user_id"])
    return {"success": True, "message": "All sessions have been closed"}


@router.get("/me")
def get_current_user(auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    """
    Get current authenticated user profile with member/trainer details.
    """
    return {"success": True, "data": auth_service.get_profile(db, auth["user_id"])}


@router.put("/me")
def update_current_user(
    request: UpdateProfileRequest,
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    user = auth_service.update_profile(db, auth["user_id"], request.model_dump(exclude_unset=True))
    return {"success": True, "message": "Profile updated", "data": user}


@router.put("/change-password")
def change_password(
    request: ChangePasswordRequest,
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    auth_service.change_password(db, auth["user_id"], request.current_password, request.new_password)
    return {"success": True, "message": "Password changed successfully"}


@router.get("/check-email")
def check_email(email: EmailStr = Query(...), db: Session = Depends(get_db)):
    available = auth_service.check_email_available(db, email.lower())
    return {
        "success": True,
        "data": {
            "email": email,
            "available": available,
            "message": "Email is available" if available else "Email is already registered",
        },
    }


@router.post("/forgot-password", dependencies=[Depends(audit_action(skip=True))])
def forgot_password(request: ForgotPasswordRequest, db: Session = Depends(get_db)):
    """
    Send a password reset code.
    The response does not reveal whether the email is registered.
    """
    message = auth_service.forgot_password(db, request.email)
    return {"success": True, "message": message}


@router.post(
    "/reset-password",
    dependencies=[Depends(audit_action(AuditAction.UPDATE, fields=("email", "otp_code", "new_password")))],
)
def reset_password(request: ResetPasswordRequest, db: Session = Depends(get_db)):
    auth_service.reset_password(db, request.email, request.otp_code, request.new_password)
    return {"success": True, "message": "Password has been reset. Please log in again."}


@router.post("/qr", dependencies=[Depends(audit_action(AuditAction.UPDATE, entity="Member"))])
def regenerate_my_qr(auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    """Issue a fresh QR code for the logged-in member"""
    result = auth_service.regenerate_own_qr(db, auth["user_id"])
    return {"success": True, "message": "QR code regenerated", "data": result}
