"""
Accounts and sessions: registration, login, token refresh/revocation,
profile and password management
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from gymmaster.config import OTP_EXPIRY_MINUTES
from gymmaster.enums import MembershipStatus, Role
from gymmaster.errors import (
    AuthenticationFailed,
    Conflict,
    InactiveAccount,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from gymmaster.middleware import create_access_token, create_refresh_token, decode_refresh_token
from gymmaster.models import Branch, RefreshToken, Trainer, User
from gymmaster.services import checkin_service, member_service
from gymmaster.services.user_service import serialize_user
from gymmaster.utils.email import (
    send_2fa_enabled_email,
    send_login_otp_email,
    send_password_changed_email,
    send_password_reset_otp_email,
    send_welcome_email,
)
from gymmaster.utils.helpers import hash_password, verify_password
from gymmaster.utils.otp import create_otp, invalidate_otps, verify_otp

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If the email is registered, a reset code has been sent to it"
LOGIN_OTP_PURPOSE = "login_2fa"


def check_email_available(db: Session, email: str) -> bool:
    return db.query(User.id).filter(User.email == email).first() is None


def _issue_tokens(db: Session, user: User) -> dict:
    access_token = create_access_token(user)
    refresh_token, expires_at = create_refresh_token(user)
    db.add(RefreshToken(token=refresh_token, user_id=user.id, expires_at=expires_at))
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
    }


def _resolve_staff_branch(db: Session, branch_id: Optional[int]) -> int:
    if branch_id:
        branch = db.get(Branch, branch_id)
        if not branch or not branch.is_active:
            raise NotFound("branch", "Branch not found or inactive")
        return branch.id

    branch = db.query(Branch).filter(Branch.is_active.is_(True)).order_by(Branch.id).first()
    if not branch:
        raise ValidationFailed("No branch is available, contact an administrator", "NO_BRANCH_AVAILABLE")
    return branch.id


def register(db: Session, data: dict, allow_privileged: bool = False, now: Optional[datetime] = None) -> dict:
    """
    Create a user and the record that goes with its role.

    MEMBER gets a member profile with a 30-day QR code, TRAINER a trainer
    profile; every non-member role is attached to a branch (the first
    active branch when none is given).

    Args:
        data: validated registration fields
        allow_privileged: caller is an ADMIN and may create non-member roles
    """
    now = now or datetime.now()
    role = Role(data.get("role") or Role.MEMBER)

    if role != Role.MEMBER and not allow_privileged:
        raise PermissionDenied("Only an administrator can register staff accounts")

    email = data["email"].lower()
    if not check_email_available(db, email):
        raise Conflict("Email is already registered", "EMAIL_ALREADY_REGISTERED")

    branch_id = None
    if role != Role.MEMBER:
        branch_id = _resolve_staff_branch(db, data.get("branch_id"))

    user = User(
        email=email,
        password=hash_password(data["password"]),
        first_name=data["first_name"].strip(),
        last_name=data["last_name"].strip(),
        phone=data["phone"].strip() if data.get("phone") else None,
        role=role,
        branch_id=branch_id,
        is_active=True,
        email_verified=False,
    )
    db.add(user)
    db.flush()

    if role == Role.MEMBER:
        member_service.new_member_profile(db, user, data, now)
    elif role == Role.TRAINER:
        db.add(
            Trainer(
                user_id=user.id,
                branch_id=branch_id,
                specialties=data.get("specialties"),
                hourly_rate=data.get("hourly_rate") or 0,
                bio=data.get("bio"),
            )
        )

    tokens = _issue_tokens(db, user)
    db.commit()
    db.refresh(user)

    logger.info(f"User registered: {user.email} ({role.value})")
    send_welcome_email(user.email, user.first_name)

    return {"user": serialize_user(user), **tokens}


def login(db: Session, email: str, password: str, now: Optional[datetime] = None) -> dict:
    """
    Password login.

    Accounts with two-factor authentication get no tokens here: a code is
    emailed instead and the result only carries requires_2fa, user_id and
    email. The tokens come from verify_login_otp.
    """
    now = now or datetime.now()

    user = db.query(User).filter(User.email == email.lower()).first()
    if not user or not verify_password(password, user.password):
        logger.warning(f"Failed login attempt for {email}")
        raise AuthenticationFailed("Invalid email or password", "INVALID_CREDENTIALS")

    if not user.is_active:
        raise InactiveAccount("Your account is inactive. Contact an administrator.")

    if user.is_2fa_enabled:
        _send_login_otp(db, user, now)
        return {"requires_2fa": True, "user_id": user.id, "email": user.email}

    return {"requires_2fa": False, **_complete_login(db, user, now)}


def _send_login_otp(db: Session, user: User, now: datetime) -> datetime:
    code = create_otp(db, LOGIN_OTP_PURPOSE, user.email, user_id=user.id, now=now)
    db.commit()
    send_login_otp_email(user.email, code, user.first_name)
    logger.info(f"Login code sent to user {user.id}")
    return now + timedelta(minutes=OTP_EXPIRY_MINUTES)


def _two_factor_user(db: Session, email: str) -> User:
    user = db.query(User).filter(User.email == email.lower()).first()
    if not user or not user.is_2fa_enabled:
        raise ValidationFailed("Two-factor authentication is not enabled for this account", "TWO_FACTOR_NOT_ENABLED")
    if not user.is_active:
        raise InactiveAccount("Your account is inactive. Contact an administrator.")
    return user


def verify_login_otp(db: Session, email: str, otp_code: str, now: Optional[datetime] = None) -> dict:
    """Second login step: exchange the emailed code for the session tokens"""
    now = now or datetime.now()
    user = _two_factor_user(db, email)

    is_valid, error = verify_otp(db, LOGIN_OTP_PURPOSE, user.email, otp_code, now=now)
    if not is_valid:
        # keep the attempt counter
        db.commit()
        logger.warning(f"Invalid login code for user {user.id}")
        raise AuthenticationFailed(error, "INVALID_OTP")

    return _complete_login(db, user, now)


def resend_login_otp(db: Session, email: str, now: Optional[datetime] = None) -> dict:
    """Replace the pending login code with a new one"""
    now = now or datetime.now()
    user = _two_factor_user(db, email)
    return {"expires_at": _send_login_otp(db, user, now)}


def set_two_factor(db: Session, user_id: int, enabled: bool, strict: bool = False) -> dict:
    """
    Turn email-code login on or off for a user.

    strict: refuse when the account is already in the requested state
    (the admin endpoints report that as an error, self-service does not)
    """
    user = db.get(User, user_id)
    if not user:
        raise NotFound("user")

    if user.is_2fa_enabled == enabled:
        if strict:
            state = "enabled" if enabled else "disabled"
            raise ValidationFailed(
                f"Two-factor authentication is already {state} for this user",
                "TWO_FACTOR_ALREADY_ENABLED" if enabled else "TWO_FACTOR_NOT_ENABLED",
            )
        return serialize_user(user)

    user.is_2fa_enabled = enabled
    if not enabled:
        invalidate_otps(db, LOGIN_OTP_PURPOSE, user.email)
    db.commit()
    db.refresh(user)

    logger.info(f"Two-factor authentication {'enabled' if enabled else 'disabled'} for user {user.id}")
    if enabled:
        send_2fa_enabled_email(user.email, user.first_name)
    return serialize_user(user)


def _complete_login(db: Session, user: User, now: datetime) -> dict:
    user.last_login = now

    db.query(RefreshToken).filter(
        RefreshToken.user_id == user.id,
        or_(RefreshToken.expires_at < now, RefreshToken.is_revoked.is_(True)),
    ).delete(synchronize_session=False)

    tokens = _issue_tokens(db, user)
    db.commit()
    db.refresh(user)

    logger.info(f"User logged in: {user.email}")
    return {"user": serialize_user(user), **tokens}


def refresh(db: Session, refresh_token: str, now: Optional[datetime] = None) -> dict:
    """New access token for a stored, unrevoked, unexpired refresh token"""
    now = now or datetime.now()
    decode_refresh_token(refresh_token)

    record = (
        db.query(RefreshToken)
        .filter(
            RefreshToken.token == refresh_token,
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > now,
        )
        .first()
    )
    if not record:
        raise AuthenticationFailed("Invalid or expired refresh token", "INVALID_REFRESH_TOKEN")

    user = record.user
    if not user.is_active:
        record.is_revoked = True
        db.commit()
        raise InactiveAccount("Your account is inactive. Contact an administrator.")

    return {
        "access_token": create_access_token(user),
        "token_type": "bearer",
        "user": serialize_user(user),
    }


def logout(db: Session, user_id: int, refresh_token: str) -> None:
    record = (
        db.query(RefreshToken)
        .filter(
            RefreshToken.token == refresh_token,
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked.is_(False),
        )
        .first()
    )
    if record:
        record.is_revoked = True
        db.commit()


def logout_all(db: Session, user_id: int) -> None:
    """Revoke every refresh token and invalidate every access token already issued"""
    user = db.get(User, user_id)
    if not user:
        raise NotFound("user")

    db.query(RefreshToken).filter(
        RefreshToken.user_id == user.id, RefreshToken.is_revoked.is_(False)
    ).update({RefreshToken.is_revoked: True}, synchronize_session=False)
    user.token_version = (user.token_version or 1) + 1
    db.commit()
    logger.info(f"All sessions revoked for user {user.id}")


def get_profile(db: Session, user_id: int) -> dict:
    user = db.get(User, user_id)
    if not user:
        raise NotFound("user")

    data = serialize_user(user)
    data["member"] = None
    data["trainer"] = None

    if user.member:
        member = member_service.serialize_member(user.member)
        member.pop("user", None)
        member["active_memberships"] = [
            {**m.to_dict(), "membership_type_name": m.membership_type.name}
            for m in user.member.memberships
            if m.status == MembershipStatus.ACTIVE
        ]
        data["member"] = member

    if user.trainer:
        data["trainer"] = user.trainer.to_dict()

    return data


def update_profile(db: Session, user_id: int, data: dict) -> dict:
    user = db.get(User, user_id)
    if not user:
        raise NotFound("user")

    for field in ("first_name", "last_name", "phone"):
        if data.get(field) is not None:
            setattr(user, field, data[field].strip())

    db.commit()
    db.refresh(user)
    return serialize_user(user)


def change_password(db: Session, user_id: int, current_password: str, new_password: str) -> None:
    user = db.get(User, user_id)
    if not user:
        raise NotFound("user")

    if not verify_password(current_password, user.password):
        raise ValidationFailed("Current password is incorrect", "INVALID_CURRENT_PASSWORD")

    if current_password == new_password:
        raise ValidationFailed("New password must be different from the current one", "SAME_PASSWORD")

    user.password = hash_password(new_password)
    db.commit()

    logger.info(f"Password changed for user {user.id}")
    send_password_changed_email(user.email, user.first_name)


def forgot_password(db: Session, email: str) -> str:
    """Email a reset code; the answer is the same whether or not the email exists"""
    user = db.query(User).filter(User.email == email.lower()).first()

    if user and user.is_active:
        code = create_otp(db, "password_reset", user.email, user_id=user.id)
        db.commit()
        send_password_reset_otp_email(user.email, code, user.first_name)
    else:
        logger.info(f"Password reset requested for unknown or inactive email {email}")

    return FORGOT_PASSWORD_MESSAGE


def reset_password(db: Session, email: str, otp_code: str, new_password: str) -> None:
    email = email.lower()
    is_valid, error = verify_otp(db, "password_reset", email, otp_code)
    if not is_valid:
        # keep the attempt counter
        db.commit()
        raise ValidationFailed(error, "INVALID_OTP")

    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise NotFound("user")

    user.password = hash_password(new_password)
    db.query(RefreshToken).filter(
        RefreshToken.user_id == user.id, RefreshToken.is_revoked.is_(False)
    ).update({RefreshToken.is_revoked: True}, synchronize_session=False)
    user.token_version = (user.token_version or 1) + 1
    db.commit()

    logger.info(f"Password reset for user {user.id}")
    send_password_changed_email(user.email, user.first_name)


def regenerate_own_qr(db: Session, user_id: int) -> dict:
    member = member_service.get_member_by_user(db, user_id)
    return checkin_service.regenerate_qr(db, member.id)
