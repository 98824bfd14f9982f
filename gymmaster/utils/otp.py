"""
OTP Utility for GymMaster
Handles OTP generation, storage, and verification
"""
import logging
from datetime import datetime, timedelta
from typing import Literal, Optional

from sqlalchemy.orm import Session

from gymmaster.config import OTP_EXPIRY_MINUTES, OTP_LENGTH, OTP_MAX_ATTEMPTS
from gymmaster.models import OtpCode
from gymmaster.utils.helpers import generate_otp

logger = logging.getLogger(__name__)

OTPPurpose = Literal["password_reset", "login_2fa"]


def create_otp(
    db: Session,
    purpose: OTPPurpose,
    email: str,
    user_id: Optional[int] = None,
    expiry_minutes: int = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Create and store an OTP, invalidating earlier unused codes for the same email

    Returns:
        str: the generated code (caller commits)
    """
    now = now or datetime.now()
    if expiry_minutes is None:
        expiry_minutes = OTP_EXPIRY_MINUTES

    invalidate_otps(db, purpose, email)

    code = generate_otp(OTP_LENGTH)
    db.add(
        OtpCode(
            purpose=purpose,
            email=email,
            user_id=user_id,
            code=code,
            expires_at=now + timedelta(minutes=expiry_minutes),
        )
    )
    db.flush()
    return code


def verify_otp(
    db: Session,
    purpose: OTPPurpose,
    email: str,
    code: str,
    now: Optional[datetime] = None,
) -> tuple[bool, Optional[str]]:
    """
    Verify the latest unused OTP for an email

    Returns:
        tuple: (is_valid, error message); a valid code is marked as used
    """
    now = now or datetime.now()
    record = (
        db.query(OtpCode)
        .filter(OtpCode.email == email, OtpCode.purpose == purpose, OtpCode.is_used.is_(False))
        .order_by(OtpCode.created_at.desc(), OtpCode.id.desc())
        .first()
    )

    if not record:
        return False, "Invalid OTP code"

    if now > record.expires_at:
        record.is_used = True
        db.flush()
        return False, "OTP code has expired"

    if record.attempts >= OTP_MAX_ATTEMPTS:
        record.is_used = True
        db.flush()
        return False, "Too many attempts, request a new code"

    if record.code != code:
        record.attempts += 1
        db.flush()
        return False, "Invalid OTP code"

    record.is_used = True
    db.flush()
    return True, None


def invalidate_otps(db: Session, purpose: OTPPurpose, email: str) -> int:
    """Mark every unused code of this purpose for the email as used"""
    return (
        db.query(OtpCode)
        .filter(OtpCode.email == email, OtpCode.purpose == purpose, OtpCode.is_used.is_(False))
        .update({OtpCode.is_used: True}, synchronize_session=False)
    )


def cleanup_expired_otps(db: Session, older_than_hours: int = 24) -> int:
    """Delete OTP codes that expired more than older_than_hours ago"""
    cutoff_time = datetime.now() - timedelta(hours=older_than_hours)
    deleted_count = (
        db.query(OtpCode).filter(OtpCode.expires_at < cutoff_time).delete(synchronize_session=False)
    )
    logger.info(f"Deleted {deleted_count} expired OTP codes")
    return deleted_count
