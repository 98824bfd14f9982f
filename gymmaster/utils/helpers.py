import random
import string
import uuid
from typing import Optional

import bcrypt

from gymmaster.config import BCRYPT_ROUNDS


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.
    Handles bcrypt's 72-byte limit by truncating if necessary.
    """
    password_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password_bytes, salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash.
    """
    password_bytes = plain_password.encode("utf-8")[:72]
    hashed_bytes = hashed_password.encode("utf-8")
    try:
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def generate_otp(length: int = 6) -> str:
    """
    Generate a random OTP (digits only).

    Args:
        length: number of digits (default 6)

    Returns:
        OTP string
    """
    return "".join(random.choices(string.digits, k=length))


def generate_qr_token() -> str:
    """Opaque random value printed in the member's check-in QR code"""
    return str(uuid.uuid4())


def generate_membership_number(year: int) -> str:
    """GM<yy><4 digits>; uniqueness is checked by the caller"""
    return f"GM{str(year)[-2:]}{random.randint(0, 9999):04d}"


def paginate(total: int, page: int, limit: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit,
    }


def duration_minutes(start, end) -> Optional[int]:
    if not start or not end:
        return None
    return int((end - start).total_seconds() / 60)
