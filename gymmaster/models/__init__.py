from gymmaster.models.base import Base
from gymmaster.models.user import User, RefreshToken, OtpCode
from gymmaster.models.branch import Branch, Trainer
from gymmaster.models.member import Member
from gymmaster.models.membership import MembershipType, Membership
from gymmaster.models.payment import Payment
from gymmaster.models.gym_class import GymClass, Reservation
from gymmaster.models.checkin import CheckIn
from gymmaster.models.audit_log import AuditLog

__all__ = [
    "Base",
    "User",
    "RefreshToken",
    "OtpCode",
    "Branch",
    "Trainer",
    "Member",
    "MembershipType",
    "Membership",
    "Payment",
    "GymClass",
    "Reservation",
    "CheckIn",
    "AuditLog",
]
