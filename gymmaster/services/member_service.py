import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from gymmaster.config import QR_INITIAL_EXPIRATION_DAYS
from gymmaster.enums import MembershipStatus, Role
from gymmaster.errors import Conflict, NotFound, ValidationFailed
from gymmaster.models import Member, Membership, User
from gymmaster.utils.helpers import generate_membership_number, generate_qr_token, paginate

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("date_of_birth", "emergency_contact", "emergency_phone", "medical_notes")


def serialize_member(member: Member, include_qr: bool = True) -> dict:
    data = member.to_dict()
    if not include_qr:
        data.pop("qr_code", None)
    user = member.user
    data["user"] = {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "is_active": user.is_active,
    }
    data["full_name"] = user.full_name
    return data


def _member_query(db: Session):
    return db.query(Member).options(joinedload(Member.user))


def get_member(db: Session, member_id: int) -> Member:
    member = _member_query(db).filter(Member.id == member_id).first()
    if not member:
        raise NotFound("member")
    return member


def get_member_by_user(db: Session, user_id: int) -> Member:
    member = _member_query(db).filter(Member.user_id == user_id).first()
    if not member:
        raise NotFound("member", "Member profile not found")
    return member


def get_member_by_qr(db: Session, qr_code: str) -> Member:
    member = _member_query(db).filter(Member.qr_code == qr_code).first()
    if not member:
        raise NotFound("member", "No member holds this QR code")
    return member


def unique_membership_number(db: Session, year: int) -> str:
    while True:
        number = generate_membership_number(year)
        if not db.query(Member.id).filter(Member.membership_number == number).first():
            return number


def new_member_profile(db: Session, user: User, data: Optional[dict] = None, now: Optional[datetime] = None) -> Member:
    """Member row for a freshly created user, with an initial QR code; caller commits"""
    now = now or datetime.now()
    data = data or {}

    member = Member(
        user_id=user.id,
        membership_number=unique_membership_number(db, now.year),
        qr_code=generate_qr_token(),
        qr_code_expiry=now + timedelta(days=QR_INITIAL_EXPIRATION_DAYS),
        join_date=now,
        is_active=True,
        **{field: data.get(field) for field in PROFILE_FIELDS},
    )
    db.add(member)
    db.flush()
    return member


def create_member(db: Session, user_id: int, data: dict) -> dict:
    """Member profile for an existing MEMBER user; one profile per user"""
    user = db.get(User, user_id)
    if not user:
        raise NotFound("user")

    if user.role != Role.MEMBER:
        raise ValidationFailed("Only users with the MEMBER role can have a member profile", "INVALID_ROLE")

    if db.query(Member.id).filter(Member.user_id == user_id).first():
        raise Conflict("This user already has a member profile", "MEMBER_ALREADY_EXISTS")

    member = new_member_profile(db, user, data)
    db.commit()
    db.refresh(member)

    logger.info(f"Member {member.membership_number} created for user {user.id}")
    return serialize_member(member)


def list_members(
    db: Session,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list, dict]:
    query = _member_query(db).join(Member.user)

    if is_active is not None:
        query = query.filter(Member.is_active.is_(is_active))
    if search:
        term = f"%{search}%"
        query = query.filter(
            or_(
                User.first_name.ilike(term),
                User.last_name.ilike(term),
                User.email.ilike(term),
                Member.membership_number.ilike(term),
            )
        )

    total = query.count()
    members = query.order_by(Member.created_at.desc(), Member.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return [serialize_member(m, include_qr=False) for m in members], paginate(total, page, limit)


def search_members(db: Session, term: str, limit: int = 10) -> list:
    members, _ = list_members(db, search=term, is_active=True, page=1, limit=limit)
    return members


def update_member(db: Session, member_id: int, data: dict) -> dict:
    member = get_member(db, member_id)

    for field in PROFILE_FIELDS + ("is_active",):
        if field in data:
            setattr(member, field, data[field])

    user = member.user
    for field in ("first_name", "last_name", "phone"):
        if field in data and data[field] is not None:
            setattr(user, field, data[field])

    db.commit()
    db.refresh(member)
    return serialize_member(member)


def membership_status(db: Session, member_id: int, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    member = get_member(db, member_id)

    current = (
        db.query(Membership)
        .filter(Membership.member_id == member.id, Membership.status == MembershipStatus.ACTIVE)
        .order_by(Membership.end_date.desc())
        .first()
    )

    if not current:
        return {
            "has_active_membership": False,
            "current_membership": None,
            "days_remaining": 0,
            "is_expired": True,
        }

    days_remaining = math.ceil((current.end_date - now).total_seconds() / 86400)
    membership = current.to_dict()
    membership["membership_type_name"] = current.membership_type.name
    return {
        "has_active_membership": True,
        "current_membership": membership,
        "days_remaining": max(0, days_remaining),
        "is_expired": days_remaining <= 0,
    }


def get_stats(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    start_of_month = datetime(now.year, now.month, 1)

    total = db.query(func.count(Member.id)).scalar() or 0
    active = db.query(func.count(Member.id)).filter(Member.is_active.is_(True)).scalar() or 0
    with_active_membership = (
        db.query(func.count(func.distinct(Membership.member_id)))
        .filter(Membership.status == MembershipStatus.ACTIVE)
        .scalar()
        or 0
    )
    new_this_month = db.query(func.count(Member.id)).filter(Member.created_at >= start_of_month).scalar() or 0

    birth_dates = [
        dob
        for (dob,) in db.query(Member.date_of_birth)
        .filter(Member.date_of_birth.isnot(None), Member.is_active.is_(True))
        .all()
    ]
    average_age = round(sum(now.year - dob.year for dob in birth_dates) / len(birth_dates)) if birth_dates else 0

    return {
        "total": total,
        "active": active,
        "inactive": total - active,
        "with_active_membership": with_active_membership,
        "new_this_month": new_this_month,
        "average_age": average_age,
    }
