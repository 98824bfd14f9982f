import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from gymmaster.enums import MembershipStatus, PaymentStatus
from gymmaster.errors import Conflict, NotFound, ValidationFailed
from gymmaster.models import Member, Membership, MembershipType, Payment, User
from gymmaster.utils.helpers import paginate

logger = logging.getLogger(__name__)


# ============== Membership types ==============

def list_types(db: Session, is_active: Optional[bool] = None) -> list:
    query = db.query(MembershipType)
    if is_active is not None:
        query = query.filter(MembershipType.is_active.is_(is_active))
    return [t.to_dict() for t in query.order_by(MembershipType.price.asc(), MembershipType.id).all()]


def get_type(db: Session, type_id: int) -> MembershipType:
    membership_type = db.get(MembershipType, type_id)
    if not membership_type:
        raise NotFound("membership_type")
    return membership_type


def get_type_detail(db: Session, type_id: int) -> dict:
    membership_type = get_type(db, type_id)
    active_count = (
        db.query(func.count(Membership.id))
        .filter(Membership.membership_type_id == type_id, Membership.status == MembershipStatus.ACTIVE)
        .scalar()
    )
    return {**membership_type.to_dict(), "active_memberships": active_count or 0}


def _name_taken(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(MembershipType.id).filter(MembershipType.name == name)
    if exclude_id:
        query = query.filter(MembershipType.id != exclude_id)
    return query.first() is not None


def create_type(db: Session, data: dict) -> dict:
    if _name_taken(db, data["name"]):
        raise Conflict("A membership type with this name already exists", "MEMBERSHIP_TYPE_EXISTS")

    membership_type = MembershipType(**data)
    db.add(membership_type)
    db.commit()
    db.refresh(membership_type)
    return membership_type.to_dict()


def update_type(db: Session, type_id: int, data: dict) -> dict:
    membership_type = get_type(db, type_id)

    if data.get("name") and _name_taken(db, data["name"], exclude_id=type_id):
        raise Conflict("A membership type with this name already exists", "MEMBERSHIP_TYPE_EXISTS")

    for field, value in data.items():
        setattr(membership_type, field, value)

    db.commit()
    db.refresh(membership_type)
    return membership_type.to_dict()


# ============== Memberships ==============

def serialize_membership(membership: Membership) -> dict:
    data = membership.to_dict()
    data["membership_type_name"] = membership.membership_type.name if membership.membership_type else None
    member = membership.member
    if member:
        data["member_name"] = member.user.full_name
        data["membership_number"] = member.membership_number
    return data


def _membership_query(db: Session):
    return db.query(Membership).options(
        joinedload(Membership.membership_type),
        joinedload(Membership.member).joinedload(Member.user),
    )


def get_membership(db: Session, membership_id: int) -> Membership:
    membership = _membership_query(db).filter(Membership.id == membership_id).first()
    if not membership:
        raise NotFound("membership")
    return membership


def list_memberships(
    db: Session,
    status: Optional[MembershipStatus] = None,
    member_id: Optional[int] = None,
    membership_type_id: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list, dict]:
    query = _membership_query(db)

    if status:
        query = query.filter(Membership.status == status)
    if member_id:
        query = query.filter(Membership.member_id == member_id)
    if membership_type_id:
        query = query.filter(Membership.membership_type_id == membership_type_id)

    total = query.count()
    memberships = (
        query.order_by(Membership.created_at.desc(), Membership.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return [serialize_membership(m) for m in memberships], paginate(total, page, limit)


def create_membership(db: Session, data: dict, now: Optional[datetime] = None) -> dict:
    """
    Grant a membership. A member holds at most one ACTIVE membership; the
    check runs right before the insert in the same transaction.
    """
    now = now or datetime.now()

    member = db.query(Member).filter(Member.id == data["member_id"]).with_for_update().first()
    if not member:
        raise NotFound("member")

    membership_type = db.get(MembershipType, data["membership_type_id"])
    if not membership_type or not membership_type.is_active:
        raise NotFound("membership_type", "Membership type not found or inactive")

    has_active = (
        db.query(Membership.id)
        .filter(Membership.member_id == member.id, Membership.status == MembershipStatus.ACTIVE)
        .with_for_update()
        .first()
    )
    if has_active:
        db.rollback()
        raise Conflict("Member already has an active membership", "MEMBERSHIP_ALREADY_ACTIVE")

    start_date = data.get("start_date") or now
    membership = Membership(
        member_id=member.id,
        membership_type_id=membership_type.id,
        start_date=start_date,
        end_date=start_date + timedelta(days=membership_type.duration_days),
        status=MembershipStatus.ACTIVE,
        price_paid=data.get("price_paid") if data.get("price_paid") is not None else membership_type.price,
        notes=data.get("notes"),
    )
    db.add(membership)
    db.commit()
    db.refresh(membership)

    logger.info(f"Membership {membership.id} ({membership_type.name}) created for member {member.id}")
    return serialize_membership(membership)


def update_membership(db: Session, membership_id: int, data: dict) -> dict:
    membership = get_membership(db, membership_id)

    if data.get("status") == MembershipStatus.ACTIVE and membership.status != MembershipStatus.ACTIVE:
        other_active = (
            db.query(Membership.id)
            .filter(
                Membership.member_id == membership.member_id,
                Membership.status == MembershipStatus.ACTIVE,
                Membership.id != membership.id,
            )
            .first()
        )
        if other_active:
            raise Conflict("Member already has an active membership", "MEMBERSHIP_ALREADY_ACTIVE")

    for field in ("start_date", "end_date", "status", "price_paid", "notes"):
        if field in data and data[field] is not None:
            setattr(membership, field, data[field])

    if membership.end_date <= membership.start_date:
        db.rollback()
        raise ValidationFailed("End date must be after start date", "INVALID_DATE_RANGE")

    db.commit()
    db.refresh(membership)
    return serialize_membership(membership)


def extend_membership(db: Session, membership_id: int, days: int, notes: Optional[str] = None) -> dict:
    membership = get_membership(db, membership_id)

    if membership.status == MembershipStatus.CANCELLED:
        raise ValidationFailed("A cancelled membership cannot be extended", "MEMBERSHIP_CANCELLED")

    membership.end_date = membership.end_date + timedelta(days=days)
    if notes:
        membership.notes = f"{membership.notes}\n{notes}" if membership.notes else notes

    db.commit()
    db.refresh(membership)
    logger.info(f"Membership {membership.id} extended by {days} days")
    return serialize_membership(membership)


def cancel_membership(db: Session, membership_id: int, reason: Optional[str] = None) -> dict:
    membership = get_membership(db, membership_id)

    if membership.status == MembershipStatus.CANCELLED:
        raise ValidationFailed("Membership is already cancelled", "MEMBERSHIP_ALREADY_CANCELLED")

    membership.status = MembershipStatus.CANCELLED
    if reason:
        membership.notes = f"{membership.notes}\n{reason}" if membership.notes else reason

    db.commit()
    db.refresh(membership)
    return serialize_membership(membership)


def get_expiring(db: Session, days: int = 7, now: Optional[datetime] = None) -> list:
    now = now or datetime.now()
    memberships = (
        _membership_query(db)
        .filter(
            Membership.status == MembershipStatus.ACTIVE,
            Membership.end_date >= now,
            Membership.end_date <= now + timedelta(days=days),
        )
        .order_by(Membership.end_date.asc())
        .all()
    )
    return [serialize_membership(m) for m in memberships]


def get_member_memberships(db: Session, member_id: int) -> list:
    if not db.get(Member, member_id):
        raise NotFound("member")
    memberships = (
        _membership_query(db)
        .filter(Membership.member_id == member_id)
        .order_by(Membership.start_date.desc())
        .all()
    )
    return [serialize_membership(m) for m in memberships]


def expire_memberships(db: Session, now: Optional[datetime] = None) -> int:
    """ACTIVE memberships whose end date has passed become EXPIRED"""
    now = now or datetime.now()
    expired = (
        db.query(Membership)
        .filter(Membership.status == MembershipStatus.ACTIVE, Membership.end_date < now)
        .update({Membership.status: MembershipStatus.EXPIRED}, synchronize_session=False)
    )
    db.commit()

    if expired:
        logger.info(f"Expired {expired} memberships")
    return expired


def get_stats(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    start_of_month = datetime(now.year, now.month, 1)

    by_status = {status.value: 0 for status in MembershipStatus}
    for status, count in db.query(Membership.status, func.count(Membership.id)).group_by(Membership.status).all():
        by_status[status.value if isinstance(status, MembershipStatus) else status] = count

    expiring_soon = (
        db.query(func.count(Membership.id))
        .filter(
            Membership.status == MembershipStatus.ACTIVE,
            Membership.end_date >= now,
            Membership.end_date <= now + timedelta(days=7),
        )
        .scalar()
    )

    by_type = dict(
        db.query(MembershipType.name, func.count(Membership.id))
        .join(Membership, Membership.membership_type_id == MembershipType.id)
        .filter(Membership.status == MembershipStatus.ACTIVE)
        .group_by(MembershipType.name)
        .all()
    )

    monthly_revenue = (
        db.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.status == PaymentStatus.COMPLETED, Payment.payment_date >= start_of_month)
        .scalar()
    )

    return {
        "total": sum(by_status.values()),
        "active": by_status[MembershipStatus.ACTIVE.value],
        "expired": by_status[MembershipStatus.EXPIRED.value],
        "by_status": by_status,
        "expiring_soon": expiring_soon or 0,
        "by_type": by_type,
        "monthly_revenue": float(monthly_revenue or 0),
    }


def expiring_for_reminder(db: Session, days_ahead: int, now: Optional[datetime] = None) -> list:
    """(email, first name, end date) of ACTIVE memberships ending on the day `days_ahead` from now"""
    now = now or datetime.now()
    day_start = datetime(now.year, now.month, now.day) + timedelta(days=days_ahead)
    day_end = day_start + timedelta(days=1)

    return (
        db.query(User.email, User.first_name, Membership.end_date)
        .join(Member, Member.user_id == User.id)
        .join(Membership, Membership.member_id == Member.id)
        .filter(
            Membership.status == MembershipStatus.ACTIVE,
            Membership.end_date >= day_start,
            Membership.end_date < day_end,
            User.is_active.is_(True),
        )
        .all()
    )
