"""
Check-in / check-out state machine

A member is either outside (no open visit) or inside (exactly one CheckIn
with check_out_at = NULL). Every transition is validated and written in one
transaction; check-in locks the member row and then reads the open visit
with a locking read, so concurrent scans of the same member serialize on
databases that support SELECT ... FOR UPDATE.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from gymmaster.config import AUTO_CHECKOUT_HOURS, QR_EXPIRATION_HOURS
from gymmaster.enums import MembershipStatus
from gymmaster.errors import (
    AlreadyClosed,
    BranchUnavailable,
    InactiveAccount,
    InvalidToken,
    NoActiveMembership,
    NotFound,
    PermissionDenied,
    TokenExpired,
    VisitAlreadyOpen,
)
from gymmaster.models import Branch, CheckIn, Member, Membership
from gymmaster.utils.helpers import duration_minutes, generate_qr_token, paginate

logger = logging.getLogger(__name__)

ADMIN_CHECKOUT_NOTE = "Administrative check-out"
AUTO_CHECKOUT_NOTE = "Automatic check-out: visit exceeded time limit"

WEEKDAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def serialize_checkin(checkin: CheckIn, now: Optional[datetime] = None) -> dict:
    data = checkin.to_dict()
    member = checkin.member
    data["member_name"] = member.user.full_name if member and member.user else None
    data["member_email"] = member.user.email if member and member.user else None
    data["membership_number"] = member.membership_number if member else None
    data["branch_name"] = checkin.branch.name if checkin.branch else None
    data["is_open"] = checkin.check_out_at is None
    data["duration_minutes"] = duration_minutes(
        checkin.check_in_at, checkin.check_out_at or now or datetime.now()
    )
    return data


def _checkin_query(db: Session):
    return db.query(CheckIn).options(
        joinedload(CheckIn.member).joinedload(Member.user),
        joinedload(CheckIn.branch),
    )


def active_membership(db: Session, member_id: int, now: datetime) -> Optional[Membership]:
    """ACTIVE membership whose date range contains now, latest end first"""
    return (
        db.query(Membership)
        .filter(
            Membership.member_id == member_id,
            Membership.status == MembershipStatus.ACTIVE,
            Membership.start_date <= now,
            Membership.end_date >= now,
        )
        .order_by(Membership.end_date.desc())
        .first()
    )


def open_visit(db: Session, member_id: int, lock: bool = False) -> Optional[CheckIn]:
    """
    The member's visit without a check-out time, if any.

    With lock=True this is a locking read (SELECT ... FOR UPDATE), which also
    sees visits committed after the transaction snapshot was taken.
    """
    query = (
        db.query(CheckIn)
        .filter(CheckIn.member_id == member_id, CheckIn.check_out_at.is_(None))
        .order_by(CheckIn.check_in_at.desc())
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def _admit(db: Session, member: Member, branch_id: int, now: datetime) -> dict:
    membership = active_membership(db, member.id, now)
    if not membership:
        raise NoActiveMembership()

    if open_visit(db, member.id, lock=True):
        raise VisitAlreadyOpen()

    branch = db.get(Branch, branch_id)
    if not branch or not branch.is_active:
        raise BranchUnavailable()

    checkin = CheckIn(member_id=member.id, branch_id=branch.id, check_in_at=now)
    db.add(checkin)
    db.commit()
    db.refresh(checkin)

    logger.info(f"Member {member.id} checked in at branch {branch.id} (check-in {checkin.id})")

    data = serialize_checkin(checkin, now)
    data["membership_type"] = membership.membership_type.name if membership.membership_type else None
    data["membership_end_date"] = membership.end_date
    return data


def check_in(db: Session, qr_code: str, branch_id: int, now: Optional[datetime] = None) -> dict:
    """
    Admit the member holding qr_code into a branch.

    Checks run in a fixed order and the first failure wins:
    InvalidToken, InactiveAccount, TokenExpired, NoActiveMembership,
    VisitAlreadyOpen, BranchUnavailable.
    """
    now = now or datetime.now()

    try:
        member = db.query(Member).filter(Member.qr_code == qr_code).with_for_update().first()
        if not member:
            raise InvalidToken()

        if not member.user.is_active:
            raise InactiveAccount()

        # The expiry instant itself is still valid
        if now > member.qr_code_expiry:
            raise TokenExpired()

        return _admit(db, member, branch_id, now)
    except Exception:
        db.rollback()
        raise


def admin_check_in(db: Session, member_id: int, branch_id: int, now: Optional[datetime] = None) -> dict:
    """Staff check-in by member id; the QR token is not involved"""
    now = now or datetime.now()

    try:
        member = db.query(Member).filter(Member.id == member_id).with_for_update().first()
        if not member:
            raise NotFound("member")

        if not member.user.is_active:
            raise InactiveAccount()

        return _admit(db, member, branch_id, now)
    except Exception:
        db.rollback()
        raise


def check_out(
    db: Session,
    checkin_id: int,
    notes: Optional[str] = None,
    owner_user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Close a visit.

    owner_user_id restricts the operation to visits of that user's member
    profile (members may only close their own visit).
    """
    now = now or datetime.now()

    try:
        checkin = db.query(CheckIn).filter(CheckIn.id == checkin_id).with_for_update().first()
        if not checkin:
            raise NotFound("checkin", "Check-in not found")

        if owner_user_id is not None and checkin.member.user_id != owner_user_id:
            raise PermissionDenied("You can only check out your own visit")

        if checkin.check_out_at is not None:
            raise AlreadyClosed()

        checkin.check_out_at = now
        if notes is not None:
            checkin.notes = notes
        db.commit()
        db.refresh(checkin)
    except Exception:
        db.rollback()
        raise

    logger.info(f"Check-in {checkin.id} closed after {duration_minutes(checkin.check_in_at, now)} minutes")
    return serialize_checkin(checkin, now)


def admin_check_out(db: Session, member_id: int, now: Optional[datetime] = None) -> dict:
    """Close the member's open visit with the administrative note"""
    now = now or datetime.now()

    try:
        member = db.get(Member, member_id)
        if not member:
            raise NotFound("member")

        checkin = open_visit(db, member.id, lock=True)
        if not checkin:
            raise NotFound(message="Member has no open visit", error_code="NO_OPEN_VISIT")

        checkin.check_out_at = now
        checkin.notes = ADMIN_CHECKOUT_NOTE
        db.commit()
        db.refresh(checkin)
    except Exception:
        db.rollback()
        raise
    return serialize_checkin(checkin, now)


def auto_close_stale_visits(db: Session, hours: int = AUTO_CHECKOUT_HOURS, now: Optional[datetime] = None) -> int:
    """
    Close every open visit that started strictly before now - hours.

    Returns:
        number of visits closed (0 on a repeated run)
    """
    now = now or datetime.now()
    threshold = now - timedelta(hours=hours)

    closed = (
        db.query(CheckIn)
        .filter(CheckIn.check_out_at.is_(None), CheckIn.check_in_at < threshold)
        .update(
            {CheckIn.check_out_at: now, CheckIn.notes: AUTO_CHECKOUT_NOTE},
            synchronize_session=False,
        )
    )
    db.commit()

    if closed:
        logger.info(f"Auto-closed {closed} visits open longer than {hours} hours")
    return closed


def regenerate_qr(db: Session, member_id: int, now: Optional[datetime] = None) -> dict:
    """New random QR token valid for QR_EXPIRATION_HOURS; the old one stops working immediately"""
    now = now or datetime.now()

    member = db.get(Member, member_id)
    if not member:
        raise NotFound("member")

    member.qr_code = generate_qr_token()
    member.qr_code_expiry = now + timedelta(hours=QR_EXPIRATION_HOURS)
    db.commit()

    logger.info(f"QR code regenerated for member {member.id}")
    return {
        "member_id": member.id,
        "qr_code": member.qr_code,
        "qr_code_expiry": member.qr_code_expiry,
    }


# ============== Queries ==============

def get_history(
    db: Session,
    member_id: Optional[int] = None,
    branch_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    active_only: bool = False,
    page: int = 1,
    limit: int = 10,
) -> tuple[list, dict]:
    query = _checkin_query(db)

    if member_id:
        query = query.filter(CheckIn.member_id == member_id)
    if branch_id:
        query = query.filter(CheckIn.branch_id == branch_id)
    if active_only:
        query = query.filter(CheckIn.check_out_at.is_(None))
    if start_date:
        query = query.filter(CheckIn.check_in_at >= start_date)
    if end_date:
        query = query.filter(CheckIn.check_in_at <= end_date)

    total = query.count()
    checkins = (
        query.order_by(CheckIn.check_in_at.desc(), CheckIn.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    now = datetime.now()
    return [serialize_checkin(c, now) for c in checkins], paginate(total, page, limit)


def get_active(db: Session, branch_id: Optional[int] = None) -> list:
    query = _checkin_query(db).filter(CheckIn.check_out_at.is_(None))
    if branch_id:
        query = query.filter(CheckIn.branch_id == branch_id)

    now = datetime.now()
    return [serialize_checkin(c, now) for c in query.order_by(CheckIn.check_in_at.desc()).all()]


def get_my_active(db: Session, user_id: int) -> Optional[dict]:
    member = db.query(Member).filter(Member.user_id == user_id).first()
    if not member:
        raise NotFound("member", "Member profile not found")

    checkin = open_visit(db, member.id)
    return serialize_checkin(checkin) if checkin else None


def get_stats(
    db: Session,
    branch_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """
    Attendance statistics.

    Hour and weekday buckets are computed in Python so the same code runs on
    MySQL and SQLite. Weekdays are numbered from Sunday = 0.
    """
    query = db.query(CheckIn.member_id, CheckIn.check_in_at)
    if branch_id:
        query = query.filter(CheckIn.branch_id == branch_id)
    if start_date:
        query = query.filter(CheckIn.check_in_at >= start_date)
    if end_date:
        query = query.filter(CheckIn.check_in_at <= end_date)

    rows = query.all()
    visits_per_member = Counter(member_id for member_id, _ in rows)
    by_hour = Counter(checked_in.hour for _, checked_in in rows)
    by_day = Counter((checked_in.weekday() + 1) % 7 for _, checked_in in rows)

    total = len(rows)
    unique_members = len(visits_per_member)

    return {
        "total_checkins": total,
        "unique_members": unique_members,
        "average_visits_per_member": round(total / unique_members, 2) if unique_members else 0,
        "checkins_by_hour": [{"hour": h, "count": by_hour[h]} for h in sorted(by_hour)],
        "checkins_by_day": [
            {"day": d, "name": WEEKDAYS[d], "count": by_day[d]} for d in sorted(by_day)
        ],
    }
