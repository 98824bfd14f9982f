"""
Dashboard figures and management reports

Monthly/daily trends are grouped in Python so the queries stay portable
between MySQL and SQLite.
"""
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from gymmaster.enums import ClassStatus, MembershipStatus, PaymentStatus, ReservationStatus, Role
from gymmaster.models import (
    Branch,
    CheckIn,
    GymClass,
    Member,
    Membership,
    MembershipType,
    Payment,
    Reservation,
    Trainer,
)
from gymmaster.services.checkin_service import WEEKDAYS

logger = logging.getLogger(__name__)


def _day_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, now.day)


def _month_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1)


def _completed_revenue(db: Session, *filters) -> float:
    value = (
        db.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.status == PaymentStatus.COMPLETED, *filters)
        .scalar()
    )
    return float(value or 0)


# ============== Dashboard ==============

def staff_dashboard(db: Session, branch_id: Optional[int] = None, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    today = _day_start(now)
    month_start = _month_start(now)
    last_month_start = _month_start(month_start - timedelta(days=1))

    checkin_branch = [CheckIn.branch_id == branch_id] if branch_id else []
    payment_branch = [Payment.branch_id == branch_id] if branch_id else []
    class_branch = [GymClass.branch_id == branch_id] if branch_id else []

    month_revenue = _completed_revenue(db, Payment.payment_date >= month_start, *payment_branch)
    last_month_revenue = _completed_revenue(
        db, Payment.payment_date >= last_month_start, Payment.payment_date < month_start, *payment_branch
    )
    growth = round((month_revenue - last_month_revenue) / last_month_revenue * 100, 2) if last_month_revenue else None

    return {
        "total_members": db.query(func.count(Member.id)).filter(Member.is_active.is_(True)).scalar() or 0,
        "total_trainers": db.query(func.count(Trainer.id)).filter(Trainer.is_active.is_(True)).scalar() or 0,
        "active_memberships": (
            db.query(func.count(Membership.id))
            .filter(Membership.status == MembershipStatus.ACTIVE, Membership.end_date >= now)
            .scalar()
            or 0
        ),
        "today_checkins": (
            db.query(func.count(CheckIn.id)).filter(CheckIn.check_in_at >= today, *checkin_branch).scalar() or 0
        ),
        "currently_in": (
            db.query(func.count(CheckIn.id)).filter(CheckIn.check_out_at.is_(None), *checkin_branch).scalar() or 0
        ),
        "month_revenue": month_revenue,
        "last_month_revenue": last_month_revenue,
        "revenue_growth_percent": growth,
        "upcoming_classes": (
            db.query(func.count(GymClass.id))
            .filter(GymClass.status == ClassStatus.SCHEDULED, GymClass.start_time >= now, *class_branch)
            .scalar()
            or 0
        ),
        "classes_today": (
            db.query(func.count(GymClass.id))
            .filter(GymClass.start_time >= today, GymClass.start_time < today + timedelta(days=1), *class_branch)
            .scalar()
            or 0
        ),
        "expiring_memberships": (
            db.query(func.count(Membership.id))
            .filter(
                Membership.status == MembershipStatus.ACTIVE,
                Membership.end_date >= now,
                Membership.end_date <= now + timedelta(days=7),
            )
            .scalar()
            or 0
        ),
    }


def trainer_dashboard(db: Session, user_id: int, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    trainer = db.query(Trainer).filter(Trainer.user_id == user_id).first()
    if not trainer:
        return {"classes_today": 0, "classes_this_month": 0, "upcoming_classes": 0, "students_this_month": 0}

    today = _day_start(now)
    month_start = _month_start(now)
    mine = GymClass.trainer_id == trainer.id

    return {
        "classes_today": (
            db.query(func.count(GymClass.id))
            .filter(mine, GymClass.start_time >= today, GymClass.start_time < today + timedelta(days=1))
            .scalar()
            or 0
        ),
        "classes_this_month": (
            db.query(func.count(GymClass.id)).filter(mine, GymClass.start_time >= month_start).scalar() or 0
        ),
        "upcoming_classes": (
            db.query(func.count(GymClass.id))
            .filter(mine, GymClass.status == ClassStatus.SCHEDULED, GymClass.start_time >= now)
            .scalar()
            or 0
        ),
        "students_this_month": (
            db.query(func.count(func.distinct(Reservation.member_id)))
            .join(GymClass, Reservation.class_id == GymClass.id)
            .filter(mine, GymClass.start_time >= month_start, Reservation.status != ReservationStatus.CANCELLED)
            .scalar()
            or 0
        ),
    }


def member_dashboard(db: Session, user_id: int, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    member = db.query(Member).filter(Member.user_id == user_id).first()
    if not member:
        return {"checkins_this_month": 0, "upcoming_reservations": 0, "membership": None}

    month_start = _month_start(now)
    membership = (
        db.query(Membership)
        .filter(Membership.member_id == member.id, Membership.status == MembershipStatus.ACTIVE)
        .order_by(Membership.end_date.desc())
        .first()
    )

    return {
        "checkins_this_month": (
            db.query(func.count(CheckIn.id))
            .filter(CheckIn.member_id == member.id, CheckIn.check_in_at >= month_start)
            .scalar()
            or 0
        ),
        "upcoming_reservations": (
            db.query(func.count(Reservation.id))
            .join(GymClass, Reservation.class_id == GymClass.id)
            .filter(
                Reservation.member_id == member.id,
                Reservation.status == ReservationStatus.CONFIRMED,
                GymClass.start_time >= now,
            )
            .scalar()
            or 0
        ),
        "membership": {
            "id": membership.id,
            "type": membership.membership_type.name,
            "end_date": membership.end_date,
            "days_remaining": max(0, (membership.end_date - now).days),
        }
        if membership
        else None,
    }


def dashboard_for(db: Session, auth: dict, branch_id: Optional[int] = None) -> dict:
    role = auth["role"]
    if role == Role.TRAINER.value:
        return {"role": role, **trainer_dashboard(db, auth["user_id"])}
    if role == Role.MEMBER.value:
        return {"role": role, **member_dashboard(db, auth["user_id"])}
    return {"role": role, **staff_dashboard(db, branch_id)}


# ============== Reports ==============

def membership_report(
    db: Session,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    membership_type_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    now = now or datetime.now()
    filters = []
    if start_date:
        filters.append(Membership.created_at >= start_date)
    if end_date:
        filters.append(Membership.created_at <= end_date)
    if membership_type_id:
        filters.append(Membership.membership_type_id == membership_type_id)

    rows = (
        db.query(Membership.status, Membership.end_date, Membership.created_at, MembershipType.name, MembershipType.price)
        .join(MembershipType, Membership.membership_type_id == MembershipType.id)
        .filter(*filters)
        .all()
    )

    by_type = defaultdict(lambda: {"count": 0, "price": 0.0})
    monthly = Counter()
    active = 0
    for status, end, created, type_name, price in rows:
        by_type[type_name]["count"] += 1
        by_type[type_name]["price"] = float(price or 0)
        monthly[created.strftime("%Y-%m")] += 1
        if status == MembershipStatus.ACTIVE and end >= now:
            active += 1

    expiring = (
        db.query(func.count(Membership.id))
        .filter(
            Membership.status == MembershipStatus.ACTIVE,
            Membership.end_date >= now,
            Membership.end_date <= now + timedelta(days=30),
        )
        .scalar()
        or 0
    )

    return {
        "summary": {"total": len(rows), "active": active, "expiring_30_days": expiring},
        "by_type": [{"type": name, **values} for name, values in sorted(by_type.items())],
        "monthly_trend": [{"month": m, "count": monthly[m]} for m in sorted(monthly)],
    }


def attendance_report(
    db: Session,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    branch_id: Optional[int] = None,
) -> dict:
    filters = []
    if start_date:
        filters.append(CheckIn.check_in_at >= start_date)
    if end_date:
        filters.append(CheckIn.check_in_at <= end_date)
    if branch_id:
        filters.append(CheckIn.branch_id == branch_id)

    rows = (
        db.query(CheckIn.member_id, CheckIn.check_in_at, CheckIn.check_out_at, Branch.name)
        .join(Branch, CheckIn.branch_id == Branch.id)
        .filter(*filters)
        .all()
    )

    members = Counter(member_id for member_id, _, _, _ in rows)
    hours = Counter(checked_in.hour for _, checked_in, _, _ in rows)
    weekdays = Counter((checked_in.weekday() + 1) % 7 for _, checked_in, _, _ in rows)
    daily = Counter(checked_in.date().isoformat() for _, checked_in, _, _ in rows)
    branches = Counter(name for _, _, _, name in rows)
    durations = [
        (checked_out - checked_in).total_seconds() / 60 for _, checked_in, checked_out, _ in rows if checked_out
    ]

    total = len(rows)
    return {
        "summary": {
            "total_checkins": total,
            "unique_members": len(members),
            "average_visits_per_member": round(total / len(members), 2) if members else 0,
            "average_duration_minutes": round(sum(durations) / len(durations)) if durations else 0,
        },
        "peak_hours": [{"hour": h, "count": c} for h, c in hours.most_common(5)],
        "by_weekday": [{"day": d, "name": WEEKDAYS[d], "count": weekdays[d]} for d in sorted(weekdays)],
        "daily_trend": [{"date": d, "count": daily[d]} for d in sorted(daily)],
        "branch_distribution": [{"branch": b, "count": c} for b, c in branches.most_common()],
    }


def revenue_report(
    db: Session,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    branch_id: Optional[int] = None,
) -> dict:
    filters = [Payment.status == PaymentStatus.COMPLETED]
    if start_date:
        filters.append(Payment.payment_date >= start_date)
    if end_date:
        filters.append(Payment.payment_date <= end_date)
    if branch_id:
        filters.append(Payment.branch_id == branch_id)

    rows = (
        db.query(Payment.amount, Payment.method, Payment.payment_date, Payment.membership_id, Branch.name)
        .join(Branch, Payment.branch_id == Branch.id)
        .filter(*filters)
        .all()
    )

    by_method = defaultdict(lambda: {"revenue": 0.0, "payments": 0})
    by_branch = defaultdict(lambda: {"revenue": 0.0, "payments": 0})
    monthly = defaultdict(lambda: {"revenue": 0.0, "payments": 0})
    membership_revenue = 0.0
    other_revenue = 0.0

    for amount, method, paid_at, membership_id, branch_name in rows:
        amount = float(amount)
        for bucket in (by_method[method.value], by_branch[branch_name], monthly[paid_at.strftime("%Y-%m")]):
            bucket["revenue"] += amount
            bucket["payments"] += 1
        if membership_id:
            membership_revenue += amount
        else:
            other_revenue += amount

    total = membership_revenue + other_revenue
    return {
        "summary": {
            "total_revenue": round(total, 2),
            "total_payments": len(rows),
            "average_payment": round(total / len(rows), 2) if rows else 0,
        },
        "by_method": [{"method": m, **v} for m, v in sorted(by_method.items())],
        "by_branch": [{"branch": b, **v} for b, v in sorted(by_branch.items())],
        "monthly_trend": [{"month": m, **monthly[m]} for m in sorted(monthly)],
        "by_source": {"membership": round(membership_revenue, 2), "other": round(other_revenue, 2)},
    }
