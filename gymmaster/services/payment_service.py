import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from gymmaster.enums import PaymentMethod, PaymentStatus
from gymmaster.errors import NotFound, ValidationFailed
from gymmaster.models import Branch, Member, Membership, Payment
from gymmaster.utils.helpers import paginate

logger = logging.getLogger(__name__)


def serialize_payment(payment: Payment) -> dict:
    data = payment.to_dict()
    data["member_name"] = payment.member.user.full_name if payment.member else None
    data["branch_name"] = payment.branch.name if payment.branch else None
    return data


def _payment_query(db: Session):
    return db.query(Payment).options(
        joinedload(Payment.member).joinedload(Member.user),
        joinedload(Payment.branch),
    )


def _append_note(current: Optional[str], note: str) -> str:
    return f"{current}\n{note}" if current else note


def get_payment(db: Session, payment_id: int) -> Payment:
    payment = _payment_query(db).filter(Payment.id == payment_id).first()
    if not payment:
        raise NotFound("payment")
    return payment


def list_payments(
    db: Session,
    member_id: Optional[int] = None,
    branch_id: Optional[int] = None,
    status: Optional[PaymentStatus] = None,
    method: Optional[PaymentMethod] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list, dict]:
    query = _payment_query(db)

    if member_id:
        query = query.filter(Payment.member_id == member_id)
    if branch_id:
        query = query.filter(Payment.branch_id == branch_id)
    if status:
        query = query.filter(Payment.status == status)
    if method:
        query = query.filter(Payment.method == method)
    if start_date:
        query = query.filter(Payment.payment_date >= start_date)
    if end_date:
        query = query.filter(Payment.payment_date <= end_date)

    total = query.count()
    payments = (
        query.order_by(Payment.payment_date.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return [serialize_payment(p) for p in payments], paginate(total, page, limit)


def create_payment(db: Session, data: dict) -> dict:
    if not db.get(Member, data["member_id"]):
        raise NotFound("member")

    if not db.get(Branch, data["branch_id"]):
        raise NotFound("branch")

    if data.get("membership_id"):
        membership = db.get(Membership, data["membership_id"])
        if not membership:
            raise NotFound("membership")
        if membership.member_id != data["member_id"]:
            raise ValidationFailed("Membership does not belong to this member", "MEMBERSHIP_MEMBER_MISMATCH")

    payment = Payment(
        member_id=data["member_id"],
        branch_id=data["branch_id"],
        membership_id=data.get("membership_id"),
        amount=data["amount"],
        method=data["method"],
        status=data.get("status") or PaymentStatus.PENDING,
        description=data.get("description"),
        reference=data.get("reference"),
        notes=data.get("notes"),
        payment_date=data.get("payment_date") or datetime.now(),
        due_date=data.get("due_date"),
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)

    logger.info(f"Payment {payment.id} of {payment.amount} registered for member {payment.member_id}")
    return serialize_payment(payment)


def update_payment(db: Session, payment_id: int, data: dict) -> dict:
    payment = get_payment(db, payment_id)

    if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED) and "amount" in data:
        raise ValidationFailed("The amount of a completed payment cannot be changed", "PAYMENT_LOCKED")

    for field in ("amount", "method", "description", "reference", "notes", "due_date"):
        if field in data and data[field] is not None:
            setattr(payment, field, data[field])

    db.commit()
    db.refresh(payment)
    return serialize_payment(payment)


def confirm_payment(
    db: Session,
    payment_id: int,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    payment = get_payment(db, payment_id)

    if payment.status != PaymentStatus.PENDING:
        raise ValidationFailed("Only pending payments can be confirmed", "PAYMENT_NOT_PENDING")

    payment.status = PaymentStatus.COMPLETED
    payment.payment_date = now or datetime.now()
    if reference:
        payment.reference = reference
    if notes:
        payment.notes = notes

    db.commit()
    db.refresh(payment)
    logger.info(f"Payment {payment.id} confirmed")
    return serialize_payment(payment)


def cancel_payment(db: Session, payment_id: int, reason: Optional[str] = None) -> dict:
    payment = get_payment(db, payment_id)

    if payment.status == PaymentStatus.COMPLETED:
        raise ValidationFailed("Completed payments cannot be cancelled", "PAYMENT_COMPLETED")
    if payment.status == PaymentStatus.CANCELLED:
        raise ValidationFailed("Payment is already cancelled", "PAYMENT_ALREADY_CANCELLED")

    payment.status = PaymentStatus.CANCELLED
    if reason:
        payment.notes = _append_note(payment.notes, f"Cancelled: {reason}")

    db.commit()
    db.refresh(payment)
    return serialize_payment(payment)


def get_pending(db: Session, branch_id: Optional[int] = None, now: Optional[datetime] = None) -> list:
    """Pending payments, overdue ones flagged"""
    now = now or datetime.now()
    query = _payment_query(db).filter(Payment.status == PaymentStatus.PENDING)
    if branch_id:
        query = query.filter(Payment.branch_id == branch_id)

    result = []
    for payment in query.order_by(Payment.due_date.asc(), Payment.id.asc()).all():
        data = serialize_payment(payment)
        data["is_overdue"] = bool(payment.due_date and payment.due_date < now)
        result.append(data)
    return result


def get_stats(
    db: Session,
    branch_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Totals by status and by method, plus today's and this month's revenue"""
    now = now or datetime.now()
    filters = []
    if branch_id:
        filters.append(Payment.branch_id == branch_id)
    if start_date:
        filters.append(Payment.payment_date >= start_date)
    if end_date:
        filters.append(Payment.payment_date <= end_date)

    by_status = {s.value: {"count": 0, "amount": 0.0} for s in PaymentStatus}
    for status, count, amount in (
        db.query(Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .filter(*filters)
        .group_by(Payment.status)
        .all()
    ):
        by_status[status.value] = {"count": count, "amount": float(amount)}

    by_method = {m.value: {"count": 0, "amount": 0.0} for m in PaymentMethod}
    for method, count, amount in (
        db.query(Payment.method, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.status == PaymentStatus.COMPLETED, *filters)
        .group_by(Payment.method)
        .all()
    ):
        by_method[method.value] = {"count": count, "amount": float(amount)}

    def completed_since(since: datetime) -> float:
        value = (
            db.query(func.coalesce(func.sum(Payment.amount), 0))
            .filter(Payment.status == PaymentStatus.COMPLETED, Payment.payment_date >= since, *filters)
            .scalar()
        )
        return float(value or 0)

    start_of_day = datetime(now.year, now.month, now.day)
    return {
        "total_payments": sum(s["count"] for s in by_status.values()),
        "total_revenue": by_status[PaymentStatus.COMPLETED.value]["amount"],
        "by_status": by_status,
        "by_method": by_method,
        "today_revenue": completed_since(start_of_day),
        "month_revenue": completed_since(datetime(now.year, now.month, 1)),
        "last_30_days_revenue": completed_since(start_of_day - timedelta(days=30)),
    }
