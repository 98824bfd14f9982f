import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from gymmaster.enums import ClassStatus, PaymentStatus, Role
from gymmaster.errors import Conflict, NotFound
from gymmaster.models import Branch, CheckIn, GymClass, Payment, Trainer, User

logger = logging.getLogger(__name__)


def get_branch(db: Session, branch_id: int) -> Branch:
    branch = db.get(Branch, branch_id)
    if not branch:
        raise NotFound("branch")
    return branch


def _name_taken(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(Branch.id).filter(Branch.name == name)
    if exclude_id:
        query = query.filter(Branch.id != exclude_id)
    return query.first() is not None


def list_branches(db: Session, is_active: Optional[bool] = None, city: Optional[str] = None) -> list:
    query = db.query(Branch)
    if is_active is not None:
        query = query.filter(Branch.is_active.is_(is_active))
    if city:
        query = query.filter(Branch.city.ilike(f"%{city}%"))
    return [b.to_dict() for b in query.order_by(Branch.name).all()]


def create_branch(db: Session, data: dict, created_by: Optional[int] = None) -> dict:
    if _name_taken(db, data["name"]):
        raise Conflict("A branch with this name already exists", "BRANCH_ALREADY_EXISTS")

    branch = Branch(**data, created_by=created_by)
    db.add(branch)
    db.commit()
    db.refresh(branch)

    logger.info(f"Branch {branch.name} created by user {created_by}")
    return branch.to_dict()


def get_branch_detail(db: Session, branch_id: int) -> dict:
    branch = get_branch(db, branch_id)

    data = branch.to_dict()
    data["employees"] = (
        db.query(func.count(User.id))
        .filter(User.branch_id == branch.id, User.role == Role.EMPLOYEE, User.is_active.is_(True))
        .scalar()
    )
    data["trainers"] = (
        db.query(func.count(Trainer.id))
        .filter(Trainer.branch_id == branch.id, Trainer.is_active.is_(True))
        .scalar()
    )
    data["currently_in"] = (
        db.query(func.count(CheckIn.id))
        .filter(CheckIn.branch_id == branch.id, CheckIn.check_out_at.is_(None))
        .scalar()
    )
    data["upcoming_classes"] = (
        db.query(func.count(GymClass.id))
        .filter(
            GymClass.branch_id == branch.id,
            GymClass.status == ClassStatus.SCHEDULED,
            GymClass.start_time >= datetime.now(),
        )
        .scalar()
    )
    return data


def update_branch(db: Session, branch_id: int, data: dict) -> dict:
    branch = get_branch(db, branch_id)

    if data.get("name") and _name_taken(db, data["name"], exclude_id=branch_id):
        raise Conflict("A branch with this name already exists", "BRANCH_ALREADY_EXISTS")

    for field, value in data.items():
        setattr(branch, field, value)

    db.commit()
    db.refresh(branch)
    return branch.to_dict()


def deactivate_branch(db: Session, branch_id: int) -> dict:
    """Branches are never deleted; history keeps pointing at them"""
    branch = get_branch(db, branch_id)
    branch.is_active = False
    db.commit()
    db.refresh(branch)

    logger.info(f"Branch {branch.id} deactivated")
    return branch.to_dict()


def get_branch_stats(
    db: Session,
    branch_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    branch = get_branch(db, branch_id)

    checkin_filters = [CheckIn.branch_id == branch.id]
    payment_filters = [Payment.branch_id == branch.id, Payment.status == PaymentStatus.COMPLETED]
    class_filters = [GymClass.branch_id == branch.id]
    if start_date:
        checkin_filters.append(CheckIn.check_in_at >= start_date)
        payment_filters.append(Payment.payment_date >= start_date)
        class_filters.append(GymClass.start_time >= start_date)
    if end_date:
        checkin_filters.append(CheckIn.check_in_at <= end_date)
        payment_filters.append(Payment.payment_date <= end_date)
        class_filters.append(GymClass.start_time <= end_date)

    total_checkins = db.query(func.count(CheckIn.id)).filter(*checkin_filters).scalar() or 0
    unique_visitors = db.query(func.count(func.distinct(CheckIn.member_id))).filter(*checkin_filters).scalar() or 0
    revenue, payments = db.query(
        func.coalesce(func.sum(Payment.amount), 0), func.count(Payment.id)
    ).filter(*payment_filters).one()
    classes = db.query(func.count(GymClass.id)).filter(*class_filters).scalar() or 0
    trainers = (
        db.query(func.count(Trainer.id))
        .filter(Trainer.branch_id == branch.id, Trainer.is_active.is_(True))
        .scalar()
        or 0
    )

    return {
        "branch_id": branch.id,
        "branch_name": branch.name,
        "total_checkins": total_checkins,
        "unique_visitors": unique_visitors,
        "revenue": float(revenue or 0),
        "completed_payments": payments,
        "classes": classes,
        "active_trainers": trainers,
    }
