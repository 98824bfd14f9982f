"""
Class scheduling and reservations
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from gymmaster.enums import ClassStatus, ReservationStatus
from gymmaster.errors import Conflict, NoActiveMembership, NotFound, ValidationFailed
from gymmaster.models import Branch, GymClass, Member, Reservation, Trainer
from gymmaster.services.checkin_service import active_membership
from gymmaster.utils.helpers import paginate

logger = logging.getLogger(__name__)

OPEN_STATUSES = (ClassStatus.SCHEDULED, ClassStatus.IN_PROGRESS)


def _confirmed_count(db: Session, class_id: int, lock: bool = False) -> int:
    if lock:
        # FOR UPDATE cannot be combined with an aggregate on every backend
        ids = (
            db.query(Reservation.id)
            .filter(
                Reservation.class_id == class_id,
                Reservation.status.in_([ReservationStatus.CONFIRMED, ReservationStatus.ATTENDED]),
            )
            .with_for_update()
            .all()
        )
        return len(ids)

    return (
        db.query(func.count(Reservation.id))
        .filter(
            Reservation.class_id == class_id,
            Reservation.status.in_([ReservationStatus.CONFIRMED, ReservationStatus.ATTENDED]),
        )
        .scalar()
        or 0
    )


def serialize_class(db: Session, gym_class: GymClass) -> dict:
    data = gym_class.to_dict()
    reserved = _confirmed_count(db, gym_class.id)
    data["branch_name"] = gym_class.branch.name if gym_class.branch else None
    data["trainer_name"] = gym_class.trainer.user.full_name if gym_class.trainer else None
    data["reserved"] = reserved
    data["available_spots"] = max(0, gym_class.capacity - reserved)
    return data


def serialize_reservation(reservation: Reservation) -> dict:
    data = reservation.to_dict()
    data["member_name"] = reservation.member.user.full_name if reservation.member else None
    gym_class = reservation.gym_class
    if gym_class:
        data["class_name"] = gym_class.name
        data["class_start_time"] = gym_class.start_time
        data["class_status"] = gym_class.status
    return data


def _class_query(db: Session):
    return db.query(GymClass).options(
        joinedload(GymClass.branch),
        joinedload(GymClass.trainer).joinedload(Trainer.user),
    )


def get_class(db: Session, class_id: int) -> GymClass:
    gym_class = _class_query(db).filter(GymClass.id == class_id).first()
    if not gym_class:
        raise NotFound("class")
    return gym_class


def _validate_schedule(
    db: Session,
    branch_id: int,
    trainer_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_class_id: Optional[int] = None,
) -> None:
    """Branch active, trainer active and assigned to it, no overlapping class for the trainer"""
    if end_time <= start_time:
        raise ValidationFailed("End time must be after start time", "INVALID_TIME_RANGE")

    branch = db.get(Branch, branch_id)
    if not branch or not branch.is_active:
        raise NotFound("branch", "Branch not found or inactive")

    trainer = db.get(Trainer, trainer_id)
    if not trainer or not trainer.is_active or not trainer.user.is_active:
        raise NotFound("trainer", "Trainer not found or inactive")

    if trainer.branch_id != branch.id:
        raise ValidationFailed("The trainer does not work at this branch", "TRAINER_NOT_IN_BRANCH")

    conflict = db.query(GymClass.id).filter(
        GymClass.trainer_id == trainer.id,
        GymClass.status.in_(OPEN_STATUSES),
        GymClass.start_time < end_time,
        GymClass.end_time > start_time,
    )
    if exclude_class_id:
        conflict = conflict.filter(GymClass.id != exclude_class_id)
    if conflict.first():
        raise Conflict("The trainer already has a class at this time", "TRAINER_SCHEDULE_CONFLICT")


def list_classes(
    db: Session,
    branch_id: Optional[int] = None,
    trainer_id: Optional[int] = None,
    status: Optional[ClassStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list, dict]:
    query = _class_query(db)

    if branch_id:
        query = query.filter(GymClass.branch_id == branch_id)
    if trainer_id:
        query = query.filter(GymClass.trainer_id == trainer_id)
    if status:
        query = query.filter(GymClass.status == status)
    if start_date:
        query = query.filter(GymClass.start_time >= start_date)
    if end_date:
        query = query.filter(GymClass.start_time <= end_date)

    total = query.count()
    classes = query.order_by(GymClass.start_time.asc(), GymClass.id).offset((page - 1) * limit).limit(limit).all()
    return [serialize_class(db, c) for c in classes], paginate(total, page, limit)


def list_available(db: Session, branch_id: Optional[int] = None, now: Optional[datetime] = None) -> list:
    """Future SCHEDULED classes with free spots"""
    now = now or datetime.now()
    query = _class_query(db).filter(GymClass.status == ClassStatus.SCHEDULED, GymClass.start_time > now)
    if branch_id:
        query = query.filter(GymClass.branch_id == branch_id)

    classes = [serialize_class(db, c) for c in query.order_by(GymClass.start_time.asc()).all()]
    return [c for c in classes if c["available_spots"] > 0]


def create_class(db: Session, data: dict) -> dict:
    _validate_schedule(db, data["branch_id"], data["trainer_id"], data["start_time"], data["end_time"])

    gym_class = GymClass(**data)
    db.add(gym_class)
    db.commit()
    db.refresh(gym_class)

    logger.info(f"Class {gym_class.id} '{gym_class.name}' scheduled at {gym_class.start_time}")
    return serialize_class(db, gym_class)


def update_class(db: Session, class_id: int, data: dict) -> dict:
    gym_class = get_class(db, class_id)

    if gym_class.status in (ClassStatus.CANCELLED, ClassStatus.COMPLETED):
        raise ValidationFailed("Cancelled or completed classes cannot be edited", "CLASS_CLOSED")

    schedule_fields = ("branch_id", "trainer_id", "start_time", "end_time")
    if any(field in data for field in schedule_fields):
        _validate_schedule(
            db,
            data.get("branch_id", gym_class.branch_id),
            data.get("trainer_id", gym_class.trainer_id),
            data.get("start_time", gym_class.start_time),
            data.get("end_time", gym_class.end_time),
            exclude_class_id=gym_class.id,
        )

    if "capacity" in data and data["capacity"] < _confirmed_count(db, gym_class.id):
        raise ValidationFailed("Capacity cannot be lower than the current reservations", "CAPACITY_TOO_LOW")

    for field, value in data.items():
        setattr(gym_class, field, value)

    db.commit()
    db.refresh(gym_class)
    return serialize_class(db, gym_class)


def cancel_class(db: Session, class_id: int, reason: Optional[str] = None) -> dict:
    """Cancel a class and every confirmed reservation for it"""
    gym_class = get_class(db, class_id)

    if gym_class.status == ClassStatus.COMPLETED:
        raise ValidationFailed("A completed class cannot be cancelled", "CLASS_COMPLETED")
    if gym_class.status == ClassStatus.CANCELLED:
        raise ValidationFailed("The class is already cancelled", "CLASS_ALREADY_CANCELLED")

    gym_class.status = ClassStatus.CANCELLED
    if reason:
        gym_class.description = f"{gym_class.description}\nCancelled: {reason}" if gym_class.description else f"Cancelled: {reason}"

    cancelled = (
        db.query(Reservation)
        .filter(Reservation.class_id == gym_class.id, Reservation.status == ReservationStatus.CONFIRMED)
        .update(
            {
                Reservation.status: ReservationStatus.CANCELLED,
                Reservation.notes: f"Class cancelled: {reason}" if reason else "Class cancelled",
            },
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(gym_class)

    logger.info(f"Class {gym_class.id} cancelled, {cancelled} reservations cancelled")
    data = serialize_class(db, gym_class)
    data["cancelled_reservations"] = cancelled
    return data


def get_stats(
    db: Session,
    branch_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    filters = []
    if branch_id:
        filters.append(GymClass.branch_id == branch_id)
    if start_date:
        filters.append(GymClass.start_time >= start_date)
    if end_date:
        filters.append(GymClass.start_time <= end_date)

    by_status = {s.value: 0 for s in ClassStatus}
    for status, count in db.query(GymClass.status, func.count(GymClass.id)).filter(*filters).group_by(GymClass.status).all():
        by_status[status.value] = count

    reservation_counts = Counter(
        status.value
        for (status,) in db.query(Reservation.status)
        .join(GymClass, Reservation.class_id == GymClass.id)
        .filter(*filters)
        .all()
    )
    attended = reservation_counts[ReservationStatus.ATTENDED.value]
    closed = attended + reservation_counts[ReservationStatus.NO_SHOW.value]

    hours = Counter(start.hour for (start,) in db.query(GymClass.start_time).filter(*filters).all())

    return {
        "total_classes": sum(by_status.values()),
        "by_status": by_status,
        "total_reservations": sum(reservation_counts.values()),
        "reservations_by_status": {s.value: reservation_counts[s.value] for s in ReservationStatus},
        "attendance_rate": round(attended / closed * 100, 2) if closed else 0,
        "popular_hours": [{"hour": h, "classes": c} for h, c in hours.most_common(5)],
    }


# ============== Reservations ==============

def _reservation_query(db: Session):
    return db.query(Reservation).options(
        joinedload(Reservation.member).joinedload(Member.user),
        joinedload(Reservation.gym_class),
    )


def get_reservation(db: Session, reservation_id: int) -> Reservation:
    reservation = _reservation_query(db).filter(Reservation.id == reservation_id).first()
    if not reservation:
        raise NotFound("reservation")
    return reservation


def get_class_reservations(db: Session, class_id: int) -> list:
    get_class(db, class_id)
    reservations = (
        _reservation_query(db)
        .filter(Reservation.class_id == class_id)
        .order_by(Reservation.created_at.asc(), Reservation.id.asc())
        .all()
    )
    return [serialize_reservation(r) for r in reservations]


def get_member_reservations(db: Session, member_id: int, status: Optional[ReservationStatus] = None) -> list:
    query = _reservation_query(db).filter(Reservation.member_id == member_id)
    if status:
        query = query.filter(Reservation.status == status)
    reservations = query.order_by(Reservation.created_at.desc(), Reservation.id.desc()).all()
    return [serialize_reservation(r) for r in reservations]


def reserve(
    db: Session,
    class_id: int,
    member_id: int,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Book a spot. A previously cancelled reservation of the same member is
    reactivated instead of creating a second row.
    """
    now = now or datetime.now()

    member = db.get(Member, member_id)
    if not member or not member.is_active or not member.user.is_active:
        raise NotFound("member", "Member not found or inactive")

    if not active_membership(db, member.id, now):
        raise NoActiveMembership()

    try:
        # Class row lock first; the reservation reads below are locking reads too
        gym_class = db.query(GymClass).filter(GymClass.id == class_id).with_for_update().first()
        if not gym_class:
            raise NotFound("class")

        if gym_class.status != ClassStatus.SCHEDULED:
            raise ValidationFailed("Only scheduled classes can be booked", "CLASS_NOT_SCHEDULED")

        if gym_class.start_time < now:
            raise ValidationFailed("Classes that already started cannot be booked", "CLASS_ALREADY_STARTED")

        existing = (
            db.query(Reservation)
            .filter(Reservation.member_id == member.id, Reservation.class_id == gym_class.id)
            .with_for_update()
            .first()
        )
        if existing and existing.status != ReservationStatus.CANCELLED:
            raise Conflict("The member already has a reservation for this class", "ALREADY_RESERVED")

        if _confirmed_count(db, gym_class.id, lock=True) >= gym_class.capacity:
            raise ValidationFailed("The class is full", "CLASS_FULL")

        if existing:
            existing.status = ReservationStatus.CONFIRMED
            existing.notes = notes
            reservation = existing
        else:
            reservation = Reservation(member_id=member.id, class_id=gym_class.id, notes=notes)
            db.add(reservation)

        db.commit()
        db.refresh(reservation)
    except Exception:
        db.rollback()
        raise

    logger.info(f"Member {member.id} booked class {gym_class.id}")
    return serialize_reservation(reservation)


def cancel_reservation(db: Session, reservation_id: int, owner_member_id: Optional[int] = None) -> dict:
    reservation = get_reservation(db, reservation_id)

    if owner_member_id is not None and reservation.member_id != owner_member_id:
        raise NotFound("reservation")

    if reservation.status != ReservationStatus.CONFIRMED:
        raise ValidationFailed("Only confirmed reservations can be cancelled", "RESERVATION_NOT_CONFIRMED")

    reservation.status = ReservationStatus.CANCELLED
    db.commit()
    db.refresh(reservation)
    return serialize_reservation(reservation)


def mark_attendance(db: Session, reservation_id: int, attended: bool) -> dict:
    reservation = get_reservation(db, reservation_id)

    if reservation.status not in (ReservationStatus.CONFIRMED, ReservationStatus.ATTENDED, ReservationStatus.NO_SHOW):
        raise ValidationFailed("Cancelled reservations cannot be marked", "RESERVATION_CANCELLED")

    reservation.status = ReservationStatus.ATTENDED if attended else ReservationStatus.NO_SHOW
    db.commit()
    db.refresh(reservation)
    return serialize_reservation(reservation)
