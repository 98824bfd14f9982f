"""
Classes Router - Group class schedule and reservations
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.enums import AuditAction, ClassStatus, ReservationStatus, Role
from gymmaster.errors import NotFound, PermissionDenied, ValidationFailed
from gymmaster.middleware import is_staff, require_roles, verify_bearer_token
from gymmaster.services import class_service, member_service
from gymmaster.utils.audit import AuditRoute, audit_action, audit_entity, remember_old_values

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/classes",
    tags=["Classes"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("GymClass"))],
)


# ============== Request Models ==============

class CreateClassRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    branch_id: int
    trainer_id: int
    start_time: datetime
    end_time: datetime
    capacity: int = Field(..., gt=0, le=500)


class UpdateClassRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    branch_id: Optional[int] = None
    trainer_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    capacity: Optional[int] = Field(None, gt=0, le=500)
    status: Optional[ClassStatus] = None


class CancelClassRequest(BaseModel):
    reason: Optional[str] = None


class ReserveRequest(BaseModel):
    member_id: Optional[int] = None
    notes: Optional[str] = None


class AttendanceRequest(BaseModel):
    attended: bool


def _own_member_id(db: Session, auth: dict) -> int:
    if auth["role"] == Role.TRAINER.value:
        raise PermissionDenied("Trainers have no member profile")
    return member_service.get_member_by_user(db, auth["user_id"]).id


# ============== Endpoints ==============

@router.get("")
def get_classes(
    branch_id: Optional[int] = Query(None),
    trainer_id: Optional[int] = Query(None),
    status: Optional[ClassStatus] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    classes, pagination = class_service.list_classes(
        db,
        branch_id=branch_id,
        trainer_id=trainer_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": classes, "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_class(
    request: CreateClassRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    """
    Schedule a class. The trainer must work at the branch and be free at that time.
    """
    gym_class = class_service.create_class(db, request.model_dump())
    return {"success": True, "message": "Class scheduled", "data": gym_class}


@router.get("/available")
def get_available_classes(
    branch_id: Optional[int] = Query(None),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": class_service.list_available(db, branch_id)}


@router.get("/stats")
def get_class_stats(
    branch_id: Optional[int] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    stats = class_service.get_stats(db, branch_id=branch_id, start_date=start_date, end_date=end_date)
    return {"success": True, "data": stats}


@router.get("/my-reservations")
def get_my_reservations(
    status: Optional[ReservationStatus] = Query(None),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    member_id = _own_member_id(db, auth)
    return {"success": True, "data": class_service.get_member_reservations(db, member_id, status)}


@router.get("/reservations/member/{member_id}")
def get_member_reservations(
    member_id: int,
    status: Optional[ReservationStatus] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE, Role.TRAINER)),
    db: Session = Depends(get_db),
):
    member_service.get_member(db, member_id)
    return {"success": True, "data": class_service.get_member_reservations(db, member_id, status)}


@router.get("/reservations/{reservation_id}")
def get_reservation(reservation_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    reservation = class_service.get_reservation(db, reservation_id)
    if not is_staff(auth) and auth["role"] != Role.TRAINER.value:
        if reservation.member_id != _own_member_id(db, auth):
            raise NotFound("reservation")
    return {"success": True, "data": class_service.serialize_reservation(reservation)}


@router.patch(
    "/reservations/{reservation_id}/cancel",
    dependencies=[Depends(audit_action(AuditAction.CANCEL, entity="Reservation"))],
)
def cancel_reservation(reservation_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    """Members cancel their own reservations, staff any of them"""
    owner_member_id = None if is_staff(auth) else _own_member_id(db, auth)
    reservation = class_service.cancel_reservation(db, reservation_id, owner_member_id)
    return {"success": True, "message": "Reservation cancelled", "data": reservation}


@router.patch(
    "/reservations/{reservation_id}/attendance",
    dependencies=[Depends(audit_action(entity="Reservation"))],
)
def mark_attendance(
    reservation_id: int,
    request: AttendanceRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE, Role.TRAINER)),
    db: Session = Depends(get_db),
):
    reservation = class_service.mark_attendance(db, reservation_id, request.attended)
    return {"success": True, "message": "Attendance recorded", "data": reservation}


@router.get("/{class_id}")
def get_class(class_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    gym_class = class_service.get_class(db, class_id)
    return {"success": True, "data": class_service.serialize_class(db, gym_class)}


@router.put("/{class_id}")
def update_class(
    class_id: int,
    request: UpdateClassRequest,
    http_request: Request,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    data = request.model_dump(exclude_unset=True)
    if data.get("status") == ClassStatus.CANCELLED:
        raise ValidationFailed("Use the cancel endpoint to cancel a class", "USE_CANCEL_ENDPOINT")

    remember_old_values(http_request, class_service.get_class(db, class_id).to_dict())
    gym_class = class_service.update_class(db, class_id, {k: v for k, v in data.items() if v is not None})
    return {"success": True, "message": "Class updated", "data": gym_class}


@router.patch("/{class_id}/cancel", dependencies=[Depends(audit_action(AuditAction.CANCEL))])
def cancel_class(
    class_id: int,
    request: CancelClassRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    gym_class = class_service.cancel_class(db, class_id, request.reason)
    return {
        "success": True,
        "message": f"Class cancelled, {gym_class['cancelled_reservations']} reservations cancelled",
        "data": gym_class,
    }


@router.get("/{class_id}/reservations")
def get_class_reservations(
    class_id: int,
    auth: dict = Depends(require_roles(Role.EMPLOYEE, Role.TRAINER)),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": class_service.get_class_reservations(db, class_id)}


@router.post(
    "/{class_id}/reservations",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit_action(entity="Reservation"))],
)
def reserve_class(
    class_id: int,
    request: ReserveRequest,
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    """
    Book a spot. Members book for themselves; staff may book for any member_id.
    """
    if is_staff(auth) and request.member_id:
        member_id = request.member_id
    else:
        member_id = _own_member_id(db, auth)

    reservation = class_service.reserve(db, class_id, member_id, request.notes)
    return {"success": True, "message": "Reservation confirmed", "data": reservation}
