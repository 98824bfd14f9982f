"""
Check-ins Router - QR check-in at the front desk, check-out and attendance
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gymmaster.config import AUTO_CHECKOUT_HOURS
from gymmaster.db import get_db
from gymmaster.enums import AuditAction, Role
from gymmaster.errors import PermissionDenied
from gymmaster.middleware import is_staff, optional_bearer_token, require_roles, verify_bearer_token
from gymmaster.services import checkin_service, member_service
from gymmaster.utils.audit import AuditRoute, audit_action, audit_entity

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/checkins",
    tags=["Check-ins"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("CheckIn"))],
)


# ============== Request Models ==============

class CheckInRequest(BaseModel):
    qr_code: str = Field(..., min_length=1)
    branch_id: int


class CheckOutRequest(BaseModel):
    notes: Optional[str] = None


class AdminCheckInRequest(BaseModel):
    member_id: int
    branch_id: int


class AdminCheckOutRequest(BaseModel):
    member_id: int


# ============== Endpoints ==============

@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit_action(AuditAction.CHECK_IN))],
)
def check_in(
    request: CheckInRequest,
    http_request: Request,
    auth: Optional[dict] = Depends(optional_bearer_token),
    db: Session = Depends(get_db),
):
    """
    Check in by scanning a member QR code.

    The kiosk calls this without a token; the QR code identifies the member.
    """
    result = checkin_service.check_in(db, request.qr_code, request.branch_id)

    if auth is None:
        # kiosk scan: the visit is attributed to the member who scanned
        member = member_service.get_member(db, result["member_id"])
        http_request.state.user_id = member.user_id

    return {"success": True, "message": f"Welcome, {result['member_name']}!", "data": result}


@router.post(
    "/admin/checkin",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit_action(AuditAction.CHECK_IN))],
)
def admin_check_in(
    request: AdminCheckInRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    """Manual check-in by member id (member forgot the phone)"""
    result = checkin_service.admin_check_in(db, request.member_id, request.branch_id)
    return {"success": True, "message": "Member checked in", "data": result}


@router.post("/admin/checkout", dependencies=[Depends(audit_action(AuditAction.CHECK_OUT))])
def admin_check_out(
    request: AdminCheckOutRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    result = checkin_service.admin_check_out(db, request.member_id)
    return {"success": True, "message": "Member checked out", "data": result}


@router.post("/force-checkout", dependencies=[Depends(audit_action(AuditAction.UPDATE))])
def force_checkout(
    hours: int = Query(AUTO_CHECKOUT_HOURS, ge=1),
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    """Close every visit open for longer than `hours` (ADMIN only)"""
    closed = checkin_service.auto_close_stale_visits(db, hours)
    return {"success": True, "message": f"{closed} visits closed", "data": {"closed": closed, "hours": hours}}


@router.get("")
def get_checkins(
    member_id: Optional[int] = Query(None),
    branch_id: Optional[int] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    active_only: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    """Check-in history. Members only ever see their own visits."""
    if not is_staff(auth):
        if auth["role"] != Role.MEMBER.value:
            raise PermissionDenied("Only staff and members can view check-ins")
        member_id = member_service.get_member_by_user(db, auth["user_id"]).id

    checkins, pagination = checkin_service.get_history(
        db,
        member_id=member_id,
        branch_id=branch_id,
        start_date=start_date,
        end_date=end_date,
        active_only=active_only,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": checkins, "pagination": pagination}


@router.get("/active")
def get_active_checkins(
    branch_id: Optional[int] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    """Members currently inside"""
    checkins = checkin_service.get_active(db, branch_id)
    return {"success": True, "data": checkins, "count": len(checkins)}


@router.get("/my-active")
def get_my_active_checkin(auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    checkin = checkin_service.get_my_active(db, auth["user_id"])
    return {"success": True, "data": checkin, "is_checked_in": checkin is not None}


@router.get("/stats")
def get_checkin_stats(
    branch_id: Optional[int] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    stats = checkin_service.get_stats(db, branch_id=branch_id, start_date=start_date, end_date=end_date)
    return {"success": True, "data": stats}


@router.put("/{checkin_id}/checkout", dependencies=[Depends(audit_action(AuditAction.CHECK_OUT))])
def check_out(
    checkin_id: int,
    request: CheckOutRequest,
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    owner_user_id = None if is_staff(auth) else auth["user_id"]
    result = checkin_service.check_out(db, checkin_id, notes=request.notes, owner_user_id=owner_user_id)
    return {
        "success": True,
        "message": f"Goodbye! Visit lasted {result['duration_minutes']} minutes.",
        "data": result,
    }
