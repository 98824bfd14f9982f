"""
Members Router - Member profiles, QR codes and member history
"""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.enums import AuditAction, Role
from gymmaster.errors import PermissionDenied
from gymmaster.middleware import is_staff, require_roles, verify_bearer_token
from gymmaster.services import checkin_service, member_service, membership_service
from gymmaster.utils.audit import AuditRoute, audit_action, audit_entity, remember_old_values

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/members",
    tags=["Members"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("Member"))],
)


# ============== Request Models ==============

class CreateMemberRequest(BaseModel):
    user_id: int
    date_of_birth: Optional[date] = None
    emergency_contact: Optional[str] = Field(None, max_length=100)
    emergency_phone: Optional[str] = Field(None, max_length=20)
    medical_notes: Optional[str] = None


class UpdateMemberRequest(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    date_of_birth: Optional[date] = None
    emergency_contact: Optional[str] = Field(None, max_length=100)
    emergency_phone: Optional[str] = Field(None, max_length=20)
    medical_notes: Optional[str] = None
    is_active: Optional[bool] = None


def _check_member_access(db: Session, auth: dict, member_id: int) -> None:
    """Staff see every member, a member only their own profile"""
    if is_staff(auth):
        return
    member = member_service.get_member(db, member_id)
    if member.user_id != auth["user_id"]:
        raise PermissionDenied("You can only access your own member profile")


# ============== Endpoints ==============

@router.get("")
def get_all_members(
    search: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    members, pagination = member_service.list_members(db, search=search, is_active=is_active, page=page, limit=limit)
    return {"success": True, "data": members, "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_member(
    request: CreateMemberRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    """Create the member profile of an existing MEMBER user"""
    data = request.model_dump(exclude={"user_id"})
    member = member_service.create_member(db, request.user_id, data)
    return {"success": True, "message": "Member created", "data": member}


@router.get("/stats")
def get_member_stats(auth: dict = Depends(require_roles(Role.EMPLOYEE)), db: Session = Depends(get_db)):
    return {"success": True, "data": member_service.get_stats(db)}


@router.get("/search")
def search_members(
    q: str = Query(..., min_length=2),
    limit: int = Query(10, ge=1, le=50),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": member_service.search_members(db, q, limit)}


@router.get("/qr/{qr_code}")
def get_member_by_qr(
    qr_code: str,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    """Front-desk lookup of the member holding a QR code"""
    member = member_service.get_member_by_qr(db, qr_code)
    return {"success": True, "data": member_service.serialize_member(member)}


@router.get("/user/{user_id}")
def get_member_by_user(user_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    if not is_staff(auth) and auth["user_id"] != user_id:
        raise PermissionDenied()
    member = member_service.get_member_by_user(db, user_id)
    return {"success": True, "data": member_service.serialize_member(member)}


@router.get("/{member_id}")
def get_member(member_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    _check_member_access(db, auth, member_id)
    member = member_service.get_member(db, member_id)
    return {"success": True, "data": member_service.serialize_member(member)}


@router.put("/{member_id}")
def update_member(
    member_id: int,
    request: UpdateMemberRequest,
    http_request: Request,
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    _check_member_access(db, auth, member_id)
    data = request.model_dump(exclude_unset=True)
    if not is_staff(auth):
        # members cannot (de)activate themselves
        data.pop("is_active", None)

    remember_old_values(http_request, member_service.serialize_member(member_service.get_member(db, member_id)))
    member = member_service.update_member(db, member_id, data)
    return {"success": True, "message": "Member updated", "data": member}


@router.post("/{member_id}/qr", dependencies=[Depends(audit_action(AuditAction.UPDATE))])
def regenerate_qr(
    member_id: int,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    """
    Issue a new QR code. The previous code stops working immediately.
    """
    result = checkin_service.regenerate_qr(db, member_id)
    return {"success": True, "message": "QR code regenerated", "data": result}


@router.get("/{member_id}/membership-status")
def get_membership_status(member_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    _check_member_access(db, auth, member_id)
    return {"success": True, "data": member_service.membership_status(db, member_id)}


@router.get("/{member_id}/memberships")
def get_member_memberships(member_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    _check_member_access(db, auth, member_id)
    return {"success": True, "data": membership_service.get_member_memberships(db, member_id)}


@router.get("/{member_id}/checkins")
def get_member_checkins(
    member_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    _check_member_access(db, auth, member_id)
    member_service.get_member(db, member_id)
    checkins, pagination = checkin_service.get_history(db, member_id=member_id, page=page, limit=limit)
    return {"success": True, "data": checkins, "pagination": pagination}
