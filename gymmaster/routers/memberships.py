"""
Memberships Router - Grant, extend, cancel and expire member plans
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.enums import AuditAction, MembershipStatus, Role
from gymmaster.errors import PermissionDenied
from gymmaster.middleware import is_staff, require_roles, verify_bearer_token
from gymmaster.services import member_service, membership_service
from gymmaster.utils.audit import AuditRoute, audit_action, audit_entity, remember_old_values

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/memberships",
    tags=["Memberships"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("Membership"))],
)


# ============== Request Models ==============

class CreateMembershipRequest(BaseModel):
    member_id: int
    membership_type_id: int
    start_date: Optional[datetime] = None
    price_paid: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class UpdateMembershipRequest(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[MembershipStatus] = None
    price_paid: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class ExtendMembershipRequest(BaseModel):
    days: int = Field(..., gt=0, le=3650)
    notes: Optional[str] = None


class CancelMembershipRequest(BaseModel):
    reason: Optional[str] = None


# ============== Endpoints ==============

@router.get("")
def get_memberships(
    status: Optional[MembershipStatus] = Query(None),
    member_id: Optional[int] = Query(None),
    membership_type_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    memberships, pagination = membership_service.list_memberships(
        db, status=status, member_id=member_id, membership_type_id=membership_type_id, page=page, limit=limit
    )
    return {"success": True, "data": memberships, "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_membership(
    request: CreateMembershipRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    """
    Grant a membership. Fails with 409 when the member already holds an ACTIVE one.
    """
    membership = membership_service.create_membership(db, request.model_dump())
    return {"success": True, "message": "Membership created", "data": membership}


@router.get("/stats")
def get_membership_stats(auth: dict = Depends(require_roles(Role.EMPLOYEE)), db: Session = Depends(get_db)):
    return {"success": True, "data": membership_service.get_stats(db)}


@router.get("/expiring")
def get_expiring_memberships(
    days: int = Query(7, ge=1, le=365),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    memberships = membership_service.get_expiring(db, days)
    return {"success": True, "data": memberships, "count": len(memberships)}


@router.post("/expire", dependencies=[Depends(audit_action(AuditAction.UPDATE))])
def expire_memberships(auth: dict = Depends(require_roles()), db: Session = Depends(get_db)):
    """Run the expiry sweep now instead of waiting for the nightly job"""
    expired = membership_service.expire_memberships(db)
    return {"success": True, "message": f"{expired} memberships expired", "data": {"expired": expired}}


@router.get("/{membership_id}")
def get_membership(membership_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    membership = membership_service.get_membership(db, membership_id)
    if not is_staff(auth) and member_service.get_member(db, membership.member_id).user_id != auth["user_id"]:
        raise PermissionDenied("You can only access your own memberships")
    return {"success": True, "data": membership_service.serialize_membership(membership)}


@router.put("/{membership_id}")
def update_membership(
    membership_id: int,
    request: UpdateMembershipRequest,
    http_request: Request,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    remember_old_values(
        http_request, membership_service.serialize_membership(membership_service.get_membership(db, membership_id))
    )
    membership = membership_service.update_membership(db, membership_id, request.model_dump(exclude_unset=True))
    return {"success": True, "message": "Membership updated", "data": membership}


@router.patch("/{membership_id}/extend", dependencies=[Depends(audit_action(AuditAction.EXTEND))])
def extend_membership(
    membership_id: int,
    request: ExtendMembershipRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    membership = membership_service.extend_membership(db, membership_id, request.days, request.notes)
    return {"success": True, "message": f"Membership extended by {request.days} days", "data": membership}


@router.patch("/{membership_id}/cancel", dependencies=[Depends(audit_action(AuditAction.CANCEL))])
def cancel_membership(
    membership_id: int,
    request: CancelMembershipRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    membership = membership_service.cancel_membership(db, membership_id, request.reason)
    return {"success": True, "message": "Membership cancelled", "data": membership}
