"""
Branches Router - Gym locations
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.enums import Role
from gymmaster.middleware import require_roles, verify_bearer_token
from gymmaster.services import branch_service
from gymmaster.utils.audit import AuditRoute, audit_entity, remember_old_values

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/branches",
    tags=["Branches"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("Branch"))],
)

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ============== Request Models ==============

class CreateBranchRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    opening_time: str = Field("06:00", pattern=TIME_PATTERN)
    closing_time: str = Field("22:00", pattern=TIME_PATTERN)
    capacity: Optional[int] = Field(None, gt=0)


class UpdateBranchRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    opening_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    closing_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    capacity: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None


# ============== Endpoints ==============

@router.get("")
def get_branches(
    is_active: Optional[bool] = Query(None),
    city: Optional[str] = Query(None),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    branches = branch_service.list_branches(db, is_active=is_active, city=city)
    return {"success": True, "data": branches, "count": len(branches)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_branch(
    request: CreateBranchRequest,
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    branch = branch_service.create_branch(db, request.model_dump(), created_by=auth["user_id"])
    return {"success": True, "message": "Branch created", "data": branch}


@router.get("/{branch_id}")
def get_branch(branch_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    """Branch with staff, trainer, occupancy and upcoming class counts"""
    return {"success": True, "data": branch_service.get_branch_detail(db, branch_id)}


@router.put("/{branch_id}")
def update_branch(
    branch_id: int,
    request: UpdateBranchRequest,
    http_request: Request,
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    remember_old_values(http_request, branch_service.get_branch(db, branch_id).to_dict())
    data = {k: v for k, v in request.model_dump(exclude_unset=True).items() if v is not None}
    branch = branch_service.update_branch(db, branch_id, data)
    return {"success": True, "message": "Branch updated", "data": branch}


@router.patch("/{branch_id}/deactivate")
def deactivate_branch(branch_id: int, auth: dict = Depends(require_roles()), db: Session = Depends(get_db)):
    branch = branch_service.deactivate_branch(db, branch_id)
    return {"success": True, "message": "Branch deactivated", "data": branch}


@router.get("/{branch_id}/stats")
def get_branch_stats(
    branch_id: int,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    stats = branch_service.get_branch_stats(db, branch_id, start_date=start_date, end_date=end_date)
    return {"success": True, "data": stats}
