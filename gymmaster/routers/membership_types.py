"""
Membership Types Router - Plans on sale (name, duration, price)
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.middleware import require_roles, verify_bearer_token
from gymmaster.services import membership_service
from gymmaster.utils.audit import AuditRoute, audit_entity, remember_old_values

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/membership-types",
    tags=["Membership Types"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("MembershipType"))],
)


# ============== Request Models ==============

class CreateMembershipTypeRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    duration_days: int = Field(..., gt=0)
    price: Decimal = Field(..., ge=0)
    is_active: bool = True


class UpdateMembershipTypeRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    duration_days: Optional[int] = Field(None, gt=0)
    price: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None


# ============== Endpoints ==============

@router.get("")
def get_membership_types(
    is_active: Optional[bool] = Query(None),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": membership_service.list_types(db, is_active)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_membership_type(
    request: CreateMembershipTypeRequest,
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    membership_type = membership_service.create_type(db, request.model_dump())
    return {"success": True, "message": "Membership type created", "data": membership_type}


@router.get("/{type_id}")
def get_membership_type(type_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    return {"success": True, "data": membership_service.get_type_detail(db, type_id)}


@router.put("/{type_id}")
def update_membership_type(
    type_id: int,
    request: UpdateMembershipTypeRequest,
    http_request: Request,
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    remember_old_values(http_request, membership_service.get_type(db, type_id).to_dict())
    data = {k: v for k, v in request.model_dump(exclude_unset=True).items() if v is not None}
    membership_type = membership_service.update_type(db, type_id, data)
    return {"success": True, "message": "Membership type updated", "data": membership_type}
