"""
Users Router - Account administration
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.enums import Role
from gymmaster.errors import PermissionDenied
from gymmaster.middleware import is_staff, require_roles, verify_bearer_token
from gymmaster.services import user_service
from gymmaster.utils.audit import AuditRoute, audit_entity, remember_old_values

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("User"))],
)


# ============== Request Models ==============

class UpdateUserRequest(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    role: Optional[Role] = None
    branch_id: Optional[int] = None
    is_active: Optional[bool] = None


# ============== Endpoints ==============

@router.get("")
def get_all_users(
    role: Optional[Role] = Query(None),
    is_active: Optional[bool] = Query(None),
    branch_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    users, pagination = user_service.list_users(
        db, role=role, is_active=is_active, branch_id=branch_id, search=search, page=page, limit=limit
    )
    return {"success": True, "data": users, "pagination": pagination}


@router.get("/stats")
def get_user_stats(auth: dict = Depends(require_roles(Role.EMPLOYEE)), db: Session = Depends(get_db)):
    return {"success": True, "data": user_service.get_stats(db)}


@router.get("/search")
def search_users(
    q: str = Query(..., min_length=2),
    limit: int = Query(10, ge=1, le=50),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": user_service.search_users(db, q, limit)}


@router.get("/{user_id}")
def get_user(user_id: int, auth: dict = Depends(verify_bearer_token), db: Session = Depends(get_db)):
    """Staff can read any account, everyone else only their own"""
    if not is_staff(auth) and auth["user_id"] != user_id:
        raise PermissionDenied()

    user = user_service.get_user(db, user_id)
    return {"success": True, "data": user_service.serialize_user(user)}


@router.put("/{user_id}")
def update_user(
    user_id: int,
    request: UpdateUserRequest,
    http_request: Request,
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    """Update an account (ADMIN only)"""
    remember_old_values(http_request, user_service.serialize_user(user_service.get_user(db, user_id)))
    user = user_service.update_user(db, user_id, request.model_dump(exclude_unset=True))
    return {"success": True, "message": "User updated", "data": user}


@router.patch("/{user_id}/deactivate")
def deactivate_user(user_id: int, auth: dict = Depends(require_roles()), db: Session = Depends(get_db)):
    user = user_service.set_active(db, user_id, False, acting_user_id=auth["user_id"])
    return {"success": True, "message": "User deactivated", "data": user}


@router.patch("/{user_id}/activate")
def activate_user(user_id: int, auth: dict = Depends(require_roles()), db: Session = Depends(get_db)):
    user = user_service.set_active(db, user_id, True)
    return {"success": True, "message": "User activated", "data": user}
