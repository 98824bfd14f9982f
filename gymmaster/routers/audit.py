"""
Audit Router - Read the audit trail and apply retention
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from gymmaster.config import AUDIT_RETENTION_DAYS
from gymmaster.db import get_db
from gymmaster.enums import AuditAction, Role
from gymmaster.errors import PermissionDenied
from gymmaster.middleware import require_roles, verify_bearer_token
from gymmaster.services import audit_service
from gymmaster.utils.audit import AuditRoute, audit_entity

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/audit",
    tags=["Audit"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("AuditLog"))],
)


# ============== Endpoints ==============

@router.get("/logs")
def get_audit_logs(
    user_id: Optional[int] = Query(None),
    action: Optional[AuditAction] = Query(None),
    entity: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    logs, pagination = audit_service.get_logs(
        db,
        user_id=user_id,
        action=action.value if action else None,
        entity=entity,
        entity_id=entity_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": logs, "pagination": pagination}


@router.get("/entity/{entity}/{entity_id}")
def get_entity_history(
    entity: str,
    entity_id: str,
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    """Every recorded change of one record, oldest first"""
    history = audit_service.get_entity_history(db, entity, entity_id)
    return {"success": True, "data": history, "count": len(history)}


@router.get("/user/{user_id}")
def get_user_activity(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    if auth["user_id"] != user_id and auth["role"] != Role.ADMIN.value:
        raise PermissionDenied("You can only view your own activity")

    logs, pagination = audit_service.get_user_activity(db, user_id, page=page, limit=limit)
    return {"success": True, "data": logs, "pagination": pagination}


@router.get("/stats")
def get_audit_stats(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": audit_service.get_stats(db, start_date=start_date, end_date=end_date)}


@router.delete("/cleanup")
def cleanup_audit_logs(
    days: int = Query(AUDIT_RETENTION_DAYS),
    auth: dict = Depends(require_roles()),
    db: Session = Depends(get_db),
):
    """Delete records older than `days` days (ADMIN only)"""
    deleted = audit_service.cleanup_old_logs(db, days)
    return {
        "success": True,
        "message": f"Deleted {deleted} audit records older than {days} days",
        "data": {"deleted": deleted, "days": days},
    }
