"""
Reports Router - Memberships, Attendance, Revenue
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.enums import Role
from gymmaster.errors import ValidationFailed
from gymmaster.middleware import require_roles
from gymmaster.services import report_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])


def _check_range(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if start_date and end_date and end_date < start_date:
        raise ValidationFailed("end_date must not be before start_date", "INVALID_DATE_RANGE")


# ============== Endpoints ==============

@router.get("/memberships")
def get_membership_report(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    membership_type_id: Optional[int] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    _check_range(start_date, end_date)
    report = report_service.membership_report(
        db, start_date=start_date, end_date=end_date, membership_type_id=membership_type_id
    )
    return {"success": True, "data": report}


@router.get("/attendance")
def get_attendance_report(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    branch_id: Optional[int] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    _check_range(start_date, end_date)
    report = report_service.attendance_report(db, start_date=start_date, end_date=end_date, branch_id=branch_id)
    return {"success": True, "data": report}


@router.get("/revenue")
def get_revenue_report(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    branch_id: Optional[int] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    """Completed payments only"""
    _check_range(start_date, end_date)
    report = report_service.revenue_report(db, start_date=start_date, end_date=end_date, branch_id=branch_id)
    return {"success": True, "data": report}
