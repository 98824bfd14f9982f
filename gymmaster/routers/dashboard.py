from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.middleware import is_staff, verify_bearer_token
from gymmaster.services import report_service

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/stats")
def get_dashboard_stats(
    branch_id: Optional[int] = Query(None),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    """
    Figures for the home screen of the logged-in user.
    Staff get gym-wide totals (optionally for one branch), trainers their
    classes and members their own activity.
    """
    if not is_staff(auth):
        branch_id = None
    return {"success": True, "data": report_service.dashboard_for(db, auth, branch_id)}
