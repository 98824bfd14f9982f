"""
Audit trail storage and retrieval
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from gymmaster.config import AUDIT_RETENTION_DAYS
from gymmaster.errors import ValidationFailed
from gymmaster.models import AuditLog, User
from gymmaster.utils.helpers import paginate

logger = logging.getLogger(__name__)


def create_log(
    db: Session,
    action: str,
    entity: str,
    user_id: Optional[int] = None,
    entity_id: Optional[str] = None,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditLog:
    """Append one record; the caller owns the transaction"""
    log = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_values=old_values,
        new_values=new_values,
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
        timestamp=datetime.now(),
    )
    db.add(log)
    db.flush()
    return log


def _serialize(log: AuditLog, user_email: Optional[str]) -> dict:
    data = log.to_dict()
    data["user_email"] = user_email
    return data


def _log_query(db: Session):
    return db.query(AuditLog, User.email).outerjoin(User, AuditLog.user_id == User.id)


def get_logs(
    db: Session,
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    entity: Optional[str] = None,
    entity_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list, dict]:
    query = _log_query(db)

    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if entity:
        query = query.filter(AuditLog.entity == entity)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    if start_date:
        query = query.filter(AuditLog.timestamp >= start_date)
    if end_date:
        query = query.filter(AuditLog.timestamp <= end_date)

    total = query.count()
    rows = (
        query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return [_serialize(log, email) for log, email in rows], paginate(total, page, limit)


def get_entity_history(db: Session, entity: str, entity_id: str) -> list:
    """Every change recorded for one record, oldest first"""
    rows = (
        _log_query(db)
        .filter(AuditLog.entity == entity, AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
        .all()
    )
    return [_serialize(log, email) for log, email in rows]


def get_user_activity(db: Session, user_id: int, page: int = 1, limit: int = 50) -> tuple[list, dict]:
    return get_logs(db, user_id=user_id, page=page, limit=limit)


def get_stats(
    db: Session,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """
    Totals by action and entity plus the ten most active users
    """
    filters = []
    if start_date:
        filters.append(AuditLog.timestamp >= start_date)
    if end_date:
        filters.append(AuditLog.timestamp <= end_date)

    total = db.query(func.count(AuditLog.id)).filter(*filters).scalar() or 0

    by_action = dict(
        db.query(AuditLog.action, func.count(AuditLog.id))
        .filter(*filters)
        .group_by(AuditLog.action)
        .all()
    )
    by_entity = dict(
        db.query(AuditLog.entity, func.count(AuditLog.id))
        .filter(*filters)
        .group_by(AuditLog.entity)
        .all()
    )

    count_col = func.count(AuditLog.id).label("count")
    top_users = (
        db.query(AuditLog.user_id, User.email, count_col)
        .outerjoin(User, AuditLog.user_id == User.id)
        .filter(AuditLog.user_id.isnot(None), *filters)
        .group_by(AuditLog.user_id, User.email)
        .order_by(count_col.desc())
        .limit(10)
        .all()
    )

    return {
        "total_logs": total,
        "by_action": by_action,
        "by_entity": by_entity,
        "top_users": [
            {"user_id": uid, "email": email, "count": count} for uid, email, count in top_users
        ],
    }


def cleanup_old_logs(db: Session, days: int = AUDIT_RETENTION_DAYS, now: Optional[datetime] = None) -> int:
    """Delete records older than `days`; the retention sweep is the only deletion path"""
    if days < 1:
        raise ValidationFailed("Retention must be at least 1 day", "INVALID_RETENTION_DAYS")

    cutoff = (now or datetime.now()) - timedelta(days=days)
    deleted = db.query(AuditLog).filter(AuditLog.timestamp < cutoff).delete(synchronize_session=False)
    db.commit()
    logger.info(f"Audit cleanup removed {deleted} records older than {days} days")
    return deleted
