import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from gymmaster.enums import Role
from gymmaster.errors import NotFound, ValidationFailed
from gymmaster.models import Branch, RefreshToken, User
from gymmaster.utils.helpers import paginate

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("first_name", "last_name", "phone", "role", "branch_id", "is_active")


def serialize_user(user: User) -> dict:
    data = user.to_dict()
    data["full_name"] = user.full_name
    data["branch_name"] = user.branch.name if user.branch else None
    data["member_id"] = user.member.id if user.member else None
    data["trainer_id"] = user.trainer.id if user.trainer else None
    return data


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound("user")
    return user


def list_users(
    db: Session,
    role: Optional[Role] = None,
    is_active: Optional[bool] = None,
    branch_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list, dict]:
    query = db.query(User)

    if role:
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))
    if branch_id:
        query = query.filter(User.branch_id == branch_id)
    if search:
        term = f"%{search}%"
        query = query.filter(
            or_(User.first_name.ilike(term), User.last_name.ilike(term), User.email.ilike(term))
        )

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return [serialize_user(u) for u in users], paginate(total, page, limit)


def search_users(db: Session, term: str, limit: int = 10) -> list:
    like = f"%{term}%"
    users = (
        db.query(User)
        .filter(
            User.is_active.is_(True),
            or_(User.first_name.ilike(like), User.last_name.ilike(like), User.email.ilike(like)),
        )
        .order_by(User.first_name, User.last_name)
        .limit(limit)
        .all()
    )
    return [serialize_user(u) for u in users]


def update_user(db: Session, user_id: int, data: dict) -> dict:
    """Admin update; only keys present in data are written"""
    user = get_user(db, user_id)

    if data.get("branch_id") is not None and not db.get(Branch, data["branch_id"]):
        raise NotFound("branch")

    for field in UPDATABLE_FIELDS:
        if field in data:
            setattr(user, field, data[field])

    if data.get("is_active") is False:
        _revoke_sessions(db, user)

    db.commit()
    db.refresh(user)
    return serialize_user(user)


def _revoke_sessions(db: Session, user: User) -> None:
    db.query(RefreshToken).filter(
        RefreshToken.user_id == user.id, RefreshToken.is_revoked.is_(False)
    ).update({RefreshToken.is_revoked: True}, synchronize_session=False)
    user.token_version = (user.token_version or 1) + 1


def set_active(db: Session, user_id: int, is_active: bool, acting_user_id: Optional[int] = None) -> dict:
    user = get_user(db, user_id)

    if not is_active and user.id == acting_user_id:
        raise ValidationFailed("You cannot deactivate your own account", "CANNOT_DEACTIVATE_SELF")

    user.is_active = is_active
    if not is_active:
        _revoke_sessions(db, user)

    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} {'activated' if is_active else 'deactivated'}")
    return serialize_user(user)


def get_stats(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()

    by_role = {role.value: 0 for role in Role}
    for role, count in db.query(User.role, func.count(User.id)).group_by(User.role).all():
        by_role[role.value if isinstance(role, Role) else role] = count

    total = sum(by_role.values())
    active = db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0
    recent = (
        db.query(func.count(User.id)).filter(User.created_at >= now - timedelta(days=30)).scalar() or 0
    )

    return {
        "total": total,
        "active": active,
        "inactive": total - active,
        "by_role": by_role,
        "recent_registrations": recent,
    }
