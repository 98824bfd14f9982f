from fastapi import APIRouter

from gymmaster.routers import (
    audit,
    auth,
    branches,
    checkins,
    classes,
    dashboard,
    members,
    membership_types,
    memberships,
    payments,
    reports,
    users,
)

api_router = APIRouter(prefix="/api")

api_router.include_router(auth.router)
api_router.include_router(users.router)
api_router.include_router(members.router)
api_router.include_router(membership_types.router)
api_router.include_router(memberships.router)
api_router.include_router(payments.router)
api_router.include_router(classes.router)
api_router.include_router(branches.router)
api_router.include_router(checkins.router)
api_router.include_router(dashboard.router)
api_router.include_router(reports.router)
api_router.include_router(audit.router)
