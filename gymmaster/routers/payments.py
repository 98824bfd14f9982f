"""
Payments Router - Register, confirm and cancel payments
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gymmaster.db import get_db
from gymmaster.enums import AuditAction, PaymentMethod, PaymentStatus, Role
from gymmaster.errors import PermissionDenied
from gymmaster.middleware import is_staff, require_roles, verify_bearer_token
from gymmaster.services import member_service, payment_service
from gymmaster.utils.audit import AuditRoute, audit_action, audit_entity, remember_old_values

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/payments",
    tags=["Payments"],
    route_class=AuditRoute,
    dependencies=[Depends(audit_entity("Payment"))],
)


# ============== Request Models ==============

class CreatePaymentRequest(BaseModel):
    member_id: int
    branch_id: int
    membership_id: Optional[int] = None
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    description: Optional[str] = Field(None, max_length=255)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    payment_date: Optional[datetime] = None
    due_date: Optional[datetime] = None


class UpdatePaymentRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0)
    method: Optional[PaymentMethod] = None
    description: Optional[str] = Field(None, max_length=255)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    due_date: Optional[datetime] = None


class ConfirmPaymentRequest(BaseModel):
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class CancelPaymentRequest(BaseModel):
    reason: Optional[str] = None


# ============== Endpoints ==============

@router.get("")
def get_payments(
    member_id: Optional[int] = Query(None),
    branch_id: Optional[int] = Query(None),
    status: Optional[PaymentStatus] = Query(None),
    method: Optional[PaymentMethod] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    payments, pagination = payment_service.list_payments(
        db,
        member_id=member_id,
        branch_id=branch_id,
        status=status,
        method=method,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": payments, "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_payment(
    request: CreatePaymentRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    payment = payment_service.create_payment(db, request.model_dump())
    return {"success": True, "message": "Payment registered", "data": payment}


@router.get("/stats")
def get_payment_stats(
    branch_id: Optional[int] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    stats = payment_service.get_stats(db, branch_id=branch_id, start_date=start_date, end_date=end_date)
    return {"success": True, "data": stats}


@router.get("/pending")
def get_pending_payments(
    branch_id: Optional[int] = Query(None),
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    payments = payment_service.get_pending(db, branch_id)
    return {"success": True, "data": payments, "count": len(payments)}


@router.get("/member/{member_id}")
def get_member_payments(
    member_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
):
    """Payments of one member. Members can only read their own."""
    member = member_service.get_member(db, member_id)
    if not is_staff(auth) and member.user_id != auth["user_id"]:
        raise PermissionDenied("You can only access your own payments")

    payments, pagination = payment_service.list_payments(db, member_id=member_id, page=page, limit=limit)
    return {"success": True, "data": payments, "pagination": pagination}


@router.get("/{payment_id}")
def get_payment(payment_id: int, auth: dict = Depends(require_roles(Role.EMPLOYEE)), db: Session = Depends(get_db)):
    payment = payment_service.get_payment(db, payment_id)
    return {"success": True, "data": payment_service.serialize_payment(payment)}


@router.put("/{payment_id}")
def update_payment(
    payment_id: int,
    request: UpdatePaymentRequest,
    http_request: Request,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    remember_old_values(http_request, payment_service.serialize_payment(payment_service.get_payment(db, payment_id)))
    payment = payment_service.update_payment(db, payment_id, request.model_dump(exclude_unset=True))
    return {"success": True, "message": "Payment updated", "data": payment}


@router.patch("/{payment_id}/confirm", dependencies=[Depends(audit_action(AuditAction.CONFIRM))])
def confirm_payment(
    payment_id: int,
    request: ConfirmPaymentRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    payment = payment_service.confirm_payment(db, payment_id, reference=request.reference, notes=request.notes)
    return {"success": True, "message": "Payment confirmed", "data": payment}


@router.patch("/{payment_id}/cancel", dependencies=[Depends(audit_action(AuditAction.CANCEL))])
def cancel_payment(
    payment_id: int,
    request: CancelPaymentRequest,
    auth: dict = Depends(require_roles(Role.EMPLOYEE)),
    db: Session = Depends(get_db),
):
    payment = payment_service.cancel_payment(db, payment_id, request.reason)
    return {"success": True, "message": "Payment cancelled", "data": payment}
