"""
Test utilities for GymMaster API
"""
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Optional

from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.dialects import mysql

from config import TEST_PASSWORD
from gymmaster.enums import MembershipStatus, Role
from gymmaster.models import Branch, Member, Membership, MembershipType, Trainer, User
from gymmaster.utils.helpers import hash_password


class APIClient:
    """HTTP client for API testing, remembers the bearer token"""

    def __init__(self, client: TestClient):
        self.client = client
        self.token: Optional[str] = None

    def set_token(self, token: str):
        self.token = token

    def clear_token(self):
        self.token = None

    def _headers(self, extra_headers: Dict = None) -> Dict:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def login(self, email: str, password: str = TEST_PASSWORD) -> "APIClient":
        response = self.post("/api/auth/login", {"email": email, "password": password})
        assert response.status_code == 200, response.text
        self.set_token(response.json()["data"]["access_token"])
        return self

    def get(self, endpoint: str, params: Dict = None):
        return self.client.get(endpoint, params=params, headers=self._headers())

    def post(self, endpoint: str, data: Dict = None, params: Dict = None):
        return self.client.post(endpoint, json=data, params=params, headers=self._headers())

    def put(self, endpoint: str, data: Dict = None):
        return self.client.put(endpoint, json=data, headers=self._headers())

    def patch(self, endpoint: str, data: Dict = None):
        return self.client.patch(endpoint, json=data, headers=self._headers())

    def delete(self, endpoint: str, params: Dict = None):
        return self.client.delete(endpoint, params=params, headers=self._headers())


def error_code(response) -> str:
    return response.json()["detail"]["error_code"]


@contextmanager
def locking_reads(db):
    """Collect the SELECT ... FOR UPDATE statements db issues, rendered as MySQL SQL"""
    statements = []

    def on_execute(orm_execute_state):
        if orm_execute_state.is_select:
            sql = str(orm_execute_state.statement.compile(dialect=mysql.dialect()))
            if "FOR UPDATE" in sql:
                statements.append(sql)

    event.listen(db, "do_orm_execute", on_execute)
    try:
        yield statements
    finally:
        event.remove(db, "do_orm_execute", on_execute)


# ============== Factories ==============

def create_branch(db, name: str = "B1", **fields) -> Branch:
    branch = Branch(name=name, **fields)
    db.add(branch)
    db.commit()
    db.refresh(branch)
    return branch


def create_user(db, email: str, role: Role = Role.MEMBER, password: str = TEST_PASSWORD, **fields) -> User:
    fields.setdefault("first_name", email.split("@")[0].capitalize())
    fields.setdefault("last_name", "Test")
    user = User(email=email, password=hash_password(password), role=role, **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_member(
    db,
    user: User,
    qr_code: str,
    qr_code_expiry: Optional[datetime] = None,
    membership_number: Optional[str] = None,
) -> Member:
    member = Member(
        user_id=user.id,
        membership_number=membership_number or f"GM{user.id:06d}",
        qr_code=qr_code,
        qr_code_expiry=qr_code_expiry or datetime.now() + timedelta(days=1),
    )
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


def create_trainer(db, user: User, branch: Branch) -> Trainer:
    trainer = Trainer(user_id=user.id, branch_id=branch.id, specialties="Yoga")
    db.add(trainer)
    db.commit()
    db.refresh(trainer)
    return trainer


def create_membership_type(db, name: str = "Monthly", duration_days: int = 30, price: int = 50) -> MembershipType:
    membership_type = MembershipType(name=name, duration_days=duration_days, price=price)
    db.add(membership_type)
    db.commit()
    db.refresh(membership_type)
    return membership_type


def create_membership(
    db,
    member: Member,
    membership_type: MembershipType,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    status: MembershipStatus = MembershipStatus.ACTIVE,
) -> Membership:
    now = datetime.now()
    membership = Membership(
        member_id=member.id,
        membership_type_id=membership_type.id,
        start_date=start_date or now - timedelta(days=29),
        end_date=end_date or now + timedelta(days=1),
        status=status,
        price_paid=membership_type.price,
    )
    db.add(membership)
    db.commit()
    db.refresh(membership)
    return membership
