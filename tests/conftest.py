import os

# Settings are read when gymmaster.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event

from config import TEST_ADMIN, TEST_BRANCH, TEST_MEMBER, TEST_QR_CODE, TEST_STAFF, TEST_TRAINER
from gymmaster.application import create_app
from gymmaster.db import Database
from gymmaster.enums import Role
from utils import (
    APIClient,
    create_branch,
    create_member,
    create_membership,
    create_membership_type,
    create_trainer,
    create_user,
)


@pytest.fixture
def database():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.drop_all()
    database.dispose()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def serialized_database(tmp_path):
    """
    File-backed SQLite for tests that run sessions on several threads.

    SQLite ignores FOR UPDATE, so every transaction takes the write lock at
    BEGIN IMMEDIATE; writers then queue the way row locks make them queue on
    MySQL.
    """
    database = Database(f"sqlite:///{tmp_path / 'gymmaster.db'}")

    @event.listens_for(database.engine, "connect")
    def _manual_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(database.engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def app(database):
    return create_app(database, enable_scheduler=False)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def api(client):
    """Anonymous client"""
    return APIClient(client)


# ============== Data ==============

@pytest.fixture
def branch(db):
    return create_branch(db, **TEST_BRANCH)


@pytest.fixture
def admin_user(db, branch):
    return create_user(db, role=Role.ADMIN, branch_id=branch.id, **TEST_ADMIN)


@pytest.fixture
def staff_user(db, branch):
    return create_user(db, role=Role.EMPLOYEE, branch_id=branch.id, **TEST_STAFF)


@pytest.fixture
def trainer(db, branch):
    user = create_user(db, role=Role.TRAINER, branch_id=branch.id, **TEST_TRAINER)
    return create_trainer(db, user, branch)


@pytest.fixture
def member_user(db):
    return create_user(db, role=Role.MEMBER, **TEST_MEMBER)


@pytest.fixture
def member(db, member_user):
    return create_member(db, member_user, qr_code=TEST_QR_CODE)


@pytest.fixture
def membership_type(db):
    return create_membership_type(db)


@pytest.fixture
def active_membership(db, member, membership_type):
    """ACTIVE membership ending tomorrow"""
    return create_membership(db, member, membership_type)


# ============== Authenticated clients ==============

@pytest.fixture
def admin_api(client, admin_user):
    return APIClient(client).login(admin_user.email)


@pytest.fixture
def staff_api(client, staff_user):
    return APIClient(client).login(staff_user.email)


@pytest.fixture
def trainer_api(client, trainer):
    return APIClient(client).login(TEST_TRAINER["email"])


@pytest.fixture
def member_api(client, member):
    return APIClient(client).login(TEST_MEMBER["email"])
