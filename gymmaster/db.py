import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import URL
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from gymmaster.config import (
    DATABASE_URL,
    DB_HOST,
    DB_PORT,
    DB_USER,
    DB_PASSWORD,
    DB_NAME,
    DB_POOL_SIZE,
    DB_MAX_OVERFLOW,
    DB_POOL_RECYCLE,
)

logger = logging.getLogger(__name__)


def build_database_url() -> str:
    """DATABASE_URL if set, otherwise a MySQL (PyMySQL) URL from the DB_* settings"""
    if DATABASE_URL:
        return DATABASE_URL
    return URL.create(
        "mysql+pymysql",
        username=DB_USER,
        password=DB_PASSWORD,
        host=DB_HOST,
        port=DB_PORT,
        database=DB_NAME,
        query={"charset": "utf8mb4"},
    ).render_as_string(hide_password=False)


class Database:
    """
    Owns the engine (connection pool) and the session factory.

    One instance is built by the application factory and handed down to
    request handlers (through get_db) and background jobs.
    """

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.url = url or build_database_url()

        engine_kwargs = {"echo": echo, "pool_pre_ping": True}
        if self.url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                # Single shared connection so every session sees the same in-memory DB
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(
                {
                    "poolclass": QueuePool,
                    "pool_size": DB_POOL_SIZE,
                    "max_overflow": DB_MAX_OVERFLOW,
                    "pool_recycle": DB_POOL_RECYCLE,
                }
            )

        self.engine = create_engine(self.url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

        if self.url.startswith("sqlite"):
            logger.info("Database configured with SQLite at %s", self.url)
        else:
            logger.info(
                "Database connection pool configured: size=%s, max_overflow=%s",
                DB_POOL_SIZE, DB_MAX_OVERFLOW,
            )

    def session(self) -> Session:
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error"""
        db = self.session()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create_all(self):
        from gymmaster.models import Base

        Base.metadata.create_all(bind=self.engine)

    def drop_all(self):
        from gymmaster.models import Base

        Base.metadata.drop_all(bind=self.engine)

    def dispose(self):
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency: one session per request, closed afterwards"""
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()
