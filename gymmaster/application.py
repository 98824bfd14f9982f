import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gymmaster.config import APP_NAME, APP_VERSION, AUTO_CREATE_TABLES, CORS_ORIGINS, DEBUG, SCHEDULER_ENABLED
from gymmaster.db import Database
from gymmaster.errors import GymError
from gymmaster.routers import api_router, health
from gymmaster.tasks import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


def create_app(database: Optional[Database] = None, enable_scheduler: bool = SCHEDULER_ENABLED) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        database: Database to use (a new one from the environment when omitted)
        enable_scheduler: start the background jobs with the app
    """
    database = database or Database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        logger.info(f"Starting {APP_NAME}...")
        if AUTO_CREATE_TABLES:
            database.create_all()
        scheduler = start_scheduler(database) if enable_scheduler else None
        yield
        stop_scheduler(scheduler)
        database.dispose()
        logger.info(f"Shutting down {APP_NAME}...")

    app = FastAPI(
        title=APP_NAME,
        description="API for the GymMaster gym management system",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GymError)
    async def gym_error_handler(request: Request, exc: GymError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        parts = []
        for e in exc.errors():
            field = e["loc"][-1] if e.get("loc") else ""
            parts.append(f"{field}: {e['msg']}" if field and field != "__root__" else e["msg"])
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": {"error_code": "VALIDATION_ERROR", "message": "; ".join(parts)}},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": {
                    "error_code": "INTERNAL_SERVER_ERROR",
                    "message": str(exc) if DEBUG else "An unexpected error occurred",
                }
            },
        )

    @app.get("/")
    def root():
        return {
            "message": f"Welcome to {APP_NAME}",
            "version": APP_VERSION,
            "docs": "/docs",
        }

    app.include_router(health.router)
    app.include_router(api_router)

    return app
