import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gymmaster.config import APP_NAME, APP_VERSION

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request):
    """Health check endpoint, including a database round trip"""
    try:
        with request.app.state.db.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unreachable", "message": f"{APP_NAME} cannot reach the database"},
        )

    return {"status": "healthy", "database": "connected", "message": f"{APP_NAME} is running", "version": APP_VERSION}
