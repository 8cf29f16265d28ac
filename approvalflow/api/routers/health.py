"""Health check endpoint."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approvalflow.api.deps import get_db
from approvalflow.api.schemas.common import HealthResponse
from approvalflow.core.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy", "dialect": db.get_bind().dialect.name}
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        return {"status": "unhealthy", "error": str(e)}


@router.get("/health", response_model=HealthResponse)
async def health_check(db: Session = Depends(get_db)):
    database = check_database(db)
    body = HealthResponse(
        status="healthy" if database["status"] == "healthy" else "unhealthy",
        version=get_settings().app_version,
        database=database,
    )
    if body.status != "healthy":
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump())
    return body
