"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from relaychat.core.database import get_db
from relaychat.schemas.common import StatusResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check() -> StatusResponse:
    """Basic health check endpoint."""
    return StatusResponse(status="ok")


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)) -> StatusResponse:
    """Readiness check - verifies the conversation store is reachable."""
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Readiness check failed: {type(e).__name__}")
        raise HTTPException(status_code=503, detail="Database unavailable") from e
    return StatusResponse(status="ready")
