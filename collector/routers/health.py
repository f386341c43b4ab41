"""Health and readiness checks for the collector service."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_started_at = time.monotonic()


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "collector",
        "uptime": round(time.monotonic() - _started_at, 3),
    }


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.exception("Readiness check failed")
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "service": "collector"},
        )
    return {"status": "ready", "service": "collector"}
