"""Liveness and readiness probes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import __version__
from ..database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

SERVICE = "listings"


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": SERVICE, "version": __version__}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Ready once the database answers a round trip."""
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness check failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "service": SERVICE, "error": "database unreachable"},
        )
    return {"status": "ready", "service": SERVICE}
