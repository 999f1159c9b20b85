"""
NoteMind Backend — Health Check Route
=======================================

What:  Liveness/readiness probe for Docker and load balancers.
How:   SELECT 1 against the database, list_models against Gemini, plus the
       sizes of the in-memory backup store and error log.

Status levels:
    healthy     database and Gemini reachable
    degraded    database fine, Gemini unreachable (AI actions will fail,
                manual edits still work)
    unhealthy   database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text

from app import __version__
from app.database import engine
from app.schemas.ai import HealthResponse
from app.services.backup_service import backup_manager
from app.services.error_monitor import error_monitor
from app.services.gemini_service import gemini_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    gemini_status = "available"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", e)

    if not await gemini_service.health_check():
        gemini_status = "unavailable"
        if overall != "unhealthy":
            overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gemini=gemini_status,
        active_backups=len(backup_manager),
        logged_errors=len(error_monitor),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
