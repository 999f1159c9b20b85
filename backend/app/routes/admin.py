"""
NoteMind Backend — Admin Error Monitoring Routes
==================================================

Read-only view of the in-memory AI error log for operators, plus a reset.
Every route requires the `X-Admin-Key` header to equal ADMIN_API_KEY; with no
key configured the routes are unreachable.
"""

import hmac
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response

from app.config import settings
from app.exceptions import AuthenticationError
from app.schemas.ai import ErrorKind, ErrorLogEntry, ErrorPatterns, ErrorStats
from app.services.error_monitor import ErrorMonitor, error_monitor

logger = logging.getLogger(__name__)


def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    expected = settings.admin_api_key
    if not expected or not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise AuthenticationError(message="Admin authentication required")


def get_error_monitor() -> ErrorMonitor:
    return error_monitor


router = APIRouter(
    prefix="/api/admin/ai-errors",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("/stats", response_model=ErrorStats, summary="Aggregate AI error statistics")
async def get_stats(monitor: ErrorMonitor = Depends(get_error_monitor)) -> ErrorStats:
    return monitor.get_stats()


@router.get("/logs", response_model=List[ErrorLogEntry], summary="Filtered AI error log")
async def get_logs(
    kind: Optional[ErrorKind] = Query(default=None),
    action: Optional[str] = Query(default=None),
    since: Optional[datetime] = Query(default=None, description="ISO 8601 lower bound"),
    limit: int = Query(default=100, ge=1, le=1000),
    monitor: ErrorMonitor = Depends(get_error_monitor),
) -> List[ErrorLogEntry]:
    return monitor.get_error_logs(kind=kind, action=action, since=since, limit=limit)


@router.get("/patterns", response_model=ErrorPatterns, summary="Error trend and recommendations")
async def get_patterns(monitor: ErrorMonitor = Depends(get_error_monitor)) -> ErrorPatterns:
    return monitor.analyze_error_patterns()


@router.delete("", status_code=204, summary="Clear the AI error log")
async def reset(monitor: ErrorMonitor = Depends(get_error_monitor)) -> Response:
    monitor.reset_stats()
    logger.info("AI error log cleared by admin")
    return Response(status_code=204)
