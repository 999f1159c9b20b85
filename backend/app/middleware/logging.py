"""
NoteMind Backend — Request Logging Middleware
===============================================

What:  One access-log line per request on the `notemind.access` logger.
Why:   Correlates a caller's request with the service logs and the AI error
       monitor through the request id and user id.
How:   Times the downstream call and logs method, path, status, duration,
       request id, user id and client IP, both in the message and as
       `extra` fields for structured handlers.
Who:   Every request except /health (probes would drown the log).
When:  Inside RequestIDMiddleware, so the request id is already set.

Log line:
    POST /api/notes/<id>/ai 200 2380.4ms [a1b2c3d4] user=<uuid> from 10.0.0.5

Level follows the status:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

    AI generation requests answer 200 even when the AI failed (the outcome is
    in the body), so AI failures show up in the service logs and the error
    monitor rather than here.
    Alternative: Mapping AI failures to 5xx here. That would page on every
    Gemini hiccup that the retry layer already reports.

What we log vs what we DON'T log (privacy):
    ✅ Log: method, path, status, duration, IP, request id, user id
    ❌ Don't log: request bodies (note content, manual summaries and tags)
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.config import settings
from app.middleware.request_id import request_id_var

logger = logging.getLogger("notemind.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        client_ip = request.client.host if request.client else "unknown"
        user_id = request.headers.get(settings.auth_user_header, "-") or "-"
        rid = request_id_var.get("")

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] user=%s from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            user_id,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "user_id": user_id,
                "client_ip": client_ip,
            },
        )
        return response
