"""
NoteMind Backend — AI Rate Limiting Middleware
================================================

What:  Sliding-window limit on AI generation requests, per caller.
Why:   Every generation request can cost up to three paid Gemini calls.
       Manual edits, backups and reads are cheap and are not limited.
How:   POST requests whose path contains an AI segment ("/ai") are counted
       per user id (the identity header) or, without one, per client IP.
Who:   Applied to every request; non-generation requests pass straight through.
When:  Added last in create_app, so it is the outermost layer: a 429 is
       returned before request ids, access logging or routing run.

Algorithm: Sliding Window Log
    1. Each caller key holds the timestamps of its recent AI requests
    2. On each AI request, drop timestamps older than RATE_LIMIT_WINDOW
    3. At RATE_LIMIT_REQUESTS remaining, answer 429 with Retry-After set to
       the moment the oldest timestamp leaves the window
    4. Otherwise record the timestamp and let the request through

    Why per user, not per IP:
    - Several users behind one NAT would share a single IP budget
    - The identity header is already trusted by the AI routes
    Alternative: Per-IP only. Simpler, but punishes shared networks and
    lets one user spread load across addresses.

    Every 1000 requests, keys with no timestamp inside the window are
    dropped so idle callers do not accumulate.

Production Upgrade Path:
    Counters live in process memory, so each worker enforces its own limit.
    → Move the window to Redis (sorted set per key, ZREMRANGEBYSCORE + ZCARD)
      for one limit shared across workers and instances.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.config import settings

logger = logging.getLogger(__name__)


def _is_ai_generation(request: Request) -> bool:
    if request.method != "POST":
        return False
    segments = request.url.path.strip("/").split("/")
    # Backup endpoints live under /ai/ too but make no Gemini call
    return "ai" in segments and "backups" not in segments


def _caller_key(request: Request) -> str:
    user_id = request.headers.get(settings.auth_user_header, "").strip()
    if user_id:
        return f"user:{user_id}"
    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not _is_ai_generation(request):
            return await call_next(request)

        key = _caller_key(request)
        now = time.time()
        window_start = now - settings.rate_limit_window

        self._requests[key] = [ts for ts in self._requests[key] if ts > window_start]

        if len(self._requests[key]) >= settings.rate_limit_requests:
            oldest = self._requests[key][0]
            retry_after = int(oldest + settings.rate_limit_window - now) + 1
            logger.warning(
                "AI rate limit exceeded for %s: %d requests in %ds window",
                key,
                len(self._requests[key]),
                settings.rate_limit_window,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many AI requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        self._requests[key].append(now)

        self._seen += 1
        if self._seen % 1000 == 0:
            self._cleanup_inactive(window_start)

        return await call_next(request)

    def _cleanup_inactive(self, window_start: float) -> None:
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for key in inactive:
            del self._requests[key]
        if inactive:
            logger.debug("Dropped %d inactive rate limit keys", len(inactive))
