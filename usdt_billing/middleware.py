from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import logging
import time
import uuid

from .db import get_redis
from .exceptions import RateLimitExceeded, to_json_response

logger = logging.getLogger(__name__)

class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        started = time.monotonic()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {int((time.monotonic() - started) * 1000)}ms [{request.state.request_id}]"
        )
        return response

class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window request limit per client, counted in Redis. Best effort: Redis outages do not block traffic."""

    EXEMPT_PATHS = ("/healthz", "/ops/")

    def __init__(self, app, limit_per_minute: int = 60, window_seconds: int = 60):
        super().__init__(app)
        self.limit = limit_per_minute
        self.window = window_seconds

    @staticmethod
    def client_key(request: Request) -> str:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def dispatch(self, request: Request, call_next):
        if self.limit <= 0 or request.url.path.startswith(self.EXEMPT_PATHS):
            return await call_next(request)

        client = self.client_key(request)
        bucket = f"ratelimit:{client}:{int(time.time() // self.window)}"
        try:
            redis_client = get_redis()
            count = redis_client.incr(bucket)
            if count == 1:
                redis_client.expire(bucket, self.window)
        except Exception as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return await call_next(request)

        if count > self.limit:
            return to_json_response(RateLimitExceeded(self.limit, f"{self.window}s", client))
        return await call_next(request)
