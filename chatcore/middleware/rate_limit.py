import logging
import time
import uuid

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from chatcore.config import settings

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/health"})
WINDOW_SECONDS = 60


def caller_key(request: Request) -> str:
    """Gateway identity when present, else the client address."""
    caller = request.headers.get("x-user-id")
    if not caller:
        caller = request.client.host if request.client else "unknown"
    return f"rate_limit:{caller}"


async def count_hit(redis_client, key: str, window: int, now: float) -> int:
    """Add a hit to ``key`` and return the hits inside ``window``."""
    pipe = redis_client.pipeline()
    pipe.zremrangebyscore(key, 0, now - window)
    # Members must be unique or same-timestamp hits collapse
    pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
    pipe.zcard(key)
    pipe.expire(key, window)
    _, _, hits, _ = await pipe.execute()
    return hits


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-caller sliding window over Redis. Open when Redis is absent or failing."""

    async def dispatch(self, request: Request, call_next):
        redis_client = getattr(request.app.state, "redis", None)
        if redis_client is None or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        try:
            hits = await count_hit(
                redis_client, caller_key(request), WINDOW_SECONDS, time.time()
            )
        except Exception as exc:
            logger.warning("Rate limiter unavailable, letting request through: %s", exc)
            return await call_next(request)

        if hits > settings.RATE_LIMIT_PER_MINUTE:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": "Rate limit exceeded", "type": "RateLimited"},
                headers={"Retry-After": str(WINDOW_SECONDS)},
            )
        return await call_next(request)
