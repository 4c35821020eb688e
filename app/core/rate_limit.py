import asyncio
import time
from collections import defaultdict, deque
from collections.abc import Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.core.settings import Settings


class InMemoryRateLimiter:
    def __init__(self) -> None:
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def allow(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        now = time.monotonic()
        async with self._lock:
            bucket = self._events[key]
            cutoff = now - window_seconds
            while bucket and bucket[0] < cutoff:
                bucket.popleft()
            if len(bucket) >= limit:
                return False
            bucket.append(now)
            return True


class IngestRateLimitMiddleware(BaseHTTPMiddleware):
    """Caps how often a single client may start ingestion runs.

    Runs hit third-party sites, so every POST under /v1/ingest counts against
    the same per-client budget regardless of which entry point is used.
    """

    def __init__(self, app, settings: Settings):
        super().__init__(app)
        self.settings = settings
        self.limiter = InMemoryRateLimiter()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if request.method != "POST" or not path.startswith("/v1/ingest"):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        limit = self.settings.ingest_rate_limit_per_minute
        if not await self.limiter.allow(key=client_ip, limit=limit):
            # middleware runs outside the app's exception handlers
            return JSONResponse(
                status_code=429,
                content={
                    "error": {
                        "code": "rate_limited",
                        "message": "Too many ingestion requests",
                        "details": {"limit_per_minute": limit},
                    }
                },
            )

        return await call_next(request)
